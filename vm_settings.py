# stdlib imports:
from dataclasses import asdict, dataclass, field, fields
import json
import logging
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Optional as Opt

# 3rd-party imports:
import aiofiles # pip install aiofiles
from mypy_extensions import TypedDict # pip install mypy_extensions

# local imports:
import vm_util as util

logger = logging.getLogger( __name__ )

g_settings_path: Opt[Path] = None
g_lock = RLock()
g_settings: 'Opt[Settings]' = None

class SettingMeta( TypedDict ):
	description: str

class FolderSeed( TypedDict ):
	name: str
	dtmf: str
	recording: Opt[str]

def default_folders() -> List[FolderSeed]:
	return [
		FolderSeed( name = 'INBOX', dtmf = '0', recording = 'sound:vm-INBOX' ),
		FolderSeed( name = 'Old', dtmf = '1', recording = 'sound:vm-Old' ),
		FolderSeed( name = 'Work', dtmf = '2', recording = 'sound:vm-Work' ),
		FolderSeed( name = 'Family', dtmf = '3', recording = 'sound:vm-Family' ),
		FolderSeed( name = 'Friends', dtmf = '4', recording = 'sound:vm-Friends' ),
	]

# settings that contexts and mailboxes can override through their config tables
OPTIONS = (
	'max_silence_seconds',
	'max_duration_seconds',
	'recording_format',
	'beep',
	'max_auth_attempts',
)

@dataclass
class Settings:
	max_silence_seconds: int = field( default = 10, metadata = SettingMeta(
		description = 'Recording ends after this many seconds of silence',
	))
	max_duration_seconds: int = field( default = 180, metadata = SettingMeta(
		description = 'Maximum message length (seconds)',
	))
	recording_format: str = field( default = 'wav', metadata = SettingMeta(
		description = 'Recording file format',
	))
	beep: bool = field( default = True, metadata = SettingMeta(
		description = 'Beep before recording',
	))
	max_auth_attempts: int = field( default = 3, metadata = SettingMeta(
		description = 'Failed logins before hanging up (0 = unlimited)',
	))
	default_domain: str = field( default = 'default', metadata = SettingMeta(
		description = 'Context used when the dialplan passes no domain',
	))
	folders: List[FolderSeed] = field( default_factory = default_folders, metadata = SettingMeta(
		description = 'Folders created by vm_admin init',
	))

	def options( self ) -> Dict[str,Any]:
		return { name: getattr( self, name ) for name in OPTIONS }

	@classmethod
	def from_dict( cls, data: Dict[str,Any] ) -> 'Settings':
		log = logger.getChild( 'Settings.from_dict' )
		known = { fld.name for fld in fields( cls ) }
		for name in set( data ) - known:
			log.warning( 'ignoring unknown setting %r', name )
		return cls( **{ k: v for k, v in data.items() if k in known } )

def describe() -> Dict[str,str]:
	return { fld.name: fld.metadata['description'] for fld in fields( Settings ) }

def init( settings_path: Path ) -> None:
	global g_settings_path, g_settings
	with g_lock:
		g_settings_path = settings_path
		g_settings = None

def load() -> Settings:
	global g_settings
	with g_lock:
		if g_settings is not None:
			return g_settings
		assert g_settings_path is not None, 'vm_settings.init() was never called'
		try:
			with g_settings_path.open( 'r' ) as f:
				g_settings = Settings.from_dict( json.loads( f.read() ))
				return g_settings
		except FileNotFoundError:
			pass
		settings = Settings()
		save( settings )
		return settings

def save( settings: Settings ) -> None:
	global g_settings
	with g_lock:
		assert g_settings_path is not None, 'vm_settings.init() was never called'
		g_settings_path.parent.mkdir( parents = True, exist_ok = True )
		with g_settings_path.open( 'w' ) as f:
			f.write( json.dumps(
				asdict( settings ),
				indent = 1, # make it a bit more human-readable just in case
			))
		g_settings = settings

async def aload() -> Settings:
	global g_settings
	with g_lock:
		if g_settings is not None:
			return g_settings
		assert g_settings_path is not None, 'vm_settings.init() was never called'
		path = g_settings_path
	try:
		async with aiofiles.open( str( path ), 'r' ) as f:
			settings = Settings.from_dict( json.loads( await f.read() ))
	except FileNotFoundError:
		settings = Settings()
		await asave( settings )
		return settings
	with g_lock:
		g_settings = settings
	return settings

async def asave( settings: Settings ) -> None:
	global g_settings
	assert g_settings_path is not None, 'vm_settings.init() was never called'
	await util.mkdirp( g_settings_path.parent )
	async with aiofiles.open( str( g_settings_path ), 'w' ) as f:
		await f.write( json.dumps( asdict( settings ), indent = 1 ))
	with g_lock:
		g_settings = settings
