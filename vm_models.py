# stdlib imports:
from dataclasses import dataclass
import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional as Opt, Union

logger = logging.getLogger( __name__ )

TRUTHY = ( '1', 'y', 'yes', 'true', 'on' )

@dataclass
class Context:
	domain: str
	id: Opt[str] = None

@dataclass
class Mailbox:
	context: Context
	mailbox_number: str
	mailbox_name: Opt[str] = None # name of the asterisk mailbox used for MWI, ie 1000@default
	password: Opt[str] = None
	name: Opt[str] = None
	email: Opt[str] = None
	greeting_away: Opt[str] = None
	greeting_busy: Opt[str] = None
	greeting_name: Opt[str] = None
	id: Opt[str] = None

	@property
	def mwi_name( self ) -> str:
		return self.mailbox_name or f'{self.mailbox_number}@{self.context.domain}'

@dataclass
class Folder:
	name: str
	recording: Opt[str]
	dtmf: str
	id: Opt[str] = None

class Folders:
	''' folders keyed by their dtmf selector '''
	def __init__( self, folders: Iterable[Folder] = () ) -> None:
		self._folders: Dict[str,Folder] = {}
		self.add( folders )

	def add( self, folders: Union[Folder,Iterable[Folder]] ) -> None:
		if isinstance( folders, Folder ):
			folders = [ folders ]
		for folder in folders:
			assert len( folder.dtmf ) == 1 and folder.dtmf.isdigit(), f'invalid folder dtmf={folder.dtmf!r}'
			self._folders[folder.dtmf] = folder

	def get( self, dtmf: str ) -> Opt[Folder]:
		return self._folders.get( dtmf )

	@property
	def inbox( self ) -> Folder:
		assert self._folders, 'no folders defined'
		return self._folders[min( self._folders )]

	def __contains__( self, dtmf: object ) -> bool:
		return dtmf in self._folders

	def __iter__( self ) -> Iterator[Folder]:
		return iter( sorted( self._folders.values(), key = lambda folder: folder.dtmf ))

	def __len__( self ) -> int:
		return len( self._folders )

@dataclass
class ContextConfig:
	context: Context
	key: str
	value: str
	id: Opt[str] = None

@dataclass
class MailboxConfig:
	mailbox: Mailbox
	key: str
	value: str
	id: Opt[str] = None

class Config:
	''' key/value options: built-in defaults, overridden by context config, overridden by mailbox config '''
	def __init__( self,
		defaults: Dict[str,Any],
		context_config: Iterable[ContextConfig] = (),
		mailbox_config: Iterable[MailboxConfig] = (),
	) -> None:
		self._options: Dict[str,Any] = dict( defaults )
		for option in context_config:
			self._options[option.key] = option.value
		for option in mailbox_config:
			self._options[option.key] = option.value

	def __getitem__( self, key: str ) -> Any:
		return self._options[key]

	def __contains__( self, key: object ) -> bool:
		return key in self._options

	def get( self, key: str, default: Any = None ) -> Any:
		return self._options.get( key, default )

	def get_str( self, key: str, default: str = '' ) -> str:
		value = self._options.get( key )
		return default if value is None else str( value )

	def get_int( self, key: str, default: int = 0 ) -> int:
		log = logger.getChild( 'Config.get_int' )
		value = self._options.get( key )
		if value is None or value == '':
			return default
		try:
			return int( value )
		except ValueError:
			log.warning( 'option %r has non-integer value %r, using %r', key, value, default )
			return default

	def get_bool( self, key: str, default: bool = False ) -> bool:
		value = self._options.get( key )
		if value is None or value == '':
			return default
		if isinstance( value, bool ):
			return value
		return str( value ).strip().lower() in TRUTHY

	def keys( self ) -> List[str]:
		return sorted( self._options )

	def __repr__( self ) -> str:
		cls = type( self )
		return f'{cls.__module__}.{cls.__qualname__}({self._options!r})'
