# stdlib imports:
import datetime
import getpass
import logging
from pathlib import Path
from typing import Any, Optional as Opt

# 3rd-party imports:
import tzlocal # pip install tzlocal


logger = logging.getLogger( __name__ )

_path: Opt[Path] = None
_file: str = 'audit-%Y-%m-%d.log'
_time_format: str = '%Y-%m-%d %H:%M:%S %Z'

def init(
	path: Path,
	file: str,
	time_format: str,
) -> None:
	global _path, _file, _time_format
	_path = path
	_file = file
	_time_format = time_format

	_path.mkdir( mode = 0o770, parents = True, exist_ok = True )

def format_details( **details: Any ) -> str:
	return ' '.join( f'{k}={v!r}' for k, v in details.items() if v is not None )

class Audit:
	''' appends one line per change to a daily audit file '''
	def __init__( self, *, user: str, origin: str ) -> None:
		self.user = user
		self.origin = origin

	@classmethod
	def console( cls ) -> 'Audit':
		return cls( user = getpass.getuser(), origin = 'console' )

	def audit( self, msg: str, **details: Any ) -> None:
		assert _path is not None, 'auditing.init() was never called'
		tzinfo = tzlocal.get_localzone()
		now = datetime.datetime.now( tz = tzinfo )
		parts = [
			now.strftime( _time_format ),
			self.user,
			self.origin,
			msg,
		]
		extra = format_details( **details )
		if extra:
			parts.append( extra )
		path = _path / now.strftime( _file )
		with path.open( 'a', encoding = 'utf-8', errors = 'backslashreplace' ) as f:
			print( ' '.join( parts ), file = f )

class NoAudit( Audit ):
	def __init__( self ) -> None:
		self.user = ''
		self.origin = ''

	def audit( self, msg: str, **details: Any ) -> None:
		pass
