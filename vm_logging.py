# stdlib imports:
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
import sys
from typing import Dict, Optional as Opt

if sys.platform != 'win32':
	try:
		from systemd.journal import JournaldLogHandler # pip install systemd
	except ImportError:
		print( 'WARNING: JournaldLogHandler not found', file = sys.stderr )
		JournaldLogHandler = None

FORMAT = '%(asctime)s:%(levelname)s:%(name)s:%(message)s'
LEVELS = ( 'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL' )

def parse_levels( text: str ) -> Dict[str,str]:
	''' "aiohttp=WARNING,vm_fsm=INFO" -> { 'aiohttp': 'WARNING', 'vm_fsm': 'INFO' } '''
	levels: Dict[str,str] = {}
	for item in filter( None, map( str.strip, text.split( ',' ))):
		name, _, level = item.partition( '=' )
		levels[name.strip()] = level.strip().upper()
	return levels

def init( logfile: Opt[Path], loglevels: Dict[str,str] ) -> None:
	logging.basicConfig(
		level = logging.DEBUG,
		format = FORMAT,
	)
	root = logging.getLogger( '' )

	if sys.platform != 'win32' and JournaldLogHandler:
		journald_handler = JournaldLogHandler()
		journald_handler.setFormatter(
			logging.Formatter( '[%(levelname)s] %(message)s' )
		)
		root.addHandler( journald_handler )

	if logfile is not None:
		logfile.parent.mkdir( parents = True, exist_ok = True )
		trfh = TimedRotatingFileHandler(
			logfile,
			when = 'D',
			interval = 1,
			backupCount = 14,
		)
		trfh.setFormatter( logging.Formatter( FORMAT ))
		root.addHandler( trfh )

	for name, level in loglevels.items():
		assert level.isnumeric() or level in LEVELS, f'invalid level={level!r}'
		logger = logging.getLogger( name )
		if level.isnumeric():
			logger.setLevel( int( level ))
		else:
			logger.setLevel( getattr( logging, level ))
