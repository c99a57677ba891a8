#region imports


# stdlib imports:
import argparse
import logging
import os
from pathlib import Path
import sys
from typing import Any, Dict, List, Optional as Opt

# local imports:
import auditing
import repo
import vm_engine
import vm_logging
from vm_store import create_repositories, Repos


#endregion imports
#region globals


logger = logging.getLogger( __name__ )

DEFAULT_CFG_PATH = Path( '/etc/vmivr/voicemail.cfg' )


#endregion globals
#region voicemail.cfg


def cfg_path() -> Path:
	return Path( os.environ.get( 'VMIVR_CFG' ) or DEFAULT_CFG_PATH )

def default_cfg() -> str:
	return '\n'.join( [
		f'VM_ARI_URL = {"http://127.0.0.1:8088/ari"!r}',
		f'VM_ARI_USER = {"asterisk"!r}',
		f'VM_ARI_PASS = {"asterisk"!r}',
		f'VM_APPS = {list( vm_engine.APPS )!r}',
		f'VM_TLS_CHECK_HOSTNAME = {True!r}',
		f'VM_RECONNECT_SECONDS = {5!r}',
		f'VM_REPOSITORY_TYPE = {"sqlite"!r}',
		f'VM_REPOSITORY_SQLITE_PATH = {"/usr/share/vmivr/voicemail.sqlite"!r}',
		f'VM_PGSQL_HOST = {None!r}',
		f'VM_PGSQL_DB = {None!r}',
		f'VM_PGSQL_UID = {None!r}',
		f'VM_PGSQL_PWD = {None!r}',
		f'VM_PGSQL_PORT = {None!r}',
		f'VM_PGSQL_SSLMODE = {None!r}',
		f'VM_PGSQL_SSLROOTCERT = {None!r}',
		f'VM_AUDIT_DIR = {"/var/log/vmivr/audit/"!r}',
		f'VM_AUDIT_FILE = {"%Y-%m-%d.log"!r}',
		f'VM_AUDIT_TIME = {"%Y-%m-%d %H:%M:%S.%f %Z%z"!r}',
		f'VM_SETTINGS_PATH = {"/etc/vmivr/settings.json"!r}',
		f'VM_LOGFILE = {"/var/log/vmivr/logs/voicemail.log"!r}',
		'VM_LOGLEVELS = {!r}'.format( { 'aiohttp': 'WARNING' } ),
	] )

def load_cfg( path: Opt[Path] = None ) -> Dict[str,Any]:
	''' reads voicemail.cfg, writing one with the defaults first if it doesn't exist '''
	path = path or cfg_path()
	cfg_raw = default_cfg()
	if not path.is_file():
		path.parent.mkdir( mode = 0o770, parents = True, exist_ok = True )
		with path.open( 'w' ) as f:
			print( cfg_raw, file = f )
	cfg: Dict[str,Any] = {}
	exec( cfg_raw + '\n', {}, cfg ) # defaults first, so an older file still gets new variables
	with path.open( 'r' ) as f:
		exec( f.read() + '\n', {}, cfg )
	for name in ( 'VM_ARI_URL', 'VM_REPOSITORY_TYPE', 'VM_AUDIT_DIR', 'VM_SETTINGS_PATH' ):
		assert cfg.get( name ), f'{path} missing {name}'
	return cfg

def repo_config( cfg: Dict[str,Any] ) -> repo.Config:
	sslrootcert = cfg.get( 'VM_PGSQL_SSLROOTCERT' )
	return repo.Config(
		sqlite_path = Path( cfg['VM_REPOSITORY_SQLITE_PATH'] ),
		pgsql_host = cfg.get( 'VM_PGSQL_HOST' ),
		pgsql_db = cfg.get( 'VM_PGSQL_DB' ),
		pgsql_uid = cfg.get( 'VM_PGSQL_UID' ),
		pgsql_pwd = cfg.get( 'VM_PGSQL_PWD' ),
		pgsql_port = cfg.get( 'VM_PGSQL_PORT' ),
		pgsql_sslmode = cfg.get( 'VM_PGSQL_SSLMODE' ),
		pgsql_sslrootcert = Path( sslrootcert ) if sslrootcert else None,
	)

def init_auditing( cfg: Dict[str,Any] ) -> None:
	auditing.init(
		path = Path( cfg['VM_AUDIT_DIR'] ),
		file = cfg['VM_AUDIT_FILE'],
		time_format = cfg['VM_AUDIT_TIME'],
	)

def repositories( cfg: Dict[str,Any] ) -> Repos:
	log = logger.getChild( 'repositories' )
	repo_cls = repo.from_type( cfg['VM_REPOSITORY_TYPE'] )
	config = repo_config( cfg )
	if repo_cls is repo.RepoSqlite:
		assert config.sqlite_path is not None
		log.debug( 'sqlite database at %r', str( config.sqlite_path ))
		config.sqlite_path.parent.mkdir( mode = 0o770, parents = True, exist_ok = True )
	return create_repositories( repo_cls, config )

def loglevels( cfg: Dict[str,Any], override: str = '' ) -> Dict[str,str]:
	levels = cfg.get( 'VM_LOGLEVELS' ) or {}
	if isinstance( levels, str ):
		levels = vm_logging.parse_levels( levels )
	return { **levels, **vm_logging.parse_levels( override ) }


#endregion voicemail.cfg
#region service management


SERVICE_NAME = 'vmivr.service'
SERVICE_PATH = Path( '/lib/systemd/system/' ) / SERVICE_NAME
SERVICE_COMMANDS = ( 'install', 'status', 'start', 'restart', 'stop', 'uninstall' )

def os_execute( cmd: str ) -> None:
	log = logger.getChild( 'os_execute' )
	log.debug( cmd )
	os.system( cmd )

def service_command( cmd: str ) -> int:
	log = logger.getChild( 'service_command' )
	log.debug( 'cmd=%r', cmd )
	if cmd == 'install':
		if SERVICE_PATH.is_file():
			print( f'Service file already exists: {SERVICE_PATH}' )
			return -1
		with SERVICE_PATH.open( 'w', encoding = 'utf-8', errors = 'strict' ) as f:
			this_py = os.path.abspath( __file__ )
			print( '\n'.join( [
				'[Unit]',
				'Description=Voicemail IVR for Asterisk',
				'After=network.target asterisk.service',
				'',
				'[Service]',
				'Type=simple',
				f'ExecStart={sys.executable} {this_py}',
				'Restart=on-failure',
				'',
				'[Install]',
				'WantedBy=multi-user.target',
			] ), file = f )
		os_execute( 'systemctl daemon-reload' )
		os_execute( f'systemctl enable {SERVICE_NAME}' )
		os_execute( f'systemctl start {SERVICE_NAME}' )
		return 0
	elif cmd in ( 'status', 'start', 'restart', 'stop' ):
		os_execute( f'systemctl {cmd} {SERVICE_NAME}' )
		return 0
	elif cmd == 'uninstall':
		if not SERVICE_PATH.is_file():
			print( f'Service file does not exist: {SERVICE_PATH}' )
			return -1
		os_execute( f'systemctl stop {SERVICE_NAME}' )
		os_execute( f'systemctl disable {SERVICE_NAME}' )
		SERVICE_PATH.unlink()
		os_execute( 'systemctl daemon-reload' )
		return 0
	else:
		print( f'command not recognized: {cmd!r}' )
		return -1


#endregion service management
#region bootstrap


def main( argv: Opt[List[str]] = None ) -> int:
	parser = argparse.ArgumentParser( description = 'voicemail IVR for Asterisk ( ARI )' )
	parser.add_argument( 'cmd', nargs = '?', choices = SERVICE_COMMANDS, help = 'manage the systemd service instead of running' )
	parser.add_argument( '--cfg', type = Path, help = f'config file ( default ${{VMIVR_CFG}} or {DEFAULT_CFG_PATH} )' )
	parser.add_argument( '--loglevels', default = '', help = 'per-logger levels, i.e. "aiohttp=WARNING,vm_fsm=INFO"' )
	args = parser.parse_args( argv )
	if args.cmd:
		vm_logging.init( None, loglevels( {}, args.loglevels ))
		return service_command( args.cmd )

	cfg = load_cfg( args.cfg )
	init_auditing( cfg )
	logfile = cfg.get( 'VM_LOGFILE' )
	config = vm_engine.Config(
		ari_url = cfg['VM_ARI_URL'],
		ari_user = cfg['VM_ARI_USER'],
		ari_pass = cfg['VM_ARI_PASS'],
		repos = repositories( cfg ),
		settings_path = Path( cfg['VM_SETTINGS_PATH'] ),
		apps = list( cfg['VM_APPS'] ),
		logfile = Path( logfile ) if logfile else None,
		loglevels = loglevels( cfg, args.loglevels ),
		tls_check_hostname = bool( cfg['VM_TLS_CHECK_HOSTNAME'] ),
		reconnect_seconds = cfg['VM_RECONNECT_SECONDS'],
	)
	try:
		vm_engine.run( config )
	except KeyboardInterrupt:
		pass
	return 0

if __name__ == '__main__':
	sys.exit( main() )


#endregion bootstrap
