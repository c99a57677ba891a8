#region imports


# stdlib imports:
import argparse
import asyncio
import logging
from pathlib import Path
import sys
from typing import List, Optional as Opt

# local imports:
import auditing
import vm_logging
import vm_settings
from vm_models import Context, ContextConfig, Folder, Mailbox, MailboxConfig
from vm_store import DataAccess
import voicemail


#endregion imports
#region globals


logger = logging.getLogger( __name__ )

DEMO_DOMAIN = 'domain.com'
DEMO_MAILBOX = '1000'
DEMO_MAILBOX_NAME = 'SIP/1000'
DEMO_PASSWORD = 'pass'

class AdminError( Exception ):
	pass


#endregion globals
#region helpers


async def _context( store: DataAccess, domain: str ) -> Context:
	context = await store.get_context( domain )
	if context is None:
		raise AdminError( f'context {domain!r} does not exist' )
	return context

async def _mailbox( store: DataAccess, domain: str, mailbox_number: str ) -> Mailbox:
	context = await _context( store, domain )
	mailbox = await store.get_mailbox( mailbox_number, context )
	if mailbox is None:
		raise AdminError( f'mailbox {mailbox_number!r} does not exist in context {domain!r}' )
	return mailbox


#endregion helpers
#region commands


async def init_folders( store: DataAccess ) -> List[Folder]:
	''' creates the configured folders that don't exist yet '''
	log = logger.getChild( 'init_folders' )
	settings = await vm_settings.aload()
	existing = await store.get_folders()
	created: List[Folder] = []
	for seed in settings.folders:
		if seed['dtmf'] in existing:
			log.debug( 'folder %r already exists', seed['name'] )
			continue
		folder = await store.save_folder( Folder(
			name = seed['name'],
			recording = seed.get( 'recording' ),
			dtmf = seed['dtmf'],
		))
		created.append( folder )
	return created

async def add_context( store: DataAccess, domain: str ) -> Context:
	if await store.get_context( domain ) is not None:
		raise AdminError( f'context {domain!r} already exists' )
	return await store.save_context( Context( domain = domain ))

async def add_mailbox( store: DataAccess,
	domain: str,
	mailbox_number: str,
	*,
	password: Opt[str] = None,
	mailbox_name: Opt[str] = None,
	name: Opt[str] = None,
	email: Opt[str] = None,
) -> Mailbox:
	context = await _context( store, domain )
	if await store.get_mailbox( mailbox_number, context ) is not None:
		raise AdminError( f'mailbox {mailbox_number!r} already exists in context {domain!r}' )
	return await store.save_mailbox( Mailbox(
		context = context,
		mailbox_number = mailbox_number,
		mailbox_name = mailbox_name,
		password = password,
		name = name,
		email = email,
	))

async def set_config( store: DataAccess, domain: str, mailbox_number: Opt[str], key: str, value: str ) -> None:
	assert key in vm_settings.OPTIONS, f'invalid key={key!r}, expected one of {vm_settings.OPTIONS!r}'
	if mailbox_number:
		mailbox = await _mailbox( store, domain, mailbox_number )
		for option in await store.get_mailbox_config( mailbox ):
			if option.key == key:
				option.value = value
				await store.save_mailbox_config( option )
				return
		await store.save_mailbox_config( MailboxConfig( mailbox = mailbox, key = key, value = value ))
	else:
		context = await _context( store, domain )
		for coption in await store.get_context_config( context ):
			if coption.key == key:
				coption.value = value
				await store.save_context_config( coption )
				return
		await store.save_context_config( ContextConfig( context = context, key = key, value = value ))

async def del_config( store: DataAccess, domain: str, mailbox_number: Opt[str], key: str ) -> bool:
	if mailbox_number:
		mailbox = await _mailbox( store, domain, mailbox_number )
		for option in await store.get_mailbox_config( mailbox ):
			if option.key == key:
				await store.delete_mailbox_config( option )
				return True
	else:
		context = await _context( store, domain )
		for coption in await store.get_context_config( context ):
			if coption.key == key:
				await store.delete_context_config( coption )
				return True
	return False

async def seed_demo( store: DataAccess ) -> Mailbox:
	await init_folders( store )
	context = await store.get_context( DEMO_DOMAIN ) or await add_context( store, DEMO_DOMAIN )
	mailbox = await store.get_mailbox( DEMO_MAILBOX, context )
	if mailbox is not None:
		return mailbox
	return await add_mailbox( store, DEMO_DOMAIN, DEMO_MAILBOX,
		password = DEMO_PASSWORD,
		mailbox_name = DEMO_MAILBOX_NAME,
	)

async def run( store: DataAccess, args: argparse.Namespace ) -> int:
	cmd = args.cmd
	if cmd == 'init':
		for folder in await init_folders( store ):
			print( f'created folder {folder.name!r} dtmf={folder.dtmf!r}' )
	elif cmd == 'settings':
		settings = await vm_settings.aload()
		for key, description in vm_settings.describe().items():
			print( f'{key} = {getattr( settings, key )!r} # {description}' )
	elif cmd == 'context-add':
		context = await add_context( store, args.domain )
		print( f'created context {context.domain!r} id={context.id!r}' )
	elif cmd == 'context-del':
		await store.delete_context( await _context( store, args.domain ))
	elif cmd == 'context-list':
		for context in await store.get_contexts():
			print( context.domain )
	elif cmd == 'mailbox-add':
		mailbox = await add_mailbox( store, args.domain, args.mailbox,
			password = args.password,
			mailbox_name = args.mailbox_name,
			name = args.name,
			email = args.email,
		)
		print( f'created mailbox {mailbox.mailbox_number!r} id={mailbox.id!r}' )
	elif cmd == 'mailbox-del':
		await store.delete_mailbox( await _mailbox( store, args.domain, args.mailbox ))
	elif cmd == 'mailbox-list':
		for mailbox in await store.get_mailboxes( await _context( store, args.domain )):
			print( f'{mailbox.mailbox_number} {mailbox.name or ""}'.rstrip() )
	elif cmd == 'config-set':
		await set_config( store, args.domain, args.mailbox, args.key, args.value )
	elif cmd == 'config-del':
		if not await del_config( store, args.domain, args.mailbox, args.key ):
			print( f'{args.key!r} was not set' )
			return 1
	elif cmd == 'seed-demo':
		mailbox = await seed_demo( store )
		print( f'mailbox {mailbox.mailbox_number!r}@{mailbox.context.domain!r} password={mailbox.password!r}' )
	else:
		raise AdminError( f'command not recognized: {cmd!r}' )
	return 0


#endregion commands
#region bootstrap


def parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser( description = 'voicemail provisioning' )
	parser.add_argument( '--cfg', type = Path, help = 'config file ( default ${VMIVR_CFG} or /etc/vmivr/voicemail.cfg )' )
	parser.add_argument( '--loglevels', default = 'aiohttp=WARNING', help = 'per-logger levels, i.e. "repo=DEBUG"' )
	sub = parser.add_subparsers( dest = 'cmd', required = True )

	sub.add_parser( 'init', help = 'create the tables and the configured folders' )
	sub.add_parser( 'settings', help = 'show the voicemail settings' )
	sub.add_parser( 'seed-demo', help = f'create mailbox {DEMO_MAILBOX} in context {DEMO_DOMAIN}' )
	sub.add_parser( 'context-list' )
	for name in ( 'context-add', 'context-del', 'mailbox-list' ):
		p = sub.add_parser( name )
		p.add_argument( 'domain' )
	p = sub.add_parser( 'mailbox-add' )
	p.add_argument( 'domain' )
	p.add_argument( 'mailbox' )
	p.add_argument( '--password' )
	p.add_argument( '--mailbox-name', help = 'asterisk mailbox for MWI, default <mailbox>@<domain>' )
	p.add_argument( '--name' )
	p.add_argument( '--email' )
	p = sub.add_parser( 'mailbox-del' )
	p.add_argument( 'domain' )
	p.add_argument( 'mailbox' )
	p = sub.add_parser( 'config-set', help = 'override a setting for a context, or a mailbox with --mailbox' )
	p.add_argument( 'domain' )
	p.add_argument( 'key', choices = vm_settings.OPTIONS )
	p.add_argument( 'value' )
	p.add_argument( '--mailbox' )
	p = sub.add_parser( 'config-del' )
	p.add_argument( 'domain' )
	p.add_argument( 'key', choices = vm_settings.OPTIONS )
	p.add_argument( '--mailbox' )
	return parser

def main( argv: Opt[List[str]] = None ) -> int:
	args = parser().parse_args( argv )
	cfg = voicemail.load_cfg( args.cfg )
	vm_logging.init( None, voicemail.loglevels( cfg, args.loglevels ))
	voicemail.init_auditing( cfg )
	vm_settings.init( Path( cfg['VM_SETTINGS_PATH'] ))
	store = DataAccess( voicemail.repositories( cfg ), audit = auditing.Audit.console() )
	try:
		return asyncio.run( run( store, args ))
	except AdminError as e:
		print( f'error: {e}', file = sys.stderr )
		return 1

if __name__ == '__main__':
	sys.exit( main() )


#endregion bootstrap
