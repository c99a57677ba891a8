#region imports


# stdlib imports:
import asyncio
from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Dict, List, Optional as Opt, Set, Tuple, Union
from typing_extensions import Final

# local imports:
from ari import ARI
from auditing import NoAudit
from vm_handlers import Channel, MailboxHelper
from vm_logging import init as logging_init
from vm_mailbox import MailboxFlow
from vm_messages import MessageList
from vm_prompts import Prompter
from vm_recording import RecordingFlow
from vm_router import EventRouter
import vm_settings
from vm_store import DataAccess, Repos
import vm_util as util


#endregion imports
#region globals


logger = logging.getLogger( __name__ )

VOICEMAIL: Final = 'voicemail'
VOICEMAIL_MAIN: Final = 'voicemail-main'
APPS: Final = ( VOICEMAIL, VOICEMAIL_MAIN )

SKIP_PASSWORD: Final = 's'


@dataclass
class Config:
	ari_url: str
	ari_user: str
	ari_pass: str
	repos: Repos
	settings_path: Path
	apps: List[str] = field( default_factory = lambda: list( APPS ))
	logfile: Opt[Path] = None
	loglevels: Dict[str,str] = field( default_factory = dict )
	tls_check_hostname: bool = True
	reconnect_seconds: Union[int,float] = 5


class CallStartError( Exception ):
	pass


#endregion globals
#region call handling


def parse_args( args: List[str] ) -> Tuple[str,str,str]:
	''' Stasis(voicemail,<domain>,<mailbox>,<options>) -> ( domain, mailbox, options ) '''
	domain, mailbox, options = ( list( args ) + [ '', '', '' ] )[:3]
	return domain.strip(), mailbox.strip(), options.strip()

async def _handler( ari: ARI, store: DataAccess, event: ARI.Event ) -> None:
	log = logger.getChild( '_handler' )
	channel = Channel.from_event( event )
	flow: Opt[Union[RecordingFlow,MailboxFlow]] = None
	task: 'Opt[asyncio.Task[None]]' = None
	try:
		settings = await vm_settings.aload()
		domain, mailbox_number, options = parse_args( event.args )
		log.info( 'channel %r app=%r caller=%r domain=%r mailbox=%r options=%r',
			channel.id, event.application, channel.caller_id, domain, mailbox_number, options,
		)
		prompter = Prompter( ari, channel.id )
		if event.application == VOICEMAIL:
			flow = RecordingFlow(
				prompter,
				mailbox_number = mailbox_number,
				max_auth_attempts = settings.max_auth_attempts,
			)
		elif event.application == VOICEMAIL_MAIN:
			flow = MailboxFlow(
				prompter,
				mailbox_number = mailbox_number,
				authorized = SKIP_PASSWORD in options,
				max_auth_attempts = settings.max_auth_attempts,
			)
		else:
			raise CallStartError( f'unrecognized application {event.application!r}' )

		# subscribe before answering so no digit gets lost
		router = EventRouter( ari, channel.id, flow, prompter )
		task = asyncio.create_task( router.run() )
		if not await util.answer( ari, channel.id, 'vm_engine._handler' ):
			return

		helper = await MailboxHelper( ari, store, settings, channel, domain, mailbox_number ).init()
		if helper.context is None:
			raise CallStartError( f'no voicemail context for domain {helper.domain!r}' )
		flow.handle( 'load_mailbox_helper', helper )
		if isinstance( flow, MailboxFlow ):
			if helper.message_handler is not None:
				messages = await helper.message_handler.get_messages()
			else:
				messages = MessageList()
			flow.handle( 'load_messages', messages )

		await task
		await flow.join()
		log.info( 'channel %r finished in state %r', channel.id, flow.state.value )
	except CallStartError as e1:
		log.error( 'channel %r: %s', channel.id, e1 )
		await _hangup( ari, channel.id )
	except ARI.Disconnect:
		log.warning( 'channel %r: lost the ARI connection', channel.id )
	except Exception:
		log.exception( 'Unexpected error on channel %r:', channel.id )
		await _hangup( ari, channel.id )
	finally:
		if flow is not None:
			flow.stop()
		if task is not None and not task.done():
			await asyncio.wait([ task ])

async def _hangup( ari: ARI, channel_id: str ) -> None:
	log = logger.getChild( '_hangup' )
	try:
		await util.hangup( ari, channel_id, 'normal', 'vm_engine._handler' )
	except ARI.Error as e:
		log.warning( 'unable to hang up channel %r: %r', channel_id, e )


#endregion call handling
#region bootstrap


async def _serve( config: Config, store: DataAccess ) -> None:
	''' one connection's worth of calls, returns when the connection drops '''
	log = logger.getChild( '_serve' )
	ari = ARI()
	try:
		await ari.connect(
			config.ari_url,
			config.ari_user,
			config.ari_pass,
			config.apps,
			tls_check_hostname = config.tls_check_hostname,
		)
	except ARI.AuthFailure:
		await ari.close()
		raise
	except ( ARI.HardError, asyncio.TimeoutError, OSError ) as e1:
		log.error( 'unable to connect to %r: %r', config.ari_url, e1 )
		await ari.close()
		return
	calls: Set['asyncio.Task[None]'] = set()
	sub = ari.subscribe( lambda event: event.type == 'StasisStart' )
	try:
		async for event in sub.events():
			if event.application not in config.apps:
				log.debug( 'ignoring StasisStart for app %r', event.application )
				continue
			call = asyncio.create_task( _handler( ari, store, event ))
			calls.add( call )
			call.add_done_callback( calls.discard )
	except ( ARI.Disconnect, ARI.HardError ) as e2:
		log.warning( 'lost connection to %r: %r', config.ari_url, e2 )
	finally:
		sub.unsubscribe()
		await ari.close()
		if calls:
			await asyncio.wait( calls )

async def _server( config: Config ) -> None:
	log = logger.getChild( '_server' )
	store = DataAccess( config.repos, audit = NoAudit() )
	while True:
		await _serve( config, store )
		log.info( 'reconnecting in %r seconds', config.reconnect_seconds )
		await asyncio.sleep( config.reconnect_seconds )

def run( config: Config ) -> None:
	logging_init( config.logfile, config.loglevels )
	vm_settings.init( config.settings_path )
	asyncio.run( _server( config ))


#endregion bootstrap
