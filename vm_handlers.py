# stdlib imports:
import asyncio
from dataclasses import dataclass
import datetime
import hmac
import logging
from typing import List, Optional as Opt, TYPE_CHECKING
from uuid import uuid4

# local imports:
from ari import ARI
from vm_messages import Message, MessageList, RECORDING_SCHEME, utcnow
from vm_models import Config, Context, Folder, Folders, Mailbox
import vm_util as util

if TYPE_CHECKING:
	from vm_settings import Settings
	from vm_store import DataAccess

logger = logging.getLogger( __name__ )

@dataclass
class Channel:
	id: str
	caller_name: Opt[str] = None
	caller_number: Opt[str] = None

	@classmethod
	def from_event( cls, event: ARI.Event ) -> 'Channel':
		channel = event.channel
		caller = channel.get( 'caller' ) or {}
		channel_id = channel.get( 'id' )
		assert channel_id, f'event has no channel id: {event!r}'
		return cls(
			id = str( channel_id ),
			caller_name = caller.get( 'name' ) or None,
			caller_number = caller.get( 'number' ) or None,
		)

	@property
	def caller_id( self ) -> Opt[str]:
		return self.caller_name or self.caller_number or None


class AccountHandler:
	def __init__( self, store: 'DataAccess' ) -> None:
		self.store = store

	async def get_context( self, domain: str ) -> Opt[Context]:
		return await self.store.get_context( domain )

	async def get_mailbox( self, mailbox_number: str, context: Context ) -> Opt[Mailbox]:
		return await self.store.get_mailbox( mailbox_number, context )

	def authorize( self, mailbox: Mailbox, password: str ) -> bool:
		if mailbox.password is None:
			return False
		return hmac.compare_digest( mailbox.password.encode(), password.encode() )


class MessageHandler:
	''' message operations for one caller against one mailbox '''
	def __init__( self,
		ari: ARI,
		store: 'DataAccess',
		channel: Channel,
		mailbox: Mailbox,
		folders: Folders,
		config: Config,
	) -> None:
		self.ari = ari
		self.store = store
		self.channel = channel
		self.mailbox = mailbox
		self.folders = folders
		self.config = config
		self.current_folder: Folder = folders.inbox

	def get_folders( self ) -> Folders:
		return self.folders

	async def change_folder( self, dtmf: str ) -> Opt[MessageList]:
		log = logger.getChild( 'MessageHandler.change_folder' )
		folder = self.folders.get( dtmf )
		if folder is None:
			log.debug( 'no folder for dtmf=%r', dtmf )
			return None
		self.current_folder = folder
		return await self.get_messages()

	async def move_to_folder( self, message: Message, dtmf: str ) -> bool:
		log = logger.getChild( 'MessageHandler.move_to_folder' )
		folder = self.folders.get( dtmf )
		if folder is None:
			log.debug( 'no folder for dtmf=%r', dtmf )
			return False
		message.folder = folder
		await self.save( message )
		return True

	def new_message( self ) -> Message:
		assert self.mailbox.id, f'mailbox {self.mailbox.mailbox_number!r} was never saved'
		return Message(
			mailbox = self.mailbox,
			folder = self.folders.inbox,
			date = utcnow(),
			read = False,
			caller_id = self.channel.caller_id,
			recording = f'voicemail/{self.mailbox.id}/{uuid4()}',
		)

	async def record( self, message: Message ) -> None:
		log = logger.getChild( 'MessageHandler.record' )
		assert message.recording, f'message has no recording name: {message!r}'
		log.debug( 'recording %r on channel %r', message.recording, self.channel.id )
		await self.ari.record(
			self.channel.id,
			message.recording,
			format = self.config.get_str( 'recording_format', 'wav' ),
			max_silence_seconds = self.config.get_int( 'max_silence_seconds', 10 ),
			max_duration_seconds = self.config.get_int( 'max_duration_seconds', 180 ),
			beep = self.config.get_bool( 'beep', True ),
		)

	async def stop_recording( self, name: str ) -> None:
		log = logger.getChild( 'MessageHandler.stop_recording' )
		try:
			await self.ari.stop_recording( name )
		except ARI.NotFound:
			log.debug( 'recording %r already finished', name )

	async def cancel_recording( self, name: str ) -> None:
		log = logger.getChild( 'MessageHandler.cancel_recording' )
		try:
			await self.ari.cancel_recording( name )
		except ARI.NotFound:
			log.debug( 'recording %r already finished, deleting it', name )
			await self.discard_recording( name )

	async def discard_recording( self, name: str ) -> None:
		log = logger.getChild( 'MessageHandler.discard_recording' )
		try:
			await self.ari.delete_stored_recording( name )
		except ARI.NotFound:
			log.debug( 'recording %r was never stored', name )

	async def save( self, message: Message, mwi: bool = False ) -> Message:
		message = await self.store.save_message( message )
		if mwi:
			await self._update_mwi( message )
		return message

	async def _update_mwi( self, message: Message ) -> None:
		log = logger.getChild( 'MessageHandler._update_mwi' )
		name = message.mailbox.mwi_name
		try:
			old, new = await self.ari.get_mailbox( name )
		except ARI.NotFound:
			old, new = 0, 0
		if message.read:
			old, new = old + 1, max( new - 1, 0 )
		else:
			new += 1
		log.debug( 'mailbox %r now old=%r new=%r', name, old, new )
		await self.ari.update_mailbox( name, old, new )

	async def get_messages( self ) -> MessageList:
		return await self.store.get_messages( self.mailbox, self.current_folder )

	async def get_latest_messages( self, since: datetime.datetime ) -> List[Message]:
		return await self.store.get_latest_messages( self.mailbox, self.current_folder, since )

	async def play( self, message: Message ) -> str:
		assert message.recording, f'message has no recording: {message!r}'
		playback_id = uuid4().hex
		await self.ari.play( self.channel.id, f'{RECORDING_SCHEME}{message.recording}', playback_id )
		return playback_id

	async def stop( self, playback_id: str ) -> None:
		log = logger.getChild( 'MessageHandler.stop' )
		try:
			await self.ari.stop_playback( playback_id )
		except ARI.NotFound:
			log.debug( 'playback %r already finished', playback_id )

	async def delete( self, message: Message ) -> None:
		log = logger.getChild( 'MessageHandler.delete' )
		await self.store.delete_message( message )
		if message.recording:
			try:
				await self.ari.delete_stored_recording( message.recording )
			except ARI.Error as e:
				log.warning( 'unable to delete recording %r: %r', message.recording, e )

	async def copy( self, message: Message, mailbox: Mailbox ) -> Message:
		''' forwards a message to another mailbox's inbox as a new, unread message '''
		log = logger.getChild( 'MessageHandler.copy' )
		assert message.recording, f'message has no recording: {message!r}'
		if not mailbox.id:
			raise ValueError( f'mailbox {mailbox.mailbox_number!r} was never saved' )
		recording = f'voicemail/{mailbox.id}/{uuid4()}'
		await self.ari.copy_stored_recording( message.recording, recording )
		forwarded = Message(
			mailbox = mailbox,
			folder = self.folders.inbox,
			date = message.date,
			read = False,
			caller_id = message.caller_id,
			duration = message.duration,
			recording = recording,
			original_mailbox = message.original_mailbox or self.mailbox.mwi_name,
		)
		try:
			forwarded = await self.store.save_message( forwarded )
		except Exception:
			await self.discard_recording( recording )
			raise
		log.info( 'forwarded message %r from %r to %r', message.id, self.mailbox.mwi_name, mailbox.mwi_name )
		await self._update_mwi( forwarded )
		return forwarded


class MailboxHelper:
	''' everything a flow needs to know about the mailbox the caller is working with '''
	message_handler: Opt[MessageHandler] = None
	context: Opt[Context] = None
	mailbox: Opt[Mailbox] = None
	config: Opt[Config] = None

	def __init__( self,
		ari: ARI,
		store: 'DataAccess',
		settings: 'Settings',
		channel: Channel,
		domain: str = '',
		mailbox_number: str = '',
	) -> None:
		self.ari = ari
		self.store = store
		self.settings = settings
		self.channel = channel
		self.domain = domain or settings.default_domain
		self.mailbox_number = mailbox_number
		self.account_handler = AccountHandler( store )

	async def init( self ) -> 'MailboxHelper':
		log = logger.getChild( 'MailboxHelper.init' )
		self.context = await self.account_handler.get_context( self.domain )
		if self.context is None:
			log.warning( 'no voicemail context for domain %r', self.domain )
			return self
		if self.mailbox_number:
			mailbox = await self.account_handler.get_mailbox( self.mailbox_number, self.context )
			if mailbox is None:
				log.warning( 'no mailbox %r in context %r', self.mailbox_number, self.domain )
			else:
				await self.load_mailbox( mailbox )
		return self

	async def load_mailbox( self, mailbox: Mailbox ) -> None:
		folders, config = await asyncio.gather(
			self.store.get_folders(),
			self.store.get_config( mailbox, self.settings.options() ),
		)
		self.mailbox = mailbox
		self.mailbox_number = mailbox.mailbox_number
		self.config = config
		self.message_handler = MessageHandler( self.ari, self.store, self.channel, mailbox, folders, config )

	async def hangup( self ) -> None:
		await util.hangup( self.ari, self.channel.id, 'normal', 'MailboxHelper.hangup' )
