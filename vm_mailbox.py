# stdlib imports:
from enum import Enum
import logging
from typing import List, Optional as Opt, Union

# local imports:
from vm_fsm import CallFlow
from vm_handlers import MailboxHelper
from vm_messages import Message, MessageList
from vm_models import Mailbox
import vm_prompts as prompts
from vm_prompts import Prompter

logger = logging.getLogger( __name__ )

Media = Union[str,List[str]]

class State( Enum ):
	INIT = 'init'
	AUTH = 'auth'
	MENU = 'menu'
	PLAYING_MESSAGE = 'playing_message'
	MARKING_AS_READ = 'marking_as_read'
	DELETING_MESSAGE = 'deleting_message'
	MOVING_TO_FOLDER = 'moving_to_folder'
	CHANGING_FOLDER = 'changing_folder'


class MailboxFlow( CallFlow ):
	''' a mailbox owner reviewing their messages

	`authorized` skips the password, for callers the dialplan already trusts
	'''
	messages: Opt[MessageList] = None
	mailbox: Opt[Mailbox] = None
	playback: Opt[str] = None # id of the message playback we're waiting on
	reload_messages = False

	def __init__( self,
		prompter: Prompter,
		*,
		mailbox_number: str = '',
		authorized: bool = False,
		max_auth_attempts: int = 3,
	) -> None:
		super().__init__( State.INIT, prompter, max_auth_attempts = max_auth_attempts )
		self.mailbox_number = mailbox_number
		self.authorized = authorized

	@property
	def message_list( self ) -> MessageList:
		if self.messages is None:
			raise CallFlow.NotReady( f'{self.name} has no messages loaded' )
		return self.messages

	#region init

	def init_dtmf( self, digit: str ) -> None:
		target = State.MENU if self.mailbox_number and self.authorized else State.AUTH
		self.defer_until_transition( target, 'dtmf', digit )

	def init_load_mailbox_helper( self, helper: MailboxHelper ) -> None:
		self.helper = helper
		self._start()

	def init_load_messages( self, messages: MessageList ) -> None:
		self.messages = messages
		self._start()

	def _start( self ) -> None:
		log = logger.getChild( 'MailboxFlow._start' )
		if self.helper is None or self.messages is None:
			return
		self.mailbox = self.helper.mailbox
		if self.mailbox is not None and self.authorized:
			self.transition( State.MENU )
			return
		if self.mailbox is None and self.mailbox_number:
			log.info( 'mailbox %r not found, asking the caller', self.mailbox_number )
		self.retarget( State.MENU, State.AUTH )
		self.transition( State.AUTH )

	#endregion init
	#region auth

	def auth__enter( self, incorrect: bool = False ) -> None:
		self.digits = []
		self.incorrect = incorrect
		media: List[Media] = []
		if self.mailbox is None:
			if incorrect:
				media.append( prompts.INCORRECT_MAILBOX )
			media.append( prompts.ENTER_MAILBOX )
		else:
			if incorrect:
				media.append( prompts.LOGIN_INCORRECT )
			media.append( prompts.ENTER_PASSWORD )
		self.prompt( *media )

	def auth_dtmf( self, digit: str ) -> None:
		entry = self.collect( digit )
		if entry is None:
			return
		if self.mailbox is None:
			self.spawn( self._lookup( entry ))
		else:
			self.spawn( self._authorize( self.mailbox, entry ))

	async def _lookup( self, entry: str ) -> None:
		log = logger.getChild( 'MailboxFlow._lookup' )
		mailbox = await self.lookup_mailbox( entry )
		if self.stopped:
			return
		if mailbox is None:
			log.info( 'caller entered unknown mailbox %r', entry )
			self.auth_failed( State.AUTH )
			return
		self.mailbox = mailbox
		self.mailbox_number = mailbox.mailbox_number
		self.reload_messages = True
		# same state, now asking for the password
		self.transition( State.AUTH )

	async def _authorize( self, mailbox: Mailbox, password: str ) -> None:
		log = logger.getChild( 'MailboxFlow._authorize' )
		helper = self.mailbox_helper
		if not helper.account_handler.authorize( mailbox, password ):
			log.info( 'wrong password for mailbox %r', mailbox.mailbox_number )
			self.auth_failed( State.AUTH )
			return
		if helper.mailbox is not mailbox:
			await helper.load_mailbox( mailbox )
			if self.stopped:
				return
		if self.reload_messages:
			messages = await self.handler.get_messages()
			if self.stopped:
				return
			self.messages = messages
			self.reload_messages = False
		log.info( 'mailbox %r logged in', mailbox.mailbox_number )
		self.authorized = True
		self.failed_attempts = 0
		self.transition( State.MENU )

	#endregion auth
	#region menu

	def menu__enter( self, notice: Opt[Media] = None ) -> None:
		messages = self.message_list
		media: List[Media] = []
		if notice:
			media.append( notice )
		if messages.current_exists():
			media.append( prompts.press( prompts.REPLAY, prompts.TO_REPEAT_THIS_MESSAGE ))
			media.append( prompts.press( prompts.DELETE, prompts.TO_DELETE_THIS_MESSAGE ))
			media.append( prompts.press( prompts.MOVE_TO_FOLDER, prompts.TO_SAVE_TO_A_FOLDER ))
		if messages.previous_exists():
			media.append( prompts.press( prompts.PREVIOUS, prompts.FOR_THE_PREVIOUS_MESSAGE ))
		if messages.is_not_empty():
			media.append( prompts.press( prompts.NEXT, prompts.FOR_THE_NEXT_MESSAGE ))
			media.append( prompts.press( prompts.FIRST, prompts.FOR_THE_FIRST_MESSAGE ))
		elif not notice:
			media.append( prompts.NO_MESSAGES )
		media.append( prompts.press( prompts.CHANGE_FOLDER, prompts.TO_CHANGE_FOLDERS ))
		self.prompt( *media )

	def menu_dtmf( self, digit: str ) -> None:
		log = logger.getChild( 'MailboxFlow.menu_dtmf' )
		messages = self.message_list
		if digit == prompts.NEXT:
			self.spawn( self._fetch_and_play( first = False ))
		elif digit == prompts.FIRST:
			self.spawn( self._fetch_and_play( first = True ))
		elif digit == prompts.PREVIOUS:
			self._replay( messages.previous() )
		elif digit == prompts.REPLAY:
			self._replay( messages.current() )
		elif digit == prompts.DELETE:
			self._delete( messages.current() )
		elif digit == prompts.CHANGE_FOLDER:
			self.transition( State.CHANGING_FOLDER )
		elif digit == prompts.MOVE_TO_FOLDER:
			if messages.current_exists():
				self.transition( State.MOVING_TO_FOLDER )
			else:
				log.debug( 'no current message to move' )
		else:
			log.debug( 'ignoring %r', digit )

	async def _fetch_and_play( self, first: bool ) -> None:
		messages = self.message_list
		latest = await self.handler.get_latest_messages( messages.latest )
		if self.stopped:
			return
		messages.add( latest )
		message = messages.first() if first else messages.next()
		if message is None:
			self.transition( State.MENU, notice = prompts.NO_MORE_MESSAGES )
			return
		await self._play( message )

	def _replay( self, message: Opt[Message] ) -> None:
		if message is None:
			self.transition( State.MENU, notice = prompts.NO_MORE_MESSAGES )
		else:
			self.spawn( self._play( message ))

	async def _play( self, message: Message ) -> None:
		log = logger.getChild( 'MailboxFlow._play' )
		await self.prompter.interrupt()
		if self.stopped:
			return
		playback_id = await self.handler.play( message )
		if self.stopped:
			return
		log.debug( 'playing message %r as %r', message.id, playback_id )
		self.playback = playback_id
		self.transition( State.PLAYING_MESSAGE )

	def _delete( self, message: Opt[Message] ) -> None:
		log = logger.getChild( 'MailboxFlow._delete' )
		if message is None:
			log.debug( 'no current message to delete' )
			return
		self.message_list.remove( message )
		self.transition( State.DELETING_MESSAGE )
		self.spawn( self._delete_message( message ), hold_input = False )

	async def _delete_message( self, message: Message ) -> None:
		await self.handler.delete( message )
		if self.stopped:
			return
		self.transition( State.MENU, notice = prompts.DELETED )

	#endregion menu
	#region playing_message

	def playing_message_playing_started( self, playback_id: str, media: str ) -> None:
		log = logger.getChild( 'MailboxFlow.playing_message_playing_started' )
		if playback_id == self.playback:
			log.debug( 'playing %r', media )

	def playing_message_playing_finished( self, playback_id: str, media: str ) -> None:
		log = logger.getChild( 'MailboxFlow.playing_message_playing_finished' )
		if playback_id != self.playback:
			log.debug( 'ignoring finished playback %r', playback_id )
			return
		self.playback = None
		messages = self.message_list
		message = messages.get_message( media ) or messages.current()
		if not messages.mark_as_read( message ):
			self.transition( State.MENU )
			return
		assert message is not None
		self.transition( State.MARKING_AS_READ )
		self.spawn( self._mark_as_read( message ), hold_input = False )

	async def _mark_as_read( self, message: Message ) -> None:
		await self.handler.save( message, mwi = True )
		if self.stopped:
			return
		self.transition( State.MENU )

	def playing_message_dtmf( self, digit: str ) -> None:
		playback_id, self.playback = self.playback, None
		self.defer_until_transition( State.MENU, 'dtmf', digit )
		self.spawn( self._stop_playback( playback_id ))

	async def _stop_playback( self, playback_id: Opt[str] ) -> None:
		if playback_id is not None:
			await self.handler.stop( playback_id )
		if self.stopped:
			return
		self.transition( State.MENU )

	#endregion playing_message
	#region marking_as_read / deleting_message

	def marking_as_read_dtmf( self, digit: str ) -> None:
		self.defer_until_transition( State.MENU, 'dtmf', digit )

	def deleting_message_dtmf( self, digit: str ) -> None:
		self.defer_until_transition( State.MENU, 'dtmf', digit )

	#endregion marking_as_read / deleting_message
	#region changing_folder / moving_to_folder

	def _folder_prompt( self, incorrect: bool, *intro: Media ) -> None:
		self.digits = []
		self.incorrect = incorrect
		media: List[Media] = []
		if incorrect:
			media.append( prompts.INVALID_FOLDER )
		media.extend( intro )
		for folder in self.handler.get_folders():
			if folder.recording:
				media.append( prompts.press( folder.dtmf, folder.recording ))
		media.append( prompts.FOLLOWED_BY_POUND )
		media.append( prompts.press( prompts.BACK, prompts.TO_RETURN_TO_THE_MENU ))
		self.prompt( *media )

	def _folder_entry( self, digit: str, state: State ) -> Opt[str]:
		''' collects a folder selector, None while collecting or when the caller backed out '''
		if digit == prompts.BACK:
			self.digits = []
			self.transition( State.MENU )
			return None
		entry = self.collect( digit )
		if entry is None:
			return None
		if entry not in self.handler.get_folders():
			self.transition( state, incorrect = True )
			return None
		return entry

	def changing_folder__enter( self, incorrect: bool = False ) -> None:
		self._folder_prompt( incorrect, prompts.TO_CHANGE_FOLDERS )

	def changing_folder_dtmf( self, digit: str ) -> None:
		entry = self._folder_entry( digit, State.CHANGING_FOLDER )
		if entry is not None:
			self.spawn( self._change_folder( entry ))

	async def _change_folder( self, dtmf: str ) -> None:
		log = logger.getChild( 'MailboxFlow._change_folder' )
		messages = await self.handler.change_folder( dtmf )
		if self.stopped:
			return
		if messages is None:
			self.transition( State.CHANGING_FOLDER, incorrect = True )
			return
		folder = self.handler.current_folder
		log.debug( 'changed to folder %r: %r', folder.name, messages )
		self.messages = messages
		self.transition( State.MENU, notice = folder.recording )

	def moving_to_folder__enter( self, incorrect: bool = False ) -> None:
		self._folder_prompt( incorrect, prompts.WHICH_FOLDER )

	def moving_to_folder_dtmf( self, digit: str ) -> None:
		log = logger.getChild( 'MailboxFlow.moving_to_folder_dtmf' )
		entry = self._folder_entry( digit, State.MOVING_TO_FOLDER )
		if entry is None:
			return
		message = self.message_list.current()
		if message is None:
			log.debug( 'current message went away' )
			self.transition( State.MENU )
			return
		self.spawn( self._move( message, entry ))

	async def _move( self, message: Message, dtmf: str ) -> None:
		log = logger.getChild( 'MailboxFlow._move' )
		leaving = dtmf != self.handler.current_folder.dtmf
		moved = await self.handler.move_to_folder( message, dtmf )
		if self.stopped:
			return
		if not moved:
			self.transition( State.MOVING_TO_FOLDER, incorrect = True )
			return
		log.debug( 'moved message %r to folder %r', message.id, message.folder.name )
		if leaving:
			self.message_list.remove( message )
		self.transition( State.MENU, notice = prompts.MESSAGE_SAVED )

	#endregion changing_folder / moving_to_folder
