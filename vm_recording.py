# stdlib imports:
from enum import Enum
import logging
from typing import List, Optional as Opt, Union

# local imports:
from vm_fsm import CallFlow
from vm_handlers import MailboxHelper
from vm_messages import Message
import vm_prompts as prompts
from vm_prompts import Prompter

logger = logging.getLogger( __name__ )

class State( Enum ):
	INIT = 'init'
	AUTH = 'auth'
	MENU = 'menu'
	RECORDING_MESSAGE = 'recording_message'
	WAITING_FOR_CONFIRMATION = 'waiting_for_confirmation'


class RecordingFlow( CallFlow ):
	''' a caller leaving a message in somebody's mailbox '''
	message: Opt[Message] = None

	def __init__( self,
		prompter: Prompter,
		*,
		mailbox_number: str = '',
		max_auth_attempts: int = 3,
	) -> None:
		super().__init__( State.INIT, prompter, max_auth_attempts = max_auth_attempts )
		self.mailbox_number = mailbox_number

	#region init

	def init_dtmf( self, digit: str ) -> None:
		# until the helper is loaded we can only guess where the caller is headed
		self.defer_until_transition( State.MENU if self.mailbox_number else State.AUTH, 'dtmf', digit )

	def init_load_mailbox_helper( self, helper: MailboxHelper ) -> None:
		log = logger.getChild( 'RecordingFlow.init_load_mailbox_helper' )
		self.helper = helper
		if helper.message_handler is not None:
			self.transition( State.MENU )
			return
		if self.mailbox_number:
			log.info( 'mailbox %r not found, asking the caller', self.mailbox_number )
		self.retarget( State.MENU, State.AUTH )
		self.transition( State.AUTH )

	#endregion init
	#region auth

	def auth__enter( self, incorrect: bool = False ) -> None:
		self.digits = []
		self.incorrect = incorrect
		if incorrect:
			self.prompt( prompts.INCORRECT_MAILBOX, prompts.ENTER_MAILBOX )
		else:
			self.prompt( prompts.ENTER_MAILBOX )

	def auth_dtmf( self, digit: str ) -> None:
		entry = self.collect( digit )
		if entry is not None:
			self.spawn( self._login( entry ))

	async def _login( self, entry: str ) -> None:
		log = logger.getChild( 'RecordingFlow._login' )
		mailbox = await self.lookup_mailbox( entry )
		if self.stopped:
			return
		if mailbox is None:
			log.info( 'caller entered unknown mailbox %r', entry )
			self.auth_failed( State.AUTH )
			return
		await self.mailbox_helper.load_mailbox( mailbox )
		if self.stopped:
			return
		self.mailbox_number = mailbox.mailbox_number
		self.failed_attempts = 0
		self.transition( State.MENU )

	#endregion auth
	#region menu

	def menu__enter( self, saved: bool = False, discarded: bool = False ) -> None:
		media: List[Union[str,List[str]]] = []
		if saved:
			media.append( prompts.MESSAGE_SAVED )
		if discarded:
			media.append( prompts.MESSAGE_DISCARDED )
		media.append( prompts.press( prompts.RECORD, prompts.TO_LEAVE_A_MESSAGE ))
		self.prompt( *media )

	def menu_dtmf( self, digit: str ) -> None:
		log = logger.getChild( 'RecordingFlow.menu_dtmf' )
		if digit != prompts.RECORD:
			log.debug( 'ignoring %r', digit )
			return
		message = self.handler.new_message()
		self.message = message
		self.transition( State.RECORDING_MESSAGE )
		self.spawn( self._record( message ))

	async def _record( self, message: Message ) -> None:
		# the beep must not overlap a prompt
		await self.prompter.interrupt()
		if self.stopped:
			return
		await self.handler.record( message )

	#endregion menu
	#region recording_message

	def _is_ours( self, name: str ) -> bool:
		return self.message is not None and self.message.recording == name

	def recording_message_recording_started( self, name: str ) -> None:
		log = logger.getChild( 'RecordingFlow.recording_message_recording_started' )
		if self._is_ours( name ):
			log.debug( 'recording %r started', name )

	def recording_message_recording_finished( self, name: str, duration: Opt[int] ) -> None:
		log = logger.getChild( 'RecordingFlow.recording_message_recording_finished' )
		if not self._is_ours( name ):
			log.debug( 'ignoring finished recording %r', name )
			return
		assert self.message is not None
		if duration is None:
			log.warning( 'recording %r failed', name )
			self.message = None
			self.transition( State.MENU )
			return
		self.message.duration = duration
		self.transition( State.WAITING_FOR_CONFIRMATION )

	def recording_message_dtmf( self, digit: str ) -> None:
		assert self.message is not None and self.message.recording
		if digit == prompts.ACCEPT:
			self.spawn( self.handler.stop_recording( self.message.recording ))
		elif digit == prompts.CANCEL:
			name = self.message.recording
			self.message = None
			self.spawn( self.handler.cancel_recording( name ))
			self.transition( State.MENU, discarded = True )
		else:
			self.defer_until_transition( State.WAITING_FOR_CONFIRMATION, 'dtmf', digit )

	#endregion recording_message
	#region waiting_for_confirmation

	def waiting_for_confirmation__enter( self ) -> None:
		self.prompt(
			prompts.press( prompts.CONFIRM, prompts.TO_SAVE ),
			prompts.press( prompts.CANCEL, prompts.TO_DISCARD ),
		)

	def waiting_for_confirmation_dtmf( self, digit: str ) -> None:
		message = self.message
		assert message is not None and message.recording
		if digit == prompts.CONFIRM:
			self.spawn( self._save( message ))
		elif digit == prompts.CANCEL:
			self.message = None
			self.spawn( self.handler.discard_recording( message.recording ))
			self.transition( State.MENU, discarded = True )
		else:
			self.defer_until_transition( State.MENU, 'dtmf', digit )

	async def _save( self, message: Message ) -> None:
		log = logger.getChild( 'RecordingFlow._save' )
		await self.handler.save( message, mwi = True )
		log.info( 'saved message %r ( %r seconds ) for mailbox %r',
			message.id, message.duration, message.mailbox.mailbox_number,
		)
		if self.stopped:
			return
		self.message = None
		self.transition( State.MENU, saved = True )

	#endregion waiting_for_confirmation
