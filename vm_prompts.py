# stdlib imports:
import asyncio
import logging
from typing import Dict, List, Optional as Opt, Set, Union
from uuid import uuid4

# local imports:
from ari import ARI

logger = logging.getLogger( __name__ )

ACCEPT = '#'
CANCEL = '7'

# RecordingFlow digits
RECORD = '1'
CONFIRM = '2'

# MailboxFlow menu digits
FIRST = '1'
CHANGE_FOLDER = '2'
PREVIOUS = '4'
REPLAY = '5'
NEXT = '6'
DELETE = '7'
MOVE_TO_FOLDER = '9'
BACK = '*'

POUND = 'sound:digits/pound'
STAR = 'sound:digits/star'
DIGITS: Dict[str,str] = {
	'0': 'sound:digits/0',
	'1': 'sound:digits/1',
	'2': 'sound:digits/2',
	'3': 'sound:digits/3',
	'4': 'sound:digits/4',
	'5': 'sound:digits/5',
	'6': 'sound:digits/6',
	'7': 'sound:digits/7',
	'8': 'sound:digits/8',
	'9': 'sound:digits/9',
	'*': STAR,
	'#': POUND,
}

BEEP = 'sound:beep'
PRESS = 'sound:vm-press'
ENTER_MAILBOX = 'sound:vm-login'
ENTER_PASSWORD = 'sound:vm-password'
INCORRECT_MAILBOX = 'sound:vm-incorrect-mailbox'
LOGIN_INCORRECT = 'sound:vm-incorrect'
TO_LEAVE_A_MESSAGE = 'sound:vm-leavemsg'
LEAVE_MESSAGE_AFTER_TONE = 'sound:vm-intro'
TO_SAVE = 'sound:vm-tosave'
TO_DISCARD = 'sound:vm-todelete'
MESSAGE_SAVED = 'sound:vm-msgsaved'
MESSAGE_DISCARDED = 'sound:vm-deleted'
DELETED = 'sound:vm-deleted'
NO_MORE_MESSAGES = 'sound:vm-nomore'
NO_MESSAGES = 'sound:vm-nomessages'
FOR_THE_FIRST_MESSAGE = 'sound:vm-first'
FOR_THE_NEXT_MESSAGE = 'sound:vm-next'
FOR_THE_PREVIOUS_MESSAGE = 'sound:vm-prev'
TO_REPEAT_THIS_MESSAGE = 'sound:vm-repeat'
TO_DELETE_THIS_MESSAGE = 'sound:vm-delete'
TO_CHANGE_FOLDERS = 'sound:vm-changeto'
TO_SAVE_TO_A_FOLDER = 'sound:vm-savefolder'
WHICH_FOLDER = 'sound:vm-whichbox'
FOLLOWED_BY_POUND = 'sound:vm-then-pound'
INVALID_FOLDER = 'sound:pbx-invalid'
TO_RETURN_TO_THE_MENU = 'sound:vm-starmain'
TOO_MANY_FAILED_ATTEMPTS = 'sound:vm-sorry'
GOODBYE = 'sound:vm-goodbye'

def digits_audio( digits: str ) -> List[str]:
	return [ DIGITS[digit] for digit in digits ]

def press( digit: str, *meaning: str ) -> List[str]:
	''' "to do something, press N" '''
	return [ *meaning, PRESS, DIGITS[digit] ]


class Prompter:
	''' plays prompt playlists on one channel, at most one at a time '''
	def __init__( self, ari: ARI, channel_id: str ) -> None:
		self.ari = ari
		self.channel_id = channel_id
		self.playback_id: Opt[str] = None
		self._finished: Dict[str,asyncio.Event] = {}
		self._owned: Set[str] = set()
		self._lock = asyncio.Lock()
		self.closed = False

	def owns( self, playback_id: str ) -> bool:
		return playback_id in self._owned

	async def play( self, *media: Union[str,List[str]], wait: bool = False ) -> Opt[str]:
		log = logger.getChild( 'Prompter.play' )
		playlist: List[str] = []
		for item in media:
			if isinstance( item, str ):
				playlist.append( item )
			else:
				playlist.extend( item )
		async with self._lock:
			if self.closed:
				log.debug( 'channel %r is gone, not playing %r', self.channel_id, playlist )
				return None
			await self._interrupt()
			if not playlist:
				return None
			playback_id = uuid4().hex
			finished = asyncio.Event()
			self._finished[playback_id] = finished
			self._owned.add( playback_id )
			self.playback_id = playback_id
			try:
				await self.ari.play( self.channel_id, playlist, playback_id )
			except ARI.Error as e:
				log.warning( 'unable to play %r on channel %r: %r', playlist, self.channel_id, e )
				self.finished( playback_id )
				return None
		if wait:
			await finished.wait()
		return playback_id

	def finished( self, playback_id: str ) -> None:
		event = self._finished.pop( playback_id, None )
		if event is not None:
			event.set()
		if self.playback_id == playback_id:
			self.playback_id = None

	def close( self ) -> None:
		''' the call is over, wakes up everybody waiting on a prompt '''
		self.closed = True
		for playback_id in list( self._finished ):
			self.finished( playback_id )

	async def interrupt( self ) -> None:
		async with self._lock:
			await self._interrupt()

	async def _interrupt( self ) -> None:
		log = logger.getChild( 'Prompter.interrupt' )
		playback_id, self.playback_id = self.playback_id, None
		if playback_id is None:
			return
		try:
			await self.ari.stop_playback( playback_id )
		except ARI.NotFound:
			log.debug( 'prompt %r already finished', playback_id )
		except ARI.SoftError as e:
			log.warning( 'unable to stop prompt %r: %r', playback_id, e )
		finally:
			self.finished( playback_id )
