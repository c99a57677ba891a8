# stdlib imports:
from dataclasses import dataclass, field
import datetime
import logging
from typing import Iterable, Iterator, List, Optional as Opt

# local imports:
from vm_models import Folder, Mailbox

logger = logging.getLogger( __name__ )

RECORDING_SCHEME = 'recording:' # playback media_uri prefix, 10 characters
EPOCH = datetime.datetime( 1990, 1, 1, tzinfo = datetime.timezone.utc )

def utcnow() -> datetime.datetime:
	return datetime.datetime.now( tz = datetime.timezone.utc )

@dataclass
class Message:
	mailbox: Mailbox
	folder: Folder
	date: datetime.datetime = field( default_factory = utcnow )
	read: bool = False
	caller_id: Opt[str] = None
	duration: Opt[int] = None
	recording: Opt[str] = None
	original_mailbox: Opt[str] = None
	id: Opt[str] = None

	def sort_key( self ) -> tuple:
		# unread first, newest first
		return ( self.read, -self.date.timestamp() )


class MessageList:
	''' messages of one mailbox folder with a review cursor

	the current message and the history stack hold ids, not messages, so a
	removed message can never linger as current
	'''
	def __init__( self, messages: Iterable[Message] = () ) -> None:
		self.messages: List[Message] = []
		self.count_new = 0
		self.count_old = 0
		self.latest = EPOCH
		self._previous: List[str] = []
		self._current: Opt[str] = None
		self.add( messages )

	def add( self, batch: Iterable[Message] ) -> int:
		batch = list( batch )
		for message in batch:
			if message.id is None:
				raise ValueError( f'only saved messages can be listed: {message!r}' )
		was_empty = not self.messages
		known = { message.id for message in self.messages }
		added = 0
		for message in batch:
			if message.id in known:
				continue
			known.add( message.id )
			self.messages.append( message )
			added += 1
			if message.read:
				self.count_old += 1
			else:
				self.count_new += 1
			if message.date > self.latest:
				self.latest = message.date
		# an initial load normally arrives already ordered by the store
		if added and ( not was_empty or not self._is_sorted() ):
			self.messages.sort( key = Message.sort_key )
		return added

	def _is_sorted( self ) -> bool:
		keys = [ message.sort_key() for message in self.messages ]
		return all( a <= b for a, b in zip( keys, keys[1:] ))

	def _find( self, id: Opt[str] ) -> Opt[Message]:
		if id is None:
			return None
		for message in self.messages:
			if message.id == id:
				return message
		return None

	def next( self ) -> Opt[Message]:
		for message in self.messages:
			if message.id == self._current or message.id in self._previous:
				continue
			if self._current is not None:
				self._previous.append( self._current )
			self._current = message.id
			return message
		return None

	def previous( self ) -> Opt[Message]:
		while self._previous:
			id = self._previous.pop()
			message = self._find( id )
			if message is not None:
				self._current = id
				return message
		return None

	def first( self ) -> Opt[Message]:
		self._current = None
		self._previous = []
		return self.next()

	def current( self ) -> Opt[Message]:
		return self._find( self._current )

	def mark_as_read( self, message: Opt[Message] ) -> bool:
		if message is None:
			return False
		found = self._find( message.id )
		if found is None or found.read:
			return False
		found.read = True
		message.read = True
		self.count_new -= 1
		self.count_old += 1
		return True

	def remove( self, message: Opt[Message] ) -> None:
		if message is None:
			return
		found = self._find( message.id )
		if found is None:
			return
		self.messages = [ m for m in self.messages if m.id != found.id ]
		self._previous = [ id for id in self._previous if id != found.id ]
		if self._current == found.id:
			self._current = None
		if found.read:
			self.count_old -= 1
		else:
			self.count_new -= 1

	def get_message( self, locator: str ) -> Opt[Message]:
		recording = locator[len( RECORDING_SCHEME ):]
		for message in self.messages:
			if message.recording == recording:
				return message
		return None

	def previous_exists( self ) -> bool:
		return bool( self._previous )

	def current_exists( self ) -> bool:
		return self.current() is not None

	def is_empty( self ) -> bool:
		return not self.messages

	def is_not_empty( self ) -> bool:
		return not self.is_empty()

	def __len__( self ) -> int:
		return len( self.messages )

	def __iter__( self ) -> Iterator[Message]:
		return iter( list( self.messages ))

	def __repr__( self ) -> str:
		cls = type( self )
		return f'{cls.__module__}.{cls.__qualname__}(new={self.count_new!r}, old={self.count_old!r}, latest={self.latest.isoformat()!r})'
