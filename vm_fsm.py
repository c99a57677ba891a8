# stdlib imports:
import asyncio
from dataclasses import dataclass
from enum import Enum
import logging
from typing import (
	Any, Callable, Coroutine, List, Optional as Opt, Set, Tuple, TYPE_CHECKING,
	Union,
)

# local imports:
import vm_prompts

if TYPE_CHECKING:
	from vm_handlers import MailboxHelper, MessageHandler
	from vm_models import Mailbox
	from vm_prompts import Prompter

logger = logging.getLogger( __name__ )

@dataclass
class Deferred:
	until: Opt[Enum] # None means replay as soon as nothing is held
	input: str
	args: Tuple[Any,...]


class Fsm:
	''' per-call state machine driver

	inputs are dispatched to methods named `<state>_<input>`, entering a state
	calls `<state>__enter` if it exists. Inputs that can't be handled yet are
	queued and replayed in arrival order once the state they wait for is active.
	'''
	def __init__( self, initial: Enum ) -> None:
		self.state: Enum = initial
		self.stopped = False
		self.on_failure: Opt[Callable[[BaseException],None]] = None
		self._deferred: List[Deferred] = []
		self._held = 0
		self._tasks: Set[asyncio.Task[None]] = set()
		self._failures: List[BaseException] = []
		self._stop_callbacks: List[Callable[[],None]] = []

	@property
	def name( self ) -> str:
		return type( self ).__name__

	def handle( self, input: str, *args: Any ) -> None:
		log = logger.getChild( 'Fsm.handle' )
		if self.stopped:
			log.debug( '%s ignoring %r after stop', self.name, input )
			return
		if self._held:
			log.debug( '%s holding %r while in %r', self.name, input, self.state.value )
			self._deferred.append( Deferred( None, input, args ))
			return
		self._dispatch( input, args )

	def _dispatch( self, input: str, args: Tuple[Any,...] ) -> None:
		log = logger.getChild( 'Fsm._dispatch' )
		handler = getattr( self, f'{self.state.value}_{input}', None )
		if handler is None:
			log.debug( '%s has no handler for %r in state %r', self.name, input, self.state.value )
			return
		handler( *args )

	def transition( self, state: Enum, **kwargs: Any ) -> None:
		log = logger.getChild( 'Fsm.transition' )
		if self.stopped:
			return
		log.debug( '%s %r -> %r', self.name, self.state.value, state.value )
		self.state = state
		enter = getattr( self, f'{state.value}__enter', None )
		if enter is not None:
			enter( **kwargs )
		self._flush()

	def defer_until_transition( self, state: Enum, input: str, *args: Any ) -> None:
		self._deferred.append( Deferred( state, input, args ))

	def retarget( self, old: Enum, new: Enum ) -> None:
		for deferred in self._deferred:
			if deferred.until == old:
				deferred.until = new

	@property
	def deferred( self ) -> List[Tuple[Opt[str],str,Tuple[Any,...]]]:
		return [
			( None if d.until is None else d.until.value, d.input, d.args )
			for d in self._deferred
		]

	def _flush( self ) -> None:
		while not self.stopped and not self._held:
			for i, deferred in enumerate( self._deferred ):
				if deferred.until is None or deferred.until == self.state:
					del self._deferred[i]
					break
			else:
				return
			self._dispatch( deferred.input, deferred.args )

	def spawn( self, coro: Coroutine[Any,Any,Any], *, hold_input: bool = True ) -> 'asyncio.Task[None]':
		if hold_input:
			self._held += 1
		task = asyncio.get_running_loop().create_task( self._run( coro, hold_input ))
		self._tasks.add( task )
		task.add_done_callback( self._tasks.discard )
		return task

	async def _run( self, coro: Coroutine[Any,Any,Any], hold_input: bool ) -> None:
		log = logger.getChild( 'Fsm._run' )
		try:
			await coro
		except asyncio.CancelledError:
			raise
		except Exception as e:
			log.exception( '%s failed in state %r:', self.name, self.state.value )
			self._failures.append( e )
			if self.on_failure is not None:
				self.on_failure( e )
		finally:
			if hold_input:
				self._held -= 1
				self._flush()

	@property
	def busy( self ) -> bool:
		return self._held > 0

	def add_stop_callback( self, callback: Callable[[],None] ) -> None:
		self._stop_callbacks.append( callback )

	def stop( self ) -> None:
		log = logger.getChild( 'Fsm.stop' )
		if self.stopped:
			return
		log.debug( '%s stopped in state %r', self.name, self.state.value )
		self.stopped = True
		self._deferred.clear()
		for callback in self._stop_callbacks:
			callback()

	async def join( self ) -> None:
		while True:
			pending = [ task for task in self._tasks if not task.done() ]
			if not pending:
				break
			await asyncio.wait( pending )
		if self._failures:
			raise self._failures[0]


class CallFlow( Fsm ):
	''' what both voicemail flows share: prompts, digit collection and login attempts '''
	helper: 'Opt[MailboxHelper]' = None

	class NotReady( Exception ):
		pass

	def __init__( self, initial: Enum, prompter: 'Prompter', *, max_auth_attempts: int = 3 ) -> None:
		super().__init__( initial )
		self.prompter = prompter
		self.add_stop_callback( prompter.close )
		self.max_auth_attempts = max_auth_attempts
		self.failed_attempts = 0
		self.digits: List[str] = []
		self.incorrect = False

	@property
	def handler( self ) -> 'MessageHandler':
		if self.helper is None or self.helper.message_handler is None:
			raise CallFlow.NotReady( f'{self.name} has no mailbox loaded' )
		return self.helper.message_handler

	@property
	def mailbox_helper( self ) -> 'MailboxHelper':
		if self.helper is None:
			raise CallFlow.NotReady( f'{self.name} has no mailbox helper' )
		return self.helper

	def prompt( self, *media: Union[str,List[str]] ) -> None:
		if media:
			self.spawn( self.prompter.play( *media ), hold_input = False )

	def collect( self, digit: str ) -> Opt[str]:
		''' accumulate digits, returns the entry ( and starts over ) once it's terminated by # '''
		if digit != vm_prompts.ACCEPT:
			self.digits.append( digit )
			return None
		entry = ''.join( self.digits )
		self.digits = []
		return entry

	async def lookup_mailbox( self, entry: str ) -> 'Opt[Mailbox]':
		helper = self.mailbox_helper
		if not entry or helper.context is None:
			return None
		return await helper.account_handler.get_mailbox( entry, helper.context )

	def auth_failed( self, state: Enum ) -> None:
		log = logger.getChild( 'CallFlow.auth_failed' )
		self.failed_attempts += 1
		if self.max_auth_attempts and self.failed_attempts >= self.max_auth_attempts:
			log.warning( '%s giving up after %r failed login attempts', self.name, self.failed_attempts )
			self.spawn( self._too_many_attempts() )
		else:
			self.transition( state, incorrect = True )

	async def _too_many_attempts( self ) -> None:
		await self.prompter.play( vm_prompts.TOO_MANY_FAILED_ATTEMPTS, vm_prompts.GOODBYE, wait = True )
		if self.stopped:
			return
		if self.helper is not None:
			await self.helper.hangup()
		self.stop()
