# stdlib imports:
import asyncio
from enum import Enum
from typing import Any, List, Tuple
from unittest.mock import Mock

# 3rd-party imports:
import pytest # pip install pytest

# local imports:
from vm_fsm import CallFlow, Fsm
import vm_prompts as prompts

class State( Enum ):
	IDLE = 'idle'
	BUSY = 'busy'
	DONE = 'done'


class Recorder( Fsm ):
	def __init__( self ) -> None:
		super().__init__( State.IDLE )
		self.seen: List[Tuple[str,Any]] = []
		self.gate = asyncio.Event()

	def idle_dtmf( self, digit: str ) -> None:
		if digit == 'go':
			self.transition( State.BUSY )
		elif digit == 'work':
			self.spawn( self._work() )
		else:
			self.defer_until_transition( State.DONE, 'dtmf', digit )

	async def _work( self ) -> None:
		await self.gate.wait()
		self.transition( State.DONE )

	def busy__enter( self, **kwargs: Any ) -> None:
		self.seen.append(( 'enter busy', kwargs ))

	def busy_dtmf( self, digit: str ) -> None:
		self.seen.append(( 'busy', digit ))
		if digit == 'finish':
			self.transition( State.DONE )

	def done_dtmf( self, digit: str ) -> None:
		self.seen.append(( 'done', digit ))

	async def _fail( self ) -> None:
		raise RuntimeError( 'boom' )


class TestDispatch:
	def test_handler_by_state( self ) -> None:
		fsm = Recorder()
		fsm.handle( 'dtmf', 'go' )
		fsm.handle( 'dtmf', 'x' )
		assert fsm.state == State.BUSY
		assert fsm.seen == [ ( 'enter busy', {} ), ( 'busy', 'x' ) ]

	def test_missing_handler_is_noop( self ) -> None:
		fsm = Recorder()
		fsm.handle( 'nonsense', 1, 2 )
		assert fsm.state == State.IDLE

	def test_deferred_replayed_in_order_on_entry( self ) -> None:
		fsm = Recorder()
		fsm.handle( 'dtmf', '1' )
		fsm.handle( 'dtmf', '2' )
		assert fsm.deferred == [ ( 'done', 'dtmf', ( '1', )), ( 'done', 'dtmf', ( '2', )) ]
		fsm.transition( State.BUSY )
		assert fsm.seen == [ ( 'enter busy', {} ) ]
		fsm.transition( State.DONE )
		assert fsm.seen[1:] == [ ( 'done', '1' ), ( 'done', '2' ) ]
		assert fsm.deferred == []

	def test_retarget( self ) -> None:
		fsm = Recorder()
		fsm.handle( 'dtmf', '1' )
		fsm.retarget( State.DONE, State.BUSY )
		fsm.transition( State.BUSY, why = 'test' )
		assert fsm.seen == [ ( 'enter busy', { 'why': 'test' } ), ( 'busy', '1' ) ]


class TestHold:
	@pytest.mark.asyncio
	async def test_inputs_held_while_spawned_call_pending( self ) -> None:
		fsm = Recorder()
		fsm.handle( 'dtmf', 'work' )
		assert fsm.busy
		fsm.handle( 'dtmf', 'a' )
		fsm.handle( 'dtmf', 'b' )
		assert fsm.deferred == [ ( None, 'dtmf', ( 'a', )), ( None, 'dtmf', ( 'b', )) ]
		fsm.gate.set()
		await fsm.join()
		assert not fsm.busy
		assert fsm.state == State.DONE
		assert fsm.seen == [ ( 'done', 'a' ), ( 'done', 'b' ) ]

	@pytest.mark.asyncio
	async def test_failure_reported_and_reraised( self ) -> None:
		fsm = Recorder()
		failures: List[BaseException] = []
		fsm.on_failure = failures.append
		fsm.spawn( fsm._fail() )
		with pytest.raises( RuntimeError ):
			await fsm.join()
		assert len( failures ) == 1
		assert not fsm.busy


class TestStop:
	@pytest.mark.asyncio
	async def test_stop_discards_and_ignores( self ) -> None:
		fsm = Recorder()
		callback = Mock()
		fsm.add_stop_callback( callback )
		fsm.handle( 'dtmf', '1' )
		fsm.handle( 'dtmf', 'work' )
		fsm.stop()
		fsm.stop()
		callback.assert_called_once_with()
		assert fsm.deferred == []
		fsm.handle( 'dtmf', 'go' )
		fsm.gate.set()
		await fsm.join()
		# the pending call completed after stop and must not have moved the machine
		assert fsm.state == State.IDLE
		assert fsm.seen == []


class AuthState( Enum ):
	AUTH = 'auth'


class Login( CallFlow ):
	def __init__( self, prompter: Mock, helper: Any, attempts: int ) -> None:
		super().__init__( AuthState.AUTH, prompter, max_auth_attempts = attempts )
		self.helper = helper
		self.entered: List[bool] = []

	def auth__enter( self, incorrect: bool = False ) -> None:
		self.entered.append( incorrect )


class TestCallFlow:
	def test_collect( self, prompter: Mock ) -> None:
		flow = Login( prompter, Mock(), 3 )
		assert flow.collect( '1' ) is None
		assert flow.collect( '2' ) is None
		assert flow.collect( prompts.ACCEPT ) == '12'
		assert flow.collect( prompts.ACCEPT ) == ''

	@pytest.mark.asyncio
	async def test_missing_helper_is_not_ready( self, prompter: Mock ) -> None:
		flow = Login( prompter, None, 3 )
		with pytest.raises( CallFlow.NotReady ):
			flow.handler
		flow.spawn( flow.lookup_mailbox( '1000' ))
		with pytest.raises( CallFlow.NotReady ):
			await flow.join()

	def test_missing_mailbox_is_not_ready( self, prompter: Mock, unresolved_helper: Mock ) -> None:
		flow = Login( prompter, unresolved_helper, 3 )
		assert flow.mailbox_helper is unresolved_helper
		with pytest.raises( CallFlow.NotReady ):
			flow.handler

	@pytest.mark.asyncio
	async def test_gives_up_after_max_attempts( self, prompter: Mock, helper: Mock ) -> None:
		flow = Login( prompter, helper, 2 )
		flow.auth_failed( AuthState.AUTH )
		assert flow.entered == [ True ]
		flow.auth_failed( AuthState.AUTH )
		await flow.join()
		assert flow.entered == [ True ]
		prompter.play.assert_awaited_with( prompts.TOO_MANY_FAILED_ATTEMPTS, prompts.GOODBYE, wait = True )
		helper.hangup.assert_awaited_once_with()
		assert flow.stopped

	@pytest.mark.asyncio
	async def test_zero_means_unlimited( self, prompter: Mock, helper: Mock ) -> None:
		flow = Login( prompter, helper, 0 )
		for _ in range( 10 ):
			flow.auth_failed( AuthState.AUTH )
		await flow.join()
		assert len( flow.entered ) == 10
		assert not flow.stopped
