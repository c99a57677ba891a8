# stdlib imports:
import asyncio
from unittest.mock import AsyncMock, Mock

# 3rd-party imports:
import pytest # pip install pytest

# local imports:
from conftest import make_mailbox, press
import vm_prompts as prompts
from vm_prompts import Prompter
from vm_recording import RecordingFlow, State

NAME = 'voicemail/mb1000/new'

async def recording( prompter: Mock, helper: Mock ) -> RecordingFlow:
	''' a flow that's recording message NAME '''
	flow = RecordingFlow( prompter, mailbox_number = '1000' )
	flow.handle( 'load_mailbox_helper', helper )
	press( flow, '1' )
	await flow.join()
	assert flow.state == State.RECORDING_MESSAGE
	return flow


class TestInit:
	@pytest.mark.asyncio
	async def test_known_mailbox_goes_to_menu( self, prompter: Mock, helper: Mock ) -> None:
		flow = RecordingFlow( prompter, mailbox_number = '1000' )
		flow.handle( 'load_mailbox_helper', helper )
		await flow.join()
		assert flow.state == State.MENU
		prompter.play.assert_awaited_with( prompts.press( prompts.RECORD, prompts.TO_LEAVE_A_MESSAGE ))

	@pytest.mark.asyncio
	async def test_unknown_mailbox_asks( self, prompter: Mock, unresolved_helper: Mock ) -> None:
		flow = RecordingFlow( prompter, mailbox_number = '9999' )
		flow.handle( 'load_mailbox_helper', unresolved_helper )
		await flow.join()
		assert flow.state == State.AUTH
		prompter.play.assert_awaited_with( prompts.ENTER_MAILBOX )

	@pytest.mark.asyncio
	async def test_early_digits_follow_the_caller( self, prompter: Mock, helper: Mock, handler: Mock ) -> None:
		flow = RecordingFlow( prompter, mailbox_number = '1000' )
		press( flow, '1' )
		assert flow.state == State.INIT
		flow.handle( 'load_mailbox_helper', helper )
		await flow.join()
		assert flow.state == State.RECORDING_MESSAGE
		handler.record.assert_awaited_once()

	@pytest.mark.asyncio
	async def test_early_digits_retargeted_to_auth( self, prompter: Mock, unresolved_helper: Mock ) -> None:
		flow = RecordingFlow( prompter, mailbox_number = '9999' )
		press( flow, '10' )
		flow.handle( 'load_mailbox_helper', unresolved_helper )
		await flow.join()
		assert flow.state == State.AUTH
		assert flow.digits == [ '1', '0' ]


class TestAuth:
	@pytest.mark.asyncio
	async def test_valid_mailbox( self, prompter: Mock, unresolved_helper: Mock ) -> None:
		mailbox = make_mailbox()
		unresolved_helper.account_handler.get_mailbox.return_value = mailbox
		flow = RecordingFlow( prompter )
		flow.handle( 'load_mailbox_helper', unresolved_helper )
		press( flow, '1000#' )
		await flow.join()
		assert flow.state == State.MENU
		unresolved_helper.account_handler.get_mailbox.assert_awaited_once_with( '1000', unresolved_helper.context )
		unresolved_helper.load_mailbox.assert_awaited_once_with( mailbox )

	@pytest.mark.asyncio
	async def test_invalid_mailbox( self, prompter: Mock, unresolved_helper: Mock ) -> None:
		flow = RecordingFlow( prompter )
		flow.handle( 'load_mailbox_helper', unresolved_helper )
		press( flow, '1000#' )
		await flow.join()
		assert flow.state == State.AUTH
		assert flow.incorrect
		assert flow.digits == []
		prompter.play.assert_awaited_with( prompts.INCORRECT_MAILBOX, prompts.ENTER_MAILBOX )

	@pytest.mark.asyncio
	async def test_too_many_attempts_hangs_up( self, prompter: Mock, unresolved_helper: Mock ) -> None:
		flow = RecordingFlow( prompter, max_auth_attempts = 2 )
		flow.handle( 'load_mailbox_helper', unresolved_helper )
		press( flow, '1#2#3#' )
		await flow.join()
		assert flow.stopped
		unresolved_helper.hangup.assert_awaited_once_with()

	@pytest.mark.asyncio
	async def test_hangup_during_goodbye( self, unresolved_helper: Mock ) -> None:
		ari = Mock()
		ari.play = AsyncMock()
		ari.stop_playback = AsyncMock()
		flow = RecordingFlow( Prompter( ari, 'chan-1' ), max_auth_attempts = 1 )
		flow.handle( 'load_mailbox_helper', unresolved_helper )
		press( flow, '9#' )
		async def goodbye_playing() -> None:
			while not ari.play.await_count or ari.play.await_args.args[1][0] != prompts.TOO_MANY_FAILED_ATTEMPTS:
				await asyncio.sleep( 0 )
		await asyncio.wait_for( goodbye_playing(), timeout = 5 )
		# caller hung up, no PlaybackFinished is coming
		flow.stop()
		await asyncio.wait_for( flow.join(), timeout = 5 )
		unresolved_helper.hangup.assert_not_awaited()


class TestMenu:
	@pytest.mark.asyncio
	async def test_other_digits_ignored( self, prompter: Mock, helper: Mock, handler: Mock ) -> None:
		flow = RecordingFlow( prompter, mailbox_number = '1000' )
		flow.handle( 'load_mailbox_helper', helper )
		press( flow, '5#' )
		await flow.join()
		assert flow.state == State.MENU
		handler.record.assert_not_awaited()

	@pytest.mark.asyncio
	async def test_record_interrupts_prompt( self, prompter: Mock, helper: Mock, handler: Mock ) -> None:
		flow = await recording( prompter, helper )
		prompter.interrupt.assert_awaited()
		assert flow.message is not None
		handler.record.assert_awaited_once_with( flow.message )


class TestRecordingMessage:
	@pytest.mark.asyncio
	async def test_stop_then_confirm( self, prompter: Mock, helper: Mock, handler: Mock ) -> None:
		flow = await recording( prompter, helper )
		flow.handle( 'recording_started', NAME )
		press( flow, '#' )
		await flow.join()
		handler.stop_recording.assert_awaited_once_with( NAME )
		assert flow.state == State.RECORDING_MESSAGE
		flow.handle( 'recording_finished', NAME, 12 )
		assert flow.state == State.WAITING_FOR_CONFIRMATION
		message = flow.message
		assert message is not None and message.duration == 12
		press( flow, '2' )
		await flow.join()
		handler.save.assert_awaited_once_with( message, mwi = True )
		assert flow.state == State.MENU
		assert flow.message is None
		prompter.play.assert_awaited_with(
			prompts.MESSAGE_SAVED,
			prompts.press( prompts.RECORD, prompts.TO_LEAVE_A_MESSAGE ),
		)

	@pytest.mark.asyncio
	async def test_other_recordings_ignored( self, prompter: Mock, helper: Mock ) -> None:
		flow = await recording( prompter, helper )
		flow.handle( 'recording_finished', 'voicemail/someone/else', 5 )
		assert flow.state == State.RECORDING_MESSAGE

	@pytest.mark.asyncio
	async def test_cancel( self, prompter: Mock, helper: Mock, handler: Mock ) -> None:
		flow = await recording( prompter, helper )
		press( flow, '7' )
		await flow.join()
		handler.cancel_recording.assert_awaited_once_with( NAME )
		assert flow.state == State.MENU
		assert flow.message is None
		# a late finish for the cancelled recording changes nothing
		flow.handle( 'recording_finished', NAME, 3 )
		assert flow.state == State.MENU

	@pytest.mark.asyncio
	async def test_digits_wait_for_confirmation( self, prompter: Mock, helper: Mock, handler: Mock ) -> None:
		flow = await recording( prompter, helper )
		press( flow, '2' )
		assert flow.deferred == [ ( 'waiting_for_confirmation', 'dtmf', ( '2', )) ]
		flow.handle( 'recording_finished', NAME, 4 )
		await flow.join()
		handler.save.assert_awaited_once()
		assert flow.state == State.MENU

	@pytest.mark.asyncio
	async def test_failed_recording( self, prompter: Mock, helper: Mock, handler: Mock ) -> None:
		flow = await recording( prompter, helper )
		flow.handle( 'recording_finished', NAME, None )
		await flow.join()
		assert flow.state == State.MENU
		assert flow.message is None
		handler.save.assert_not_awaited()


class TestWaitingForConfirmation:
	@pytest.mark.asyncio
	async def test_discard( self, prompter: Mock, helper: Mock, handler: Mock ) -> None:
		flow = await recording( prompter, helper )
		flow.handle( 'recording_finished', NAME, 4 )
		press( flow, '7' )
		await flow.join()
		handler.discard_recording.assert_awaited_once_with( NAME )
		handler.save.assert_not_awaited()
		assert flow.state == State.MENU

	@pytest.mark.asyncio
	async def test_rerecord( self, prompter: Mock, helper: Mock, handler: Mock ) -> None:
		''' other digits wait for the menu, where 1 records again '''
		flow = await recording( prompter, helper )
		flow.handle( 'recording_finished', NAME, 4 )
		press( flow, '17' )
		await flow.join()
		assert flow.state == State.RECORDING_MESSAGE
		assert handler.record.await_count == 2


class TestStop:
	@pytest.mark.asyncio
	async def test_hangup_while_saving( self, prompter: Mock, helper: Mock, handler: Mock ) -> None:
		flow = await recording( prompter, helper )
		flow.handle( 'recording_finished', NAME, 4 )
		press( flow, '2' )
		flow.stop()
		await flow.join()
		handler.save.assert_awaited_once()
		assert flow.state == State.WAITING_FOR_CONFIRMATION
		press( flow, '1' )
		assert flow.state == State.WAITING_FOR_CONFIRMATION
