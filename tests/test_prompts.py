# stdlib imports:
import asyncio
from unittest.mock import AsyncMock, Mock

# 3rd-party imports:
import pytest # pip install pytest

# local imports:
from ari import ARI
import vm_prompts as prompts
from vm_prompts import Prompter

@pytest.fixture
def ari() -> Mock:
	ari = Mock()
	ari.play = AsyncMock()
	ari.stop_playback = AsyncMock()
	return ari


def test_press() -> None:
	assert prompts.press( prompts.DELETE, prompts.TO_DELETE_THIS_MESSAGE ) == [
		prompts.TO_DELETE_THIS_MESSAGE, prompts.PRESS, 'sound:digits/7',
	]
	assert prompts.press( prompts.BACK ) == [ prompts.PRESS, prompts.STAR ]
	assert prompts.digits_audio( '1#' ) == [ 'sound:digits/1', prompts.POUND ]


class TestPrompter:
	@pytest.mark.asyncio
	async def test_play_flattens_playlist( self, ari: Mock ) -> None:
		prompter = Prompter( ari, 'chan-1' )
		playback_id = await prompter.play( prompts.MESSAGE_SAVED, prompts.press( prompts.RECORD, prompts.TO_LEAVE_A_MESSAGE ))
		assert playback_id is not None
		assert prompter.owns( playback_id )
		ari.play.assert_awaited_once_with( 'chan-1', [
			prompts.MESSAGE_SAVED, prompts.TO_LEAVE_A_MESSAGE, prompts.PRESS, 'sound:digits/1',
		], playback_id )

	@pytest.mark.asyncio
	async def test_new_prompt_stops_the_old_one( self, ari: Mock ) -> None:
		prompter = Prompter( ari, 'chan-1' )
		first = await prompter.play( prompts.ENTER_MAILBOX )
		second = await prompter.play( prompts.ENTER_PASSWORD )
		assert first != second
		ari.stop_playback.assert_awaited_once_with( first )
		assert prompter.playback_id == second

	@pytest.mark.asyncio
	async def test_empty_playlist_only_interrupts( self, ari: Mock ) -> None:
		prompter = Prompter( ari, 'chan-1' )
		first = await prompter.play( prompts.ENTER_MAILBOX )
		assert await prompter.play() is None
		ari.stop_playback.assert_awaited_once_with( first )
		ari.play.assert_awaited_once()

	@pytest.mark.asyncio
	async def test_interrupt_tolerates_finished_prompt( self, ari: Mock ) -> None:
		prompter = Prompter( ari, 'chan-1' )
		await prompter.play( prompts.ENTER_MAILBOX )
		ari.stop_playback.side_effect = ARI.NotFound( 'done' )
		await prompter.interrupt()
		assert prompter.playback_id is None
		await prompter.interrupt()
		ari.stop_playback.assert_awaited_once()

	@pytest.mark.asyncio
	async def test_wait_until_finished( self, ari: Mock ) -> None:
		prompter = Prompter( ari, 'chan-1' )
		task = asyncio.create_task( prompter.play( prompts.GOODBYE, wait = True ))
		while prompter.playback_id is None:
			await asyncio.sleep( 0 )
		assert not task.done()
		playback_id = prompter.playback_id
		prompter.finished( playback_id )
		assert await asyncio.wait_for( task, timeout = 5 ) == playback_id
		assert prompter.playback_id is None

	@pytest.mark.asyncio
	async def test_failed_play( self, ari: Mock ) -> None:
		prompter = Prompter( ari, 'chan-1' )
		ari.play.side_effect = ARI.SoftError( 'channel not in stasis' )
		assert await prompter.play( prompts.GOODBYE, wait = True ) is None
		assert prompter.playback_id is None

	@pytest.mark.asyncio
	async def test_close_wakes_waiters( self, ari: Mock ) -> None:
		prompter = Prompter( ari, 'chan-1' )
		task = asyncio.create_task( prompter.play( prompts.GOODBYE, wait = True ))
		while prompter.playback_id is None:
			await asyncio.sleep( 0 )
		playback_id = prompter.playback_id
		prompter.close()
		assert await asyncio.wait_for( task, timeout = 5 ) == playback_id
		assert await prompter.play( prompts.ENTER_MAILBOX, wait = True ) is None
		ari.play.assert_awaited_once()
