# stdlib imports:
from pathlib import Path
from typing import Dict, Optional as Opt

# 3rd-party imports:
import pytest # pip install pytest

# local imports:
from conftest import at, ids
import repo
import vm_store
from vm_messages import Message
from vm_models import Context, ContextConfig, Folder, Folders, Mailbox, MailboxConfig
from vm_store import DataAccess, create_repositories

@pytest.fixture
def store( tmp_path: Path ) -> DataAccess:
	config = repo.Config( sqlite_path = tmp_path / 'voicemail.sqlite' )
	return DataAccess( create_repositories( repo.RepoSqlite, config, auditing = False ))

class Seeded:
	''' one context with mailbox 1000 and two folders '''
	context: Context
	mailbox: Mailbox
	folders: Folders

	def message( self, read: bool, seconds: int, folder: str = '0' ) -> Message:
		dest = self.folders.get( folder )
		assert dest is not None
		return Message(
			mailbox = self.mailbox,
			folder = dest,
			date = at( seconds ),
			read = read,
			recording = f'voicemail/{self.mailbox.id}/{seconds}',
		)

async def seed( store: DataAccess ) -> Seeded:
	seeded = Seeded()
	seeded.context = await store.save_context( Context( domain = 'domain.com' ))
	seeded.mailbox = await store.save_mailbox( Mailbox( context = seeded.context, mailbox_number = '1000', password = 'pass' ))
	for folder in ( Folder( 'Old', 'sound:vm-Old', '1' ), Folder( 'INBOX', 'sound:vm-INBOX', '0' )):
		await store.save_folder( folder )
	seeded.folders = await store.get_folders()
	return seeded


class TestContexts:
	@pytest.mark.asyncio
	async def test_save_and_get( self, store: DataAccess ) -> None:
		context = await store.save_context( Context( domain = 'b.com' ))
		await store.save_context( Context( domain = 'a.com' ))
		assert context.id
		found = await store.get_context( 'b.com' )
		assert found == context
		assert await store.get_context( 'nope.com' ) is None
		assert [ c.domain for c in await store.get_contexts() ] == [ 'a.com', 'b.com' ]

	@pytest.mark.asyncio
	async def test_resave_updates( self, store: DataAccess ) -> None:
		context = await store.save_context( Context( domain = 'old.com' ))
		id = context.id
		context.domain = 'new.com'
		await store.save_context( context )
		assert context.id == id
		assert await store.get_context( 'old.com' ) is None
		assert ( await store.get_contexts() ) == [ context ]


class TestMailboxes:
	@pytest.mark.asyncio
	async def test_scoped_to_context( self, store: DataAccess ) -> None:
		s = await seed( store )
		other = await store.save_context( Context( domain = 'other.com' ))
		found = await store.get_mailbox( '1000', s.context )
		assert found is not None and found.id == s.mailbox.id and found.password == 'pass'
		assert await store.get_mailbox( '1000', other ) is None
		assert await store.get_mailbox( '2000', s.context ) is None

	@pytest.mark.asyncio
	async def test_list_ordered_by_number( self, store: DataAccess ) -> None:
		s = await seed( store )
		await store.save_mailbox( Mailbox( context = s.context, mailbox_number = '0999' ))
		assert [ m.mailbox_number for m in await store.get_mailboxes( s.context ) ] == [ '0999', '1000' ]


class TestFolders:
	@pytest.mark.asyncio
	async def test_inbox_is_lowest_dtmf( self, store: DataAccess ) -> None:
		s = await seed( store )
		assert s.folders.inbox.name == 'INBOX'
		assert [ f.dtmf for f in s.folders ] == [ '0', '1' ]


class TestConfig:
	@pytest.mark.asyncio
	async def test_mailbox_overrides_context( self, store: DataAccess ) -> None:
		s = await seed( store )
		await store.save_context_config( ContextConfig( context = s.context, key = 'max_silence_seconds', value = '5' ))
		await store.save_context_config( ContextConfig( context = s.context, key = 'beep', value = 'no' ))
		await store.save_mailbox_config( MailboxConfig( mailbox = s.mailbox, key = 'max_silence_seconds', value = '3' ))
		config = await store.get_config( s.mailbox, { 'max_silence_seconds': 10, 'max_duration_seconds': 180 } )
		assert config.get_int( 'max_silence_seconds' ) == 3
		assert config.get_int( 'max_duration_seconds' ) == 180
		assert not config.get_bool( 'beep', True )

	@pytest.mark.asyncio
	async def test_delete_option( self, store: DataAccess ) -> None:
		s = await seed( store )
		option = await store.save_mailbox_config( MailboxConfig( mailbox = s.mailbox, key = 'beep', value = 'no' ))
		await store.delete_mailbox_config( option )
		assert await store.get_mailbox_config( s.mailbox ) == []


class TestMessages:
	@pytest.mark.asyncio
	async def test_get_messages_in_batches( self, store: DataAccess, monkeypatch: pytest.MonkeyPatch ) -> None:
		monkeypatch.setattr( vm_store, 'BATCH_SIZE', 2 )
		s = await seed( store )
		by_seconds: Dict[int,Opt[str]] = {}
		for read, seconds in ( ( True, 50 ), ( False, 10 ), ( False, 30 ), ( True, 20 ), ( False, 40 )):
			by_seconds[seconds] = ( await store.save_message( s.message( read, seconds ))).id
		await store.save_message( s.message( False, 60, folder = '1' ))
		messages = await store.get_messages( s.mailbox, s.folders.inbox )
		assert ids( messages ) == [ by_seconds[n] for n in ( 40, 30, 10, 50, 20 ) ]
		assert ( messages.count_new, messages.count_old ) == ( 3, 2 )
		assert messages.latest == at( 50 )

	@pytest.mark.asyncio
	async def test_latest_only_newer( self, store: DataAccess ) -> None:
		s = await seed( store )
		for seconds in ( 10, 20, 30 ):
			await store.save_message( s.message( False, seconds ))
		latest = await store.get_latest_messages( s.mailbox, s.folders.inbox, at( 20 ))
		assert [ m.date for m in latest ] == [ at( 30 ) ]
		assert latest[0].folder is s.folders.inbox

	@pytest.mark.asyncio
	async def test_save_updates_in_place( self, store: DataAccess ) -> None:
		s = await seed( store )
		message = await store.save_message( s.message( False, 10 ))
		id = message.id
		message.read = True
		message.folder = s.folders.get( '1' ) or s.folders.inbox
		await store.save_message( message )
		assert message.id == id
		assert len( await store.get_messages( s.mailbox, s.folders.inbox )) == 0
		moved = await store.get_messages( s.mailbox, message.folder )
		assert ids( moved ) == [ id ]
		assert moved.count_old == 1

	@pytest.mark.asyncio
	async def test_delete( self, store: DataAccess ) -> None:
		s = await seed( store )
		message = await store.save_message( s.message( False, 10 ))
		await store.delete_message( message )
		assert len( await store.get_messages( s.mailbox, s.folders.inbox )) == 0


class TestCascade:
	@pytest.mark.asyncio
	async def test_delete_context( self, store: DataAccess ) -> None:
		s = await seed( store )
		await store.save_message( s.message( False, 10 ))
		await store.save_mailbox_config( MailboxConfig( mailbox = s.mailbox, key = 'beep', value = 'no' ))
		await store.save_context_config( ContextConfig( context = s.context, key = 'beep', value = 'no' ))
		await store.delete_context( s.context )
		assert await store.get_context( 'domain.com' ) is None
		assert await store.repos.mailboxes.count() == 0
		assert await store.repos.messages.count() == 0
		assert await store.repos.mailbox_config.count() == 0
		assert await store.repos.context_config.count() == 0
		# folders are global
		assert len( await store.get_folders() ) == 2
