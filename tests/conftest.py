# stdlib imports:
import datetime
from typing import Any, List, Optional as Opt
from unittest.mock import AsyncMock, Mock

# 3rd-party imports:
import pytest # pip install pytest

# local imports:
from vm_handlers import Channel, MailboxHelper, MessageHandler
from vm_messages import Message, MessageList
from vm_models import Config, Context, Folder, Folders, Mailbox

UTC = datetime.timezone.utc

def at( seconds: int ) -> datetime.datetime:
	return datetime.datetime( 2024, 1, 1, tzinfo = UTC ) + datetime.timedelta( seconds = seconds )

CONTEXT = Context( domain = 'domain.com', id = 'ctx1' )
INBOX = Folder( name = 'INBOX', recording = 'sound:vm-INBOX', dtmf = '0', id = 'f0' )
OLD = Folder( name = 'Old', recording = 'sound:vm-Old', dtmf = '1', id = 'f1' )
WORK = Folder( name = 'Work', recording = 'sound:vm-Work', dtmf = '2', id = 'f2' )

def make_mailbox( number: str = '1000', password: Opt[str] = 'pass' ) -> Mailbox:
	return Mailbox( context = CONTEXT, mailbox_number = number, password = password, id = f'mb{number}' )

def make_message( id: str, read: bool, seconds: int, folder: Folder = INBOX ) -> Message:
	return Message(
		mailbox = make_mailbox(),
		folder = folder,
		date = at( seconds ),
		read = read,
		recording = f'voicemail/mb1000/{id}',
		id = id,
	)

def ids( messages: Any ) -> List[str]:
	return [ message.id for message in messages ]

@pytest.fixture
def folders() -> Folders:
	return Folders([ INBOX, OLD, WORK ])

@pytest.fixture
def prompter() -> Mock:
	prompter = Mock()
	prompter.play = AsyncMock( return_value = None )
	prompter.interrupt = AsyncMock()
	prompter.owns = Mock( return_value = False )
	return prompter

@pytest.fixture
def handler( folders: Folders ) -> Mock:
	''' MessageHandler stand-in, folder bookkeeping is real '''
	handler = Mock( spec = MessageHandler )
	handler.folders = folders
	handler.current_folder = folders.inbox
	handler.get_folders = Mock( return_value = folders )
	handler.new_message = Mock( side_effect = lambda: Message(
		mailbox = make_mailbox(),
		folder = INBOX,
		recording = 'voicemail/mb1000/new',
	))
	for name in (
		'record', 'stop_recording', 'cancel_recording', 'discard_recording',
		'stop', 'delete', 'move_to_folder', 'change_folder',
	):
		setattr( handler, name, AsyncMock() )
	handler.save = AsyncMock( side_effect = lambda message, mwi = False: message )
	handler.play = AsyncMock( return_value = 'playback-1' )
	handler.get_latest_messages = AsyncMock( return_value = [] )
	handler.get_messages = AsyncMock( return_value = MessageList() )
	handler.move_to_folder = AsyncMock( return_value = True )
	return handler

@pytest.fixture
def helper( handler: Mock ) -> Mock:
	''' a MailboxHelper with mailbox 1000 already loaded '''
	helper = Mock( spec = MailboxHelper )
	helper.context = CONTEXT
	helper.mailbox = make_mailbox()
	helper.message_handler = handler
	helper.config = Config( {} )
	helper.account_handler = Mock()
	helper.account_handler.get_mailbox = AsyncMock( return_value = None )
	helper.account_handler.authorize = Mock( return_value = False )
	helper.load_mailbox = AsyncMock()
	helper.hangup = AsyncMock()
	return helper

@pytest.fixture
def unresolved_helper( helper: Mock, handler: Mock ) -> Mock:
	''' a MailboxHelper whose mailbox still has to be entered by the caller '''
	helper.mailbox = None
	helper.message_handler = None
	async def load_mailbox( mailbox: Mailbox ) -> None:
		helper.mailbox = mailbox
		helper.message_handler = handler
	helper.load_mailbox = AsyncMock( side_effect = load_mailbox )
	return helper

@pytest.fixture
def channel() -> Channel:
	return Channel( id = 'chan-1', caller_name = 'Alice', caller_number = '5551212' )

def press( flow: Any, digits: str ) -> None:
	for digit in digits:
		flow.handle( 'dtmf', digit )
