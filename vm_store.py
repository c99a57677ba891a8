# stdlib imports:
import asyncio
from dataclasses import dataclass
import datetime
import logging
import math
from typing import Any, Dict, List, Optional as Opt, Tuple, Type
from uuid import uuid4

# local imports:
import auditing
import repo
from repo import AsyncRepository, SqlDateTime, SqlInteger, SqlText, SqlVarChar
from vm_messages import Message, MessageList
from vm_models import (
	Config, Context, ContextConfig, Folder, Folders, Mailbox, MailboxConfig,
)

logger = logging.getLogger( __name__ )

BATCH_SIZE = 50
MESSAGE_ORDER = 'read,-date,id' # unread ( 'N' ) before read ( 'Y' ), newest first, id keeps paging stable

def _id() -> repo.REPOID:
	return uuid4().hex

def _key( size: int = 32 ) -> SqlVarChar:
	return SqlVarChar( 'id', size = size, null = False, primary = True )

def _ref( name: str ) -> SqlVarChar:
	return SqlVarChar( name, size = 32, null = False, index = True )

TABLES: Dict[str,List[repo.SqlBase]] = {
	'vm_context': [
		_key(),
		SqlVarChar( 'domain', size = 255, null = False, unique = True ),
	],
	'vm_mailbox': [
		_key(),
		SqlVarChar( 'mailbox_number', size = 64, null = False, index = True ),
		SqlVarChar( 'mailbox_name', size = 255, null = True ),
		_ref( 'context_id' ),
		SqlVarChar( 'password', size = 255, null = True ),
		SqlVarChar( 'name', size = 255, null = True ),
		SqlVarChar( 'email', size = 255, null = True ),
		SqlText( 'greeting_away', null = True ),
		SqlText( 'greeting_busy', null = True ),
		SqlText( 'greeting_name', null = True ),
	],
	'vm_folder': [
		_key(),
		SqlVarChar( 'name', size = 64, null = False ),
		SqlText( 'recording', null = True ),
		SqlVarChar( 'dtmf', size = 1, null = False, unique = True ),
	],
	'vm_message': [
		_key(),
		_ref( 'mailbox_id' ),
		SqlText( 'recording', null = True ),
		SqlVarChar( 'read', size = 1, null = False ),
		SqlDateTime( 'date', null = False, index = True ),
		SqlVarChar( 'original_mailbox', size = 64, null = True ),
		SqlVarChar( 'caller_id', size = 255, null = True ),
		SqlInteger( 'duration', size = 9, null = True ),
		_ref( 'folder_id' ),
	],
	'vm_context_config': [
		_key(),
		_ref( 'context_id' ),
		SqlVarChar( 'key', size = 64, null = False ),
		SqlText( 'value', null = True ),
	],
	'vm_mailbox_config': [
		_key(),
		_ref( 'mailbox_id' ),
		SqlVarChar( 'key', size = 64, null = False ),
		SqlText( 'value', null = True ),
	],
}

@dataclass
class Repos:
	contexts: AsyncRepository
	mailboxes: AsyncRepository
	folders: AsyncRepository
	messages: AsyncRepository
	context_config: AsyncRepository
	mailbox_config: AsyncRepository

def create_repositories( repo_cls: Type[repo.Repository], config: repo.Config, *, auditing: bool = True ) -> Repos:
	log = logger.getChild( 'create_repositories' )
	log.debug( 'using %s repositories', repo_cls.type )
	def _repo( tablename: str ) -> AsyncRepository:
		return AsyncRepository( repo_cls( config, tablename, TABLES[tablename], auditing = auditing ))
	return Repos(
		contexts = _repo( 'vm_context' ),
		mailboxes = _repo( 'vm_mailbox' ),
		folders = _repo( 'vm_folder' ),
		messages = _repo( 'vm_message' ),
		context_config = _repo( 'vm_context_config' ),
		mailbox_config = _repo( 'vm_mailbox_config' ),
	)

#region row mapping

def _yn( value: bool ) -> str:
	return 'Y' if value else 'N'

def context_from_row( id: repo.REPOID, row: Dict[str,Any] ) -> Context:
	return Context( id = id, domain = row['domain'] )

def mailbox_from_row( id: repo.REPOID, row: Dict[str,Any], context: Context ) -> Mailbox:
	return Mailbox(
		id = id,
		context = context,
		mailbox_number = row['mailbox_number'],
		mailbox_name = row.get( 'mailbox_name' ),
		password = row.get( 'password' ),
		name = row.get( 'name' ),
		email = row.get( 'email' ),
		greeting_away = row.get( 'greeting_away' ),
		greeting_busy = row.get( 'greeting_busy' ),
		greeting_name = row.get( 'greeting_name' ),
	)

def mailbox_to_row( mailbox: Mailbox ) -> Dict[str,Any]:
	assert mailbox.context.id, f'context {mailbox.context.domain!r} was never saved'
	return {
		'mailbox_number': mailbox.mailbox_number,
		'mailbox_name': mailbox.mailbox_name,
		'context_id': mailbox.context.id,
		'password': mailbox.password,
		'name': mailbox.name,
		'email': mailbox.email,
		'greeting_away': mailbox.greeting_away,
		'greeting_busy': mailbox.greeting_busy,
		'greeting_name': mailbox.greeting_name,
	}

def folder_from_row( id: repo.REPOID, row: Dict[str,Any] ) -> Folder:
	return Folder( id = id, name = row['name'], recording = row.get( 'recording' ), dtmf = row['dtmf'] )

def message_from_row( id: repo.REPOID, row: Dict[str,Any], mailbox: Mailbox, folder: Folder ) -> Message:
	return Message(
		id = id,
		mailbox = mailbox,
		folder = folder,
		recording = row.get( 'recording' ),
		read = row.get( 'read' ) == 'Y',
		date = row['date'],
		original_mailbox = row.get( 'original_mailbox' ),
		caller_id = row.get( 'caller_id' ),
		duration = row.get( 'duration' ),
	)

def message_to_row( message: Message ) -> Dict[str,Any]:
	assert message.mailbox.id, f'mailbox {message.mailbox.mailbox_number!r} was never saved'
	assert message.folder.id, f'folder {message.folder.name!r} was never saved'
	return {
		'mailbox_id': message.mailbox.id,
		'recording': message.recording,
		'read': _yn( message.read ),
		'date': message.date,
		'original_mailbox': message.original_mailbox,
		'caller_id': message.caller_id,
		'duration': message.duration,
		'folder_id': message.folder.id,
	}

#endregion row mapping

class DataAccess:
	''' voicemail persistence: every entity is inserted on its first save and updated after that '''
	def __init__( self, repos: Repos, *, audit: Opt[auditing.Audit] = None ) -> None:
		self.repos = repos
		self.audit = audit or auditing.NoAudit()

	async def _save( self, table: AsyncRepository, id: Opt[repo.REPOID], row: Dict[str,Any] ) -> repo.REPOID:
		if id is None:
			id = _id()
			await table.create( id, row, audit = self.audit )
		else:
			await table.update( id, row, audit = self.audit )
		return id

	#region contexts

	async def get_context( self, domain: str ) -> Opt[Context]:
		rows = await self.repos.contexts.list( { 'domain': domain }, limit = 1 )
		for id, row in rows:
			return context_from_row( id, row )
		return None

	async def get_contexts( self ) -> List[Context]:
		rows = await self.repos.contexts.list( orderby = 'domain' )
		return [ context_from_row( id, row ) for id, row in rows ]

	async def save_context( self, context: Context ) -> Context:
		context.id = await self._save( self.repos.contexts, context.id, { 'domain': context.domain } )
		return context

	async def delete_context( self, context: Context ) -> None:
		log = logger.getChild( 'DataAccess.delete_context' )
		assert context.id, f'context {context.domain!r} was never saved'
		rows = await self.repos.mailboxes.list( { 'context_id': context.id } )
		await asyncio.gather( *(
			self.delete_mailbox( mailbox_from_row( id, row, context ))
			for id, row in rows
		))
		await self.repos.context_config.delete_where( { 'context_id': context.id }, audit = self.audit )
		await self.repos.contexts.delete( context.id, audit = self.audit )
		log.info( 'deleted context %r and %r mailboxes', context.domain, len( rows ))

	#endregion contexts
	#region mailboxes

	async def get_mailbox( self, mailbox_number: str, context: Context ) -> Opt[Mailbox]:
		assert context.id, f'context {context.domain!r} was never saved'
		rows = await self.repos.mailboxes.list( {
			'mailbox_number': mailbox_number,
			'context_id': context.id,
		}, limit = 1 )
		for id, row in rows:
			return mailbox_from_row( id, row, context )
		return None

	async def get_mailboxes( self, context: Context ) -> List[Mailbox]:
		assert context.id, f'context {context.domain!r} was never saved'
		rows = await self.repos.mailboxes.list( { 'context_id': context.id }, orderby = 'mailbox_number' )
		return [ mailbox_from_row( id, row, context ) for id, row in rows ]

	async def save_mailbox( self, mailbox: Mailbox ) -> Mailbox:
		mailbox.id = await self._save( self.repos.mailboxes, mailbox.id, mailbox_to_row( mailbox ))
		return mailbox

	async def delete_mailbox( self, mailbox: Mailbox ) -> None:
		assert mailbox.id, f'mailbox {mailbox.mailbox_number!r} was never saved'
		await asyncio.gather(
			self.repos.messages.delete_where( { 'mailbox_id': mailbox.id }, audit = self.audit ),
			self.repos.mailbox_config.delete_where( { 'mailbox_id': mailbox.id }, audit = self.audit ),
		)
		await self.repos.mailboxes.delete( mailbox.id, audit = self.audit )

	#endregion mailboxes
	#region folders

	async def get_folders( self ) -> Folders:
		rows = await self.repos.folders.list( orderby = 'dtmf' )
		return Folders( folder_from_row( id, row ) for id, row in rows )

	async def save_folder( self, folder: Folder ) -> Folder:
		folder.id = await self._save( self.repos.folders, folder.id, {
			'name': folder.name,
			'recording': folder.recording,
			'dtmf': folder.dtmf,
		})
		return folder

	async def delete_folder( self, folder: Folder ) -> None:
		assert folder.id, f'folder {folder.name!r} was never saved'
		await self.repos.messages.delete_where( { 'folder_id': folder.id }, audit = self.audit )
		await self.repos.folders.delete( folder.id, audit = self.audit )

	#endregion folders
	#region config

	async def get_context_config( self, context: Context ) -> List[ContextConfig]:
		assert context.id, f'context {context.domain!r} was never saved'
		rows = await self.repos.context_config.list( { 'context_id': context.id }, orderby = 'key' )
		return [
			ContextConfig( id = id, context = context, key = row['key'], value = row.get( 'value' ))
			for id, row in rows
		]

	async def get_mailbox_config( self, mailbox: Mailbox ) -> List[MailboxConfig]:
		assert mailbox.id, f'mailbox {mailbox.mailbox_number!r} was never saved'
		rows = await self.repos.mailbox_config.list( { 'mailbox_id': mailbox.id }, orderby = 'key' )
		return [
			MailboxConfig( id = id, mailbox = mailbox, key = row['key'], value = row.get( 'value' ))
			for id, row in rows
		]

	async def get_config( self, mailbox: Mailbox, defaults: Dict[str,Any] ) -> Config:
		context_config, mailbox_config = await asyncio.gather(
			self.get_context_config( mailbox.context ),
			self.get_mailbox_config( mailbox ),
		)
		return Config( defaults, context_config, mailbox_config )

	async def save_context_config( self, option: ContextConfig ) -> ContextConfig:
		assert option.context.id, f'context {option.context.domain!r} was never saved'
		option.id = await self._save( self.repos.context_config, option.id, {
			'context_id': option.context.id,
			'key': option.key,
			'value': option.value,
		})
		return option

	async def save_mailbox_config( self, option: MailboxConfig ) -> MailboxConfig:
		assert option.mailbox.id, f'mailbox {option.mailbox.mailbox_number!r} was never saved'
		option.id = await self._save( self.repos.mailbox_config, option.id, {
			'mailbox_id': option.mailbox.id,
			'key': option.key,
			'value': option.value,
		})
		return option

	async def delete_context_config( self, option: ContextConfig ) -> None:
		assert option.id, f'context option {option.key!r} was never saved'
		await self.repos.context_config.delete( option.id, audit = self.audit )

	async def delete_mailbox_config( self, option: MailboxConfig ) -> None:
		assert option.id, f'mailbox option {option.key!r} was never saved'
		await self.repos.mailbox_config.delete( option.id, audit = self.audit )

	#endregion config
	#region messages

	def _filters( self, mailbox: Mailbox, folder: Folder ) -> Dict[str,Any]:
		assert mailbox.id, f'mailbox {mailbox.mailbox_number!r} was never saved'
		assert folder.id, f'folder {folder.name!r} was never saved'
		return { 'mailbox_id': mailbox.id, 'folder_id': folder.id }

	async def get_latest_messages( self, mailbox: Mailbox, folder: Folder, since: datetime.datetime ) -> List[Message]:
		rows = await self.repos.messages.list(
			self._filters( mailbox, folder ),
			after = ( 'date', since ),
			orderby = MESSAGE_ORDER,
		)
		return [ message_from_row( id, row, mailbox, folder ) for id, row in rows ]

	async def _get_batch( self, mailbox: Mailbox, folder: Folder, offset: int ) -> List[Message]:
		rows = await self.repos.messages.list(
			self._filters( mailbox, folder ),
			orderby = MESSAGE_ORDER,
			limit = BATCH_SIZE,
			offset = offset,
		)
		return [ message_from_row( id, row, mailbox, folder ) for id, row in rows ]

	async def get_messages( self, mailbox: Mailbox, folder: Folder ) -> MessageList:
		log = logger.getChild( 'DataAccess.get_messages' )
		total = await self.repos.messages.count( self._filters( mailbox, folder ))
		batches = math.ceil( total / BATCH_SIZE )
		log.debug( 'mailbox %r folder %r has %r messages in %r batches', mailbox.mailbox_number, folder.name, total, batches )
		results: Tuple[List[Message],...] = tuple( await asyncio.gather( *(
			self._get_batch( mailbox, folder, batch * BATCH_SIZE )
			for batch in range( batches )
		)))
		messages = MessageList()
		for batch in results:
			messages.add( batch )
		return messages

	async def save_message( self, message: Message ) -> Message:
		message.id = await self._save( self.repos.messages, message.id, message_to_row( message ))
		return message

	async def delete_message( self, message: Message ) -> None:
		assert message.id, 'message was never saved'
		await self.repos.messages.delete( message.id, audit = self.audit )

	#endregion messages
