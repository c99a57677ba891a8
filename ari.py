from __future__ import annotations

# stdlib imports:
import asyncio
import datetime
import itertools
import json
import logging
import ssl
from typing import (
	Any, Callable, Dict, Iterable, List, Optional as Opt, Tuple, Union,
)
from typing_extensions import AsyncIterator
from urllib.parse import quote as urllib_quote, urlsplit, urlunsplit

# 3rd-party imports:
import aiohttp # pip install aiohttp
import certifi # pip install certifi

logger = logging.getLogger( __name__ )

DEBUG9 = 9

idgen = itertools.count()

def _q( s: str ) -> str:
	''' quote one path segment ( recording names contain slashes ) '''
	return urllib_quote( s, safe = '' )

def _bool( value: bool ) -> str:
	return 'true' if value else 'false'

class ARI:
	''' Asterisk REST Interface client: commands over http, events over a websocket '''
	_session: Opt[aiohttp.ClientSession] = None
	_ws: Opt[aiohttp.ClientWebSocketResponse] = None
	request_timeout = datetime.timedelta( seconds = 10 )

	class Disconnect( Exception ):
		pass

	class Error( Exception ):
		pass

	class SoftError( Error ):
		" asterisk refused the request, the connection is fine "

	class NotFound( SoftError ):
		" the channel, recording, playback or mailbox doesn't exist ( anymore ) "

	class HardError( Error ):
		" Errors that probably require you to close and reconnect "

	class AuthFailure( HardError ):
		pass

	class Event:
		when_event: datetime.datetime
		when_rcvd: datetime.datetime

		def __init__( self, data: Dict[str,Any] ) -> None:
			self.data = data
			self.when_rcvd = datetime.datetime.now( tz = datetime.timezone.utc )
			try:
				self.when_event = datetime.datetime.fromisoformat( str( data['timestamp'] ).replace( 'Z', '+00:00' ))
			except ( KeyError, ValueError ):
				self.when_event = self.when_rcvd

		@property
		def type( self ) -> str:
			return str( self.data.get( 'type' ) or '' )

		@property
		def application( self ) -> str:
			return str( self.data.get( 'application' ) or '' )

		@property
		def args( self ) -> List[str]:
			return [ str( arg ) for arg in self.data.get( 'args' ) or [] ]

		@property
		def channel( self ) -> Dict[str,Any]:
			return self.data.get( 'channel' ) or {}

		@property
		def channel_id( self ) -> Opt[str]:
			return self.channel.get( 'id' )

		@property
		def digit( self ) -> Opt[str]:
			return self.data.get( 'digit' )

		@property
		def recording( self ) -> Dict[str,Any]:
			return self.data.get( 'recording' ) or {}

		@property
		def playback( self ) -> Dict[str,Any]:
			return self.data.get( 'playback' ) or {}

		def on_yield( self ) -> None:
			pass

		def __repr__( self ) -> str:
			cls = type( self )
			return f'{cls.__module__}.{cls.__qualname__}({self.data!r})'

	class DisconnectEvent( Event ):
		def __init__( self ) -> None:
			super().__init__( { 'type': 'Disconnect' } )

		def on_yield( self ) -> None:
			raise ARI.Disconnect()

	class ErrorEvent( Event ):
		def __init__( self, exc: BaseException ) -> None:
			super().__init__( { 'type': 'Error' } )
			self.exc = exc

		def on_yield( self ) -> None:
			raise self.exc

	class Subscription:
		''' one consumer's view of the event stream '''
		def __init__( self, cli: ARI, predicate: Callable[[ARI.Event],bool] ) -> None:
			self.cli = cli
			self.predicate = predicate
			self.closed = False
			self._queue: asyncio.Queue[Opt[ARI.Event]] = asyncio.Queue()

		def accepts( self, event: ARI.Event ) -> bool:
			if isinstance( event, ( ARI.ErrorEvent, ARI.DisconnectEvent )):
				return True
			return self.predicate( event )

		def put( self, event: ARI.Event ) -> None:
			if not self.closed:
				self._queue.put_nowait( event )

		def fail( self, exc: BaseException ) -> None:
			self.put( ARI.ErrorEvent( exc ))

		def unsubscribe( self ) -> None:
			if self.closed:
				return
			self.closed = True
			self.cli._unsubscribe( self )
			self._queue.put_nowait( None )

		async def events( self ) -> AsyncIterator[ARI.Event]:
			while True:
				event = await self._queue.get()
				if event is None:
					return
				event.on_yield()
				yield event

	def __init__( self ) -> None:
		self.id = next( idgen )
		self.base_url = ''
		self.apps: List[str] = []
		self._auth: Opt[aiohttp.BasicAuth] = None
		self._ssl: Union[ssl.SSLContext,bool] = True
		self._subscriptions: List[ARI.Subscription] = []
		self._reader_alive = asyncio.Event()

	async def connect( self,
		url: str,
		user: str,
		pwd: str,
		apps: Iterable[str],
		*,
		timeout_seconds: Union[int,float] = 3,
		tls_check_hostname: bool = True,
		tls_cafile: Opt[str] = None,
	) -> None:
		log = logger.getChild( 'ARI.connect' )
		self.base_url = url.rstrip( '/' )
		self.apps = list( apps )
		assert self.apps, f'invalid apps={apps!r}'
		self._auth = aiohttp.BasicAuth( user, pwd )

		parts = urlsplit( self.base_url )
		if parts.scheme == 'https':
			ctx = ssl.create_default_context( cafile = tls_cafile or certifi.where() )
			ctx.check_hostname = tls_check_hostname
			self._ssl = ctx
		ws_url = urlunsplit((
			'wss' if parts.scheme == 'https' else 'ws',
			parts.netloc,
			f'{parts.path}/events',
			'',
			'',
		))

		self._session = aiohttp.ClientSession(
			auth = self._auth,
			timeout = aiohttp.ClientTimeout( total = self.request_timeout.total_seconds() ),
		)
		try:
			log.debug( 'connecting to %r apps=%r', ws_url, self.apps )
			self._ws = await self._session.ws_connect(
				ws_url,
				params = { 'app': ','.join( self.apps ), 'subscribeAll': 'false' },
				auth = self._auth,
				ssl = self._ssl,
				heartbeat = 30,
			)
		except aiohttp.WSServerHandshakeError as e:
			await self._close()
			if e.status == 401:
				raise ARI.AuthFailure( f'ARI refused credentials for user {user!r}' ) from None
			raise ARI.HardError( f'websocket handshake failed: {e!r}' ) from e
		except Exception:
			# connection wasn't entirely successful, so kill the session
			await self._close()
			raise

		asyncio.create_task( self._reader_task() )
		await asyncio.wait_for( self._reader_alive.wait(), timeout = timeout_seconds )
		log.info( 'connected to %r', self.base_url )

	def subscribe( self, predicate: Callable[[ARI.Event],bool] ) -> ARI.Subscription:
		sub = ARI.Subscription( self, predicate )
		self._subscriptions.append( sub )
		return sub

	def _unsubscribe( self, sub: ARI.Subscription ) -> None:
		try:
			self._subscriptions.remove( sub )
		except ValueError:
			pass

	def _publish( self, event: ARI.Event ) -> int:
		log = logger.getChild( 'ARI._publish' )
		count = 0
		for sub in list( self._subscriptions ):
			try:
				accepted = sub.accepts( event )
			except Exception:
				log.exception( 'subscription predicate failed for %r:', event.type )
				continue
			if accepted:
				sub.put( event )
				count += 1
		return count

	# BEGIN requests:

	async def _request( self,
		method: str,
		path: str,
		params: Opt[Dict[str,Any]] = None,
	) -> Any:
		log = logger.getChild( 'ARI._request' )
		session = self._session
		if session is None or session.closed:
			raise ARI.HardError( 'not connected' )
		url = f'{self.base_url}{path}'
		params_: List[Tuple[str,str]] = []
		for k, v in ( params or {} ).items():
			if v is None:
				continue
			params_.append(( k, _bool( v ) if isinstance( v, bool ) else str( v )))
		log.log( DEBUG9, '%s %s %r', method, url, params_ )
		try:
			async with session.request( method, url, params = params_, ssl = self._ssl ) as rsp:
				if rsp.status == 401:
					raise ARI.AuthFailure( f'{method} {path}: unauthorized' )
				if rsp.status == 404:
					raise ARI.NotFound( f'{method} {path}: {await rsp.text()}' )
				if rsp.status >= 400:
					raise ARI.SoftError( f'{method} {path}: {rsp.status} {await rsp.text()}' )
				if rsp.status == 204 or rsp.content_length == 0:
					return None
				return await rsp.json( content_type = None )
		except ( aiohttp.ClientConnectionError, asyncio.TimeoutError ) as e:
			raise ARI.HardError( f'{method} {path}: {e!r}' ) from e

	async def answer( self, channel_id: str ) -> None:
		await self._request( 'POST', f'/channels/{_q( channel_id )}/answer' )

	async def hangup( self, channel_id: str, reason: str = 'normal' ) -> None:
		await self._request( 'DELETE', f'/channels/{_q( channel_id )}', { 'reason': reason } )

	async def record( self,
		channel_id: str,
		name: str,
		*,
		format: str = 'wav',
		max_silence_seconds: int = 0,
		max_duration_seconds: int = 0,
		beep: bool = False,
		if_exists: str = 'fail',
		terminate_on: str = 'none',
	) -> Dict[str,Any]:
		assert max_silence_seconds >= 0, f'invalid max_silence_seconds={max_silence_seconds!r}'
		assert max_duration_seconds >= 0, f'invalid max_duration_seconds={max_duration_seconds!r}'
		return await self._request( 'POST', f'/channels/{_q( channel_id )}/record', {
			'name': name,
			'format': format,
			'maxSilenceSeconds': max_silence_seconds,
			'maxDurationSeconds': max_duration_seconds,
			'beep': beep,
			'ifExists': if_exists,
			'terminateOn': terminate_on,
		})

	async def stop_recording( self, name: str ) -> None:
		await self._request( 'POST', f'/recordings/live/{_q( name )}/stop' )

	async def cancel_recording( self, name: str ) -> None:
		''' stop a live recording and discard it '''
		await self._request( 'DELETE', f'/recordings/live/{_q( name )}' )

	async def delete_stored_recording( self, name: str ) -> None:
		await self._request( 'DELETE', f'/recordings/stored/{_q( name )}' )

	async def copy_stored_recording( self, name: str, destination: str ) -> Dict[str,Any]:
		return await self._request( 'POST', f'/recordings/stored/{_q( name )}/copy', {
			'destinationRecordingName': destination,
		})

	async def play( self, channel_id: str, media: Union[str,List[str]], playback_id: str ) -> Dict[str,Any]:
		if isinstance( media, str ):
			media = [ media ]
		assert media, 'nothing to play'
		return await self._request( 'POST', f'/channels/{_q( channel_id )}/play/{_q( playback_id )}', {
			'media': ','.join( media ),
		})

	async def stop_playback( self, playback_id: str ) -> None:
		await self._request( 'DELETE', f'/playbacks/{_q( playback_id )}' )

	async def get_mailbox( self, name: str ) -> Tuple[int,int]:
		''' returns ( old_messages, new_messages ) '''
		data = await self._request( 'GET', f'/mailboxes/{_q( name )}' ) or {}
		return int( data.get( 'old_messages' ) or 0 ), int( data.get( 'new_messages' ) or 0 )

	async def update_mailbox( self, name: str, old_messages: int, new_messages: int ) -> None:
		await self._request( 'PUT', f'/mailboxes/{_q( name )}', {
			'oldMessages': old_messages,
			'newMessages': new_messages,
		})

	# END requests

	async def _reader_task( self ) -> None:
		log = logger.getChild( 'ARI._reader_task' )
		log.log( DEBUG9, 'starting up' )
		self._reader_alive.set()
		ws = self._ws # if the websocket gets replaced by a new connect() this reader is done
		try:
			while ws is not None and ws is self._ws:
				try:
					msg = await ws.receive()
					if msg.type == aiohttp.WSMsgType.TEXT:
						log.log( DEBUG9, 'data=%r', msg.data )
						data = json.loads( msg.data )
						if isinstance( data, dict ):
							self._publish( ARI.Event( data ))
						else:
							log.warning( 'ignoring non-object event %r', data )
					elif msg.type in ( aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED ):
						log.debug( 'websocket closed' )
						self._publish( ARI.DisconnectEvent() )
						return
					elif msg.type == aiohttp.WSMsgType.ERROR:
						log.warning( 'websocket error: %r', ws.exception() )
						self._publish( ARI.ErrorEvent( ARI.HardError( repr( ws.exception() ))))
						return
				except json.JSONDecodeError as e:
					log.warning( 'unparseable event: %r', e )
				except Exception as e:
					log.exception( 'Unexpected error:' )
					self._publish( ARI.ErrorEvent( ARI.HardError( repr( e )).with_traceback( e.__traceback__ )))
					return
		finally:
			self._reader_alive.clear()

	@property
	def closed( self ) -> bool:
		return self._session is None

	async def close( self ) -> None:
		log = logger.getChild( 'ARI.close' )
		try:
			await self._close()
		except Exception as e:
			log.warning( 'Error trying to shut down connection: %r', e )
		for sub in list( self._subscriptions ):
			sub.unsubscribe()

	async def _close( self ) -> None:
		ws, self._ws = self._ws, None
		session, self._session = self._session, None
		if ws is not None:
			await ws.close()
		if session is not None:
			await session.close()

	def __del__( self ) -> None:
		log = logger.getChild( 'ARI.__del__' )
		if self._session is not None:
			log.warning( 'ARI id=%r deleted without being closed first', self.id )
