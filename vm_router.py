# stdlib imports:
import logging
from typing import Optional as Opt

# local imports:
from ari import ARI
from vm_fsm import Fsm
from vm_prompts import Prompter

logger = logging.getLogger( __name__ )

HANGUP_EVENTS = ( 'ChannelHangupRequest', 'StasisEnd', 'ChannelDestroyed' )
CHANNEL_EVENTS = ( 'ChannelDtmfReceived', *HANGUP_EVENTS )
RECORDING_EVENTS = ( 'RecordingStarted', 'RecordingFinished', 'RecordingFailed' )
PLAYBACK_EVENTS = ( 'PlaybackStarted', 'PlaybackFinished' )

class EventRouter:
	''' feeds one call's ARI events to its flow

	events for other channels never get past the subscription's predicate
	'''
	def __init__( self, ari: ARI, channel_id: str, flow: Fsm, prompter: Opt[Prompter] = None ) -> None:
		self.ari = ari
		self.channel_id = channel_id
		self.target_uri = f'channel:{channel_id}'
		self.flow = flow
		self.prompter = prompter
		self.subscription = ari.subscribe( self.accepts )
		flow.on_failure = self.subscription.fail
		flow.add_stop_callback( self.subscription.unsubscribe )

	def accepts( self, event: ARI.Event ) -> bool:
		if event.type in CHANNEL_EVENTS:
			return event.channel_id == self.channel_id
		if event.type in RECORDING_EVENTS:
			return event.recording.get( 'target_uri' ) == self.target_uri
		if event.type in PLAYBACK_EVENTS:
			return event.playback.get( 'target_uri' ) == self.target_uri
		return False

	async def run( self ) -> None:
		log = logger.getChild( 'EventRouter.run' )
		try:
			async for event in self.subscription.events():
				if not await self.dispatch( event ):
					break
		finally:
			log.debug( 'channel %r done', self.channel_id )
			self.flow.stop()
			self.subscription.unsubscribe()

	async def dispatch( self, event: ARI.Event ) -> bool:
		''' returns False once the call is over '''
		log = logger.getChild( 'EventRouter.dispatch' )
		flow = self.flow
		if event.type in HANGUP_EVENTS:
			log.info( 'channel %r: %s', self.channel_id, event.type )
			flow.stop()
			return False
		if event.type == 'ChannelDtmfReceived':
			digit = event.digit
			if not digit:
				log.warning( 'dtmf event without a digit: %r', event )
				return True
			if self.prompter is not None:
				await self.prompter.interrupt()
			flow.handle( 'dtmf', digit )
		elif event.type in RECORDING_EVENTS:
			recording = event.recording
			name = str( recording.get( 'name' ) or '' )
			if event.type == 'RecordingStarted':
				flow.handle( 'recording_started', name )
			elif event.type == 'RecordingFinished':
				duration = recording.get( 'duration' )
				flow.handle( 'recording_finished', name, int( duration or 0 ))
			else:
				log.warning( 'recording %r failed: %r', name, recording.get( 'cause' ))
				flow.handle( 'recording_finished', name, None )
		elif event.type in PLAYBACK_EVENTS:
			playback = event.playback
			playback_id = str( playback.get( 'id' ) or '' )
			media = str( playback.get( 'media_uri' ) or '' )
			if self.prompter is not None and self.prompter.owns( playback_id ):
				if event.type == 'PlaybackFinished':
					self.prompter.finished( playback_id )
				return True
			if event.type == 'PlaybackStarted':
				flow.handle( 'playing_started', playback_id, media )
			else:
				flow.handle( 'playing_finished', playback_id, media )
		return not flow.stopped
