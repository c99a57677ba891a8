# stdlib imports:
import logging
from pathlib import Path
from typing_extensions import Literal

# 3rd-party imports:
import aiofiles.os # pip install aiofiles

# local imports:
from ari import ARI

logger = logging.getLogger( __name__ )

CAUSE = Literal['normal','busy','congestion','no_answer','timeout','rejected','unallocated']
causes =       ('normal','busy','congestion','no_answer','timeout','rejected','unallocated')

async def answer( ari: ARI, channel_id: str, source: str ) -> bool:
	log = logger.getChild( 'answer' )
	log.info( 'answering %r from %s', channel_id, source )
	try:
		await ari.answer( channel_id )
	except ARI.NotFound:
		log.warning( 'channel %r is gone', channel_id )
		return False
	return True

async def hangup( ari: ARI, channel_id: str, cause: CAUSE, source: str ) -> bool:
	log = logger.getChild( 'hangup' )
	log.info( 'hangup %r with cause=%r from %r', channel_id, cause, source )
	assert cause in causes, f'invalid cause={cause!r}'
	try:
		await ari.hangup( channel_id, cause )
	except ARI.NotFound:
		log.debug( 'channel %r already gone', channel_id )
		return False
	return True

async def mkdir( path: Path, *, mode: int = 0o775, parents: bool = False, exist_ok: bool = False ) -> None:
	if parents and not path.parent.is_dir():
		await mkdir( path.parent, mode = mode, parents = parents, exist_ok = exist_ok )
	try:
		await aiofiles.os.mkdir( str( path ), mode = mode )
	except FileExistsError:
		if exist_ok:
			return
		raise

async def mkdirp( path: Path, *, mode: int = 0o775, exist_ok: bool = True ) -> None:
	await mkdir( path, mode = mode, parents = True, exist_ok = exist_ok )
