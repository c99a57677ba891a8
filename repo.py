#region imports

from __future__ import annotations

# stdlib imports:
from abc import ABCMeta, abstractmethod
import asyncio
from contextlib import closing, contextmanager
from dataclasses import dataclass
import datetime
import logging
from pathlib import Path
import re
import sqlite3
from types import TracebackType
from typing import (
	Any, Callable, Iterator, Optional as Opt, Sequence as Seq, Tuple, Type,
	TypeVar, Union,
)

# 3rd-party imports:
import psycopg2 # pip install psycopg2
from typing_extensions import Literal, TypeAlias # pip install typing_extensions

# local imports:
import auditing

#endregion imports
#region globals/exceptions

logger = logging.getLogger( __name__ )

T = TypeVar( 'T' )

class ResourceAlreadyExists( Exception ):
	pass

class ResourceNotFound( Exception ):
	pass

#endregion globals/exceptions
#region connector


class Connector:
	''' holds the connections used by one unit of work, closes them all on exit '''
	pg_conns: dict[str,psycopg2.extensions.connection]
	sqlite_conns: dict[str,sqlite3.Connection]

	def __enter__( self ) -> Connector:
		self.pg_conns = {}
		self.sqlite_conns = {}
		return self

	def __exit__( self,
		exc_type: Opt[Type[BaseException]],
		exc_val: Opt[BaseException],
		exc_tb: Opt[TracebackType],
	) -> Literal[False]:
		log = logger.getChild( 'Connector.__exit__' )

		for pgcon in self.pg_conns.values():
			try:
				pgcon.close()
			except Exception:
				log.exception( 'Error closing postgres connection:' )
		del self.pg_conns

		for sql3con in self.sqlite_conns.values():
			try:
				sql3con.close()
			except Exception:
				log.exception( 'Error closing sqlite3 connection:' )
		del self.sqlite_conns

		return False

	def postgres( self,
		host: str,
		database: str,
		user: str,
		password: str,
		port: int,
		sslmode: PGSQL_SSLMODE,
		sslrootcert: Opt[Path],
	) -> psycopg2.extensions.connection:
		assert hasattr( self, 'pg_conns' ), 'Attempt to use Connector outside of with context'
		key = f'{host}:{port}:{database}'
		conn = self.pg_conns.get( key )
		if conn is None:
			conn = psycopg2.connect(
				host = host,
				database = database,
				user = user,
				password = password,
				port = port,
				sslmode = sslmode,
				sslrootcert = sslrootcert,
			)
			self.pg_conns[key] = conn
		return conn

	def sqlite( self, path: str ) -> sqlite3.Connection:
		assert hasattr( self, 'sqlite_conns' ), 'Attempt to use Connector outside of with context'
		conn = self.sqlite_conns.get( path )
		if conn is None:
			conn = sqlite3.connect( path )
			setattr( conn, 'row_factory', dict_factory )
			self.sqlite_conns[path] = conn
		return conn


#endregion connector
#region repo base


REPOID: TypeAlias = str
PGSQL_SSLMODE: TypeAlias = Opt[Literal['disable','allow','prefer','require','verify-ca','verify-full']]
FILTERS: TypeAlias = 'dict[str,Any]'


@dataclass
class Config:
	sqlite_path: Opt[Path] = None
	pgsql_host: Opt[str] = None
	pgsql_db: Opt[str] = None
	pgsql_uid: Opt[str] = None
	pgsql_pwd: Opt[str] = None
	pgsql_port: Opt[int] = None
	pgsql_sslmode: PGSQL_SSLMODE = None
	pgsql_sslrootcert: Opt[Path] = None


class SqlBase( metaclass = ABCMeta ):
	def __init__( self, name: str, *,
		null: bool,
		primary: bool = False,
		unique: bool = False,
		index: bool = False,
	) -> None:
		for invalid in ( '"', "'", '`', '[', ']' ):
			assert invalid not in name, f'invalid character {invalid!r} in name {name!r}'
		assert not name.lower().startswith( 'idx_' ), '"idx_" prefix is not allowed for field names, it is reserved for indexes'
		self.name = name
		self.null = null

		# only one of the following 3 should be set to true
		self.primary = primary
		self.unique = unique and not self.primary
		self.index = index and not self.unique

	@abstractmethod
	def to_sqlite( self ) -> str:
		cls = type( self )
		raise NotImplementedError( f'{cls.__module__}.{cls.__qualname__}.to_sqlite()' )

	def to_sqlite_after( self, table: str ) -> list[str]:
		# this is used to create supplemental entries after the create table statement
		sql: list[str] = []
		if self.index:
			sql.append( f'CREATE INDEX IF NOT EXISTS "idx_{table}_{self.name}" ON "{table}" ("{self.name}")' )
		return sql

	@abstractmethod
	def to_postgres( self ) -> str:
		cls = type( self )
		raise NotImplementedError( f'{cls.__module__}.{cls.__qualname__}.to_postgres()' )

	def to_postgres_after( self, table: str ) -> list[str]:
		# this is used to create supplemental entries after the create table statement
		sql: list[str] = []
		if self.index:
			sql.append( f'CREATE INDEX IF NOT EXISTS "idx_{table}_{self.name}" ON "{table}" ("{self.name}")' )
		return sql

	def encode_sqlite( self, val: Any ) -> Any:
		return val
	def decode_sqlite( self, val: Any ) -> Any:
		return val

	def encode_postgres( self, val: Any ) -> Any:
		return val
	def decode_postgres( self, val: Any ) -> Any:
		return val


class SqlVarChar( SqlBase ):
	def __init__( self, name: str, *,
		size: int,
		null: bool,
		primary: bool = False,
		unique: bool = False,
		index: bool = False,
	) -> None:
		super().__init__( name,
			null = null,
			primary = primary,
			unique = unique,
			index = index,
		)
		assert isinstance( size, int ) and 1 <= size <= 255, f'invalid size={size!r}'
		self.size = size

	def to_sqlite( self ) -> str:
		sql: list[str] = [
			f'"{self.name}"',
			f'VARCHAR({self.size})',
			'NULL' if self.null else 'NOT NULL',
			'PRIMARY KEY' if self.primary else '',
			'UNIQUE' if self.unique else '',
		]
		return ' '.join( filter( None, sql ))

	def to_postgres( self ) -> str:
		sql: list[str] = [
			f'"{self.name}"',
			f'VARCHAR({self.size})',
			'NULL' if self.null else 'NOT NULL',
			'PRIMARY KEY' if self.primary else '',
			'UNIQUE' if self.unique else '',
		]
		return ' '.join( filter( None, sql ))


class SqlDateTime( SqlBase ):
	''' timezone-aware datetimes, stored as utc iso-8601 text in sqlite so they sort and compare as text '''
	def __init__( self, name: str, *,
		null: bool,
		index: bool = False,
	) -> None:
		super().__init__( name,
			null = null,
			primary = False,
			unique = False,
			index = index,
		)

	def to_sqlite( self ) -> str:
		sql: list[str] = [
			f'"{self.name}"',
			'TEXT', # sqlite doesn't have a DATETIME type
			'NULL' if self.null else 'NOT NULL',
		]
		return ' '.join( filter( None, sql ))

	def to_postgres( self ) -> str:
		sql: list[str] = [
			f'"{self.name}"',
			'timestamptz',
			'NULL' if self.null else 'NOT NULL',
		]
		return ' '.join( filter( None, sql ))

	def encode_sqlite( self, val: Any ) -> Any:
		if val is None:
			return None
		assert isinstance( val, datetime.datetime ) and val.tzinfo is not None, f'invalid {self.name}={val!r}'
		return val.astimezone( datetime.timezone.utc ).isoformat( timespec = 'microseconds' )

	def decode_sqlite( self, val: Any ) -> Any:
		if val is None:
			return None
		return datetime.datetime.fromisoformat( val )


class SqlInteger( SqlBase ):
	def __init__( self, name: str, *,
		size: int,
		null: bool,
		unique: bool = False,
		index: bool = False,
	) -> None:
		super().__init__( name,
			null = null,
			unique = unique,
			index = index,
		)
		assert isinstance( size, int ) and 1 <= size <= 20, f'invalid size={size!r}'
		self.size = size

	def to_sqlite( self ) -> str:
		sql: list[str] = [
			f'"{self.name}"',
			'INTEGER',
			'NULL' if self.null else 'NOT NULL',
			'UNIQUE' if self.unique else '',
		]
		return ' '.join( filter( None, sql ))

	def to_postgres( self ) -> str:
		if self.size <= 4:
			typename = 'SMALLINT'
		elif self.size <= 9:
			typename = 'INTEGER'
		elif self.size <= 18:
			typename = 'BIGINT'
		else:
			typename = f'NUMERIC({self.size})'
		sql: list[str] = [
			f'"{self.name}"',
			typename,
			'NULL' if self.null else 'NOT NULL',
			'UNIQUE' if self.unique else '',
		]
		return ' '.join( filter( None, sql ))


class SqlText( SqlBase ):
	def __init__( self, name: str, *,
		null: bool,
		index: bool = False,
	) -> None:
		super().__init__( name,
			null = null,
			index = index,
		)

	def to_sqlite( self ) -> str:
		sql: list[str] = [
			f'"{self.name}"',
			'TEXT',
			'NULL' if self.null else 'NOT NULL',
		]
		return ' '.join( filter( None, sql ))

	def to_postgres( self ) -> str:
		sql: list[str] = [
			f'"{self.name}"',
			'TEXT',
			'NULL' if self.null else 'NOT NULL',
		]
		return ' '.join( filter( None, sql ))


class Repository( metaclass = ABCMeta ):
	''' one table: create/read/update/delete plus filtered list, count and delete

	filters are exact matches ( None matches NULL ), `after` is a ( column, value )
	pair selecting rows whose column is greater than value, `orderby` is a comma
	separated column list where a leading '-' sorts that column descending
	'''
	type = 'Abstract repository'
	placeholder = '?'

	def __init__( self,
		config: Config,
		tablename: str,
		fields: list[SqlBase],
		*,
		auditing: bool = True,
		keyname: str = 'id',
	) -> None:
		assert re.match( r'^[a-z][a-z_0-9]+$', tablename ), f'invalid tablename={tablename!r}'
		assert fields, f'no fields defined for table {tablename!r}'
		self.tablename = tablename
		self.auditing = auditing
		self.keyname = keyname
		self.fields: dict[str,SqlBase] = {
			field.name: field for field in fields
		}
		assert keyname in self.fields, f'key {keyname!r} is not a field of {tablename!r}'

	def _column( self, name: str ) -> SqlBase:
		fld = self.fields.get( name )
		assert fld is not None, f'{self.tablename!r} has no column {name!r}'
		return fld

	@abstractmethod
	def encode( self, name: str, val: Any ) -> Any:
		cls = type( self )
		raise NotImplementedError( f'{cls.__module__}.{cls.__qualname__}.encode()' )

	@abstractmethod
	def decode( self, row: dict[str,Any] ) -> dict[str,Any]:
		cls = type( self )
		raise NotImplementedError( f'{cls.__module__}.{cls.__qualname__}.decode()' )

	def _where( self,
		filters: FILTERS,
		after: Opt[Tuple[str,Any]] = None,
	) -> Tuple[str,list[Any]]:
		wheres: list[str] = []
		params: list[Any] = []
		for k, v in filters.items():
			self._column( k )
			if v is None:
				wheres.append( f'"{k}" IS NULL' )
			else:
				wheres.append( f'"{k}" = {self.placeholder}' )
				params.append( self.encode( k, v ))
		if after is not None:
			k, v = after
			self._column( k )
			wheres.append( f'"{k}" > {self.placeholder}' )
			params.append( self.encode( k, v ))
		_where_ = f'WHERE {" AND ".join( wheres )}' if wheres else ''
		return _where_, params

	def _orderby( self, orderby: str ) -> str:
		terms: list[str] = []
		for term in filter( None, map( str.strip, ( orderby or self.keyname ).split( ',' ))):
			direction = 'ASC'
			if term.startswith( '-' ):
				term, direction = term[1:], 'DESC'
			self._column( term )
			terms.append( f'"{term}" {direction}' )
		return ', '.join( terms )

	def _paging( self, limit: Opt[int], offset: int ) -> str:
		paging: list[str] = []
		if limit is not None:
			paging.append( f'LIMIT {int( limit )!r}' )
		if offset:
			paging.append( f'OFFSET {int( offset )!r}' )
		return ' '.join( paging )

	def _select( self,
		filters: FILTERS,
		after: Opt[Tuple[str,Any]],
		limit: Opt[int],
		offset: int,
		orderby: str,
	) -> Tuple[str,list[Any]]:
		_where_, params = self._where( filters, after )
		sql = ' '.join( filter( None, [
			f'SELECT * FROM "{self.tablename}"',
			_where_,
			f'ORDER BY {self._orderby( orderby )}',
			self._paging( limit, offset ),
		]))
		return sql, params

	def _audit_create( self, id: REPOID, resource: dict[str,Any], audit: auditing.Audit ) -> None:
		if self.auditing:
			auditdata = ''.join (
				f'\n\t{k}={v!r}' for k, v in resource.items()
				if v not in ( None, '' )
			)
			audit.audit( f'Created {self.tablename} {id!r}:{auditdata}' )

	@abstractmethod
	def exists( self, ctr: Connector, id: REPOID ) -> bool:
		cls = type( self )
		raise NotImplementedError( f'{cls.__module__}.{cls.__qualname__}.exists()' )

	@abstractmethod
	def get_by_id( self, ctr: Connector, id: REPOID ) -> dict[str,Any]:
		cls = type( self )
		raise NotImplementedError( f'{cls.__module__}.{cls.__qualname__}.get_by_id()' )

	@abstractmethod
	def list( self,
		ctr: Connector,
		filters: FILTERS = {},
		*,
		after: Opt[Tuple[str,Any]] = None,
		limit: Opt[int] = None,
		offset: int = 0,
		orderby: str = '',
	) -> Seq[Tuple[REPOID,dict[str,Any]]]:
		cls = type( self )
		raise NotImplementedError( f'{cls.__module__}.{cls.__qualname__}.list()' )

	@abstractmethod
	def count( self, ctr: Connector, filters: FILTERS = {} ) -> int:
		cls = type( self )
		raise NotImplementedError( f'{cls.__module__}.{cls.__qualname__}.count()' )

	@abstractmethod
	def create( self, ctr: Connector, id: REPOID, resource: dict[str,Any], *, audit: auditing.Audit ) -> None:
		cls = type( self )
		raise NotImplementedError( f'{cls.__module__}.{cls.__qualname__}.create()' )

	@abstractmethod
	def update( self, ctr: Connector, id: REPOID, resource: dict[str,Any], *, audit: auditing.Audit ) -> dict[str,Any]:
		cls = type( self )
		raise NotImplementedError( f'{cls.__module__}.{cls.__qualname__}.update()' )

	@abstractmethod
	def delete( self, ctr: Connector, id: REPOID, *, audit: auditing.Audit ) -> dict[str,Any]:
		cls = type( self )
		raise NotImplementedError( f'{cls.__module__}.{cls.__qualname__}.delete()' )

	@abstractmethod
	def delete_where( self, ctr: Connector, filters: FILTERS, *, audit: auditing.Audit ) -> int:
		cls = type( self )
		raise NotImplementedError( f'{cls.__module__}.{cls.__qualname__}.delete_where()' )

repo_types: dict[str,Type[Repository]] = {}

def repo_type( name: str ) -> Callable[[Type[Repository]],Type[Repository]]:
	def _decorator( cls: Type[Repository] ) -> Type[Repository]:
		global repo_types
		assert name not in repo_types, f'duplicate repo type name={name!r}'
		repo_types[name] = cls
		return cls
	return _decorator

def from_type( name: str ) -> Type[Repository]:
	global repo_types
	try:
		return repo_types[name]
	except KeyError:
		raise ValueError( f'unknown repository type {name!r}, expected one of {sorted( repo_types )!r}' ) from None

def auditdata_from_update( olddata: dict[str,Any], newdata: dict[str,Any] ) -> str:
	auditlines: list[str] = []
	for key in sorted( newdata.keys() ):
		oldval = olddata.get( key, '' )
		newval = newdata.get( key, '' )
		if oldval != newval:
			auditlines.append( f'\t{key}: {oldval!r} -> {newval!r}' )
	return '\n'.join( auditlines )

#endregion repo base
#region repo sqlite


def dict_factory( cursor: Any, row: Seq[Any] ) -> dict[str,Any]:
	d: dict[str,Any] = {}
	for idx, col in enumerate( cursor.description ):
		d[col[0]] = row[idx]
	return d

@repo_type( 'sqlite' )
class RepoSqlite( Repository ):
	type = 'sqlite'
	placeholder = '?'

	def __init__( self,
		config: Config,
		tablename: str,
		fields: list[SqlBase],
		*,
		auditing: bool = True,
		keyname: str = 'id',
	) -> None:
		super().__init__( config, tablename, fields,
			auditing = auditing,
			keyname = keyname,
		)
		assert config.sqlite_path is not None, 'repo.Config.sqlite_path not set'
		self.sqlite_path = Path( config.sqlite_path )

		fldsql: list[str] = []
		fldsupp: list[str] = []
		for fld in fields:
			fldsql.append( fld.to_sqlite() )
			fldsupp.extend( fld.to_sqlite_after( tablename ))

		_flds_ = ',\n'.join( fldsql )
		sql: list[str] = [ f'CREATE TABLE IF NOT EXISTS "{tablename}" ({_flds_});' ]
		sql.extend( fldsupp )

		with Connector() as ctr:
			conn = self.connect( ctr )
			with closing( conn.cursor() ) as cur:
				for sql_ in sql:
					cur.execute( sql_ )
			conn.commit()

	def connect( self, ctr: Connector ) -> sqlite3.Connection:
		return ctr.sqlite( str( self.sqlite_path ))

	def encode( self, name: str, val: Any ) -> Any:
		return self._column( name ).encode_sqlite( val )

	def decode( self, row: dict[str,Any] ) -> dict[str,Any]:
		return {
			k: self.fields[k].decode_sqlite( v ) if k in self.fields else v
			for k, v in row.items()
		}

	def exists( self, ctr: Connector, id: REPOID ) -> bool:
		assert isinstance( id, str ), f'invalid id={id!r}'
		return self.count( ctr, { self.keyname: id } ) > 0

	def get_by_id( self, ctr: Connector, id: REPOID ) -> dict[str,Any]:
		assert isinstance( id, str ), f'invalid id={id!r}'
		conn = self.connect( ctr )
		with closing( conn.cursor() ) as cur:
			cur.execute( f'SELECT * FROM "{self.tablename}" WHERE "{self.keyname}" = ?', [ id ])
			item: Opt[dict[str,Any]] = cur.fetchone()
		if item is None:
			raise ResourceNotFound( id )
		return self.decode( item )

	def list( self,
		ctr: Connector,
		filters: FILTERS = {},
		*,
		after: Opt[Tuple[str,Any]] = None,
		limit: Opt[int] = None,
		offset: int = 0,
		orderby: str = '',
	) -> Seq[Tuple[REPOID,dict[str,Any]]]:
		sql, params = self._select( filters, after, limit, offset, orderby )
		items: list[Tuple[REPOID,dict[str,Any]]] = []
		conn: sqlite3.Connection = self.connect( ctr )
		with closing( conn.cursor() ) as cur:
			cur.execute( sql, params )
			for row in cur.fetchall():
				row = self.decode( row )
				id = row.pop( self.keyname )
				items.append(( id, row ))
		return items

	def count( self, ctr: Connector, filters: FILTERS = {} ) -> int:
		_where_, params = self._where( filters )
		conn: sqlite3.Connection = self.connect( ctr )
		with closing( conn.cursor() ) as cur:
			cur.execute( f'SELECT COUNT(*) AS "qty" FROM "{self.tablename}" {_where_}', params )
			row: dict[str,int] = cur.fetchone()
		return int( row['qty'] )

	def create( self, ctr: Connector, id: REPOID, resource: dict[str,Any], *, audit: auditing.Audit ) -> None:
		if self.exists( ctr, id ):
			raise ResourceAlreadyExists( id )

		data = { self.keyname: id, **resource }
		keys: list[str] = []
		params: list[Any] = []
		for key, val in data.items():
			keys.append( f'"{key}"' )
			params.append( self.encode( key, val ))

		_keys_ = ','.join( keys )
		_values_ = ','.join( '?' for _ in keys )
		sql = f'INSERT INTO "{self.tablename}" ({_keys_}) VALUES ({_values_});'

		conn: sqlite3.Connection = self.connect( ctr )
		with closing( conn.cursor() ) as cur:
			cur.execute( sql, params )
		conn.commit()

		self._audit_create( id, resource, audit )

	def update( self, ctr: Connector, id: REPOID, resource: dict[str,Any], *, audit: auditing.Audit ) -> dict[str,Any]:
		values: list[str] = []
		params: list[Any] = []
		for k, v in resource.items():
			values.append( f'"{k}"=?' )
			params.append( self.encode( k, v ))
		_values_ = ','.join( values )

		olddata = self.get_by_id( ctr, id )

		sql = f'UPDATE "{self.tablename}" SET {_values_} WHERE "{self.keyname}"=?'
		params.append( id )

		conn: sqlite3.Connection = self.connect( ctr )
		with closing( conn.cursor() ) as cur:
			cur.execute( sql, params )
		conn.commit()

		if self.auditing:
			auditdata = auditdata_from_update( olddata, resource )
			audit.audit( f'Updated {self.tablename} {id!r}:\n{auditdata}' )

		return resource

	def delete( self, ctr: Connector, id: REPOID, *, audit: auditing.Audit ) -> dict[str,Any]:
		data = self.get_by_id( ctr, id )

		conn: sqlite3.Connection = self.connect( ctr )
		with closing( conn.cursor() ) as cur:
			cur.execute( f'DELETE FROM "{self.tablename}" WHERE "{self.keyname}"=?;', [ id ])
		conn.commit()

		if self.auditing:
			audit.audit( f'Deleted {self.tablename} {id!r}' )

		return data

	def delete_where( self, ctr: Connector, filters: FILTERS, *, audit: auditing.Audit ) -> int:
		assert filters, f'refusing to delete everything from {self.tablename!r}'
		_where_, params = self._where( filters )

		conn: sqlite3.Connection = self.connect( ctr )
		with closing( conn.cursor() ) as cur:
			cur.execute( f'DELETE FROM "{self.tablename}" {_where_};', params )
			qty = cur.rowcount
		conn.commit()

		if self.auditing and qty:
			audit.audit( f'Deleted {qty!r} from {self.tablename} where {filters!r}' )

		return qty


#endregion repo sqlite
#region repo postgres

@repo_type( 'postgres' )
class RepoPostgres( Repository ):
	type = 'postgres'
	placeholder = '%s'

	def __init__( self,
		config: Config,
		tablename: str,
		fields: list[SqlBase],
		*,
		auditing: bool = True,
		keyname: str = 'id',
	) -> None:
		super().__init__( config, tablename, fields,
			auditing = auditing,
			keyname = keyname,
		)
		assert config.pgsql_host is not None, 'repo.Config.pgsql_host not set'
		assert config.pgsql_db is not None, 'repo.Config.pgsql_db not set'
		assert config.pgsql_uid is not None, 'repo.Config.pgsql_uid not set'
		assert config.pgsql_pwd is not None, 'repo.Config.pgsql_pwd not set'
		self.pgsql_host: str = config.pgsql_host
		self.pgsql_db: str = config.pgsql_db
		self.pgsql_uid: str = config.pgsql_uid
		self.pgsql_pwd: str = config.pgsql_pwd
		self.pgsql_port: int = config.pgsql_port or 5432
		self.pgsql_sslmode = config.pgsql_sslmode
		self.pgsql_sslrootcert = config.pgsql_sslrootcert

		fldsql: list[str] = []
		fldsupp: list[str] = []
		for fld in fields:
			fldsql.append( fld.to_postgres() )
			fldsupp.extend( fld.to_postgres_after( tablename ))

		_flds_ = ',\n'.join( fldsql )
		sql: list[str] = [ f'CREATE TABLE IF NOT EXISTS "{tablename}" ({_flds_});' ]
		sql.extend( fldsupp )

		with Connector() as ctr:
			with self._cursor( ctr ) as cur:
				for sql_ in sql:
					cur.execute( sql_ )

	def connect( self, ctr: Connector ) -> psycopg2.extensions.connection:
		return ctr.postgres(
			host = self.pgsql_host,
			database = self.pgsql_db,
			user = self.pgsql_uid,
			password = self.pgsql_pwd,
			port = self.pgsql_port,
			sslmode = self.pgsql_sslmode,
			sslrootcert = self.pgsql_sslrootcert,
		)

	@contextmanager
	def _cursor( self, ctr: Connector ) -> Iterator[psycopg2.extensions.cursor]:
		conn = self.connect( ctr )
		with closing( conn.cursor() ) as cur:
			try:
				yield cur
			except Exception:
				conn.rollback()
				raise
			else:
				conn.commit()

	def encode( self, name: str, val: Any ) -> Any:
		return self._column( name ).encode_postgres( val )

	def decode( self, row: dict[str,Any] ) -> dict[str,Any]:
		return {
			k: self.fields[k].decode_postgres( v ) if k in self.fields else v
			for k, v in row.items()
		}

	def _rows( self, cur: psycopg2.extensions.cursor ) -> Iterator[dict[str,Any]]:
		assert cur.description is not None
		hdrs: list[str] = [ desc[0] for desc in cur.description ]
		for vals in cur.fetchall():
			yield self.decode( dict( zip( hdrs, vals )))

	def exists( self, ctr: Connector, id: REPOID ) -> bool:
		assert isinstance( id, str ), f'invalid id={id!r}'
		return self.count( ctr, { self.keyname: id } ) > 0

	def get_by_id( self, ctr: Connector, id: REPOID ) -> dict[str,Any]:
		assert isinstance( id, str ), f'invalid id={id!r}'
		with self._cursor( ctr ) as cur:
			cur.execute( f'SELECT * FROM "{self.tablename}" WHERE "{self.keyname}" = %s', [ id ])
			for row in self._rows( cur ):
				return row
		raise ResourceNotFound( id )

	def list( self,
		ctr: Connector,
		filters: FILTERS = {},
		*,
		after: Opt[Tuple[str,Any]] = None,
		limit: Opt[int] = None,
		offset: int = 0,
		orderby: str = '',
	) -> Seq[Tuple[REPOID,dict[str,Any]]]:
		sql, params = self._select( filters, after, limit, offset, orderby )
		items: list[Tuple[REPOID,dict[str,Any]]] = []
		with self._cursor( ctr ) as cur:
			cur.execute( sql, params )
			for row in self._rows( cur ):
				id = row.pop( self.keyname )
				items.append(( id, row ))
		return items

	def count( self, ctr: Connector, filters: FILTERS = {} ) -> int:
		_where_, params = self._where( filters )
		with self._cursor( ctr ) as cur:
			cur.execute( f'SELECT COUNT(*) FROM "{self.tablename}" {_where_}', params )
			vals: Opt[Tuple[Any,...]] = cur.fetchone()
		return int( vals[0] ) if vals else 0

	def create( self, ctr: Connector, id: REPOID, resource: dict[str,Any], *, audit: auditing.Audit ) -> None:
		if self.exists( ctr, id ):
			raise ResourceAlreadyExists( id )

		data = { self.keyname: id, **resource }
		keys: list[str] = []
		params: list[Any] = []
		for key, val in data.items():
			keys.append( f'"{key}"' )
			params.append( self.encode( key, val ))

		_keys_ = ','.join( keys )
		_values_ = ','.join( '%s' for _ in keys )
		sql = f'INSERT INTO "{self.tablename}" ({_keys_}) VALUES ({_values_});'

		with self._cursor( ctr ) as cur:
			cur.execute( sql, params )

		self._audit_create( id, resource, audit )

	def update( self, ctr: Connector, id: REPOID, resource: dict[str,Any], *, audit: auditing.Audit ) -> dict[str,Any]:
		values: list[str] = []
		params: list[Any] = []
		for k, v in resource.items():
			values.append( f'"{k}"=%s' )
			params.append( self.encode( k, v ))
		_values_ = ','.join( values )

		olddata = self.get_by_id( ctr, id )

		sql = f'UPDATE "{self.tablename}" SET {_values_} WHERE "{self.keyname}"=%s'
		params.append( id )

		with self._cursor( ctr ) as cur:
			cur.execute( sql, params )

		if self.auditing:
			auditdata = auditdata_from_update( olddata, resource )
			audit.audit( f'Updated {self.tablename} {id!r}:\n{auditdata}' )

		return resource

	def delete( self, ctr: Connector, id: REPOID, *, audit: auditing.Audit ) -> dict[str,Any]:
		data = self.get_by_id( ctr, id )

		with self._cursor( ctr ) as cur:
			cur.execute( f'DELETE FROM "{self.tablename}" WHERE "{self.keyname}"=%s;', [ id ])

		if self.auditing:
			audit.audit( f'Deleted {self.tablename} {id!r}' )

		return data

	def delete_where( self, ctr: Connector, filters: FILTERS, *, audit: auditing.Audit ) -> int:
		assert filters, f'refusing to delete everything from {self.tablename!r}'
		_where_, params = self._where( filters )

		with self._cursor( ctr ) as cur:
			cur.execute( f'DELETE FROM "{self.tablename}" {_where_};', params )
			qty = cur.rowcount

		if self.auditing and qty:
			audit.audit( f'Deleted {qty!r} from {self.tablename} where {filters!r}' )

		return qty


#endregion repo postgres
#region async support

class AsyncRepository:
	''' runs each operation in the default executor inside its own Connector '''
	def __init__( self, repo: Repository ) -> None:
		self.repo = repo

	@property
	def tablename( self ) -> str:
		return self.repo.tablename

	async def _run( self, func: Callable[[Connector],T] ) -> T:
		def _call() -> T:
			with Connector() as ctr:
				return func( ctr )
		loop = asyncio.get_running_loop()
		return await loop.run_in_executor( None, _call )

	async def exists( self, id: REPOID ) -> bool:
		return await self._run( lambda ctr: self.repo.exists( ctr, id ))

	async def get_by_id( self, id: REPOID ) -> dict[str,Any]:
		return await self._run( lambda ctr: self.repo.get_by_id( ctr, id ))

	async def list( self,
		filters: FILTERS = {},
		*,
		after: Opt[Tuple[str,Any]] = None,
		limit: Opt[int] = None,
		offset: int = 0,
		orderby: str = '',
	) -> Seq[Tuple[REPOID,dict[str,Any]]]:
		return await self._run( lambda ctr:
			self.repo.list( ctr, filters, after = after, limit = limit, offset = offset, orderby = orderby )
		)

	async def count( self, filters: FILTERS = {} ) -> int:
		return await self._run( lambda ctr: self.repo.count( ctr, filters ))

	async def create( self, id: REPOID, resource: dict[str,Any], *, audit: auditing.Audit ) -> None:
		await self._run( lambda ctr: self.repo.create( ctr, id, resource, audit = audit ))

	async def update( self, id: REPOID, resource: dict[str,Any], *, audit: auditing.Audit ) -> dict[str,Any]:
		return await self._run( lambda ctr: self.repo.update( ctr, id, resource, audit = audit ))

	async def delete( self, id: REPOID, *, audit: auditing.Audit ) -> dict[str,Any]:
		return await self._run( lambda ctr: self.repo.delete( ctr, id, audit = audit ))

	async def delete_where( self, filters: FILTERS, *, audit: auditing.Audit ) -> int:
		return await self._run( lambda ctr: self.repo.delete_where( ctr, filters, audit = audit ))


#endregion async support
