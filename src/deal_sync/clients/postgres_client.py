"""
Postgres client for the deal sync engine.

Owns the SQLAlchemy 2.0 async engine (asyncpg driver in production). The
reconciler, failure ledger and partition repository all write through
`engine`; this class only manages its lifecycle and connectivity.
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import structlog
from sqlalchemy import Table, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import DatastoreConnectionError, DatastoreError, wrap_datastore_error
from ..schema import metadata

logger = structlog.get_logger(__name__)


def _sanitize_url(url: str) -> str:
    """Remove URL query params that asyncpg does not understand.

    Pooled Postgres URLs often include ``channel_binding=require`` and
    ``sslmode=require`` which are libpq parameters. asyncpg rejects unknown
    connection params; SSL is passed via ``connect_args`` instead.
    """
    _STRIP_PARAMS = {'channel_binding', 'sslmode'}
    parsed = urlparse(url)
    if not parsed.query:
        return url
    params = parse_qs(parsed.query)
    filtered = {k: v for k, v in params.items() if k not in _STRIP_PARAMS}
    new_query = urlencode(filtered, doseq=True)
    return urlunparse(parsed._replace(query=new_query))


def _wants_ssl(url: str) -> bool:
    params = parse_qs(urlparse(url).query)
    return params.get('sslmode', [''])[0] in {'require', 'verify-ca', 'verify-full'}


def dialect_insert(conn: AsyncConnection, table: Table):
    """INSERT construct with ON CONFLICT support for the connected dialect."""
    name = conn.dialect.name
    if name == 'postgresql':
        return pg_insert(table)
    if name == 'sqlite':
        return sqlite_insert(table)
    raise DatastoreError(f'Unsupported datastore dialect: {name}', context={'dialect': name})


class PostgresClient:
    """
    Async Postgres client for the deal sync engine.

    Uses SQLAlchemy 2.0 async engine with asyncpg. Non-Postgres URLs (e.g.
    ``sqlite+aiosqlite://``) are passed through untouched so the same code
    path runs against a local database.
    """

    def __init__(self, database_url: str | None = None):
        """
        Args:
            database_url: Connection URL. 'postgres://' and 'postgresql://'
                          prefixes are rewritten to use asyncpg.
        """
        self._engine: AsyncEngine | None = None
        self._database_url = database_url

    async def connect(self, database_url: str | None = None) -> None:
        """
        Create the async engine. Idempotent; no-op if already connected.

        Args:
            database_url: Override the URL from __init__.
        """
        if self._engine is not None:
            return

        url = database_url or self._database_url
        if not url:
            raise ValueError('database_url is required')

        if url.startswith(('postgres://', 'postgresql://', 'postgresql+asyncpg://')):
            ssl = _wants_ssl(url)
            url = _sanitize_url(url)

            # Normalise driver prefix for asyncpg
            if url.startswith('postgres://'):
                url = url.replace('postgres://', 'postgresql+asyncpg://', 1)
            elif url.startswith('postgresql://'):
                url = url.replace('postgresql://', 'postgresql+asyncpg://', 1)

            connect_args: dict[str, object] = {
                # Transaction poolers (PgBouncer) don't support prepared statements
                'prepared_statement_cache_size': 0,
            }
            if ssl:
                connect_args['ssl'] = 'require'

            self._engine = create_async_engine(
                url,
                pool_size=5,
                max_overflow=5,
                pool_pre_ping=True,
                pool_timeout=30,
                connect_args=connect_args,
            )
        else:
            self._engine = create_async_engine(url)

        logger.info('postgres_client.connected', dialect=self._engine.dialect.name)

    async def close(self) -> None:
        """Dispose of the engine and connection pool."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.info('postgres_client.closed')

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError('PostgresClient not connected; call connect() first')
        return self._engine

    async def verify_connectivity(self) -> bool:
        """Return True if we can execute a simple query."""
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text('SELECT 1'))
            return True
        except Exception:
            logger.exception('postgres_client.connectivity_check_failed')
            return False

    @retry(
        retry=retry_if_exception_type(DatastoreConnectionError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def wait_until_ready(self) -> None:
        """
        Block until the datastore answers, retrying cold starts.

        Raises:
            DatastoreConnectionError: If the datastore is still unreachable
                                      after three attempts
        """
        if not await self.verify_connectivity():
            raise DatastoreConnectionError('Datastore did not answer SELECT 1')

    async def create_schema(self) -> None:
        """Create all tables that do not exist yet (local and test databases)."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        except Exception as exc:
            raise wrap_datastore_error(exc, {'operation': 'create_schema'}) from exc
        logger.info('postgres_client.schema_created', tables=len(metadata.tables))
