"""
Postgres (Supabase/Neon) deal gateway.

Persists deals in a single ``deals`` table using SQLAlchemy 2.0 async engine +
asyncpg with raw parameterized SQL. Every statement returns the stored row
(``RETURNING *``) so the store can reconcile server-assigned fields.

Table columns:
    id, user_id, title, value, currency, stage, company, contact, contact_id,
    due_date, probability, days_in_stage, priority, notes, created_at, updated_at
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from ..errors import wrap_gateway_error
from ..utils import new_deal_id
from .base import DealGateway, DealRecord, StageUpdate

logger = structlog.get_logger(__name__)

# Columns a caller may write through create()/update().
_WRITABLE_COLUMNS = (
    'title', 'value', 'currency', 'stage', 'company', 'contact', 'contact_id',
    'due_date', 'probability', 'days_in_stage', 'priority', 'notes',
)

_TIMESTAMP_COLUMNS = frozenset({'due_date', 'created_at', 'updated_at'})


def _to_pg_ts(val: datetime | str | None) -> datetime | None:
    """Ensure value is a datetime for asyncpg (which needs native types, not strings)."""
    if val is None:
        return None
    if isinstance(val, datetime):
        return val
    return datetime.fromisoformat(val.replace('Z', '+00:00'))


def _sanitize_url(url: str) -> str:
    """Remove URL query params that asyncpg does not understand.

    Hosted Postgres pooler URLs include ``channel_binding=require`` and
    ``sslmode=require``, which are libpq parameters asyncpg rejects.
    """
    _STRIP_PARAMS = {'channel_binding', 'sslmode'}
    parsed = urlparse(url)
    if not parsed.query:
        return url
    params = parse_qs(parsed.query)
    filtered = {k: v for k, v in params.items() if k not in _STRIP_PARAMS}
    new_query = urlencode(filtered, doseq=True)
    return urlunparse(parsed._replace(query=new_query))


def _writable(fields: DealRecord) -> dict[str, Any]:
    """Keep only writable columns, converting timestamps for asyncpg."""
    params: dict[str, Any] = {}
    for column in _WRITABLE_COLUMNS:
        if column in fields:
            value = fields[column]
            params[column] = _to_pg_ts(value) if column in _TIMESTAMP_COLUMNS else value
    return params


def _row_to_record(row: Any) -> DealRecord:
    """Convert a SQLAlchemy Row into a plain record dict."""
    record = dict(row._mapping)
    for key, value in record.items():
        if isinstance(value, datetime):
            record[key] = value.isoformat()
        elif key in ('id', 'user_id') and value is not None:
            record[key] = str(value)
    return record


class PostgresDealGateway(DealGateway):
    """
    Async Postgres implementation of the remote deal gateway.

    Driver and SQL exceptions are wrapped via wrap_gateway_error() so callers
    only ever see GatewayError subclasses.
    """

    def __init__(self, database_url: str | None = None):
        """
        Initialize with a Postgres connection URL.

        Args:
            database_url: Postgres connection URL. ``postgres://`` and
                          ``postgresql://`` prefixes are converted to the
                          asyncpg driver.
        """
        self._engine: AsyncEngine | None = None
        self._database_url = database_url

    async def connect(self, database_url: str | None = None) -> None:
        """Create the async engine. Idempotent -- no-op if already connected."""
        if self._engine is not None:
            return

        url = database_url or self._database_url
        if not url:
            raise ValueError('database_url is required')

        url = _sanitize_url(url)
        if url.startswith('postgres://'):
            url = url.replace('postgres://', 'postgresql+asyncpg://', 1)
        elif url.startswith('postgresql://') and '+asyncpg' not in url:
            url = url.replace('postgresql://', 'postgresql+asyncpg://', 1)

        self._engine = create_async_engine(
            url,
            pool_size=5,
            max_overflow=5,
            pool_pre_ping=True,
            pool_timeout=30,
            # Poolers (PgBouncer) don't support prepared statements.
            connect_args={'prepared_statement_cache_size': 0},
        )
        logger.info('postgres_gateway.connected')

    async def close(self) -> None:
        """Dispose of the engine and connection pool."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.info('postgres_gateway.closed')

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError('PostgresDealGateway not connected; call connect() first')
        return self._engine

    async def verify_connectivity(self) -> bool:
        """Return True if we can execute a simple query."""
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text('SELECT 1'))
            return True
        except Exception:
            logger.exception('postgres_gateway.connectivity_check_failed')
            return False

    async def _fetch_all(self, sql: str, params: dict[str, Any], op: str) -> list[DealRecord]:
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(text(sql), params)
                return [_row_to_record(row) for row in result.fetchall()]
        except Exception as e:
            raise wrap_gateway_error(e, context={'operation': op}) from e

    async def _fetch_one(self, sql: str, params: dict[str, Any], op: str) -> DealRecord | None:
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(text(sql), params)
                row = result.first()
                return _row_to_record(row) if row is not None else None
        except Exception as e:
            raise wrap_gateway_error(e, context={'operation': op}) from e

    async def list(self, user_id: str) -> list[DealRecord]:
        return await self._fetch_all(
            """
            SELECT * FROM deals
            WHERE user_id = :user_id
            ORDER BY created_at DESC
            """,
            {'user_id': user_id},
            'list',
        )

    async def create(self, user_id: str, fields: DealRecord) -> DealRecord | None:
        params = _writable(fields)
        params['id'] = new_deal_id()
        params['user_id'] = user_id
        columns = ', '.join(params)
        placeholders = ', '.join(f':{c}' for c in params)
        return await self._fetch_one(
            f"""
            INSERT INTO deals ({columns}, created_at, updated_at)
            VALUES ({placeholders}, now(), now())
            RETURNING *
            """,
            params,
            'create',
        )

    async def update(self, deal_id: str, fields: DealRecord) -> DealRecord | None:
        params = _writable(fields)
        assignments = ', '.join(f'{c} = :{c}' for c in params)
        set_clause = f'{assignments}, updated_at = now()' if assignments else 'updated_at = now()'
        params['deal_id'] = deal_id
        return await self._fetch_one(
            f"""
            UPDATE deals SET {set_clause}
            WHERE id = :deal_id
            RETURNING *
            """,
            params,
            'update',
        )

    async def delete(self, deal_id: str) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.execute(
                    text('DELETE FROM deals WHERE id = :deal_id'),
                    {'deal_id': deal_id},
                )
        except Exception as e:
            raise wrap_gateway_error(e, context={'operation': 'delete'}) from e

    async def update_stage(self, deal_id: str, change: StageUpdate) -> DealRecord | None:
        return await self._fetch_one(
            """
            UPDATE deals SET
                stage = :stage,
                probability = :probability,
                days_in_stage = :days_in_stage,
                updated_at = :updated_at
            WHERE id = :deal_id
            RETURNING *
            """,
            {
                'deal_id': deal_id,
                'stage': change.stage,
                'probability': change.probability,
                'days_in_stage': change.days_in_stage,
                'updated_at': change.updated_at,
            },
            'update_stage',
        )
