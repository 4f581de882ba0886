"""
Tests for the PostgresDealGateway.

Tests cover:
- Connection management (connect, close, verify_connectivity)
- URL normalisation for asyncpg
- SQL shape and parameter mapping for each operation
- Row → record conversion
- Error wrapping into GatewayError subclasses
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from deal_pipeline.errors import GatewayConnectionError, GatewayQueryError
from deal_pipeline.gateway.base import StageUpdate
from deal_pipeline.gateway.postgres import (
    PostgresDealGateway,
    _row_to_record,
    _sanitize_url,
    _to_pg_ts,
    _writable,
)

UPDATED_AT = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


def _row(**mapping) -> MagicMock:
    row = MagicMock()
    row._mapping = mapping
    return row


@pytest.fixture
def mock_engine():
    """Create a mock AsyncEngine with a mock connection context manager."""
    engine = AsyncMock()

    conn = AsyncMock()
    result = MagicMock()
    result.fetchall.return_value = []
    result.first.return_value = None
    conn.execute = AsyncMock(return_value=result)

    ctx = AsyncMock()
    ctx.__aenter__ = AsyncMock(return_value=conn)
    ctx.__aexit__ = AsyncMock(return_value=False)

    engine.begin = MagicMock(return_value=ctx)
    engine.dispose = AsyncMock()

    return engine, conn, result


@pytest.fixture
def gateway(mock_engine):
    """Create a PostgresDealGateway with a pre-injected mock engine."""
    engine, _, _ = mock_engine
    pg = PostgresDealGateway()
    pg._engine = engine
    return pg


def _sql(conn) -> str:
    return str(conn.execute.call_args[0][0])


def _params(conn) -> dict:
    return conn.execute.call_args[0][1]


# =============================================================================
# Helper Function Tests
# =============================================================================


class TestHelpers:
    """Test conversion helper functions."""

    def test_to_pg_ts_with_datetime(self):
        assert _to_pg_ts(UPDATED_AT) is UPDATED_AT

    def test_to_pg_ts_with_iso_string(self):
        assert _to_pg_ts('2026-03-02T09:30:00Z') == UPDATED_AT

    def test_to_pg_ts_with_none(self):
        assert _to_pg_ts(None) is None

    def test_sanitize_url_strips_libpq_params(self):
        url = 'postgresql://u:p@host/db?sslmode=require&channel_binding=require&application_name=x'
        assert _sanitize_url(url) == 'postgresql://u:p@host/db?application_name=x'

    def test_sanitize_url_without_query(self):
        assert _sanitize_url('postgresql://host/db') == 'postgresql://host/db'

    def test_writable_filters_and_converts(self):
        params = _writable(
            {'title': 'T', 'id': 'nope', 'user_id': 'nope', 'due_date': '2026-03-02T09:30:00Z'}
        )
        assert params == {'title': 'T', 'due_date': UPDATED_AT}

    def test_row_to_record(self):
        deal_id = uuid4()
        record = _row_to_record(_row(id=deal_id, value=10, updated_at=UPDATED_AT))
        assert record == {'id': str(deal_id), 'value': 10, 'updated_at': UPDATED_AT.isoformat()}


# =============================================================================
# Connection Management Tests
# =============================================================================


class TestConnectionManagement:
    """Test connect, close, verify_connectivity."""

    @pytest.mark.asyncio
    async def test_connect_normalises_postgres_url(self):
        pg = PostgresDealGateway('postgres://host/db')
        with patch('deal_pipeline.gateway.postgres.create_async_engine') as mock_create:
            mock_create.return_value = AsyncMock()
            await pg.connect()

            url = mock_create.call_args[0][0]
            assert url.startswith('postgresql+asyncpg://')

    @pytest.mark.asyncio
    async def test_connect_idempotent(self):
        pg = PostgresDealGateway()
        with patch('deal_pipeline.gateway.postgres.create_async_engine') as mock_create:
            mock_create.return_value = AsyncMock()
            await pg.connect('postgresql://localhost/test')
            await pg.connect('postgresql://localhost/test')
            assert mock_create.call_count == 1

    @pytest.mark.asyncio
    async def test_connect_raises_without_url(self):
        pg = PostgresDealGateway()
        with pytest.raises(ValueError, match='database_url is required'):
            await pg.connect()

    @pytest.mark.asyncio
    async def test_close_disposes_engine(self, gateway, mock_engine):
        engine, _, _ = mock_engine
        await gateway.close()
        engine.dispose.assert_awaited_once()
        assert gateway._engine is None

    @pytest.mark.asyncio
    async def test_verify_connectivity_success(self, gateway):
        assert await gateway.verify_connectivity() is True

    @pytest.mark.asyncio
    async def test_verify_connectivity_failure(self, gateway, mock_engine):
        engine, _, _ = mock_engine
        engine.begin.side_effect = Exception('Connection refused')
        assert await gateway.verify_connectivity() is False

    def test_engine_property_raises_when_not_connected(self):
        with pytest.raises(RuntimeError, match='not connected'):
            _ = PostgresDealGateway().engine


# =============================================================================
# Operation Tests
# =============================================================================


class TestOperations:
    """Test SQL and parameters for each gateway call."""

    @pytest.mark.asyncio
    async def test_list_scopes_by_user(self, gateway, mock_engine):
        _, conn, result = mock_engine
        result.fetchall.return_value = [_row(id='d1', user_id='u1'), _row(id='d2', user_id='u1')]

        records = await gateway.list('u1')

        assert [r['id'] for r in records] == ['d1', 'd2']
        assert 'WHERE user_id = :user_id' in _sql(conn)
        assert 'ORDER BY created_at DESC' in _sql(conn)
        assert _params(conn) == {'user_id': 'u1'}

    @pytest.mark.asyncio
    async def test_create_inserts_writable_columns(self, gateway, mock_engine):
        _, conn, result = mock_engine
        result.first.return_value = _row(id='new', title='Expansion')

        record = await gateway.create('u1', {'title': 'Expansion', 'value': 300, 'bogus': 1})

        assert record == {'id': 'new', 'title': 'Expansion'}
        sql = _sql(conn)
        assert 'INSERT INTO deals' in sql
        assert 'RETURNING *' in sql
        params = _params(conn)
        assert params['user_id'] == 'u1'
        assert params['title'] == 'Expansion'
        assert 'bogus' not in params
        assert params['id']

    @pytest.mark.asyncio
    async def test_update_sets_only_given_columns(self, gateway, mock_engine):
        _, conn, _ = mock_engine

        result = await gateway.update('d1', {'title': 'Renamed'})

        assert result is None
        sql = _sql(conn)
        assert 'title = :title' in sql
        assert 'updated_at = now()' in sql
        assert 'value = :value' not in sql
        assert _params(conn) == {'title': 'Renamed', 'deal_id': 'd1'}

    @pytest.mark.asyncio
    async def test_delete(self, gateway, mock_engine):
        _, conn, _ = mock_engine
        await gateway.delete('d1')
        assert 'DELETE FROM deals' in _sql(conn)
        assert _params(conn) == {'deal_id': 'd1'}

    @pytest.mark.asyncio
    async def test_update_stage(self, gateway, mock_engine):
        _, conn, _ = mock_engine
        change = StageUpdate(
            stage='proposal', probability=50, days_in_stage=0, updated_at=UPDATED_AT
        )

        await gateway.update_stage('d1', change)

        assert 'stage = :stage' in _sql(conn)
        assert _params(conn) == {
            'deal_id': 'd1',
            'stage': 'proposal',
            'probability': 50,
            'days_in_stage': 0,
            'updated_at': UPDATED_AT,
        }


class TestErrorWrapping:
    """Test that driver errors surface as GatewayError subclasses."""

    @pytest.mark.asyncio
    async def test_connection_failure(self, gateway, mock_engine):
        _, conn, _ = mock_engine
        conn.execute.side_effect = ConnectionRefusedError('could not connect to server')

        with pytest.raises(GatewayConnectionError):
            await gateway.list('u1')

    @pytest.mark.asyncio
    async def test_query_failure(self, gateway, mock_engine):
        _, conn, _ = mock_engine
        conn.execute.side_effect = Exception('syntax error at or near "FROM"')

        with pytest.raises(GatewayQueryError) as exc_info:
            await gateway.update_stage(
                'd1',
                StageUpdate(stage='proposal', probability=50, days_in_stage=0, updated_at=UPDATED_AT),
            )
        assert exc_info.value.context['operation'] == 'update_stage'
