"""
Tests for background move persistence: retry, failure recording and undo.
"""

from unittest.mock import AsyncMock

import pytest

from deal_pipeline.errors import GatewayConnectionError, GatewayError
from deal_pipeline.gateway.base import DealGateway, StageUpdate
from deal_pipeline.persistence import PersistenceQueue, StageChangeCommand

from conftest import BASE_TIME


def _command(correlation_id: str = 'cmd_1', deal_id: str = 'A') -> StageChangeCommand:
    return StageChangeCommand(
        correlation_id=correlation_id,
        deal_id=deal_id,
        change=StageUpdate(
            stage='proposal', probability=50, days_in_stage=0, updated_at=BASE_TIME
        ),
        issued_at=BASE_TIME,
    )


def _queue(gateway, outcomes: list, max_attempts: int = 3) -> PersistenceQueue:
    return PersistenceQueue(
        gateway,
        on_outcome=outcomes.append,
        max_attempts=max_attempts,
        backoff_min=0,
        backoff_max=0,
    )


class TestPersistenceQueue:
    """Test retry-with-backoff around gateway.update_stage."""

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        gateway = AsyncMock(spec=DealGateway)
        outcomes: list = []
        queue = _queue(gateway, outcomes)

        queue.submit(_command())
        await queue.drain()

        gateway.update_stage.assert_awaited_once()
        assert outcomes[0].success is True
        assert outcomes[0].attempts == 1
        assert queue.pending == 0

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        gateway = AsyncMock(spec=DealGateway)
        gateway.update_stage.side_effect = [
            GatewayConnectionError('reset'),
            GatewayConnectionError('reset'),
            None,
        ]
        outcomes: list = []
        queue = _queue(gateway, outcomes)

        queue.submit(_command())
        await queue.drain()

        assert gateway.update_stage.await_count == 3
        assert outcomes[0].success is True
        assert outcomes[0].attempts == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        gateway = AsyncMock(spec=DealGateway)
        gateway.update_stage.side_effect = GatewayConnectionError('down')
        outcomes: list = []
        queue = _queue(gateway, outcomes, max_attempts=2)

        queue.submit(_command())
        await queue.drain()

        assert gateway.update_stage.await_count == 2
        assert len(outcomes) == 1
        assert outcomes[0].success is False
        assert isinstance(outcomes[0].error, GatewayConnectionError)

    @pytest.mark.asyncio
    async def test_raw_exceptions_are_wrapped_and_retried(self):
        gateway = AsyncMock(spec=DealGateway)
        gateway.update_stage.side_effect = [ConnectionError('refused'), None]
        outcomes: list = []
        queue = _queue(gateway, outcomes)

        queue.submit(_command())
        await queue.drain()

        assert gateway.update_stage.await_count == 2
        assert outcomes[0].success is True

    @pytest.mark.asyncio
    async def test_parked_commands_run_on_drain(self):
        gateway = AsyncMock(spec=DealGateway)
        outcomes: list = []
        queue = _queue(gateway, outcomes)
        queue._parked.append(_command('cmd_parked'))

        assert queue.pending == 1
        await queue.drain()

        assert outcomes[0].command.correlation_id == 'cmd_parked'
        assert queue.pending == 0


class TestFailedMoves:
    """Test the store's handling of moves that could not be saved."""

    @pytest.mark.asyncio
    async def test_failed_move_recorded(self, make_store, sample_deals):
        gateway = AsyncMock(spec=DealGateway)
        gateway.update_stage.side_effect = GatewayConnectionError('Connection refused')
        store = make_store(sample_deals, gateway_override=gateway)

        correlation_id = store.move_deal_to_stage('A', 'qualification', 'proposal', 0)
        await store.flush()
        state = store.state

        # The optimistic move stays applied until the user decides.
        assert state.deals['A'].stage == 'proposal'
        failed = state.failed_moves[correlation_id]
        assert failed.deal_id == 'A'
        assert failed.source_stage == 'qualification'
        assert failed.source_index == 0
        assert failed.error == 'Connection refused'
        assert state.error == 'Could not save stage change for "Deal A": Connection refused'

    @pytest.mark.asyncio
    async def test_undo_restores_previous_position(self, make_store, sample_deals):
        gateway = AsyncMock(spec=DealGateway)
        gateway.update_stage.side_effect = GatewayError('rejected')
        store = make_store(sample_deals, gateway_override=gateway)
        original = store.state.deals['B']

        correlation_id = store.move_deal_to_stage('B', 'qualification', 'closed-won', 0)
        await store.flush()

        assert store.undo_failed_move(correlation_id) is True
        state = store.state

        assert state.deals['B'] == original
        assert state.columns['qualification'].deal_ids == ('A', 'B')
        assert state.columns['closed-won'].deal_ids == ()
        assert state.failed_moves == {}
        assert state.error is None
        assert state.invariant_violations() == []

    @pytest.mark.asyncio
    async def test_undo_skipped_when_deal_moved_again(self, make_store, sample_deals):
        gateway = AsyncMock(spec=DealGateway)
        gateway.update_stage.side_effect = [GatewayError('rejected')] * 3 + [None]
        store = make_store(sample_deals, gateway_override=gateway)

        correlation_id = store.move_deal_to_stage('A', 'qualification', 'proposal', 0)
        await store.flush()
        store.move_deal_to_stage('A', 'proposal', 'negotiation', 0)
        await store.flush()

        assert store.undo_failed_move(correlation_id) is False
        assert store.state.deals['A'].stage == 'negotiation'
        assert correlation_id not in store.state.failed_moves

    def test_undo_unknown_correlation_id(self, store):
        assert store.undo_failed_move('cmd_missing') is False

    @pytest.mark.asyncio
    async def test_dismiss_keeps_deal(self, make_store, sample_deals):
        gateway = AsyncMock(spec=DealGateway)
        gateway.update_stage.side_effect = GatewayError('rejected')
        store = make_store(sample_deals, gateway_override=gateway, max_attempts=1)

        correlation_id = store.move_deal_to_stage('E', 'negotiation', 'closed-lost', 0)
        await store.flush()

        assert store.dismiss_failed_move(correlation_id) is True
        assert store.dismiss_failed_move(correlation_id) is False
        assert store.state.deals['E'].stage == 'closed-lost'
        assert store.state.failed_moves == {}
