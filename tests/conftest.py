"""
Pytest configuration and shared fixtures.

Key fixtures:
- make_deal: Factory for Deal records with sensible defaults
- clock: Deterministic clock for ``updated_at`` assertions
- gateway: In-memory DealGateway seeded with nothing
- insight_generator: AsyncMock InsightGenerator
- store: PipelineStore over the above, with zero-backoff persistence

NOTE: Tests never touch Postgres or OpenAI; those clients are exercised with
mocks injected in place of the engine / SDK client.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from deal_pipeline.gateway.memory import InMemoryDealGateway  # noqa: E402
from deal_pipeline.insight.base import InsightGenerator  # noqa: E402
from deal_pipeline.models.deal import Deal  # noqa: E402
from deal_pipeline.persistence import PersistenceQueue  # noqa: E402
from deal_pipeline.store import PipelineStore  # noqa: E402

USER_ID = 'user_test_001'
BASE_TIME = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that advances one minute per call."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(minutes=1)
        return self.now


@pytest.fixture
def make_deal():
    """Factory for Deal instances; keyword arguments override defaults."""

    def _make(deal_id: str, **overrides) -> Deal:
        fields = {
            'id': deal_id,
            'title': f'Deal {deal_id}',
            'value': 1000.0,
            'stage': 'qualification',
            'company': 'Acme Corp',
            'contact': 'Jane Doe',
            'contact_id': 'contact_1',
            'probability': 10,
            'days_in_stage': 3,
            'created_at': BASE_TIME,
            'updated_at': BASE_TIME,
            'user_id': USER_ID,
        }
        fields.update(overrides)
        return Deal(**fields)

    return _make


@pytest.fixture
def sample_deals(make_deal) -> list[Deal]:
    """Five deals across three stages (A, B in qualification; C in proposal; D, E in negotiation)."""
    return [
        make_deal('A', value=100.0),
        make_deal('B', value=200.0),
        make_deal('C', value=500.0, stage='proposal', probability=50),
        make_deal('D', value=1000.0, stage='negotiation', probability=75),
        make_deal('E', value=50.0, stage='negotiation', probability=75),
    ]


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def gateway() -> InMemoryDealGateway:
    return InMemoryDealGateway()


@pytest.fixture
def insight_generator() -> AsyncMock:
    generator = AsyncMock(spec=InsightGenerator)
    generator.analyze = AsyncMock(return_value='# Deal Analysis\n\nLooks healthy.')
    return generator


@pytest.fixture
def make_store(gateway, insight_generator, clock):
    """Factory for a PipelineStore; retries use zero backoff."""

    def _make(deals=None, *, gateway_override=None, max_attempts: int = 3) -> PipelineStore:
        gw = gateway_override or gateway
        queue = PersistenceQueue(gw, max_attempts=max_attempts, backoff_min=0, backoff_max=0)
        return PipelineStore(
            gw,
            insight_generator,
            USER_ID,
            initial_deals=deals,
            persistence=queue,
            clock=clock,
        )

    return _make


@pytest.fixture
def store(make_store, sample_deals) -> PipelineStore:
    return make_store(sample_deals)
