"""Per-user PipelineStore registry shared by request handlers."""

import asyncio

import structlog

from deal_pipeline.gateway.base import DealGateway
from deal_pipeline.insight.base import InsightGenerator
from deal_pipeline.store import PipelineStore

logger = structlog.get_logger(__name__)


class StoreRegistry:
    """
    Lazily builds one PipelineStore per user over shared collaborators.

    A store is loaded from the gateway the first time it is acquired. Each
    user's initial load runs once; concurrent first requests for that user
    wait on the same load, and other users are not held up by it.
    """

    def __init__(self, gateway: DealGateway, insight_generator: InsightGenerator):
        self.gateway = gateway
        self.insight_generator = insight_generator
        self._stores: dict[str, PipelineStore] = {}
        self._loads: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._stores)

    async def acquire(self, user_id: str) -> PipelineStore:
        # No await between lookup and registration, so this cannot interleave.
        store = self._stores.get(user_id)
        if store is None:
            store = PipelineStore(self.gateway, self.insight_generator, user_id)
            self._stores[user_id] = store
            self._loads[user_id] = asyncio.create_task(store.fetch_deals())
            logger.info("store_registry.created", user_id=user_id)

        # A cancelled request must not cancel the load other requests share.
        await asyncio.shield(self._loads[user_id])
        return store

    async def flush_all(self) -> None:
        """Wait for every store's queued stage commands."""
        for store in list(self._stores.values()):
            await store.flush()
