"""Remote deal gateway interface -- the persistence boundary of the pipeline store.

Every backing store (Postgres/Supabase, in-memory) implements this ABC. The
store only ever talks to a DealGateway; it never sees SQL or HTTP.

Records crossing this boundary are plain dicts using the backing table's
column names (see deal_pipeline.normalize). Failures are raised as
GatewayError subclasses; the store converts them into its ``error`` field.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any

DealRecord = dict[str, Any]


@dataclass(frozen=True)
class StageUpdate:
    """Payload persisted after an optimistic stage move."""

    stage: str
    probability: int
    days_in_stage: int
    updated_at: datetime

    def to_record(self) -> DealRecord:
        return {
            'stage': self.stage,
            'probability': self.probability,
            'days_in_stage': self.days_in_stage,
            'updated_at': self.updated_at.isoformat(),
        }


class DealGateway(ABC):
    """Abstract interface for remote deal persistence.

    Methods:
        list: All deals owned by a user, newest first.
        create: Insert a deal, return the stored record (or None if the
            backend returned nothing).
        update: Patch a deal, return the stored record (or None).
        delete: Remove a deal. Deleting an unknown id is not an error.
        update_stage: Persist an optimistic stage move.
    """

    @abstractmethod
    async def list(self, user_id: str) -> list[DealRecord]:
        """Fetch every deal owned by ``user_id``."""
        ...

    @abstractmethod
    async def create(self, user_id: str, fields: DealRecord) -> DealRecord | None:
        """Insert a deal for ``user_id``."""
        ...

    @abstractmethod
    async def update(self, deal_id: str, fields: DealRecord) -> DealRecord | None:
        """Patch the given columns of a deal."""
        ...

    @abstractmethod
    async def delete(self, deal_id: str) -> None:
        """Remove a deal."""
        ...

    @abstractmethod
    async def update_stage(self, deal_id: str, change: StageUpdate) -> DealRecord | None:
        """Persist a stage transition."""
        ...

    async def verify_connectivity(self) -> bool:
        """Return True if the backing store is reachable."""
        return True

    async def close(self) -> None:
        """Release any held resources."""
        return None
