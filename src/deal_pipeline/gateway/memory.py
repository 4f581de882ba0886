"""In-memory deal gateway.

Dict-backed DealGateway used by the API when no DATABASE_URL is configured,
and by tests that want real gateway semantics rather than mocks.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone

import structlog

from ..errors import GatewayError, GatewayNotFoundError
from ..utils import new_deal_id
from .base import DealGateway, DealRecord, StageUpdate

logger = structlog.get_logger(__name__)


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


class InMemoryDealGateway(DealGateway):
    """
    DealGateway over a process-local dict.

    ``failures`` maps an operation name (``'list'``, ``'create'``, ...) to an
    exception raised on the next call of that operation, which lets callers
    rehearse gateway outages.
    """

    def __init__(self, records: list[DealRecord] | None = None):
        self._records: dict[str, DealRecord] = {}
        self.failures: dict[str, GatewayError] = {}
        for record in records or []:
            stored = copy.deepcopy(record)
            stored.setdefault('id', new_deal_id())
            self._records[str(stored['id'])] = stored

    def _check_failure(self, operation: str) -> None:
        error = self.failures.pop(operation, None)
        if error is not None:
            raise error

    @property
    def records(self) -> dict[str, DealRecord]:
        """Snapshot of stored records, keyed by id."""
        return copy.deepcopy(self._records)

    async def list(self, user_id: str) -> list[DealRecord]:
        self._check_failure('list')
        owned = [r for r in self._records.values() if r.get('user_id') == user_id]
        owned.sort(key=lambda r: str(r.get('created_at') or ''), reverse=True)
        return copy.deepcopy(owned)

    async def create(self, user_id: str, fields: DealRecord) -> DealRecord | None:
        self._check_failure('create')
        now = _now_iso()
        record = {
            **copy.deepcopy(fields),
            'id': new_deal_id(),
            'user_id': user_id,
            'created_at': now,
            'updated_at': now,
        }
        self._records[record['id']] = record
        logger.debug('memory_gateway.created', deal_id=record['id'])
        return copy.deepcopy(record)

    async def update(self, deal_id: str, fields: DealRecord) -> DealRecord | None:
        self._check_failure('update')
        record = self._records.get(deal_id)
        if record is None:
            raise GatewayNotFoundError(
                f'Deal not found: {deal_id}', context={'deal_id': deal_id}
            )
        record.update(copy.deepcopy(fields))
        record['updated_at'] = _now_iso()
        return copy.deepcopy(record)

    async def delete(self, deal_id: str) -> None:
        self._check_failure('delete')
        self._records.pop(deal_id, None)

    async def update_stage(self, deal_id: str, change: StageUpdate) -> DealRecord | None:
        self._check_failure('update_stage')
        record = self._records.get(deal_id)
        if record is None:
            raise GatewayNotFoundError(
                f'Deal not found: {deal_id}', context={'deal_id': deal_id}
            )
        record.update(change.to_record())
        return copy.deepcopy(record)
