"""
Pipeline store: the single source of truth for one user's deal board.

Holds a frozen PipelineState and replaces it wholesale on every operation:
1. Load deals from the gateway and bucket them into stage columns
2. Create / update / delete deals through the gateway, then reconcile locally
3. Move deals between stages optimistically, persisting in the background
4. Track the selected deal and generate an AI insight for it

Gateway and model failures never escape an operation; they are logged and
surfaced through ``state.error``. Every code path that changes deal membership
or deal values recomputes the stage aggregates.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .aggregates import PipelineStats, attention_deals, pipeline_stats, recompute_aggregates
from .errors import ValidationError, describe_error
from .gateway.base import DealGateway, StageUpdate
from .insight.base import InsightGenerator
from .logging import OperationTimer, get_logger, logging_context
from .models.deal import (
    Deal,
    DealCreate,
    DealUpdate,
    coerce_stage,
    probability_for_stage,
    utc_now,
)
from .models.state import Column, FailedMove, PipelineState, build_state
from .normalize import fields_to_record, record_to_deal
from .persistence import CommandOutcome, PersistenceQueue, StageChangeCommand
from .utils import new_correlation_id, new_deal_id

logger = get_logger(__name__)

Listener = Callable[[PipelineState], None]

_STAGE_FIELDS = ('stage', 'probability', 'days_in_stage')


@dataclass(frozen=True)
class _MoveOrigin:
    """Where a deal stood before an optimistic move, kept until it persists."""

    deal_id: str
    source_stage: str
    source_index: int
    destination_stage: str
    previous_probability: int
    previous_days_in_stage: int
    previous_updated_at: datetime


class PipelineStore:
    """
    State container for a user's deal pipeline.

    Usage:
        store = PipelineStore(gateway, insight_generator, user_id='user_1')
        await store.fetch_deals()
        store.move_deal_to_stage(deal_id, 'qualification', 'proposal', 0)
        await store.flush()
    """

    def __init__(
        self,
        gateway: DealGateway,
        insight_generator: InsightGenerator,
        user_id: str,
        *,
        initial_deals: Iterable[Deal] | None = None,
        persistence: PersistenceQueue | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the store.

        Args:
            gateway: Remote deal persistence
            insight_generator: Produces the AI insight text for a deal
            user_id: Owner whose deals this store holds
            initial_deals: Deals to seed the board with (no gateway call)
            persistence: Queue for optimistic move commands; one is built
                         over ``gateway`` when omitted
            clock: Source of ``updated_at`` timestamps
        """
        self.gateway = gateway
        self.insight_generator = insight_generator
        self.user_id = user_id
        self._clock = clock
        self._state = build_state(initial_deals or ())
        self._listeners: list[Listener] = []
        self._move_origins: dict[str, _MoveOrigin] = {}

        self.persistence = persistence or PersistenceQueue(gateway)
        self.persistence.on_outcome = self._handle_outcome

    # =========================================================================
    # State access
    # =========================================================================

    @property
    def state(self) -> PipelineState:
        """The current snapshot. Never mutated; replaced on every change."""
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Call ``listener`` with every new snapshot.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _replace(self, **changes: Any) -> PipelineState:
        self._state = self._state.model_copy(update=changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception('pipeline_store.listener_failed', user_id=self.user_id)
        return self._state

    def _commit(self, deals: dict[str, Deal], columns: dict[str, Column], **changes: Any) -> None:
        """Replace deals and columns together with freshly derived aggregates."""
        aggregates = recompute_aggregates(deals, columns, self._state.column_order)
        self._replace(
            deals=deals,
            columns=columns,
            stage_values=aggregates.stage_values,
            total_pipeline_value=aggregates.total_pipeline_value,
            **changes,
        )

    def _fail(self, operation: str, exc: Exception, fallback: str, **log_fields: Any) -> None:
        message = describe_error(exc, fallback)
        logger.error(
            f'pipeline_store.{operation}_failed',
            user_id=self.user_id,
            error=str(exc),
            error_type=type(exc).__name__,
            **log_fields,
        )
        self._replace(is_loading=False, error=message)

    # =========================================================================
    # Queries
    # =========================================================================

    def deals_in_stage(self, stage: str) -> list[Deal]:
        """Deals of one column, in on-screen order."""
        column = self._state.columns.get(coerce_stage(stage) or stage)
        if column is None:
            return []
        return [self._state.deals[i] for i in column.deal_ids if i in self._state.deals]

    def pipeline_stats(self) -> PipelineStats:
        return pipeline_stats(self._state)

    def attention_deals(self, limit: int = 5) -> list[Deal]:
        return attention_deals(self._state, limit=limit)

    # =========================================================================
    # Load
    # =========================================================================

    async def fetch_deals(self) -> None:
        """
        Replace the board with the user's deals from the gateway.

        On failure the previous deals are kept and ``error`` is set.
        """
        self._replace(is_loading=True, error=None)
        timer = OperationTimer('fetch')

        with logging_context(user_id=self.user_id):
            try:
                with timer.stage('gateway'):
                    records = await self.gateway.list(self.user_id)
            except Exception as e:
                self._fail('fetch', e, 'Failed to fetch deals')
                return

            with timer.stage('normalize'):
                deals: list[Deal] = []
                for record in records or []:
                    try:
                        deals.append(
                            record_to_deal(
                                record,
                                column_stages=self._state.column_order,
                                now=self._clock,
                            )
                        )
                    except ValueError as e:
                        logger.warning(
                            'pipeline_store.record_skipped',
                            user_id=self.user_id,
                            error=str(e),
                        )

            fresh = build_state(deals, self._state.column_order)
            current = self._state
            selected = current.selected_deal if current.selected_deal in fresh.deals else None

            self._replace(
                deals=fresh.deals,
                columns=fresh.columns,
                stage_values=fresh.stage_values,
                total_pipeline_value=fresh.total_pipeline_value,
                selected_deal=selected,
                ai_insight=current.ai_insight if selected else None,
                failed_moves={},
                is_loading=False,
            )
            self._move_origins.clear()

            timer.emit(
                logger,
                'fetched',
                deal_count=len(fresh.deals),
                skipped=len(records or []) - len(deals),
            )

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create_deal(self, partial: DealCreate | dict[str, Any]) -> Deal | None:
        """
        Create a deal remotely and append it to the end of its stage column.

        Missing fields are defaulted (stage → qualification, probability from
        the stage). If the gateway returns no record the deal is built from
        ``partial`` under a locally generated id.

        Returns:
            The created Deal, or None on failure
        """
        try:
            draft = partial if isinstance(partial, DealCreate) else DealCreate.model_validate(partial)
        except PydanticValidationError as e:
            self._fail('create', _invalid(e, 'deal'), 'Invalid deal')
            return None

        fields = fields_to_record(draft.model_dump(exclude_none=True))
        self._replace(is_loading=True, error=None)

        try:
            record = await self.gateway.create(self.user_id, fields)
        except Exception as e:
            self._fail('create', e, 'Failed to create deal')
            return None

        state = self._state
        deal = record_to_deal(
            record or {},
            column_stages=state.column_order,
            fallback={**fields, 'user_id': self.user_id},
            now=self._clock,
            deal_id=new_deal_id(),
        )

        columns = dict(state.columns)
        existing = state.column_of(deal.id)
        if existing is not None:
            columns[existing.id] = _without(existing, deal.id)
        target = columns[deal.stage]
        columns[deal.stage] = target.model_copy(
            update={'deal_ids': (*target.deal_ids, deal.id)}
        )

        self._commit({**state.deals, deal.id: deal}, columns, is_loading=False)
        logger.info(
            'pipeline_store.created',
            user_id=self.user_id,
            deal_id=deal.id,
            stage=deal.stage,
            synthesized=not record,
        )
        return deal

    async def update_deal(self, deal_id: str, partial: DealUpdate | dict[str, Any]) -> Deal | None:
        """
        Patch a deal remotely, then merge the patch into the local deal.

        A stage change in the patch relocates the deal to the top of the
        destination column with the stage's probability, ``days_in_stage``
        reset and ``updated_at`` refreshed. The remote write already carries
        the new stage, so no separate stage command is queued.

        Returns:
            The merged Deal, or None on failure / unknown id
        """
        try:
            patch = partial if isinstance(partial, DealUpdate) else DealUpdate.model_validate(partial)
        except PydanticValidationError as e:
            self._fail(
                'update', _invalid(e, 'deal update'), 'Invalid deal update', deal_id=deal_id
            )
            return None

        fields = fields_to_record(patch.model_dump(exclude_unset=True, exclude_none=True))
        self._replace(is_loading=True, error=None)

        try:
            record = await self.gateway.update(deal_id, fields)
        except Exception as e:
            self._fail('update', e, 'Failed to update deal', deal_id=deal_id)
            return None

        state = self._state
        current = state.deals.get(deal_id)
        if current is None:
            logger.warning('pipeline_store.update_unknown_deal', deal_id=deal_id)
            self._replace(is_loading=False)
            return None

        now = self._clock()
        # Stage fields are local until the patch names a stage; the remote row
        # may predate a queued stage command.
        local = fields_to_record(current.model_dump())
        pinned = {} if 'stage' in fields else {
            k: local[k] for k in _STAGE_FIELDS if k not in fields
        }
        merged = record_to_deal(
            {**local, **(record or {}), **fields, **pinned, 'id': deal_id},
            column_stages=state.column_order,
            now=self._clock,
        )

        if 'stage' in fields and merged.stage != current.stage:
            deals, columns = _relocate(state, merged, merged.stage, 0, now)
            self._commit(deals, columns, is_loading=False)
            logger.info(
                'pipeline_store.updated',
                deal_id=deal_id,
                from_stage=current.stage,
                to_stage=merged.stage,
            )
        else:
            merged = merged.model_copy(update={'updated_at': now})
            self._commit({**state.deals, deal_id: merged}, dict(state.columns), is_loading=False)
            logger.info('pipeline_store.updated', deal_id=deal_id, fields=sorted(fields))

        return self._state.deals[deal_id]

    async def delete_deal(self, deal_id: str) -> bool:
        """
        Delete a deal remotely and drop it from the board.

        Clears the selection (and its insight) when it pointed at the deal.

        Returns:
            True if the gateway delete succeeded
        """
        self._replace(is_loading=True, error=None)

        try:
            await self.gateway.delete(deal_id)
        except Exception as e:
            self._fail('delete', e, 'Failed to delete deal', deal_id=deal_id)
            return False

        state = self._state
        if deal_id not in state.deals and state.column_of(deal_id) is None:
            self._replace(is_loading=False)
            logger.info('pipeline_store.deleted', deal_id=deal_id, known=False)
            return True

        deals = {k: v for k, v in state.deals.items() if k != deal_id}
        columns = {
            stage: _without(column, deal_id) if deal_id in column.deal_ids else column
            for stage, column in state.columns.items()
        }
        changes: dict[str, Any] = {
            'is_loading': False,
            'failed_moves': {
                k: v for k, v in state.failed_moves.items() if v.deal_id != deal_id
            },
        }
        if state.selected_deal == deal_id:
            changes.update(selected_deal=None, ai_insight=None)

        self._commit(deals, columns, **changes)
        logger.info('pipeline_store.deleted', deal_id=deal_id, known=True)
        return True

    # =========================================================================
    # Stage moves
    # =========================================================================

    def move_deal_to_stage(
        self,
        deal_id: str,
        source_stage: str,
        destination_stage: str,
        destination_index: int,
    ) -> str | None:
        """
        Move a deal to another stage column, optimistically.

        Local state changes immediately; the remote write is queued as a
        StageChangeCommand and retried in the background. If it finally fails
        the move is recorded in ``failed_moves`` (see undo_failed_move()).

        A move within one stage is a no-op. ``destination_index`` is clamped
        to the destination column.

        Returns:
            The command's correlation id, or None if nothing moved
        """
        source = coerce_stage(source_stage) or source_stage
        destination = coerce_stage(destination_stage) or destination_stage
        if source == destination:
            return None

        state = self._state
        deal = state.deals.get(deal_id)
        if deal is None:
            logger.warning('pipeline_store.move_unknown_deal', deal_id=deal_id)
            return None
        if destination not in state.columns:
            logger.warning(
                'pipeline_store.move_unknown_stage',
                deal_id=deal_id,
                destination_stage=destination_stage,
            )
            return None

        origin_column = state.column_of(deal_id)
        actual_source = origin_column.id if origin_column is not None else deal.stage
        if actual_source != source:
            logger.warning(
                'pipeline_store.move_source_mismatch',
                deal_id=deal_id,
                claimed=source,
                actual=actual_source,
            )
        if actual_source == destination:
            return None

        now = self._clock()
        deals, columns = _relocate(state, deal, destination, destination_index, now)
        self._commit(deals, columns)

        correlation_id = new_correlation_id()
        self._move_origins[correlation_id] = _MoveOrigin(
            deal_id=deal_id,
            source_stage=actual_source,
            source_index=(
                origin_column.deal_ids.index(deal_id) if origin_column is not None else 0
            ),
            destination_stage=destination,
            previous_probability=deal.probability,
            previous_days_in_stage=deal.days_in_stage,
            previous_updated_at=deal.updated_at,
        )

        moved = deals[deal_id]
        command = StageChangeCommand(
            correlation_id=correlation_id,
            deal_id=deal_id,
            change=StageUpdate(
                stage=moved.stage,
                probability=moved.probability,
                days_in_stage=moved.days_in_stage,
                updated_at=moved.updated_at,
            ),
            issued_at=now,
        )
        logger.info(
            'pipeline_store.moved',
            deal_id=deal_id,
            from_stage=actual_source,
            to_stage=destination,
            correlation_id=correlation_id,
        )
        self.persistence.submit(command)
        return correlation_id

    def _handle_outcome(self, outcome: CommandOutcome) -> None:
        origin = self._move_origins.pop(outcome.command.correlation_id, None)
        if outcome.success or origin is None:
            return

        state = self._state
        message = describe_error(outcome.error, 'Failed to save stage change')
        failed = FailedMove(
            correlation_id=outcome.command.correlation_id,
            deal_id=origin.deal_id,
            source_stage=origin.source_stage,
            source_index=origin.source_index,
            destination_stage=origin.destination_stage,
            previous_probability=origin.previous_probability,
            previous_days_in_stage=origin.previous_days_in_stage,
            previous_updated_at=origin.previous_updated_at,
            error=message,
        )
        deal = state.deals.get(origin.deal_id)
        title = deal.title if deal is not None else origin.deal_id
        self._replace(
            failed_moves={**state.failed_moves, failed.correlation_id: failed},
            error=f'Could not save stage change for "{title}": {message}',
        )
        logger.warning(
            'pipeline_store.move_not_persisted',
            deal_id=origin.deal_id,
            correlation_id=failed.correlation_id,
            attempts=outcome.attempts,
        )

    def undo_failed_move(self, correlation_id: str) -> bool:
        """
        Put a deal whose move failed to persist back where it was.

        Restores stage, column position, probability, ``days_in_stage`` and
        ``updated_at``. Undo is local only. If the deal has since moved again
        or been deleted, the failure record is dropped and nothing else
        changes.

        Returns:
            True if the deal was moved back
        """
        state = self._state
        failed = state.failed_moves.get(correlation_id)
        if failed is None:
            return False

        remaining = {k: v for k, v in state.failed_moves.items() if k != correlation_id}
        deal = state.deals.get(failed.deal_id)
        if (
            deal is None
            or deal.stage != failed.destination_stage
            or failed.source_stage not in state.columns
        ):
            self._replace(failed_moves=remaining)
            logger.info(
                'pipeline_store.undo_skipped',
                deal_id=failed.deal_id,
                correlation_id=correlation_id,
            )
            return False

        deals, columns = _relocate(
            state, deal, failed.source_stage, failed.source_index, failed.previous_updated_at
        )
        deals[deal.id] = deals[deal.id].model_copy(
            update={
                'probability': failed.previous_probability,
                'days_in_stage': failed.previous_days_in_stage,
            }
        )
        self._commit(deals, columns, failed_moves=remaining, error=None)
        logger.info(
            'pipeline_store.move_undone',
            deal_id=deal.id,
            stage=failed.source_stage,
            correlation_id=correlation_id,
        )
        return True

    def dismiss_failed_move(self, correlation_id: str) -> bool:
        """Forget a failed move, keeping the deal where it is."""
        state = self._state
        if correlation_id not in state.failed_moves:
            return False
        self._replace(
            failed_moves={k: v for k, v in state.failed_moves.items() if k != correlation_id}
        )
        return True

    async def flush(self) -> None:
        """Wait for every queued stage command to finish."""
        await self.persistence.drain()

    # =========================================================================
    # Selection and insight
    # =========================================================================

    def select_deal(self, deal_id: str | None) -> None:
        """Set (or clear, with None) the selected deal; always clears the insight."""
        self._replace(selected_deal=deal_id, ai_insight=None)

    async def generate_ai_insight(self, deal_id: str) -> str | None:
        """
        Produce an AI insight for a deal.

        The text lands in ``ai_insight`` only if the deal is still selected
        when the call returns (or, if nothing was selected throughout, the
        deal becomes selected). Otherwise the result is discarded. A second
        call for a deal already being analyzed is ignored.

        Returns:
            The generated text, or None on failure / unknown deal
        """
        state = self._state
        deal = state.deals.get(deal_id)
        if deal is None:
            logger.warning('pipeline_store.insight_unknown_deal', deal_id=deal_id)
            return None
        if deal_id in state.analyzing:
            logger.debug('pipeline_store.insight_in_flight', deal_id=deal_id)
            return None

        selected_at_start = state.selected_deal
        self._replace(analyzing=(*state.analyzing, deal_id))
        timer = OperationTimer('insight')

        try:
            with logging_context(user_id=self.user_id, deal_id=deal_id), timer.stage('generate'):
                text = await self.insight_generator.analyze(deal)
        except Exception as e:
            state = self._state
            changes: dict[str, Any] = {
                'analyzing': tuple(i for i in state.analyzing if i != deal_id),
                'error': describe_error(e, 'Failed to generate AI insight'),
            }
            if state.selected_deal == deal_id:
                changes['ai_insight'] = None
            self._replace(**changes)
            logger.error(
                'pipeline_store.insight_failed',
                deal_id=deal_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        state = self._state
        analyzing = tuple(i for i in state.analyzing if i != deal_id)
        if state.selected_deal == deal_id:
            self._replace(analyzing=analyzing, ai_insight=text)
        elif state.selected_deal is None and selected_at_start is None:
            self._replace(analyzing=analyzing, selected_deal=deal_id, ai_insight=text)
        else:
            self._replace(analyzing=analyzing)
            logger.info(
                'pipeline_store.insight_discarded',
                deal_id=deal_id,
                selected_deal=state.selected_deal,
            )
            return text

        timer.emit(logger, 'insight_generated', deal_id=deal_id, length=len(text))
        return text


def _invalid(exc: PydanticValidationError, what: str) -> ValidationError:
    problems = '; '.join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return ValidationError(
        f'Invalid {what}: {problems}', context={'error_count': exc.error_count()}
    )


def _without(column: Column, deal_id: str) -> Column:
    return column.model_copy(
        update={'deal_ids': tuple(i for i in column.deal_ids if i != deal_id)}
    )


def _relocate(
    state: PipelineState,
    deal: Deal,
    destination: str,
    index: int,
    updated_at: datetime,
) -> tuple[dict[str, Deal], dict[str, Column]]:
    """
    Take ``deal`` out of whichever column holds it and insert it into
    ``destination`` at ``index`` (clamped), applying the stage-entry fields.

    Returns:
        New deals and columns mappings; ``state`` is untouched
    """
    columns = dict(state.columns)
    current = state.column_of(deal.id)
    if current is not None:
        columns[current.id] = _without(current, deal.id)

    target_ids = list(columns[destination].deal_ids)
    index = max(0, min(index, len(target_ids)))
    target_ids.insert(index, deal.id)
    columns[destination] = columns[destination].model_copy(
        update={'deal_ids': tuple(target_ids)}
    )

    moved = deal.model_copy(
        update={
            'stage': destination,
            'probability': probability_for_stage(destination),
            'days_in_stage': 0,
            'updated_at': updated_at,
        }
    )
    return {**state.deals, deal.id: moved}, columns
