"""
Pipeline state snapshot.

PipelineState is the aggregate root the store replaces wholesale on every
operation. It is frozen, and the mappings it holds are never mutated in
place; readers always see a complete snapshot.
"""

from collections.abc import Iterable
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .deal import DEFAULT_COLUMN_ORDER, FALLBACK_STAGE, STAGE_TITLES, Deal


class Column(BaseModel):
    """One stage's bucket; ``deal_ids`` is the on-screen order."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    deal_ids: tuple[str, ...] = ()


class FailedMove(BaseModel):
    """
    A stage move whose persistence gave up after retries.

    Holds what undo_failed_move() needs to put the deal back where it was.
    """

    model_config = ConfigDict(frozen=True)

    correlation_id: str
    deal_id: str
    source_stage: str
    source_index: int
    destination_stage: str
    previous_probability: int
    previous_days_in_stage: int
    previous_updated_at: datetime
    error: str


def empty_columns(column_order: Iterable[str] = DEFAULT_COLUMN_ORDER) -> dict[str, Column]:
    """A fresh column per stage, all empty."""
    return {
        stage: Column(id=stage, title=STAGE_TITLES.get(stage, stage), deal_ids=())
        for stage in column_order
    }


class PipelineState(BaseModel):
    """Full in-memory snapshot of the pipeline board."""

    model_config = ConfigDict(frozen=True)

    deals: dict[str, Deal] = Field(default_factory=dict)
    columns: dict[str, Column] = Field(default_factory=lambda: empty_columns())
    column_order: tuple[str, ...] = DEFAULT_COLUMN_ORDER
    stage_values: dict[str, float] = Field(
        default_factory=lambda: {stage: 0.0 for stage in DEFAULT_COLUMN_ORDER}
    )
    total_pipeline_value: float = 0.0

    selected_deal: str | None = None
    ai_insight: str | None = None
    analyzing: tuple[str, ...] = ()

    is_loading: bool = False
    error: str | None = None
    failed_moves: dict[str, FailedMove] = Field(default_factory=dict)

    @computed_field
    @property
    def is_analyzing(self) -> bool:
        """True while any insight call is in flight."""
        return bool(self.analyzing)

    def column_of(self, deal_id: str) -> Column | None:
        """The column whose deal_ids contains ``deal_id``, if any."""
        for column in self.columns.values():
            if deal_id in column.deal_ids:
                return column
        return None

    def invariant_violations(self) -> list[str]:
        """
        Check the structural invariants of the board.

        Returns:
            Human-readable descriptions of every violation (empty when sound)
        """
        problems: list[str] = []

        if set(self.columns) != set(self.column_order):
            problems.append(
                f'column set {sorted(self.columns)} != column order {list(self.column_order)}'
            )

        seen: dict[str, str] = {}
        for stage, column in self.columns.items():
            if column.id != stage:
                problems.append(f'column keyed {stage!r} has id {column.id!r}')
            for deal_id in column.deal_ids:
                if deal_id in seen:
                    problems.append(
                        f'deal {deal_id!r} listed in both {seen[deal_id]!r} and {stage!r}'
                    )
                    continue
                seen[deal_id] = stage
                if deal_id not in self.deals:
                    problems.append(f'column {stage!r} lists unknown deal {deal_id!r}')

        for deal_id, deal in self.deals.items():
            if deal_id not in seen:
                problems.append(f'deal {deal_id!r} is in no column')
            elif seen[deal_id] != deal.stage:
                problems.append(
                    f'deal {deal_id!r} has stage {deal.stage!r} but sits in {seen[deal_id]!r}'
                )

        from ..aggregates import recompute_aggregates

        expected = recompute_aggregates(self.deals, self.columns, self.column_order)
        if expected.stage_values != self.stage_values:
            problems.append(f'stage_values {self.stage_values} != {expected.stage_values}')
        if expected.total_pipeline_value != self.total_pipeline_value:
            problems.append(
                f'total_pipeline_value {self.total_pipeline_value} '
                f'!= {expected.total_pipeline_value}'
            )

        if self.ai_insight is not None and self.selected_deal is None:
            problems.append('ai_insight set without a selected deal')

        return problems


def build_state(
    deals: Iterable[Deal],
    column_order: tuple[str, ...] = DEFAULT_COLUMN_ORDER,
    **fields,
) -> PipelineState:
    """
    Bucket deals into columns (in iteration order) and derive aggregates.

    A deal whose stage has no column is placed in the fallback column and its
    stage rewritten to match, so the result always satisfies the partition
    invariant.

    Args:
        deals: Deals to place on the board
        column_order: Stage columns to create
        **fields: Extra PipelineState fields (selection, status, ...)

    Returns:
        A consistent PipelineState
    """
    from ..aggregates import recompute_aggregates

    deals_by_id: dict[str, Deal] = {}
    buckets: dict[str, list[str]] = {stage: [] for stage in column_order}

    for deal in deals:
        if deal.id in deals_by_id:
            # Later record wins; drop the earlier placement.
            buckets[deals_by_id[deal.id].stage].remove(deal.id)
        if deal.stage not in buckets:
            deal = deal.model_copy(update={'stage': FALLBACK_STAGE})
        deals_by_id[deal.id] = deal
        buckets[deal.stage].append(deal.id)

    columns = {
        stage: Column(id=stage, title=STAGE_TITLES.get(stage, stage), deal_ids=tuple(ids))
        for stage, ids in buckets.items()
    }
    aggregates = recompute_aggregates(deals_by_id, columns, column_order)

    return PipelineState(
        deals=deals_by_id,
        columns=columns,
        column_order=column_order,
        stage_values=aggregates.stage_values,
        total_pipeline_value=aggregates.total_pipeline_value,
        **fields,
    )
