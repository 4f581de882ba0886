"""
Derived financial aggregates over the pipeline.

recompute_aggregates() is the only code path that produces ``stage_values``
and ``total_pipeline_value``; the store calls it after every change to deal
membership or deal values and never patches the figures directly.

pipeline_stats() and attention_deals() are read-only reporting helpers over a
state snapshot.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .models.deal import DEFAULT_COLUMN_ORDER, OPEN_STAGES, Deal, DealStage

if TYPE_CHECKING:
    from .models.state import Column, PipelineState


@dataclass(frozen=True)
class Aggregates:
    """Per-stage value sums and their grand total."""

    stage_values: dict[str, float]
    total_pipeline_value: float


def recompute_aggregates(
    deals: Mapping[str, Deal],
    columns: Mapping[str, Column],
    stages: tuple[str, ...] = DEFAULT_COLUMN_ORDER,
) -> Aggregates:
    """
    Sum deal values per stage column.

    Ids listed in a column but missing from ``deals`` contribute zero, and a
    stage with no column sums to zero; neither raises.

    Args:
        deals: Deal id → Deal
        columns: Stage id → Column
        stages: Stages to report, in board order

    Returns:
        Aggregates with one entry per stage
    """
    stage_values: dict[str, float] = {}
    for stage in stages:
        column = columns.get(stage)
        total = 0.0
        if column is not None:
            for deal_id in column.deal_ids:
                deal = deals.get(deal_id)
                if deal is not None:
                    total += deal.value
        stage_values[stage] = total

    return Aggregates(
        stage_values=stage_values,
        total_pipeline_value=sum(stage_values.values()),
    )


@dataclass
class PipelineStats:
    """Headline numbers for the pipeline dashboard."""

    total_deals: int = 0
    total_value: float = 0.0
    closed_won_value: float = 0.0
    avg_deal_size: float = 0.0
    deals_per_stage: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {
            'total_deals': self.total_deals,
            'total_value': self.total_value,
            'closed_won_value': self.closed_won_value,
            'avg_deal_size': self.avg_deal_size,
            'deals_per_stage': dict(self.deals_per_stage),
        }


def pipeline_stats(state: PipelineState) -> PipelineStats:
    """Count and value deals across the whole taxonomy (including ``initial``)."""
    deals = list(state.deals.values())
    total_value = sum(d.value for d in deals)
    closed_won_value = sum(
        d.value for d in deals if d.stage == DealStage.CLOSED_WON.value
    )

    per_stage = {stage.value: 0 for stage in DealStage}
    for deal in deals:
        if deal.stage in per_stage:
            per_stage[deal.stage] += 1

    return PipelineStats(
        total_deals=len(deals),
        total_value=total_value,
        closed_won_value=closed_won_value,
        avg_deal_size=total_value / len(deals) if deals else 0.0,
        deals_per_stage=per_stage,
    )


def attention_deals(state: PipelineState, limit: int = 5) -> list[Deal]:
    """Open deals that have gone longest without an update, oldest first."""
    open_deals = [d for d in state.deals.values() if d.stage in OPEN_STAGES]
    open_deals.sort(key=lambda d: d.updated_at)
    return open_deals[: max(limit, 0)]
