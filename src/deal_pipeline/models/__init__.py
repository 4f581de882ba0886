"""
Data models for the Deal Pipeline engine.

Provides the Deal record and stage taxonomy, plus the frozen PipelineState
snapshot that the store replaces on every operation.
"""

from .deal import (
    DEFAULT_COLUMN_ORDER,
    OPEN_STAGES,
    STAGE_PROBABILITY,
    STAGE_TITLES,
    Deal,
    DealCreate,
    DealPriority,
    DealStage,
    DealUpdate,
    coerce_stage,
    probability_for_stage,
)
from .state import Column, FailedMove, PipelineState, build_state, empty_columns

__all__ = [
    # Deal record
    'Deal',
    'DealCreate',
    'DealUpdate',
    'DealStage',
    'DealPriority',
    # Taxonomy
    'DEFAULT_COLUMN_ORDER',
    'OPEN_STAGES',
    'STAGE_PROBABILITY',
    'STAGE_TITLES',
    'coerce_stage',
    'probability_for_stage',
    # State
    'Column',
    'FailedMove',
    'PipelineState',
    'build_state',
    'empty_columns',
]
