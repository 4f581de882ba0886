"""
Deal model and stage taxonomy for the sales pipeline.

A Deal is one sale opportunity. Its ``stage`` is stored as the plain stage
string (``'closed-won'``, not ``DealStage.CLOSED_WON``) so it can be used
directly as a column key.

Key design decisions:
- The taxonomy has six stages but only five are wired into columns; ``initial``
  carries a probability but has no column in the default board.
- Stage probability is a fixed mapping applied on every stage transition.
- Deals are frozen; every mutation produces a new instance via model_copy().
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DealStage(str, Enum):
    """Sales pipeline stage taxonomy."""

    QUALIFICATION = 'qualification'
    INITIAL = 'initial'
    PROPOSAL = 'proposal'
    NEGOTIATION = 'negotiation'
    CLOSED_WON = 'closed-won'
    CLOSED_LOST = 'closed-lost'


class DealPriority(str, Enum):
    """How urgently a deal needs attention."""

    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


# Left-to-right board order. Fixed for the lifetime of a session.
DEFAULT_COLUMN_ORDER: tuple[str, ...] = (
    DealStage.QUALIFICATION.value,
    DealStage.PROPOSAL.value,
    DealStage.NEGOTIATION.value,
    DealStage.CLOSED_WON.value,
    DealStage.CLOSED_LOST.value,
)

STAGE_TITLES: dict[str, str] = {
    DealStage.QUALIFICATION.value: 'Qualification',
    DealStage.PROPOSAL.value: 'Proposal',
    DealStage.NEGOTIATION.value: 'Negotiation',
    DealStage.CLOSED_WON.value: 'Closed Won',
    DealStage.CLOSED_LOST.value: 'Closed Lost',
}

STAGE_PROBABILITY: dict[str, int] = {
    DealStage.QUALIFICATION.value: 10,
    DealStage.INITIAL.value: 25,
    DealStage.PROPOSAL.value: 50,
    DealStage.NEGOTIATION.value: 75,
    DealStage.CLOSED_WON.value: 100,
    DealStage.CLOSED_LOST.value: 0,
}

OPEN_STAGES: tuple[str, ...] = (
    DealStage.QUALIFICATION.value,
    DealStage.PROPOSAL.value,
    DealStage.NEGOTIATION.value,
)

FALLBACK_STAGE = DealStage.QUALIFICATION.value


def coerce_stage(value: Any) -> str | None:
    """
    Return the stage string for a DealStage or raw string, or None if unknown.

    Raw strings are matched case-insensitively and with surrounding whitespace
    ignored, since gateway records are not guaranteed to be canonical.
    """
    if isinstance(value, DealStage):
        return value.value
    if isinstance(value, str):
        try:
            return DealStage(value.strip().lower()).value
        except ValueError:
            return None
    return None


def probability_for_stage(stage: str) -> int:
    """Win probability implied by a stage (0 for anything outside the taxonomy)."""
    return STAGE_PROBABILITY.get(stage, 0)


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(tz=timezone.utc)


class Deal(BaseModel):
    """
    A sale opportunity tracked through the pipeline.

    ``stage`` must always match the column holding the deal's id; only the
    store changes it, through move/update.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str = Field(..., description='Stable unique identifier')
    title: str = Field(default='', description='Opportunity name')
    value: float = Field(default=0.0, ge=0.0, description='Monetary value')
    currency: str = Field(default='USD', description='ISO currency code for value')
    stage: str = Field(default=FALLBACK_STAGE, description='Current stage (column id)')
    company: str = Field(default='', description='Owning company name')
    contact: str = Field(default='', description='Primary contact name')
    contact_id: str = Field(default='unknown', description='Primary contact identifier')
    due_date: datetime | None = Field(default=None, description='Expected close date')
    probability: int = Field(default=10, ge=0, le=100, description='Win probability')
    days_in_stage: int = Field(default=0, ge=0, description='Days spent in current stage')
    priority: DealPriority = Field(default=DealPriority.MEDIUM.value)
    notes: str | None = Field(default=None, description='Free-text notes')
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    user_id: str | None = Field(default=None, description='Owning user')


class DealCreate(BaseModel):
    """
    Partial deal submitted for creation.

    Required-ness of title/value/company/contact is enforced by the UI layer,
    not here.
    """

    title: str | None = None
    value: float | None = Field(default=None, ge=0.0)
    currency: str | None = None
    stage: DealStage | None = None
    company: str | None = None
    contact: str | None = None
    contact_id: str | None = None
    due_date: datetime | None = None
    probability: int | None = Field(default=None, ge=0, le=100)
    priority: DealPriority | None = None
    notes: str | None = None

    model_config = ConfigDict(use_enum_values=True)


class DealUpdate(DealCreate):
    """Partial deal submitted for update. Only explicitly set fields apply."""

    days_in_stage: int | None = Field(default=None, ge=0)
