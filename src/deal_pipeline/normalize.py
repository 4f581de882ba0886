"""
Gateway record ⇄ Deal normalization.

Remote records use the backing table's names (``amount``/``value``,
``contact_id``, ``days_in_stage``, ``created_at``/``updated_at``, ``due_date``
or ``dueDate``). Anything missing or malformed is defaulted, never raised:
a bad record still lands on the board, in the fallback stage if need be.
"""

from datetime import date, datetime, timezone
from typing import Any, Callable

import structlog

from .config import config
from .models.deal import (
    DEFAULT_COLUMN_ORDER,
    FALLBACK_STAGE,
    Deal,
    DealPriority,
    coerce_stage,
    probability_for_stage,
    utc_now,
)

logger = structlog.get_logger(__name__)

# Deal field → external record column
_FIELD_TO_RECORD = {
    'title': 'title',
    'value': 'value',
    'currency': 'currency',
    'stage': 'stage',
    'company': 'company',
    'contact': 'contact',
    'contact_id': 'contact_id',
    'due_date': 'due_date',
    'probability': 'probability',
    'days_in_stage': 'days_in_stage',
    'priority': 'priority',
    'notes': 'notes',
    'created_at': 'created_at',
    'updated_at': 'updated_at',
    'user_id': 'user_id',
}

_PRIORITIES = {p.value for p in DealPriority}


def _to_datetime(val: Any) -> datetime | None:
    """Coerce a datetime, date, ISO string or epoch number; None if unparseable."""
    if val is None or val == '':
        return None
    if isinstance(val, datetime):
        return val if val.tzinfo else val.replace(tzinfo=timezone.utc)
    if isinstance(val, date):
        return datetime(val.year, val.month, val.day, tzinfo=timezone.utc)
    if isinstance(val, (int, float)):
        # JS-style millisecond epochs are far larger than second epochs.
        seconds = val / 1000 if val > 1e11 else val
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(val, str):
        text = val.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _to_number(val: Any, default: float = 0.0) -> float:
    if val is None or isinstance(val, bool):
        return default
    try:
        number = float(val)
    except (TypeError, ValueError):
        return default
    return number if number == number else default  # NaN


def _to_int(val: Any, default: int, low: int, high: int | None = None) -> int:
    if val is None or isinstance(val, bool):
        return default
    try:
        number = int(float(val))
    except (TypeError, ValueError):
        return default
    number = max(low, number)
    return min(number, high) if high is not None else number


def _str_or(val: Any, default: str) -> str:
    if val is None:
        return default
    return str(val)


def record_to_deal(
    record: dict[str, Any],
    *,
    column_stages: tuple[str, ...] = DEFAULT_COLUMN_ORDER,
    fallback: dict[str, Any] | None = None,
    now: Callable[[], datetime] = utc_now,
    deal_id: str | None = None,
) -> Deal:
    """
    Normalize a gateway record into a Deal.

    Args:
        record: Raw record from the gateway
        column_stages: Stages that have a column; other stages fall back
        fallback: Values to use where the record is silent (e.g. the partial
                  submitted to create)
        now: Clock for missing timestamps
        deal_id: Identifier to use when the record carries none

    Returns:
        A valid Deal
    """
    fallback = fallback or {}

    def pick(*keys: str) -> Any:
        for key in keys:
            if record.get(key) is not None:
                return record[key]
        for key in keys:
            if fallback.get(key) is not None:
                return fallback[key]
        return None

    raw_id = pick('id')
    resolved_id = str(raw_id) if raw_id is not None else deal_id
    if not resolved_id:
        raise ValueError('record has no id and no fallback id was supplied')

    raw_stage = pick('stage')
    stage = coerce_stage(raw_stage)
    if stage not in column_stages:
        if raw_stage is not None:
            logger.warning(
                'normalize.stage_defaulted',
                deal_id=resolved_id,
                stage=raw_stage,
                fallback=FALLBACK_STAGE,
            )
        stage = FALLBACK_STAGE

    raw_priority = pick('priority')
    priority = str(raw_priority).lower() if raw_priority is not None else DealPriority.MEDIUM.value
    if priority not in _PRIORITIES:
        priority = DealPriority.MEDIUM.value

    created_at = _to_datetime(pick('created_at', 'createdAt')) or now()
    updated_at = _to_datetime(pick('updated_at', 'updatedAt')) or created_at

    return Deal(
        id=resolved_id,
        title=_str_or(pick('title'), ''),
        value=max(_to_number(pick('value', 'amount')), 0.0),
        currency=_str_or(pick('currency'), config.DEFAULT_CURRENCY),
        stage=stage,
        company=_str_or(pick('company'), ''),
        contact=_str_or(pick('contact'), ''),
        contact_id=_str_or(pick('contact_id', 'contactId'), config.UNKNOWN_CONTACT_ID),
        due_date=_to_datetime(pick('due_date', 'dueDate', 'expected_close_date')),
        probability=_to_int(
            pick('probability'), probability_for_stage(stage), low=0, high=100
        ),
        days_in_stage=_to_int(pick('days_in_stage', 'daysInStage'), 0, low=0),
        priority=priority,
        notes=pick('notes'),
        created_at=created_at,
        updated_at=updated_at,
        user_id=_str_or(pick('user_id', 'userId'), '') or None,
    )


def fields_to_record(fields: dict[str, Any]) -> dict[str, Any]:
    """
    Map Deal field names to gateway column names.

    Datetimes become ISO 8601 strings; unknown keys are dropped.
    """
    record: dict[str, Any] = {}
    for name, value in fields.items():
        column = _FIELD_TO_RECORD.get(name)
        if column is None:
            continue
        if isinstance(value, datetime):
            value = value.isoformat()
        record[column] = value
    return record
