"""
Identifier helpers.

Deal ids minted locally (when the gateway returns none) and correlation ids
for persistence commands are both UUIDv7, so they sort by creation time.
fastuuid.UUID is a Rust-backed type that is NOT isinstance-compatible with
uuid.UUID, hence the roundtrip through the string form.
"""

from uuid import UUID

import fastuuid


def uuid7() -> UUID:
    """Generate a UUIDv7 (time-sortable) as a stdlib uuid.UUID."""
    return UUID(str(fastuuid.uuid7()))


def new_deal_id() -> str:
    """Locally minted deal identifier."""
    return str(uuid7())


def new_correlation_id() -> str:
    """Correlation id for one optimistic command."""
    return f'cmd_{uuid7().hex}'
