"""Utilities for recording labs pipeline events."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models

# purpose: durable, sequenced record of every labs write so field devices can replay offline work
# inputs: SQLAlchemy session, event type, entity reference, payload, acting crew member
# outputs: LabsEvent rows with monotonic sequence numbers
# status: active


def _json_safe(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(item) for item in value]
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def record_labs_event(
    db: Session,
    event_type: str,
    *,
    entity_type: str,
    entity_id: UUID,
    payload: dict[str, Any] | None = None,
    actor_id: UUID | None = None,
) -> models.LabsEvent:
    """Persist a structured labs event for later replay."""

    latest = db.query(func.max(models.LabsEvent.sequence)).scalar()
    next_sequence = 1 if latest is None else latest + 1
    event = models.LabsEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=_json_safe(payload if isinstance(payload, dict) else {}),
        actor_id=actor_id,
        sequence=next_sequence,
        created_at=datetime.now(timezone.utc),
    )
    db.add(event)
    # the next call in the same transaction must see this sequence number
    db.flush()
    return event


def list_events_after(
    db: Session,
    after_sequence: int = 0,
    *,
    limit: int = 500,
) -> list[models.LabsEvent]:
    """Return events with a sequence greater than ``after_sequence``."""

    return (
        db.query(models.LabsEvent)
        .filter(models.LabsEvent.sequence > after_sequence)
        .order_by(models.LabsEvent.sequence.asc())
        .limit(limit)
        .all()
    )
