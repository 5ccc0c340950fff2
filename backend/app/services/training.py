"""Crew competency per SOP: supervised completions, certification and the co-sign gate."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session

from .. import models
from ..eventlog import record_labs_event
from .labs_errors import ConfigurationMissing, EntityNotFound, ValidationError
from .sop_config import SopConfig, SopConfigProvider, default_provider

# purpose: per crew member and SOP competency state gating unsupervised step confirmation
# inputs: supervised completions, review question scores, explicit revocations
# outputs: TrainingRecord rows moving in_progress -> review_ready -> certified
# status: active

logger = logging.getLogger(__name__)

_STATUS_RANK = {"in_progress": 0, "review_ready": 1, "certified": 2}


def _sop_config(db: Session, sop_id: UUID, provider: SopConfigProvider | None = None) -> SopConfig:
    lookup = (provider or default_provider(db)).resolve_sop(sop_id)
    if not lookup.found:
        raise ConfigurationMissing(lookup.reason or f"SOP {sop_id} not found")
    return lookup.value


def get_record(db: Session, crew_member_id: UUID, sop_id: UUID) -> models.TrainingRecord | None:
    return (
        db.query(models.TrainingRecord)
        .filter(
            models.TrainingRecord.crew_member_id == crew_member_id,
            models.TrainingRecord.sop_id == sop_id,
        )
        .first()
    )


def get_or_create(db: Session, crew_member_id: UUID, sop_id: UUID) -> models.TrainingRecord:
    record = get_record(db, crew_member_id, sop_id)
    if record is None:
        record = models.TrainingRecord(
            crew_member_id=crew_member_id,
            sop_id=sop_id,
            status="in_progress",
            supervised_completion_count=0,
            supervised_completions=[],
            review_attempts=[],
        )
        db.add(record)
        db.flush()
    return record


def get_status(db: Session, crew_member_id: UUID, sop_id: UUID) -> str:
    record = get_record(db, crew_member_id, sop_id)
    return record.status if record is not None else "in_progress"


def _advance(record: models.TrainingRecord, config: SopConfig) -> str | None:
    """Move the record forward as far as its progress allows; never backward."""

    target = "in_progress"
    if record.supervised_completion_count >= config.required_supervised_completions:
        target = "review_ready"
        if record.best_review_score is not None and record.best_review_score >= config.review_pass_threshold:
            target = "certified"
    if _STATUS_RANK[target] <= _STATUS_RANK[record.status]:
        return None
    previous = record.status
    record.status = target
    if target == "certified":
        record.certified_at = datetime.now(timezone.utc)
    logger.info(
        "crew member %s moved %s -> %s on SOP %s",
        record.crew_member_id,
        previous,
        target,
        config.sop_code,
    )
    return previous


def _emit_status_change(db: Session, record: models.TrainingRecord, previous: str | None, actor_id: UUID | None):
    if previous is None:
        return
    record_labs_event(
        db,
        "labs.training_status_changed",
        entity_type="training_record",
        entity_id=record.id,
        payload={
            "crew_member_id": record.crew_member_id,
            "sop_id": record.sop_id,
            "previous_status": previous,
            "status": record.status,
        },
        actor_id=actor_id,
    )


def record_supervised_completion(
    db: Session,
    crew_member_id: UUID,
    sop_id: UUID,
    *,
    supervisor_id: UUID | None = None,
    project_id: UUID | None = None,
    observation_id: UUID | None = None,
) -> models.TrainingRecord:
    """Count one supervised run of the SOP toward certification."""

    config = _sop_config(db, sop_id)
    record = get_or_create(db, crew_member_id, sop_id)
    entry = {
        "recorded_at": datetime.now(timezone.utc).isoformat(),
        "supervisor_id": str(supervisor_id) if supervisor_id else None,
        "project_id": str(project_id) if project_id else None,
        "observation_id": str(observation_id) if observation_id else None,
    }
    record.supervised_completions = [*(record.supervised_completions or []), entry]
    record.supervised_completion_count = (record.supervised_completion_count or 0) + 1
    previous = _advance(record, config)
    db.flush()
    record_labs_event(
        db,
        "labs.training_completion_recorded",
        entity_type="training_record",
        entity_id=record.id,
        payload={"crew_member_id": crew_member_id, "sop_id": sop_id, **entry},
        actor_id=supervisor_id,
    )
    _emit_status_change(db, record, previous, supervisor_id)
    return record


def record_review_score(
    db: Session,
    crew_member_id: UUID,
    sop_id: UUID,
    score: int,
    *,
    actor_id: UUID | None = None,
) -> models.TrainingRecord:
    """Store a review question attempt; a passing score certifies once completions suffice."""

    if not 0 <= score <= 100:
        raise ValidationError("review score must be between 0 and 100")
    config = _sop_config(db, sop_id)
    record = get_or_create(db, crew_member_id, sop_id)
    passed = score >= config.review_pass_threshold
    attempt = {
        "score": score,
        "passed": passed,
        "question_count": config.review_question_count,
        "recorded_at": datetime.now(timezone.utc).isoformat(),
    }
    record.review_attempts = [*(record.review_attempts or []), attempt]
    if record.best_review_score is None or score > record.best_review_score:
        record.best_review_score = score
    previous = _advance(record, config)
    db.flush()
    record_labs_event(
        db,
        "labs.training_review_recorded",
        entity_type="training_record",
        entity_id=record.id,
        payload={"crew_member_id": crew_member_id, "sop_id": sop_id, "score": score, "passed": passed},
        actor_id=actor_id,
    )
    _emit_status_change(db, record, previous, actor_id)
    return record


def revoke(
    db: Session,
    crew_member_id: UUID,
    sop_id: UUID,
    *,
    actor_id: UUID | None = None,
    reason: str | None = None,
) -> models.TrainingRecord:
    """Explicit downgrade back to in_progress; progress starts over."""

    record = get_record(db, crew_member_id, sop_id)
    if record is None:
        raise EntityNotFound(f"no training record for crew member {crew_member_id} on SOP {sop_id}")
    previous = record.status
    record.status = "in_progress"
    record.supervised_completion_count = 0
    record.supervised_completions = []
    record.review_attempts = []
    record.best_review_score = None
    record.certified_at = None
    record.revoked_at = datetime.now(timezone.utc)
    record.revoked_by = actor_id
    record.revocation_reason = reason
    db.flush()
    record_labs_event(
        db,
        "labs.training_revoked",
        entity_type="training_record",
        entity_id=record.id,
        payload={"crew_member_id": crew_member_id, "sop_id": sop_id, "previous_status": previous, "reason": reason},
        actor_id=actor_id,
    )
    logger.info("training for crew member %s on SOP %s revoked from %s", crew_member_id, sop_id, previous)
    return record


def crew_summary(db: Session, crew_member_id: UUID) -> dict[str, object]:
    records = (
        db.query(models.TrainingRecord)
        .filter(models.TrainingRecord.crew_member_id == crew_member_id)
        .order_by(models.TrainingRecord.created_at.asc())
        .all()
    )
    counts = {status: 0 for status in _STATUS_RANK}
    for record in records:
        counts[record.status] += 1
    return {"crew_member_id": crew_member_id, "total": len(records), **counts, "records": records}


def sop_roster(db: Session, sop_id: UUID) -> list[models.TrainingRecord]:
    return (
        db.query(models.TrainingRecord)
        .filter(models.TrainingRecord.sop_id == sop_id)
        .order_by(models.TrainingRecord.status.desc(), models.TrainingRecord.created_at.asc())
        .all()
    )


def challenged_items_for_sop(db: Session, sop_id: UUID) -> list[models.KnowledgeItem]:
    """Knowledge items reached through this SOP's observations that are currently challenged."""

    linked_ids = (
        sa.select(models.KnowledgeLink.knowledge_item_id)
        .join(models.Observation, models.Observation.id == models.KnowledgeLink.observation_id)
        .where(models.Observation.sop_id == sop_id)
    )
    return (
        db.query(models.KnowledgeItem)
        .filter(models.KnowledgeItem.id.in_(linked_ids), models.KnowledgeItem.status == "challenged")
        .all()
    )


def requires_cosign(db: Session, crew_member_id: UUID, sop_id: UUID) -> bool:
    """Certified crew skip the supervisor co-sign unless the SOP's knowledge is challenged."""

    if get_status(db, crew_member_id, sop_id) != "certified":
        return True
    return bool(challenged_items_for_sop(db, sop_id))
