"""Immutable field observations: confirmation, attribution and the batch queue."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from .. import models, schemas
from ..eventlog import record_labs_event
from . import confidence, knowledge, knowledge_attribution, observation_triggers, training
from .labs_errors import ConfigurationMissing, EntityNotFound, StateConflict, ValidationError
from .sop_config import SopConfig, SopConfigProvider, StepConfig, default_provider

# purpose: persist immutable observations, attribute them to knowledge items and recompute confidence
# inputs: observation drafts from the trigger evaluator, batch queue, or submission triage
# outputs: Observation rows, KnowledgeLink rows, recomputed KnowledgeItems, labs events
# status: active
# depends_on: backend.app.services.knowledge_attribution, backend.app.services.confidence

logger = logging.getLogger(__name__)

PROCEDURE_MISSING_MESSAGE = "this observation can't be attributed: its procedure no longer exists"
STEP_MISSING_MESSAGE = "this observation can't be attributed: its checklist step was removed"


@dataclass
class ObservationConfirmation:
    observation: models.Observation
    knowledge_items: list[models.KnowledgeItem] = field(default_factory=list)
    supervised_completion_recorded: bool = False


def validate_confirmation(
    sop: SopConfig,
    step: StepConfig,
    outcome: str,
    *,
    note: str | None = None,
    photo_ref: str | None = None,
    condition: str | None = None,
    deviation_reason: str | None = None,
) -> None:
    """Reject incomplete confirmations before anything is written.

    Requirements come from the resolved SOP and step, never from the
    ``requires_*`` flags a client echoes back on the draft.
    """

    needs_note, needs_photo, needs_condition = observation_triggers.required_fields(sop, step)
    missing: list[str] = []
    if needs_note and not (note or "").strip():
        missing.append("note")
    if needs_photo and not photo_ref:
        missing.append("photo")
    if needs_condition and not (condition or "").strip():
        missing.append("condition")
    if outcome == "deviated" and not ((deviation_reason or "").strip() or (note or "").strip()):
        missing.append("deviation reason")
    if missing:
        raise ValidationError(f"observation is missing required fields: {', '.join(missing)}")


def _resolve_configuration(
    db: Session,
    provider: SopConfigProvider,
    draft: schemas.ObservationDraft,
) -> tuple[SopConfig, StepConfig]:
    sop_lookup = provider.resolve_sop(draft.sop_id)
    if not sop_lookup.found:
        logger.warning("confirmation for unresolved SOP %s: %s", draft.sop_id, sop_lookup.reason)
        raise ConfigurationMissing(PROCEDURE_MISSING_MESSAGE)
    step_order = draft.step_order
    if draft.checklist_item_id is not None:
        # steps may have been renumbered since the draft was produced
        stored = db.get(models.SopChecklistItem, draft.checklist_item_id)
        if stored is None or not stored.is_active:
            raise ConfigurationMissing(STEP_MISSING_MESSAGE)
        step_order = stored.step_order
    step_lookup = provider.resolve_step(draft.sop_id, step_order)
    if not step_lookup.found:
        logger.warning("confirmation for unresolved step %s/%s: %s", draft.sop_id, step_order, step_lookup.reason)
        raise ConfigurationMissing(STEP_MISSING_MESSAGE)
    if not step_lookup.value.generates_observation:
        raise ValidationError(f"step {step_order} no longer generates observations")
    return sop_lookup.value, step_lookup.value


def confirm_observation(
    db: Session,
    draft: schemas.ObservationDraft,
    outcome: str = "confirmed",
    *,
    note: str | None = None,
    photo_ref: str | None = None,
    condition: str | None = None,
    deviation_reason: str | None = None,
    supervisor_id: UUID | None = None,
    source: str = "checklist",
    provider: SopConfigProvider | None = None,
    observation_id: UUID | None = None,
    captured_at: datetime | None = None,
) -> ObservationConfirmation:
    """Confirm a draft into an immutable observation and refresh attributed knowledge.

    Required fields and the co-sign requirement are re-derived from the
    resolved SOP and the training gate at confirmation time; the flags
    carried on the draft are advisory. ``supervisor_id`` must already be
    an authenticated supervisor; callers enforce that.
    """

    if supervisor_id is not None and supervisor_id == draft.crew_member_id:
        raise ValidationError("a crew member cannot co-sign their own observation")
    sop, step = _resolve_configuration(db, provider or default_provider(db), draft)
    validate_confirmation(
        sop,
        step,
        outcome,
        note=note,
        photo_ref=photo_ref,
        condition=condition,
        deviation_reason=deviation_reason,
    )
    if supervisor_id is None and training.requires_cosign(db, draft.crew_member_id, sop.sop_id):
        raise ValidationError("a supervisor co-sign is required to confirm this step")

    extra: dict[str, Any] = {}
    if captured_at is not None:
        extra["captured_at"] = captured_at
    return store_observation(
        db,
        observation_id=observation_id,
        fields={
            **extra,
            "sop_id": sop.sop_id,
            "step_order": step.step_order,
            "checklist_item_id": step.checklist_item_id,
            "crew_member_id": draft.crew_member_id,
            "project_id": draft.project_id,
            "knowledge_type": step.knowledge_type,
            "category": sop.category,
            "outcome": outcome,
            "note": note,
            "photo_ref": photo_ref,
            "condition": condition,
            "deviation_reason": deviation_reason,
            "source": source,
            "supervisor_id": supervisor_id,
        },
        tags=sop.match_tags,
        credit_training=True,
    )


def store_observation(
    db: Session,
    *,
    fields: dict[str, Any],
    tags: Iterable[str] = (),
    observation_id: UUID | None = None,
    assigned_item_id: UUID | None = None,
    credit_training: bool = False,
) -> ObservationConfirmation:
    """Persist, attribute, recompute and log one observation.

    Shared by live confirmation and submission triage so every path
    produces the same event payload. Offline replay reaches it through
    ``confirm_observation``.
    """

    values = dict(fields)
    values["category"] = values["category"].strip().lower()
    values.setdefault("captured_at", datetime.now(timezone.utc))
    observation = models.Observation(**values)
    if observation_id is not None:
        observation.id = observation_id
    db.add(observation)
    db.flush()

    tag_list = sorted(knowledge_attribution.normalise_tags(tags))
    if assigned_item_id is not None:
        knowledge_attribution.link_observation_manually(db, assigned_item_id, observation.id)
        items = [knowledge.get_item(db, assigned_item_id)]
    else:
        items = knowledge_attribution.attribute_observation(
            db, observation, tags=tag_list, actor_id=observation.crew_member_id
        )
    refreshed = [confidence.recompute(db, item.id) for item in items]

    credited = False
    if (
        credit_training
        and observation.sop_id is not None
        and observation.supervisor_id is not None
        and training.get_status(db, observation.crew_member_id, observation.sop_id) != "certified"
    ):
        training.record_supervised_completion(
            db,
            observation.crew_member_id,
            observation.sop_id,
            supervisor_id=observation.supervisor_id,
            project_id=observation.project_id,
            observation_id=observation.id,
        )
        credited = True

    record_labs_event(
        db,
        f"labs.observation_{observation.outcome}",
        entity_type="observation",
        entity_id=observation.id,
        payload={
            **{key: getattr(observation, key) for key in REPLAYED_FIELDS},
            "tags": tag_list,
            "assigned_item_id": assigned_item_id,
            "credit_training": credit_training,
            "knowledge_item_ids": [item.id for item in refreshed],
        },
        actor_id=observation.crew_member_id,
    )
    logger.info(
        "observation %s (%s) attributed to %d knowledge item(s)",
        observation.id,
        observation.outcome,
        len(refreshed),
    )
    return ObservationConfirmation(observation, refreshed, credited)


REPLAYED_FIELDS = (
    "sop_id",
    "step_order",
    "checklist_item_id",
    "crew_member_id",
    "project_id",
    "knowledge_type",
    "category",
    "outcome",
    "note",
    "photo_ref",
    "condition",
    "deviation_reason",
    "source",
    "supervisor_id",
    "submission_id",
    "captured_at",
)


def log_flagged_observation(db: Session, submission: models.Submission) -> ObservationConfirmation:
    """Record a triaged submission as a flagged, category-only observation."""

    assigned = None
    if submission.knowledge_item_id is not None:
        hinted = knowledge.get_item(db, submission.knowledge_item_id)
        if hinted.status != "archived":
            assigned = hinted.id
    return store_observation(
        db,
        fields={
            "crew_member_id": submission.author_id,
            "project_id": submission.project_id,
            "knowledge_type": submission.knowledge_type,
            "category": submission.category,
            "outcome": "flagged",
            "note": submission.description,
            "source": "submission",
            "submission_id": submission.id,
        },
        assigned_item_id=assigned,
    )


def get_observation(db: Session, observation_id: UUID) -> models.Observation:
    observation = db.get(models.Observation, observation_id)
    if observation is None:
        raise EntityNotFound(f"observation {observation_id} not found")
    return observation


def list_observations(
    db: Session,
    *,
    sop_id: UUID | None = None,
    project_id: UUID | None = None,
    crew_member_id: UUID | None = None,
    limit: int = 200,
) -> list[models.Observation]:
    query = db.query(models.Observation)
    if sop_id:
        query = query.filter(models.Observation.sop_id == sop_id)
    if project_id:
        query = query.filter(models.Observation.project_id == project_id)
    if crew_member_id:
        query = query.filter(models.Observation.crew_member_id == crew_member_id)
    return query.order_by(models.Observation.captured_at.desc()).limit(limit).all()


# --- batch-timed steps ----------------------------------------------------


def queue_pending(db: Session, draft: schemas.ObservationDraft) -> models.PendingObservation:
    """Hold a batch-timed draft until the crew member finishes the task."""

    pending = models.PendingObservation(
        sop_id=draft.sop_id,
        step_order=draft.step_order,
        crew_member_id=draft.crew_member_id,
        project_id=draft.project_id,
        draft=draft.model_dump(mode="json"),
        status="pending",
    )
    db.add(pending)
    db.flush()
    record_labs_event(
        db,
        "labs.observation_queued",
        entity_type="pending_observation",
        entity_id=pending.id,
        payload={"sop_id": pending.sop_id, "step_order": pending.step_order, "project_id": pending.project_id},
        actor_id=pending.crew_member_id,
    )
    return pending


def list_pending(
    db: Session,
    crew_member_id: UUID,
    *,
    project_id: UUID | None = None,
    status: str = "pending",
) -> list[models.PendingObservation]:
    query = db.query(models.PendingObservation).filter(
        models.PendingObservation.crew_member_id == crew_member_id,
        models.PendingObservation.status == status,
    )
    if project_id:
        query = query.filter(models.PendingObservation.project_id == project_id)
    return query.order_by(models.PendingObservation.queued_at.asc()).all()


def _open_pending(
    db: Session, pending_id: UUID, crew_member_id: UUID, *, as_supervisor: bool = False
) -> models.PendingObservation:
    pending = db.get(models.PendingObservation, pending_id)
    if pending is None:
        raise EntityNotFound(f"pending observation {pending_id} not found")
    if pending.crew_member_id != crew_member_id and not as_supervisor:
        raise ValidationError("pending observation belongs to another crew member")
    if pending.status != "pending":
        raise StateConflict("pending_observation", pending.status, f"pending observation is already {pending.status}")
    return pending


def confirm_pending(
    db: Session,
    pending_id: UUID,
    payload: schemas.PendingConfirm,
    *,
    crew_member_id: UUID,
    supervisor_id: UUID | None = None,
) -> ObservationConfirmation:
    """Confirm one queued draft; a co-signing supervisor may confirm another crew member's queue."""

    pending = _open_pending(db, pending_id, crew_member_id, as_supervisor=supervisor_id is not None)
    draft = schemas.ObservationDraft.model_validate(pending.draft)
    result = confirm_observation(
        db,
        draft,
        payload.outcome,
        note=payload.note,
        photo_ref=payload.photo_ref,
        condition=payload.condition,
        deviation_reason=payload.deviation_reason,
        supervisor_id=supervisor_id,
        source="batch",
    )
    pending.status = "confirmed"
    pending.observation_id = result.observation.id
    pending.processed_at = datetime.now(timezone.utc)
    db.flush()
    return result


def skip_pending(db: Session, pending_id: UUID, *, crew_member_id: UUID) -> models.PendingObservation:
    pending = _open_pending(db, pending_id, crew_member_id)
    pending.status = "skipped"
    pending.processed_at = datetime.now(timezone.utc)
    db.flush()
    record_labs_event(
        db,
        "labs.observation_skipped",
        entity_type="pending_observation",
        entity_id=pending.id,
        payload={"sop_id": pending.sop_id, "step_order": pending.step_order},
        actor_id=crew_member_id,
    )
    return pending


def confirm_all_pending(
    db: Session,
    crew_member_id: UUID,
    *,
    project_id: UUID | None = None,
    supervisor_id: UUID | None = None,
) -> dict[str, Any]:
    """One-tap confirm every queued draft that needs no extra detail.

    Drafts requiring a note, photo or condition (or whose step vanished)
    stay pending and are reported as skipped for this pass.
    """

    queued = list_pending(db, crew_member_id, project_id=project_id)
    created: list[UUID] = []
    left_pending = 0
    for pending in queued:
        draft = schemas.ObservationDraft.model_validate(pending.draft)
        try:
            result = confirm_observation(db, draft, "confirmed", supervisor_id=supervisor_id, source="batch")
        except (ValidationError, ConfigurationMissing) as exc:
            logger.info("pending observation %s left for manual confirmation: %s", pending.id, exc)
            left_pending += 1
            continue
        pending.status = "confirmed"
        pending.observation_id = result.observation.id
        pending.processed_at = datetime.now(timezone.utc)
        created.append(result.observation.id)
    db.flush()
    return {
        "total_items": len(queued),
        "confirmed": len(created),
        "skipped": left_pending,
        "observations_created": created,
    }
