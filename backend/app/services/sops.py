"""SOP and checklist step management."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from .. import models, schemas
from ..eventlog import record_labs_event
from .labs_errors import EntityNotFound, StateConflict

# purpose: maintain ordered SOP checklists whose steps may generate observations
# status: active
# depends_on: backend.app.models.Sop, backend.app.models.SopChecklistItem

logger = logging.getLogger(__name__)


def get_sop(db: Session, sop_id: UUID) -> models.Sop:
    sop = db.get(models.Sop, sop_id)
    if sop is None:
        raise EntityNotFound(f"SOP {sop_id} not found")
    return sop


def list_sops(db: Session, *, include_archived: bool = False) -> list[models.Sop]:
    query = db.query(models.Sop)
    if not include_archived:
        query = query.filter(models.Sop.status != "archived")
    return query.order_by(models.Sop.sop_code.asc(), models.Sop.version.desc()).all()


def list_steps(db: Session, sop_id: UUID, *, include_inactive: bool = False) -> list[models.SopChecklistItem]:
    query = db.query(models.SopChecklistItem).filter(models.SopChecklistItem.sop_id == sop_id)
    if not include_inactive:
        query = query.filter(models.SopChecklistItem.is_active.is_(True))
    return query.order_by(models.SopChecklistItem.step_order.asc()).all()


def create_sop(db: Session, payload: schemas.SopCreate, *, actor_id: UUID | None = None) -> models.Sop:
    """Create an SOP at version 1 with its steps numbered from 1."""

    sop = models.Sop(
        sop_code=payload.sop_code,
        title=payload.title,
        category=payload.category,
        trade_family=payload.trade_family,
        default_observation_mode=payload.default_observation_mode,
        required_supervised_completions=payload.required_supervised_completions,
        review_question_count=payload.review_question_count,
        review_pass_threshold=payload.review_pass_threshold,
        match_tags=list(payload.match_tags),
        version=1,
        status="active",
    )
    db.add(sop)
    db.flush()
    for index, step in enumerate(payload.steps, start=1):
        db.add(_build_step(sop.id, index, step))
    db.flush()
    record_labs_event(
        db,
        "labs.sop_created",
        entity_type="sop",
        entity_id=sop.id,
        payload={"sop_code": sop.sop_code, "step_count": len(payload.steps)},
        actor_id=actor_id,
    )
    db.refresh(sop)
    return sop


def add_step(db: Session, sop_id: UUID, payload: schemas.ChecklistStepCreate) -> models.SopChecklistItem:
    """Append a step at the next dense position."""

    _require_active(get_sop(db, sop_id))
    existing = list_steps(db, sop_id)
    step = _build_step(sop_id, len(existing) + 1, payload)
    db.add(step)
    db.flush()
    return step


def insert_step(
    db: Session,
    sop_id: UUID,
    payload: schemas.ChecklistStepCreate,
    *,
    after_step: int,
) -> models.SopChecklistItem:
    """Insert a step after ``after_step`` and shift later active steps down by one."""

    _require_active(get_sop(db, sop_id))
    existing = list_steps(db, sop_id)
    position = min(after_step, len(existing)) + 1
    for item in existing:
        if item.step_order >= position:
            item.step_order += 1
    step = _build_step(sop_id, position, payload)
    db.add(step)
    db.flush()
    return step


def remove_step(db: Session, sop_id: UUID, step_order: int) -> tuple[str, models.SopChecklistItem]:
    """Remove an active step, keeping the remaining active steps dense.

    Steps that observations already reference are soft-invalidated instead
    of deleted. Returns the action taken and the affected step.
    """

    step = (
        db.query(models.SopChecklistItem)
        .filter(
            models.SopChecklistItem.sop_id == sop_id,
            models.SopChecklistItem.step_order == step_order,
            models.SopChecklistItem.is_active.is_(True),
        )
        .first()
    )
    if step is None:
        raise EntityNotFound(f"step {step_order} of SOP {sop_id} not found")

    referenced = (
        db.query(models.Observation.id)
        .filter(models.Observation.checklist_item_id == step.id)
        .first()
        is not None
    )
    if referenced:
        step.is_active = False
        action = "invalidated"
    else:
        db.delete(step)
        action = "deleted"
    db.flush()

    for item in list_steps(db, sop_id):
        if item.step_order > step_order:
            item.step_order -= 1
    db.flush()
    logger.info("SOP %s step %s %s", sop_id, step_order, action)
    return action, step


def archive_sop(db: Session, sop_id: UUID, *, actor_id: UUID | None = None) -> models.Sop:
    sop = get_sop(db, sop_id)
    _require_active(sop)
    sop.status = "archived"
    db.flush()
    record_labs_event(
        db,
        "labs.sop_archived",
        entity_type="sop",
        entity_id=sop.id,
        payload={"sop_code": sop.sop_code},
        actor_id=actor_id,
    )
    return sop


def _require_active(sop: models.Sop) -> None:
    if sop.status == "archived":
        raise StateConflict("sop", sop.status, f"SOP {sop.sop_code} is archived and cannot be edited")


def _build_step(sop_id: UUID, order: int, payload: schemas.ChecklistStepCreate) -> models.SopChecklistItem:
    return models.SopChecklistItem(
        sop_id=sop_id,
        step_order=order,
        title=payload.title,
        generates_observation=payload.generates_observation,
        trigger_timing=payload.trigger_timing,
        script_phase=payload.script_phase,
        knowledge_type=payload.knowledge_type,
        requires_photo=payload.requires_photo,
        is_active=True,
    )
