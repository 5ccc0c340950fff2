"""Checklist trigger, observation confirmation and batch queue endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import pubsub, schemas
from ..auth import ROLE_LEVELS, CrewIdentity, get_current_crew_member
from ..database import get_db
from ..services import observation_triggers, observations, training
from ..services.labs_errors import LabsPipelineError
from ..services.sop_config import default_provider
from .errors import labs_http_error

# purpose: expose the field-facing half of the knowledge pipeline to checklist clients
# status: active
# depends_on: backend.app.services.observation_triggers, backend.app.services.observations

router = APIRouter(prefix="/api/labs", tags=["labs"])


def _cosigner(identity: CrewIdentity, requested: UUID | None) -> UUID | None:
    """Return the co-signing supervisor, who must be the authenticated caller."""

    if requested is None:
        return None
    if identity.level < ROLE_LEVELS["supervisor"]:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only a supervisor can co-sign")
    if requested != identity.crew_member_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Supervisors can only co-sign as themselves"
        )
    return requested


async def _publish_confirmation(result: observations.ObservationConfirmation) -> None:
    for item in result.knowledge_items:
        await pubsub.publish_labs_event(
            "knowledge",
            {
                "type": "knowledge_item_updated",
                "id": item.id,
                "status": item.status,
                "confidence_score": item.confidence_score,
            },
        )


@router.post("/checklist-events", response_model=schemas.TriggerDecisionOut)
def evaluate_checklist_event(
    event: schemas.CheckEvent,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    needs_cosign = training.requires_cosign(db, identity.crew_member_id, event.sop_id)
    decision = observation_triggers.evaluate_check_event(
        default_provider(db),
        event,
        identity.crew_member_id,
        requires_cosign=needs_cosign,
    )
    pending_id = None
    if decision.queues_for_batch:
        pending = observations.queue_pending(db, decision.draft)
        db.commit()
        pending_id = pending.id
    return schemas.TriggerDecisionOut(
        action=decision.action,
        reason=decision.reason,
        draft=decision.draft,
        pending_id=pending_id,
    )


@router.post("/observations", status_code=status.HTTP_201_CREATED, response_model=schemas.ObservationOut)
async def confirm_observation(
    payload: schemas.ObservationConfirm,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    if payload.draft.crew_member_id != identity.crew_member_id and identity.level < ROLE_LEVELS["supervisor"]:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot confirm another crew member's step")
    supervisor_id = _cosigner(identity, payload.supervisor_id)
    try:
        result = observations.confirm_observation(
            db,
            payload.draft,
            payload.outcome,
            note=payload.note,
            photo_ref=payload.photo_ref,
            condition=payload.condition,
            deviation_reason=payload.deviation_reason,
            supervisor_id=supervisor_id,
        )
        db.commit()
        db.refresh(result.observation)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    await _publish_confirmation(result)
    return result.observation


@router.get("/observations", response_model=list[schemas.ObservationOut])
def list_observations(
    sop_id: UUID | None = None,
    project_id: UUID | None = None,
    crew_member_id: UUID | None = None,
    limit: int = 200,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    return observations.list_observations(
        db,
        sop_id=sop_id,
        project_id=project_id,
        crew_member_id=crew_member_id,
        limit=min(max(limit, 1), 1000),
    )


@router.get("/observations/{observation_id}", response_model=schemas.ObservationOut)
def get_observation(
    observation_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    try:
        return observations.get_observation(db, observation_id)
    except LabsPipelineError as exc:
        raise labs_http_error(exc) from exc


@router.get("/pending", response_model=list[schemas.PendingObservationOut])
def list_pending(
    project_id: UUID | None = None,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    return observations.list_pending(db, identity.crew_member_id, project_id=project_id)


@router.post("/pending/confirm-all", response_model=schemas.BatchResultOut)
async def confirm_all_pending(
    payload: schemas.PendingBatchConfirm,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    owner = payload.crew_member_id or identity.crew_member_id
    if owner != identity.crew_member_id and identity.level < ROLE_LEVELS["supervisor"]:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot confirm another crew member's queue")
    supervisor_id = _cosigner(identity, payload.supervisor_id)
    try:
        result = observations.confirm_all_pending(
            db,
            owner,
            project_id=payload.project_id,
            supervisor_id=supervisor_id,
        )
        db.commit()
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    if result["confirmed"]:
        await pubsub.publish_labs_event(
            "knowledge",
            {"type": "batch_confirmed", "crew_member_id": owner, "confirmed": result["confirmed"]},
        )
    return result


@router.post("/pending/{pending_id}/confirm", status_code=status.HTTP_201_CREATED, response_model=schemas.ObservationOut)
async def confirm_pending(
    pending_id: UUID,
    payload: schemas.PendingConfirm,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    supervisor_id = _cosigner(identity, payload.supervisor_id)
    try:
        result = observations.confirm_pending(
            db,
            pending_id,
            payload,
            crew_member_id=identity.crew_member_id,
            supervisor_id=supervisor_id,
        )
        db.commit()
        db.refresh(result.observation)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    await _publish_confirmation(result)
    return result.observation


@router.post("/pending/{pending_id}/skip", response_model=schemas.PendingObservationOut)
def skip_pending(
    pending_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    try:
        pending = observations.skip_pending(db, pending_id, crew_member_id=identity.crew_member_id)
        db.commit()
        db.refresh(pending)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    return pending
