"""Training and certification gate endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import pubsub, schemas
from ..auth import CrewIdentity, get_current_crew_member, require_labs_admin, require_supervisor
from ..database import get_db
from ..services import evidence, training
from ..services.labs_errors import LabsPipelineError
from .errors import labs_http_error

# purpose: record supervised completions and review scores, expose gate state for checklist display
# status: active
# depends_on: backend.app.services.training

router = APIRouter(prefix="/api/labs/training", tags=["labs", "training"])


async def _publish_record(record) -> None:
    await pubsub.publish_labs_event(
        "training",
        {
            "type": "training_record_updated",
            "crew_member_id": record.crew_member_id,
            "sop_id": record.sop_id,
            "status": record.status,
        },
    )


@router.post("/completions", response_model=schemas.TrainingRecordOut)
async def record_supervised_completion(
    payload: schemas.SupervisedCompletionCreate,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_supervisor),
):
    try:
        record = training.record_supervised_completion(
            db,
            payload.crew_member_id,
            payload.sop_id,
            supervisor_id=identity.crew_member_id,
            project_id=payload.project_id,
        )
        db.commit()
        db.refresh(record)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    await _publish_record(record)
    return record


@router.post("/review-scores", response_model=schemas.TrainingRecordOut)
async def record_review_score(
    payload: schemas.ReviewScoreCreate,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_supervisor),
):
    try:
        record = training.record_review_score(
            db,
            payload.crew_member_id,
            payload.sop_id,
            payload.score,
            actor_id=identity.crew_member_id,
        )
        db.commit()
        db.refresh(record)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    await _publish_record(record)
    return record


@router.get("/status", response_model=schemas.CrewGateOut)
def get_gate_status(
    sop_id: UUID,
    crew_member_id: UUID | None = None,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    return evidence.crew_gate(db, crew_member_id or identity.crew_member_id, sop_id)


@router.post("/revoke", response_model=schemas.TrainingRecordOut)
async def revoke_certification(
    payload: schemas.TrainingRevoke,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    try:
        record = training.revoke(
            db,
            payload.crew_member_id,
            payload.sop_id,
            actor_id=identity.crew_member_id,
            reason=payload.reason,
        )
        db.commit()
        db.refresh(record)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    await _publish_record(record)
    return record


@router.get("/crew/{crew_member_id}", response_model=schemas.CrewTrainingSummary)
def crew_summary(
    crew_member_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    return training.crew_summary(db, crew_member_id)


@router.get("/sops/{sop_id}/roster", response_model=list[schemas.TrainingRecordOut])
def sop_roster(
    sop_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_supervisor),
):
    return training.sop_roster(db, sop_id)
