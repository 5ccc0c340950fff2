"""SOP checklist management and evidence badge endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import schemas
from ..auth import CrewIdentity, get_current_crew_member, require_labs_admin
from ..database import get_db
from ..services import evidence, sops
from ..services.labs_errors import LabsPipelineError
from .errors import labs_http_error

# purpose: maintain SOP steps and surface knowledge evidence per step
# status: active
# depends_on: backend.app.services.sops, backend.app.services.evidence

router = APIRouter(prefix="/api/labs/sops", tags=["labs", "sops"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=schemas.SopOut)
def create_sop(
    payload: schemas.SopCreate,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    sop = sops.create_sop(db, payload, actor_id=identity.crew_member_id)
    db.commit()
    db.refresh(sop)
    return sop


@router.get("", response_model=list[schemas.SopOut])
def list_sops(
    include_archived: bool = False,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    return sops.list_sops(db, include_archived=include_archived)


@router.get("/{sop_id}", response_model=schemas.SopOut)
def get_sop(
    sop_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    try:
        return sops.get_sop(db, sop_id)
    except LabsPipelineError as exc:
        raise labs_http_error(exc) from exc


@router.get("/{sop_id}/steps", response_model=list[schemas.ChecklistStepOut])
def list_steps(
    sop_id: UUID,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    try:
        sops.get_sop(db, sop_id)
    except LabsPipelineError as exc:
        raise labs_http_error(exc) from exc
    return sops.list_steps(db, sop_id, include_inactive=include_inactive)


@router.post("/{sop_id}/steps", status_code=status.HTTP_201_CREATED, response_model=schemas.ChecklistStepOut)
def add_step(
    sop_id: UUID,
    payload: schemas.ChecklistStepCreate,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    try:
        step = sops.add_step(db, sop_id, payload)
        db.commit()
        db.refresh(step)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    return step


@router.post("/{sop_id}/steps/insert", status_code=status.HTTP_201_CREATED, response_model=schemas.ChecklistStepOut)
def insert_step(
    sop_id: UUID,
    payload: schemas.ChecklistStepInsert,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    try:
        step = sops.insert_step(
            db,
            sop_id,
            schemas.ChecklistStepCreate(**payload.model_dump(exclude={"after_step"})),
            after_step=payload.after_step,
        )
        db.commit()
        db.refresh(step)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    return step


@router.delete("/{sop_id}/steps/{step_order}", response_model=schemas.StepRemovalOut)
def remove_step(
    sop_id: UUID,
    step_order: int,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    try:
        action, step = sops.remove_step(db, sop_id, step_order)
        removal = schemas.StepRemovalOut(
            action=action,
            sop_id=sop_id,
            step_order=step_order,
            checklist_item_id=step.id,
        )
        db.commit()
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    return removal


@router.post("/{sop_id}/archive", response_model=schemas.SopOut)
def archive_sop(
    sop_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    try:
        sop = sops.archive_sop(db, sop_id, actor_id=identity.crew_member_id)
        db.commit()
        db.refresh(sop)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    return sop


@router.get("/{sop_id}/evidence", response_model=list[schemas.StepEvidence])
def get_step_evidence(
    sop_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    return evidence.step_evidence(db, sop_id)
