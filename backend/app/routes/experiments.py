"""Experiment lifecycle endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import pubsub, schemas
from ..auth import CrewIdentity, get_current_crew_member, require_labs_admin, require_supervisor
from ..database import get_db
from ..services import experiments
from ..services.labs_errors import LabsPipelineError
from .errors import labs_http_error

# purpose: create, activate, record and close structured experiments
# status: active
# depends_on: backend.app.services.experiments

router = APIRouter(prefix="/api/labs/experiments", tags=["labs", "experiments"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=schemas.ExperimentOut)
def create_experiment(
    payload: schemas.ExperimentCreate,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    experiment = experiments.create_experiment(db, payload, created_by=identity.crew_member_id)
    db.commit()
    db.refresh(experiment)
    return experiment


@router.get("", response_model=list[schemas.ExperimentOut])
def list_experiments(
    status_filter: str | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    return experiments.list_experiments(db, status=status_filter)


@router.get("/candidates", response_model=list[schemas.ExperimentOut])
def list_activation_candidates(
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    return experiments.list_activation_candidates(db)


@router.get("/{experiment_id}", response_model=schemas.ExperimentOut)
def get_experiment(
    experiment_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    try:
        return experiments.get_experiment(db, experiment_id)
    except LabsPipelineError as exc:
        raise labs_http_error(exc) from exc


@router.post("/{experiment_id}/activate", response_model=schemas.ExperimentOut)
def activate_experiment(
    experiment_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    try:
        experiment = experiments.activate(db, experiment_id, via="admin", actor_id=identity.crew_member_id)
        db.commit()
        db.refresh(experiment)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    return experiment


@router.post(
    "/{experiment_id}/results",
    status_code=status.HTTP_201_CREATED,
    response_model=schemas.ExperimentResultOut,
)
def record_result(
    experiment_id: UUID,
    payload: schemas.ExperimentResultCreate,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_supervisor),
):
    try:
        result = experiments.record_result(db, experiment_id, payload, recorded_by=identity.crew_member_id)
        db.commit()
        db.refresh(result)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    return result


@router.post("/{experiment_id}/complete", response_model=schemas.ExperimentOut)
async def complete_experiment(
    experiment_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    try:
        experiment = experiments.complete(db, experiment_id, actor_id=identity.crew_member_id)
        db.commit()
        db.refresh(experiment)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    if experiment.knowledge_item_id:
        await pubsub.publish_labs_event(
            "knowledge",
            {
                "type": "experiment_completed",
                "id": experiment.id,
                "outcome": experiment.outcome,
                "knowledge_item_id": experiment.knowledge_item_id,
            },
        )
    return experiment


@router.post("/{experiment_id}/terminate", response_model=schemas.ExperimentOut)
def terminate_experiment(
    experiment_id: UUID,
    payload: schemas.ExperimentTerminate,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    try:
        experiment = experiments.terminate(
            db, experiment_id, actor_id=identity.crew_member_id, reason=payload.reason
        )
        db.commit()
        db.refresh(experiment)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    return experiment
