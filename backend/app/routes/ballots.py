"""Weekly experiment ballot endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..auth import CrewIdentity, get_current_crew_member, require_labs_admin
from ..database import get_db
from ..services import ballots
from ..services.labs_errors import LabsPipelineError
from .errors import labs_http_error

# purpose: collect stakeholder votes and activate the winning draft experiment
# status: active
# depends_on: backend.app.services.ballots

router = APIRouter(prefix="/api/labs/ballots", tags=["labs", "ballots"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=schemas.BallotOut)
def create_ballot(
    payload: schemas.BallotCreate,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    try:
        ballot = ballots.create_ballot(db, payload, created_by=identity.crew_member_id)
        db.commit()
        db.refresh(ballot)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    return ballot


@router.get("", response_model=list[schemas.BallotOut])
def list_ballots(
    status_filter: str | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    return ballots.list_ballots(db, status=status_filter)


@router.get("/{ballot_id}", response_model=schemas.BallotOut)
def get_ballot(
    ballot_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    try:
        return ballots.get_ballot(db, ballot_id)
    except LabsPipelineError as exc:
        raise labs_http_error(exc) from exc


@router.post("/{ballot_id}/votes", status_code=status.HTTP_201_CREATED, response_model=schemas.BallotVoteOut)
def cast_vote(
    ballot_id: UUID,
    payload: schemas.VoteCreate,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    try:
        vote = ballots.cast_vote(db, ballot_id, payload, voter_id=identity.crew_member_id)
        db.commit()
        db.refresh(vote)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    return vote


@router.post("/{ballot_id}/close", response_model=schemas.BallotOut)
def close_ballot(
    ballot_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    try:
        ballot = ballots.close_ballot(db, ballot_id, actor_id=identity.crew_member_id)
        db.commit()
        db.refresh(ballot)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    return ballot


@router.get("/{ballot_id}/results", response_model=list[schemas.BallotOptionOut])
def ballot_results(
    ballot_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    try:
        return ballots.ballot_results(db, ballot_id)
    except LabsPipelineError as exc:
        raise labs_http_error(exc) from exc
