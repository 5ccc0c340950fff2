"""Submission intake and triage endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import pubsub, schemas
from ..auth import CrewIdentity, get_current_crew_member, require_labs_admin
from ..database import get_db
from ..services import submissions
from ..services.labs_errors import LabsPipelineError
from .errors import labs_http_error

# purpose: let crew file free-form reports and labs reviewers triage them
# status: active
# depends_on: backend.app.services.submissions

router = APIRouter(prefix="/api/labs/submissions", tags=["labs", "submissions"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=schemas.SubmissionOut)
async def create_submission(
    payload: schemas.SubmissionCreate,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    try:
        submission = submissions.submit(db, payload, author_id=identity.crew_member_id)
        db.commit()
        db.refresh(submission)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    await pubsub.publish_labs_event(
        "triage",
        {"type": "submission_created", "id": submission.id, "category": submission.category},
    )
    return submission


@router.get("", response_model=list[schemas.SubmissionOut])
def list_submissions(
    status_filter: str | None = Query(default=None, alias="status"),
    mine: bool = False,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    return submissions.list_submissions(
        db,
        status=status_filter,
        author_id=identity.crew_member_id if mine else None,
    )


@router.get("/{submission_id}", response_model=schemas.SubmissionOut)
def get_submission(
    submission_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    try:
        return submissions.get_submission(db, submission_id)
    except LabsPipelineError as exc:
        raise labs_http_error(exc) from exc


@router.post("/{submission_id}/review", response_model=schemas.SubmissionOut)
async def review_submission(
    submission_id: UUID,
    payload: schemas.SubmissionReview,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    try:
        submission = submissions.review(db, submission_id, payload, reviewer_id=identity.crew_member_id)
        db.commit()
        db.refresh(submission)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    await pubsub.publish_labs_event(
        "triage",
        {
            "type": "submission_reviewed",
            "id": submission.id,
            "status": submission.status,
            "observation_id": submission.observation_id,
            "experiment_id": submission.experiment_id,
            "knowledge_item_id": submission.knowledge_item_id,
        },
    )
    return submission
