"""Triage of ad-hoc crew submissions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from .. import models, schemas
from ..eventlog import record_labs_event
from . import experiments, knowledge, knowledge_attribution, observations
from .labs_errors import EntityNotFound, StateConflict

# purpose: route free-form field reports to an observation, an experiment, a knowledge review or the archive
# inputs: SubmissionCreate from crew, SubmissionReview decisions from labs reviewers
# outputs: Submission rows with forward references to what their decision created
# status: active

logger = logging.getLogger(__name__)

DECISION_STATUS = {
    "log_as_observation": "logged_as_observation",
    "promote_to_experiment": "promoted_to_experiment",
    "trigger_review": "triggered_review",
    "archive": "archived",
}


def get_submission(db: Session, submission_id: UUID) -> models.Submission:
    submission = db.get(models.Submission, submission_id)
    if submission is None:
        raise EntityNotFound(f"submission {submission_id} not found")
    return submission


def list_submissions(
    db: Session,
    *,
    status: str | None = None,
    author_id: UUID | None = None,
) -> list[models.Submission]:
    query = db.query(models.Submission)
    if status:
        query = query.filter(models.Submission.status == status)
    if author_id:
        query = query.filter(models.Submission.author_id == author_id)
    return query.order_by(models.Submission.created_at.desc()).all()


def submit(
    db: Session,
    payload: schemas.SubmissionCreate,
    *,
    author_id: UUID,
    submission_id: UUID | None = None,
) -> models.Submission:
    if payload.knowledge_item_id is not None:
        knowledge.get_item(db, payload.knowledge_item_id)
    submission = models.Submission(
        author_id=author_id,
        project_id=payload.project_id,
        category=payload.category.strip().lower(),
        knowledge_type=payload.knowledge_type,
        description=payload.description,
        knowledge_item_id=payload.knowledge_item_id,
        status="submitted",
    )
    if submission_id is not None:
        submission.id = submission_id
    db.add(submission)
    db.flush()
    record_labs_event(
        db,
        "labs.submission_created",
        entity_type="submission",
        entity_id=submission.id,
        payload=payload.model_dump(mode="json"),
        actor_id=author_id,
    )
    return submission


def review(
    db: Session,
    submission_id: UUID,
    payload: schemas.SubmissionReview,
    *,
    reviewer_id: UUID,
) -> models.Submission:
    """Apply a one-way triage decision, creating its forward reference atomically."""

    submission = get_submission(db, submission_id)
    if submission.status != "submitted":
        raise StateConflict(
            "submission",
            submission.status,
            f"submission has already been reviewed ({submission.status})",
        )
    submission.status = "reviewed"
    submission.decision = payload.decision
    submission.reviewed_by = reviewer_id
    submission.reviewed_at = datetime.now(timezone.utc)
    db.flush()
    record_labs_event(
        db,
        "labs.submission_reviewed",
        entity_type="submission",
        entity_id=submission.id,
        payload=payload.model_dump(mode="json"),
        actor_id=reviewer_id,
    )

    if payload.decision == "log_as_observation":
        result = observations.log_flagged_observation(db, submission)
        submission.observation_id = result.observation.id
    elif payload.decision == "promote_to_experiment":
        experiment = experiments.create_experiment(
            db,
            schemas.ExperimentCreate(
                title=payload.experiment_title or _title_from(submission.description, submission.category),
                hypothesis=payload.hypothesis or submission.description,
                category=submission.category,
                experiment_type=payload.experiment_type,
                knowledge_type=submission.knowledge_type,
                match_criteria=payload.match_criteria,
            ),
            created_by=reviewer_id,
            source_submission_id=submission.id,
        )
        submission.experiment_id = experiment.id
    elif payload.decision == "trigger_review":
        target = _review_target(db, submission)
        if target is not None:
            knowledge.place_under_review(db, target.id, actor_id=reviewer_id)
            submission.knowledge_item_id = target.id
        else:
            logger.info("submission %s triggered review with no matching knowledge item", submission.id)

    submission.status = DECISION_STATUS[payload.decision]
    db.flush()
    record_labs_event(
        db,
        "labs.submission_resolved",
        entity_type="submission",
        entity_id=submission.id,
        payload={
            "status": submission.status,
            "observation_id": submission.observation_id,
            "experiment_id": submission.experiment_id,
            "knowledge_item_id": submission.knowledge_item_id,
        },
        actor_id=reviewer_id,
    )
    return submission


def _review_target(db: Session, submission: models.Submission) -> models.KnowledgeItem | None:
    if submission.knowledge_item_id is not None:
        return knowledge.get_item(db, submission.knowledge_item_id)
    targets = knowledge_attribution.resolve_targets(
        db,
        knowledge_type=submission.knowledge_type,
        category=submission.category,
    )
    return targets[0].item if targets else None


def _title_from(description: str, category: str) -> str:
    lines = [line.strip() for line in description.splitlines() if line.strip()]
    if not lines:
        return f"{category.strip().title() or 'Untitled'} experiment"
    first_line = lines[0]
    return first_line if len(first_line) <= 80 else first_line[:77] + "..."
