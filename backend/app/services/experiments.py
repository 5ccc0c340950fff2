"""Experiment lifecycle: draft -> active -> completed, or terminated early."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from .. import models, schemas
from ..eventlog import record_labs_event
from . import confidence, knowledge_attribution
from .labs_errors import EntityNotFound, StateConflict, ValidationError

# purpose: run structured hypothesis tests and feed completed outcomes into knowledge confidence
# status: active
# depends_on: backend.app.services.knowledge_attribution, backend.app.services.confidence

logger = logging.getLogger(__name__)

ACTIVATION_CHANNELS = ("ballot", "admin")


def get_experiment(db: Session, experiment_id: UUID) -> models.Experiment:
    experiment = db.get(models.Experiment, experiment_id)
    if experiment is None:
        raise EntityNotFound(f"experiment {experiment_id} not found")
    return experiment


def list_experiments(db: Session, *, status: str | None = None) -> list[models.Experiment]:
    query = db.query(models.Experiment)
    if status:
        query = query.filter(models.Experiment.status == status)
    return query.order_by(models.Experiment.created_at.desc()).all()


def list_activation_candidates(db: Session) -> list[models.Experiment]:
    """Draft experiments a ballot may put forward, oldest proposal first."""

    return (
        db.query(models.Experiment)
        .filter(models.Experiment.status == "draft")
        .order_by(models.Experiment.created_at.asc())
        .all()
    )


def create_experiment(
    db: Session,
    payload: schemas.ExperimentCreate,
    *,
    created_by: UUID | None = None,
    source_submission_id: UUID | None = None,
) -> models.Experiment:
    experiment = models.Experiment(
        title=payload.title,
        hypothesis=payload.hypothesis,
        category=payload.category.strip().lower(),
        experiment_type=payload.experiment_type,
        knowledge_type=payload.knowledge_type,
        match_criteria=sorted(knowledge_attribution.normalise_tags(payload.match_criteria)),
        status="draft",
        created_by=created_by,
        source_submission_id=source_submission_id,
    )
    db.add(experiment)
    db.flush()
    record_labs_event(
        db,
        "labs.experiment_created",
        entity_type="experiment",
        entity_id=experiment.id,
        payload={"title": experiment.title, "category": experiment.category, "source_submission_id": source_submission_id},
        actor_id=created_by,
    )
    return experiment


def _require_status(experiment: models.Experiment, allowed: tuple[str, ...], action: str) -> None:
    if experiment.status not in allowed:
        raise StateConflict(
            "experiment",
            experiment.status,
            f"cannot {action} experiment {experiment.title!r} while it is {experiment.status}",
        )


def activate(db: Session, experiment_id: UUID, *, via: str, actor_id: UUID | None = None) -> models.Experiment:
    """Activate a draft experiment after a ballot win or by direct admin decision."""

    if via not in ACTIVATION_CHANNELS:
        raise ValidationError(f"unknown activation channel {via!r}")
    experiment = get_experiment(db, experiment_id)
    _require_status(experiment, ("draft",), "activate")
    experiment.status = "active"
    experiment.activated_via = via
    experiment.activated_at = datetime.now(timezone.utc)
    db.flush()
    record_labs_event(
        db,
        "labs.experiment_activated",
        entity_type="experiment",
        entity_id=experiment.id,
        payload={"via": via},
        actor_id=actor_id,
    )
    logger.info("experiment %s activated via %s", experiment.id, via)
    return experiment


def record_result(
    db: Session,
    experiment_id: UUID,
    payload: schemas.ExperimentResultCreate,
    *,
    recorded_by: UUID | None = None,
) -> models.ExperimentResult:
    experiment = get_experiment(db, experiment_id)
    _require_status(experiment, ("active",), "record results for")
    result = models.ExperimentResult(
        experiment_id=experiment.id,
        passed=payload.passed,
        observation_count=payload.observation_count,
        note=payload.note,
        recorded_by=recorded_by,
    )
    db.add(result)
    db.flush()
    record_labs_event(
        db,
        "labs.experiment_result_recorded",
        entity_type="experiment",
        entity_id=experiment.id,
        payload={"passed": result.passed, "observation_count": result.observation_count},
        actor_id=recorded_by,
    )
    return result


def derive_outcome(results: list[models.ExperimentResult]) -> str:
    passes = sum(result.observation_count for result in results if result.passed)
    fails = sum(result.observation_count for result in results if not result.passed)
    if passes > fails:
        return "positive"
    if fails > passes:
        return "negative"
    return "inconclusive"


def complete(db: Session, experiment_id: UUID, *, actor_id: UUID | None = None) -> models.Experiment:
    """Close an active experiment and attribute its outcome.

    Positive outcomes update or create exactly one knowledge item; negative
    outcomes only count against an item that already matches; inconclusive
    outcomes leave knowledge untouched.
    """

    experiment = get_experiment(db, experiment_id)
    _require_status(experiment, ("active",), "complete")
    results = (
        db.query(models.ExperimentResult)
        .filter(models.ExperimentResult.experiment_id == experiment.id)
        .all()
    )
    if not results:
        raise StateConflict("experiment", experiment.status, "an experiment needs at least one recorded result to complete")

    experiment.outcome = derive_outcome(results)
    experiment.status = "completed"
    experiment.completed_at = datetime.now(timezone.utc)
    db.flush()

    item = None
    if experiment.outcome != "inconclusive":
        item = knowledge_attribution.attribute_experiment(
            db,
            experiment,
            create_if_missing=experiment.outcome == "positive",
            actor_id=actor_id,
        )
    if item is not None:
        experiment.knowledge_item_id = item.id
        db.flush()
        confidence.recompute(db, item.id)

    record_labs_event(
        db,
        "labs.experiment_completed",
        entity_type="experiment",
        entity_id=experiment.id,
        payload={"outcome": experiment.outcome, "knowledge_item_id": experiment.knowledge_item_id},
        actor_id=actor_id,
    )
    logger.info("experiment %s completed as %s", experiment.id, experiment.outcome)
    return experiment


def terminate(
    db: Session,
    experiment_id: UUID,
    *,
    actor_id: UUID | None = None,
    reason: str | None = None,
) -> models.Experiment:
    experiment = get_experiment(db, experiment_id)
    _require_status(experiment, ("draft", "active"), "terminate")
    experiment.status = "terminated"
    experiment.completed_at = datetime.now(timezone.utc)
    db.flush()
    record_labs_event(
        db,
        "labs.experiment_terminated",
        entity_type="experiment",
        entity_id=experiment.id,
        payload={"reason": reason},
        actor_id=actor_id,
    )
    return experiment
