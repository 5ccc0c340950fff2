"""Export and replay of labs events captured by offline field devices."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable
from uuid import UUID

import pydantic
from sqlalchemy.orm import Session

from .. import models, schemas
from ..eventlog import list_events_after
from . import confidence, knowledge_attribution, observations, submissions
from .labs_errors import ConfigurationMissing, EntityNotFound, ValidationError

# purpose: idempotently replay offline observation and triage events, then rebuild aggregates
# inputs: LabsEventReplay batches exported by a device's local event log, and the authenticated caller
# outputs: ReplayReport with applied/skipped counts, conflicts and recomputed knowledge items
# status: active
# depends_on: backend.app.eventlog, backend.app.services.observations, backend.app.services.submissions

logger = logging.getLogger(__name__)

OBSERVATION_EVENTS = frozenset(
    {"labs.observation_confirmed", "labs.observation_deviated", "labs.observation_flagged"}
)
# observations created by triage are rebuilt from the review event instead
REPLAYED_OBSERVATION_SOURCES = frozenset({"checklist", "batch"})


@dataclass(frozen=True, slots=True)
class ReplayCaller:
    """Who is pushing the batch, and what that role may replay.

    Events are applied with the caller's authority. The actor recorded in
    an event is only honoured when ``restores_history`` is set.
    """

    crew_member_id: UUID
    may_cosign: bool = False
    may_review: bool = False
    restores_history: bool = False


def export_events(db: Session, after_sequence: int = 0, *, limit: int = 500) -> list[models.LabsEvent]:
    return list_events_after(db, after_sequence, limit=limit)


def _invalid(error: pydantic.ValidationError) -> str:
    first = error.errors()[0]
    where = ".".join(str(part) for part in first["loc"]) or "payload"
    return f"{where}: {first['msg']}"


def _replay_observation(
    db: Session,
    event: schemas.LabsEventReplay,
    caller: ReplayCaller,
    report: dict[str, Any],
) -> set[UUID]:
    if event.payload.get("source") not in REPLAYED_OBSERVATION_SOURCES:
        report["skipped"] += 1
        return set()
    if db.get(models.Observation, event.entity_id) is not None:
        report["skipped"] += 1
        return set()
    try:
        recorded = schemas.ReplayedObservation.model_validate(event.payload)
    except pydantic.ValidationError as exc:
        report["conflicts"].append(f"observation {event.entity_id} has an invalid payload ({_invalid(exc)})")
        return set()

    if not caller.restores_history:
        if recorded.supervisor_id is not None and not (
            caller.may_cosign and recorded.supervisor_id == caller.crew_member_id
        ):
            report["conflicts"].append(f"observation {event.entity_id}: co-sign could not be verified")
            return set()
        if recorded.crew_member_id != caller.crew_member_id and recorded.supervisor_id is None:
            report["conflicts"].append(
                f"observation {event.entity_id} belongs to another crew member"
            )
            return set()

    draft = schemas.ObservationDraft(
        sop_id=recorded.sop_id,
        step_order=recorded.step_order,
        checklist_item_id=recorded.checklist_item_id,
        crew_member_id=recorded.crew_member_id,
        project_id=recorded.project_id,
        knowledge_type=recorded.knowledge_type,
        category=recorded.category,
    )
    try:
        result = observations.confirm_observation(
            db,
            draft,
            recorded.outcome,
            note=recorded.note,
            photo_ref=recorded.photo_ref,
            condition=recorded.condition,
            deviation_reason=recorded.deviation_reason,
            supervisor_id=recorded.supervisor_id,
            source=recorded.source,
            observation_id=event.entity_id,
            captured_at=recorded.captured_at,
        )
    except (ValidationError, ConfigurationMissing) as exc:
        report["conflicts"].append(f"observation {event.entity_id} was not applied: {exc}")
        return set()
    report["applied"] += 1
    return {item.id for item in result.knowledge_items}


def _replay_submission_created(
    db: Session,
    event: schemas.LabsEventReplay,
    caller: ReplayCaller,
    report: dict[str, Any],
) -> None:
    if db.get(models.Submission, event.entity_id) is not None:
        report["skipped"] += 1
        return
    try:
        payload = schemas.SubmissionCreate.model_validate(event.payload)
    except pydantic.ValidationError as exc:
        report["conflicts"].append(f"submission {event.entity_id} has an invalid payload ({_invalid(exc)})")
        return
    author_id = caller.crew_member_id
    if caller.restores_history and event.actor_id is not None:
        author_id = event.actor_id
    try:
        submissions.submit(db, payload, author_id=author_id, submission_id=event.entity_id)
    except EntityNotFound as exc:
        report["conflicts"].append(f"submission {event.entity_id} was not applied: {exc}")
        return
    report["applied"] += 1


def _replay_submission_reviewed(
    db: Session,
    event: schemas.LabsEventReplay,
    caller: ReplayCaller,
    report: dict[str, Any],
) -> set[UUID]:
    if not caller.may_review:
        report["conflicts"].append(f"submission {event.entity_id}: only labs reviewers can replay a review")
        return set()
    try:
        decision = schemas.SubmissionReview.model_validate(event.payload)
    except pydantic.ValidationError as exc:
        report["conflicts"].append(f"submission {event.entity_id} review has an invalid payload ({_invalid(exc)})")
        return set()
    try:
        submission = submissions.get_submission(db, event.entity_id)
    except EntityNotFound:
        report["conflicts"].append(f"submission {event.entity_id} was reviewed but never submitted")
        return set()
    if submission.status != "submitted":
        if submission.decision == decision.decision:
            report["skipped"] += 1
        else:
            report["conflicts"].append(
                f"submission {submission.id} is already {submission.status}; "
                f"offline decision {decision.decision} was not applied"
            )
        return set()
    reviewer_id = caller.crew_member_id
    if caller.restores_history and event.actor_id is not None:
        reviewer_id = event.actor_id
    submissions.review(db, submission.id, decision, reviewer_id=reviewer_id)
    report["applied"] += 1
    touched = {submission.knowledge_item_id} if submission.knowledge_item_id else set()
    if submission.observation_id:
        touched |= {item.id for item in knowledge_attribution.items_for_observation(db, submission.observation_id)}
    return touched


def _ordered(events: Iterable[schemas.LabsEventReplay]) -> list[schemas.LabsEventReplay]:
    indexed = list(enumerate(events))
    indexed.sort(key=lambda pair: (pair[1].sequence is None, pair[1].sequence or 0, pair[0]))
    return [event for _, event in indexed]


def apply_events(
    db: Session,
    events: Iterable[schemas.LabsEventReplay],
    *,
    caller: ReplayCaller,
) -> dict[str, Any]:
    """Replay events in device order; already-applied events are skipped.

    Observations go through the same confirmation checks as a live
    checklist tap, so payload flags such as ``credit_training`` are not
    trusted. Events the caller may not apply, or whose payload does not
    validate, are reported as conflicts. Scores cached in the payloads are
    ignored. Every knowledge item the replay touched is recomputed from
    authoritative counts afterwards.
    """

    report: dict[str, Any] = {"applied": 0, "skipped": 0, "conflicts": [], "recomputed_knowledge_items": []}
    touched: set[UUID] = set()
    for event in _ordered(events):
        if event.event_type in OBSERVATION_EVENTS:
            touched |= _replay_observation(db, event, caller, report)
        elif event.event_type == "labs.submission_created":
            _replay_submission_created(db, event, caller, report)
        elif event.event_type == "labs.submission_reviewed":
            touched |= _replay_submission_reviewed(db, event, caller, report)
        else:
            report["skipped"] += 1

    for item_id in sorted(touched, key=str):
        item = confidence.recompute(db, item_id)
        report["recomputed_knowledge_items"].append(item.id)
    if report["conflicts"]:
        logger.warning("replay by %s finished with %d conflict(s)", caller.crew_member_id, len(report["conflicts"]))
    logger.info("replay applied %d event(s), skipped %d", report["applied"], report["skipped"])
    return report
