"""Weekly ballots that pick the next draft experiment to activate."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..eventlog import record_labs_event
from . import experiments
from .labs_errors import EntityNotFound, StateConflict, ValidationError

# purpose: weekly stakeholder vote on which draft experiment to activate next
# status: active
# depends_on: backend.app.services.experiments.activate

logger = logging.getLogger(__name__)


def get_ballot(db: Session, ballot_id: UUID) -> models.Ballot:
    ballot = db.get(models.Ballot, ballot_id)
    if ballot is None:
        raise EntityNotFound(f"ballot {ballot_id} not found")
    return ballot


def list_ballots(db: Session, *, status: str | None = None) -> list[models.Ballot]:
    query = db.query(models.Ballot)
    if status:
        query = query.filter(models.Ballot.status == status)
    return query.order_by(models.Ballot.week_start.desc()).all()


def create_ballot(db: Session, payload: schemas.BallotCreate, *, created_by: UUID | None = None) -> models.Ballot:
    if len(set(payload.experiment_ids)) != len(payload.experiment_ids):
        raise ValidationError("a ballot cannot list the same experiment twice")
    ballot = models.Ballot(
        week_start=payload.week_start,
        week_end=payload.week_end,
        status="open",
        total_votes=0,
        created_by=created_by,
    )
    db.add(ballot)
    db.flush()
    for position, experiment_id in enumerate(payload.experiment_ids):
        experiment = experiments.get_experiment(db, experiment_id)
        if experiment.status != "draft":
            raise StateConflict("experiment", experiment.status, "only draft experiments can be balloted")
        db.add(
            models.BallotOption(
                ballot_id=ballot.id,
                experiment_id=experiment.id,
                title=experiment.title,
                position=position,
                vote_count=0,
            )
        )
    db.flush()
    db.refresh(ballot)
    record_labs_event(
        db,
        "labs.ballot_created",
        entity_type="ballot",
        entity_id=ballot.id,
        payload={"experiment_ids": payload.experiment_ids, "week_start": ballot.week_start},
        actor_id=created_by,
    )
    return ballot


def cast_vote(
    db: Session,
    ballot_id: UUID,
    payload: schemas.VoteCreate,
    *,
    voter_id: UUID,
) -> models.BallotVote:
    """Record one vote per (ballot, voter); a second vote is a state conflict."""

    ballot = get_ballot(db, ballot_id)
    if ballot.status != "open":
        raise StateConflict("ballot", ballot.status, "voting has closed for this ballot")
    option = next((opt for opt in ballot.options if opt.experiment_id == payload.experiment_id), None)
    if option is None:
        raise ValidationError("experiment is not an option on this ballot")
    if db.get(models.BallotVote, (ballot.id, voter_id)) is not None:
        raise StateConflict("ballot", ballot.status, "you have already voted on this ballot")

    vote = models.BallotVote(ballot_id=ballot.id, voter_id=voter_id, option_id=option.id)
    db.add(vote)
    try:
        db.flush()
    except IntegrityError as exc:
        raise StateConflict("ballot", ballot.status, "you have already voted on this ballot") from exc
    option.vote_count += 1
    ballot.total_votes += 1
    db.flush()
    record_labs_event(
        db,
        "labs.ballot_vote_cast",
        entity_type="ballot",
        entity_id=ballot.id,
        payload={"option_id": option.id, "experiment_id": option.experiment_id},
        actor_id=voter_id,
    )
    return vote


def rank_options(ballot: models.Ballot) -> list[models.BallotOption]:
    """Most votes first; ties go to the earlier listed option."""

    return sorted(ballot.options, key=lambda option: (-option.vote_count, option.position))


def close_ballot(db: Session, ballot_id: UUID, *, actor_id: UUID | None = None) -> models.Ballot:
    """Close voting and activate the winning experiment.

    The winner is the highest-ranked option whose experiment is still a
    draft. A ballot without votes closes without activating anything.
    """

    ballot = get_ballot(db, ballot_id)
    if ballot.status != "open":
        raise StateConflict("ballot", ballot.status, "ballot is already closed")
    winner = None
    if ballot.total_votes:
        for option in rank_options(ballot):
            candidate = experiments.get_experiment(db, option.experiment_id)
            if candidate.status == "draft":
                winner = candidate
                break
            logger.warning("ballot %s option %s skipped: experiment is %s", ballot.id, option.id, candidate.status)
    ballot.status = "closed"
    ballot.closed_at = datetime.now(timezone.utc)
    if winner is not None:
        ballot.winning_experiment_id = winner.id
        experiments.activate(db, winner.id, via="ballot", actor_id=actor_id)
    db.flush()
    record_labs_event(
        db,
        "labs.ballot_closed",
        entity_type="ballot",
        entity_id=ballot.id,
        payload={"winning_experiment_id": ballot.winning_experiment_id, "total_votes": ballot.total_votes},
        actor_id=actor_id,
    )
    return ballot


def ballot_results(db: Session, ballot_id: UUID) -> list[models.BallotOption]:
    return rank_options(get_ballot(db, ballot_id))
