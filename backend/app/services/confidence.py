"""Confidence aggregation for labs knowledge items."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

import sqlalchemy as sa
from prometheus_client import Counter
from sqlalchemy.orm import Session

from .. import models
from .labs_errors import ConcurrencyConflict, EntityNotFound

# purpose: turn attributed observations and experiments into a deterministic 0-100 confidence score
# inputs: KnowledgeLink rows joined to observations and completed experiments
# outputs: KnowledgeItem counts, score and status written with a version compare-and-swap
# status: active

logger = logging.getLogger(__name__)

PUBLICATION_THRESHOLD = 70
# published items are challenged only once the score falls this far below the publication bar
CHALLENGE_HYSTERESIS = 15
CHALLENGE_THRESHOLD = PUBLICATION_THRESHOLD - CHALLENGE_HYSTERESIS
MIN_REVIEW_EVIDENCE = 3
MIN_PUBLICATION_SAMPLE = 5
EXPERIMENT_EVIDENCE_WEIGHT = 3
WILSON_Z = 1.96

RECOMPUTE_COUNTER = Counter(
    "labs_knowledge_recompute_total",
    "Knowledge item recompute attempts",
    ["outcome"],
)


@dataclass(frozen=True, slots=True)
class EvidenceTally:
    observation_count: int = 0
    confirmed_count: int = 0
    experiment_count: int = 0
    experiment_pass_count: int = 0

    @property
    def total(self) -> int:
        return self.observation_count + self.experiment_count

    @property
    def trials(self) -> int:
        return self.observation_count + self.experiment_count * EXPERIMENT_EVIDENCE_WEIGHT

    @property
    def successes(self) -> int:
        return self.confirmed_count + self.experiment_pass_count * EXPERIMENT_EVIDENCE_WEIGHT


def wilson_lower_bound(successes: int, trials: int, z: float = WILSON_Z) -> float:
    """Lower bound of the Wilson score interval for a binomial proportion."""

    if trials <= 0:
        return 0.0
    p = successes / trials
    z2 = z * z
    centre = p + z2 / (2 * trials)
    margin = z * math.sqrt(p * (1 - p) / trials + z2 / (4 * trials * trials))
    return max(0.0, (centre - margin) / (1 + z2 / trials))


def confidence_score(tally: EvidenceTally) -> int:
    """Score in 0..100; rises with the positive ratio and with sample size.

    Floors rather than rounds so the integer score inherits the bound's
    monotonicity exactly.
    """

    return min(100, int(math.floor(wilson_lower_bound(tally.successes, tally.trials) * 100 + 1e-9)))


def next_status(
    current: str,
    tally: EvidenceTally,
    score: int,
    *,
    review_hold: int | None = None,
) -> str:
    """Apply automatic transitions until the status stops moving."""

    if current == "archived":
        return current
    if review_hold is not None and tally.total <= review_hold:
        return current
    status = current
    while True:
        following = _transition(status, tally, score)
        if following == status:
            return status
        status = following


def _transition(status: str, tally: EvidenceTally, score: int) -> str:
    if status == "draft" and tally.total >= MIN_REVIEW_EVIDENCE:
        return "under_review"
    if (
        status in {"under_review", "challenged"}
        and score >= PUBLICATION_THRESHOLD
        and tally.observation_count >= MIN_PUBLICATION_SAMPLE
    ):
        return "published"
    if status == "published" and score < CHALLENGE_THRESHOLD:
        return "challenged"
    return status


def tally_evidence(db: Session, knowledge_item_id: UUID) -> EvidenceTally:
    """Count attributed evidence straight from the link table."""

    confirmed = sa.case((models.Observation.outcome == "confirmed", 1), else_=0)
    obs_count, obs_confirmed = (
        db.query(sa.func.count(models.Observation.id), sa.func.coalesce(sa.func.sum(confirmed), 0))
        .join(models.KnowledgeLink, models.KnowledgeLink.observation_id == models.Observation.id)
        .filter(models.KnowledgeLink.knowledge_item_id == knowledge_item_id)
        .one()
    )
    passed = sa.case((models.Experiment.outcome == "positive", 1), else_=0)
    exp_count, exp_passed = (
        db.query(sa.func.count(models.Experiment.id), sa.func.coalesce(sa.func.sum(passed), 0))
        .join(models.KnowledgeLink, models.KnowledgeLink.experiment_id == models.Experiment.id)
        .filter(
            models.KnowledgeLink.knowledge_item_id == knowledge_item_id,
            models.Experiment.status == "completed",
            models.Experiment.outcome.in_(("positive", "negative")),
        )
        .one()
    )
    return EvidenceTally(
        observation_count=int(obs_count),
        confirmed_count=int(obs_confirmed),
        experiment_count=int(exp_count),
        experiment_pass_count=int(exp_passed),
    )


def load_current(db: Session, knowledge_item_id: UUID) -> models.KnowledgeItem:
    item = (
        db.query(models.KnowledgeItem)
        .populate_existing()
        .filter(models.KnowledgeItem.id == knowledge_item_id)
        .first()
    )
    if item is None:
        raise EntityNotFound(f"knowledge item {knowledge_item_id} not found")
    return item


def _planned_state(db: Session, item: models.KnowledgeItem) -> dict[str, object]:
    tally = tally_evidence(db, item.id)
    score = confidence_score(tally)
    status = next_status(item.status, tally, score, review_hold=item.review_hold_evidence)
    hold = item.review_hold_evidence
    if hold is not None and tally.total > hold:
        hold = None
    planned: dict[str, object] = {
        "observation_count": tally.observation_count,
        "confirmed_count": tally.confirmed_count,
        "experiment_count": tally.experiment_count,
        "experiment_pass_count": tally.experiment_pass_count,
        "confidence_score": score,
        "status": status,
        "review_hold_evidence": hold,
    }
    if status == "published" and item.status != "published":
        planned["published_at"] = datetime.now(timezone.utc)
    return planned


def compare_and_swap(
    db: Session,
    knowledge_item_id: UUID,
    expected_version: int,
    values: dict[str, object],
) -> bool:
    """Write ``values`` only if the stored version still equals ``expected_version``."""

    result = db.execute(
        sa.update(models.KnowledgeItem)
        .where(
            models.KnowledgeItem.id == knowledge_item_id,
            models.KnowledgeItem.version == expected_version,
        )
        .values(**values, version=expected_version + 1, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def recompute(db: Session, knowledge_item_id: UUID) -> models.KnowledgeItem:
    """Recompute counts, score, and status of a knowledge item from its evidence.

    A version mismatch is retried once from a fresh read; a second mismatch
    raises ConcurrencyConflict. Nothing is written when nothing changed.
    """

    db.flush()
    for attempt in (1, 2):
        item = load_current(db, knowledge_item_id)
        planned = _planned_state(db, item)
        changes = {key: value for key, value in planned.items() if getattr(item, key) != value}
        if not changes:
            RECOMPUTE_COUNTER.labels("unchanged").inc()
            return item
        previous_status = item.status
        if compare_and_swap(db, item.id, item.version, changes):
            db.refresh(item)
            RECOMPUTE_COUNTER.labels("written").inc()
            if item.status != previous_status:
                logger.info(
                    "knowledge item %s moved %s -> %s at score %s",
                    item.id,
                    previous_status,
                    item.status,
                    item.confidence_score,
                )
            return item
        RECOMPUTE_COUNTER.labels("conflict").inc()
        logger.warning("knowledge item %s changed during recompute (attempt %s)", knowledge_item_id, attempt)
    raise ConcurrencyConflict(
        f"knowledge item {knowledge_item_id} was updated concurrently twice; retry the operation"
    )


def recompute_all(db: Session) -> list[models.KnowledgeItem]:
    """Recompute every non-archived knowledge item from authoritative counts."""

    ids = [
        row[0]
        for row in db.query(models.KnowledgeItem.id)
        .filter(models.KnowledgeItem.status != "archived")
        .order_by(models.KnowledgeItem.created_at.asc())
        .all()
    ]
    return [recompute(db, item_id) for item_id in ids]
