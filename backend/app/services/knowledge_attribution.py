"""Late-binding attribution of evidence to knowledge items."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models
from . import knowledge
from .labs_errors import EntityNotFound, StateConflict

# purpose: match observations and experiments to knowledge items by type, category and tags
# inputs: evidence knowledge type, category, tags
# outputs: KnowledgeLink rows; a fresh draft item when nothing matches yet
# status: active

logger = logging.getLogger(__name__)

TAG_MATCH_CONFIDENCE = 90
CATEGORY_MATCH_CONFIDENCE = 60
NEW_ITEM_CONFIDENCE = 100


@dataclass(frozen=True, slots=True)
class AttributionTarget:
    item: models.KnowledgeItem
    link_confidence: int


def normalise_tags(tags: Iterable[str] | None) -> set[str]:
    return {tag.strip().lower() for tag in tags or () if tag and tag.strip()}


def resolve_targets(
    db: Session,
    *,
    knowledge_type: str,
    category: str,
    tags: Iterable[str] = (),
) -> list[AttributionTarget]:
    """Return matching non-archived items, strongest match first."""

    wanted_tags = normalise_tags(tags)
    wanted_category = category.strip().lower()
    candidates = (
        db.query(models.KnowledgeItem)
        .filter(
            models.KnowledgeItem.status != "archived",
            models.KnowledgeItem.knowledge_type == knowledge_type,
        )
        .order_by(models.KnowledgeItem.created_at.asc())
        .all()
    )
    targets: list[AttributionTarget] = []
    for item in candidates:
        if wanted_tags & normalise_tags(item.tags):
            targets.append(AttributionTarget(item, TAG_MATCH_CONFIDENCE))
        elif (item.category or "").lower() == wanted_category:
            targets.append(AttributionTarget(item, CATEGORY_MATCH_CONFIDENCE))
    targets.sort(key=lambda target: -target.link_confidence)
    return targets


def attribute_observation(
    db: Session,
    observation: models.Observation,
    *,
    tags: Iterable[str] = (),
    actor_id: UUID | None = None,
) -> list[models.KnowledgeItem]:
    """Link an observation to every matching item, creating a draft item if none match."""

    targets = resolve_targets(
        db,
        knowledge_type=observation.knowledge_type,
        category=observation.category,
        tags=tags,
    )
    if not targets:
        targets = [
            _create_draft_item(
                db,
                title=_default_title(observation.category, observation.knowledge_type),
                knowledge_type=observation.knowledge_type,
                category=observation.category,
                tags=sorted(normalise_tags(tags)),
                actor_id=actor_id,
            )
        ]
    for target in targets:
        _ensure_link(
            db,
            target.item.id,
            observation_id=observation.id,
            link_type="auto_detected",
            link_confidence=target.link_confidence,
        )
    db.flush()
    return [target.item for target in targets]


def attribute_experiment(
    db: Session,
    experiment: models.Experiment,
    *,
    create_if_missing: bool,
    actor_id: UUID | None = None,
) -> models.KnowledgeItem | None:
    """Link a completed experiment to at most one item, the strongest match."""

    targets = resolve_targets(
        db,
        knowledge_type=experiment.knowledge_type,
        category=experiment.category,
        tags=experiment.match_criteria or (),
    )
    if targets:
        item = targets[0].item
        link_confidence = targets[0].link_confidence
    elif create_if_missing:
        target = _create_draft_item(
            db,
            title=experiment.title,
            knowledge_type=experiment.knowledge_type,
            category=experiment.category,
            tags=sorted(normalise_tags(experiment.match_criteria)),
            summary=experiment.hypothesis,
            actor_id=actor_id,
        )
        item = target.item
        link_confidence = target.link_confidence
    else:
        return None
    _ensure_link(
        db,
        item.id,
        experiment_id=experiment.id,
        link_type="experiment_result",
        link_confidence=link_confidence,
    )
    db.flush()
    return item


def link_observation_manually(
    db: Session,
    knowledge_item_id: UUID,
    observation_id: UUID,
) -> models.KnowledgeLink:
    """Attach an observation to an item chosen by a labs reviewer."""

    item = knowledge.get_item(db, knowledge_item_id)
    if item.status == "archived":
        raise StateConflict("knowledge_item", item.status, "archived items accept no new evidence")
    if db.get(models.Observation, observation_id) is None:
        raise EntityNotFound(f"observation {observation_id} not found")
    link = _ensure_link(
        db,
        knowledge_item_id,
        observation_id=observation_id,
        link_type="labs_assigned",
        link_confidence=None,
    )
    db.flush()
    return link


def items_for_observation(db: Session, observation_id: UUID) -> list[models.KnowledgeItem]:
    return (
        db.query(models.KnowledgeItem)
        .join(models.KnowledgeLink, models.KnowledgeLink.knowledge_item_id == models.KnowledgeItem.id)
        .filter(models.KnowledgeLink.observation_id == observation_id)
        .all()
    )


def _ensure_link(
    db: Session,
    knowledge_item_id: UUID,
    *,
    observation_id: UUID | None = None,
    experiment_id: UUID | None = None,
    link_type: str,
    link_confidence: int | None,
) -> models.KnowledgeLink:
    query = db.query(models.KnowledgeLink).filter(models.KnowledgeLink.knowledge_item_id == knowledge_item_id)
    if observation_id is not None:
        query = query.filter(models.KnowledgeLink.observation_id == observation_id)
    else:
        query = query.filter(models.KnowledgeLink.experiment_id == experiment_id)
    existing = query.first()
    if existing is not None:
        return existing
    link = models.KnowledgeLink(
        knowledge_item_id=knowledge_item_id,
        observation_id=observation_id,
        experiment_id=experiment_id,
        link_type=link_type,
        link_confidence=link_confidence,
    )
    db.add(link)
    return link


def _default_title(category: str, knowledge_type: str) -> str:
    return f"{category.strip().title()} {knowledge_type.replace('_', ' ')}"


def draft_key(knowledge_type: str, category: str) -> str:
    return f"{knowledge_type}:{category.strip().lower()}"


def _create_draft_item(
    db: Session,
    *,
    title: str,
    knowledge_type: str,
    category: str,
    tags: list[str],
    summary: str | None = None,
    actor_id: UUID | None = None,
) -> AttributionTarget:
    """Create the automatic draft item for a type and category, or join the one that won.

    Two first observations of a category can both find no match. The unique
    draft key lets exactly one insert succeed; the loser links to the
    winner as an ordinary category match.
    """

    key = draft_key(knowledge_type, category)
    try:
        with db.begin_nested():
            item = knowledge.new_draft_item(
                db,
                title=title,
                knowledge_type=knowledge_type,
                category=category,
                tags=tags,
                summary=summary,
                actor_id=actor_id,
                draft_key=key,
            )
    except IntegrityError:
        existing = db.query(models.KnowledgeItem).filter(models.KnowledgeItem.draft_key == key).one_or_none()
        if existing is None:
            raise
        logger.info("draft item for %s already created by a concurrent confirmation", key)
        return AttributionTarget(existing, CATEGORY_MATCH_CONFIDENCE)
    return AttributionTarget(item, NEW_ITEM_CONFIDENCE)
