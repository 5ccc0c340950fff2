"""Knowledge item store operations outside automatic aggregation."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from .. import models, schemas
from ..eventlog import record_labs_event
from . import confidence
from .labs_errors import ConcurrencyConflict, EntityNotFound, StateConflict

# purpose: create, curate, review-hold and archive knowledge items; scores stay aggregator-owned
# status: active
# depends_on: backend.app.services.confidence

logger = logging.getLogger(__name__)


def get_item(db: Session, knowledge_item_id: UUID) -> models.KnowledgeItem:
    item = db.get(models.KnowledgeItem, knowledge_item_id)
    if item is None:
        raise EntityNotFound(f"knowledge item {knowledge_item_id} not found")
    return item


def list_items(
    db: Session,
    *,
    status: str | None = None,
    category: str | None = None,
    knowledge_type: str | None = None,
    include_archived: bool = False,
) -> list[models.KnowledgeItem]:
    query = db.query(models.KnowledgeItem)
    if status:
        query = query.filter(models.KnowledgeItem.status == status)
    elif not include_archived:
        query = query.filter(models.KnowledgeItem.status != "archived")
    if category:
        query = query.filter(models.KnowledgeItem.category == category.lower())
    if knowledge_type:
        query = query.filter(models.KnowledgeItem.knowledge_type == knowledge_type)
    return query.order_by(
        models.KnowledgeItem.confidence_score.desc(), models.KnowledgeItem.created_at.asc()
    ).all()


def list_links(db: Session, knowledge_item_id: UUID) -> list[models.KnowledgeLink]:
    get_item(db, knowledge_item_id)
    return (
        db.query(models.KnowledgeLink)
        .filter(models.KnowledgeLink.knowledge_item_id == knowledge_item_id)
        .order_by(models.KnowledgeLink.created_at.asc())
        .all()
    )


def create_item(
    db: Session,
    payload: schemas.KnowledgeItemCreate,
    *,
    actor_id: UUID | None = None,
) -> models.KnowledgeItem:
    """Register an empty draft item so later evidence can attribute to it by tags."""

    item = new_draft_item(
        db,
        title=payload.title,
        knowledge_type=payload.knowledge_type,
        category=payload.category,
        tags=payload.tags,
        summary=payload.summary,
        actor_id=actor_id,
    )
    return item


def new_draft_item(
    db: Session,
    *,
    title: str,
    knowledge_type: str,
    category: str,
    tags: list[str] | tuple[str, ...] = (),
    summary: str | None = None,
    actor_id: UUID | None = None,
    draft_key: str | None = None,
) -> models.KnowledgeItem:
    now = datetime.now(timezone.utc)
    item = models.KnowledgeItem(
        title=title,
        knowledge_type=knowledge_type,
        category=category.strip().lower(),
        tags=sorted({tag.strip().lower() for tag in tags if tag.strip()}),
        summary=summary,
        confidence_score=0,
        status="draft",
        version=1,
        draft_key=draft_key,
        created_at=now,
        updated_at=now,
    )
    db.add(item)
    db.flush()
    record_labs_event(
        db,
        "labs.knowledge_item_created",
        entity_type="knowledge_item",
        entity_id=item.id,
        payload={"title": item.title, "category": item.category, "knowledge_type": item.knowledge_type},
        actor_id=actor_id,
    )
    return item


def update_item(
    db: Session,
    knowledge_item_id: UUID,
    payload: schemas.KnowledgeItemUpdate,
) -> models.KnowledgeItem:
    """Edit descriptive fields. Score, counts and status are never hand-edited."""

    values: dict[str, object] = {}
    data = payload.model_dump(exclude_unset=True)
    if data.get("title") is not None:
        values["title"] = data["title"]
    if "summary" in data:
        values["summary"] = data["summary"]
    if data.get("tags") is not None:
        values["tags"] = sorted({tag.strip().lower() for tag in data["tags"] if tag.strip()})
    return _guarded_write(db, knowledge_item_id, lambda item: values, forbid_archived=True)


def archive_item(db: Session, knowledge_item_id: UUID, *, actor_id: UUID | None = None) -> models.KnowledgeItem:
    """Explicitly retire an item; archived is terminal."""

    item = _guarded_write(
        db,
        knowledge_item_id,
        lambda item: {
            "status": "archived",
            "archived_at": datetime.now(timezone.utc),
            # a later observation may start a fresh automatic item
            "draft_key": None,
        },
        forbid_archived=True,
    )
    record_labs_event(
        db,
        "labs.knowledge_item_archived",
        entity_type="knowledge_item",
        entity_id=item.id,
        payload={"confidence_score": item.confidence_score},
        actor_id=actor_id,
    )
    logger.info("knowledge item %s archived", item.id)
    return item


def place_under_review(
    db: Session,
    knowledge_item_id: UUID,
    *,
    actor_id: UUID | None = None,
) -> models.KnowledgeItem:
    """Put an item under manual review without touching its score.

    Drafts move to under_review and published items to challenged; automatic
    transitions pause until new evidence arrives.
    """

    def _plan(item: models.KnowledgeItem) -> dict[str, object]:
        tally = confidence.tally_evidence(db, item.id)
        status = {"draft": "under_review", "published": "challenged"}.get(item.status, item.status)
        return {"status": status, "review_hold_evidence": tally.total}

    before = get_item(db, knowledge_item_id).status
    item = _guarded_write(db, knowledge_item_id, _plan, forbid_archived=True)
    record_labs_event(
        db,
        "labs.knowledge_review_requested",
        entity_type="knowledge_item",
        entity_id=item.id,
        payload={"previous_status": before, "status": item.status},
        actor_id=actor_id,
    )
    return item


def _guarded_write(db: Session, knowledge_item_id: UUID, plan, *, forbid_archived: bool) -> models.KnowledgeItem:
    db.flush()
    for _ in (1, 2):
        item = confidence.load_current(db, knowledge_item_id)
        if forbid_archived and item.status == "archived":
            raise StateConflict("knowledge_item", item.status, f"knowledge item {item.title!r} is archived")
        values = plan(item)
        if not values:
            return item
        if confidence.compare_and_swap(db, item.id, item.version, values):
            db.refresh(item)
            return item
        logger.warning("knowledge item %s changed during write; retrying", knowledge_item_id)
    raise ConcurrencyConflict(f"knowledge item {knowledge_item_id} was updated concurrently twice")
