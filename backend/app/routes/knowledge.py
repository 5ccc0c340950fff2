"""Knowledge item endpoints backed by the confidence aggregator."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import pubsub, schemas
from ..auth import CrewIdentity, get_current_crew_member, require_labs_admin
from ..database import get_db
from ..services import confidence, knowledge, knowledge_attribution
from ..services.labs_errors import LabsPipelineError
from ..tasks import celery_app, enqueue_recompute_sweep
from .errors import labs_http_error

# purpose: list, curate, recompute and archive knowledge items; scores are never set by hand
# status: active
# depends_on: backend.app.services.knowledge, backend.app.services.confidence

router = APIRouter(prefix="/api/labs/knowledge", tags=["labs", "knowledge"])


async def _publish_item(item, event_type: str) -> None:
    await pubsub.publish_labs_event(
        "knowledge",
        {
            "type": event_type,
            "id": item.id,
            "status": item.status,
            "confidence_score": item.confidence_score,
        },
    )


@router.get("", response_model=list[schemas.KnowledgeItemOut])
def list_items(
    status_filter: schemas.KnowledgeStatus | None = Query(default=None, alias="status"),
    category: str | None = None,
    knowledge_type: schemas.KnowledgeType | None = None,
    include_archived: bool = False,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    return knowledge.list_items(
        db,
        status=status_filter,
        category=category,
        knowledge_type=knowledge_type,
        include_archived=include_archived,
    )


@router.post("", status_code=status.HTTP_201_CREATED, response_model=schemas.KnowledgeItemOut)
def create_item(
    payload: schemas.KnowledgeItemCreate,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    item = knowledge.create_item(db, payload, actor_id=identity.crew_member_id)
    db.commit()
    db.refresh(item)
    return item


@router.post("/recompute-all", response_model=schemas.RecomputeSweepOut)
def recompute_all(identity: CrewIdentity = Depends(require_labs_admin)):
    result = enqueue_recompute_sweep()
    if celery_app.conf.task_always_eager:
        return schemas.RecomputeSweepOut(queued=False, recomputed=result)
    return schemas.RecomputeSweepOut(queued=True)


@router.get("/{item_id}", response_model=schemas.KnowledgeItemOut)
def get_item(
    item_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    try:
        return knowledge.get_item(db, item_id)
    except LabsPipelineError as exc:
        raise labs_http_error(exc) from exc


@router.patch("/{item_id}", response_model=schemas.KnowledgeItemOut)
def update_item(
    item_id: UUID,
    payload: schemas.KnowledgeItemUpdate,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    try:
        item = knowledge.update_item(db, item_id, payload)
        db.commit()
        db.refresh(item)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    return item


@router.get("/{item_id}/links", response_model=list[schemas.KnowledgeLinkOut])
def list_links(
    item_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    try:
        return knowledge.list_links(db, item_id)
    except LabsPipelineError as exc:
        raise labs_http_error(exc) from exc


@router.post("/{item_id}/links", status_code=status.HTTP_201_CREATED, response_model=schemas.KnowledgeLinkOut)
async def link_observation(
    item_id: UUID,
    payload: schemas.KnowledgeLinkCreate,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    try:
        link = knowledge_attribution.link_observation_manually(db, item_id, payload.observation_id)
        item = confidence.recompute(db, item_id)
        db.commit()
        db.refresh(link)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    await _publish_item(item, "knowledge_item_updated")
    return link


@router.post("/{item_id}/recompute", response_model=schemas.KnowledgeItemOut)
async def recompute_item(
    item_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    try:
        item = confidence.recompute(db, item_id)
        db.commit()
        db.refresh(item)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    await _publish_item(item, "knowledge_item_updated")
    return item


@router.post("/{item_id}/review", response_model=schemas.KnowledgeItemOut)
async def request_review(
    item_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    try:
        item = knowledge.place_under_review(db, item_id, actor_id=identity.crew_member_id)
        db.commit()
        db.refresh(item)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    await _publish_item(item, "knowledge_review_requested")
    return item


@router.post("/{item_id}/archive", response_model=schemas.KnowledgeItemOut)
async def archive_item(
    item_id: UUID,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(require_labs_admin),
):
    try:
        item = knowledge.archive_item(db, item_id, actor_id=identity.crew_member_id)
        db.commit()
        db.refresh(item)
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    await _publish_item(item, "knowledge_item_archived")
    return item
