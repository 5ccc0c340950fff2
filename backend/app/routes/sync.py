"""Offline event export and replay endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import pubsub, schemas
from ..auth import ROLE_LEVELS, CrewIdentity, get_current_crew_member
from ..database import get_db
from ..services import labs_sync
from ..services.labs_errors import LabsPipelineError
from .errors import labs_http_error

# purpose: let field devices pull the authoritative event log and push work captured offline
# status: active
# depends_on: backend.app.services.labs_sync

router = APIRouter(prefix="/api/labs/sync", tags=["labs", "sync"])


def _replay_caller(identity: CrewIdentity) -> labs_sync.ReplayCaller:
    is_admin = identity.level >= ROLE_LEVELS["admin"]
    return labs_sync.ReplayCaller(
        crew_member_id=identity.crew_member_id,
        may_cosign=identity.level >= ROLE_LEVELS["supervisor"],
        may_review=is_admin,
        restores_history=is_admin,
    )


@router.get("/events", response_model=list[schemas.LabsEventOut])
def export_events(
    after: int = 0,
    limit: int = 500,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    return labs_sync.export_events(db, after, limit=min(max(limit, 1), 5000))


@router.post("/events", response_model=schemas.ReplayReport)
async def apply_events(
    batch: schemas.ReplayBatch,
    db: Session = Depends(get_db),
    identity: CrewIdentity = Depends(get_current_crew_member),
):
    try:
        report = labs_sync.apply_events(db, batch.events, caller=_replay_caller(identity))
        db.commit()
    except LabsPipelineError as exc:
        db.rollback()
        raise labs_http_error(exc) from exc
    for item_id in report["recomputed_knowledge_items"]:
        await pubsub.publish_labs_event("knowledge", {"type": "knowledge_item_recomputed", "id": item_id})
    return report
