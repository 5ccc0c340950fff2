"""Read-side helpers that summarise evidence for checklist steps."""

from __future__ import annotations

from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session

from .. import models
from ..data.loaders import get_sop_catalog_index
from . import sops, training
from .sop_config import default_provider

# purpose: evidence badges and crew gate state for the checklist UI
# outputs: per-step knowledge badges, training status with co-sign requirement
# status: active


def _badges_for(db: Session, *filters) -> list[dict[str, object]]:
    linked_ids = (
        sa.select(models.KnowledgeLink.knowledge_item_id)
        .join(models.Observation, models.Observation.id == models.KnowledgeLink.observation_id)
        .where(*filters)
    )
    items = (
        db.query(models.KnowledgeItem)
        .filter(models.KnowledgeItem.status != "archived", models.KnowledgeItem.id.in_(linked_ids))
        .all()
    )
    items.sort(key=lambda item: (-item.confidence_score, item.title))
    return [
        {
            "knowledge_item_id": item.id,
            "title": item.title,
            "confidence_score": item.confidence_score,
            "status": item.status,
        }
        for item in items
    ]


def step_evidence(db: Session, sop_id: UUID) -> list[dict[str, object]]:
    """Badges per active step; an unresolvable SOP simply shows no badges."""

    lookup = default_provider(db).resolve_sop(sop_id)
    if not lookup.found:
        return []
    evidence: list[dict[str, object]] = []
    if lookup.value.source == "store":
        for step in sops.list_steps(db, sop_id):
            evidence.append(
                {
                    "step_order": step.step_order,
                    "checklist_item_id": step.id,
                    "title": step.title,
                    "script_phase": step.script_phase,
                    "badges": _badges_for(db, models.Observation.checklist_item_id == step.id),
                }
            )
        return evidence

    entry = get_sop_catalog_index()[str(sop_id)]
    for step in entry.get("steps", []):
        evidence.append(
            {
                "step_order": step["step_order"],
                "checklist_item_id": None,
                "title": step["title"],
                "script_phase": step.get("script_phase"),
                "badges": _badges_for(
                    db,
                    models.Observation.sop_id == sop_id,
                    models.Observation.step_order == step["step_order"],
                ),
            }
        )
    return evidence


def crew_gate(db: Session, crew_member_id: UUID, sop_id: UUID) -> dict[str, object]:
    return {
        "crew_member_id": crew_member_id,
        "sop_id": sop_id,
        "status": training.get_status(db, crew_member_id, sop_id),
        "requires_supervisor_cosign": training.requires_cosign(db, crew_member_id, sop_id),
    }
