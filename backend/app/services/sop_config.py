"""Two-tier SOP configuration resolution for the observation pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from .. import models
from ..data.loaders import get_sop_catalog_index

# purpose: resolve SOP and checklist step configuration with an explicit found/not-found result
# inputs: SOP id and step order from a checklist check event
# outputs: immutable SopConfig/StepConfig snapshots wrapped in ConfigLookup
# status: active

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class ConfigLookup(Generic[T]):
    """Result of a configuration lookup; ``value`` is set only when ``found``."""

    found: bool
    value: T | None = None
    reason: str | None = None

    @classmethod
    def hit(cls, value: T) -> "ConfigLookup[T]":
        return cls(found=True, value=value)

    @classmethod
    def miss(cls, reason: str) -> "ConfigLookup[T]":
        return cls(found=False, reason=reason)


@dataclass(frozen=True, slots=True)
class SopConfig:
    sop_id: UUID
    sop_code: str
    title: str
    category: str
    default_observation_mode: str
    required_supervised_completions: int
    review_question_count: int
    review_pass_threshold: int
    match_tags: tuple[str, ...]
    source: str


@dataclass(frozen=True, slots=True)
class StepConfig:
    sop_id: UUID
    step_order: int
    checklist_item_id: UUID | None
    title: str
    generates_observation: bool
    trigger_timing: str
    script_phase: str | None
    knowledge_type: str
    requires_photo: bool


class SopConfigProvider(Protocol):
    def resolve_sop(self, sop_id: UUID) -> ConfigLookup[SopConfig]:
        ...

    def resolve_step(self, sop_id: UUID, step_order: int) -> ConfigLookup[StepConfig]:
        ...


class DatabaseSopConfigProvider:
    """Resolve configuration from SOPs stored in the authoritative database."""

    def __init__(self, db: Session):
        self.db = db

    def resolve_sop(self, sop_id: UUID) -> ConfigLookup[SopConfig]:
        sop = self.db.get(models.Sop, sop_id)
        if sop is None:
            return ConfigLookup.miss(f"SOP {sop_id} is not stored")
        if sop.status == "archived":
            return ConfigLookup.miss(f"SOP {sop.sop_code} is archived")
        return ConfigLookup.hit(
            SopConfig(
                sop_id=sop.id,
                sop_code=sop.sop_code,
                title=sop.title,
                category=sop.category,
                default_observation_mode=sop.default_observation_mode,
                required_supervised_completions=sop.required_supervised_completions,
                review_question_count=sop.review_question_count,
                review_pass_threshold=sop.review_pass_threshold,
                match_tags=tuple(sop.match_tags or ()),
                source="store",
            )
        )

    def resolve_step(self, sop_id: UUID, step_order: int) -> ConfigLookup[StepConfig]:
        step = (
            self.db.query(models.SopChecklistItem)
            .filter(
                models.SopChecklistItem.sop_id == sop_id,
                models.SopChecklistItem.step_order == step_order,
                models.SopChecklistItem.is_active.is_(True),
            )
            .first()
        )
        if step is None:
            return ConfigLookup.miss(f"step {step_order} of SOP {sop_id} is not an active step")
        return ConfigLookup.hit(
            StepConfig(
                sop_id=step.sop_id,
                step_order=step.step_order,
                checklist_item_id=step.id,
                title=step.title,
                generates_observation=bool(step.generates_observation),
                trigger_timing=step.trigger_timing,
                script_phase=step.script_phase,
                knowledge_type=step.knowledge_type,
                requires_photo=bool(step.requires_photo),
            )
        )


class CatalogSopConfigProvider:
    """Resolve configuration from the SOP catalog shipped with the application."""

    def __init__(self, catalog: dict[str, dict[str, Any]] | None = None):
        self.catalog = catalog if catalog is not None else get_sop_catalog_index()

    def resolve_sop(self, sop_id: UUID) -> ConfigLookup[SopConfig]:
        entry = self.catalog.get(str(sop_id))
        if entry is None:
            return ConfigLookup.miss(f"SOP {sop_id} is not in the built-in catalog")
        return ConfigLookup.hit(
            SopConfig(
                sop_id=UUID(entry["id"]),
                sop_code=entry["sop_code"],
                title=entry["title"],
                category=entry["category"],
                default_observation_mode=entry.get("default_observation_mode", "standard"),
                required_supervised_completions=int(entry.get("required_supervised_completions", 3)),
                review_question_count=int(entry.get("review_question_count", 5)),
                review_pass_threshold=int(entry.get("review_pass_threshold", 80)),
                match_tags=tuple(entry.get("match_tags", ())),
                source="catalog",
            )
        )

    def resolve_step(self, sop_id: UUID, step_order: int) -> ConfigLookup[StepConfig]:
        entry = self.catalog.get(str(sop_id))
        if entry is None:
            return ConfigLookup.miss(f"SOP {sop_id} is not in the built-in catalog")
        for step in entry.get("steps", []):
            if step["step_order"] == step_order:
                return ConfigLookup.hit(
                    StepConfig(
                        sop_id=sop_id,
                        step_order=step_order,
                        checklist_item_id=None,
                        title=step["title"],
                        generates_observation=bool(step.get("generates_observation", False)),
                        trigger_timing=step.get("trigger_timing", "on_check"),
                        script_phase=step.get("script_phase"),
                        knowledge_type=step.get("knowledge_type", "procedure"),
                        requires_photo=bool(step.get("requires_photo", False)),
                    )
                )
        return ConfigLookup.miss(f"step {step_order} is not defined for catalog SOP {entry['sop_code']}")


class ChainedSopConfigProvider:
    """Try providers in order; steps always come from the tier that owns the SOP."""

    def __init__(self, *providers: SopConfigProvider):
        self.providers = providers

    def _owner(self, sop_id: UUID) -> tuple[SopConfigProvider | None, ConfigLookup[SopConfig]]:
        reasons: list[str] = []
        for provider in self.providers:
            lookup = provider.resolve_sop(sop_id)
            if lookup.found:
                if reasons:
                    logger.info("SOP %s resolved from %s tier (%s)", sop_id, lookup.value.source, "; ".join(reasons))
                return provider, lookup
            reasons.append(lookup.reason or "not found")
        return None, ConfigLookup.miss("; ".join(reasons) or f"SOP {sop_id} not found")

    def resolve_sop(self, sop_id: UUID) -> ConfigLookup[SopConfig]:
        _, lookup = self._owner(sop_id)
        return lookup

    def resolve_step(self, sop_id: UUID, step_order: int) -> ConfigLookup[StepConfig]:
        provider, lookup = self._owner(sop_id)
        if provider is None:
            return ConfigLookup.miss(lookup.reason or f"SOP {sop_id} not found")
        return provider.resolve_step(sop_id, step_order)


def default_provider(db: Session) -> ChainedSopConfigProvider:
    """Stored SOPs first, then the built-in catalog."""

    return ChainedSopConfigProvider(DatabaseSopConfigProvider(db), CatalogSopConfigProvider())
