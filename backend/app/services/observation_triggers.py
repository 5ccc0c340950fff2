"""Decide what a checked SOP step should do for the knowledge pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from .. import schemas
from .sop_config import SopConfig, SopConfigProvider, StepConfig

# purpose: turn a checklist step-check event into no_action, a one-tap confirmation or a draft awaiting details
# inputs: CheckEvent, explicit crew member id, co-sign requirement from the training gate
# outputs: TriggerDecision (never persisted here)
# status: active

logger = logging.getLogger(__name__)

NO_ACTION = "no_action"
IMMEDIATE_CONFIRM = "immediate_confirm"
DEFERRED_SUBMISSION = "deferred_submission"

# (note, photo, condition) a crew member must supply per observation mode
MODE_REQUIREMENTS: dict[str, tuple[bool, bool, bool]] = {
    "minimal": (False, False, False),
    "standard": (True, False, False),
    "detailed": (True, True, True),
}


def observation_mode(sop: SopConfig) -> str:
    return sop.default_observation_mode if sop.default_observation_mode in MODE_REQUIREMENTS else "standard"


def required_fields(sop: SopConfig, step: StepConfig) -> tuple[bool, bool, bool]:
    """Return the (note, photo, condition) a confirmation of ``step`` must carry."""

    mode = observation_mode(sop)
    needs_note, needs_photo, needs_condition = MODE_REQUIREMENTS[mode]
    # template photo flags do not apply to minimal steps
    needs_photo = needs_photo or (step.requires_photo and mode != "minimal")
    return needs_note, needs_photo, needs_condition


@dataclass(frozen=True, slots=True)
class TriggerDecision:
    action: str
    draft: schemas.ObservationDraft | None = None
    reason: str | None = None
    trigger_timing: str = "on_check"

    @property
    def queues_for_batch(self) -> bool:
        return self.action != NO_ACTION and self.trigger_timing == "batch"


def evaluate_check_event(
    provider: SopConfigProvider,
    event: schemas.CheckEvent,
    crew_member_id: UUID,
    *,
    requires_cosign: bool = True,
) -> TriggerDecision:
    """Evaluate a step-check event without side effects.

    Missing configuration never blocks field work: an unresolvable SOP or
    step yields ``no_action`` with the lookup's reason attached.
    """

    sop_lookup = provider.resolve_sop(event.sop_id)
    if not sop_lookup.found:
        logger.warning("check event for unresolved SOP %s: %s", event.sop_id, sop_lookup.reason)
        return TriggerDecision(NO_ACTION, reason=sop_lookup.reason)
    step_lookup = provider.resolve_step(event.sop_id, event.step_order)
    if not step_lookup.found:
        logger.warning("check event for unresolved step %s/%s: %s", event.sop_id, event.step_order, step_lookup.reason)
        return TriggerDecision(NO_ACTION, reason=step_lookup.reason)

    sop = sop_lookup.value
    step = step_lookup.value
    if not step.generates_observation:
        return TriggerDecision(NO_ACTION, reason="step does not generate observations")

    mode = observation_mode(sop)
    needs_note, needs_photo, needs_condition = required_fields(sop, step)
    minimal = mode == "minimal"
    draft = schemas.ObservationDraft(
        sop_id=sop.sop_id,
        step_order=step.step_order,
        checklist_item_id=step.checklist_item_id,
        crew_member_id=crew_member_id,
        project_id=event.project_id,
        knowledge_type=step.knowledge_type,
        category=sop.category,
        tags=list(sop.match_tags),
        mode=mode,
        script_phase=step.script_phase,
        prefilled_outcome="confirmed" if minimal else None,
        requires_note=needs_note,
        requires_photo=needs_photo,
        requires_condition=needs_condition,
        requires_supervisor_cosign=requires_cosign,
    )
    return TriggerDecision(
        IMMEDIATE_CONFIRM if minimal else DEFERRED_SUBMISSION,
        draft=draft,
        trigger_timing=step.trigger_timing,
    )
