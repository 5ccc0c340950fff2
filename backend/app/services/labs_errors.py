"""Error taxonomy shared by the labs pipeline services."""

from __future__ import annotations

# purpose: give routes one hierarchy to translate into specific, actionable HTTP failures
# status: active


class LabsPipelineError(RuntimeError):
    """Base error for labs pipeline operations."""


class ConfigurationMissing(LabsPipelineError):
    """Raised when an SOP, step, or template cannot be resolved."""


class EntityNotFound(LabsPipelineError):
    """Raised when a submission, experiment, ballot, or knowledge item is unknown."""


class ValidationError(LabsPipelineError):
    """Raised before persistence when an operation's input is incomplete."""


class ConcurrencyConflict(LabsPipelineError):
    """Raised when a knowledge item changed underneath two recompute attempts."""


class StateConflict(LabsPipelineError):
    """Raised when a transition is attempted from an incompatible status."""

    def __init__(self, entity: str, current_status: str, message: str):
        super().__init__(message)
        self.entity = entity
        self.current_status = current_status

    def as_detail(self) -> dict[str, str]:
        return {
            "message": str(self),
            "entity": self.entity,
            "current_status": self.current_status,
        }
