"""Failure types reported by the engine.

Every failure carries a machine-readable ``reason`` so the web layer can map
it to a message without parsing text.
"""
from typing import Any, Dict, Optional


class SchedulingError(Exception):
    reason = "scheduling_error"

    def __init__(self, message: str, reason: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"ok": False, "reason": self.reason, "message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class DomainValidationError(SchedulingError):
    """Malformed references, duplicate subjects, bad or conflicting pins."""
    reason = "invalid_input"


class CapacityError(SchedulingError):
    reason = "insufficient_capacity"


class InfeasibleError(SchedulingError):
    """Valid input, but no trial completed within its backtrack budget."""
    reason = "no_feasible_assignment"


class InvariantViolation(SchedulingError):
    # A defect in the engine, never a property of the input.
    reason = "internal_error"
