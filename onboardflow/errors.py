"""Typed errors raised by the onboarding workflow engine."""

from __future__ import annotations

from typing import Any, Dict


class OnboardingError(Exception):
    """Base class for all workflow errors.

    Every subclass carries a stable ``code`` that callers can map to a
    response without parsing the message.
    """

    code = "onboarding_error"
    retryable = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error into a response payload."""
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        if self.retryable:
            payload["retryable"] = True
        return payload


class ValidationError(OnboardingError):
    """Malformed or missing required input."""

    code = "validation_error"


class InvalidTransition(OnboardingError):
    """A lifecycle rule was violated."""

    code = "invalid_transition"


class NotFound(OnboardingError):
    """Unknown workflow, step, exception or document id."""

    code = "not_found"


class DuplicateWorkflow(OnboardingError):
    """The employee already has an active onboarding workflow."""

    code = "duplicate_workflow"


class TemplateNotFound(OnboardingError):
    """No template is registered under the requested name."""

    code = "template_not_found"


class PersistenceError(OnboardingError):
    """Storage failed; re-issuing the same command is safe."""

    code = "persistence_error"
    retryable = True


__all__ = [
    "OnboardingError",
    "ValidationError",
    "InvalidTransition",
    "NotFound",
    "DuplicateWorkflow",
    "TemplateNotFound",
    "PersistenceError",
]
