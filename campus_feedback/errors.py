from __future__ import annotations

from typing import Any, Optional


class FeedbackError(RuntimeError):
    """
    Base for every deterministic engine error. None of these are retryable:
    the same input against the same state fails the same way.
    """
    kind = "error"
    status_code = 400

    def __init__(self, message: str, *, field: Optional[str] = None, rule: Optional[str] = None, **details: Any):
        super().__init__(message)
        self.message = message
        self.field = field
        self.rule = rule
        self.details = details

    def to_dict(self) -> dict:
        payload = {
            "error": self.kind,
            "message": self.message,
            "code": self.status_code,
        }
        if self.field:
            payload["field"] = self.field
        if self.rule:
            payload["rule"] = self.rule
        payload.update(self.details)
        return payload


class ValidationError(FeedbackError):
    """Malformed input (bad filter value, missing field, too few answers)."""
    kind = "validation_error"
    status_code = 400


class ConflictError(FeedbackError):
    """Uniqueness violation: duplicate submission tuple or a second live period."""
    kind = "conflict"
    status_code = 409


class NotFoundError(FeedbackError):
    kind = "not_found"
    status_code = 404


class PolicyError(FeedbackError):
    """Operation disallowed by lifecycle rules; `rule` names the rule."""
    kind = "policy_violation"
    status_code = 422
