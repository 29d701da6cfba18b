"""
Gating Error Taxonomy.
Shared exception types and the reason-string mapping used by callers.
"""

from typing import Any, Dict, Optional


class GatingError(Exception):
    """
    Base class for gating exceptions.
    Carries a machine-readable reason alongside the human message.
    """

    default_reason = "gating-error"

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason
        self.detail = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": False,
            "error": type(self).__name__,
            "reason": self.reason,
            "message": self.message,
            "detail": self.detail,
        }


class AuthorizationDenied(GatingError):
    default_reason = "not-authorized"


class ValidationFailed(GatingError):
    default_reason = "validation-failed"


class NotFound(GatingError):
    default_reason = "not-found"


class InvalidState(GatingError):
    default_reason = "invalid-state"


class ExecutionFailed(GatingError):
    default_reason = "execution-failed"


class TransportFailed(GatingError):
    """Messenger post/edit/notify failure."""

    default_reason = "transport-failed"


class LockExhaustedError(GatingError):
    """
    Raised when a store lock cannot be acquired within the retry budget.
    Callers must treat this as fatal: writing without the lock risks corruption.
    """

    default_reason = "lock-exhausted"


class ConfigError(GatingError):
    default_reason = "config-invalid"


_AUTHORIZATION_REASONS = {
    "gating-disabled",
    "no-policy",
    "no-role",
    "chat-not-allowed",
    "user-not-allowed",
    "not-authorized",
}

_STATE_REASONS = {"not-pending", "invalid-action", "missing-executor"}


def error_for_reason(reason: Optional[str], message: Optional[str] = None) -> GatingError:
    """Map a structured `{ok: false, reason}` result onto the exception taxonomy."""
    reason = reason or "unknown"
    text = message or reason
    if reason in _AUTHORIZATION_REASONS:
        return AuthorizationDenied(text, reason=reason)
    if reason == "not-found":
        return NotFound(text, reason=reason)
    if reason in _STATE_REASONS:
        return InvalidState(text, reason=reason)
    return ValidationFailed(text, reason=reason)
