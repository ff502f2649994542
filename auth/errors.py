"""
auth/errors.py -- Error taxonomy for the authentication layer.

Two families:

  AuthError and subclasses -- raised inside AuthOrchestrator pipelines and
      caught at the orchestrator boundary, where they become AuthResult
      values. Each carries a closed AuthErrorCode and a message that is safe
      to show to the user.

  ProviderError -- raised by identity provider adapters only. kind is a
      ProviderErrorKind tag; detail is the provider's raw wording, kept for
      server-side logs and never returned to a caller.

"Verification required" is deliberately not an exception: it is a success
with a precondition, reported as AuthResult.requires_verification.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from auth.models import AuthErrorCode


class AuthError(Exception):
    """Base for user-facing authentication failures."""

    code: AuthErrorCode = AuthErrorCode.unexpected_error

    def __init__(self, message: str, code: AuthErrorCode | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(AuthError):
    """Malformed or out-of-policy input. The message is corrective and specific."""

    code = AuthErrorCode.validation_error


class RateLimitExceeded(AuthError):
    """The caller's attempt budget is spent until reset_time (POSIX seconds)."""

    code = AuthErrorCode.rate_limited

    def __init__(self, action: str, reset_time: float) -> None:
        self.reset_time = reset_time
        super().__init__(f"Too many {action} attempts. Please try again after {format_reset_time(reset_time)}")


class AuthenticationFailure(AuthError):
    """Credentials rejected. Never says whether the account exists."""

    code = AuthErrorCode.invalid_credentials


class ProviderUnavailable(AuthError):
    """The identity provider could not be reached or answered with a server error."""

    code = AuthErrorCode.provider_unavailable


class ProviderErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_UNVERIFIED = "email_unverified"
    ALREADY_REGISTERED = "already_registered"
    WEAK_PASSWORD = "weak_password"
    INVALID_EMAIL = "invalid_email"
    SIGNUP_DISABLED = "signup_disabled"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    OTHER = "other"


class ProviderError(Exception):
    """Tagged failure from an identity provider call."""

    def __init__(self, kind: ProviderErrorKind, detail: str = "", status_code: int | None = None) -> None:
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail
        self.status_code = status_code


def format_reset_time(reset_time: float) -> str:
    """Human-readable wall clock time for rate-limit messages, e.g. '14:05:09 UTC'."""
    return datetime.fromtimestamp(reset_time, tz=timezone.utc).strftime("%H:%M:%S UTC")
