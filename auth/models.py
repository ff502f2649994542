"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in core/models.py -- dataclasses own domain shape; the orchestrator, gate and
provider adapter do the work.

The identity provider owns users and sessions. Everything here is a
read-only projection of what it returned, held for one request at most.
Token strings are opaque: nothing in PollGate parses them.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class ProviderUser:
    """A user record as returned by the identity provider."""

    id: str
    email: str | None = None
    email_confirmed: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderSession:
    """An authenticated session issued by the identity provider.

    expires_in is the access token lifetime in seconds as reported by the
    provider; cookie max-age is derived from it.
    """

    access_token: str
    refresh_token: str
    expires_in: int
    user: ProviderUser

    def __repr__(self) -> str:
        return f"ProviderSession(user={self.user.id!r}, expires_in={self.expires_in})"


@dataclass(frozen=True)
class SignUpOutcome:
    """Result of a successful sign-up.

    session is None when the provider requires email verification before the
    first sign-in. Callers branch on that, not on error presence.
    """

    user: ProviderUser
    session: ProviderSession | None = None


@dataclass(frozen=True)
class Principal:
    """The resolved identity of the current caller.

    A Principal only exists for an authenticated caller; an anonymous request
    has principal None rather than an "unauthenticated" Principal.
    """

    user_id: str
    email: str | None = None

    @classmethod
    def from_user(cls, user: ProviderUser) -> Principal:
        return cls(user_id=user.id, email=user.email)


class AuthErrorCode(str, Enum):
    """Closed vocabulary of orchestrator failures.

    HTTP routes map these to status codes; nothing outside auth/ ever sees a
    provider's own wording.
    """

    validation_error = "validation_error"
    rate_limited = "rate_limited"
    invalid_credentials = "invalid_credentials"
    email_not_verified = "email_not_verified"
    provider_rate_limited = "provider_rate_limited"
    authentication_failed = "authentication_failed"
    already_registered = "already_registered"
    weak_password = "weak_password"
    invalid_email = "invalid_email"
    signup_disabled = "signup_disabled"
    registration_failed = "registration_failed"
    sign_out_failed = "sign_out_failed"
    verification_email_failed = "verification_email_failed"
    provider_unavailable = "provider_unavailable"
    unexpected_error = "unexpected_error"


@dataclass
class AuthResult:
    """Outcome of one orchestrator operation.

    error is None on success. session is populated only on a successful
    login or an immediate-session registration; the HTTP layer turns it into
    cookies and never serializes it.
    """

    error: str | None = None
    code: AuthErrorCode | None = None
    message: str | None = None
    requires_verification: bool = False
    reset_time: float | None = None  # POSIX seconds, rate-limited results only
    session: ProviderSession | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_payload(self) -> dict[str, Any]:
        """Public shape returned to callers: {error, message, requires_verification}."""
        payload: dict[str, Any] = {"error": self.error}
        if self.message is not None:
            payload["message"] = self.message
        if self.requires_verification:
            payload["requires_verification"] = True
        return payload
