"""
auth/orchestrator.py -- Register / login / logout / resend-verification.

Each operation is a short linear pipeline with early exits:

    rate-limit check -> field presence -> sanitize -> validate
        -> identity provider -> translate -> AuthResult

Failures inside the pipeline are raised as AuthError subclasses and converted
to AuthResult at the operation boundary (_run). Provider failures arrive as
ProviderError tags and are mapped to a fixed set of public messages per
operation. Nothing crosses the boundary as an exception, and no public
message ever contains the provider's own text -- that only goes to the log.

Anti-enumeration:
  login() reports "Invalid email or password" for both unknown accounts and
  wrong passwords. register() does reveal "already exists" (the provider
  would reveal it via the verification email anyway) but is budgeted at
  3 attempts per hour per client to make bulk probing expensive.

No retries: a provider failure is surfaced immediately. Recovery is always
user-initiated (resubmit, request a new email, wait out the window).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Optional

from auth.errors import (
    AuthError,
    AuthenticationFailure,
    ProviderError,
    ProviderErrorKind,
    ProviderUnavailable,
    RateLimitExceeded,
    ValidationError,
)
from auth.models import AuthErrorCode, AuthResult
from auth.provider import IdentityProvider
from core.config import Settings
from core.models import Credentials
from core.ratelimit import RateLimiter
from core.validation import sanitize, validate_email, validate_name, validate_password

logger = logging.getLogger("pollgate.auth.orchestrator")

# ---------------------------------------------------------------------------
# Public messages -- the complete user-facing vocabulary of this module
# ---------------------------------------------------------------------------

MSG_UNEXPECTED = "An unexpected error occurred. Please try again"
MSG_INVALID_EMAIL = "Please enter a valid email address"

_LOGIN_ERRORS: dict[ProviderErrorKind, tuple[AuthErrorCode, str]] = {
    ProviderErrorKind.INVALID_CREDENTIALS: (AuthErrorCode.invalid_credentials, "Invalid email or password"),
    ProviderErrorKind.EMAIL_UNVERIFIED: (
        AuthErrorCode.email_not_verified,
        "Please verify your email address before signing in",
    ),
    ProviderErrorKind.RATE_LIMITED: (
        AuthErrorCode.provider_rate_limited,
        "Too many login attempts. Please try again later",
    ),
}
_LOGIN_FALLBACK = (AuthErrorCode.authentication_failed, "Authentication failed. Please try again")

_REGISTER_ERRORS: dict[ProviderErrorKind, tuple[AuthErrorCode, str]] = {
    ProviderErrorKind.ALREADY_REGISTERED: (
        AuthErrorCode.already_registered,
        "An account with this email already exists",
    ),
    ProviderErrorKind.WEAK_PASSWORD: (AuthErrorCode.weak_password, "Password does not meet security requirements"),
    ProviderErrorKind.INVALID_EMAIL: (AuthErrorCode.invalid_email, MSG_INVALID_EMAIL),
    ProviderErrorKind.SIGNUP_DISABLED: (AuthErrorCode.signup_disabled, "Registration is currently disabled"),
}
_REGISTER_FALLBACK = (AuthErrorCode.registration_failed, "Registration failed. Please try again")

_RESEND_ERRORS: dict[ProviderErrorKind, tuple[AuthErrorCode, str]] = {
    ProviderErrorKind.RATE_LIMITED: (
        AuthErrorCode.provider_rate_limited,
        "Too many verification emails sent. Please wait before requesting another",
    ),
}
_RESEND_FALLBACK = (AuthErrorCode.verification_email_failed, "Failed to send verification email. Please try again")

MSG_VERIFY_EMAIL = (
    "Registration successful! Please check your email to verify your account before signing in."
)
MSG_VERIFICATION_SENT = "Verification email sent successfully"


def _translate(
    exc: ProviderError,
    table: dict[ProviderErrorKind, tuple[AuthErrorCode, str]],
    fallback: tuple[AuthErrorCode, str],
) -> AuthError:
    """Map a provider failure onto this operation's public vocabulary."""
    if exc.kind is ProviderErrorKind.UNAVAILABLE:
        return ProviderUnavailable(MSG_UNEXPECTED)
    code, message = table.get(exc.kind, fallback)
    if code is AuthErrorCode.invalid_credentials:
        return AuthenticationFailure(message)
    return AuthError(message, code)


class AuthOrchestrator:
    """Composes RateLimiter + validation + IdentityProvider into four operations.

    Usage:
        orchestrator = AuthOrchestrator(limiter, provider, settings)
        result = orchestrator.login(Credentials(email, password), client_id="203.0.113.7")
        if result.ok:
            set_session_cookies(response, result.session)
    """

    def __init__(self, limiter: RateLimiter, provider: IdentityProvider, settings: Settings) -> None:
        self.limiter = limiter
        self.provider = provider
        self.settings = settings

    # ------------------------------------------------------------------
    # Boundary
    # ------------------------------------------------------------------

    def _run(self, operation: str, step: Callable[[], AuthResult], unexpected: str = MSG_UNEXPECTED) -> AuthResult:
        """Execute one pipeline and convert every failure into an AuthResult."""
        try:
            return step()
        except RateLimitExceeded as exc:
            return AuthResult(error=exc.message, code=exc.code, reset_time=exc.reset_time)
        except AuthError as exc:
            return AuthResult(error=exc.message, code=exc.code)
        except Exception:
            logger.exception("Unexpected failure during %s", operation)
            return AuthResult(error=unexpected, code=AuthErrorCode.unexpected_error)

    def _enforce_limit(self, key: str, label: str, max_attempts: int, window: float) -> None:
        decision = self.limiter.check(key, max_attempts, window)
        if not decision.allowed:
            raise RateLimitExceeded(label, decision.reset_time)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def login(self, credentials: Credentials, client_id: str) -> AuthResult:
        """Sign in with email + password. 5 attempts / 15 minutes per client.

        On success the limiter entry is cleared so one earlier typo does not
        count against the user's next session.
        """

        def step() -> AuthResult:
            key = f"login:{client_id}"
            self._enforce_limit(
                key,
                "login",
                self.settings.login_max_attempts,
                self.settings.login_window_seconds,
            )
            if not credentials.email or not credentials.password:
                raise ValidationError("Email and password are required")

            email = sanitize(credentials.email)
            if not validate_email(email):
                raise ValidationError(MSG_INVALID_EMAIL)

            try:
                session = self.provider.sign_in_with_password(email, credentials.password)
            except ProviderError as exc:
                logger.info("Login rejected by provider for client %s: %s", client_id, exc.kind.value)
                if exc.kind is ProviderErrorKind.UNAVAILABLE:
                    logger.error("Identity provider unavailable during login: %s", exc.detail)
                raise _translate(exc, _LOGIN_ERRORS, _LOGIN_FALLBACK) from exc

            self.limiter.clear(key)
            logger.info("Login succeeded for user %s", session.user.id)
            return AuthResult(session=session)

        return self._run("login", step)

    def register(self, credentials: Credentials, client_id: str) -> AuthResult:
        """Create an account. 3 attempts / 60 minutes per client.

        Two success shapes: an immediate session (requires_verification False,
        session set) or an account awaiting email verification
        (requires_verification True, no session).
        """

        def step() -> AuthResult:
            self._enforce_limit(
                f"register:{client_id}",
                "registration",
                self.settings.register_max_attempts,
                self.settings.register_window_seconds,
            )
            if not credentials.email or not credentials.password or not credentials.name:
                raise ValidationError("Name, email, and password are required")

            email = sanitize(credentials.email)
            name = sanitize(credentials.name)

            if not validate_email(email):
                raise ValidationError(MSG_INVALID_EMAIL)
            name_check = validate_name(name)
            if not name_check.valid:
                raise ValidationError(name_check.reason or "Invalid name")
            password_check = validate_password(credentials.password)
            if not password_check.valid:
                raise ValidationError(password_check.reason or "Invalid password")

            try:
                outcome = self.provider.sign_up(email, credentials.password, {"name": name})
            except ProviderError as exc:
                logger.info("Registration rejected by provider for client %s: %s", client_id, exc.kind.value)
                if exc.kind is ProviderErrorKind.UNAVAILABLE:
                    logger.error("Identity provider unavailable during registration: %s", exc.detail)
                raise _translate(exc, _REGISTER_ERRORS, _REGISTER_FALLBACK) from exc

            if outcome.session is None:
                logger.info("Registered user %s (verification pending)", outcome.user.id)
                return AuthResult(message=MSG_VERIFY_EMAIL, requires_verification=True)
            logger.info("Registered user %s", outcome.user.id)
            return AuthResult(session=outcome.session)

        return self._run("registration", step)

    def logout(self, access_token: Optional[str]) -> AuthResult:
        """Revoke the caller's session at the provider.

        Not rate limited: logout is keyed to the caller's own session, so it
        cannot be used to exhaust anyone else's budget.
        """

        def step() -> AuthResult:
            if not access_token:
                return AuthResult()
            try:
                self.provider.sign_out(access_token)
            except ProviderError as exc:
                logger.error("Sign-out failed at provider: %s", exc)
                raise AuthError("Failed to sign out. Please try again", AuthErrorCode.sign_out_failed) from exc
            return AuthResult()

        return self._run("logout", step, unexpected="An unexpected error occurred during sign out")

    def resend_verification_email(self, email: str) -> AuthResult:
        """Ask the provider to send the sign-up verification email again.

        No local budget: the provider enforces its own email send limit, which
        surfaces here as RATE_LIMITED.
        """

        def step() -> AuthResult:
            if not email:
                raise ValidationError("Email is required")
            clean_email = sanitize(email)
            if not validate_email(clean_email):
                raise ValidationError(MSG_INVALID_EMAIL)

            try:
                self.provider.resend("signup", clean_email)
            except ProviderError as exc:
                logger.info("Verification resend rejected by provider: %s", exc.kind.value)
                if exc.kind is ProviderErrorKind.UNAVAILABLE:
                    logger.error("Identity provider unavailable during resend: %s", exc.detail)
                raise _translate(exc, _RESEND_ERRORS, _RESEND_FALLBACK) from exc

            return AuthResult(message=MSG_VERIFICATION_SENT)

        return self._run("resend_verification", step)
