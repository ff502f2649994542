"""
auth/provider.py -- Identity provider interface and GoTrue REST adapter.

The identity provider is the only component that verifies or creates
credentials. PollGate talks to it through the IdentityProvider protocol so the
orchestrator and gate never depend on one vendor's wording:

  sign_in_with_password(email, password) -> ProviderSession
  sign_up(email, password, metadata)     -> SignUpOutcome
  sign_out(access_token)                 -> None
  resend(type, email)                    -> None
  get_user(access_token)                 -> ProviderUser | None
  get_session(refresh_token)             -> ProviderSession | None

Failures raise ProviderError with a ProviderErrorKind tag. get_user() and
get_session() return None (rather than raising) when the provider simply
rejects the token -- that is the normal "not signed in" case, not an error.

GoTrueProvider speaks the GoTrue auth REST API (the one Supabase exposes under
/auth/v1). Classifying its error codes and messages into ProviderErrorKind
happens in _classify() below and nowhere else.

Security notes:
  Every request carries timeout=self.timeout so a slow provider cannot hold a
  worker thread indefinitely. Nothing is retried automatically.
  max_redirects=3 -- same reasoning as any fixed upstream: a long redirect
  chain from an auth endpoint is never legitimate.
  Passwords and tokens are never logged; only the provider's error detail is.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import requests

from auth.errors import ProviderError, ProviderErrorKind
from auth.models import ProviderSession, ProviderUser, SignUpOutcome
from core.config import Settings

logger = logging.getLogger("pollgate.auth.provider")


class IdentityProvider(Protocol):
    """The capability surface PollGate needs from an identity provider."""

    def sign_in_with_password(self, email: str, password: str) -> ProviderSession: ...

    def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> SignUpOutcome: ...

    def sign_out(self, access_token: str) -> None: ...

    def resend(self, type: str, email: str) -> None: ...

    def get_user(self, access_token: str) -> Optional[ProviderUser]: ...

    def get_session(self, refresh_token: str) -> Optional[ProviderSession]: ...


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

# Machine-readable codes sent by current GoTrue releases.
_ERROR_CODES: dict[str, ProviderErrorKind] = {
    "invalid_credentials": ProviderErrorKind.INVALID_CREDENTIALS,
    "email_not_confirmed": ProviderErrorKind.EMAIL_UNVERIFIED,
    "user_already_exists": ProviderErrorKind.ALREADY_REGISTERED,
    "email_exists": ProviderErrorKind.ALREADY_REGISTERED,
    "weak_password": ProviderErrorKind.WEAK_PASSWORD,
    "email_address_invalid": ProviderErrorKind.INVALID_EMAIL,
    "signup_disabled": ProviderErrorKind.SIGNUP_DISABLED,
    "email_provider_disabled": ProviderErrorKind.SIGNUP_DISABLED,
    "over_request_rate_limit": ProviderErrorKind.RATE_LIMITED,
    "over_email_send_rate_limit": ProviderErrorKind.RATE_LIMITED,
}

# Older releases only send prose. Checked in order; first match wins.
_MESSAGE_MARKERS: tuple[tuple[str, ProviderErrorKind], ...] = (
    ("invalid login credentials", ProviderErrorKind.INVALID_CREDENTIALS),
    ("email not confirmed", ProviderErrorKind.EMAIL_UNVERIFIED),
    ("user already registered", ProviderErrorKind.ALREADY_REGISTERED),
    ("password should be", ProviderErrorKind.WEAK_PASSWORD),
    ("unable to validate email address", ProviderErrorKind.INVALID_EMAIL),
    ("signup is disabled", ProviderErrorKind.SIGNUP_DISABLED),
    ("signups not allowed", ProviderErrorKind.SIGNUP_DISABLED),
    ("email rate limit exceeded", ProviderErrorKind.RATE_LIMITED),
    ("too many requests", ProviderErrorKind.RATE_LIMITED),
)

_TOKEN_REJECTED = frozenset({401, 403})


def _error_message(body: dict[str, Any]) -> str:
    for key in ("msg", "message", "error_description", "error"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _classify(status_code: int, body: dict[str, Any]) -> ProviderError:
    """Turn a non-2xx GoTrue response into a tagged ProviderError."""
    message = _error_message(body)
    code = body.get("error_code")

    kind: Optional[ProviderErrorKind] = _ERROR_CODES.get(code) if isinstance(code, str) else None
    if kind is None:
        lowered = message.lower()
        for marker, marker_kind in _MESSAGE_MARKERS:
            if marker in lowered:
                kind = marker_kind
                break
    if kind is None:
        if status_code == 429:
            kind = ProviderErrorKind.RATE_LIMITED
        elif status_code >= 500:
            kind = ProviderErrorKind.UNAVAILABLE
        else:
            kind = ProviderErrorKind.OTHER

    return ProviderError(kind, message or f"HTTP {status_code}", status_code=status_code)


# ---------------------------------------------------------------------------
# Response mapping
# ---------------------------------------------------------------------------


def _user_from_json(data: dict[str, Any]) -> ProviderUser:
    return ProviderUser(
        id=str(data["id"]),
        email=data.get("email"),
        email_confirmed=bool(data.get("email_confirmed_at") or data.get("confirmed_at")),
        metadata=dict(data.get("user_metadata") or {}),
    )


def _session_from_json(data: dict[str, Any]) -> ProviderSession:
    return ProviderSession(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token", ""),
        expires_in=int(data.get("expires_in") or 3600),
        user=_user_from_json(data["user"]),
    )


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class GoTrueProvider:
    """IdentityProvider backed by a GoTrue-compatible REST endpoint.

    Usage:
        provider = GoTrueProvider.from_settings(get_settings())
        session = provider.sign_in_with_password("a@example.com", "Secret1!")
        provider.close()
    """

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") + "/auth/v1"
        self.timeout = timeout
        self._anon_key = anon_key
        self._session = session or requests.Session()
        self._session.max_redirects = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> GoTrueProvider:
        return cls(
            settings.provider_url,
            settings.provider_anon_key,
            timeout=settings.provider_timeout_seconds,
        )

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, str]] = None,
        bearer: Optional[str] = None,
    ) -> requests.Response:
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {bearer or self._anon_key}",
        }
        try:
            return self._session.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            logger.warning("Identity provider timed out on %s %s", method, path)
            raise ProviderError(ProviderErrorKind.UNAVAILABLE, f"timeout: {e}") from e
        except requests.RequestException as e:
            logger.warning("Identity provider request failed on %s %s: %s", method, path, e)
            raise ProviderError(ProviderErrorKind.UNAVAILABLE, str(e)) from e

    @staticmethod
    def _body(resp: requests.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _expect_ok(self, resp: requests.Response) -> dict[str, Any]:
        body = self._body(resp)
        if resp.status_code >= 400:
            raise _classify(resp.status_code, body)
        return body

    # ------------------------------------------------------------------
    # IdentityProvider
    # ------------------------------------------------------------------

    def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        resp = self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        body = self._expect_ok(resp)
        try:
            return _session_from_json(body)
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(ProviderErrorKind.OTHER, f"malformed session payload: {e}") from e

    def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> SignUpOutcome:
        resp = self._request(
            "POST",
            "/signup",
            json={"email": email, "password": password, "data": metadata},
        )
        body = self._expect_ok(resp)
        try:
            # Auto-confirm projects answer with a full session; projects that
            # require verification answer with the bare user record.
            if body.get("access_token"):
                session = _session_from_json(body)
                return SignUpOutcome(user=session.user, session=session)
            user_data = body.get("user") if isinstance(body.get("user"), dict) else body
            return SignUpOutcome(user=_user_from_json(user_data))
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(ProviderErrorKind.OTHER, f"malformed sign-up payload: {e}") from e

    def sign_out(self, access_token: str) -> None:
        resp = self._request("POST", "/logout", bearer=access_token)
        # A token the provider no longer recognises is already signed out.
        if resp.status_code in (401, 403, 404):
            return
        self._expect_ok(resp)

    def resend(self, type: str, email: str) -> None:
        resp = self._request("POST", "/resend", json={"type": type, "email": email})
        self._expect_ok(resp)

    def get_user(self, access_token: str) -> Optional[ProviderUser]:
        resp = self._request("GET", "/user", bearer=access_token)
        if resp.status_code in _TOKEN_REJECTED:
            return None
        body = self._expect_ok(resp)
        try:
            return _user_from_json(body)
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(ProviderErrorKind.OTHER, f"malformed user payload: {e}") from e

    def get_session(self, refresh_token: str) -> Optional[ProviderSession]:
        """Exchange a refresh token for a new session. None if the token is rejected."""
        resp = self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        if resp.status_code in _TOKEN_REJECTED or resp.status_code == 400:
            return None
        body = self._expect_ok(resp)
        try:
            return _session_from_json(body)
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(ProviderErrorKind.OTHER, f"malformed session payload: {e}") from e
