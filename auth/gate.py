"""
auth/gate.py -- SessionGate: per-request session refresh, path gating, security headers.

Runs once per inbound request, before any route handler:

  1. Resolve the caller. With an access token, ask the provider who it
     belongs to. If that fails and a refresh token is present, exchange it for
     a new session and re-issue the cookies on the way out. Server-rendered
     views downstream therefore never see a stale principal.
  2. Classify the path: PUBLIC (auth pages, static prefix, API prefix),
     STATIC (asset file extension) or PROTECTED.
  3. PROTECTED without a principal -> 302 to the login page with
     ?redirect=<original path> so the user lands back where they started.
  4. Everything else passes through with request.state.principal set.
  5. The four security headers are set on EVERY response, redirects included.

Each request is classified independently; nothing about the decision is
remembered between requests.

Deadlines:
  Provider calls are blocking (requests), so they run in the event loop's
  default executor and are bounded by asyncio.wait_for(provider_timeout_seconds).
  On timeout the worker thread is abandoned, not joined; the adapter's own
  requests timeout bounds how long it lingers. A timeout, an unreachable
  provider, or any other exception from the adapter is logged and treated as
  "no principal". The gate fails closed without clearing the caller's cookies,
  and the security headers are still applied.

API paths are PUBLIC at this layer on purpose: API routes answer 401 through
auth.dependencies.get_current_principal rather than redirecting to an HTML
login page.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import re
from collections.abc import Awaitable, Callable, Iterable
from typing import Optional
from urllib.parse import urlencode

from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

from auth.errors import ProviderError
from auth.models import Principal, ProviderSession
from auth.provider import IdentityProvider
from auth.tokens import SessionTokens, clear_session_cookies, read_session_tokens, set_session_cookies
from core.config import Settings
from core.models import PathClassification

logger = logging.getLogger("pollgate.auth.gate")

SECURITY_HEADERS: dict[str, str] = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-XSS-Protection": "1; mode=block",
}

_STATIC_FILE_RE = re.compile(r"\.(svg|png|jpg|jpeg|gif|webp|ico|css|js)$", re.IGNORECASE)


def classify_path(path: str, public_paths: Iterable[str]) -> PathClassification:
    """Classify a request path as PUBLIC, STATIC or PROTECTED.

    A public entry matches the path exactly or as a segment prefix: "/api"
    matches "/api" and "/api/v1/health" but not "/apiary".
    """
    for public in public_paths:
        base = public.rstrip("/") or "/"
        if path == base or path.startswith(base + "/"):
            return PathClassification.PUBLIC
    if _STATIC_FILE_RE.search(path):
        return PathClassification.STATIC
    return PathClassification.PROTECTED


def apply_security_headers(response: Response) -> None:
    for name, value in SECURITY_HEADERS.items():
        response.headers[name] = value


def login_redirect(login_path: str, original_path: str) -> RedirectResponse:
    """302 to the login page carrying the original path as ?redirect=.

    Only the path is carried, never scheme or host, so the value is always
    server-local. safe_redirect_target() re-checks it after login.
    """
    return RedirectResponse(f"{login_path}?{urlencode({'redirect': original_path})}", status_code=302)


def safe_redirect_target(target: Optional[str], default: str = "/") -> str:
    """Validate a post-login redirect target. Only accept relative paths.

    Rejects absolute URLs ("https://attacker.example") and protocol-relative
    ones ("//attacker.example"), both of which would leave the site.
    """
    if target and target.startswith("/") and not target.startswith("//") and "\\" not in target:
        return target
    return default


class _Resolution:
    __slots__ = ("principal", "refreshed", "stale")

    def __init__(
        self,
        principal: Optional[Principal] = None,
        refreshed: Optional[ProviderSession] = None,
        stale: bool = False,
    ) -> None:
        self.principal = principal
        self.refreshed = refreshed
        self.stale = stale


class _ProviderDown(Exception):
    """The provider timed out or failed; the caller is treated as anonymous."""


class SessionGate:
    """HTTP middleware callable. Wire it with app.middleware("http").

    Usage:
        gate = SessionGate(provider, settings)

        @app.middleware("http")
        async def session_gate(request, call_next):
            return await gate(request, call_next)
    """

    def __init__(self, provider: IdentityProvider, settings: Settings) -> None:
        self.provider = provider
        self.settings = settings
        self.public_paths = tuple(settings.public_paths)
        self.login_path = settings.login_path
        self.timeout = settings.provider_timeout_seconds

    async def __call__(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        resolution = await self._resolve(read_session_tokens(request))
        request.state.principal = resolution.principal

        path = request.url.path
        classification = classify_path(path, self.public_paths)

        if classification is PathClassification.PROTECTED and resolution.principal is None:
            logger.debug("Redirecting unauthenticated request for %s to %s", path, self.login_path)
            response: Response = login_redirect(self.login_path, path)
        else:
            response = await call_next(request)

        apply_security_headers(response)
        if resolution.refreshed is not None:
            set_session_cookies(response, resolution.refreshed, secure=self.settings.secure_cookies)
        elif resolution.stale:
            clear_session_cookies(response)
        return response

    # ------------------------------------------------------------------
    # Session resolution
    # ------------------------------------------------------------------

    async def _call_provider(self, fn: Callable, *args):
        try:
            loop = asyncio.get_running_loop()
            future = loop.run_in_executor(None, functools.partial(fn, *args))
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning("Identity provider exceeded %.1fs deadline in %s", self.timeout, fn.__name__)
            raise _ProviderDown() from e
        except ProviderError as e:
            logger.warning("Identity provider error in %s: %s", fn.__name__, e)
            raise _ProviderDown() from e
        except Exception as e:
            logger.exception("Unexpected failure calling identity provider in %s", fn.__name__)
            raise _ProviderDown() from e

    async def _resolve(self, tokens: SessionTokens) -> _Resolution:
        if not tokens.present:
            return _Resolution()

        try:
            if tokens.access_token:
                user = await self._call_provider(self.provider.get_user, tokens.access_token)
                if user is not None:
                    return _Resolution(principal=Principal.from_user(user))

            if tokens.refresh_token:
                session = await self._call_provider(self.provider.get_session, tokens.refresh_token)
                if session is not None:
                    logger.debug("Refreshed session for user %s", session.user.id)
                    return _Resolution(principal=Principal.from_user(session.user), refreshed=session)
        except _ProviderDown:
            return _Resolution()

        # The provider rejected every token we had: drop them client-side.
        return _Resolution(stale=True)
