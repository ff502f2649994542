"""
auth/tokens.py -- Session token transport: cookies and Bearer headers.

PollGate never mints or parses tokens -- the identity provider does both.
This module only moves the provider's opaque access/refresh tokens between
HTTP requests and responses.

Security design decisions:
  Cookies: httponly=True so page scripts cannot read them (XSS mitigation);
       samesite="lax" so they ride along on same-site navigations but not on
       cross-site POSTs (CSRF mitigation for most cases); secure=True when
       SECURE_COOKIES is set (production behind TLS).

  Lifetimes: the access cookie's max_age follows the provider's expires_in;
       the refresh cookie lives for _REFRESH_COOKIE_SECONDS so the gate can
       renew an expired access token without a new sign-in.

  Bearer header: API clients may send Authorization: Bearer <access token>
       instead of cookies. Refresh is cookie-only.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from typing import NamedTuple, Optional

from starlette.requests import Request
from starlette.responses import Response

from auth.models import ProviderSession

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

_REFRESH_COOKIE_SECONDS = 30 * 24 * 60 * 60


class SessionTokens(NamedTuple):
    access_token: Optional[str]
    refresh_token: Optional[str]

    @property
    def present(self) -> bool:
        return bool(self.access_token or self.refresh_token)


def read_session_tokens(request: Request) -> SessionTokens:
    """Pull the caller's tokens from cookies, falling back to a Bearer header.

    Auth method priority:
      1. access_token cookie -- browser sessions.
      2. Authorization: Bearer header -- API clients.
    """
    access: Optional[str] = request.cookies.get(ACCESS_COOKIE) or None
    if not access:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            access = auth_header[7:].strip() or None
    refresh: Optional[str] = request.cookies.get(REFRESH_COOKIE) or None
    return SessionTokens(access, refresh)


def set_session_cookies(response: Response, session: ProviderSession, secure: bool = False) -> None:
    """Write the provider session onto the response as two httpOnly cookies."""
    response.set_cookie(
        ACCESS_COOKIE,
        value=session.access_token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=session.expires_in,
    )
    if session.refresh_token:
        response.set_cookie(
            REFRESH_COOKIE,
            value=session.refresh_token,
            httponly=True,
            samesite="lax",
            secure=secure,
            max_age=_REFRESH_COOKIE_SECONDS,
        )


def clear_session_cookies(response: Response) -> None:
    """Expire both session cookies on the client."""
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)
