"""
tests/test_session_gate.py -- Tests for auth/gate.py.

Most tests mount SessionGate on a minimal FastAPI app so each branch can be
driven in isolation; TestAppGate runs the same checks through the real
application stack in api/main.py.

Coverage:
  - classify_path(): public prefixes, static extensions, everything else protected
  - Unauthenticated protected path -> 302 /login?redirect={path}
  - Security headers on pass-through AND redirect responses
  - Access cookie / Bearer header resolve a principal
  - Expired access + valid refresh -> new cookies issued, request passes
  - Rejected tokens -> cookies cleared
  - Provider outage or deadline -> anonymous, cookies kept
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from auth.errors import ProviderError, ProviderErrorKind
from auth.gate import SECURITY_HEADERS, SessionGate, classify_path, safe_redirect_target
from core.config import get_settings
from core.models import PathClassification
from fakes import FakeIdentityProvider

PUBLIC = ["/login", "/register", "/auth", "/static", "/favicon.ico", "/api"]


def _gate_client(provider: FakeIdentityProvider, **overrides) -> TestClient:
    settings = get_settings().model_copy(update=overrides)
    gate = SessionGate(provider, settings)
    mini = FastAPI()

    @mini.middleware("http")
    async def session_gate(request: Request, call_next):
        return await gate(request, call_next)

    async def whoami(request: Request) -> dict:
        principal = request.state.principal
        return {"user_id": principal.user_id if principal else None}

    for path in ("/dashboard", "/polls/42", "/login", "/api/v1/polls", "/apiary", "/images/logo.PNG"):
        mini.add_api_route(path, whoami, methods=["GET"])

    return TestClient(mini, follow_redirects=False)


def _set_cookies(resp) -> list[str]:
    return resp.headers.get_list("set-cookie")


def _assert_security_headers(resp) -> None:
    for name, value in SECURITY_HEADERS.items():
        assert resp.headers[name] == value


class TestClassifyPath:
    @pytest.mark.parametrize(
        "path",
        ["/login", "/register", "/auth/callback", "/static/app.css", "/favicon.ico", "/api", "/api/v1/health"],
    )
    def test_public(self, path: str) -> None:
        assert classify_path(path, PUBLIC) is PathClassification.PUBLIC

    @pytest.mark.parametrize("path", ["/logo.svg", "/img/photo.JPEG", "/bundle.js", "/theme.css", "/x.webp"])
    def test_static(self, path: str) -> None:
        assert classify_path(path, PUBLIC) is PathClassification.STATIC

    @pytest.mark.parametrize("path", ["/", "/dashboard", "/polls/42", "/apiary", "/loginx", "/authors", "/file.svgz"])
    def test_protected(self, path: str) -> None:
        assert classify_path(path, PUBLIC) is PathClassification.PROTECTED


class TestSafeRedirectTarget:
    @pytest.mark.parametrize("target", ["/polls/42", "/", "/dashboard?tab=mine"])
    def test_keeps_local_paths(self, target: str) -> None:
        assert safe_redirect_target(target) == target

    @pytest.mark.parametrize("target", [None, "", "https://evil.example", "//evil.example", "/\\evil.example", "polls"])
    def test_rejects_everything_else(self, target) -> None:
        assert safe_redirect_target(target) == "/"


class TestRedirect:
    def test_unauthenticated_protected_path_redirects(self, provider) -> None:
        """GET /polls/42 with no session must 302 to /login?redirect=/polls/42."""
        resp = _gate_client(provider).get("/polls/42")
        assert resp.status_code == 302
        location = urlparse(resp.headers["location"])
        assert location.path == "/login"
        assert parse_qs(location.query) == {"redirect": ["/polls/42"]}

    def test_redirect_carries_path_only(self, provider) -> None:
        resp = _gate_client(provider).get("/dashboard?tab=mine")
        assert parse_qs(urlparse(resp.headers["location"]).query) == {"redirect": ["/dashboard"]}

    def test_redirect_has_security_headers(self, provider) -> None:
        resp = _gate_client(provider).get("/dashboard")
        assert resp.status_code == 302
        _assert_security_headers(resp)

    def test_custom_login_path(self, provider) -> None:
        resp = _gate_client(provider, login_path="/signin").get("/dashboard")
        assert resp.headers["location"].startswith("/signin?redirect=")

    @pytest.mark.parametrize("path", ["/login", "/api/v1/polls", "/images/logo.PNG"])
    def test_public_and_static_pass_through(self, provider, path: str) -> None:
        resp = _gate_client(provider).get(path)
        assert resp.status_code == 200
        assert resp.json() == {"user_id": None}
        _assert_security_headers(resp)

    def test_segment_prefix_only(self, provider) -> None:
        """/apiary is not under /api."""
        assert _gate_client(provider).get("/apiary").status_code == 302


class TestSessionResolution:
    def test_access_cookie(self, provider) -> None:
        session = provider.issue_session(provider.add_user("ada@example.com"))
        client = _gate_client(provider)
        client.cookies.set("access_token", session.access_token)
        resp = client.get("/dashboard")
        assert resp.status_code == 200
        assert resp.json() == {"user_id": session.user.id}
        _assert_security_headers(resp)
        assert _set_cookies(resp) == []

    def test_bearer_header(self, provider) -> None:
        session = provider.issue_session(provider.add_user("ada@example.com"))
        resp = _gate_client(provider).get("/polls/42", headers={"Authorization": f"Bearer {session.access_token}"})
        assert resp.status_code == 200
        assert resp.json() == {"user_id": session.user.id}

    def test_expired_access_is_refreshed(self, provider) -> None:
        old = provider.issue_session(provider.add_user("ada@example.com"))
        provider.expire_access(old.access_token)
        client = _gate_client(provider)
        client.cookies.set("access_token", old.access_token)
        client.cookies.set("refresh_token", old.refresh_token)

        resp = client.get("/dashboard")
        assert resp.status_code == 200
        assert resp.json() == {"user_id": old.user.id}
        cookies = _set_cookies(resp)
        assert any(c.startswith("access_token=access-") and "httponly" in c.lower() for c in cookies)
        assert any(c.startswith("refresh_token=refresh-") for c in cookies)
        assert not any(old.access_token in c for c in cookies)
        assert ("get_session", (old.refresh_token,)) in provider.calls

    def test_refresh_only(self, provider) -> None:
        old = provider.issue_session(provider.add_user("ada@example.com"))
        client = _gate_client(provider)
        client.cookies.set("refresh_token", old.refresh_token)
        resp = client.get("/dashboard")
        assert resp.status_code == 200
        assert not any(c[0] == "get_user" for c in provider.calls)

    def test_rejected_tokens_clear_cookies(self, provider) -> None:
        client = _gate_client(provider)
        client.cookies.set("access_token", "forged")
        client.cookies.set("refresh_token", "forged-too")
        resp = client.get("/dashboard")
        assert resp.status_code == 302
        cookies = _set_cookies(resp)
        assert any(c.startswith("access_token=") and "max-age=0" in c.lower() for c in cookies)
        assert any(c.startswith("refresh_token=") and "max-age=0" in c.lower() for c in cookies)

    def test_provider_outage_is_anonymous_and_keeps_cookies(self, provider) -> None:
        session = provider.issue_session(provider.add_user("ada@example.com"))
        provider.fail_with["get_user"] = ProviderError(ProviderErrorKind.UNAVAILABLE, "connection refused")
        client = _gate_client(provider)
        client.cookies.set("access_token", session.access_token)

        assert client.get("/login").json() == {"user_id": None}
        resp = client.get("/dashboard")
        assert resp.status_code == 302
        assert _set_cookies(resp) == []

    def test_unexpected_provider_exception_is_anonymous(self, provider) -> None:
        """A crashing provider still yields a response carrying the security headers."""
        session = provider.issue_session(provider.add_user("ada@example.com"))
        provider.fail_with["get_user"] = RuntimeError("provider sdk bug")
        client = _gate_client(provider)
        client.cookies.set("access_token", session.access_token)

        resp = client.get("/login")
        assert resp.status_code == 200
        assert resp.json() == {"user_id": None}
        _assert_security_headers(resp)
        assert _set_cookies(resp) == []

        resp = client.get("/dashboard")
        assert resp.status_code == 302
        _assert_security_headers(resp)

    def test_provider_deadline(self, provider) -> None:
        session = provider.issue_session(provider.add_user("ada@example.com"))
        provider.delay = 0.5
        client = _gate_client(provider, provider_timeout_seconds=0.05)
        client.cookies.set("access_token", session.access_token)

        resp = client.get("/login")
        assert resp.status_code == 200
        assert resp.json() == {"user_id": None}
        assert _set_cookies(resp) == []


class TestAppGate:
    """The same gate, wired through api/main.py."""

    def test_protected_page_redirects(self, app_client) -> None:
        client, _provider = app_client
        resp = client.get("/polls/create")
        assert resp.status_code == 302
        assert parse_qs(urlparse(resp.headers["location"]).query) == {"redirect": ["/polls/create"]}
        _assert_security_headers(resp)

    def test_api_paths_are_not_redirected(self, app_client) -> None:
        client, _provider = app_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"
        _assert_security_headers(resp)

    def test_authenticated_protected_page_passes_gate(self, app_client) -> None:
        """No route exists at /polls, so passing the gate shows up as 404 rather than 302."""
        client, provider = app_client
        session = provider.issue_session(provider.add_user("ada@example.com"))
        client.cookies.set("access_token", session.access_token)
        resp = client.get("/polls")
        assert resp.status_code == 404
        _assert_security_headers(resp)
