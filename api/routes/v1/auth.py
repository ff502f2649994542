"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login                -- password login; sets session cookies
  POST /api/v1/auth/register             -- create account; session or verification pending
  POST /api/v1/auth/logout               -- revoke session at the provider; clears cookies
  POST /api/v1/auth/resend-verification  -- send the sign-up verification email again
  GET  /api/v1/auth/me                   -- current principal (requires auth)

Every handler is a thin adapter: parse the body, hand it to the
AuthOrchestrator on app.state, and map the AuthResult onto HTTP. All
policy (budgets, validation, provider translation) lives in the orchestrator.

Security:
  Login, register and resend are capped at AUTH_ROUTE_LIMIT per client by
  slowapi, ahead of the orchestrator's own per-action budgets.
  Cache-Control: no-store on every response that can carry session cookies.
  The post-login redirect target is re-validated so it can never leave the site.

Handlers are plain def (not async): the orchestrator makes blocking provider
calls, and FastAPI runs sync handlers in its threadpool.
"""

from __future__ import annotations

import math
import time

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import AUTH_ROUTE_LIMIT, limiter
from api.models import (
    AuthResponse,
    ErrorDetail,
    ErrorResponse,
    LoginRequest,
    MeResponse,
    RegisterRequest,
    ResendRequest,
)
from auth.dependencies import client_key, get_current_principal
from auth.gate import safe_redirect_target
from auth.models import AuthErrorCode, AuthResult, Principal
from auth.orchestrator import AuthOrchestrator
from auth.tokens import clear_session_cookies, read_session_tokens, set_session_cookies
from core.models import Credentials

# Auth policy:
# - POST /api/v1/auth/login:               public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/register:            public
# - POST /api/v1/auth/logout:              public -- no token means nothing to revoke
# - POST /api/v1/auth/resend-verification: public -- the account cannot sign in yet
# - GET  /api/v1/auth/me:                  requires auth (get_current_principal)
router = APIRouter()

_STATUS_BY_CODE: dict[AuthErrorCode, int] = {
    AuthErrorCode.validation_error: 400,
    AuthErrorCode.invalid_email: 400,
    AuthErrorCode.weak_password: 400,
    AuthErrorCode.registration_failed: 400,
    AuthErrorCode.invalid_credentials: 401,
    AuthErrorCode.authentication_failed: 401,
    AuthErrorCode.email_not_verified: 403,
    AuthErrorCode.signup_disabled: 403,
    AuthErrorCode.already_registered: 409,
    AuthErrorCode.rate_limited: 429,
    AuthErrorCode.provider_rate_limited: 429,
    AuthErrorCode.sign_out_failed: 502,
    AuthErrorCode.verification_email_failed: 502,
    AuthErrorCode.provider_unavailable: 503,
    AuthErrorCode.unexpected_error: 500,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _orchestrator(request: Request) -> AuthOrchestrator:
    return request.app.state.orchestrator


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _error_response(result: AuthResult) -> JSONResponse:
    """Map a failed AuthResult onto a status code and the error envelope."""
    code = result.code or AuthErrorCode.unexpected_error
    resp = JSONResponse(
        status_code=_STATUS_BY_CODE.get(code, 500),
        content=ErrorResponse(error=ErrorDetail(code=code.value, message=result.error or "")).model_dump(),
    )
    if result.reset_time is not None:
        resp.headers["Retry-After"] = str(max(1, math.ceil(result.reset_time - time.time())))
    return _no_store(resp)


def _success_response(result: AuthResult, status_code: int = 200, redirect_to: str | None = None) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(**result.to_payload(), redirect_to=redirect_to).model_dump(),
    )
    return _no_store(resp)


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(AUTH_ROUTE_LIMIT)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Sign in with email and password; set session cookies.

    Unknown accounts and wrong passwords both answer 401 "Invalid email or
    password" so the endpoint does not reveal which emails are registered.
    """
    result = _orchestrator(request).login(
        Credentials(email=body.email, password=body.password),
        client_id=client_key(request),
    )
    if not result.ok:
        return _error_response(result)

    resp = _success_response(result, redirect_to=safe_redirect_target(body.redirect))
    if result.session is not None:
        set_session_cookies(resp, result.session, secure=request.app.state.settings.secure_cookies)
    return resp


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
@limiter.limit(AUTH_ROUTE_LIMIT)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account.

    201 either way on success. With email verification enabled the body
    carries requires_verification=true and no cookies are set; otherwise the
    new session is issued immediately.
    """
    result = _orchestrator(request).register(
        Credentials(email=body.email, password=body.password, name=body.name),
        client_id=client_key(request),
    )
    if not result.ok:
        return _error_response(result)

    if result.session is None:
        return _success_response(result, status_code=201)
    resp = _success_response(result, status_code=201, redirect_to="/")
    set_session_cookies(resp, result.session, secure=request.app.state.settings.secure_cookies)
    return resp


@router.post("/auth/logout", response_model=AuthResponse)
def logout(request: Request) -> JSONResponse:
    """Revoke the caller's session and clear the session cookies.

    If the provider refuses to revoke the session the cookies are left in
    place so the client can retry.
    """
    tokens = read_session_tokens(request)
    result = _orchestrator(request).logout(tokens.access_token)
    if not result.ok:
        return _error_response(result)

    resp = _success_response(result, redirect_to=request.app.state.settings.login_path)
    clear_session_cookies(resp)
    return resp


@router.post("/auth/resend-verification", response_model=AuthResponse)
@limiter.limit(AUTH_ROUTE_LIMIT)
def resend_verification(request: Request, body: ResendRequest) -> JSONResponse:
    """Send the sign-up verification email again."""
    result = _orchestrator(request).resend_verification_email(body.email)
    if not result.ok:
        return _error_response(result)
    return _success_response(result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(principal: Principal = Depends(get_current_principal)) -> MeResponse:
    """Return identity information for the currently authenticated principal."""
    return MeResponse(user_id=principal.user_id, email=principal.email)
