"""
auth/dependencies.py -- FastAPI Depends() helpers for the resource layer.

SessionGate resolves the caller once per request and stores the result on
request.state.principal. These helpers read it back; none of them calls the
identity provider again.

try_get_principal() is the soft variant (returns None when anonymous).
get_current_principal() wraps it and raises HTTP 401 if unauthenticated.
require_owner() is the single-field ownership check: caller == owner, else 403.
client_key() is the one client-address policy for limits and votes.
voter_key() decides whose vote a ballot counts as (see DESIGN.md).

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Principal
from core.config import get_settings
from core.ratelimit import derive_client_identifier


def client_key(request: Request) -> str:
    """Client identifier shared by slowapi, the orchestrator's budgets and voter_key().

    The socket peer is only consulted when TRUST_PEER_ADDRESS is set.
    """
    peer = None
    if get_settings().trust_peer_address and request.client:
        peer = request.client.host
    return derive_client_identifier(request.headers, peer)


def try_get_principal(request: Request) -> Principal | None:
    """Return the principal SessionGate attached to this request, or None.

    Never raises. Requests that bypassed the gate (e.g. in unit tests that
    mount a bare router) simply read as anonymous.
    """
    principal = getattr(request.state, "principal", None)
    return principal if isinstance(principal, Principal) else None


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/polls/mine")
        async def route(principal: Principal = Depends(get_current_principal)): ...
    """
    principal = try_get_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return principal


def require_owner(principal: Principal, owner_id: str | None) -> None:
    """Raise HTTP 403 unless the caller owns the resource.

    A resource with no owner (owner_id None) is owned by nobody, so every
    mutation of it is refused.
    """
    if owner_id is None or principal.user_id != owner_id:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "You do not have permission to modify this resource."},
        )


def voter_key(request: Request) -> str:
    """Return the identity a vote is counted against.

    Authenticated callers vote as "user:<id>". Anonymous callers vote as
    "anon:<client address>", so the resource layer can enforce one vote per
    poll per key with a unique (poll_id, voter_key) constraint.
    """
    principal = try_get_principal(request)
    if principal is not None:
        return f"user:{principal.user_id}"
    return f"anon:{client_key(request)}"
