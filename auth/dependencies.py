"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Tokens arrive only as an "Authorization: Bearer <token>" header. Every
authenticated request is checked in two steps:
  1. SessionAuthority.is_active() -- ledger lookup, no crypto. A token that was
     never issued or has been revoked stops here.
  2. SessionAuthority.verify() -- signature check, decode to an Identity.

try_get_identity() is the soft variant (returns None on any failure).
get_current_identity() wraps it and raises Unauthorized.
get_token() returns the raw bearer token for routes that revoke it.

Layer rule: no imports from api/ or pizza/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from auth.models import Identity
from auth.tokens import SessionAuthority
from core.errors import Unauthorized


def read_bearer_token(request: Request) -> Optional[str]:
    """The token from the Authorization header, or None when absent or not Bearer."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def try_get_identity(request: Request) -> Optional[Identity]:
    """Authenticate the request if it carries a live token.

    Returns None when there is no token, the token is not in the ledger, or
    its signature does not verify. Never raises an auth error -- callers that
    need a hard 401 should use get_current_identity().
    """
    token = read_bearer_token(request)
    if token is None:
        return None
    sessions: SessionAuthority = request.app.state.sessions
    if not sessions.is_active(token):
        return None
    try:
        return sessions.verify(token)
    except Unauthorized:
        return None


def get_current_identity(request: Request) -> Identity:
    """Require authentication. Raises Unauthorized (HTTP 401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    identity = try_get_identity(request)
    if identity is None:
        raise Unauthorized("unauthorized")
    return identity


def get_token(request: Request) -> str:
    """The raw bearer token of an authenticated request."""
    get_current_identity(request)
    # Present and live: get_current_identity() would have raised otherwise.
    return read_bearer_token(request)  # type: ignore[return-value]
