"""
api/routes/auth.py -- Registration, login and logout.

Routes:
  POST   /auth  -- register a new diner; returns the user and a live token
  PUT    /auth  -- login by email and password (rate limited per client IP)
  DELETE /auth  -- logout; revokes the presented token

Every successful register or login issues a fresh token and records its
signature in the auth ledger. Logout deletes the ledger row, after which the
token is refused even though its signature still verifies.
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter, login_rate_limit
from api.models import AuthResponse, LoginRequest, MessageResponse, RegisterRequest, UserOut
from auth.dependencies import get_current_identity, get_token
from auth.models import Identity, Role, RoleAssignment, User
from auth.store import UserStore
from auth.tokens import SessionAuthority
from core.errors import Conflict, NotFound, Unauthorized, ValidationFailed
from core.metrics import Metrics

logger = logging.getLogger("pizza.api")

router = APIRouter()


@router.post("/auth", response_model=AuthResponse, response_model_exclude_none=True)
def register(request: Request, body: RegisterRequest) -> AuthResponse:
    """Create a diner account and log it in."""
    if not body.name or not body.email or not body.password:
        raise ValidationFailed("name, email, and password are required")

    user_store: UserStore = request.app.state.user_store
    sessions: SessionAuthority = request.app.state.sessions
    metrics: Metrics = request.app.state.metrics

    try:
        user = user_store.add_user(
            User(name=body.name, email=body.email, password=body.password, roles=[RoleAssignment(Role.DINER)])
        )
    except IntegrityError as exc:
        raise Conflict("email already registered") from exc

    token = sessions.issue(user)
    metrics.add_active_user(user.id)
    return AuthResponse(user=UserOut.from_user(user), token=token)


# @router.put goes outermost so FastAPI registers and calls the limiter's wrapper.
@router.put("/auth", response_model=AuthResponse, response_model_exclude_none=True)
@limiter.limit(login_rate_limit)
def login(request: Request, body: LoginRequest) -> AuthResponse:
    """Exchange email and password for a token.

    An unknown email is a 404 and a wrong password a 401; both count as a
    failed authentication attempt.
    """
    user_store: UserStore = request.app.state.user_store
    sessions: SessionAuthority = request.app.state.sessions
    metrics: Metrics = request.app.state.metrics

    try:
        user = user_store.get_user(body.email, body.password)
    except (NotFound, Unauthorized):
        metrics.record_auth(success=False)
        logger.warning("Failed login for %s", body.email)
        raise

    token = sessions.issue(user)
    metrics.record_auth(success=True)
    metrics.add_active_user(user.id)
    return AuthResponse(user=UserOut.from_user(user), token=token)


@router.delete("/auth", response_model=MessageResponse)
def logout(
    request: Request,
    identity: Identity = Depends(get_current_identity),
    token: str = Depends(get_token),
) -> MessageResponse:
    """Revoke the caller's token."""
    sessions: SessionAuthority = request.app.state.sessions
    metrics: Metrics = request.app.state.metrics

    sessions.revoke(token)
    metrics.remove_active_user(identity.id)
    return MessageResponse(message="logout successful")
