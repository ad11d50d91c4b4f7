"""
api/routes/user.py -- The caller's profile, profile updates and the admin user list.

Routes (in registration order; /user/me must precede /user/{user_id}):
  GET  /user/me         -- the authenticated caller
  PUT  /user/{user_id}  -- update name, email or password (self or admin)
  GET  /user            -- paginated user list with name filter (admin)

A profile update returns a freshly issued token, because the old token's
claims still carry the previous name and email.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import IntegrityError

from api.models import AuthResponse, UserOut, UserUpdateRequest, UsersPage
from auth.dependencies import get_current_identity
from auth.models import UNSET, Identity, UserUpdate
from auth.policy import require_admin, require_user_access
from auth.store import UserStore
from auth.tokens import SessionAuthority
from core.errors import Conflict

router = APIRouter()


@router.get("/user/me", response_model=UserOut, response_model_exclude_none=True)
def get_me(identity: Identity = Depends(get_current_identity)) -> UserOut:
    """Return the identity carried by the caller's token."""
    return UserOut.from_identity(identity)


@router.put("/user/{user_id}", response_model=AuthResponse, response_model_exclude_none=True)
def update_user(
    request: Request,
    user_id: int,
    body: UserUpdateRequest,
    identity: Identity = Depends(get_current_identity),
) -> AuthResponse:
    """Update a user. Fields left out of the body keep their current value."""
    require_user_access(identity, user_id)

    user_store: UserStore = request.app.state.user_store
    sessions: SessionAuthority = request.app.state.sessions

    supplied = body.model_fields_set
    changes = UserUpdate(
        name=body.name if "name" in supplied else UNSET,
        email=body.email if "email" in supplied else UNSET,
        password=body.password if "password" in supplied else UNSET,
    )
    try:
        user = user_store.update_user(user_id, changes)
    except IntegrityError as exc:
        raise Conflict("email already registered") from exc

    return AuthResponse(user=UserOut.from_user(user), token=sessions.issue(user))


@router.get("/user", response_model=UsersPage, response_model_exclude_none=True)
def list_users(
    request: Request,
    page: int = 0,
    limit: int = 10,
    name: str = "*",
    identity: Identity = Depends(get_current_identity),
) -> UsersPage:
    """List users a page at a time. '*' in name matches any run of characters."""
    require_admin(identity, "list users")
    user_store: UserStore = request.app.state.user_store
    users, more = user_store.list_users(page=max(page, 0), limit=max(limit, 1), name_filter=name)
    return UsersPage(users=[UserOut.from_user(u) for u in users], more=more)
