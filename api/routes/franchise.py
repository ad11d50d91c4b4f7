"""
api/routes/franchise.py -- Franchise and store administration.

Routes (in registration order):
  GET    /franchise                             -- paginated list, name filter (token optional)
  GET    /franchise/{user_id}                   -- franchises the user administers
  POST   /franchise                             -- create (admin)
  DELETE /franchise/{franchise_id}              -- delete with its stores and roles (admin)
  POST   /franchise/{franchise_id}/store        -- create store (admin or franchise admin)
  DELETE /franchise/{franchise_id}/store/{store_id}  -- delete store (admin or franchise admin)

The franchise list is public, but only admins see admins and per-store
revenue; everyone else gets store ids and names.

Every authorization check runs before the first mutating statement.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import IntegrityError

from api.models import FranchiseCreate, FranchiseOut, FranchisesPage, MessageResponse, StoreCreate, StoreOut
from auth.dependencies import get_current_identity, try_get_identity
from auth.models import Identity, Role
from auth.policy import can_act_on_user, require_admin, require_franchise_admin
from core.errors import Conflict
from pizza.models import FranchiseDraft
from pizza.store import PizzaStore

router = APIRouter()


@router.get("/franchise", response_model=FranchisesPage, response_model_exclude_none=True)
def list_franchises(
    request: Request,
    page: int = 0,
    limit: int = 10,
    name: str = "*",
    identity: Optional[Identity] = Depends(try_get_identity),
) -> FranchisesPage:
    pizza_store: PizzaStore = request.app.state.pizza_store
    is_admin = identity is not None and identity.has_role(Role.ADMIN)
    franchises, more = pizza_store.get_franchises(
        name_filter=name, page=max(page, 0), limit=max(limit, 1), include_details=is_admin
    )
    return FranchisesPage(franchises=[FranchiseOut.from_franchise(f) for f in franchises], more=more)


@router.get("/franchise/{user_id}", response_model=list[FranchiseOut], response_model_exclude_none=True)
def list_user_franchises(
    request: Request,
    user_id: int,
    identity: Identity = Depends(get_current_identity),
) -> list[FranchiseOut]:
    """Franchises user_id administers. Callers other than that user or an admin get []."""
    if not can_act_on_user(identity, user_id):
        return []
    pizza_store: PizzaStore = request.app.state.pizza_store
    return [FranchiseOut.from_franchise(f) for f in pizza_store.get_user_franchises(user_id)]


@router.post("/franchise", response_model=FranchiseOut, response_model_exclude_none=True)
def create_franchise(
    request: Request,
    body: FranchiseCreate,
    identity: Identity = Depends(get_current_identity),
) -> FranchiseOut:
    require_admin(identity, "create a franchise")
    pizza_store: PizzaStore = request.app.state.pizza_store
    try:
        franchise = pizza_store.create_franchise(
            FranchiseDraft(name=body.name, admin_emails=[a.email for a in body.admins])
        )
    except IntegrityError as exc:
        raise Conflict("franchise name already exists") from exc
    return FranchiseOut.from_franchise(franchise)


@router.delete("/franchise/{franchise_id}", response_model=MessageResponse)
def delete_franchise(
    request: Request,
    franchise_id: int,
    identity: Identity = Depends(get_current_identity),
) -> MessageResponse:
    require_admin(identity, "delete a franchise")
    pizza_store: PizzaStore = request.app.state.pizza_store
    pizza_store.delete_franchise(franchise_id)
    return MessageResponse(message="franchise deleted")


@router.post("/franchise/{franchise_id}/store", response_model=StoreOut)
def create_store(
    request: Request,
    franchise_id: int,
    body: StoreCreate,
    identity: Identity = Depends(get_current_identity),
) -> StoreOut:
    pizza_store: PizzaStore = request.app.state.pizza_store
    franchise = pizza_store.get_franchise_by_id(franchise_id)
    require_franchise_admin(identity, franchise, "create a store")
    return StoreOut.from_store(pizza_store.create_store(franchise_id, body.name))


@router.delete("/franchise/{franchise_id}/store/{store_id}", response_model=MessageResponse)
def delete_store(
    request: Request,
    franchise_id: int,
    store_id: int,
    identity: Identity = Depends(get_current_identity),
) -> MessageResponse:
    pizza_store: PizzaStore = request.app.state.pizza_store
    franchise = pizza_store.get_franchise_by_id(franchise_id)
    require_franchise_admin(identity, franchise, "delete a store")
    pizza_store.delete_store(franchise_id, store_id)
    return MessageResponse(message="store deleted")
