"""
auth/policy.py -- Authorization decisions over a verified Identity.

The can_* functions answer yes/no; the require_* wrappers raise Forbidden so
route handlers can check before issuing any mutating statement. A Forbidden
is final: it is never retried and never downgraded to a partial result.

Layer rule: no imports from api/. pizza.models is imported for the Franchise
shape only.
"""

from __future__ import annotations

from auth.models import Identity, Role
from core.errors import Forbidden
from pizza.models import Franchise


def can_act_on_user(actor: Identity, target_user_id: int) -> bool:
    """Users may act on themselves; admins may act on anyone."""
    return actor.id == target_user_id or actor.has_role(Role.ADMIN)


def can_admin_franchise(actor: Identity, franchise: Franchise) -> bool:
    """Admins, and the franchisees listed as the franchise's admins.

    franchise.admins must have been resolved by PizzaStore.get_franchise()
    first. An unresolved list is a programming error, not a denial.
    """
    if actor.has_role(Role.ADMIN):
        return True
    if franchise.admins is None:
        raise ValueError(f"franchise {franchise.id} admins were not resolved before the authorization check")
    return any(admin.id == actor.id for admin in franchise.admins)


def require_admin(actor: Identity, action: str) -> None:
    if not actor.has_role(Role.ADMIN):
        raise Forbidden(f"unable to {action}")


def require_user_access(actor: Identity, target_user_id: int) -> None:
    if not can_act_on_user(actor, target_user_id):
        raise Forbidden("unauthorized")


def require_franchise_admin(actor: Identity, franchise: Franchise, action: str) -> None:
    if not can_admin_franchise(actor, franchise):
        raise Forbidden(f"unable to {action}")
