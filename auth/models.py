"""
auth/models.py -- Domain types for users, roles and sessions.

Pattern: Data class (pure data containers). The stores and the session
authority do the work; these types only own the domain shape.

Two small value types carry behaviour that used to be bolted onto plain
dicts at request time:
  Identity      -- the verified (id, roles) pair with an explicit has_role().
  SessionToken  -- a parsed JWT exposing its signature segment by name.

Layer rule: no imports from api/ or pizza/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Role(str, Enum):
    DINER = "diner"
    FRANCHISEE = "franchisee"
    ADMIN = "admin"


@dataclass(frozen=True)
class RoleAssignment:
    """A (role, scope) fact attached to a user.

    object_id is the franchise id for franchisee roles and None for diner
    and admin roles.
    """

    role: Role
    object_id: Optional[int] = None


@dataclass
class User:
    """A registered account.

    password is only ever populated on the way IN (registration and
    updates). Every User returned by UserStore has password=None.
    """

    name: str
    email: str
    id: Optional[int] = None
    password: Optional[str] = None
    roles: list[RoleAssignment] = field(default_factory=list)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


@dataclass
class UserUpdate:
    """Partial profile update. A field left as UNSET was not supplied.

    Empty strings are accepted but treated like UNSET by changes(): clearing
    a name, email or password is not a supported operation.
    """

    name: object = UNSET
    email: object = UNSET
    password: object = UNSET

    def changes(self) -> dict[str, str]:
        """Return {field: value} for every supplied, non-empty field."""
        result: dict[str, str] = {}
        for key in ("name", "email", "password"):
            value = getattr(self, key)
            if value is UNSET or value is None or value == "":
                continue
            result[key] = value
        return result


@dataclass(frozen=True)
class Identity:
    """The verified caller behind a session token."""

    id: int
    name: str
    email: str
    roles: tuple[RoleAssignment, ...] = ()

    def has_role(self, role: Role) -> bool:
        return any(r.role == role for r in self.roles)

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(id=user.id, name=user.name, email=user.email, roles=tuple(user.roles))

    @classmethod
    def from_claims(cls, claims: dict) -> "Identity":
        roles = tuple(
            RoleAssignment(role=Role(r["role"]), object_id=r.get("objectId")) for r in claims.get("roles", [])
        )
        return cls(id=int(claims["id"]), name=claims.get("name", ""), email=claims.get("email", ""), roles=roles)


@dataclass(frozen=True)
class SessionToken:
    """A compact JWT split into its three segments once, at parse time.

    signature is the auth ledger key. Keying the ledger on the signature
    rather than the full token bounds the row size.
    """

    raw: str
    header: str
    payload: str
    signature: str

    @classmethod
    def parse(cls, raw: str) -> Optional["SessionToken"]:
        """Return the parsed token, or None when raw is not header.payload.signature."""
        parts = raw.split(".")
        if len(parts) != 3 or not all(parts):
            return None
        return cls(raw=raw, header=parts[0], payload=parts[1], signature=parts[2])
