"""
auth/store.py -- SQLAlchemy Core persistence for users, roles and the auth ledger.

Pattern: Repository + Data Mapper (same as pizza/store.py).
UserStore is the repository; _row_to_user / _row_to_role are the mappers.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  The password hash never leaves this module: every User returned here has
  password=None.

Every public method opens its own connection from the shared Database and
releases it before returning.

Layer rule: no imports from api/ or pizza/.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import Connection

from auth.models import Role, RoleAssignment, User, UserUpdate
from auth.tokens import hash_password, verify_password
from core.database import Database, auth_tokens, fan_out, insert_ignore, like_pattern, user_roles, users
from core.errors import NotFound, Unauthorized

logger = logging.getLogger("pizza.auth")


class UserStore:
    """Repository for users, role assignments and session ledger rows.

    Usage:
        store = UserStore(db)
        user = store.add_user(User(name="pizza diner", email="d@jwt.com", password="diner",
                                   roles=[RoleAssignment(Role.DINER)]))
        user = store.get_user("d@jwt.com", "diner")
    """

    def __init__(self, db: Database, hash_rounds: int = 10) -> None:
        self.db = db
        self._hash_rounds = hash_rounds
        # Timing equalization: unknown emails still pay for one bcrypt check
        # at the same cost factor as a real one.
        self._dummy_hash = hash_password("jwt-pizza-timing-dummy", rounds=hash_rounds)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists."""
        with self.db.connect() as conn:
            return conn.execute(select(func.count()).select_from(users)).scalar_one() > 0

    def add_user(self, user: User) -> User:
        """Insert user and its role assignments; return the stored view.

        The submitted password is hashed here and dropped from the result.
        Raises sqlalchemy IntegrityError when the email is already taken.
        """
        password_hash = hash_password(user.password or "", rounds=self._hash_rounds)
        with self.db.transaction() as conn:
            result = conn.execute(
                users.insert().values(name=user.name, email=user.email, password_hash=password_hash)
            )
            user_id = result.inserted_primary_key[0]
            for assignment in user.roles:
                conn.execute(
                    user_roles.insert().values(
                        userId=user_id, role=assignment.role.value, objectId=assignment.object_id
                    )
                )
        logger.info("Registered user %d", user_id)
        return User(id=user_id, name=user.name, email=user.email, roles=list(user.roles))

    def get_user(self, email: str, password: str) -> User:
        """Authenticate by email and password.

        Raises:
            NotFound:     no user has this email.
            Unauthorized: the password does not match.
        """
        with self.db.connect() as conn:
            row = conn.execute(select(users).where(users.c.email == email)).first()
            if row is None:
                # Equalize timing -- do NOT return early before running bcrypt.
                verify_password(password, self._dummy_hash)
                raise NotFound("unknown user")
            if not verify_password(password, row.password_hash):
                raise Unauthorized("invalid credentials")
            return _row_to_user(row, _roles_for(conn, row.id))

    def get_user_by_id(self, user_id: int) -> User:
        with self.db.connect() as conn:
            row = conn.execute(select(users).where(users.c.id == user_id)).first()
            if row is None:
                raise NotFound("unknown user")
            return _row_to_user(row, _roles_for(conn, row.id))

    def update_user(self, user_id: int, changes: UserUpdate) -> User:
        """Apply the supplied fields and return the current user view.

        Only fields present in changes.changes() are written. When nothing was
        supplied no statement is issued at all; the user is still re-read and
        returned.
        """
        values = changes.changes()
        if "password" in values:
            values["password_hash"] = hash_password(values.pop("password"), rounds=self._hash_rounds)
        if values:
            with self.db.transaction() as conn:
                conn.execute(update(users).where(users.c.id == user_id).values(**values))
            logger.info("Updated user %d (%s)", user_id, ", ".join(sorted(values)))
        return self.get_user_by_id(user_id)

    def list_users(self, page: int = 0, limit: int = 10, name_filter: str = "*") -> tuple[list[User], bool]:
        """Return one page of users (with roles) and whether another page exists.

        Fetches limit + 1 rows so `more` needs no separate COUNT query.
        """
        with self.db.connect() as conn:
            rows = conn.execute(
                select(users)
                .where(users.c.name.like(like_pattern(name_filter)))
                .order_by(users.c.id)
                .limit(limit + 1)
                .offset(page * limit)
            ).all()
            more = len(rows) > limit
            pairs = fan_out(conn, rows[:limit], lambda c, row: _roles_for(c, row.id))
            return [_row_to_user(row, roles) for row, roles in pairs], more

    # ------------------------------------------------------------------
    # Auth ledger
    # ------------------------------------------------------------------

    def add_token(self, signature: str, user_id: int) -> None:
        with self.db.transaction() as conn:
            insert_ignore(conn, auth_tokens, token_signature=signature, userId=user_id)

    def has_token(self, signature: str) -> bool:
        with self.db.connect() as conn:
            row = conn.execute(
                select(auth_tokens.c.userId).where(auth_tokens.c.token_signature == signature)
            ).first()
        return row is not None

    def delete_token(self, signature: str) -> None:
        with self.db.transaction() as conn:
            conn.execute(delete(auth_tokens).where(auth_tokens.c.token_signature == signature))


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _roles_for(conn: Connection, user_id: int) -> list[RoleAssignment]:
    rows = conn.execute(
        select(user_roles.c.role, user_roles.c.objectId)
        .where(user_roles.c.userId == user_id)
        .order_by(user_roles.c.id)
    ).all()
    return [_row_to_role(row) for row in rows]


def _row_to_role(row) -> RoleAssignment:
    return RoleAssignment(role=Role(row.role), object_id=row.objectId)


def _row_to_user(row, roles: Optional[list[RoleAssignment]] = None) -> User:
    # password_hash is deliberately not copied.
    return User(id=row.id, name=row.name, email=row.email, roles=roles or [])
