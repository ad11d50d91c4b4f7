"""
core/database.py -- Schema and connection primitive shared by every store.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in auth/models.py and
pizza/models.py remain the authoritative domain representation. Swapping
SQLite for PostgreSQL or MySQL is a connection string change.

Connection model: each logical operation acquires its own connection through
Database.connect() (read-only or single-statement work) or
Database.transaction() (multi-statement writes that must commit or roll back
together). Both are context managers, so the connection is released on every
exit path including exceptions. Correctness does not depend on pooling.

Table and column names follow the established JWT Pizza schema (camelCase
foreign keys) so an existing database can be pointed at directly.

Layer rule: core/ is the kernel. No imports from api/, auth/, or pizza/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import (
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger("pizza.db")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

# Every id-keyed table sets sqlite_autoincrement so SQLite never hands out the id
# of a deleted row again. Orders keep their storeId after the store is gone.

users = Table(
    "user",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    sqlite_autoincrement=True,
)

user_roles = Table(
    "userRole",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("userId", Integer, nullable=False, index=True),
    Column("role", String(255), nullable=False),
    Column("objectId", Integer, index=True),  # franchise id for franchisee roles
    sqlite_autoincrement=True,
)

auth_tokens = Table(
    "auth",
    metadata,
    # Signature segment of the JWT, never the whole token.
    Column("token_signature", String(512), primary_key=True),
    Column("userId", Integer, nullable=False),
)

menu = Table(
    "menu",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(255), nullable=False),
    Column("description", Text, nullable=False),
    Column("image", String(1024), nullable=False),
    Column("price", Float, nullable=False),
    sqlite_autoincrement=True,
)

diner_orders = Table(
    "dinerOrder",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("dinerId", Integer, nullable=False, index=True),
    Column("franchiseId", Integer, nullable=False),
    Column("storeId", Integer, nullable=False, index=True),
    Column("date", String(32), nullable=False),  # ISO 8601, set on insert
    sqlite_autoincrement=True,
)

order_items = Table(
    "orderItem",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("orderId", Integer, nullable=False, index=True),
    Column("menuId", Integer, nullable=False),
    Column("description", Text, nullable=False),
    Column("price", Float, nullable=False),
    sqlite_autoincrement=True,
)

franchises = Table(
    "franchise",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
    sqlite_autoincrement=True,
)

stores = Table(
    "store",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("franchiseId", Integer, nullable=False, index=True),
    Column("name", String(255), nullable=False),
    sqlite_autoincrement=True,
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases silently keep their
    "memory" journal mode.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class Database:
    """Owns the engine and hands out request-scoped connections.

    Usage:
        db = Database("sqlite:///pizza.db")
        with db.connect() as conn:
            rows = conn.execute(select(menu)).all()
        with db.transaction() as conn:
            conn.execute(...)
            conn.execute(...)   # both commit, or neither does
        db.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        """Yield a connection for one logical operation.

        Anything not committed explicitly inside the block is rolled back
        when the connection is released.
        """
        with self.engine.connect() as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a connection inside BEGIN; COMMIT on success, ROLLBACK and re-raise on error."""
        with self.engine.begin() as conn:
            yield conn

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /api/health."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.warning("Database ping failed: %s", e)
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Statement helpers
# ---------------------------------------------------------------------------


def insert_ignore(conn: Connection, table: Table, **values) -> None:
    """INSERT a row, doing nothing if it collides with an existing primary key.

    Each backend spells this differently; SQLAlchemy exposes all three through
    dialect-specific insert constructs.
    """
    dialect = conn.dialect.name
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert

        stmt = sqlite_insert(table).values(**values).on_conflict_do_nothing()
    elif dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert

        stmt = pg_insert(table).values(**values).on_conflict_do_nothing()
    elif dialect in ("mysql", "mariadb"):
        from sqlalchemy.dialects.mysql import insert as mysql_insert

        key = next(iter(table.primary_key.columns)).name
        stmt = mysql_insert(table).values(**values)
        stmt = stmt.on_duplicate_key_update({key: stmt.inserted[key]})
    else:
        raise NotImplementedError(f"insert_ignore not supported for dialect {dialect!r}")
    conn.execute(stmt)


def like_pattern(name_filter: str) -> str:
    """Translate the API's '*' wildcard into a SQL LIKE pattern."""
    return (name_filter or "*").replace("*", "%")


def fan_out(conn: Connection, parents: list, fetch) -> list[tuple]:
    """Run fetch(conn, parent) once per parent; return (parent, children) pairs.

    Each child result stays attached to the parent it was fetched for, so a
    caller may parallelize the fetches without risking misaligned results.
    """
    return [(parent, fetch(conn, parent)) for parent in parents]
