"""
pizza/store.py -- SQLAlchemy Core persistence and aggregation for the pizza domain.

Uses SQLAlchemy Core (not ORM) so the dataclasses in pizza/models.py remain the
authoritative domain representation.

Pattern: Repository + Data Mapper. PizzaStore is the repository; the _row_to_*
functions are the mappers. Route handlers never touch SQL directly.

Aggregation model: parent rows are fetched one page at a time, then each parent
is enriched by an independent child fetch (items per order, admins + stores per
franchise). The fan-out runs on the parent's connection through
core.database.fan_out, which returns explicit (parent, children) pairs.

Pagination:
  Orders     -- 1-based page, fixed page size (LIST_PER_PAGE).
  Franchises -- 0-based page, caller-supplied limit, over-fetch-by-one for `more`.
  Both carry an explicit ORDER BY id so pages are stable between calls.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = PizzaStore(db)
    page = store.get_orders(diner_id, page=1)
    order = store.add_diner_order(diner_id, Order(franchise_id=1, store_id=1, items=[...]))
    franchises, more = store.get_franchises("pizza*", page=0, limit=10)
    store.delete_franchise(franchise_id)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.engine import Connection

from core.database import (
    Database,
    diner_orders,
    fan_out,
    franchises,
    like_pattern,
    menu,
    order_items,
    stores,
    user_roles,
    users,
)
from core.errors import NotFound
from pizza.models import (
    Franchise,
    FranchiseAdmin,
    FranchiseDraft,
    MenuItem,
    Order,
    OrderItem,
    OrderPage,
    Store,
)

logger = logging.getLogger("pizza.store")

# Role name stored in userRole for franchise admins. Kept as a literal so this
# package does not depend on auth/.
_FRANCHISEE = "franchisee"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PizzaStore:
    """Repository for menu items, orders, franchises and stores."""

    def __init__(self, db: Database, orders_per_page: int = 10) -> None:
        self.db = db
        self.orders_per_page = orders_per_page

    # ------------------------------------------------------------------
    # Menu
    # ------------------------------------------------------------------

    def get_menu(self) -> list[MenuItem]:
        with self.db.connect() as conn:
            rows = conn.execute(select(menu).order_by(menu.c.id)).all()
        return [_row_to_menu_item(row) for row in rows]

    def add_menu_item(self, item: MenuItem) -> MenuItem:
        with self.db.transaction() as conn:
            result = conn.execute(
                menu.insert().values(
                    title=item.title, description=item.description, image=item.image, price=item.price
                )
            )
            item_id = result.inserted_primary_key[0]
        return MenuItem(id=item_id, title=item.title, description=item.description, image=item.image, price=item.price)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def get_orders(self, diner_id: int, page: int = 1) -> OrderPage:
        """Return one page of the diner's orders, each with its items.

        A page past the last order yields an empty orders list.
        """
        offset = (max(page, 1) - 1) * self.orders_per_page
        with self.db.connect() as conn:
            rows = conn.execute(
                select(diner_orders)
                .where(diner_orders.c.dinerId == diner_id)
                .order_by(diner_orders.c.id)
                .limit(self.orders_per_page)
                .offset(offset)
            ).all()
            pairs = fan_out(conn, rows, lambda c, row: _items_for(c, row.id))
        return OrderPage(diner_id=diner_id, page=page, orders=[_row_to_order(row, items) for row, items in pairs])

    def add_diner_order(self, diner_id: int, order: Order) -> Order:
        """Insert the order and all of its items in one transaction.

        Every referenced menu id is resolved before the first insert. An
        unknown menu id raises NotFound and nothing is written; any failure
        after that rolls back the order row together with its items.
        """
        date = _now_iso()
        with self.db.transaction() as conn:
            wanted = {item.menu_id for item in order.items}
            known = set()
            if wanted:
                known = set(conn.execute(select(menu.c.id).where(menu.c.id.in_(sorted(wanted)))).scalars())
            missing = sorted(wanted - known)
            if missing:
                raise NotFound(f"No ID found for menu item {missing[0]}")

            result = conn.execute(
                diner_orders.insert().values(
                    dinerId=diner_id, franchiseId=order.franchise_id, storeId=order.store_id, date=date
                )
            )
            order_id = result.inserted_primary_key[0]
            saved_items = []
            for item in order.items:
                item_result = conn.execute(
                    order_items.insert().values(
                        orderId=order_id, menuId=item.menu_id, description=item.description, price=item.price
                    )
                )
                saved_items.append(
                    OrderItem(
                        id=item_result.inserted_primary_key[0],
                        menu_id=item.menu_id,
                        description=item.description,
                        price=item.price,
                    )
                )
        logger.info("Order %d placed by diner %d (%d items)", order_id, diner_id, len(saved_items))
        return Order(
            id=order_id,
            diner_id=diner_id,
            franchise_id=order.franchise_id,
            store_id=order.store_id,
            date=date,
            items=saved_items,
        )

    # ------------------------------------------------------------------
    # Franchises
    # ------------------------------------------------------------------

    def get_franchises(
        self,
        name_filter: str = "*",
        page: int = 0,
        limit: int = 10,
        include_details: bool = False,
    ) -> tuple[list[Franchise], bool]:
        """Return one page of franchises matching name_filter and whether more exist.

        include_details=True (admin callers) resolves admins and stores with
        revenue for every returned franchise. Otherwise each franchise gets
        its plain store list (id and name only).
        """
        with self.db.connect() as conn:
            rows = conn.execute(
                select(franchises)
                .where(franchises.c.name.like(like_pattern(name_filter)))
                .order_by(franchises.c.id)
                .limit(limit + 1)
                .offset(page * limit)
            ).all()
            more = len(rows) > limit
            result = [_row_to_franchise(row) for row in rows[:limit]]
            if include_details:
                for franchise, (admins, store_list) in fan_out(conn, result, _details_for):
                    franchise.admins = admins
                    franchise.stores = store_list
            else:
                for franchise, store_list in fan_out(conn, result, lambda c, f: _plain_stores_for(c, f.id)):
                    franchise.stores = store_list
        return result, more

    def get_user_franchises(self, user_id: int) -> list[Franchise]:
        """Return every franchise the user is a franchisee of, fully enriched."""
        with self.db.connect() as conn:
            ids = [
                object_id
                for object_id in conn.execute(
                    select(user_roles.c.objectId).where(
                        user_roles.c.role == _FRANCHISEE, user_roles.c.userId == user_id
                    )
                ).scalars()
                if object_id is not None
            ]
            if not ids:
                return []
            rows = conn.execute(select(franchises).where(franchises.c.id.in_(ids)).order_by(franchises.c.id)).all()
            result = [_row_to_franchise(row) for row in rows]
            for franchise, (admins, store_list) in fan_out(conn, result, _details_for):
                franchise.admins = admins
                franchise.stores = store_list
        return result

    def get_franchise(self, franchise: Franchise) -> Franchise:
        """Resolve admins and stores (with revenue) onto franchise in place; return it."""
        with self.db.connect() as conn:
            franchise.admins, franchise.stores = _details_for(conn, franchise)
        return franchise

    def get_franchise_by_id(self, franchise_id: int) -> Franchise:
        """Load and enrich one franchise. Raises NotFound for an unknown id."""
        with self.db.connect() as conn:
            row = conn.execute(select(franchises).where(franchises.c.id == franchise_id)).first()
            if row is None:
                raise NotFound("unknown franchise")
            franchise = _row_to_franchise(row)
            franchise.admins, franchise.stores = _details_for(conn, franchise)
        return franchise

    def create_franchise(self, draft: FranchiseDraft) -> Franchise:
        """Create a franchise and make each listed user one of its admins.

        All admin emails are resolved before the franchise row is written; an
        unknown email raises NotFound naming it and leaves nothing behind.
        """
        with self.db.transaction() as conn:
            admins: list[FranchiseAdmin] = []
            for email in draft.admin_emails:
                row = conn.execute(select(users.c.id, users.c.name).where(users.c.email == email)).first()
                if row is None:
                    raise NotFound(f"unknown user for franchise admin {email} provided")
                admins.append(FranchiseAdmin(id=row.id, name=row.name, email=email))

            result = conn.execute(franchises.insert().values(name=draft.name))
            franchise_id = result.inserted_primary_key[0]
            for admin in admins:
                conn.execute(user_roles.insert().values(userId=admin.id, role=_FRANCHISEE, objectId=franchise_id))
        logger.info("Franchise %d created with %d admin(s)", franchise_id, len(admins))
        return Franchise(id=franchise_id, name=draft.name, admins=admins, stores=[])

    def delete_franchise(self, franchise_id: int) -> None:
        """Delete the franchise, its stores and its role assignments atomically.

        The three deletes share one transaction. If any of them fails the
        whole transaction is rolled back and the error propagates.
        """
        try:
            with self.db.transaction() as conn:
                conn.execute(delete(stores).where(stores.c.franchiseId == franchise_id))
                conn.execute(delete(user_roles).where(user_roles.c.objectId == franchise_id))
                conn.execute(delete(franchises).where(franchises.c.id == franchise_id))
        except Exception:
            logger.warning("Delete of franchise %d rolled back", franchise_id)
            raise
        logger.info("Franchise %d deleted", franchise_id)

    # ------------------------------------------------------------------
    # Stores
    # ------------------------------------------------------------------

    def create_store(self, franchise_id: int, name: str) -> Store:
        with self.db.transaction() as conn:
            result = conn.execute(stores.insert().values(franchiseId=franchise_id, name=name))
            store_id = result.inserted_primary_key[0]
        return Store(id=store_id, franchise_id=franchise_id, name=name, total_revenue=0.0)

    def delete_store(self, franchise_id: int, store_id: int) -> None:
        with self.db.transaction() as conn:
            conn.execute(delete(stores).where(stores.c.franchiseId == franchise_id, stores.c.id == store_id))


# ---------------------------------------------------------------------------
# Child fetches (one per parent row)
# ---------------------------------------------------------------------------


def _items_for(conn: Connection, order_id: int) -> list[OrderItem]:
    rows = conn.execute(
        select(order_items.c.id, order_items.c.menuId, order_items.c.description, order_items.c.price)
        .where(order_items.c.orderId == order_id)
        .order_by(order_items.c.id)
    ).all()
    return [_row_to_order_item(row) for row in rows]


def _admins_for(conn: Connection, franchise_id: int) -> list[FranchiseAdmin]:
    rows = conn.execute(
        select(users.c.id, users.c.name, users.c.email)
        .select_from(user_roles.join(users, users.c.id == user_roles.c.userId))
        .where(user_roles.c.objectId == franchise_id, user_roles.c.role == _FRANCHISEE)
        .order_by(user_roles.c.id)
    ).all()
    return [FranchiseAdmin(id=row.id, name=row.name, email=row.email) for row in rows]


def _stores_with_revenue_for(conn: Connection, franchise_id: int) -> list[Store]:
    """Stores of a franchise with the sum of every item ever sold there.

    Outer joins keep stores that have never taken an order; COALESCE turns
    their NULL sum into 0.
    """
    total_revenue = func.coalesce(func.sum(order_items.c.price), 0).label("totalRevenue")
    rows = conn.execute(
        select(stores.c.id, stores.c.name, total_revenue)
        .select_from(
            stores.outerjoin(diner_orders, diner_orders.c.storeId == stores.c.id).outerjoin(
                order_items, order_items.c.orderId == diner_orders.c.id
            )
        )
        .where(stores.c.franchiseId == franchise_id)
        .group_by(stores.c.id, stores.c.name)
        .order_by(stores.c.id)
    ).all()
    return [
        Store(id=row.id, franchise_id=franchise_id, name=row.name, total_revenue=float(row.totalRevenue))
        for row in rows
    ]


def _plain_stores_for(conn: Connection, franchise_id: int) -> list[Store]:
    rows = conn.execute(
        select(stores.c.id, stores.c.name).where(stores.c.franchiseId == franchise_id).order_by(stores.c.id)
    ).all()
    return [Store(id=row.id, franchise_id=franchise_id, name=row.name) for row in rows]


def _details_for(conn: Connection, franchise: Franchise) -> tuple[list[FranchiseAdmin], list[Store]]:
    return _admins_for(conn, franchise.id), _stores_with_revenue_for(conn, franchise.id)


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_menu_item(row) -> MenuItem:
    return MenuItem(id=row.id, title=row.title, description=row.description, image=row.image, price=row.price)


def _row_to_order_item(row) -> OrderItem:
    return OrderItem(id=row.id, menu_id=row.menuId, description=row.description, price=row.price)


def _row_to_order(row, items: list[OrderItem]) -> Order:
    return Order(
        id=row.id,
        diner_id=row.dinerId,
        franchise_id=row.franchiseId,
        store_id=row.storeId,
        date=row.date,
        items=items,
    )


def _row_to_franchise(row) -> Franchise:
    return Franchise(id=row.id, name=row.name)
