"""
pizza/models.py -- Domain dataclasses for the menu, orders and franchises.

These are pure data containers with zero logic. All query and aggregation
logic lives in pizza/store.py.

Nested collections that are filled in by a separate fetch (Order.items,
Franchise.admins, Franchise.stores) default to None, meaning "not resolved",
so an unenriched entity can never be mistaken for one with no children.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class MenuItem:
    title: str
    description: str
    image: str
    price: float
    id: Optional[int] = None


@dataclass
class OrderItem:
    """One line of an order.

    description and price are copied from the request when the order is
    placed, so later menu changes never rewrite order history.
    """

    menu_id: int
    description: str
    price: float
    id: Optional[int] = None


@dataclass
class Order:
    franchise_id: int
    store_id: int
    items: list[OrderItem] = field(default_factory=list)
    id: Optional[int] = None
    diner_id: Optional[int] = None
    date: Optional[str] = None  # ISO 8601, set by store on insert


@dataclass
class OrderPage:
    diner_id: int
    page: int
    orders: list[Order] = field(default_factory=list)


@dataclass
class FranchiseAdmin:
    id: int
    name: str
    email: Optional[str] = None


@dataclass
class Store:
    """A store under a franchise.

    total_revenue is None when the store was listed without the revenue
    rollup (the plain store list shown to non-admins).
    """

    name: str
    id: Optional[int] = None
    franchise_id: Optional[int] = None
    total_revenue: Optional[float] = None


@dataclass
class Franchise:
    name: str
    id: Optional[int] = None
    admins: Optional[list[FranchiseAdmin]] = None
    stores: Optional[list[Store]] = None


@dataclass
class FranchiseDraft:
    """Request to create a franchise; admins are given by email."""

    name: str
    admin_emails: list[str] = field(default_factory=list)
