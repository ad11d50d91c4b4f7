"""
API request and response models for the JWT Pizza REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
pizza/models.py, which own the internal domain representation. Route handlers
map between the two.

Wire names are camelCase (franchiseId, totalRevenue, followLinkToEndChaos);
Python attributes stay snake_case. populate_by_name lets handlers build
responses with either spelling.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Identity, User
from auth.tokens import MAX_PASSWORD_BYTES
from pizza.models import Franchise, MenuItem, Order, OrderPage, Store


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _password_fits_bcrypt(value: Optional[str]) -> Optional[str]:
    if value is not None and len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_WireModel):
    """Request body for POST /api/auth.

    Fields are optional at the schema level so a missing field gets the
    route's 400 "name, email, and password are required" instead of a 422.
    """

    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None

    check_password = field_validator("password")(_password_fits_bcrypt)


class LoginRequest(_WireModel):
    """Request body for PUT /api/auth."""

    email: str
    password: str

    check_password = field_validator("password")(_password_fits_bcrypt)


class UserUpdateRequest(_WireModel):
    """Request body for PUT /api/user/{user_id}. Omitted fields are left unchanged."""

    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None

    check_password = field_validator("password")(_password_fits_bcrypt)


class MenuItemIn(_WireModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1)
    description: str = ""
    image: str = ""
    price: float = Field(ge=0)


class OrderItemIn(_WireModel):
    menu_id: int
    description: str
    price: float = Field(ge=0)


class OrderCreate(_WireModel):
    """Request body for POST /api/order."""

    franchise_id: int
    store_id: int
    items: list[OrderItemIn] = Field(min_length=1)


class FranchiseAdminIn(_WireModel):
    email: str


class FranchiseCreate(_WireModel):
    """Request body for POST /api/franchise. Admins are named by email."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1)
    admins: list[FranchiseAdminIn] = Field(default_factory=list)


class StoreCreate(_WireModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Response models -- users and sessions
# ---------------------------------------------------------------------------


class RoleOut(_WireModel):
    role: str
    object_id: Optional[int] = None


class UserOut(_WireModel):
    """A user as the API shows it. There is no password field to leak."""

    id: int
    name: str
    email: str
    roles: list[RoleOut] = Field(default_factory=list)

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            roles=[RoleOut(role=r.role.value, object_id=r.object_id) for r in user.roles],
        )

    @classmethod
    def from_identity(cls, identity: Identity) -> "UserOut":
        return cls(
            id=identity.id,
            name=identity.name,
            email=identity.email,
            roles=[RoleOut(role=r.role.value, object_id=r.object_id) for r in identity.roles],
        )


class AuthResponse(_WireModel):
    """Response for register, login and profile update: the user plus a live token."""

    user: UserOut
    token: str


class UsersPage(_WireModel):
    users: list[UserOut]
    more: bool


class MessageResponse(_WireModel):
    message: str


# ---------------------------------------------------------------------------
# Response models -- menu and orders
# ---------------------------------------------------------------------------


class MenuItemOut(_WireModel):
    id: int
    title: str
    description: str
    image: str
    price: float

    @classmethod
    def from_item(cls, item: MenuItem) -> "MenuItemOut":
        return cls(id=item.id, title=item.title, description=item.description, image=item.image, price=item.price)


class OrderItemOut(_WireModel):
    id: int
    menu_id: int
    description: str
    price: float


class OrderOut(_WireModel):
    id: int
    franchise_id: int
    store_id: int
    date: str
    items: list[OrderItemOut]

    @classmethod
    def from_order(cls, order: Order) -> "OrderOut":
        return cls(
            id=order.id,
            franchise_id=order.franchise_id,
            store_id=order.store_id,
            date=order.date,
            items=[
                OrderItemOut(id=i.id, menu_id=i.menu_id, description=i.description, price=i.price)
                for i in order.items
            ],
        )


class OrderPageOut(_WireModel):
    """Response for GET /api/order."""

    diner_id: int
    orders: list[OrderOut]
    page: int

    @classmethod
    def from_page(cls, page: OrderPage) -> "OrderPageOut":
        return cls(diner_id=page.diner_id, orders=[OrderOut.from_order(o) for o in page.orders], page=page.page)


class OrderPlacedResponse(_WireModel):
    """Response for POST /api/order.

    follow_link_to_end_chaos is the factory's report URL; jwt is the
    factory-signed order receipt.
    """

    order: OrderOut
    follow_link_to_end_chaos: Optional[str] = None
    jwt: Optional[str] = None


# ---------------------------------------------------------------------------
# Response models -- franchises and stores
# ---------------------------------------------------------------------------


class FranchiseAdminOut(_WireModel):
    id: int
    name: str
    email: Optional[str] = None


class StoreOut(_WireModel):
    """A store. total_revenue is omitted from the plain listing shown to non-admins."""

    id: int
    name: str
    total_revenue: Optional[float] = None

    @classmethod
    def from_store(cls, store: Store) -> "StoreOut":
        return cls(id=store.id, name=store.name, total_revenue=store.total_revenue)


class FranchiseOut(_WireModel):
    id: int
    name: str
    admins: Optional[list[FranchiseAdminOut]] = None
    stores: Optional[list[StoreOut]] = None

    @classmethod
    def from_franchise(cls, franchise: Franchise) -> "FranchiseOut":
        admins = None
        if franchise.admins is not None:
            admins = [FranchiseAdminOut(id=a.id, name=a.name, email=a.email) for a in franchise.admins]
        stores = None
        if franchise.stores is not None:
            stores = [StoreOut.from_store(s) for s in franchise.stores]
        return cls(id=franchise.id, name=franchise.name, admins=admins, stores=stores)


class FranchisesPage(_WireModel):
    franchises: list[FranchiseOut]
    more: bool


# ---------------------------------------------------------------------------
# Service models
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"


class EndpointDoc(BaseModel):
    method: str
    path: str
    description: str = ""


class DocsResponse(BaseModel):
    """Response for GET /api/docs."""

    version: str
    endpoints: list[EndpointDoc]
    config: dict[str, str]
