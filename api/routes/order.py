"""
api/routes/order.py -- Menu and order routes.

Routes:
  GET  /order/menu  -- the menu (public)
  PUT  /order/menu  -- add a menu item; returns the whole menu (admin)
  GET  /order       -- the caller's orders, one page at a time
  POST /order       -- place an order and send it to the pizza factory

Order placement writes the order first and calls the factory second. A
factory failure leaves the order recorded and surfaces as a 500 whose detail
is the factory's report URL.
"""

import logging
import time

from fastapi import APIRouter, Depends, Request

from api.models import MenuItemIn, MenuItemOut, OrderCreate, OrderOut, OrderPageOut, OrderPlacedResponse
from auth.dependencies import get_current_identity
from auth.models import Identity
from auth.policy import require_admin
from core.errors import UpstreamFailure
from core.metrics import Metrics
from pizza.factory import FactoryClient, diner_payload
from pizza.models import MenuItem, Order, OrderItem
from pizza.store import PizzaStore

logger = logging.getLogger("pizza.api")

router = APIRouter()


@router.get("/order/menu", response_model=list[MenuItemOut])
def get_menu(request: Request) -> list[MenuItemOut]:
    pizza_store: PizzaStore = request.app.state.pizza_store
    return [MenuItemOut.from_item(item) for item in pizza_store.get_menu()]


@router.put("/order/menu", response_model=list[MenuItemOut])
def add_menu_item(
    request: Request,
    body: MenuItemIn,
    identity: Identity = Depends(get_current_identity),
) -> list[MenuItemOut]:
    require_admin(identity, "add menu item")
    pizza_store: PizzaStore = request.app.state.pizza_store
    pizza_store.add_menu_item(
        MenuItem(title=body.title, description=body.description, image=body.image, price=body.price)
    )
    return [MenuItemOut.from_item(item) for item in pizza_store.get_menu()]


@router.get("/order", response_model=OrderPageOut)
def get_orders(
    request: Request,
    page: int = 1,
    identity: Identity = Depends(get_current_identity),
) -> OrderPageOut:
    pizza_store: PizzaStore = request.app.state.pizza_store
    return OrderPageOut.from_page(pizza_store.get_orders(identity.id, page=page))


@router.post("/order", response_model=OrderPlacedResponse)
def create_order(
    request: Request,
    body: OrderCreate,
    identity: Identity = Depends(get_current_identity),
) -> OrderPlacedResponse:
    """Record the order, then have the factory make it.

    The response carries the factory's report link and its signed receipt.
    """
    pizza_store: PizzaStore = request.app.state.pizza_store
    factory: FactoryClient = request.app.state.factory
    metrics: Metrics = request.app.state.metrics

    draft = Order(
        franchise_id=body.franchise_id,
        store_id=body.store_id,
        items=[OrderItem(menu_id=i.menu_id, description=i.description, price=i.price) for i in body.items],
    )
    order = pizza_store.add_diner_order(identity.id, draft)

    start = time.perf_counter()
    try:
        receipt = factory.fulfill(diner_payload(identity), order)
    except UpstreamFailure:
        metrics.record_order_failure((time.perf_counter() - start) * 1000)
        logger.error("Factory failed to fulfill order %d", order.id)
        raise
    metrics.record_order(
        pizzas=len(order.items),
        revenue=sum(i.price for i in order.items),
        latency_ms=(time.perf_counter() - start) * 1000,
    )
    return OrderPlacedResponse(
        order=OrderOut.from_order(order),
        follow_link_to_end_chaos=receipt.report_url,
        jwt=receipt.jwt,
    )
