"""
pizza/factory.py -- Outbound call to the pizza factory that fulfills orders.

The factory is a black box: POST the diner and the order, get back JSON with
a reportUrl and a jwt (the factory-signed receipt). Anything other than a 2xx
with that JSON is an UpstreamFailure; the caller decides how to surface it.
No retries: an order is only sent to the factory once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from core.errors import UpstreamFailure
from pizza.models import Order

logger = logging.getLogger("pizza.factory")


@dataclass(frozen=True)
class FactoryReceipt:
    report_url: Optional[str]
    jwt: Optional[str]


def order_payload(order: Order) -> dict:
    """Serialize an order the way the factory expects it (camelCase keys)."""
    return {
        "id": order.id,
        "dinerId": order.diner_id,
        "franchiseId": order.franchise_id,
        "storeId": order.store_id,
        "date": order.date,
        "items": [
            {"id": i.id, "menuId": i.menu_id, "description": i.description, "price": i.price}
            for i in order.items
        ],
    }


class FactoryClient:
    """Thin requests-based client for the factory API.

    Usage:
        factory = FactoryClient("https://pizza-factory.example", api_key="...")
        receipt = factory.fulfill(diner={"id": 1, "name": "d", "email": "d@jwt.com"}, order=order)
    """

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        # max_redirects=3 replaces the requests default of 30; the factory is a
        # known endpoint and should never bounce us around.
        self._session = requests.Session()
        self._session.max_redirects = 3

    def fulfill(self, diner: dict, order: Order) -> FactoryReceipt:
        """Send the order to the factory.

        Raises:
            UpstreamFailure: network error, non-2xx status, or a body that is not a JSON object.
                             report_url is set when the factory returned one.
        """
        try:
            resp = self._session.post(
                f"{self.base_url}/api/order",
                json={"diner": diner, "order": order_payload(order)},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("Factory call failed for order %s: %s", order.id, e)
            raise UpstreamFailure("Failed to fulfill order at factory") from e

        try:
            body = resp.json()
        except ValueError:
            body = None
        report_url = body.get("reportUrl") if isinstance(body, dict) else None

        if not resp.ok:
            logger.warning("Factory rejected order %s with HTTP %d", order.id, resp.status_code)
            raise UpstreamFailure("Failed to fulfill order at factory", report_url=report_url)
        if not isinstance(body, dict):
            logger.warning("Factory accepted order %s without a JSON object body", order.id)
            raise UpstreamFailure("Failed to fulfill order at factory")
        return FactoryReceipt(report_url=report_url, jwt=body.get("jwt"))

    def close(self) -> None:
        self._session.close()


def diner_payload(identity) -> dict:
    """The diner block sent with every factory order."""
    return {"id": identity.id, "name": identity.name, "email": identity.email}

