"""
tests/test_api_routes.py -- Integration tests for the JWT Pizza REST routes.

These tests exercise the full stack: FastAPI routing -> auth dependency
injection -> UserStore/PizzaStore operations -> response model serialization
-> exception handlers. The pizza factory is the only collaborator replaced
(a MagicMock on app.state.factory).

Coverage:
  - Auth: register, login, logout (token dead afterwards), 400/401/404/409 paths
  - User: /user/me, self vs other vs admin updates, admin-only listing
  - Menu and orders: admin-only menu edits, order placement with factory
    success and failure, order history
  - Franchises: admin-only create/delete, public listing without details,
    franchise-admin store management, /franchise/{userId} visibility
  - Service: welcome, docs, health, unknown endpoint

Fixtures used (from conftest.py):
  - api_client: (client, admin_token, admin_id) -- admin is admin@jwt.com / "admin"
"""

from __future__ import annotations

import uuid
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from core.errors import UpstreamFailure
from pizza.factory import FactoryReceipt


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _register(client: TestClient, name: str = "diner") -> tuple[dict, str]:
    """Register a fresh diner with a unique email; return (user, token)."""
    email = f"{name}-{uuid.uuid4().hex[:8]}@jwt.com"
    resp = client.post("/api/auth", json={"name": name, "email": email, "password": "pw"})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    return body["user"], body["token"]


@pytest.fixture
def factory(api_client):
    """The mocked factory client, reset to a successful default for each test."""
    mock = app.state.factory
    mock.reset_mock()
    mock.fulfill.side_effect = None
    mock.fulfill.return_value = FactoryReceipt(report_url="https://factory.test/report/1", jwt="factory.signed.jwt")
    return mock


@pytest.fixture
def menu_item(api_client) -> dict:
    client, token, _ = api_client
    resp = client.put(
        "/api/order/menu",
        json={"title": "Veggie", "description": "A garden of delight", "image": "pizza1.png", "price": 0.0038},
        headers=_auth(token),
    )
    assert resp.status_code == 200, resp.text
    return resp.json()[-1]


class TestAuthRoutes:
    def test_register_returns_diner_and_token(self, api_client) -> None:
        client, _, _ = api_client
        user, token = _register(client, "newbie")
        assert user["name"] == "newbie"
        assert user["roles"] == [{"role": "diner"}]
        assert "password" not in user
        assert token.count(".") == 2

    def test_register_requires_all_fields(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post("/api/auth", json={"name": "x", "email": "x@jwt.com"})
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert error["message"] == "name, email, and password are required"

    def test_register_duplicate_email_conflicts(self, api_client) -> None:
        client, _, _ = api_client
        body = {"name": "twin", "email": f"twin-{uuid.uuid4().hex[:8]}@jwt.com", "password": "pw"}
        assert client.post("/api/auth", json=body).status_code == 200
        resp = client.post("/api/auth", json=body)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_password_limit_is_bytes_not_characters(self, api_client) -> None:
        client, _, _ = api_client
        body = {"name": "accent", "email": f"accent-{uuid.uuid4().hex[:8]}@jwt.com", "password": "\u00e9" * 72}
        resp = client.post("/api/auth", json=body)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

        login = client.put("/api/auth", json={"email": body["email"], "password": body["password"]})
        assert login.status_code == 422

    def test_login_valid_credentials(self, api_client) -> None:
        client, _, admin_id = api_client
        resp = client.put("/api/auth", json={"email": "admin@jwt.com", "password": "admin"})
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["user"]["id"] == admin_id
        assert data["user"]["roles"] == [{"role": "admin"}]

    def test_login_wrong_password(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.put("/api/auth", json={"email": "admin@jwt.com", "password": "nope"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_login_unknown_email(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.put("/api/auth", json={"email": "ghost@jwt.com", "password": "x"})
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "unknown user"

    def test_login_counts_auth_attempts(self, api_client) -> None:
        client, _, _ = api_client
        metrics = app.state.metrics
        before = (metrics.auth_success, metrics.auth_failure)
        client.put("/api/auth", json={"email": "admin@jwt.com", "password": "admin"})
        client.put("/api/auth", json={"email": "admin@jwt.com", "password": "bad"})
        assert (metrics.auth_success, metrics.auth_failure) == (before[0] + 1, before[1] + 1)

    def test_logout_kills_the_token(self, api_client) -> None:
        client, _, _ = api_client
        _user, token = _register(client)
        assert client.get("/api/user/me", headers=_auth(token)).status_code == 200

        resp = client.delete("/api/auth", headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json() == {"message": "logout successful"}

        assert client.get("/api/user/me", headers=_auth(token)).status_code == 401
        assert client.delete("/api/auth", headers=_auth(token)).status_code == 401

    def test_logout_requires_token(self, api_client) -> None:
        client, _, _ = api_client
        assert client.delete("/api/auth").status_code == 401


class TestLoginRateLimit:
    @pytest.fixture(autouse=True)
    def tight_limit(self):
        """Two logins per minute, with fresh counters before and after."""
        limiter.reset()
        with patch("api.limiter.get_settings", return_value=MagicMock(login_rate_limit="2/minute")):
            yield
        limiter.reset()

    def test_third_login_is_rejected(self, api_client) -> None:
        client, _, _ = api_client
        creds = {"email": "admin@jwt.com", "password": "admin"}
        assert client.put("/api/auth", json=creds).status_code == 200
        assert client.put("/api/auth", json=creds).status_code == 200

        resp = client.put("/api/auth", json=creds)
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "rate_limited"
        assert "Retry-After" in resp.headers

    def test_failed_logins_count_too(self, api_client) -> None:
        client, _, _ = api_client
        bad = {"email": "admin@jwt.com", "password": "guess"}
        assert client.put("/api/auth", json=bad).status_code == 401
        assert client.put("/api/auth", json=bad).status_code == 401
        assert client.put("/api/auth", json=bad).status_code == 429

    def test_registration_is_not_throttled(self, api_client) -> None:
        client, _, _ = api_client
        for _ in range(3):
            _register(client, "burst")


class TestUserRoutes:
    def test_me_unauthenticated(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get("/api/user/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_with_garbage_token(self, api_client) -> None:
        client, _, _ = api_client
        assert client.get("/api/user/me", headers=_auth("not.a.token")).status_code == 401

    def test_me_returns_identity(self, api_client) -> None:
        client, token, admin_id = api_client
        resp = client.get("/api/user/me", headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json() == {"id": admin_id, "name": "admin", "email": "admin@jwt.com", "roles": [{"role": "admin"}]}

    def test_update_self_returns_fresh_token(self, api_client) -> None:
        client, _, _ = api_client
        user, token = _register(client, "before")
        resp = client.put(f"/api/user/{user['id']}", json={"name": "after"}, headers=_auth(token))
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["user"]["name"] == "after"
        assert data["user"]["email"] == user["email"]

        me = client.get("/api/user/me", headers=_auth(data["token"])).json()
        assert me["name"] == "after"

    def test_update_other_user_forbidden(self, api_client) -> None:
        client, _, _ = api_client
        victim, _ = _register(client, "victim")
        _attacker, token = _register(client, "attacker")
        resp = client.put(f"/api/user/{victim['id']}", json={"name": "pwned"}, headers=_auth(token))
        assert resp.status_code == 403

    def test_admin_may_update_anyone(self, api_client) -> None:
        client, admin_token, _ = api_client
        user, _ = _register(client, "managed")
        resp = client.put(f"/api/user/{user['id']}", json={"name": "renamed"}, headers=_auth(admin_token))
        assert resp.status_code == 200
        assert resp.json()["user"]["name"] == "renamed"

    def test_update_password_then_login(self, api_client) -> None:
        client, _, _ = api_client
        user, token = _register(client)
        client.put(f"/api/user/{user['id']}", json={"password": "changed"}, headers=_auth(token))
        resp = client.put("/api/auth", json={"email": user["email"], "password": "changed"})
        assert resp.status_code == 200

    def test_update_rejects_password_over_72_bytes(self, api_client) -> None:
        client, _, _ = api_client
        user, token = _register(client)
        resp = client.put(f"/api/user/{user['id']}", json={"password": "\u00e9" * 72}, headers=_auth(token))
        assert resp.status_code == 422
        assert client.put("/api/auth", json={"email": user["email"], "password": "pw"}).status_code == 200

    def test_list_users_admin_only(self, api_client) -> None:
        client, admin_token, _ = api_client
        _user, diner_token = _register(client, "lister")
        assert client.get("/api/user", headers=_auth(diner_token)).status_code == 403

        resp = client.get("/api/user?page=0&limit=1&name=admin", headers=_auth(admin_token))
        assert resp.status_code == 200
        data = resp.json()
        assert [u["email"] for u in data["users"]] == ["admin@jwt.com"]
        assert data["more"] is False


class TestMenuAndOrderRoutes:
    def test_menu_is_public(self, api_client, menu_item) -> None:
        client, _, _ = api_client
        resp = client.get("/api/order/menu")
        assert resp.status_code == 200
        assert menu_item["id"] in [m["id"] for m in resp.json()]

    def test_diner_cannot_add_menu_item(self, api_client) -> None:
        client, _, _ = api_client
        _user, token = _register(client)
        resp = client.put(
            "/api/order/menu",
            json={"title": "Hack", "description": "", "image": "", "price": 0},
            headers=_auth(token),
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["message"] == "unable to add menu item"

    def test_place_order_calls_factory(self, api_client, factory, menu_item) -> None:
        client, _, _ = api_client
        user, token = _register(client, "hungry")
        body = {"franchiseId": 1, "storeId": 1, "items": [{"menuId": menu_item["id"], "description": "Veggie", "price": 0.05}]}

        resp = client.post("/api/order", json=body, headers=_auth(token))

        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["followLinkToEndChaos"] == "https://factory.test/report/1"
        assert data["jwt"] == "factory.signed.jwt"
        assert data["order"]["items"][0]["menuId"] == menu_item["id"]

        diner, order = factory.fulfill.call_args.args
        assert diner == {"id": user["id"], "name": "hungry", "email": user["email"]}
        assert order.id == data["order"]["id"]

        history = client.get("/api/order", headers=_auth(token)).json()
        assert history["dinerId"] == user["id"]
        assert [o["id"] for o in history["orders"]] == [data["order"]["id"]]

    def test_factory_failure_is_500_with_report_url(self, api_client, factory, menu_item) -> None:
        client, _, _ = api_client
        _user, token = _register(client)
        factory.fulfill.side_effect = UpstreamFailure(
            "Failed to fulfill order at factory", report_url="https://factory.test/report/oops"
        )
        failures_before = app.state.metrics.pizza_creation_failures
        body = {"franchiseId": 1, "storeId": 1, "items": [{"menuId": menu_item["id"], "description": "Veggie", "price": 0.05}]}

        resp = client.post("/api/order", json=body, headers=_auth(token))

        assert resp.status_code == 500
        error = resp.json()["error"]
        assert error["code"] == "upstream_failure"
        assert error["message"] == "Failed to fulfill order at factory"
        assert error["detail"] == "https://factory.test/report/oops"
        assert app.state.metrics.pizza_creation_failures == failures_before + 1

    def test_unknown_menu_item_is_404_and_factory_not_called(self, api_client, factory) -> None:
        client, _, _ = api_client
        _user, token = _register(client)
        body = {"franchiseId": 1, "storeId": 1, "items": [{"menuId": 99999, "description": "Ghost", "price": 1}]}

        resp = client.post("/api/order", json=body, headers=_auth(token))

        assert resp.status_code == 404
        factory.fulfill.assert_not_called()
        assert client.get("/api/order", headers=_auth(token)).json()["orders"] == []

    def test_orders_require_token(self, api_client) -> None:
        client, _, _ = api_client
        assert client.get("/api/order").status_code == 401


class TestFranchiseRoutes:
    @pytest.fixture
    def owned_franchise(self, api_client) -> tuple[dict, dict, str]:
        """(franchise, owner_user, owner_token) created through the API."""
        client, admin_token, _ = api_client
        owner, owner_token = _register(client, "owner")
        resp = client.post(
            "/api/franchise",
            json={"name": f"pizzaPocket-{uuid.uuid4().hex[:8]}", "admins": [{"email": owner["email"]}]},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 200, resp.text
        return resp.json(), owner, owner_token

    def test_create_returns_admins_and_empty_stores(self, owned_franchise) -> None:
        franchise, owner, _ = owned_franchise
        assert franchise["admins"] == [{"id": owner["id"], "name": "owner", "email": owner["email"]}]
        assert franchise["stores"] == []

    def test_create_requires_admin(self, api_client) -> None:
        client, _, _ = api_client
        _user, token = _register(client)
        resp = client.post("/api/franchise", json={"name": "nope", "admins": []}, headers=_auth(token))
        assert resp.status_code == 403

    def test_create_with_unknown_admin_is_404(self, api_client) -> None:
        client, admin_token, _ = api_client
        resp = client.post(
            "/api/franchise",
            json={"name": "orphan", "admins": [{"email": "ghost@jwt.com"}]},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 404
        assert "ghost@jwt.com" in resp.json()["error"]["message"]

    def test_public_listing_hides_admins_and_revenue(self, api_client, owned_franchise) -> None:
        client, _, _ = api_client
        franchise, _, owner_token = owned_franchise
        client.post(f"/api/franchise/{franchise['id']}/store", json={"name": "SLC"}, headers=_auth(owner_token))

        resp = client.get(f"/api/franchise?name={franchise['name']}")
        assert resp.status_code == 200
        (listed,) = resp.json()["franchises"]
        assert "admins" not in listed
        assert [s.keys() for s in listed["stores"]] == [{"id", "name"}]

    def test_admin_listing_has_details(self, api_client, owned_franchise) -> None:
        client, admin_token, _ = api_client
        franchise, owner, _ = owned_franchise
        resp = client.get(f"/api/franchise?name={franchise['name']}", headers=_auth(admin_token))
        (listed,) = resp.json()["franchises"]
        assert [a["id"] for a in listed["admins"]] == [owner["id"]]

    def test_user_franchises_visibility(self, api_client, owned_franchise) -> None:
        client, admin_token, _ = api_client
        franchise, owner, owner_token = owned_franchise
        _stranger, stranger_token = _register(client, "stranger")

        mine = client.get(f"/api/franchise/{owner['id']}", headers=_auth(owner_token)).json()
        assert [f["id"] for f in mine] == [franchise["id"]]

        as_admin = client.get(f"/api/franchise/{owner['id']}", headers=_auth(admin_token)).json()
        assert [f["id"] for f in as_admin] == [franchise["id"]]

        assert client.get(f"/api/franchise/{owner['id']}", headers=_auth(stranger_token)).json() == []

    def test_franchise_admin_manages_stores(self, api_client, owned_franchise) -> None:
        client, _, _ = api_client
        franchise, _, owner_token = owned_franchise

        created = client.post(f"/api/franchise/{franchise['id']}/store", json={"name": "SLC"}, headers=_auth(owner_token))
        assert created.status_code == 200, created.text
        store = created.json()
        assert store["name"] == "SLC"
        assert store["totalRevenue"] == 0

        deleted = client.delete(f"/api/franchise/{franchise['id']}/store/{store['id']}", headers=_auth(owner_token))
        assert deleted.status_code == 200
        assert deleted.json() == {"message": "store deleted"}

    def test_stranger_cannot_manage_stores(self, api_client, owned_franchise) -> None:
        client, _, _ = api_client
        franchise, _, _ = owned_franchise
        _stranger, token = _register(client, "stranger")
        resp = client.post(f"/api/franchise/{franchise['id']}/store", json={"name": "x"}, headers=_auth(token))
        assert resp.status_code == 403

    def test_store_on_unknown_franchise_is_404(self, api_client) -> None:
        client, admin_token, _ = api_client
        resp = client.post("/api/franchise/99999/store", json={"name": "x"}, headers=_auth(admin_token))
        assert resp.status_code == 404

    def test_delete_franchise(self, api_client, owned_franchise) -> None:
        client, admin_token, _ = api_client
        franchise, owner, owner_token = owned_franchise

        assert client.delete(f"/api/franchise/{franchise['id']}", headers=_auth(owner_token)).status_code == 403

        resp = client.delete(f"/api/franchise/{franchise['id']}", headers=_auth(admin_token))
        assert resp.status_code == 200
        assert resp.json() == {"message": "franchise deleted"}
        assert client.get(f"/api/franchise/{owner['id']}", headers=_auth(owner_token)).json() == []


class TestServiceRoutes:
    def test_welcome(self, api_client) -> None:
        client, _, _ = api_client
        data = client.get("/").json()
        assert data["message"] == "welcome to JWT Pizza"
        assert "version" in data

    def test_docs_lists_endpoints(self, api_client) -> None:
        client, _, _ = api_client
        data = client.get("/api/docs").json()
        listed = {(e["method"], e["path"]) for e in data["endpoints"]}
        assert ("PUT", "/api/auth") in listed
        assert ("POST", "/api/franchise/{franchise_id}/store") in listed
        assert "factory" in data["config"]

    def test_health(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get("/api/health", headers={})
        assert resp.status_code == 200
        assert resp.json()["database"] == "ok"

    def test_unknown_endpoint(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get("/api/no/such/thing")
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "unknown endpoint"

    def test_requests_are_counted(self, api_client) -> None:
        client, _, _ = api_client
        before = app.state.metrics.requests_by_method["GET"]
        client.get("/")
        assert app.state.metrics.requests_by_method["GET"] == before + 1
