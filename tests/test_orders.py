"""Tests for order listings and status changes."""

import pytest

import orders
from database import create_document
from errors import NotFoundError, ValidationError
from schemas import Order, ShippingAddress


@pytest.fixture
def make_order(db, address):
    def _make(user, **fields):
        order = Order(
            user_id=str(user["_id"]),
            items=[{"product_id": "64b7f0c2a1b2c3d4e5f60718", "name": "Headphones", "price": 100.0, "quantity": 1}],
            shipping_address=ShippingAddress.model_validate(address),
            total_amount=100.0,
        ).model_dump()
        order.update(fields)
        return create_document(db, "order", order)
    return _make


class TestStatusTransitions:
    def test_paid_order_moves_through_fulfillment(self, db, user, make_order):
        order = make_order(user, payment_status="paid", status="completed")
        oid = str(order["_id"])

        assert orders.update_status(db, oid, "shipped")["status"] == "shipped"
        assert orders.update_status(db, oid, "delivered")["status"] == "delivered"

    def test_unpaid_order_cannot_ship(self, db, user, make_order):
        order = make_order(user)
        orders.update_status(db, str(order["_id"]), "completed")

        with pytest.raises(ValidationError):
            orders.update_status(db, str(order["_id"]), "shipped")

    def test_terminal_status_is_final(self, db, user, make_order):
        order = make_order(user, status="cancelled")
        with pytest.raises(ValidationError) as exc:
            orders.update_status(db, str(order["_id"]), "pending")
        assert exc.value.message == "Cannot change order status from cancelled to pending."

    def test_same_status_is_a_no_op(self, db, user, make_order):
        order = make_order(user)
        assert orders.update_status(db, str(order["_id"]), "pending")["status"] == "pending"

    def test_unknown_status(self, db, user, make_order):
        order = make_order(user)
        with pytest.raises(ValidationError) as exc:
            orders.update_status(db, str(order["_id"]), "lost")
        assert exc.value.message.startswith("Invalid status: lost.")

    def test_status_change_never_touches_payment(self, db, user, make_order):
        order = make_order(user, payment_status="paid", status="completed")
        result = orders.update_status(db, str(order["_id"]), "cancelled")
        assert result["status"] == "cancelled"
        assert result["payment_status"] == "paid"

    def test_missing_order(self, db):
        with pytest.raises(NotFoundError):
            orders.update_status(db, "64b7f0c2a1b2c3d4e5f60718", "completed")


class TestListings:
    def test_my_orders_only_returns_own(self, db, make_user, make_order):
        alice = make_user(username="alice")
        bob = make_user(username="bob")
        make_order(alice)
        make_order(alice)
        make_order(bob)

        assert len(orders.list_my_orders(db, alice)) == 2
        assert len(orders.list_my_orders(db, bob)) == 1

    def test_admin_listing_filters_by_status(self, db, user, make_order):
        make_order(user)
        make_order(user, status="cancelled")

        assert len(orders.list_orders(db)) == 2
        assert len(orders.list_orders(db, "all")) == 2
        assert [o["status"] for o in orders.list_orders(db, "cancelled")] == ["cancelled"]

    def test_get_order_hides_other_users_orders(self, db, make_user, make_order):
        owner = make_user(username="owner")
        other = make_user(username="other")
        admin = make_user(username="admin", role="admin")
        order = make_order(owner)

        assert orders.get_order(db, owner, str(order["_id"]))["id"] == str(order["_id"])
        assert orders.get_order(db, admin, str(order["_id"]))["id"] == str(order["_id"])
        with pytest.raises(NotFoundError):
            orders.get_order(db, other, str(order["_id"]))


class TestOrdersApi:
    def test_status_update_requires_admin(self, client, user, make_order, auth_headers):
        order = make_order(user)
        res = client.put(f"/api/orders/{order['_id']}/status", json={"status": "completed"}, headers=auth_headers(user))
        assert res.status_code == 403
        assert res.json()["success"] is False

    def test_admin_updates_status(self, client, user, admin, make_order, auth_headers):
        order = make_order(user)
        res = client.put(f"/api/orders/{order['_id']}/status", json={"status": "completed"}, headers=auth_headers(admin))
        assert res.status_code == 200
        body = res.json()
        assert body["message"] == "Order status updated successfully"
        assert body["order"]["status"] == "completed"

    def test_admin_list(self, client, user, admin, make_order, auth_headers):
        make_order(user)
        res = client.get("/api/orders", params={"status": "pending"}, headers=auth_headers(admin))
        assert res.status_code == 200
        assert res.json()["count"] == 1

    def test_admin_list_forbidden_for_users(self, client, user, auth_headers):
        res = client.get("/api/orders", headers=auth_headers(user))
        assert res.status_code == 403

    def test_my_orders(self, client, user, make_order, auth_headers):
        make_order(user)
        res = client.get("/api/orders/my-orders", headers=auth_headers(user))
        assert res.status_code == 200
        assert res.json()["count"] == 1
        assert res.json()["orders"][0]["userId"] == str(user["_id"])

    def test_order_detail(self, client, user, make_order, auth_headers):
        order = make_order(user)
        res = client.get(f"/api/orders/{order['_id']}", headers=auth_headers(user))
        assert res.status_code == 200
        assert res.json()["order"]["id"] == str(order["_id"])

    def test_malformed_order_id(self, client, user, auth_headers):
        res = client.get("/api/orders/not-an-id", headers=auth_headers(user))
        assert res.status_code == 404
