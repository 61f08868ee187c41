"""End-to-end tests of the HTTP surface."""

from datetime import timedelta
from decimal import Decimal

import pytest

from campus_orders import models

from .helpers import T0


@pytest.fixture
def seed(api_db):
    """Users and orders shared by the API tests."""
    users = [
        ("admin-1", "admin"),
        ("vendor-phone", "phone_vendor"),
        ("vendor-laptop", "laptop_vendor"),
        ("manager-1", "restaurant_admin"),
        ("cust-1", "customer"),
        ("rider-1", "delivery"),
    ]
    for user_id, role in users:
        api_db.add(models.User(id=user_id, email=f"{user_id}@campus.test", role=role))
    api_db.add(models.RestaurantAdmin(user_id="manager-1", restaurant_id="rest-1"))

    common = {"user_id": "cust-1", "customer_name": "Asha Rao", "customer_phone": "9876543210",
              "created_at": T0, "updated_at": T0}
    orders = {
        "phone": models.Order(id="r-phone", kind="repair", service_scope="phone", status="pending",
                              priority="normal", device_model="Pixel 7", problem_description="Screen", **common),
        "laptop": models.Order(id="r-laptop", kind="repair", service_scope="laptop", status="in_progress",
                               priority="normal", device_model="ThinkPad", problem_description="Fan", **common),
        "food": models.Order(id="f-1", kind="food", service_scope="rest-1", status="preparing",
                             order_token="QW12ER34", delivery_address="Hostel B",
                             total_amount=Decimal("240.00"), **common),
        "other_food": models.Order(id="f-2", kind="food", service_scope="rest-2", status="pending",
                                   order_token="ZZ99YY88", delivery_address="Hostel C",
                                   total_amount=Decimal("90.00"), **common),
    }
    api_db.add_all(orders.values())
    api_db.commit()
    return orders


class TestAuthentication:
    def test_missing_credential(self, client, seed):
        response = client.get("/orders")
        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "Unauthenticated"
        assert response.headers["www-authenticate"] == "Bearer"

    def test_expired_token(self, client, seed, token_for):
        token = token_for("admin-1", expires_delta=timedelta(seconds=-5))
        response = client.get("/orders", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["detail"]["message"] == "Token expired"

    def test_session_cookie_accepted(self, client, seed, token_for):
        client.cookies.set("campus_session", token_for("admin-1"))
        response = client.get("/orders")
        assert response.status_code == 200
        assert response.json()["total"] == 4

    def test_stale_token_role_is_ignored(self, client, seed, auth_headers):
        response = client.patch("/orders/r-phone", json={"status": "in_progress"},
                                headers=auth_headers("cust-1", role="admin"))
        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "InsufficientPrivilege"

    def test_healthz_is_public(self, client):
        assert client.get("/healthz").json() == {"status": "healthy"}


class TestUpdateOrder:
    def test_wrong_scope(self, client, seed, auth_headers):
        response = client.patch("/orders/r-laptop", json={"status": "completed"},
                                headers=auth_headers("vendor-phone"))
        assert response.status_code == 403
        detail = response.json()["detail"]
        assert detail["code"] == "WrongServiceScope"
        assert detail["scope"] == "laptop"

    def test_legal_transition(self, client, seed, auth_headers):
        response = client.patch("/orders/r-laptop", json={"status": "completed", "note": "Fan replaced"},
                                headers=auth_headers("vendor-laptop"))
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["completion_at"] is not None
        assert body["technician_notes"] == "Fan replaced"
        assert body["version"] == 2

    def test_admin_skip_sets_actual_delivery_time(self, client, seed, auth_headers):
        response = client.patch("/orders/f-1", json={"status": "delivered"}, headers=auth_headers("admin-1"))
        assert response.status_code == 200
        body = response.json()
        assert body["actual_delivery_time"] == body["completion_at"]
        assert body["actual_delivery_time"] is not None

        history = client.get("/orders/f-1/history", headers=auth_headers("admin-1")).json()
        assert [(h["old_status"], h["new_status"]) for h in history] == [("preparing", "delivered")]

    def test_illegal_transition(self, client, seed, auth_headers):
        response = client.patch("/orders/f-1", json={"status": "delivered"}, headers=auth_headers("manager-1"))
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "IllegalTransition"

    def test_unknown_order(self, client, seed, auth_headers):
        response = client.patch("/orders/nope", json={"status": "cancelled"}, headers=auth_headers("admin-1"))
        assert response.status_code == 404

    def test_unknown_status(self, client, seed, auth_headers):
        response = client.patch("/orders/r-phone", json={"status": "shipped"}, headers=auth_headers("admin-1"))
        assert response.status_code == 400
        assert response.json()["detail"]["field"] == "status"

    def test_malformed_body(self, client, seed, auth_headers):
        response = client.patch("/orders/r-phone", json={"actual_cost": -5}, headers=auth_headers("admin-1"))
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["code"] == "ValidationError"
        assert detail["errors"][0]["field"] == "actual_cost"


class TestBulkStatus:
    def test_mixed_outcome_is_200(self, client, seed, auth_headers):
        response = client.post(
            "/orders/bulk-status",
            json={"order_ids": ["f-1", "f-2", "missing"], "status": "ready"},
            headers=auth_headers("manager-1"),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["succeeded"] == ["f-1"]
        reasons = {failure["id"]: failure["reason"] for failure in body["failed"]}
        assert reasons == {"f-2": "NotYourRestaurant", "missing": "NotFound"}

    def test_empty_id_list_rejected(self, client, seed, auth_headers):
        response = client.post("/orders/bulk-status", json={"order_ids": [], "status": "ready"},
                               headers=auth_headers("admin-1"))
        assert response.status_code == 400


class TestReads:
    def test_vendor_listing(self, client, seed, auth_headers):
        body = client.get("/orders", headers=auth_headers("vendor-phone")).json()
        assert [order["id"] for order in body["items"]] == ["r-phone"]
        assert body["total"] == 1

    def test_restaurant_admin_listing_and_filter(self, client, seed, auth_headers):
        body = client.get("/orders", params={"status": "preparing"}, headers=auth_headers("manager-1")).json()
        assert [order["id"] for order in body["items"]] == ["f-1"]

    def test_foreign_scope_listing(self, client, seed, auth_headers):
        response = client.get("/orders", params={"scope": "rest-2"}, headers=auth_headers("manager-1"))
        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "NotYourRestaurant"

    def test_delivery_role_denied(self, client, seed, auth_headers):
        response = client.get("/orders/f-1", headers=auth_headers("rider-1"))
        assert response.status_code == 403

    def test_customer_reads_own_order(self, client, seed, auth_headers):
        response = client.get("/orders/f-2", headers=auth_headers("cust-1"))
        assert response.status_code == 200
        assert response.json()["order_token"] == "ZZ99YY88"

    def test_stats(self, client, seed, auth_headers):
        response = client.get("/orders/stats", params={"scope": "rest-1"}, headers=auth_headers("admin-1"))
        assert response.status_code == 200
        body = response.json()
        assert body["total_orders"] == 1
        assert body["status_breakdown"] == {"preparing": 1}


class TestCreateOrder:
    def test_customer_creates_food_order(self, client, seed, auth_headers):
        response = client.post(
            "/orders",
            json={
                "kind": "food", "service_scope": "rest-1", "customer_name": "Ravi",
                "customer_phone": "+91 98765 43210", "delivery_address": "Hostel D", "total_amount": "150.00",
            },
            headers=auth_headers("cust-1"),
        )
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert body["user_id"] == "cust-1"

        feed = client.get("/notifications", headers=auth_headers("manager-1")).json()
        assert feed["items"][0]["kind"] == "new_order"
        assert feed["items"][0]["order_id"] == body["id"]

    def test_repair_order_without_device(self, client, seed, auth_headers):
        response = client.post(
            "/orders",
            json={"kind": "repair", "service_scope": "phone", "customer_name": "Ravi",
                  "customer_phone": "9876543210"},
            headers=auth_headers("cust-1"),
        )
        assert response.status_code == 400


class TestNotifications:
    def test_read_and_clear(self, client, seed, auth_headers):
        client.patch("/orders/f-1", json={"status": "ready"}, headers=auth_headers("manager-1"))
        client.patch("/orders/r-phone", json={"priority": "urgent"}, headers=auth_headers("vendor-phone"))

        manager_feed = client.get("/notifications", headers=auth_headers("manager-1")).json()
        assert manager_feed["unread_count"] == 1
        event = manager_feed["items"][0]
        assert event["kind"] == "status_change"

        read = client.post(f"/notifications/{event['id']}/read", headers=auth_headers("manager-1"))
        assert read.status_code == 200
        assert read.json()["read"] is True
        assert client.get("/notifications", headers=auth_headers("manager-1")).json()["unread_count"] == 0

        hidden = client.post(f"/notifications/{event['id']}/read", headers=auth_headers("vendor-phone"))
        assert hidden.status_code == 404

        cleared = client.post("/notifications/clear", headers=auth_headers("manager-1")).json()
        assert cleared == {"cleared": 1}
        assert len(client.get("/notifications", headers=auth_headers("admin-1")).json()["items"]) == 1


class TestRestaurantAdminAssignment:
    def test_assignment_grants_access_immediately(self, client, seed, auth_headers):
        assert client.get("/orders/f-2", headers=auth_headers("manager-1")).status_code == 403

        response = client.post("/admin/restaurant-admins", json={"user_id": "manager-1", "restaurant_id": "rest-2"},
                               headers=auth_headers("admin-1"))
        assert response.status_code == 201

        assert client.get("/orders/f-2", headers=auth_headers("manager-1")).status_code == 200

    def test_admin_only(self, client, seed, auth_headers):
        response = client.post("/admin/restaurant-admins", json={"user_id": "manager-1", "restaurant_id": "rest-2"},
                               headers=auth_headers("manager-1"))
        assert response.status_code == 403

    def test_unknown_user(self, client, seed, auth_headers):
        response = client.post("/admin/restaurant-admins", json={"user_id": "ghost", "restaurant_id": "rest-2"},
                               headers=auth_headers("admin-1"))
        assert response.status_code == 404
