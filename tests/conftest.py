"""Shared fixtures: in-memory store, fake clock, feed, service, and API client."""

from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from campus_orders import models
from campus_orders.auth import create_access_token
from campus_orders.config import Settings
from campus_orders.database import build_engine, build_session_factory
from campus_orders.domain import Role
from campus_orders.main import create_app
from campus_orders.mutations import OrderMutationService
from campus_orders.notifications import NotificationFeed

from .helpers import T0, FakeClock

SECRET = "test-secret"


@pytest.fixture
def settings() -> Settings:
    return Settings(jwt_secret=SECRET, database_url="sqlite://", notification_retention_seconds=60)


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def feed(clock) -> NotificationFeed:
    return NotificationFeed(retention_seconds=5, max_events=100, clock=clock)


@pytest.fixture
def service(feed, clock) -> OrderMutationService:
    return OrderMutationService(feed, clock=clock)


@pytest.fixture
def make_user(db):
    def _make(user_id: str, role: str = Role.CUSTOMER.value, restaurant_ids=()):
        user = models.User(id=user_id, email=f"{user_id}@campus.test", first_name=user_id.title(), role=role)
        db.add(user)
        for restaurant_id in restaurant_ids:
            db.add(models.RestaurantAdmin(user_id=user_id, restaurant_id=restaurant_id))
        db.commit()
        return user
    return _make


@pytest.fixture
def make_order(db):
    def _make(kind: str = "repair", **overrides):
        values = {
            "kind": kind,
            "user_id": "cust-1",
            "status": "pending",
            "customer_name": "Asha Rao",
            "customer_phone": "+91 98765 43210",
            "version": 1,
            "created_at": T0 - timedelta(days=2),
            "updated_at": T0 - timedelta(days=2),
        }
        if kind == "repair":
            values.update(service_scope="phone", priority="normal", device_model="Pixel 7",
                          problem_description="Cracked screen")
        else:
            values.update(service_scope="rest-1", order_token="AB12CD34", delivery_address="Hostel B, Room 12",
                          total_amount=Decimal("240.00"))
        values.update(overrides)
        order = models.Order(**values)
        db.add(order)
        db.commit()
        db.refresh(order)
        return order
    return _make


# -------------------------------------------------------------------
# API fixtures
# -------------------------------------------------------------------

@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def api_db(app):
    session = app.state.session_factory()
    yield session
    session.close()


@pytest.fixture
def token_for(settings):
    def _token(user_id: str, role=None, expires_delta=None) -> str:
        claims = {"sub": user_id, "email": f"{user_id}@campus.test"}
        if role is not None:
            claims["role"] = role
        return create_access_token(claims, settings, expires_delta=expires_delta)
    return _token


@pytest.fixture
def auth_headers(token_for):
    def _headers(user_id: str, role=None) -> dict:
        return {"Authorization": f"Bearer {token_for(user_id, role)}"}
    return _headers
