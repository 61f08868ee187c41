"""Plain helpers shared by the test modules."""

from datetime import datetime, timedelta

from campus_orders import models
from campus_orders.domain import PrincipalContext

T0 = datetime(2026, 3, 2, 9, 0, 0)


class FakeClock:
    """Deterministic UTC clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def principal(user_id: str, role, restaurant_ids=()) -> PrincipalContext:
    return PrincipalContext(id=user_id, role=role, restaurant_ids=frozenset(restaurant_ids))


def history_for(db, order_id):
    return db.query(models.OrderHistory).filter(models.OrderHistory.order_id == order_id).all()
