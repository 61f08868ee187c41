"""
Order repository for the campus orders service.

This module owns every read and write of orders, their audit history, and the
principal lookups. Order rows and audit rows are only written together, in one
transaction, through `apply_transition`; storage failures are translated into
`StorageUnavailable` so driver errors never reach a caller.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .errors import ConflictUnderConcurrentUpdate, NotFound, StorageUnavailable

# Set up logging
logger = logging.getLogger(__name__)


@contextmanager
def storage_guard(db: Session, action: str):
    """
    Translate storage exceptions raised inside the block.

    The session is rolled back and the failure logged; callers receive a
    retryable StorageUnavailable and must re-query to learn the true state.
    """
    try:
        yield
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Storage failure during {action}: {e}")
        raise StorageUnavailable("Order store is temporarily unavailable, retry the request") from e


@dataclass
class OrderFilters:
    """Listing filters; None means unfiltered."""
    kind: Optional[str] = None
    scopes: Optional[Sequence[str]] = None
    owner_id: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    search: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    limit: int = 50
    offset: int = 0


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so a search term matches literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# -------------------------------------------------------------------
# Principals
# -------------------------------------------------------------------

def get_user(db: Session, user_id: str) -> Optional[models.User]:
    """
    Retrieve a single user by ID.

    Args:
        db: Database session
        user_id: ID of the user to retrieve

    Returns:
        User object or None if not found
    """
    with storage_guard(db, f"user lookup {user_id}"):
        return db.query(models.User).filter(models.User.id == user_id).first()


def get_restaurant_ids_for_admin(db: Session, user_id: str) -> FrozenSet[str]:
    """Return the restaurants a user administers (empty for non-admins)."""
    with storage_guard(db, f"restaurant lookup {user_id}"):
        rows = db.query(models.RestaurantAdmin.restaurant_id).filter(
            models.RestaurantAdmin.user_id == user_id
        ).all()
    return frozenset(row.restaurant_id for row in rows)


def assign_restaurant_admin(db: Session, user_id: str, restaurant_id: str) -> models.RestaurantAdmin:
    """
    Map a user to a restaurant they administer.

    Raises:
        NotFound: If the user does not exist
    """
    if get_user(db, user_id) is None:
        raise NotFound(f"User {user_id} not found", user_id=user_id)

    with storage_guard(db, f"restaurant assignment {user_id}"):
        existing = db.query(models.RestaurantAdmin).filter(
            models.RestaurantAdmin.user_id == user_id,
            models.RestaurantAdmin.restaurant_id == restaurant_id,
        ).first()
        if existing is not None:
            return existing
        mapping = models.RestaurantAdmin(user_id=user_id, restaurant_id=restaurant_id)
        db.add(mapping)
        db.commit()
        db.refresh(mapping)
        return mapping


# -------------------------------------------------------------------
# Orders
# -------------------------------------------------------------------

def get_order(db: Session, order_id: str) -> models.Order:
    """
    Retrieve a single order by ID.

    Args:
        db: Database session
        order_id: ID of the order to retrieve

    Returns:
        Order object

    Raises:
        NotFound: If no order has this ID
    """
    with storage_guard(db, f"order lookup {order_id}"):
        order = db.query(models.Order).filter(models.Order.id == order_id).populate_existing().first()
    if order is None:
        raise NotFound("Order not found", order_id=order_id)
    return order


def create_order(db: Session, values: Dict[str, Any]) -> models.Order:
    """
    Create a new order in the database.

    NOTE: This function assumes authorization and validation have already been
    performed by the mutation service.

    Args:
        db: Database session
        values: Column values for the new order

    Returns:
        Created Order object
    """
    db_order = models.Order(**values)
    with storage_guard(db, "order creation"):
        db.add(db_order)
        db.commit()
        db.refresh(db_order)
    return db_order


def apply_transition(
    db: Session,
    order_id: str,
    expected_version: int,
    changes: Dict[str, Any],
    audit: Dict[str, Any],
) -> int:
    """
    Write an accepted change and its audit record as one atomic unit.

    The order row is updated only if its version still equals the version the
    caller evaluated; otherwise nothing is written.

    Args:
        db: Database session
        order_id: ID of the order to update
        expected_version: Version observed when the change was validated
        changes: Column values to set on the order
        audit: Audit record fields (old/new status and priority, note, changed_by, created_at)

    Returns:
        The committed version of the order

    Raises:
        ConflictUnderConcurrentUpdate: If the order changed since it was read
        StorageUnavailable: If the store failed; the commit state is unknown
    """
    values = dict(changes)
    values["version"] = expected_version + 1

    with storage_guard(db, f"transition of order {order_id}"):
        result = db.execute(
            update(models.Order)
            .where(models.Order.id == order_id, models.Order.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            logger.warning(f"Concurrent update detected on order {order_id} (expected version {expected_version})")
            raise ConflictUnderConcurrentUpdate(
                "Order was changed by another operator; re-fetch and retry",
                order_id=order_id,
            )
        db.add(models.OrderHistory(order_id=order_id, **audit))
        db.commit()

    return values["version"]


def list_orders(db: Session, filters: OrderFilters) -> Tuple[List[models.Order], int]:
    """
    Retrieve a page of orders matching filters, newest first.

    Args:
        db: Database session
        filters: Scope, owner, status, search, date range and pagination

    Returns:
        Tuple of (orders on this page, total matching orders)
    """
    query = db.query(models.Order)

    if filters.kind:
        query = query.filter(models.Order.kind == filters.kind)
    if filters.scopes is not None:
        query = query.filter(models.Order.service_scope.in_(list(filters.scopes)))
    if filters.owner_id:
        query = query.filter(models.Order.user_id == filters.owner_id)
    if filters.status and filters.status != "all":
        query = query.filter(models.Order.status == filters.status)
    if filters.priority and filters.priority != "all":
        query = query.filter(models.Order.priority == filters.priority)
    if filters.date_from:
        query = query.filter(models.Order.created_at >= filters.date_from)
    if filters.date_to:
        query = query.filter(models.Order.created_at <= filters.date_to)
    if filters.search:
        pattern = f"%{escape_like(filters.search.strip())}%"
        query = query.filter(or_(
            models.Order.customer_name.ilike(pattern, escape="\\"),
            models.Order.customer_phone.ilike(pattern, escape="\\"),
            models.Order.device_model.ilike(pattern, escape="\\"),
            models.Order.order_token.ilike(pattern, escape="\\"),
            models.Order.delivery_address.ilike(pattern, escape="\\"),
        ))

    with storage_guard(db, "order listing"):
        total = query.count()
        orders = (
            query.order_by(models.Order.created_at.desc(), models.Order.id)
            .offset(filters.offset)
            .limit(filters.limit)
            .all()
        )
    return orders, total


def get_order_history(db: Session, order_id: str) -> List[models.OrderHistory]:
    """Audit records of an order, newest first."""
    with storage_guard(db, f"history of order {order_id}"):
        return (
            db.query(models.OrderHistory)
            .filter(models.OrderHistory.order_id == order_id)
            .order_by(models.OrderHistory.created_at.desc(), models.OrderHistory.id.desc())
            .all()
        )


def get_order_stats(db: Session, filters: OrderFilters, completion_status: str) -> Dict[str, Any]:
    """
    Aggregate order statistics for a scope.

    Args:
        db: Database session
        filters: Kind, scopes, owner and date_from are honoured
        completion_status: Status that counts as completed for this kind

    Returns:
        dict: Status breakdown, revenue, completion rate and average completion days
    """
    query = db.query(models.Order)
    if filters.kind:
        query = query.filter(models.Order.kind == filters.kind)
    if filters.scopes is not None:
        query = query.filter(models.Order.service_scope.in_(list(filters.scopes)))
    if filters.owner_id:
        query = query.filter(models.Order.user_id == filters.owner_id)
    if filters.date_from:
        query = query.filter(models.Order.created_at >= filters.date_from)

    with storage_guard(db, "order statistics"):
        status_counts = query.with_entities(
            models.Order.status,
            func.count(models.Order.id)
        ).group_by(models.Order.status).all()
        completed = query.filter(models.Order.status == completion_status).all()

    status_breakdown = {status: count for status, count in status_counts}
    total_orders = sum(status_breakdown.values())

    # Repair revenue is the final cost; food revenue is the order total
    total_revenue = sum(
        (order.actual_cost if order.actual_cost is not None else (order.total_amount or Decimal(0)))
        for order in completed
    ) or Decimal(0)

    completion_rate = round(len(completed) / total_orders * 100) if total_orders else 0

    durations = [
        (order.completion_at - order.created_at).total_seconds() / 86400
        for order in completed
        if order.completion_at is not None and order.created_at is not None
    ]
    avg_completion_days = round(sum(durations) / len(durations), 1) if durations else 0.0

    return {
        "total_orders": total_orders,
        "status_breakdown": status_breakdown,
        "total_revenue": str(total_revenue),
        "completion_rate": completion_rate,
        "avg_completion_days": avg_completion_days,
    }
