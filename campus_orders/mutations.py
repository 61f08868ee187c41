"""
Order mutation service.

The only caller of the repository's write paths. Every change runs the same
pipeline: load the order, authorize the principal against the order's scope,
validate the change with the state machine, write the order and its audit
record atomically, then publish a notification. A rejection at any step
happens before any write.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from . import crud, models, schemas
from .domain import Action, OrderKind, PrincipalContext, ResourceRef, Role, VENDOR_SPECIALTY, kind_for_scope
from .errors import (
    IllegalTransition,
    InsufficientPrivilege,
    OrderServiceError,
    StorageUnavailable,
    ValidationError,
    denial_for,
)
from .notifications import NEW_ORDER, PRIORITY_CHANGE, STATUS_CHANGE, NotificationFeed, OrderSnapshot
from .policy import authorize
from .state_machine import (
    COMPLETION_STATUS,
    DEFAULT_PRIORITY,
    PENDING,
    STATUSES,
    UNKNOWN_STATUS,
    check_priority,
    transition,
)

logger = logging.getLogger(__name__)

# Optional fields a change may carry, and the order kind each applies to
KIND_FIELDS = {
    "estimated_cost": OrderKind.REPAIR,
    "actual_cost": OrderKind.REPAIR,
    "estimated_completion_date": OrderKind.REPAIR,
    "estimated_delivery_time": OrderKind.FOOD,
}

REPAIR_CREATE_FIELDS = ("device_model", "problem_description")
FOOD_CREATE_FIELDS = ("delivery_address", "total_amount", "delivery_fee", "tax_amount", "special_instructions")

TIME_RANGES = ("all", "today", "week", "month")


class OrderMutationService:
    """
    Orchestrates order reads and changes for an authenticated principal.

    Args:
        feed: Notification feed receiving an event per committed change
        clock: Returns the current UTC time; injectable for tests
    """

    def __init__(self, feed: NotificationFeed, clock: Callable[[], datetime] = datetime.utcnow):
        self.feed = feed
        self.clock = clock

    # ---------------------------------------------------------------
    # Writes
    # ---------------------------------------------------------------

    def update_order(
        self,
        db: Session,
        principal: PrincipalContext,
        order_id: str,
        request: schemas.OrderUpdate,
    ) -> models.Order:
        """
        Apply a status/priority/detail change to one order.

        Args:
            db: Database session
            principal: Acting principal
            order_id: ID of the order to change
            request: Requested change

        Returns:
            The order after the change (unchanged if the request was a no-op)

        Raises:
            NotFound, AuthorizationDenied, ValidationError, IllegalTransition,
            ConflictUnderConcurrentUpdate, StorageUnavailable
        """
        order = crud.get_order(db, order_id)
        self._require(principal, Action.UPDATE, ResourceRef.for_order(order))

        kind = OrderKind(order.kind)
        now = self.clock()
        expected_version = order.version
        old_status, old_priority = order.status, order.priority
        changes = {}

        if request.status is not None:
            result = transition(kind, order.status, request.status, principal.role, now)
            if not result.accepted:
                raise self._rejection(result, order.id)
            if not result.noop:
                changes["status"] = result.status
                if result.completion_at is not None:
                    changes["completion_at"] = result.completion_at

        if request.priority is not None:
            error = check_priority(kind, request.priority)
            if error:
                raise ValidationError(error, field="priority")
            if request.priority != order.priority:
                changes["priority"] = request.priority

        for field, field_kind in KIND_FIELDS.items():
            value = getattr(request, field)
            if value is None:
                continue
            if kind != field_kind:
                raise ValidationError(f"{field} applies only to {field_kind.value} orders", field=field)
            if value != getattr(order, field):
                changes[field] = value

        if request.note and kind == OrderKind.REPAIR and request.note != order.technician_notes:
            changes["technician_notes"] = request.note

        if not changes:
            logger.debug(f"No-op change requested for order {order.id}")
            return order

        changes["updated_at"] = now
        new_status = changes.get("status", old_status)
        new_priority = changes.get("priority", old_priority)
        priority_changed = "priority" in changes

        audit = {
            "old_status": old_status,
            "new_status": new_status,
            "old_priority": old_priority if priority_changed else None,
            "new_priority": new_priority if priority_changed else None,
            "note": request.note,
            "changed_by": principal.id,
            "created_at": now,
        }
        committed = OrderSnapshot(
            id=order.id,
            kind=order.kind,
            service_scope=order.service_scope,
            user_id=order.user_id,
            status=new_status,
            priority=new_priority,
        )
        version = crud.apply_transition(db, order.id, expected_version, changes, audit)
        logger.info(
            f"Order {order.id} updated by {principal.id} to version {version}: status {old_status} -> {new_status}, "
            f"fields {sorted(k for k in changes if k != 'updated_at')}"
        )

        # Publish before the re-read.
        if new_status != old_status:
            self.feed.publish(STATUS_CHANGE, committed, f"Order status changed from {old_status} to {new_status}")
        elif priority_changed:
            self.feed.publish(PRIORITY_CHANGE, committed, f"Order priority changed from {old_priority} to {new_priority}")

        try:
            return crud.get_order(db, order.id)
        except StorageUnavailable:
            logger.error(f"Order {order.id} committed at version {version} but could not be re-read")
            raise

    def bulk_update(
        self,
        db: Session,
        principal: PrincipalContext,
        order_ids: Iterable[str],
        status: str,
        estimated_delivery_time: Optional[datetime] = None,
    ) -> schemas.BulkResult:
        """
        Apply one status to many orders independently.

        Items are processed in submitted order, each through the single-order
        pipeline in its own transaction. A failing item is reported and the
        batch continues.

        Returns:
            BulkResult with succeeded IDs and per-item failures
        """
        result = schemas.BulkResult()
        request = schemas.OrderUpdate(status=status, estimated_delivery_time=estimated_delivery_time)

        for order_id in order_ids:
            try:
                self.update_order(db, principal, order_id, request)
            except OrderServiceError as e:
                result.failed.append(schemas.BulkFailure(id=order_id, reason=e.code, message=e.message))
            else:
                result.succeeded.append(order_id)

        logger.info(
            f"Bulk status '{status}' by {principal.id}: "
            f"{len(result.succeeded)} succeeded, {len(result.failed)} failed"
        )
        return result

    def create_order(self, db: Session, principal: PrincipalContext, payload: schemas.OrderCreate) -> models.Order:
        """
        Create an order owned by the principal and announce it on the feed.

        Raises:
            AuthorizationDenied: If the principal may not create orders in the scope
        """
        kind = OrderKind(payload.kind)
        self._require(principal, Action.CREATE, ResourceRef(kind, payload.service_scope, owner_id=principal.id))

        now = self.clock()
        values = {
            "kind": kind.value,
            "user_id": principal.id,
            "service_scope": payload.service_scope,
            "status": PENDING,
            "customer_name": payload.customer_name,
            "customer_phone": payload.customer_phone,
            "version": 1,
            "created_at": now,
            "updated_at": now,
        }
        if kind == OrderKind.REPAIR:
            values["priority"] = DEFAULT_PRIORITY
            values.update({field: getattr(payload, field) for field in REPAIR_CREATE_FIELDS})
        else:
            values["order_token"] = uuid.uuid4().hex[:8].upper()
            values.update({field: getattr(payload, field) for field in FOOD_CREATE_FIELDS})

        order = crud.create_order(db, values)
        logger.info(f"Order {order.id} ({kind.value}/{order.service_scope}) created by {principal.id}")

        label = f"{order.service_scope} repair" if kind == OrderKind.REPAIR else "food"
        self.feed.publish(NEW_ORDER, order, f"New {label} order received")
        return order

    # ---------------------------------------------------------------
    # Reads
    # ---------------------------------------------------------------

    def get_order(self, db: Session, principal: PrincipalContext, order_id: str) -> models.Order:
        order = crud.get_order(db, order_id)
        self._require(principal, Action.READ, ResourceRef.for_order(order))
        return order

    def get_history(self, db: Session, principal: PrincipalContext, order_id: str) -> List[models.OrderHistory]:
        self.get_order(db, principal, order_id)
        return crud.get_order_history(db, order_id)

    def list_orders(
        self,
        db: Session,
        principal: PrincipalContext,
        scope: Optional[str] = None,
        kind: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        search: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[models.Order], int]:
        """
        List the orders visible to the principal.

        Without a scope the listing defaults to the principal's own partition:
        everything for admins, their specialty for vendors, their restaurants
        for restaurant admins, and their own orders for customers.

        Returns:
            Tuple of (page of orders, total matching)
        """
        filters = self._scoped_filters(principal, scope, kind)
        if status and status != "all":
            self._check_status_filter(filters.kind, status)
        filters.status = status
        filters.priority = priority
        filters.search = search
        filters.date_from = date_from
        filters.date_to = date_to
        filters.limit = limit
        filters.offset = offset
        return crud.list_orders(db, filters)

    def get_stats(
        self,
        db: Session,
        principal: PrincipalContext,
        scope: Optional[str] = None,
        time_range: str = "all",
    ) -> Dict:
        """
        Aggregate statistics for one scope over a time range.

        Vendors and restaurant admins default to their own partition, which is
        reported back as the scope. Admins and customers must name a scope;
        a customer's statistics cover only their own orders in it.
        """
        if time_range not in TIME_RANGES:
            raise ValidationError(
                f"Unknown time_range: {time_range}. Expected one of [{', '.join(TIME_RANGES)}]",
                field="time_range",
            )

        filters = self._scoped_filters(principal, scope, None)
        if filters.kind is None:
            raise ValidationError("scope is required for statistics", field="scope")
        filters.date_from = self._since(time_range)

        stats = crud.get_order_stats(db, filters, COMPLETION_STATUS[OrderKind(filters.kind)])
        stats["scope"] = ",".join(filters.scopes) if filters.scopes else scope
        stats["time_range"] = time_range
        return stats

    # ---------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------

    def _require(self, principal: PrincipalContext, action: Action, resource: ResourceRef) -> None:
        decision = authorize(principal, action, resource)
        if not decision.allowed:
            logger.warning(
                f"Denied {action.value} on {resource.kind.value}/{resource.service_scope} "
                f"for {principal.id}: {decision.reason}"
            )
            raise denial_for(decision.reason, decision.message, decision.scope)

    @staticmethod
    def _rejection(result, order_id: str) -> OrderServiceError:
        if result.reason == UNKNOWN_STATUS:
            return ValidationError(result.message, field="status")
        logger.warning(f"Rejected transition on order {order_id}: {result.message}")
        return IllegalTransition(result.message, order_id=order_id)

    def _scoped_filters(self, principal: PrincipalContext, scope: Optional[str], kind: Optional[str]) -> crud.OrderFilters:
        if kind is not None and kind not in (OrderKind.REPAIR.value, OrderKind.FOOD.value):
            raise ValidationError(f"Unknown order kind: {kind}", field="kind")

        filters = crud.OrderFilters(kind=kind)
        role = principal.role

        if scope:
            scope_kind = kind_for_scope(scope)
            if kind is not None and kind != scope_kind.value:
                raise ValidationError(f"Scope {scope} holds {scope_kind.value} orders, not {kind}", field="kind")
            self._require(principal, Action.READ, ResourceRef(scope_kind, scope))
            filters.kind = scope_kind.value
            filters.scopes = [scope]
        elif role == Role.ADMIN:
            pass
        elif role in VENDOR_SPECIALTY:
            filters.kind = OrderKind.REPAIR.value
            filters.scopes = [VENDOR_SPECIALTY[role]]
        elif role == Role.RESTAURANT_ADMIN:
            filters.kind = OrderKind.FOOD.value
            filters.scopes = sorted(principal.restaurant_ids)
        elif role == Role.CUSTOMER:
            pass
        else:
            raise InsufficientPrivilege("Role has no access to orders")

        if role == Role.CUSTOMER:
            filters.owner_id = principal.id
        return filters

    @staticmethod
    def _check_status_filter(kind: Optional[str], status: str) -> None:
        if kind is not None:
            known = STATUSES[OrderKind(kind)]
        else:
            known = STATUSES[OrderKind.REPAIR] | STATUSES[OrderKind.FOOD]
        if status not in known:
            raise ValidationError(f"Unknown status filter: {status}", field="status")

    def _since(self, time_range: str) -> Optional[datetime]:
        now = self.clock()
        if time_range == "today":
            return now.replace(hour=0, minute=0, second=0, microsecond=0)
        if time_range == "week":
            return now - timedelta(days=7)
        if time_range == "month":
            return now - timedelta(days=30)
        return None
