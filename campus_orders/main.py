"""
Campus Orders Service API

This module implements the FastAPI service for the order lifecycle of the
campus services app: repair orders (phone/laptop) and food orders. It exposes
role-gated reads, single and bulk status changes with an audit trail, and a
notification feed of recent changes for operator sessions.

Endpoints:
    GET /orders: List orders visible to the caller, with filters and pagination
    POST /orders: Create a repair or food order
    GET /orders/stats: Aggregate statistics for a scope
    POST /orders/bulk-status: Apply one status to many orders
    GET /orders/{order_id}: Get a single order
    PATCH /orders/{order_id}: Change status, priority or details of an order
    GET /orders/{order_id}/history: Audit history of an order
    GET /notifications: Recent change events visible to the caller
    POST /notifications/{event_id}/read: Mark an event read
    POST /notifications/clear: Clear the caller's events
    POST /admin/restaurant-admins: Map a user to a restaurant (admin only)
    GET /healthz: Health check endpoint for orchestration systems

Run with:
    uvicorn campus_orders.main:create_app --factory
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import crud, models, schemas
from .auth import get_principal, require_admin
from .cache import RestaurantScopeCache, RestaurantScopeResolver
from .config import Settings, load_settings
from .database import build_engine, build_session_factory, get_db
from .domain import PrincipalContext
from .errors import OrderServiceError, Unauthenticated
from .mutations import OrderMutationService
from .notifications import NotificationFeed

logger = logging.getLogger(__name__)

router = APIRouter()


def get_mutations(request: Request) -> OrderMutationService:
    return request.app.state.mutations


def get_feed(request: Request) -> NotificationFeed:
    return request.app.state.feed


@router.get("/healthz", response_model=dict)
def health():
    """
    Health check endpoint for the orders service.

    Returns:
        dict: {"status": "healthy"} when the service is operational.
    """
    return {"status": "healthy"}


@router.get("/orders", response_model=schemas.OrderPage)
def list_orders(
    scope: Optional[str] = None,
    kind: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = None,
    search: Optional[str] = Query(None, max_length=200),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: PrincipalContext = Depends(get_principal),
    mutations: OrderMutationService = Depends(get_mutations),
):
    """
    List orders with filters and pagination.

    Admins see every scope, vendors their service type, restaurant admins their
    restaurants, customers their own orders.

    Args:
        scope: phone, laptop, or a restaurant ID (optional)
        kind: repair or food (optional)
        status_filter: Status to match, or "all"
        priority: Priority to match, or "all"
        search: Substring of customer name/phone, device, order token or address
        date_from: Earliest creation time
        date_to: Latest creation time
        limit: Page size (default: 50)
        offset: Number of records to skip (default: 0)

    Returns:
        Page of orders with the total count
    """
    orders, total = mutations.list_orders(
        db, principal,
        scope=scope, kind=kind, status=status_filter, priority=priority, search=search,
        date_from=date_from, date_to=date_to, limit=limit, offset=offset,
    )
    return schemas.OrderPage(
        items=[schemas.Order.model_validate(order) for order in orders],
        total=total, limit=limit, offset=offset,
    )


@router.post("/orders", response_model=schemas.Order, status_code=status.HTTP_201_CREATED)
def create_order(
    order: schemas.OrderCreate,
    db: Session = Depends(get_db),
    principal: PrincipalContext = Depends(get_principal),
    mutations: OrderMutationService = Depends(get_mutations),
):
    """
    Create a new order owned by the caller.

    Returns:
        Created order object

    Raises:
        403 if the caller may not create orders in the scope
    """
    return mutations.create_order(db, principal, order)


@router.get("/orders/stats", response_model=schemas.OrderStats)
def get_stats(
    scope: Optional[str] = None,
    time_range: str = "all",
    db: Session = Depends(get_db),
    principal: PrincipalContext = Depends(get_principal),
    mutations: OrderMutationService = Depends(get_mutations),
):
    """
    Get order statistics for a scope.

    Args:
        scope: phone, laptop, or a restaurant ID (vendors and restaurant admins default to their own)
        time_range: all, today, week or month

    Returns:
        dict: Status breakdown, revenue, completion rate and average completion days
    """
    return mutations.get_stats(db, principal, scope=scope, time_range=time_range)


@router.post("/orders/bulk-status", response_model=schemas.BulkResult)
def bulk_update_status(
    bulk: schemas.BulkStatusUpdate,
    db: Session = Depends(get_db),
    principal: PrincipalContext = Depends(get_principal),
    mutations: OrderMutationService = Depends(get_mutations),
):
    """
    Apply one status to many orders.

    Each order succeeds or fails on its own; the response always lists both.

    Returns:
        dict: succeeded order IDs and failed {id, reason, message} entries
    """
    return mutations.bulk_update(
        db, principal, bulk.order_ids, bulk.status,
        estimated_delivery_time=bulk.estimated_delivery_time,
    )


@router.get("/orders/{order_id}", response_model=schemas.Order)
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    principal: PrincipalContext = Depends(get_principal),
    mutations: OrderMutationService = Depends(get_mutations),
):
    """
    Get a single order by ID.

    Raises:
        403 if not authorized, 404 if order not found
    """
    return mutations.get_order(db, principal, order_id)


@router.patch("/orders/{order_id}", response_model=schemas.Order)
def update_order(
    order_id: str,
    order: schemas.OrderUpdate,
    db: Session = Depends(get_db),
    principal: PrincipalContext = Depends(get_principal),
    mutations: OrderMutationService = Depends(get_mutations),
):
    """
    Change an order's status, priority or details.

    Args:
        order_id: ID of the order to update
        order: Requested change

    Returns:
        Updated order object

    Raises:
        400 invalid value, 403 not authorized, 404 not found,
        409 illegal transition or concurrent update, 503 storage unavailable
    """
    return mutations.update_order(db, principal, order_id, order)


@router.get("/orders/{order_id}/history", response_model=List[schemas.OrderHistory])
def get_order_history(
    order_id: str,
    db: Session = Depends(get_db),
    principal: PrincipalContext = Depends(get_principal),
    mutations: OrderMutationService = Depends(get_mutations),
):
    """
    Get the audit history of an order, newest first.

    Raises:
        403 if not authorized, 404 if order not found
    """
    return mutations.get_history(db, principal, order_id)


@router.get("/notifications", response_model=schemas.NotificationList)
def list_notifications(
    principal: PrincipalContext = Depends(get_principal),
    feed: NotificationFeed = Depends(get_feed),
):
    """Recent change events the caller may see, newest first."""
    events = feed.list(principal)
    return schemas.NotificationList(
        items=[schemas.Notification.model_validate(event) for event in events],
        unread_count=sum(1 for event in events if not event.read),
    )


@router.post("/notifications/clear", response_model=dict)
def clear_notifications(
    principal: PrincipalContext = Depends(get_principal),
    feed: NotificationFeed = Depends(get_feed),
):
    return {"cleared": feed.clear_all(principal)}


@router.post("/notifications/{event_id}/read", response_model=schemas.Notification)
def mark_notification_read(
    event_id: str,
    principal: PrincipalContext = Depends(get_principal),
    feed: NotificationFeed = Depends(get_feed),
):
    return feed.mark_read(principal, event_id)


@router.post("/admin/restaurant-admins", response_model=schemas.RestaurantAdminAssign, status_code=status.HTTP_201_CREATED)
def assign_restaurant_admin(
    assignment: schemas.RestaurantAdminAssign,
    request: Request,
    db: Session = Depends(get_db),
    admin: PrincipalContext = Depends(require_admin),
):
    """
    Map a user to a restaurant they administer (admin only).

    The user's cached restaurant scopes are invalidated so the change applies
    to their next request.
    """
    crud.assign_restaurant_admin(db, assignment.user_id, assignment.restaurant_id)
    request.app.state.scope_resolver.invalidate(assignment.user_id)
    logger.info(f"Admin {admin.id} assigned {assignment.user_id} to restaurant {assignment.restaurant_id}")
    return assignment


async def order_service_error_handler(request: Request, exc: OrderServiceError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()}, headers=headers)


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part not in ("body", "query", "path")),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": {"code": "ValidationError", "message": "Request validation failed", "errors": errors}},
    )


def create_app(settings: Optional[Settings] = None, scope_cache: Optional[RestaurantScopeCache] = None) -> FastAPI:
    """
    Build the application.

    Configuration is loaded here, once; missing required settings raise
    ConfigurationError and stop the process before it serves requests.

    Args:
        settings: Settings to use (defaults to the environment)
        scope_cache: Restaurant scope cache (defaults to Redis when REDIS_URL is set)

    Returns:
        Configured FastAPI application
    """
    if settings is None:
        settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper())

    engine = build_engine(settings.database_url, pool_timeout=settings.db_pool_timeout)
    # Create database tables
    models.Base.metadata.create_all(bind=engine)

    if scope_cache is None and settings.redis_url:
        scope_cache = RestaurantScopeCache.from_url(settings.redis_url, ttl=settings.scope_cache_ttl)

    app = FastAPI(title="campus-orders-service")
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.scope_resolver = RestaurantScopeResolver(scope_cache)
    app.state.feed = NotificationFeed(
        retention_seconds=settings.notification_retention_seconds,
        max_events=settings.notification_max_events,
    )
    app.state.mutations = OrderMutationService(app.state.feed)

    app.add_exception_handler(OrderServiceError, order_service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.include_router(router)
    return app
