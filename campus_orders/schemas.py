"""
Pydantic schemas for request/response validation in the campus orders service.

These schemas define the structure of data for API requests and responses.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, computed_field, model_validator

from .domain import OrderKind, REPAIR_SCOPES

PHONE_PATTERN = r"^[\d\s\-\+\(\)]+$"


class OrderUpdate(BaseModel):
    """Schema for a single-order change. All fields are optional."""
    status: Optional[str] = None
    priority: Optional[str] = None
    note: Optional[str] = Field(default=None, max_length=2000)
    estimated_cost: Optional[Decimal] = Field(default=None, ge=0)
    actual_cost: Optional[Decimal] = Field(default=None, ge=0)
    estimated_completion_date: Optional[datetime] = None
    estimated_delivery_time: Optional[datetime] = None


class BulkStatusUpdate(BaseModel):
    """Schema for applying one status to many orders."""
    order_ids: List[str] = Field(..., min_length=1, max_length=500)
    status: str
    estimated_delivery_time: Optional[datetime] = None


class BulkFailure(BaseModel):
    id: str
    reason: str
    message: str


class BulkResult(BaseModel):
    """Per-item outcome of a bulk update; never a blanket failure."""
    succeeded: List[str] = Field(default_factory=list)
    failed: List[BulkFailure] = Field(default_factory=list)


class OrderCreate(BaseModel):
    """
    Schema for creating a repair or food order.

    Repair orders need a phone/laptop scope, a device model and a problem
    description; food orders need a restaurant scope, a delivery address and
    a total.
    """
    kind: OrderKind
    service_scope: str = Field(..., min_length=1, max_length=100)
    customer_name: str = Field(..., min_length=1, max_length=200)
    customer_phone: str = Field(..., min_length=10, max_length=20, pattern=PHONE_PATTERN)
    device_model: Optional[str] = Field(default=None, max_length=200)
    problem_description: Optional[str] = Field(default=None, max_length=2000)
    delivery_address: Optional[str] = Field(default=None, max_length=500)
    total_amount: Optional[Decimal] = Field(default=None, ge=0)
    delivery_fee: Optional[Decimal] = Field(default=None, ge=0)
    tax_amount: Optional[Decimal] = Field(default=None, ge=0)
    special_instructions: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def check_kind_fields(self):
        if self.kind == OrderKind.REPAIR:
            if self.service_scope not in REPAIR_SCOPES:
                raise ValueError("Repair orders need service_scope 'phone' or 'laptop'")
            if not self.device_model or not self.problem_description:
                raise ValueError("Repair orders need device_model and problem_description")
        else:
            if self.service_scope in REPAIR_SCOPES:
                raise ValueError("Food orders need a restaurant service_scope")
            if not self.delivery_address or self.total_amount is None:
                raise ValueError("Food orders need delivery_address and total_amount")
        return self


class Order(BaseModel):
    """
    Schema for order responses.

    Attributes:
        id (str): Order's unique identifier
        kind (str): repair or food
        user_id (str): ID of the customer who placed the order
        service_scope (str): phone/laptop, or the restaurant ID
        status (str): Lifecycle status
        priority (str): Repair priority, null for food
        completion_at (datetime): When the order completed or was delivered
        actual_delivery_time (datetime): completion_at of a food order
        version (int): Concurrency version
    """
    id: str
    kind: str
    user_id: str
    service_scope: str
    status: str
    priority: Optional[str] = None
    customer_name: str
    customer_phone: str
    device_model: Optional[str] = None
    problem_description: Optional[str] = None
    technician_notes: Optional[str] = None
    estimated_cost: Optional[Decimal] = None
    actual_cost: Optional[Decimal] = None
    estimated_completion_date: Optional[datetime] = None
    order_token: Optional[str] = None
    delivery_address: Optional[str] = None
    total_amount: Optional[Decimal] = None
    delivery_fee: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    special_instructions: Optional[str] = None
    estimated_delivery_time: Optional[datetime] = None
    completion_at: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def actual_delivery_time(self) -> Optional[datetime]:
        return self.completion_at if self.kind == OrderKind.FOOD.value else None

    class Config:
        from_attributes = True


class OrderPage(BaseModel):
    items: List[Order]
    total: int
    limit: int
    offset: int


class OrderHistory(BaseModel):
    """
    Schema for an audit record.

    Attributes:
        id (int): Record ID
        order_id (str): Order identifier
        old_status (str): Status before the change
        new_status (str): Status after the change
        old_priority (str): Priority before the change (optional)
        new_priority (str): Priority after the change (optional)
        note (str): Operator note (optional)
        changed_by (str): Principal who made the change
        created_at (datetime): When the change was committed
    """
    id: int
    order_id: str
    old_status: str
    new_status: str
    old_priority: Optional[str] = None
    new_priority: Optional[str] = None
    note: Optional[str] = None
    changed_by: str
    created_at: datetime

    class Config:
        from_attributes = True


class OrderStats(BaseModel):
    scope: Optional[str] = None
    time_range: str
    total_orders: int
    status_breakdown: Dict[str, int]
    total_revenue: str
    completion_rate: int
    avg_completion_days: float


class Notification(BaseModel):
    id: str
    kind: str
    order_id: str
    order_kind: str
    service_scope: str
    status: str
    priority: Optional[str] = None
    message: str
    created_at: datetime
    read: bool

    class Config:
        from_attributes = True


class NotificationList(BaseModel):
    items: List[Notification]
    unread_count: int


class RestaurantAdminAssign(BaseModel):
    user_id: str = Field(..., min_length=1)
    restaurant_id: str = Field(..., min_length=1)
