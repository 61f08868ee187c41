"""
SQLAlchemy ORM models for the campus orders service.

Defines the tables the order lifecycle depends on: orders, their audit history,
and the principal lookups (role and restaurant administration).
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Text, UniqueConstraint
from .database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """
    User model; the authoritative source of a principal's role.

    Attributes:
        id (str): Primary key, user ID issued by the identity provider
        email (str): User's email address
        first_name (str): First name
        last_name (str): Last name
        phone (str): Contact phone (optional)
        role (str): customer, admin, phone_vendor, laptop_vendor, restaurant_admin or delivery
        created_at (datetime): Timestamp when the user was created
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_new_id)
    email = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String, nullable=False, default="")
    last_name = Column(String, nullable=False, default="")
    phone = Column(String, nullable=True)
    role = Column(String, nullable=False, default="customer")
    created_at = Column(DateTime, default=datetime.utcnow)


class RestaurantAdmin(Base):
    """Mapping of a restaurant_admin user to a restaurant they administer."""
    __tablename__ = "restaurant_admins"
    __table_args__ = (UniqueConstraint("user_id", "restaurant_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    restaurant_id = Column(String, nullable=False, index=True)


class Order(Base):
    """
    Order model covering both repair orders and food orders.

    Attributes:
        id (str): Primary key, order UUID
        kind (str): "repair" or "food"
        user_id (str): ID of the customer who placed the order
        service_scope (str): "phone"/"laptop" for repairs, the restaurant ID for food
        status (str): Lifecycle status, from the kind's enumeration
        priority (str): Repair priority (low, normal, high, urgent); null for food
        customer_name (str): Customer's display name
        customer_phone (str): Customer's contact phone
        device_model (str): Device under repair
        problem_description (str): Customer's description of the fault
        technician_notes (str): Latest note recorded by the operator
        estimated_cost (Decimal): Estimated repair cost
        actual_cost (Decimal): Final repair cost
        estimated_completion_date (datetime): Promised repair completion
        order_token (str): Short public token of a food order
        delivery_address (str): Food delivery address
        total_amount (Decimal): Food order total
        delivery_fee (Decimal): Food delivery fee
        tax_amount (Decimal): Food order tax
        special_instructions (str): Customer instructions for the kitchen
        estimated_delivery_time (datetime): Promised delivery time
        completion_at (datetime): Set when the order reaches completed/delivered
        version (int): Incremented on every accepted write
        created_at (datetime): When the order was created
        updated_at (datetime): When the order last changed
    """
    __tablename__ = "orders"

    id = Column(String, primary_key=True, index=True, default=_new_id)
    kind = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    service_scope = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default="pending")
    priority = Column(String, nullable=True)

    customer_name = Column(String, nullable=False, default="")
    customer_phone = Column(String, nullable=False, default="")

    device_model = Column(String, nullable=True)
    problem_description = Column(Text, nullable=True)
    technician_notes = Column(Text, nullable=True)
    estimated_cost = Column(Numeric(10, 2), nullable=True)
    actual_cost = Column(Numeric(10, 2), nullable=True)
    estimated_completion_date = Column(DateTime, nullable=True)

    order_token = Column(String, nullable=True, index=True)
    delivery_address = Column(Text, nullable=True)
    total_amount = Column(Numeric(10, 2), nullable=True)
    delivery_fee = Column(Numeric(10, 2), nullable=True)
    tax_amount = Column(Numeric(10, 2), nullable=True)
    special_instructions = Column(Text, nullable=True)
    estimated_delivery_time = Column(DateTime, nullable=True)

    completion_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class OrderHistory(Base):
    """
    Append-only audit record of one accepted order mutation.

    Attributes:
        id (int): Primary key, auto-incrementing record ID
        order_id (str): Foreign key to the order
        old_status (str): Status before the change
        new_status (str): Status after the change
        old_priority (str): Priority before the change (optional)
        new_priority (str): Priority after the change (optional)
        note (str): Operator note (optional)
        changed_by (str): ID of the principal who made the change
        created_at (datetime): When the change was committed
    """
    __tablename__ = "order_history"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    old_status = Column(String, nullable=False)
    new_status = Column(String, nullable=False)
    old_priority = Column(String, nullable=True)
    new_priority = Column(String, nullable=True)
    note = Column(Text, nullable=True)
    changed_by = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
