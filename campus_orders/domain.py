"""
Domain types shared by the lifecycle modules.

Roles, order kinds, actions, and the per-request principal context are defined
here once; everything else imports them from this module.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"
    PHONE_VENDOR = "phone_vendor"
    LAPTOP_VENDOR = "laptop_vendor"
    RESTAURANT_ADMIN = "restaurant_admin"
    DELIVERY = "delivery"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Role"]:
        """Return the role for a stored value, or None if it is not a known role."""
        try:
            return cls(value)
        except ValueError:
            return None


class OrderKind(str, Enum):
    REPAIR = "repair"
    FOOD = "food"


class Action(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"


# Repair scopes are service types; every other scope is a restaurant ID.
REPAIR_SCOPES = frozenset({"phone", "laptop"})

# Vendor role -> the repair scope it serves
VENDOR_SPECIALTY = {
    Role.PHONE_VENDOR: "phone",
    Role.LAPTOP_VENDOR: "laptop",
}


def kind_for_scope(scope: str) -> OrderKind:
    return OrderKind.REPAIR if scope in REPAIR_SCOPES else OrderKind.FOOD


@dataclass(frozen=True)
class PrincipalContext:
    """
    The acting principal for one request.

    Built once per request from a verified credential, with the role re-read
    from the user store. `restaurant_ids` is only populated for restaurant admins.
    """
    id: str
    role: Optional[Role]
    email: Optional[str] = None
    restaurant_ids: FrozenSet[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class ResourceRef:
    """What an action targets: an order kind, its scope, and its owner when known."""
    kind: OrderKind
    service_scope: str
    owner_id: Optional[str] = None

    @classmethod
    def for_order(cls, order) -> "ResourceRef":
        return cls(kind=OrderKind(order.kind), service_scope=order.service_scope, owner_id=order.user_id)
