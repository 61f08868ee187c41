"""
Authorization policy for order resources.

`authorize` is a pure decision function: it maps every (principal, action,
resource) triple to Allow or Deny with a reason code and performs no I/O. The
restaurant a restaurant admin manages is resolved before the call and carried
on the principal.
"""
from dataclasses import dataclass
from typing import Optional

from .domain import Action, OrderKind, PrincipalContext, ResourceRef, Role, VENDOR_SPECIALTY

INSUFFICIENT_PRIVILEGE = "InsufficientPrivilege"
WRONG_SERVICE_SCOPE = "WrongServiceScope"
NOT_YOUR_RESTAURANT = "NotYourRestaurant"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None
    message: str = ""
    scope: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(allowed=True)


def _deny(reason: str, message: str, resource: ResourceRef) -> Decision:
    return Decision(allowed=False, reason=reason, message=message, scope=resource.service_scope)


def authorize(principal: Optional[PrincipalContext], action: Action, resource: ResourceRef) -> Decision:
    """
    Decide whether a principal may perform an action on a resource.

    Args:
        principal: Acting principal (None when no principal could be built)
        action: Requested action
        resource: Target order kind, scope and owner (owner None for listings)

    Returns:
        Decision: allowed, or denied with a reason code
    """
    role = principal.role if principal is not None else None

    if role == Role.ADMIN:
        return ALLOW

    if role in VENDOR_SPECIALTY:
        specialty = VENDOR_SPECIALTY[role]
        if resource.kind == OrderKind.REPAIR and resource.service_scope == specialty:
            return ALLOW
        return _deny(
            WRONG_SERVICE_SCOPE,
            f"{role.value} may only act on {specialty} repair orders",
            resource,
        )

    if role == Role.RESTAURANT_ADMIN:
        if resource.kind == OrderKind.FOOD and resource.service_scope in principal.restaurant_ids:
            return ALLOW
        return _deny(NOT_YOUR_RESTAURANT, "You can only manage orders for your restaurant", resource)

    if role == Role.CUSTOMER:
        if action == Action.UPDATE:
            return _deny(INSUFFICIENT_PRIVILEGE, "Customers cannot change order status", resource)
        # A listing has no single owner; the caller restricts it to the customer's own orders.
        if resource.owner_id is None or resource.owner_id == principal.id:
            return ALLOW
        return _deny(INSUFFICIENT_PRIVILEGE, "Not authorized to access this order", resource)

    return _deny(INSUFFICIENT_PRIVILEGE, "Role has no access to orders", resource)
