"""
Order lifecycle state machine.

Repair lifecycle:
    pending -> in_progress -> completed
    pending | in_progress -> cancelled

Food lifecycle:
    pending -> confirmed -> preparing -> ready -> out_for_delivery -> delivered
    any non-terminal status -> cancelled

completed, delivered and cancelled are terminal. An admin may also move an
order forward past intermediate statuses along the chain; nobody moves an order
backwards or out of a terminal status. Requesting the current status is an
accepted no-op.

Pure computation: no I/O. Persistence and audit records are handled by the
repository, driven by the mutation service.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, Optional, Tuple, Union

from .domain import OrderKind, Role

PENDING = "pending"
CANCELLED = "cancelled"

# Forward chain per kind; cancelled sits outside the chain.
_CHAINS: Dict[OrderKind, Tuple[str, ...]] = {
    OrderKind.REPAIR: ("pending", "in_progress", "completed"),
    OrderKind.FOOD: ("pending", "confirmed", "preparing", "ready", "out_for_delivery", "delivered"),
}

# Status that stamps completion_at when reached
COMPLETION_STATUS: Dict[OrderKind, str] = {
    OrderKind.REPAIR: "completed",
    OrderKind.FOOD: "delivered",
}

STATUSES: Dict[OrderKind, FrozenSet[str]] = {
    kind: frozenset(chain) | {CANCELLED} for kind, chain in _CHAINS.items()
}

TERMINAL_STATUSES: Dict[OrderKind, FrozenSet[str]] = {
    kind: frozenset({COMPLETION_STATUS[kind], CANCELLED}) for kind in _CHAINS
}


def _adjacent_edges(kind: OrderKind) -> Dict[str, FrozenSet[str]]:
    chain = _CHAINS[kind]
    edges = {status: frozenset({chain[i + 1], CANCELLED}) for i, status in enumerate(chain[:-1])}
    edges[chain[-1]] = frozenset()
    edges[CANCELLED] = frozenset()
    return edges


# Adjacent edges: {kind: {from_status: {allowed_to_statuses}}}
TRANSITIONS: Dict[OrderKind, Dict[str, FrozenSet[str]]] = {kind: _adjacent_edges(kind) for kind in _CHAINS}

# Roles allowed to move orders of each kind
TRANSITION_ROLES: Dict[OrderKind, FrozenSet[Role]] = {
    OrderKind.REPAIR: frozenset({Role.ADMIN, Role.PHONE_VENDOR, Role.LAPTOP_VENDOR}),
    OrderKind.FOOD: frozenset({Role.ADMIN, Role.RESTAURANT_ADMIN}),
}

PRIORITIES = ("low", "normal", "high", "urgent")
DEFAULT_PRIORITY = "normal"

# Rejection reasons
UNKNOWN_STATUS = "UnknownStatus"
ILLEGAL_TRANSITION = "IllegalTransition"
ROLE_CANNOT_TRANSITION = "RoleCannotTransition"


@dataclass(frozen=True)
class Accepted:
    """
    A legal transition and the field effects that accompany it.

    `noop` is set when the requested status equals the current one; a no-op has
    no effects and must not produce an audit record.
    """
    status: str
    noop: bool = False
    updated_at: Optional[datetime] = None
    completion_at: Optional[datetime] = None

    accepted = True


@dataclass(frozen=True)
class Rejected:
    reason: str
    message: str

    accepted = False


TransitionResult = Union[Accepted, Rejected]


def legal_targets(kind: OrderKind, status: str, role: Optional[Role] = None) -> FrozenSet[str]:
    """Statuses reachable in one request from `status` (admins include forward skips)."""
    edges = TRANSITIONS[kind].get(status, frozenset())
    if role == Role.ADMIN and edges:
        chain = _CHAINS[kind]
        edges = edges | frozenset(chain[chain.index(status) + 1:])
    return edges


def is_terminal(kind: OrderKind, status: str) -> bool:
    return status in TERMINAL_STATUSES[kind]


def transition(
    kind: OrderKind,
    current: str,
    requested: str,
    role: Optional[Role],
    at: datetime,
) -> TransitionResult:
    """
    Validate a status change and compute its effects.

    Args:
        kind: Order kind
        current: Current status
        requested: Requested status
        role: Role of the acting principal
        at: Timestamp of the transition

    Returns:
        Accepted with effects, or Rejected with a reason
    """
    kind = OrderKind(kind)
    statuses = STATUSES[kind]

    if current not in statuses:
        return Rejected(UNKNOWN_STATUS, f"Unknown {kind.value} status: {current}")
    if requested not in statuses:
        allowed = ", ".join(sorted(statuses))
        return Rejected(UNKNOWN_STATUS, f"Unknown {kind.value} status: {requested}. Expected one of [{allowed}]")

    if current == requested:
        return Accepted(status=current, noop=True)

    if role not in TRANSITION_ROLES[kind]:
        role_name = role.value if role is not None else "unknown role"
        return Rejected(ROLE_CANNOT_TRANSITION, f"{role_name} cannot change {kind.value} order status")

    allowed = legal_targets(kind, current, role)
    if requested not in allowed:
        allowed_str = ", ".join(sorted(allowed))
        return Rejected(
            ILLEGAL_TRANSITION,
            f"Invalid status transition: {current} -> {requested}. Allowed from {current}: [{allowed_str}]",
        )

    completion_at = at if requested == COMPLETION_STATUS[kind] else None
    return Accepted(status=requested, updated_at=at, completion_at=completion_at)


def check_priority(kind: OrderKind, priority: str) -> Optional[str]:
    """
    Validate a requested priority. Priority is independent of status legality.

    Returns:
        An error message, or None if the priority is acceptable
    """
    if OrderKind(kind) != OrderKind.REPAIR:
        return "Priority applies only to repair orders"
    if priority not in PRIORITIES:
        return f"Unknown priority: {priority}. Expected one of [{', '.join(PRIORITIES)}]"
    return None
