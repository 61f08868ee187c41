"""
Notification feed of recent order mutations for operator sessions.

Events are appended by the mutation service after a change commits and are
visible only to principals allowed to read the order. The feed is best-effort:
events expire after a short retention window whether read or not. The audit
history in the database is the durable record.
"""
import itertools
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .domain import Action, OrderKind, PrincipalContext, ResourceRef
from .errors import NotFound
from .policy import authorize

logger = logging.getLogger(__name__)

NEW_ORDER = "new_order"
STATUS_CHANGE = "status_change"
PRIORITY_CHANGE = "priority_change"

EVENT_KINDS = (NEW_ORDER, STATUS_CHANGE, PRIORITY_CHANGE)


@dataclass(frozen=True)
class OrderSnapshot:
    """The order fields an event records, as of a committed change."""
    id: str
    kind: str
    service_scope: str
    user_id: str
    status: str
    priority: Optional[str]


@dataclass
class NotificationEvent:
    """
    One feed entry with a snapshot of the order at the time of the change.

    Only `read` changes after creation.
    """
    id: str
    kind: str
    order_id: str
    order_kind: str
    service_scope: str
    owner_id: str
    status: str
    priority: Optional[str]
    message: str
    created_at: datetime
    read: bool = False

    @property
    def resource(self) -> ResourceRef:
        return ResourceRef(kind=OrderKind(self.order_kind), service_scope=self.service_scope, owner_id=self.owner_id)


class NotificationFeed:
    """
    In-memory, thread-safe feed of recent mutation events.

    Args:
        retention_seconds: Age after which events are dropped
        max_events: Maximum number of events kept (oldest dropped first)
        clock: Returns the current UTC time; injectable for tests
    """

    def __init__(
        self,
        retention_seconds: float = 5.0,
        max_events: int = 100,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.retention = timedelta(seconds=retention_seconds)
        self.max_events = max_events
        self.clock = clock
        self._events: "OrderedDict[str, NotificationEvent]" = OrderedDict()
        self._sequence = itertools.count(1)
        self._lock = threading.Lock()

    def publish(self, kind: str, order, message: str) -> NotificationEvent:
        """
        Append an event for a committed order change.

        Args:
            kind: new_order, status_change or priority_change
            order: The order after the change, or an OrderSnapshot of it
            message: Human-readable description

        Returns:
            The appended event
        """
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown notification kind: {kind}")

        with self._lock:
            now = self.clock()
            event = NotificationEvent(
                id=f"{kind}_{order.id}_{next(self._sequence)}",
                kind=kind,
                order_id=order.id,
                order_kind=order.kind,
                service_scope=order.service_scope,
                owner_id=order.user_id,
                status=order.status,
                priority=order.priority,
                message=message,
                created_at=now,
            )
            self._events[event.id] = event
            while len(self._events) > self.max_events:
                self._events.popitem(last=False)
            self._prune(now)

        logger.debug(f"Published {kind} notification for order {order.id}")
        return event

    def list(self, principal: PrincipalContext) -> List[NotificationEvent]:
        """Unexpired events the principal may see, newest first."""
        with self._lock:
            self._prune(self.clock())
            visible = [event for event in self._events.values() if self._visible(principal, event)]
        visible.reverse()
        return visible

    def mark_read(self, principal: PrincipalContext, event_id: str) -> NotificationEvent:
        """
        Mark one event as read.

        Raises:
            NotFound: If the event expired, never existed, or is not visible to the principal
        """
        with self._lock:
            self._prune(self.clock())
            event = self._events.get(event_id)
            if event is None or not self._visible(principal, event):
                raise NotFound("Notification not found", notification_id=event_id)
            event.read = True
            return event

    def clear_all(self, principal: PrincipalContext) -> int:
        """
        Remove every event visible to the principal.

        Returns:
            Number of events removed
        """
        with self._lock:
            doomed = [event_id for event_id, event in self._events.items() if self._visible(principal, event)]
            for event_id in doomed:
                del self._events[event_id]
        return len(doomed)

    def _prune(self, now: datetime) -> None:
        cutoff = now - self.retention
        while self._events:
            oldest = next(iter(self._events.values()))
            if oldest.created_at > cutoff:
                break
            self._events.popitem(last=False)

    @staticmethod
    def _visible(principal: PrincipalContext, event: NotificationEvent) -> bool:
        return authorize(principal, Action.READ, event.resource).allowed
