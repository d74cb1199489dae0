"""
In-process publish/subscribe dispatcher.

Implements:
- EventBus: typed subscribe/dispatch with per-handler fault isolation
- Subscription: handle returned by ``subscribe`` that can remove itself
- event_bus: the process-wide instance used by services and listeners
"""
import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, List, Optional

from apps.events.types import EVENT_PAYLOADS, Event, EventContext, SystemEvent

logger = logging.getLogger(__name__)

Handler = Callable[[Event], None]


class Subscription:
    """Handle for a registered handler."""

    def __init__(self, bus: 'EventBus', event_type: Optional[SystemEvent], handler: Handler):
        self.bus = bus
        self.event_type = event_type
        self.handler = handler

    def unsubscribe(self) -> bool:
        """Remove this handler from the bus. Returns False if already removed."""
        return self.bus._remove(self)

    def __repr__(self):
        target = self.event_type.value if self.event_type else '*'
        return f"<Subscription {target} -> {getattr(self.handler, '__qualname__', self.handler)!r}>"


class EventBus:
    """
    Synchronous in-process event bus.

    Handlers for one dispatch run in subscription order, type-specific handlers
    first and wildcard handlers after, and each runs to completion before the
    next starts. ``dispatch`` returns only after every handler has run.

    A handler that raises is logged and skipped; the remaining handlers still
    run and the publisher never sees the error. Dispatches from different
    threads are not ordered relative to each other.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: Dict[SystemEvent, List[Subscription]] = defaultdict(list)
        self._wildcard: List[Subscription] = []

    def subscribe(self, event_type, handler: Handler) -> Subscription:
        """Register ``handler`` for one event type."""
        event_type = SystemEvent(event_type)
        subscription = Subscription(self, event_type, handler)
        with self._lock:
            self._subscriptions[event_type].append(subscription)

        logger.debug(
            "Event listener registered",
            extra={'event_type': event_type.value, 'handler': repr(handler)}
        )
        return subscription

    def subscribe_all(self, handler: Handler) -> Subscription:
        """Register ``handler`` for every event type."""
        subscription = Subscription(self, None, handler)
        with self._lock:
            self._wildcard.append(subscription)

        logger.debug("Wildcard event listener registered", extra={'handler': repr(handler)})
        return subscription

    def unsubscribe(self, event_type, handler: Handler) -> bool:
        """Remove the first registration of ``handler`` for ``event_type``."""
        event_type = SystemEvent(event_type)
        with self._lock:
            for subscription in self._subscriptions.get(event_type, []):
                if subscription.handler == handler:
                    self._subscriptions[event_type].remove(subscription)
                    return True
        return False

    def unsubscribe_all(self, event_type=None):
        """
        Remove all handlers for ``event_type``, or every handler (wildcards
        included) when no type is given. Used to reset the bus between tests.
        """
        with self._lock:
            if event_type is None:
                self._subscriptions.clear()
                self._wildcard.clear()
            else:
                self._subscriptions.pop(SystemEvent(event_type), None)

        logger.debug(
            "Event listeners removed",
            extra={'event_type': SystemEvent(event_type).value if event_type else '*'}
        )

    def listener_count(self, event_type=None) -> int:
        """
        Number of handlers registered for ``event_type`` (wildcards excluded),
        or the number of wildcard handlers when ``event_type`` is None.
        """
        with self._lock:
            if event_type is None:
                return len(self._wildcard)
            return len(self._subscriptions.get(SystemEvent(event_type), []))

    def dispatch(self, event_type, payload, context: Optional[EventContext] = None) -> Event:
        """
        Deliver an event to every current subscriber.

        Raises:
            TypeError: if ``payload`` is not the payload class registered for
                ``event_type``. This is a programming error, not a runtime
                condition, so it is not isolated like handler failures.
        """
        event_type = SystemEvent(event_type)
        expected = EVENT_PAYLOADS[event_type]
        if not isinstance(payload, expected):
            raise TypeError(
                f"{event_type.value} expects {expected.__name__}, got {type(payload).__name__}"
            )

        event = Event(type=event_type, payload=payload, context=context or EventContext())

        # Snapshot so handlers may (un)subscribe during dispatch
        with self._lock:
            subscriptions = list(self._subscriptions.get(event_type, [])) + list(self._wildcard)

        logger.debug(
            "Event dispatched",
            extra={
                'event_type': event_type.value,
                'listener_count': len(subscriptions),
                'request_id': event.context.request_id,
                'actor_id': event.context.user_id,
            }
        )

        for subscription in subscriptions:
            try:
                subscription.handler(event)
            except Exception as e:
                logger.error(
                    f"Event listener failed: {str(e)}",
                    extra={
                        'event_type': event_type.value,
                        'handler': repr(subscription.handler),
                        'request_id': event.context.request_id,
                        'actor_id': event.context.user_id,
                    },
                    exc_info=True
                )

        return event

    def publish(self, event_type, payload, context: Optional[EventContext] = None) -> Optional[Event]:
        """
        Dispatch without ever raising.

        Business operations publish through this method so that an event
        failure, including a malformed payload, cannot fail the operation
        that already committed its state change.
        """
        try:
            return self.dispatch(event_type, payload, context)
        except Exception as e:
            logger.error(
                f"Failed to publish event: {str(e)}",
                extra={'event_type': str(getattr(event_type, 'value', event_type))},
                exc_info=True
            )
            return None

    def _remove(self, subscription: Subscription) -> bool:
        with self._lock:
            bucket = self._wildcard if subscription.event_type is None else self._subscriptions.get(subscription.event_type, [])
            if subscription in bucket:
                bucket.remove(subscription)
                return True
        return False


# Process-wide bus. Tests reset it with event_bus.unsubscribe_all().
event_bus = EventBus()
