import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any


logger = logging.getLogger("booking_api.events.bus")


@dataclass(frozen=True)
class InternalEvent:
    name: str
    payload: dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[InternalEvent], None]


class InProcessEventBus:
    """Synchronous fan-out for collaborators living in the same process (mailer, cache).

    Each handler runs in isolation: one failing subscriber is logged and the
    remaining ones still receive the event.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        if handler not in self._subscribers[event_name]:
            self._subscribers[event_name].append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def subscribers(self, event_name: str) -> list[EventHandler]:
        return list(self._subscribers.get(event_name, []))

    def publish(self, event_name: str, payload: dict[str, Any]) -> int:
        """Deliver ``payload`` and return how many handlers completed."""
        event = InternalEvent(name=event_name, payload=payload)
        delivered = 0
        for handler in self.subscribers(event_name):
            try:
                handler(event)
            except Exception as exc:
                logger.exception(
                    "event.subscriber_failed",
                    extra={"action": event_name, "error": str(exc)},
                )
                continue
            delivered += 1
        return delivered


event_bus = InProcessEventBus()
