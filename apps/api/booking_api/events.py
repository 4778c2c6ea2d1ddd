from __future__ import annotations

import logging
from typing import Any

from booking_api.context import get_correlation_id
from booking_api.core.events import event_bus

logger = logging.getLogger("booking_api.events")

published_events: list[dict[str, Any]] = []


def publish(envelope: dict[str, Any]) -> None:
    """Publish a domain event after the transaction that produced it has committed.

    The bus isolates subscriber failures: the state change is already durable
    and the anonymous caller must still get its redirect.
    """
    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()

    published_events.append(envelope)
    event_type = envelope.get("event_type")
    if not isinstance(event_type, str) or not event_type:
        logger.warning("event.missing_type")
        return
    event_bus.publish(event_type, envelope)
