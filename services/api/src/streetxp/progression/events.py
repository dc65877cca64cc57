"""Progression events: in-process observers plus Redis pub/sub broadcast.

Delivery is fire-and-forget. A failing handler or an unreachable Redis is
logged and never fails the ledger operation that emitted the event.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class ProgressionEvents:
    """Event names emitted by the ledger core."""

    RANK_UP = "rank_up"
    MISSION_COMPLETED = "mission_completed"


class EventBus:
    """Observer registry keyed by event name. Handlers may be sync or async."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Callable[[dict[str, Any]], Any]]] = {}

    def subscribe(self, event_name: str, handler: Callable[[dict[str, Any]], Any]) -> None:
        self._handlers.setdefault(event_name, []).append(handler)
        logger.debug("Handler %s subscribed to %s", getattr(handler, "__name__", handler), event_name)

    def unsubscribe(self, event_name: str, handler: Callable[[dict[str, Any]], Any]) -> None:
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event_name: str, data: dict[str, Any]) -> None:
        """Call every subscriber; handler errors are logged and swallowed."""
        for handler in list(self._handlers.get(event_name, [])):
            try:
                if inspect.iscoroutinefunction(handler):
                    await handler(data)
                else:
                    handler(data)
            except Exception:
                logger.warning(
                    "Handler %s failed for event %s",
                    getattr(handler, "__name__", handler),
                    event_name,
                    exc_info=True,
                )

    def clear(self) -> None:
        self._handlers.clear()


# Process-wide bus the presentation layer subscribes to.
event_bus = EventBus()


async def publish(redis: object | None, channel: str, payload: dict[str, Any]) -> None:
    """Publish a JSON payload on a Redis channel, best-effort."""
    if redis is None:
        return
    try:
        await redis.publish(channel, json.dumps(payload, default=str))  # type: ignore[union-attr]
    except Exception:
        logger.warning("Failed to publish on %s", channel, exc_info=True)


async def broadcast(
    redis: object | None,
    channel: str,
    event_name: str,
    payload: dict[str, Any],
) -> None:
    """Emit to in-process observers, then to Redis subscribers."""
    await event_bus.emit(event_name, payload)
    await publish(redis, channel, payload)
