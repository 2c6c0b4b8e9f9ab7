# service_catalog/event_channel.py
"""
Per-instance publish/subscribe. Each store / coordinator owns its own channel
so two documents edited in the same process never hear each other.
"""
import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger("catalog_editor")

Handler = Callable[[Any], None]


class Subscription:
    def __init__(self, channel: "EventChannel", event: str, handler: Handler):
        self._channel = channel
        self.event = event
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._channel._remove(self.event, self.handler)
            self.active = False

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()


class EventChannel:
    def __init__(self, name: str = "events"):
        self.name = name
        self._handlers: Dict[str, List[Handler]] = {}

    def subscribe(self, event: str, handler: Handler) -> Subscription:
        self._handlers.setdefault(event, []).append(handler)
        return Subscription(self, event, handler)

    def _remove(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event) or []
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event: str) -> int:
        return len(self._handlers.get(event) or [])

    def publish(self, event: str, payload: Any = None) -> None:
        # copy: handlers may unsubscribe while being called
        for handler in list(self._handlers.get(event) or []):
            try:
                handler(payload)
            except Exception:
                logger.exception("[%s] handler for %r failed", self.name, event)
