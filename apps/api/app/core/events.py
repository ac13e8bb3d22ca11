import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


logger = logging.getLogger("app.events")


@dataclass
class InternalEvent:
    name: str
    payload: dict[str, Any]


EventHandler = Callable[[InternalEvent], None]


class EventDeliveryError(Exception):
    """One or more subscribers raised while handling an event.

    Every subscriber still receives the event; the failures are collected and
    reported together once delivery finishes.
    """

    def __init__(self, event_name: str, failures: list[BaseException]) -> None:
        self.event_name = event_name
        self.failures = failures
        super().__init__(f"{len(failures)} handler(s) failed for {event_name}")


class InProcessEventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        if handler not in self._subscribers[event_name]:
            self._subscribers[event_name].append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event_name: str, payload: dict[str, Any]) -> int:
        """Deliver to every subscriber and return how many handled the event."""
        event = InternalEvent(name=event_name, payload=payload)
        failures: list[BaseException] = []
        handlers = list(self._subscribers.get(event_name, []))
        for handler in handlers:
            try:
                handler(event)
            except Exception as exc:
                logger.warning("event.handler_failed", extra={"event_name": event_name, "error": str(exc)[:500]})
                failures.append(exc)
        if failures:
            raise EventDeliveryError(event_name, failures)
        return len(handlers)


event_bus = InProcessEventBus()
