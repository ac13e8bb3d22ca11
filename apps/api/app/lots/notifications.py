from __future__ import annotations

import logging
import uuid
from typing import Protocol

from app import events
from app.context import get_correlation_id
from app.core.celery_app import NOTIFY_OPERATOR_ASSIGNED_TASK, celery_app
from app.core.config import get_settings
from app.core.events import EventDeliveryError
from app.lots.errors import NotificationFailure
from app.lots.schemas import LotNotificationSummary


OPERATOR_ASSIGNED_EVENT = "lots.operator_assigned"

logger = logging.getLogger("app.lots.notifications")


class NotificationSink(Protocol):
    backend: str

    def notify_operator_assigned(self, operator_id: uuid.UUID, lot_summary: LotNotificationSummary) -> None: ...


class NullNotificationSink:
    backend = "none"

    def notify_operator_assigned(self, operator_id: uuid.UUID, lot_summary: LotNotificationSummary) -> None:
        logger.debug(
            "lot.operator_notification_skipped",
            extra={"operator_id": str(operator_id), "lot_id": str(lot_summary.lot_id), "backend": self.backend},
        )


class EventBusNotificationSink:
    """Publishes the assignment on the in-process event bus for subscribers to deliver."""

    backend = "events"

    def notify_operator_assigned(self, operator_id: uuid.UUID, lot_summary: LotNotificationSummary) -> None:
        envelope = events.build_envelope(
            OPERATOR_ASSIGNED_EVENT,
            {
                "operator_id": str(operator_id),
                "lot": lot_summary.model_dump(mode="json"),
            },
        )
        try:
            events.publish(envelope)
        except EventDeliveryError as exc:
            raise NotificationFailure(self.backend, str(exc)) from exc


class CeleryNotificationSink:
    """Hands the assignment to a Celery worker so delivery never runs in the request."""

    backend = "celery"

    def notify_operator_assigned(self, operator_id: uuid.UUID, lot_summary: LotNotificationSummary) -> None:
        try:
            celery_app.send_task(
                NOTIFY_OPERATOR_ASSIGNED_TASK,
                kwargs={
                    "operator_id": str(operator_id),
                    "lot_summary": lot_summary.model_dump(mode="json"),
                    "correlation_id": get_correlation_id(),
                },
            )
        except Exception as exc:
            raise NotificationFailure(self.backend, f"failed to enqueue operator notification: {exc}") from exc


_SINKS: dict[str, type[NullNotificationSink] | type[EventBusNotificationSink] | type[CeleryNotificationSink]] = {
    "none": NullNotificationSink,
    "events": EventBusNotificationSink,
    "celery": CeleryNotificationSink,
}


def resolve_notification_sink(backend: str | None = None) -> NotificationSink:
    name = (backend or get_settings().notification_backend).lower()
    sink_type = _SINKS.get(name)
    if sink_type is None:
        raise ValueError(f"unknown notification backend: {name}")
    return sink_type()
