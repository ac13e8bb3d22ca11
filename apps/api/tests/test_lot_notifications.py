from __future__ import annotations

import logging
import uuid
from collections.abc import Generator
from typing import Any

import pytest

from app import events
from app.context import reset_correlation_id, set_correlation_id
from app.core.celery_app import NOTIFY_OPERATOR_ASSIGNED_TASK, celery_app, notify_operator_assigned_task
from app.core.config import get_settings
from app.core.events import InternalEvent, event_bus
from app.lots.errors import NotificationFailure
from app.lots.notifications import (
    OPERATOR_ASSIGNED_EVENT,
    CeleryNotificationSink,
    EventBusNotificationSink,
    NullNotificationSink,
    resolve_notification_sink,
)
from app.lots.schemas import LotNotificationSummary


@pytest.fixture(autouse=True)
def clear_stubs() -> Generator[None, None, None]:
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def summary() -> LotNotificationSummary:
    return LotNotificationSummary(lot_id=uuid.uuid4(), lot_name="Cedar Flats", lot_code="CF-1", capacity=40, occupancy=12)


def test_resolve_notification_sink_follows_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NOTIFICATION_BACKEND", "celery")
    get_settings.cache_clear()
    assert isinstance(resolve_notification_sink(), CeleryNotificationSink)

    assert isinstance(resolve_notification_sink("none"), NullNotificationSink)
    assert isinstance(resolve_notification_sink("EVENTS"), EventBusNotificationSink)

    with pytest.raises(ValueError):
        resolve_notification_sink("carrier-pigeon")


def test_event_bus_sink_publishes_envelope_to_subscribers(summary: LotNotificationSummary) -> None:
    received: list[InternalEvent] = []

    def _handler(event: InternalEvent) -> None:
        received.append(event)

    event_bus.subscribe(OPERATOR_ASSIGNED_EVENT, _handler)
    token = set_correlation_id("notify-corr-1")
    operator_id = uuid.uuid4()
    try:
        EventBusNotificationSink().notify_operator_assigned(operator_id, summary)
    finally:
        reset_correlation_id(token)
        event_bus.unsubscribe(OPERATOR_ASSIGNED_EVENT, _handler)

    assert len(received) == 1
    envelope = received[0].payload
    assert envelope["event_type"] == OPERATOR_ASSIGNED_EVENT
    assert envelope["correlation_id"] == "notify-corr-1"
    assert envelope["payload"]["operator_id"] == str(operator_id)
    assert envelope["payload"]["lot"]["lot_code"] == "CF-1"
    assert events.published_events == [envelope]


def test_celery_sink_enqueues_task(monkeypatch: pytest.MonkeyPatch, summary: LotNotificationSummary) -> None:
    sent: list[tuple[str, dict[str, Any]]] = []

    def _send_task(name: str, kwargs: dict[str, Any] | None = None, **_: Any) -> None:
        sent.append((name, kwargs or {}))

    monkeypatch.setattr(celery_app, "send_task", _send_task)
    operator_id = uuid.uuid4()

    CeleryNotificationSink().notify_operator_assigned(operator_id, summary)

    assert len(sent) == 1
    name, kwargs = sent[0]
    assert name == NOTIFY_OPERATOR_ASSIGNED_TASK
    assert kwargs["operator_id"] == str(operator_id)
    assert kwargs["lot_summary"]["occupancy"] == 12


def test_celery_sink_wraps_broker_errors(monkeypatch: pytest.MonkeyPatch, summary: LotNotificationSummary) -> None:
    def _send_task(*_: Any, **__: Any) -> None:
        raise ConnectionError("broker down")

    monkeypatch.setattr(celery_app, "send_task", _send_task)

    with pytest.raises(NotificationFailure) as exc_info:
        CeleryNotificationSink().notify_operator_assigned(uuid.uuid4(), summary)
    assert exc_info.value.backend == "celery"


def test_notify_task_logs_with_caller_correlation_id(
    summary: LotNotificationSummary,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger="app.tasks")

    notify_operator_assigned_task.run(
        operator_id="op-1",
        lot_summary=summary.model_dump(mode="json"),
        correlation_id="task-corr-1",
    )

    records = [record for record in caplog.records if record.getMessage() == "lot.operator_notification_dispatched"]
    assert records
    assert getattr(records[0], "lot_code", None) == "CF-1"


def test_event_bus_sink_reports_failing_subscriber(summary: LotNotificationSummary) -> None:
    delivered: list[str] = []

    def _broken(event: InternalEvent) -> None:
        raise RuntimeError("push gateway rejected")

    def _healthy(event: InternalEvent) -> None:
        delivered.append(event.name)

    event_bus.subscribe(OPERATOR_ASSIGNED_EVENT, _broken)
    event_bus.subscribe(OPERATOR_ASSIGNED_EVENT, _healthy)
    try:
        with pytest.raises(NotificationFailure) as exc_info:
            EventBusNotificationSink().notify_operator_assigned(uuid.uuid4(), summary)
    finally:
        event_bus.unsubscribe(OPERATOR_ASSIGNED_EVENT, _broken)
        event_bus.unsubscribe(OPERATOR_ASSIGNED_EVENT, _healthy)

    assert delivered == [OPERATOR_ASSIGNED_EVENT]
    assert exc_info.value.backend == "events"
