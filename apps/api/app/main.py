from contextlib import asynccontextmanager
import logging
from typing import Any

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.context import RequestContextMiddleware
from app.core.events import InternalEvent, event_bus
from app.logging import configure_logging
from app.lots.notifications import OPERATOR_ASSIGNED_EVENT
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.request_logging import RequestLoggingMiddleware
from app.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("app.lifecycle")
notification_logger = logging.getLogger("app.lots.notifications")
_subscriptions_registered = False


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


def _on_operator_assigned(event: InternalEvent) -> None:
    if not isinstance(event.payload, dict):
        return
    envelope: dict[str, Any] = event.payload
    payload = envelope.get("payload")
    if not isinstance(payload, dict):
        return
    lot = payload.get("lot") if isinstance(payload.get("lot"), dict) else {}
    try:
        notification_logger.info(
            "lot.operator_notification_dispatched",
            extra={
                "event_name": event.name,
                "operator_id": payload.get("operator_id"),
                "lot_id": lot.get("lot_id"),
                "lot_code": lot.get("lot_code"),
                "occupancy": lot.get("occupancy"),
                "capacity": lot.get("capacity"),
            },
        )
    except Exception as exc:
        logger.exception("operator_notification_delivery_failed", extra={"event_name": event.name, "error": str(exc)[:500]})


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        event_bus.subscribe(OPERATOR_ASSIGNED_EVENT, _on_operator_assigned)
        _subscriptions_registered = True
    event_bus.publish("system.started", {"service": "api"})
    yield


settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

if settings.otel_enabled:
    setup_otel("lots-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
