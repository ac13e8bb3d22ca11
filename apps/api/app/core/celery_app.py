import logging
from typing import Any

from celery import Celery

from app.context import reset_correlation_id, set_correlation_id
from app.core.config import get_settings

NOTIFY_OPERATOR_ASSIGNED_TASK = "app.tasks.notify_operator_assigned"

settings = get_settings()
logger = logging.getLogger("app.tasks")

celery_app = Celery("grove_lots", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.task_ignore_result = True


@celery_app.task(name=NOTIFY_OPERATOR_ASSIGNED_TASK)
def notify_operator_assigned_task(operator_id: str, lot_summary: dict[str, Any], correlation_id: str | None = None) -> None:
    token = set_correlation_id(correlation_id)
    try:
        # Delivery (email, push) belongs to the messaging service consuming this log stream.
        logger.info(
            "lot.operator_notification_dispatched",
            extra={
                "operator_id": operator_id,
                "lot_id": lot_summary.get("lot_id"),
                "lot_code": lot_summary.get("lot_code"),
                "occupancy": lot_summary.get("occupancy"),
                "capacity": lot_summary.get("capacity"),
            },
        )
    finally:
        reset_correlation_id(token)
