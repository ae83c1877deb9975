from celery import Celery
from sqlalchemy.exc import OperationalError

from ..config import settings
from ..container import get_container
from ..rules.ruleset import SlotSelectionContext
from ..utils.logging import logger

REDIS_URL = settings.REDIS_URL

celery = Celery("slotpop", broker=REDIS_URL, backend=REDIS_URL)

celery.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    broker_connection_retry_on_startup=True,
    worker_prefetch_multiplier=1,
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
)


@celery.task(name="notify_user", autoretry_for=(OperationalError,), retry_backoff=True, max_retries=5)
def notify_user_task(order_id: int, template_key: str, user_id: int, data: dict):
    c = get_container()
    with c.session_factory() as db:
        n = c.notifier.notify_user(db, order_id, template_key, user_id, data)
        return {"ok": True, "notification_id": n.id}


@celery.task(name="notify_admin", autoretry_for=(OperationalError,), retry_backoff=True, max_retries=5)
def notify_admin_task(template_key: str, data: dict):
    c = get_container()
    with c.session_factory() as db:
        n = c.notifier.notify_admin(db, template_key, data)
        return {"ok": True, "notification_id": n.id}


# retried only on connection-level failures: the alert insert commits at most once
@celery.task(name="evaluate_order_risk", autoretry_for=(OperationalError,), retry_backoff=True, max_retries=3)
def evaluate_order_risk_task(order_id: int, slot_selection: dict | None = None):
    c = get_container()
    context = SlotSelectionContext(**slot_selection) if slot_selection else None
    with c.session_factory() as db:
        alert = c.risk.evaluate_order_risk(db, order_id, context)
    if alert is None:
        return {"ok": True, "order_id": order_id, "alert": None}
    logger.info("Order %s risk alert %s (%s)", order_id, alert.id, alert.risk_type)
    return {"ok": True, "order_id": order_id, "alert": alert.id,
            "score": alert.risk_score, "risk_type": alert.risk_type}


@celery.task(name="scan_recent_orders")
def scan_recent_orders_task(since_hours: int | None = None):
    c = get_container()
    with c.session_factory() as db:
        created = c.risk.scan_recent_orders(db, since_hours or settings.RISK_SCAN_WINDOW_HOURS)
    return {"ok": True, "alerts_created": created}
