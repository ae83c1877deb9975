# slotpop/services/side_effects.py
"""Post-commit side effects of order writes.

Notifications and risk scans never roll back or fail the order that caused
them: every dispatch here logs its own failure and returns.
"""
from __future__ import annotations
from typing import Any, Callable, Dict, Optional, Protocol

from sqlalchemy.orm import sessionmaker

from ..notifications.notify import NotificationService
from ..rules.ruleset import SlotSelectionContext
from ..utils.logging import get_logger
from .scoring import RiskEngine

log = get_logger("side_effects")


class SideEffects(Protocol):
    def notify_user(self, order_id: int, template_key: str, user_id: int,
                    data: Optional[Dict[str, Any]] = None) -> None: ...

    def notify_admin(self, template_key: str, data: Dict[str, Any]) -> None: ...

    def evaluate_risk(self, order_id: int, slot_selection: Optional[SlotSelectionContext] = None) -> None: ...


class InlineSideEffects:
    """Runs side effects in-process, each on its own session."""

    def __init__(self, session_factory: sessionmaker, notifier: NotificationService, risk: RiskEngine):
        self.session_factory = session_factory
        self.notifier = notifier
        self.risk = risk

    def _run(self, label: str, fn: Callable, *args) -> None:
        with self.session_factory() as db:
            try:
                fn(db, *args)
            except Exception:
                db.rollback()
                log.exception("%s failed", label)

    def notify_user(self, order_id, template_key, user_id, data=None):
        self._run(f"notify_user({template_key}, order={order_id})",
                  self.notifier.notify_user, order_id, template_key, user_id, data)

    def notify_admin(self, template_key, data):
        self._run(f"notify_admin({template_key})", self.notifier.notify_admin, template_key, data)

    def evaluate_risk(self, order_id, slot_selection=None):
        self._run(f"evaluate_risk(order={order_id})",
                  self.risk.evaluate_order_risk, order_id, slot_selection)


class CelerySideEffects:
    """Hands side effects to Celery workers; a broker outage is logged, not raised."""

    @staticmethod
    def _send(label: str, task, *args) -> None:
        try:
            task.delay(*args)
        except Exception:
            log.exception("Could not enqueue %s", label)

    def notify_user(self, order_id, template_key, user_id, data=None):
        from ..workers.tasks import notify_user_task
        self._send("notify_user", notify_user_task, order_id, template_key, user_id, _jsonable(data or {}))

    def notify_admin(self, template_key, data):
        from ..workers.tasks import notify_admin_task
        self._send("notify_admin", notify_admin_task, template_key, _jsonable(data))

    def evaluate_risk(self, order_id, slot_selection=None):
        from ..workers.tasks import evaluate_order_risk_task
        payload = slot_selection.model_dump() if slot_selection else None
        self._send("evaluate_risk", evaluate_order_risk_task, order_id, payload)


def _jsonable(data: Dict[str, Any]) -> Dict[str, Any]:
    # Decimal / datetime values travel as strings through the JSON serializer
    return {k: v if isinstance(v, (str, int, float, bool, type(None))) else str(v) for k, v in data.items()}
