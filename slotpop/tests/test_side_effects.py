# tests/test_side_effects.py
from decimal import Decimal

from slotpop.rules.ruleset import SlotSelectionContext
from slotpop.services.side_effects import CelerySideEffects, InlineSideEffects
from slotpop.workers import tasks


def test_celery_side_effects_enqueue_json_payloads(monkeypatch):
    sent = []
    for task in (tasks.notify_user_task, tasks.notify_admin_task, tasks.evaluate_order_risk_task):
        monkeypatch.setattr(task, "delay", lambda *args, _name=task.name: sent.append((_name, args)))

    fx = CelerySideEffects()
    fx.notify_user(5, "order_created", 2, {"fallback_reason": None, "slot_was_requested": True})
    fx.notify_admin("refund_processed", {"order_id": 5, "amount": Decimal("11.98")})
    fx.evaluate_risk(5, SlotSelectionContext(was_slot_requested=True, requested_slot_id=3))

    assert sent[0] == ("notify_user", (5, "order_created", 2, {"fallback_reason": None, "slot_was_requested": True}))
    assert sent[1] == ("notify_admin", ("refund_processed", {"order_id": 5, "amount": "11.98"}))
    name, (order_id, selection) = sent[2]
    assert name == "evaluate_order_risk"
    assert selection["requested_slot_id"] == 3
    assert selection["slot_request_fulfilled"] is False


def test_broker_outage_is_swallowed(monkeypatch):
    def down(*args):
        raise ConnectionError("broker unreachable")
    monkeypatch.setattr(tasks.evaluate_order_risk_task, "delay", down)

    CelerySideEffects().evaluate_risk(1)


def test_inline_failures_are_logged_not_raised(session_factory, container, caplog):
    fx = InlineSideEffects(session_factory, container.notifier, container.risk)
    fx.notify_user(999, "order_created", 1)
    fx.evaluate_risk(999)
    assert "notify_user(order_created, order=999) failed" in caplog.text
    assert "evaluate_risk(order=999) failed" in caplog.text
