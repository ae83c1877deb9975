# tests/test_orders.py
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from slotpop.config import Settings
from slotpop.container import build_container
from slotpop.errors import InternalError, InventoryError, InvalidStatusTransition, NotFound, ValidationError
from slotpop.models import DeliverySlot, Notification, Order, OrderItem, RiskAlert
from slotpop.schemas import CreateOrderInput
from slotpop.services import orders as order_service
from slotpop.services.catalog import DiscountRule, Product, default_catalog
from slotpop.utils.clock import utcnow


def _payload(user_id, items=(("SKU003", 1),), slot_id=None):
    return CreateOrderInput(
        user_id=user_id, address_id=100,
        items=[{"sku_id": sku, "qty": qty} for sku, qty in items],
        delivery_slot_id=slot_id,
    )


@pytest.fixture
def future():
    # a weekday morning a few weeks out, well clear of the risk rules
    day = utcnow().replace(hour=10, minute=0, second=0, microsecond=0) + timedelta(days=21)
    while day.weekday() >= 5:
        day += timedelta(days=1)
    return day


def test_assigns_earliest_slot(db, container, make_user, make_slot, future):
    user = make_user()
    make_slot(future + timedelta(days=1))
    earliest = make_slot(future)

    result = container.orders.create_order(_payload(user.id))
    assert result.order.delivery_slot_id == earliest.id
    assert result.order.status == "pending"
    assert result.slot_assignment.was_requested is False
    assert result.slot_assignment.was_fallback is False

    db.refresh(earliest)
    assert earliest.current_usage == 1


def test_requested_slot_is_honoured(db, container, make_user, make_slot, future):
    user = make_user()
    make_slot(future)
    requested = make_slot(future + timedelta(days=2))

    result = container.orders.create_order(_payload(user.id, slot_id=requested.id))
    assert result.slot_assignment.assigned == requested.id
    assert result.slot_assignment.was_requested and not result.slot_assignment.was_fallback


def test_full_requested_slot_falls_back(db, container, make_user, make_slot, future):
    user = make_user()
    full = make_slot(future, capacity=1, usage=1)
    fallback = make_slot(future + timedelta(days=1))

    result = container.orders.create_order(_payload(user.id, slot_id=full.id))
    a = result.slot_assignment
    assert a.requested == full.id
    assert a.assigned == fallback.id
    assert a.was_fallback
    assert a.fallback_reason == "Selected delivery slot is fully booked"

    note = db.execute(select(Notification).where(Notification.type == "order_created")).scalar_one()
    assert "Note: Selected delivery slot is fully booked." in note.content


def test_no_capacity_creates_order_without_slot(db, container, make_user, make_slot, future):
    user = make_user()
    make_slot(future, capacity=1, usage=1)

    result = container.orders.create_order(_payload(user.id))
    assert result.order.delivery_slot_id is None
    assert result.slot_assignment.assigned is None

    note = db.execute(select(Notification)).scalar_one()
    assert "Delivery details will be provided soon." in note.content


def test_line_pricing(db, container, make_user, future):
    user = make_user()
    result = container.orders.create_order(_payload(user.id, items=[("SKU001", 3), ("SKU002", 1)]))

    items = {i.sku_id: i for i in result.order.items}
    assert items["SKU001"].unit_price == Decimal("10.99")
    assert items["SKU001"].discount == Decimal("1.10")
    assert items["SKU001"].subtotal == Decimal("29.67")
    assert items["SKU002"].subtotal == Decimal("13.50")
    assert result.order.total_amount == Decimal("43.17")

    stored = db.execute(select(OrderItem).order_by(OrderItem.id)).scalars().all()
    assert [i.quantity for i in stored] == [3, 1]


def test_inventory_failure_persists_nothing(db, container, make_user, make_slot, future):
    user = make_user()
    slot = make_slot(future)

    with pytest.raises(InventoryError) as exc:
        container.orders.create_order(_payload(user.id, items=[("SKU004", 11), ("NOPE", 1)], slot_id=slot.id))
    assert len(exc.value.errors) == 2
    assert "Requested: 11, Available: 10" in exc.value.errors[0]

    assert db.execute(select(Order)).scalars().all() == []
    db.refresh(slot)
    assert slot.current_usage == 0


def test_repeated_sku_counts_against_stock(container, make_user):
    user = make_user()
    with pytest.raises(InventoryError):
        container.orders.create_order(_payload(user.id, items=[("SKU004", 6), ("SKU004", 5)]))


def test_inactive_sku_rejected(container, make_user):
    user = make_user()
    with pytest.raises(InventoryError) as exc:
        container.orders.create_order(_payload(user.id, items=[("SKU005", 1)]))
    assert "not available for purchase" in exc.value.errors[0]


def test_unknown_user(db, container, make_slot, future):
    slot = make_slot(future)
    with pytest.raises(NotFound):
        container.orders.create_order(_payload(999, slot_id=slot.id))
    db.refresh(slot)
    assert slot.current_usage == 0


def test_persistence_failure_releases_reservation(db, container, make_user, make_slot, future, monkeypatch):
    user = make_user()
    slot = make_slot(future)
    real_allocate = container.allocator.allocate

    def allocate_then_fail(session, requested, now=None):
        real_allocate(session, requested, now)
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(container.allocator, "allocate", allocate_then_fail)
    with pytest.raises(InternalError) as exc:
        container.orders.create_order(_payload(user.id, slot_id=slot.id))
    assert exc.value.message == "Internal server error"

    db.refresh(slot)
    assert slot.current_usage == 0
    assert db.execute(select(Order)).scalars().all() == []


def test_side_effect_failure_does_not_fail_order(db, container, make_user, monkeypatch):
    def broken(*a, **kw):
        raise RuntimeError("mail relay down")
    monkeypatch.setattr(container.notifier, "notify_user", broken)

    user = make_user()
    result = container.orders.create_order(_payload(user.id))
    assert db.get(Order, result.order.id) is not None


def test_risky_order_is_screened_after_commit(db, container, make_user):
    user = make_user()
    items = [("SKU001", 100), ("SKU002", 50), ("SKU004", 10)]
    result = container.orders.create_order(_payload(user.id, items=items))
    assert result.order.total_amount == Decimal("1864.00")

    alert = db.execute(select(RiskAlert)).scalar_one()
    assert alert.order_id == result.order.id
    assert alert.risk_type == "high_risk"
    assert alert.top_rule == "High Value Order"


def test_get_and_list(container, make_user):
    user = make_user()
    first = container.orders.create_order(_payload(user.id)).order
    second = container.orders.create_order(_payload(user.id)).order

    assert container.orders.get_order(first.id).id == first.id
    assert [o.id for o in container.orders.list_user_orders(user.id)] == [second.id, first.id]
    assert container.orders.list_user_orders(user.id + 1) == []
    with pytest.raises(NotFound):
        container.orders.get_order(424242)


def test_cancel_releases_slot(db, container, make_user, make_slot, future):
    user = make_user()
    slot = make_slot(future, capacity=2)
    order = container.orders.create_order(_payload(user.id)).order

    out = container.orders.cancel_order(order.id, "changed my mind")
    assert out.status == "cancelled"
    assert out.notes == "Cancellation reason: changed my mind"
    db.refresh(slot)
    assert slot.current_usage == 0


def test_refund_releases_slot_and_tells_admin(db, container, make_user, make_slot, future):
    user = make_user()
    slot = make_slot(future)
    order = container.orders.create_order(_payload(user.id, items=[("SKU003", 2)])).order
    container.orders.update_status(order.id, "confirmed")

    out = container.orders.refund_order(order.id, "damaged")
    assert out.status == "refunded"
    assert out.notes == "Refund reason: damaged"
    db.refresh(slot)
    assert slot.current_usage == 0

    admin = db.execute(select(Notification).where(Notification.type == "admin:refund_processed")).scalar_one()
    assert "$11.98" in admin.content
    user_note = db.execute(select(Notification).where(Notification.type == "order_refunded")).scalar_one()
    assert user_note.content.endswith("damaged")


def test_status_transitions(db, container, make_user):
    user = make_user()
    order = container.orders.create_order(_payload(user.id)).order
    for status in ("confirmed", "processing", "shipped", "delivered"):
        assert container.orders.update_status(order.id, status).status == status

    with pytest.raises(InvalidStatusTransition):
        container.orders.cancel_order(order.id, "too late")
    with pytest.raises(InvalidStatusTransition):
        container.orders.update_status(order.id, "lost")
    with pytest.raises(NotFound):
        container.orders.update_status(999, "confirmed")

    assert db.get(Order, order.id).status == "delivered"


def test_skipping_ahead_is_rejected(container, make_user):
    user = make_user()
    order = container.orders.create_order(_payload(user.id)).order
    with pytest.raises(InvalidStatusTransition):
        container.orders.update_status(order.id, "shipped")


def test_release_never_goes_negative(db, container, make_user, make_slot, future):
    user = make_user()
    slot = make_slot(future)
    order = container.orders.create_order(_payload(user.id)).order
    db.refresh(slot)
    assert slot.current_usage == 1
    slot.current_usage = 0
    db.commit()

    container.orders.cancel_order(order.id, "ops reset usage")
    db.refresh(slot)
    assert slot.current_usage == 0


def test_slot_usage_matches_live_orders(db, container, make_user, make_slot, future):
    user = make_user()
    slot = make_slot(future, capacity=3)
    orders = [container.orders.create_order(_payload(user.id)).order for _ in range(4)]
    container.orders.cancel_order(orders[0].id, "dup")

    db.refresh(slot)
    live = db.execute(
        select(Order).where(Order.delivery_slot_id == slot.id, Order.status.not_in(["cancelled", "refunded"]))
    ).scalars().all()
    assert slot.current_usage == len(live) == 2
    assert orders[3].delivery_slot_id is None
    assert db.get(DeliverySlot, slot.id).current_usage <= slot.max_capacity


def test_unpriced_sku_is_rejected(db, session_factory, make_user):
    catalog = default_catalog()
    catalog.add(Product("FREEBIE", Decimal("0"), 10))
    c = build_container(Settings(), session_factory=session_factory, catalog=catalog)

    with pytest.raises(ValidationError) as exc:
        c.orders.create_order(_payload(make_user().id, items=[("FREEBIE", 1)]))
    assert exc.value.message == "No valid price for SKU FREEBIE"
    assert db.execute(select(Order)).scalars().all() == []


def test_overlapping_cancels_release_slot_once(db, container, make_user, make_slot, future, monkeypatch):
    user = make_user()
    slot = make_slot(future, capacity=5, usage=1)
    order = container.orders.create_order(_payload(user.id)).order
    db.refresh(slot)
    assert slot.current_usage == 2

    real_note = order_service._append_note
    interleaved = []

    def cancel_in_between(notes, line):
        # the first cancel has read status "pending"; a second cancel commits before it writes
        if not interleaved:
            interleaved.append(line)
            container.orders.cancel_order(order.id, "second request")
        return real_note(notes, line)

    monkeypatch.setattr(order_service, "_append_note", cancel_in_between)
    with pytest.raises(InvalidStatusTransition):
        container.orders.cancel_order(order.id, "first request")

    db.refresh(slot)
    assert slot.current_usage == 1
    stored = db.get(Order, order.id)
    db.refresh(stored)
    assert stored.status == "cancelled"
    assert stored.notes == "Cancellation reason: second request"


def test_read_back_failure_after_commit(db, container, make_user, monkeypatch):
    def unreadable(session, order_id):
        raise SQLAlchemyError("connection reset")
    monkeypatch.setattr(container.orders, "_load", unreadable)

    user = make_user()
    with pytest.raises(InternalError):
        container.orders.create_order(_payload(user.id))

    stored = db.execute(select(Order)).scalar_one()
    note = db.execute(select(Notification)).scalar_one()
    assert note.order_id == stored.id

    with pytest.raises(InternalError):
        container.orders.update_status(stored.id, "confirmed")
    db.refresh(stored)
    assert stored.status == "confirmed"


def test_unknown_discount_type_is_internal_error(db, session_factory, make_user):
    catalog = default_catalog()
    catalog.add(Product("BOGO", Decimal("4.00"), 10, discount=DiscountRule("bogo", Decimal("1"))))
    c = build_container(Settings(), session_factory=session_factory, catalog=catalog)

    with pytest.raises(InternalError) as exc:
        c.orders.create_order(_payload(make_user().id, items=[("BOGO", 2)]))
    assert exc.value.message == "Internal server error"
    assert db.execute(select(Order)).scalars().all() == []
