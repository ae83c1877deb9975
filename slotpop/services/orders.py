# slotpop/services/orders.py
from __future__ import annotations
from datetime import datetime
from typing import Callable, Dict, FrozenSet, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from ..delivery.allocator import SlotAllocator, SlotAssignment
from ..errors import SlotPopError, NotFound, InventoryError, InternalError, InvalidStatusTransition
from ..models import Order, OrderItem, User
from ..rules.ruleset import SlotSelectionContext
from ..schemas import CreateOrderInput, OrderOut, OrderResult, SlotAssignmentOut
from ..utils.clock import utcnow
from ..utils.logging import get_logger
from .inventory import InventoryChecker
from .pricing import PriceCalculator
from .side_effects import SideEffects

log = get_logger("orders")

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"confirmed", "cancelled", "refunded"}),
    "confirmed": frozenset({"processing", "cancelled", "refunded"}),
    "processing": frozenset({"shipped", "cancelled", "refunded"}),
    "shipped": frozenset({"delivered", "cancelled", "refunded"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
    "refunded": frozenset(),
}
RELEASES_SLOT = frozenset({"cancelled", "refunded"})
NOTE_LABELS = {"cancelled": "Cancellation reason", "refunded": "Refund reason"}
STATUS_TEMPLATES = {
    "confirmed": "order_confirmed",
    "shipped": "order_shipped",
    "delivered": "order_delivered",
    "cancelled": "order_cancelled",
    "refunded": "order_refunded",
}


def _append_note(notes: Optional[str], line: str) -> str:
    return f"{notes}\n{line}" if notes else line


class OrderService:
    """Turns a fulfillment request into a persisted order with a consistent slot reservation.

    Everything up to the commit happens on one session; reservations made by
    the allocator are rolled back with the order if any step fails. User
    notification and risk evaluation are dispatched only after the commit.
    """

    def __init__(self, session_factory: sessionmaker, allocator: SlotAllocator,
                 inventory: InventoryChecker, pricing: PriceCalculator, side_effects: SideEffects,
                 clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.allocator = allocator
        self.inventory = inventory
        self.pricing = pricing
        self.side_effects = side_effects
        self.clock = clock

    # ---------- create ----------
    def create_order(self, payload: CreateOrderInput) -> OrderResult:
        now = self.clock()
        with self.session_factory() as db:
            try:
                check = self.inventory.check(payload.items)
                if not check.valid:
                    raise InventoryError(check.errors)

                user = db.get(User, payload.user_id)
                if user is None:
                    raise NotFound(f"User with ID {payload.user_id} not found")

                price = self.pricing.price(payload.items)

                assignment = self.allocator.allocate(db, payload.delivery_slot_id, now)

                order = Order(
                    user_id=user.id,
                    address_id=payload.address_id,
                    delivery_slot_id=assignment.assigned_slot_id,
                    total_amount=price.total,
                    status="pending",
                )
                db.add(order)
                db.flush()

                db.add_all([
                    OrderItem(
                        order_id=order.id,
                        sku_id=item.sku_id,
                        quantity=item.qty,
                        unit_price=price.item_prices[item.sku_id],
                        discount=price.item_discounts[item.sku_id],
                        subtotal=price.line_subtotal(item.sku_id, item.qty),
                    )
                    for item in payload.items
                ])
                db.commit()
            except SlotPopError:
                db.rollback()
                raise
            except SQLAlchemyError as e:
                db.rollback()
                log.exception("Order persistence failed for user %s", payload.user_id)
                raise InternalError() from e

            order_id, user_id = order.id, user.id
            saved = self._reload(db, order_id)

        log.info("Order %s created for user %s (slot=%s, requested=%s, fallback=%s)",
                 order_id, user_id, assignment.assigned_slot_id,
                 assignment.requested_slot_id, assignment.was_fallback)

        self.side_effects.notify_user(order_id, "order_created", user_id, {
            "slot_was_requested": assignment.was_requested,
            "slot_request_fulfilled": assignment.request_fulfilled,
            "fallback_reason": assignment.fallback_reason,
        })
        self.side_effects.evaluate_risk(order_id, SlotSelectionContext(
            was_slot_requested=assignment.was_requested,
            requested_slot_id=assignment.requested_slot_id,
            slot_request_fulfilled=assignment.request_fulfilled,
            fallback_reason=assignment.fallback_reason,
        ))
        if saved is None:
            raise InternalError()
        return OrderResult(order=saved, slot_assignment=self._summary(assignment))

    # ---------- reads ----------
    def get_order(self, order_id: int) -> OrderOut:
        with self.session_factory() as db:
            order = self._load(db, order_id)
            if order is None:
                raise NotFound(f"Order with ID {order_id} not found")
            return OrderOut.model_validate(order)

    def list_user_orders(self, user_id: int) -> List[OrderOut]:
        with self.session_factory() as db:
            rows = db.execute(
                select(Order)
                .where(Order.user_id == user_id)
                .options(selectinload(Order.items), selectinload(Order.delivery_slot))
                .order_by(Order.created_at.desc(), Order.id.desc())
            ).scalars().all()
            return [OrderOut.model_validate(o) for o in rows]

    # ---------- lifecycle ----------
    def update_status(self, order_id: int, status: str, reason: Optional[str] = None) -> OrderOut:
        if status not in TRANSITIONS:
            raise InvalidStatusTransition(f"Unknown order status '{status}'")

        with self.session_factory() as db:
            try:
                order = db.get(Order, order_id)
                if order is None:
                    raise NotFound(f"Order with ID {order_id} not found")
                current = order.status
                if status not in TRANSITIONS[current]:
                    raise InvalidStatusTransition(f"Cannot move order {order_id} from {current} to {status}")

                notes = order.notes
                if reason:
                    label = NOTE_LABELS.get(status, "Status note")
                    notes = _append_note(notes, f"{label}: {reason}")

                # compare-and-set on the status read above; the slot is released only by the winner
                moved = db.execute(
                    update(Order)
                    .where(Order.id == order_id, Order.status == current)
                    .values(status=status, notes=notes, updated_at=self.clock())
                    .execution_options(synchronize_session=False)
                )
                if moved.rowcount != 1:
                    raise InvalidStatusTransition(
                        f"Order {order_id} is no longer {current}; it was updated concurrently"
                    )
                if status in RELEASES_SLOT and order.delivery_slot_id is not None:
                    self.allocator.release(db, order.delivery_slot_id)
                db.commit()
            except SlotPopError:
                db.rollback()
                raise
            except SQLAlchemyError as e:
                db.rollback()
                log.exception("Status update failed for order %s", order_id)
                raise InternalError() from e

            user_id, total = order.user_id, order.total_amount
            out = self._reload(db, order_id)

        log.info("Order %s moved to %s", order_id, status)
        template = STATUS_TEMPLATES.get(status)
        if template:
            data = {"reason": reason} if reason else {}
            self.side_effects.notify_user(order_id, template, user_id, data)
        if status == "refunded":
            self.side_effects.notify_admin("refund_processed", {
                "order_id": order_id, "reason": reason or "", "amount": total,
            })
        if out is None:
            raise InternalError()
        return out

    def cancel_order(self, order_id: int, reason: str) -> OrderOut:
        return self.update_status(order_id, "cancelled", reason)

    def refund_order(self, order_id: int, reason: str) -> OrderOut:
        return self.update_status(order_id, "refunded", reason)

    # ---------- helpers ----------
    @staticmethod
    def _load(db: Session, order_id: int) -> Optional[Order]:
        return db.execute(
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items), selectinload(Order.delivery_slot))
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _reload(self, db: Session, order_id: int) -> Optional[OrderOut]:
        # the write is already committed: a failed read-back is logged, side effects still run
        try:
            return OrderOut.model_validate(self._load(db, order_id))
        except SQLAlchemyError:
            log.exception("Order %s committed but could not be read back", order_id)
            return None

    @staticmethod
    def _summary(a: SlotAssignment) -> SlotAssignmentOut:
        return SlotAssignmentOut(
            requested=a.requested_slot_id,
            assigned=a.assigned_slot_id,
            was_requested=a.was_requested,
            was_fallback=a.was_fallback,
            fallback_reason=a.fallback_reason,
        )
