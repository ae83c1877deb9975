# slotpop/delivery/allocator.py
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update, Select
from sqlalchemy.orm import Session

from ..errors import (
    SlotError, SlotNotFound, SlotInactive, SlotFull, SlotExpired, CapacityExceeded,
)
from ..models import DeliverySlot
from ..utils.clock import utcnow
from ..utils.logging import get_logger
from .strategies import SlotStrategy, SlotStrategyRegistry

log = get_logger("delivery")


@dataclass
class SlotAssignment:
    requested_slot_id: Optional[int]
    assigned_slot_id: Optional[int]
    was_requested: bool
    was_fallback: bool
    fallback_reason: Optional[str] = None
    slot: Optional[DeliverySlot] = None

    @property
    def request_fulfilled(self) -> bool:
        return self.was_requested and not self.was_fallback


@dataclass
class SlotUsageStats:
    current_usage: int
    max_capacity: int
    available_capacity: int
    is_at_capacity: bool


class SlotAllocator:
    """Capacity bookkeeping for delivery slots.

    All methods run on the caller's session, so a reservation is committed or
    rolled back together with whatever else the caller writes.
    """

    def __init__(self, strategies: SlotStrategyRegistry, reserve_attempts: int = 3):
        self.strategies = strategies
        self.reserve_attempts = max(1, reserve_attempts)

    # ---------- queries ----------
    def candidates(self, now: datetime) -> Select:
        return (
            select(DeliverySlot)
            .where(
                DeliverySlot.is_active.is_(True),
                DeliverySlot.current_usage < DeliverySlot.max_capacity,
                DeliverySlot.start_time > now,
            )
            .order_by(DeliverySlot.start_time.asc(), DeliverySlot.id.asc())
        )

    def select_slot(self, db: Session, strategy: SlotStrategy | str | None = None,
                    now: datetime | None = None) -> Optional[DeliverySlot]:
        if strategy is None:
            strategy = self.strategies.default()
        elif isinstance(strategy, str):
            strategy = self.strategies.get(strategy)
        return strategy.propose(db, self.candidates(now or utcnow()))

    def validate_requested_slot(self, db: Session, slot_id: int,
                                now: datetime | None = None) -> DeliverySlot:
        # advisory only: reserve() re-checks capacity atomically
        slot = db.get(DeliverySlot, slot_id)
        if slot is None:
            raise SlotNotFound(slot_id)
        if not slot.is_active:
            raise SlotInactive(slot_id)
        if slot.current_usage >= slot.max_capacity:
            raise SlotFull(slot_id)
        if slot.start_time <= (now or utcnow()):
            raise SlotExpired(slot_id)
        return slot

    # ---------- mutations ----------
    def reserve(self, db: Session, slot_id: int) -> DeliverySlot:
        result = db.execute(
            update(DeliverySlot)
            .where(
                DeliverySlot.id == slot_id,
                DeliverySlot.current_usage < DeliverySlot.max_capacity,
            )
            .values(current_usage=DeliverySlot.current_usage + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            if self._load(db, slot_id) is None:
                raise SlotNotFound(slot_id)
            raise CapacityExceeded(slot_id)
        return self._load(db, slot_id)

    def release(self, db: Session, slot_id: int) -> DeliverySlot:
        result = db.execute(
            update(DeliverySlot)
            .where(DeliverySlot.id == slot_id, DeliverySlot.current_usage > 0)
            .values(current_usage=DeliverySlot.current_usage - 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        slot = self._load(db, slot_id)
        if slot is None:
            raise SlotNotFound(slot_id)
        if result.rowcount != 1:
            log.warning("Release on slot %s ignored: current usage is already 0", slot_id)
        return slot

    def usage_stats(self, db: Session, slot_id: int) -> SlotUsageStats:
        slot = self._load(db, slot_id)
        if slot is None:
            raise SlotNotFound(slot_id)
        return SlotUsageStats(
            current_usage=slot.current_usage,
            max_capacity=slot.max_capacity,
            available_capacity=slot.available_capacity,
            is_at_capacity=slot.is_full,
        )

    # ---------- allocation policy ----------
    def allocate(self, db: Session, requested_slot_id: Optional[int] = None,
                 now: datetime | None = None) -> SlotAssignment:
        now = now or utcnow()
        fallback_reason = None

        if requested_slot_id is not None:
            try:
                self.validate_requested_slot(db, requested_slot_id, now)
                slot = self.reserve(db, requested_slot_id)
                return SlotAssignment(
                    requested_slot_id=requested_slot_id,
                    assigned_slot_id=slot.id,
                    was_requested=True,
                    was_fallback=False,
                    slot=slot,
                )
            except SlotError as e:
                fallback_reason = e.message
                log.info("Requested slot %s unusable (%s); falling back to %s strategy",
                         requested_slot_id, type(e).__name__, self.strategies.default().name)

        slot = self._reserve_default(db, now)
        if slot is None:
            log.info("No delivery slot available; order proceeds without a slot")
        return SlotAssignment(
            requested_slot_id=requested_slot_id,
            assigned_slot_id=slot.id if slot else None,
            was_requested=requested_slot_id is not None,
            was_fallback=requested_slot_id is not None,
            fallback_reason=fallback_reason,
            slot=slot,
        )

    def _reserve_default(self, db: Session, now: datetime) -> Optional[DeliverySlot]:
        for attempt in range(self.reserve_attempts):
            candidate = self.select_slot(db, None, now)
            if candidate is None:
                return None
            try:
                return self.reserve(db, candidate.id)
            except CapacityExceeded:
                log.info("Slot %s filled before reservation (attempt %d/%d)",
                         candidate.id, attempt + 1, self.reserve_attempts)
        return None

    @staticmethod
    def _load(db: Session, slot_id: int) -> Optional[DeliverySlot]:
        return db.execute(
            select(DeliverySlot)
            .where(DeliverySlot.id == slot_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
