# slotpop/delivery/strategies.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from sqlalchemy import Select
from sqlalchemy.orm import Session

from ..models import DeliverySlot
from ..utils.clock import is_weekend


class SlotStrategy(Protocol):
    """Proposes one slot out of the candidate set, or None.

    ``candidates`` already holds only active, not-yet-started slots with spare
    capacity, ordered by start time. Strategies never mutate usage.
    """
    name: str

    def propose(self, db: Session, candidates: Select) -> Optional[DeliverySlot]: ...


@dataclass(frozen=True)
class EarliestAvailable:
    name: str = "earliest"

    def propose(self, db: Session, candidates: Select) -> Optional[DeliverySlot]:
        return db.execute(candidates.limit(1)).scalars().first()


@dataclass(frozen=True)
class WeekendPriority:
    name: str = "weekend"

    def propose(self, db: Session, candidates: Select) -> Optional[DeliverySlot]:
        slots = db.execute(candidates).scalars().all()
        for slot in slots:
            if is_weekend(slot.start_time):
                return slot
        # no weekend slot: earliest available
        return slots[0] if slots else None


class SlotStrategyRegistry:
    def __init__(self, default: str = "earliest"):
        self._strategies: Dict[str, SlotStrategy] = {}
        self._default = default

    def register(self, strategy: SlotStrategy) -> None:
        self._strategies[strategy.name] = strategy

    def get(self, name: str) -> SlotStrategy:
        try:
            return self._strategies[name]
        except KeyError:
            raise LookupError(f"Unknown slot strategy {name!r}") from None

    def default(self) -> SlotStrategy:
        return self.get(self._default)

    def names(self) -> list[str]:
        return sorted(self._strategies)


def default_registry(default: str = "earliest") -> SlotStrategyRegistry:
    registry = SlotStrategyRegistry(default=default)
    registry.register(EarliestAvailable())
    registry.register(WeekendPriority())
    return registry
