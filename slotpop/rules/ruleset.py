# slotpop/rules/ruleset.py
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from pydantic import BaseModel

from ..models import Order, DeliverySlot
from ..utils.clock import utcnow, to_local, is_weekend

# -----------------------------
# Tunables
# -----------------------------
HIGH_VALUE_RISKY = Decimal("1000")
HIGH_VALUE_SUSPICIOUS = Decimal("500")
SELECTED_SLOT_HIGH_VALUE = Decimal("300")

EVENING_HOUR = 18
LATE_NIGHT_START, LATE_NIGHT_END = 22, 6
SHORT_NOTICE_HOURS = 2


class SlotSelectionContext(BaseModel):
    was_slot_requested: bool = False
    requested_slot_id: Optional[int] = None
    slot_request_fulfilled: bool = False
    fallback_reason: Optional[str] = None


@dataclass
class RuleContext:
    now: datetime = field(default_factory=utcnow)
    slot_selection: Optional[SlotSelectionContext] = None


@dataclass(frozen=True)
class RuleResult:
    score: float = 0.0
    triggered: bool = False
    evidence: str = ""


UNTRIGGERED = RuleResult()


@dataclass(frozen=True)
class RiskRule:
    code: str
    name: str
    description: str
    evaluate: Callable[[Order, RuleContext], RuleResult]


def _hours_between(later: datetime, earlier: datetime) -> float:
    return (later - earlier).total_seconds() / 3600


def _amount(order: Order) -> Decimal:
    return Decimal(str(order.total_amount or 0))


def _high_demand(slot: DeliverySlot, pct: int) -> bool:
    return slot.current_usage * 100 >= slot.max_capacity * pct

# -----------------------------
# Rules
# -----------------------------
def high_value(order: Order, ctx: RuleContext) -> RuleResult:
    total = _amount(order)
    if total >= HIGH_VALUE_RISKY:
        return RuleResult(0.9, True, f"Order amount ${total} exceeds high risk threshold of ${HIGH_VALUE_RISKY}")
    if total >= HIGH_VALUE_SUSPICIOUS:
        return RuleResult(0.6, True, f"Order amount ${total} exceeds suspicious threshold of ${HIGH_VALUE_SUSPICIOUS}")
    return UNTRIGGERED


def weekend_delivery(order: Order, ctx: RuleContext) -> RuleResult:
    slot = order.delivery_slot
    if slot is None:
        return UNTRIGGERED

    weekend = is_weekend(slot.start_time)
    evening = to_local(slot.start_time).hour >= EVENING_HOUR
    high_demand = _high_demand(slot, 80)

    if weekend and evening and high_demand:
        return RuleResult(0.8, True, "Order scheduled for weekend evening delivery in a high-demand slot")
    if weekend and evening:
        return RuleResult(0.6, True, "Order scheduled for weekend evening delivery")
    if weekend and high_demand:
        return RuleResult(0.5, True, "Order scheduled for weekend delivery in a high-demand slot")
    if weekend:
        return RuleResult(0.3, True, "Order scheduled for weekend delivery")
    if evening and high_demand:
        return RuleResult(0.4, True, "Order scheduled for evening delivery in a high-demand slot")
    return UNTRIGGERED


def peak_slot(order: Order, ctx: RuleContext) -> RuleResult:
    slot = order.delivery_slot
    if slot is None:
        return UNTRIGGERED
    pct = round(slot.usage_percentage)
    if _high_demand(slot, 90):
        return RuleResult(0.7, True, f"Order scheduled for extremely high-demand slot ({pct}% full)")
    if _high_demand(slot, 75):
        return RuleResult(0.4, True, f"Order scheduled for high-demand slot ({pct}% full)")
    return UNTRIGGERED


def new_account(order: Order, ctx: RuleContext) -> RuleResult:
    user = order.user
    if user is None or user.created_at is None:
        return UNTRIGGERED
    age = _hours_between(ctx.now, user.created_at)
    if age < 1:
        return RuleResult(0.8, True, "New account created less than 1 hour ago")
    if age < 24:
        return RuleResult(0.5, True, f"New account created {int(age)} hours ago")
    if age < 72:
        return RuleResult(0.2, True, "New account created less than 3 days ago")
    return UNTRIGGERED


def user_selected_slot(order: Order, ctx: RuleContext) -> RuleResult:
    sel = ctx.slot_selection
    if sel is None or not sel.was_slot_requested:
        return UNTRIGGERED

    score = 0.0
    reasons: List[str] = []
    slot = order.delivery_slot

    if slot is not None:
        notice = _hours_between(slot.start_time, ctx.now)
        if notice < SHORT_NOTICE_HOURS:
            score += 0.4; reasons.append(f"short-notice delivery ({notice:.1f}h until start)")
        hour = to_local(slot.start_time).hour
        if hour >= LATE_NIGHT_START or hour < LATE_NIGHT_END:
            score += 0.3; reasons.append("late-night delivery window")

    if _amount(order) > SELECTED_SLOT_HIGH_VALUE:
        score += 0.2; reasons.append("high-value order with explicit slot selection")

    if not sel.slot_request_fulfilled:
        score += 0.1; reasons.append("requested slot unavailable, fallback assigned")

    user = order.user
    if user is not None and user.created_at is not None and _hours_between(ctx.now, user.created_at) < 24:
        score += 0.3; reasons.append("new account with explicit slot selection")

    score = round(min(score, 1.0), 2)
    if score <= 0.3:
        return RuleResult(score, False, "")
    return RuleResult(score, True, "Explicit slot selection anomalies: " + "; ".join(reasons))


HighValueRule = RiskRule("high_value", "High Value Order", "Detects unusually high value orders", high_value)
WeekendDeliveryRule = RiskRule(
    "weekend_delivery", "Weekend Delivery",
    "Detects weekend and evening deliveries in busy slots", weekend_delivery,
)
PeakSlotRule = RiskRule("peak_slot", "Peak Slot", "Detects orders scheduled for high-demand slots", peak_slot)
NewAccountRule = RiskRule("new_account", "New Account", "Detects orders placed from very new accounts", new_account)
UserSelectedSlotRule = RiskRule(
    "user_selected_slot", "User Selected Slot",
    "Detects anomalies in explicitly requested delivery slots", user_selected_slot,
)

DEFAULT_RULES: List[RiskRule] = [
    HighValueRule,
    WeekendDeliveryRule,
    PeakSlotRule,
    NewAccountRule,
    UserSelectedSlotRule,
]
