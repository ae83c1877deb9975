# scoring.py
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..errors import NotFound, ValidationError
from ..models import Order, RiskAlert, ALERT_STATUSES
from ..notifications.notify import NotificationService
from ..rules.ruleset import DEFAULT_RULES, RiskRule, RuleContext, RuleResult, SlotSelectionContext
from ..utils.clock import utcnow
from ..utils.logging import get_logger

log = get_logger("scoring")

# -----------------------------
# Tunables
# -----------------------------
THRESHOLDS = {
    "high_risk": 0.9,    # >= 0.9 → high_risk
    "medium_risk": 0.7,  # >= 0.7 → medium_risk, else low_risk
}
ADMIN_NOTIFY_SCORE = THRESHOLDS["medium_risk"]


def category_for(score: float) -> str:
    if score >= THRESHOLDS["high_risk"]:
        return "high_risk"
    if score >= THRESHOLDS["medium_risk"]:
        return "medium_risk"
    return "low_risk"


@dataclass
class RiskAssessment:
    score: float = 0.0
    top_rule: Optional[str] = None
    evidence: List[str] = field(default_factory=list)
    results: List[Tuple[RiskRule, RuleResult]] = field(default_factory=list)

    @property
    def category(self) -> Optional[str]:
        return category_for(self.score) if self.score > 0 else None

    @property
    def details(self) -> str:
        return "\n".join(self.evidence)

    @property
    def triggered(self) -> List[str]:
        return [rule.name for rule, res in self.results if res.triggered]


class RiskEngine:
    def __init__(self, notifier: Optional[NotificationService] = None,
                 rules: Sequence[RiskRule] = DEFAULT_RULES):
        self.notifier = notifier
        self.rules = list(rules)

    def assess(self, order: Order, context: Optional[RuleContext] = None) -> RiskAssessment:
        """Max of the triggered rule scores; evidence lists every triggered rule."""
        ctx = context or RuleContext()
        out = RiskAssessment()
        for rule in self.rules:
            res = rule.evaluate(order, ctx)
            out.results.append((rule, res))
            if not res.triggered:
                continue
            out.evidence.append(f"[{rule.name}] {res.evidence}")
            if res.score > out.score:
                out.score = res.score
                out.top_rule = rule.name
        return out

    def evaluate_order_risk(self, db: Session, order_id: int,
                            slot_selection: Optional[SlotSelectionContext] = None,
                            now: Optional[datetime] = None) -> Optional[RiskAlert]:
        order = db.execute(
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.user), selectinload(Order.delivery_slot), selectinload(Order.items))
        ).scalar_one_or_none()
        if order is None:
            raise NotFound(f"Order with ID {order_id} not found")

        assessment = self.assess(order, RuleContext(now=now or utcnow(), slot_selection=slot_selection))
        if assessment.score == 0:
            log.info("Order %s: no risk rules triggered", order_id)
            return None

        alert = RiskAlert(
            order_id=order_id,
            risk_type=assessment.category,
            risk_score=assessment.score,
            top_rule=assessment.top_rule,
            details=assessment.details,
            status="pending",
        )
        try:
            db.add(alert)
            db.commit()
        except Exception:
            db.rollback()
            raise
        log.info("Order %s scored %s (%s, top rule: %s)",
                 order_id, assessment.score, assessment.category, assessment.top_rule)

        if assessment.score >= ADMIN_NOTIFY_SCORE and self.notifier is not None:
            try:
                self.notifier.notify_admin(db, "high_risk_order", {
                    "order_id": order_id,
                    "risk_score": assessment.score,
                    "risk_type": assessment.top_rule,
                    "details": ", ".join(assessment.evidence),
                })
            except Exception:
                db.rollback()
                log.exception("Admin notification failed for risky order %s", order_id)
        return alert

    def scan_recent_orders(self, db: Session, since_hours: int = 24,
                           now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        since = now - timedelta(hours=since_hours)
        order_ids = db.execute(
            select(Order.id).where(Order.created_at >= since).order_by(Order.id)
        ).scalars().all()
        log.info("Scanning %d orders for risk...", len(order_ids))

        created = 0
        for order_id in order_ids:
            if self.evaluate_order_risk(db, order_id, now=now) is not None:
                created += 1
        log.info("Created %d risk alerts", created)
        return created

    # ---------- review workflow ----------
    @staticmethod
    def list_alerts(db: Session, status: Optional[str] = None,
                    min_score: Optional[float] = None) -> List[RiskAlert]:
        stmt = select(RiskAlert)
        if status:
            stmt = stmt.where(RiskAlert.status == status)
        if min_score is not None:
            stmt = stmt.where(RiskAlert.risk_score >= min_score)
        stmt = stmt.order_by(RiskAlert.risk_score.desc(), RiskAlert.created_at.desc(), RiskAlert.id.desc())
        return list(db.execute(stmt).scalars().all())

    @staticmethod
    def review_alert(db: Session, alert_id: int, status: str, reviewer: str,
                     now: Optional[datetime] = None) -> RiskAlert:
        if status not in ALERT_STATUSES or status == "pending":
            raise ValidationError(f"Invalid review status '{status}'")
        alert = db.get(RiskAlert, alert_id)
        if alert is None:
            raise NotFound(f"Risk alert with ID {alert_id} not found")
        alert.status = status
        alert.reviewed_by = reviewer
        alert.reviewed_at = now or utcnow()
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        return alert
