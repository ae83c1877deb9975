from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..container import Container, get_container
from ..models import DeliverySlot
from ..schemas import AlertReviewInput, RiskAlertOut, SlotOut
from .deps import get_db

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/slots")
def list_slots(db: Session = Depends(get_db),
               start_date: datetime | None = Query(None),
               end_date: datetime | None = Query(None),
               show_inactive: bool = False):
    stmt = select(DeliverySlot).order_by(DeliverySlot.start_time)
    if not show_inactive:
        stmt = stmt.where(DeliverySlot.is_active.is_(True))
    if start_date:
        stmt = stmt.where(DeliverySlot.start_time >= start_date)
    if end_date:
        stmt = stmt.where(DeliverySlot.end_time <= end_date)
    slots = db.execute(stmt).scalars().all()
    return {"success": True, "data": {
        "total_count": len(slots),
        "slots": [SlotOut.model_validate(s).model_dump(mode="json") for s in slots],
    }}


@router.get("/risk-alerts")
def list_risk_alerts(db: Session = Depends(get_db),
                     c: Container = Depends(get_container),
                     status: str | None = Query(None),
                     min_score: float | None = Query(None)):
    alerts = c.risk.list_alerts(db, status=status, min_score=min_score)
    return {"success": True, "data": {
        "total_count": len(alerts),
        "alerts": [RiskAlertOut.model_validate(a).model_dump(mode="json") for a in alerts],
    }}


@router.post("/risk-alerts/scan")
def scan_risk(db: Session = Depends(get_db), c: Container = Depends(get_container)):
    created = c.risk.scan_recent_orders(db, c.settings.RISK_SCAN_WINDOW_HOURS)
    return {"success": True, "message": f"Scan completed. Created {created} risk alerts.",
            "data": {"alert_count": created}}


@router.patch("/risk-alerts/{alert_id}")
def review_risk_alert(alert_id: int, payload: AlertReviewInput,
                      db: Session = Depends(get_db), c: Container = Depends(get_container)):
    alert = c.risk.review_alert(db, alert_id, payload.status, payload.reviewed_by)
    return {"success": True, "data": RiskAlertOut.model_validate(alert).model_dump(mode="json")}
