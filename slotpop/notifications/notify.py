# slotpop/notifications/notify.py
from __future__ import annotations
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..errors import NotFound
from ..models import Notification, Order, DeliverySlot
from ..utils.clock import to_local
from ..utils.logging import get_logger
from .pubsub import PubSub

log = get_logger("notifications")

USER_TEMPLATES: Dict[str, Dict[str, str]] = {
    "order_created": {
        "title": "Order Confirmation",
        "template": "Your order #{order_id} has been received and is being processed. {delivery_info}{slot_info}",
    },
    "order_confirmed": {
        "title": "Order Confirmed",
        "template": "Good news! Your order #{order_id} has been confirmed. {delivery_info}",
    },
    "order_shipped": {
        "title": "Order Shipped",
        "template": "Your order #{order_id} is on its way to you! {delivery_info}",
    },
    "order_delivered": {
        "title": "Order Delivered",
        "template": "Your order #{order_id} has been delivered. Enjoy!",
    },
    "order_cancelled": {
        "title": "Order Cancelled",
        "template": "Your order #{order_id} has been cancelled. {reason}",
    },
    "order_refunded": {
        "title": "Order Refunded",
        "template": "Your refund for order #{order_id} has been processed. {reason}",
    },
}

ADMIN_TEMPLATES: Dict[str, Dict[str, str]] = {
    "high_risk_order": {
        "title": "High Risk Order Alert",
        "template": "Order #{order_id} has been flagged as high risk (Score: {risk_score}). Reason: {risk_type}",
    },
    "refund_processed": {
        "title": "Refund Processed",
        "template": "A refund of ${amount} has been processed for order #{order_id}. Reason: {reason}",
    },
    "slot_capacity_warning": {
        "title": "Delivery Slot Capacity Warning",
        "template": "Delivery slot '{slot_id}' ({slot_time}) is near capacity ({current_usage}/{max_capacity})",
    },
}


def render(template: str, data: Dict[str, Any]) -> str:
    # unknown placeholders are left as-is
    out = template
    for key, value in data.items():
        out = out.replace("{" + key + "}", "" if value is None else str(value))
    return out


def _clock(dt) -> str:
    hour = dt.hour % 12 or 12
    return f"{hour}:{dt.minute:02d} {'PM' if dt.hour >= 12 else 'AM'}"


def format_delivery_time(slot: Optional[DeliverySlot]) -> str:
    if slot is None:
        return "Delivery details will be provided soon."
    start, end = to_local(slot.start_time), to_local(slot.end_time)
    return f"Scheduled for {start.strftime('%A')} {_clock(start)} - {_clock(end)}"


def format_slot_selection(data: Dict[str, Any]) -> str:
    if not data.get("slot_was_requested"):
        return ""
    if data.get("slot_request_fulfilled"):
        return " Your requested delivery time has been confirmed."
    reason = data.get("fallback_reason") or "Requested slot was not available"
    return f" Note: {reason}. We've assigned you the next best available time slot."


class NotificationService:
    def __init__(self, bus: PubSub, admin_user_id: int = 1):
        self.bus = bus
        self.admin_user_id = admin_user_id

    def notify_user(self, db: Session, order_id: int, template_key: str, user_id: int,
                    data: Optional[Dict[str, Any]] = None) -> Notification:
        template = USER_TEMPLATES.get(template_key)
        if template is None:
            raise KeyError(f"Notification template for type '{template_key}' not found")
        order = db.get(Order, order_id)
        if order is None:
            raise NotFound(f"Order with ID {order_id} not found")

        extra = dict(data or {})
        message_data = {
            "order_id": order_id,
            "delivery_info": format_delivery_time(order.delivery_slot),
            "slot_info": format_slot_selection(extra),
            "reason": "",
            **extra,
        }
        content = render(template["template"], message_data)

        notification = Notification(
            user_id=user_id, order_id=order_id, type=template_key,
            title=template["title"], content=content, is_read=False,
        )
        db.add(notification)
        db.commit()

        self.bus.publish("user:notification", {
            "user_id": user_id,
            "order_id": order_id,
            "type": template_key,
            "title": template["title"],
            "content": content,
            "notification_id": notification.id,
        })
        return notification

    def notify_admin(self, db: Session, template_key: str, data: Dict[str, Any]) -> Notification:
        template = ADMIN_TEMPLATES.get(template_key)
        if template is None:
            raise KeyError(f"Admin notification template for type '{template_key}' not found")
        content = render(template["template"], data)

        notification = Notification(
            user_id=self.admin_user_id, order_id=data.get("order_id"), type=f"admin:{template_key}",
            title=template["title"], content=content, is_read=False,
        )
        db.add(notification)
        db.commit()

        self.bus.publish("admin:notification", {
            "type": template_key,
            "title": template["title"],
            "content": content,
            "data": data,
            "notification_id": notification.id,
        })
        return notification
