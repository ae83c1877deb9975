# slotpop/notifications/pubsub.py
from __future__ import annotations
import json
from collections import defaultdict
from typing import Any, Callable, Dict, List

from ..utils.logging import get_logger

log = get_logger("pubsub")

Subscriber = Callable[[Dict[str, Any]], None]


class PubSub:
    """In-process fan-out from notification writers to delivery channels."""

    def __init__(self):
        self._subscribers: Dict[str, List[Subscriber]] = defaultdict(list)

    def subscribe(self, topic: str, callback: Subscriber) -> Callable[[], None]:
        self._subscribers[topic].append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers[topic]:
                self._subscribers[topic].remove(callback)
        return unsubscribe

    def publish(self, topic: str, data: Dict[str, Any]) -> int:
        """Deliver to every subscriber; one failing subscriber does not stop the rest."""
        subscribers = list(self._subscribers.get(topic, ()))
        if not subscribers:
            log.debug("No subscribers for topic %s", topic)
            return 0
        log.debug("Publishing to %s: %s", topic, data)
        delivered = 0
        for callback in subscribers:
            try:
                callback(data)
                delivered += 1
            except Exception:
                log.exception("Subscriber for topic %s failed", topic)
        return delivered

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    def clear(self, topic: str) -> None:
        self._subscribers.pop(topic, None)


# ---------- delivery channels ----------
def log_email(data: Dict[str, Any]) -> None:
    log.info("Would send email to user %s: %s", data.get("user_id"), data.get("title"))


def log_dashboard(data: Dict[str, Any]) -> None:
    log.info("Would alert admin dashboard: %s", data.get("title"))


def redis_forwarder(client, channel: str) -> Subscriber:
    """Forward payloads to a Redis channel for out-of-process delivery workers."""
    def forward(data: Dict[str, Any]) -> None:
        client.publish(channel, json.dumps(data, default=str))
    return forward
