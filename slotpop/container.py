# slotpop/container.py
from __future__ import annotations
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from sqlalchemy.orm import sessionmaker

from .config import Settings, settings as default_settings
from .database import get_sessionmaker
from .delivery.allocator import SlotAllocator
from .delivery.strategies import default_registry
from .notifications.notify import NotificationService
from .notifications.pubsub import PubSub, log_email, log_dashboard, redis_forwarder
from .services.catalog import Catalog, default_catalog
from .services.inventory import CatalogInventory
from .services.orders import OrderService
from .services.pricing import CatalogPricing
from .services.scoring import RiskEngine
from .services.side_effects import SideEffects, InlineSideEffects, CelerySideEffects
from .utils.logging import get_logger

log = get_logger("container")


@dataclass
class Container:
    settings: Settings
    session_factory: sessionmaker
    bus: PubSub
    allocator: SlotAllocator
    notifier: NotificationService
    risk: RiskEngine
    side_effects: SideEffects
    orders: OrderService


def build_container(cfg: Settings = default_settings,
                    session_factory: Optional[sessionmaker] = None,
                    catalog: Optional[Catalog] = None,
                    side_effects: Optional[SideEffects] = None) -> Container:
    session_factory = session_factory or get_sessionmaker()
    catalog = catalog or default_catalog()

    bus = PubSub()
    bus.subscribe("user:notification", log_email)
    bus.subscribe("admin:notification", log_dashboard)
    if cfg.NOTIFY_REDIS_CHANNEL:
        import redis
        client = redis.Redis.from_url(cfg.REDIS_URL)
        bus.subscribe("user:notification", redis_forwarder(client, cfg.NOTIFY_REDIS_CHANNEL))
        bus.subscribe("admin:notification", redis_forwarder(client, cfg.NOTIFY_REDIS_CHANNEL))

    allocator = SlotAllocator(default_registry(cfg.DEFAULT_SLOT_STRATEGY), cfg.SLOT_RESERVE_ATTEMPTS)
    notifier = NotificationService(bus, admin_user_id=cfg.ADMIN_USER_ID)
    risk = RiskEngine(notifier)

    if side_effects is None:
        if cfg.SIDE_EFFECTS_MODE == "celery":
            side_effects = CelerySideEffects()
        else:
            side_effects = InlineSideEffects(session_factory, notifier, risk)

    orders = OrderService(
        session_factory, allocator, CatalogInventory(catalog), CatalogPricing(catalog), side_effects,
    )
    log.debug("Container built (side effects: %s)", type(side_effects).__name__)
    return Container(cfg, session_factory, bus, allocator, notifier, risk, side_effects, orders)


@lru_cache(maxsize=1)
def get_container() -> Container:
    return build_container()
