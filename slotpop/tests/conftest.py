# tests/conftest.py
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool

from slotpop.config import Settings
from slotpop.container import build_container
from slotpop.database import Base, make_engine, make_sessionmaker
from slotpop.models import DeliverySlot, Order, User
from slotpop.utils.clock import utcnow


@pytest.fixture
def engine():
    eng = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_sessionmaker(engine)


@pytest.fixture
def db(session_factory):
    with session_factory() as s:
        yield s


@pytest.fixture
def container(session_factory):
    return build_container(Settings(SIDE_EFFECTS_MODE="inline"), session_factory=session_factory)


@pytest.fixture
def make_user(db):
    def _make(created_at=None, **kw):
        user = User(email=kw.pop("email", "buyer@example.com"), name=kw.pop("name", "Buyer"),
                    created_at=created_at or utcnow() - timedelta(days=30), **kw)
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def make_slot(db):
    def _make(start, capacity=10, usage=0, active=True, hours=3):
        slot = DeliverySlot(start_time=start, end_time=start + timedelta(hours=hours),
                            max_capacity=capacity, current_usage=usage, is_active=active)
        db.add(slot)
        db.commit()
        return slot
    return _make


@pytest.fixture
def make_order(db):
    def _make(user, total, slot=None, created_at=None):
        order = Order(user_id=user.id, address_id=100, total_amount=Decimal(str(total)),
                      delivery_slot_id=slot.id if slot else None, status="pending",
                      created_at=created_at or utcnow())
        db.add(order)
        db.commit()
        return order
    return _make
