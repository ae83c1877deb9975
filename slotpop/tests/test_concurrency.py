# tests/test_concurrency.py
import threading
from datetime import datetime

import pytest
from sqlalchemy import event

from slotpop.database import Base, make_engine, make_sessionmaker
from slotpop.delivery.allocator import SlotAllocator
from slotpop.delivery.strategies import default_registry
from slotpop.errors import CapacityExceeded
from slotpop.models import DeliverySlot

START = datetime(2030, 6, 3, 10, 0)


@pytest.fixture
def file_sessions(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'race.db'}",
                      connect_args={"check_same_thread": False, "timeout": 30})

    # take the write lock at BEGIN so concurrent reservations serialize
    @event.listens_for(eng, "connect")
    def _no_pysqlite_begin(dbapi_conn, record):
        dbapi_conn.isolation_level = None

    @event.listens_for(eng, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(eng)
    yield make_sessionmaker(eng)
    eng.dispose()


def _slot(sessions, capacity):
    with sessions() as s:
        slot = DeliverySlot(start_time=START, end_time=START.replace(hour=13),
                            max_capacity=capacity, current_usage=0, is_active=True)
        s.add(slot)
        s.commit()
        return slot.id


def _race(sessions, slot_id, workers):
    allocator = SlotAllocator(default_registry())
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()

    def attempt():
        with sessions() as s:
            barrier.wait()
            try:
                allocator.reserve(s, slot_id)
                s.commit()
                result = "ok"
            except CapacityExceeded:
                s.rollback()
                result = "full"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


def test_last_unit_goes_to_exactly_one_order(file_sessions):
    slot_id = _slot(file_sessions, capacity=1)
    outcomes = _race(file_sessions, slot_id, workers=2)

    assert sorted(outcomes) == ["full", "ok"]
    with file_sessions() as s:
        assert s.get(DeliverySlot, slot_id).current_usage == 1


def test_many_writers_never_overbook(file_sessions):
    slot_id = _slot(file_sessions, capacity=3)
    outcomes = _race(file_sessions, slot_id, workers=8)

    assert outcomes.count("ok") == 3
    assert outcomes.count("full") == 5
    with file_sessions() as s:
        assert s.get(DeliverySlot, slot_id).current_usage == 3
