import copy
import threading
import uuid
from collections import defaultdict
from contextlib import contextmanager
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from billing import BillingService
from management import ManagementService
from reservations import ReservationManager
from schemas import ReservationCreate, ReservationStatus, Role, Staff, Table
from settings import EngineSettings

NOW = datetime(2026, 10, 19, 12, 0)
TODAY = NOW.date()
TOMORROW = date(2026, 10, 20)
YESTERDAY = date(2026, 10, 18)


class InMemoryStore:
    """Store backed by dicts; a failed transaction restores the prior snapshot."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._lock = threading.RLock()
        self._depth = 0

    @staticmethod
    def _matches(doc: Dict[str, Any], filter_dict: Dict[str, Any]) -> bool:
        return all(doc.get(k) == v for k, v in filter_dict.items())

    @staticmethod
    def _out(doc_id: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        return {**copy.deepcopy(doc), "id": doc_id}

    def insert(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:24]
        self.collections[collection][doc_id] = copy.deepcopy({k: v for k, v in data.items() if k != "id"})
        return doc_id

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self.collections[collection].get(doc_id)
        return self._out(doc_id, doc) if doc is not None else None

    def find(self, collection: str, filter_dict: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return [
            self._out(doc_id, doc)
            for doc_id, doc in self.collections[collection].items()
            if self._matches(doc, filter_dict or {})
        ]

    def find_one(self, collection: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        found = self.find(collection, filter_dict)
        return found[0] if found else None

    def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> bool:
        doc = self.collections[collection].get(doc_id)
        if doc is None:
            return False
        doc.update(copy.deepcopy({k: v for k, v in changes.items() if k != "id"}))
        return True

    def delete(self, collection: str, doc_id: str) -> bool:
        return self.collections[collection].pop(doc_id, None) is not None

    @contextmanager
    def transaction(self):
        with self._lock:
            outer = self._depth == 0
            snapshot = copy.deepcopy(self.collections) if outer else None
            self._depth += 1
            try:
                yield
            except BaseException:
                if outer:
                    self.collections = snapshot
                raise
            finally:
                self._depth -= 1

    def count(self, collection: str) -> int:
        return len(self.collections[collection])


def slot(day: date, start: str, end: str):
    """Timestamps for an ``HH:MM``-``HH:MM`` slot on ``day``."""
    return (
        datetime.combine(day, time.fromisoformat(start)),
        datetime.combine(day, time.fromisoformat(end)),
    )


def booking(day: date = TOMORROW, start: str = "19:00", end: str = "20:00", party_size: int = 2, name: str = "Ada") -> ReservationCreate:
    s, e = slot(day, start, end)
    return ReservationCreate(
        name=name, phone_no="5551234", party_size=party_size,
        booking_date=day, time_slot_start=s, time_slot_end=e,
    )


def insert_reservation(store, day: date, start: str, end: str, party_size: int = 2,
                       table_id: Optional[str] = None, status: ReservationStatus = ReservationStatus.CONFIRMED) -> str:
    s, e = slot(day, start, end)
    customer_id = store.insert("customer", {"name": "Walk-in", "phone_no": "0"})
    return store.insert("reservation", {
        "customer_id": customer_id,
        "booking_date": day,
        "time_slot_start": s,
        "time_slot_end": e,
        "party_size": party_size,
        "status": status,
        "table_id": table_id,
        "waiter_id": None,
    })


def make_table(store, no: str, capacity: int) -> Table:
    table_id = store.insert("table", {"no": no, "capacity": capacity})
    return Table(id=table_id, no=no, capacity=capacity)


def make_menu_item(store, name: str, price: str) -> str:
    return store.insert("menuitem", {"name": name, "price": Decimal(price), "category": ["Main Course"]})


def make_staff(store, name: str, role: Role, password_hash: Optional[str] = None) -> Staff:
    email = f"{name.lower()}@app.com"
    staff_id = store.insert("staff", {"name": name, "email": email, "role": role, "password_hash": password_hash})
    return Staff(id=staff_id, name=name, email=email, role=role, password_hash=password_hash)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def reservations(store, settings):
    return ReservationManager(store, settings, clock=lambda: NOW)


@pytest.fixture
def billing(store, settings, reservations):
    return BillingService(store, settings, reservations)


@pytest.fixture
def management(store):
    return ManagementService(store)


@pytest.fixture
def manager(store):
    return make_staff(store, "Max", Role.MANAGER)


@pytest.fixture
def waiter(store):
    return make_staff(store, "Molly", Role.WAITER)
