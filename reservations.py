"""Reservation lifecycle: booking, table allotment, cancellation and the
auto-expire sweep.

Status flow::

    CONFIRMED --generate bill--> PENDING_PAYMENT --full payment--> COMPLETED
        |                              |
        +----------cancel--------------+-----> CANCELLED

COMPLETED and CANCELLED are terminal.
"""
from __future__ import annotations
import logging
from datetime import date, datetime
from typing import Callable, List, Optional

from availability import day_difference, find_free_tables, is_table_free, time_of_day, validate_booking_window
from auth import require_role
from database import Store
from errors import ConflictError, InvalidTransitionError, NoTableAvailableError, NotFoundError, ValidationError
from schemas import (
    Bill, Customer, Order, Reservation, ReservationCreate, ReservationOut,
    ReservationStatus, Staff, Table,
)
from settings import EngineSettings

logger = logging.getLogger(__name__)


class ReservationManager:
    def __init__(self, store: Store, settings: EngineSettings, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.settings = settings
        self.clock = clock

    # ---------- lookups ----------
    def load(self, reservation_id: str) -> Reservation:
        doc = self.store.get("reservation", reservation_id)
        if not doc:
            raise NotFoundError("Reservation not found", field="reservation_id")
        return Reservation(**doc)

    def _tables(self) -> List[Table]:
        return [Table(**t) for t in self.store.find("table")]

    def _confirmed_on(self, day: date) -> List[Reservation]:
        docs = self.store.find("reservation", {"booking_date": day, "status": ReservationStatus.CONFIRMED})
        return [Reservation(**d) for d in docs]

    def _bill_for(self, reservation_id: str) -> Optional[Bill]:
        doc = self.store.find_one("bill", {"reservation_id": reservation_id})
        return Bill(**doc) if doc else None

    def _touch_table(self, table_id: str) -> None:
        # Concurrent binders of the same table now write the same document,
        # so only one of their transactions can commit.
        self.store.update("table", table_id, {"last_allotted_at": self.clock()})

    def _out(self, r: Reservation) -> ReservationOut:
        customer = self.store.get("customer", r.customer_id)
        order = self.store.find_one("order", {"reservation_id": r.id})
        return ReservationOut(
            reservation=r,
            customer=Customer(**customer) if customer else None,
            order=Order(**order) if order else None,
            bill=self._bill_for(r.id),
        )

    # ---------- booking ----------
    def create(self, payload: ReservationCreate) -> Reservation:
        now = self.clock()
        validate_booking_window(self.settings, payload.booking_date, payload.time_slot_start, payload.time_slot_end, now)

        with self.store.transaction():
            table_id = None
            if self.settings.allot_table_directly:
                free = find_free_tables(
                    self._tables(),
                    self._confirmed_on(payload.booking_date),
                    payload.booking_date,
                    payload.time_slot_start,
                    payload.time_slot_end,
                    payload.party_size,
                    self.settings.overlap_mode,
                )
                if not free:
                    raise NoTableAvailableError("No free tables available")
                table_id = free[0].id
                self._touch_table(table_id)

            customer_id = self.store.insert("customer", {"name": payload.name, "phone_no": payload.phone_no})
            data = {
                "customer_id": customer_id,
                "booking_date": payload.booking_date,
                "time_slot_start": payload.time_slot_start,
                "time_slot_end": payload.time_slot_end,
                "party_size": payload.party_size,
                "status": ReservationStatus.CONFIRMED,
                "table_id": table_id,
                "waiter_id": None,
            }
            reservation_id = self.store.insert("reservation", data)

        logger.info(f"Reservation {reservation_id} created for {payload.booking_date} (table={table_id})")
        return Reservation(id=reservation_id, **data)

    def free_tables(self, day: date, start: datetime, end: datetime, party_size: int) -> List[Table]:
        return find_free_tables(self._tables(), self._confirmed_on(day), day, start, end, party_size, self.settings.overlap_mode)

    def free_tables_for(self, actor: Optional[Staff], reservation_id: str) -> List[Table]:
        require_role(actor)
        r = self.load(reservation_id)
        return find_free_tables(
            self._tables(), self._confirmed_on(r.booking_date), r.booking_date,
            r.time_slot_start, r.time_slot_end, r.party_size, self.settings.overlap_mode, exclude_id=r.id,
        )

    # ---------- allotment ----------
    def allot_table(self, actor: Optional[Staff], reservation_id: str, table_id: str, waiter_id: str) -> Reservation:
        require_role(actor)
        with self.store.transaction():
            r = self.load(reservation_id)
            if r.status != ReservationStatus.CONFIRMED:
                raise InvalidTransitionError(f"Cannot allot a table to a {r.status.value.lower()} reservation")

            table_doc = self.store.get("table", table_id)
            if not table_doc:
                raise NotFoundError("Table not found", field="table_id")
            table = Table(**table_doc)
            if not self.store.get("staff", waiter_id):
                raise NotFoundError("Waiter not found", field="waiter_id")
            if r.party_size > table.capacity:
                raise ValidationError(f"Table {table.no} seats only {table.capacity}", field="table_id")

            self._touch_table(table.id)
            if not is_table_free(
                table, self._confirmed_on(r.booking_date), r.booking_date, r.time_slot_start,
                r.time_slot_end, r.party_size, self.settings.overlap_mode, exclude_id=r.id,
            ):
                raise ConflictError(f"Table {table.no} is already booked for this slot", field="table_id")

            self.store.update("reservation", r.id, {"table_id": table.id, "waiter_id": waiter_id})

        logger.info(f"Reservation {r.id} allotted table {table.no} and waiter {waiter_id}")
        return r.model_copy(update={"table_id": table.id, "waiter_id": waiter_id})

    # ---------- cancellation ----------
    def _release(self, r: Reservation) -> Reservation:
        self.store.update("reservation", r.id, {
            "status": ReservationStatus.CANCELLED,
            "table_id": None,
            "waiter_id": None,
        })
        return r.model_copy(update={"status": ReservationStatus.CANCELLED, "table_id": None, "waiter_id": None})

    def cancel(self, actor: Optional[Staff], reservation_id: str) -> Reservation:
        require_role(actor)
        with self.store.transaction():
            r = self.load(reservation_id)
            if r.status == ReservationStatus.CANCELLED:
                return r
            if r.status == ReservationStatus.COMPLETED:
                raise InvalidTransitionError("Cannot cancel a completed reservation")
            cancelled = self._release(r)
        logger.info(f"Reservation {reservation_id} cancelled")
        return cancelled

    def expire_stale(self, now: Optional[datetime] = None) -> List[str]:
        """Cancel confirmed reservations nobody seated: earlier days, or today once the slot plus buffer has passed."""
        now = now or self.clock()
        candidates = self.store.find("reservation", {"status": ReservationStatus.CONFIRMED, "table_id": None})
        cancelled: List[str] = []
        for doc in candidates:
            try:
                r = Reservation(**doc)
                if self._bill_for(r.id) is not None:
                    continue
                days_ago = day_difference(r.booking_date, now)
                if days_ago < 0:
                    continue
                if days_ago == 0 and time_of_day(now) - time_of_day(r.time_slot_end) <= self.settings.booking_buffer:
                    continue
                if self._expire(r.id):
                    logger.info(f"Cancelling reservation automatically for {r.id}")
                    cancelled.append(r.id)
            except Exception:
                logger.exception(f"Auto-expire failed for reservation {doc.get('id')}")
        return cancelled

    def _expire(self, reservation_id: str) -> bool:
        # Seated, billed or otherwise moved on since the sweep read it: leave it alone.
        with self.store.transaction():
            r = self.load(reservation_id)
            if r.status != ReservationStatus.CONFIRMED or r.table_id or self._bill_for(r.id) is not None:
                return False
            self._release(r)
        return True

    # ---------- status transitions used by billing ----------
    def mark_pending_payment(self, reservation_id: str) -> Reservation:
        r = self.load(reservation_id)
        if r.status != ReservationStatus.CONFIRMED:
            raise InvalidTransitionError(f"Cannot bill a {r.status.value.lower()} reservation")
        self.store.update("reservation", r.id, {"status": ReservationStatus.PENDING_PAYMENT})
        return r.model_copy(update={"status": ReservationStatus.PENDING_PAYMENT})

    def complete(self, reservation_id: str) -> Reservation:
        r = self.load(reservation_id)
        if r.is_terminal:
            raise InvalidTransitionError(f"Reservation is already {r.status.value.lower()}")
        self.store.update("reservation", r.id, {"status": ReservationStatus.COMPLETED})
        logger.info(f"Reservation {r.id} completed")
        return r.model_copy(update={"status": ReservationStatus.COMPLETED})

    # ---------- reads ----------
    def get(self, actor: Optional[Staff], reservation_id: str) -> ReservationOut:
        require_role(actor)
        return self._out(self.load(reservation_id))

    def list_reservations(self, actor: Optional[Staff]) -> List[ReservationOut]:
        require_role(actor)
        rows = [Reservation(**d) for d in self.store.find("reservation")]
        rows.sort(key=lambda r: (r.booking_date, r.time_slot_start.time()))
        rows.sort(key=lambda r: r.status.value, reverse=True)
        return [self._out(r) for r in rows]
