from __future__ import annotations
import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from auth import require_role
from database import Store
from errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from reservations import ReservationManager
from schemas import (
    Bill, MenuItem, Order, OrderLine, PaymentMethod, PaymentStatus,
    Reservation, ReservationStatus, Staff,
)
from settings import EngineSettings

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def round_money(amount: Decimal) -> Decimal:
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def installment_amount(bill: Bill) -> Decimal:
    """Suggested amount per installment when the bill is split."""
    return round_money(bill.net_amount / bill.split_into)


def _dump(items: List[OrderLine]) -> List[dict]:
    return [line.model_dump() for line in items]


class BillingService:
    def __init__(self, store: Store, settings: EngineSettings, reservations: ReservationManager):
        self.store = store
        self.settings = settings
        self.reservations = reservations

    def _menu_item(self, menu_item_id: str) -> MenuItem:
        doc = self.store.get("menuitem", menu_item_id)
        if not doc:
            raise NotFoundError("Menu item not found", field="menu_item_id")
        return MenuItem(**doc)

    def _open_reservation(self, reservation_id: str) -> Reservation:
        r = self.reservations.load(reservation_id)
        if r.status != ReservationStatus.CONFIRMED:
            raise InvalidTransitionError(f"Order is closed, reservation is {r.status.value.lower()}")
        return r

    def get_order(self, reservation_id: str) -> Optional[Order]:
        doc = self.store.find_one("order", {"reservation_id": reservation_id})
        return Order(**doc) if doc else None

    def _require_order(self, reservation_id: str) -> Order:
        order = self.get_order(reservation_id)
        if order is None:
            raise NotFoundError("Order not found", field="reservation_id")
        return order

    def get_bill(self, reservation_id: str) -> Optional[Bill]:
        doc = self.store.find_one("bill", {"reservation_id": reservation_id})
        return Bill(**doc) if doc else None

    # ---------- order lines ----------
    def add_item(self, actor: Optional[Staff], reservation_id: str, menu_item_id: str, quantity: int) -> Order:
        """Append a new line; adding the same item twice yields two lines."""
        require_role(actor)
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than 0", field="quantity")

        with self.store.transaction():
            menu_item = self._menu_item(menu_item_id)
            r = self._open_reservation(reservation_id)
            line = OrderLine(
                id=uuid.uuid4().hex,
                menu_item_id=menu_item.id,
                name=menu_item.name,
                quantity=quantity,
                amount=menu_item.price * quantity,
            )
            order = self.get_order(r.id)
            if order is None:
                order_id = self.store.insert("order", {"reservation_id": r.id, "items": _dump([line])})
                order = Order(id=order_id, reservation_id=r.id, items=[line])
            else:
                order.items.append(line)
                self.store.update("order", order.id, {"items": _dump(order.items)})

        logger.info(f"Added {quantity} x {menu_item.name} to reservation {reservation_id}")
        return order

    def update_item(self, actor: Optional[Staff], reservation_id: str, menu_item_id: str, quantity: int) -> Order:
        require_role(actor)
        if quantity < 0:
            raise ValidationError("Quantity cannot be negative", field="quantity")

        with self.store.transaction():
            menu_item = self._menu_item(menu_item_id)
            r = self._open_reservation(reservation_id)
            order = self._require_order(r.id)
            index = next((i for i, line in enumerate(order.items) if line.menu_item_id == menu_item_id), None)
            if index is None:
                raise NotFoundError("Item not found", field="menu_item_id")

            if quantity == 0:
                del order.items[index]
            else:
                order.items[index] = order.items[index].model_copy(update={
                    "quantity": quantity,
                    "amount": menu_item.price * quantity,
                    "sent_to_kitchen": False,
                })
            self.store.update("order", order.id, {"items": _dump(order.items)})
        return order

    def send_to_kitchen(self, actor: Optional[Staff], reservation_id: str) -> Order:
        require_role(actor)
        with self.store.transaction():
            r = self._open_reservation(reservation_id)
            order = self._require_order(r.id)
            order.items = [line.model_copy(update={"sent_to_kitchen": True}) for line in order.items]
            self.store.update("order", order.id, {"items": _dump(order.items)})
        logger.info(f"Sent {len(order.items)} line(s) to the kitchen for reservation {reservation_id}")
        return order

    # ---------- bills ----------
    def generate_bill(self, actor: Optional[Staff], reservation_id: str, tip: Decimal = Decimal("0"), split_into: int = 1) -> Bill:
        """Snapshot the order into a bill and move the reservation to PENDING_PAYMENT."""
        require_role(actor)
        tip = Decimal(str(tip))
        if tip < 0:
            raise ValidationError("Tip cannot be negative", field="tip")
        if split_into < 1:
            raise ValidationError("Split must be at least 1", field="split_into")

        with self.store.transaction():
            r = self.reservations.load(reservation_id)
            if self.get_bill(r.id) is not None:
                raise ConflictError("Bill already generated for this reservation")
            if r.status != ReservationStatus.CONFIRMED:
                raise InvalidTransitionError(f"Cannot bill a {r.status.value.lower()} reservation")
            order = self._require_order(r.id)

            amount = order.subtotal
            tax = amount * self.settings.tax_percent / 100
            data = {
                "reservation_id": r.id,
                "order_id": order.id,
                "amount": amount,
                "tax": tax,
                "tip": tip,
                "split_into": split_into,
                "net_amount": round_money(amount + tax + tip),
                "amount_paid": Decimal("0"),
                "payment_method": None,
                "payment_status": PaymentStatus.PENDING,
            }
            bill_id = self.store.insert("bill", data)
            self.reservations.mark_pending_payment(r.id)

        bill = Bill(id=bill_id, **data)
        logger.info(f"Bill {bill_id} generated for reservation {reservation_id}: net {bill.net_amount}")
        return bill

    def record_payment(self, actor: Optional[Staff], reservation_id: str, amount: Decimal, method: PaymentMethod) -> Bill:
        """Apply a payment; the one that covers the net amount settles the bill and completes the reservation."""
        require_role(actor)
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than 0", field="amount")

        with self.store.transaction():
            r = self.reservations.load(reservation_id)
            bill = self.get_bill(r.id)
            if bill is None:
                raise NotFoundError("Bill not found", field="reservation_id")
            if bill.payment_status == PaymentStatus.PAID:
                raise InvalidTransitionError("Bill is already paid")
            if r.is_terminal:
                raise InvalidTransitionError(f"Cannot take payment for a {r.status.value.lower()} reservation")

            if bill.amount_paid + amount < bill.net_amount:
                changes = {"amount_paid": bill.amount_paid + amount, "payment_method": method}
            else:
                changes = {
                    "amount_paid": bill.net_amount,
                    "payment_method": method,
                    "payment_status": PaymentStatus.PAID,
                }
                self.reservations.complete(reservation_id)
            self.store.update("bill", bill.id, changes)

        bill = bill.model_copy(update=changes)
        logger.info(f"Payment of {amount} recorded for reservation {reservation_id} ({bill.payment_status.value})")
        return bill
