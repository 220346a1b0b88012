from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

# Collections:
# - table
# - customer
# - reservation
# - order
# - menuitem
# - bill
# - staff


class Role(str, Enum):
    MANAGER = "MANAGER"
    WAITER = "WAITER"


class ReservationStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = (ReservationStatus.COMPLETED, ReservationStatus.CANCELLED)


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    CASH = "CASH"


def _naive(value: datetime) -> datetime:
    # Aware timestamps are moved to server local time; slots compare on wall clock.
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


# ---------- Tables ----------
class TableIn(BaseModel):
    table_id: Optional[str] = None
    no: str = Field(..., min_length=1)
    capacity: int = Field(..., gt=0)


class Table(BaseModel):
    id: str
    no: str
    capacity: int


# ---------- Menu ----------
class MenuItemIn(BaseModel):
    item_id: Optional[str] = None
    name: str = Field(..., min_length=1)
    price: Decimal = Field(..., gt=0, decimal_places=2)
    category: List[str] = Field(..., min_length=1)

    @field_validator("category", mode="before")
    @classmethod
    def _split_category(cls, value):
        if isinstance(value, str):
            return [c.strip() for c in value.split(",") if c.strip()]
        return value


class MenuItem(BaseModel):
    id: str
    name: str
    price: Decimal
    category: List[str]


# ---------- Staff ----------
class WaiterIn(BaseModel):
    user_id: Optional[str] = None
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: Optional[str] = Field(default=None, min_length=8)


class Staff(BaseModel):
    id: str
    name: str
    email: str
    role: Role = Role.WAITER
    password_hash: Optional[str] = None
    has_reset_password: bool = False


class StaffOut(BaseModel):
    id: str
    name: str
    email: str
    role: Role
    # Waiters start on a password chosen by a manager and must replace it.
    has_reset_password: bool = False


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginOut(StaffOut):
    token: str


class PasswordReset(BaseModel):
    password: str = Field(..., min_length=8)


# ---------- Customers ----------
class Customer(BaseModel):
    id: str
    name: str
    phone_no: str


# ---------- Reservations ----------
class ReservationCreate(BaseModel):
    name: str = Field(..., min_length=1)
    phone_no: str = Field(..., min_length=1)
    party_size: int = Field(..., gt=0)
    booking_date: date
    time_slot_start: datetime
    time_slot_end: datetime

    @field_validator("name", "phone_no", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("time_slot_start", "time_slot_end")
    @classmethod
    def _drop_timezone(cls, value: datetime) -> datetime:
        return _naive(value)


class Reservation(BaseModel):
    id: str
    customer_id: str
    booking_date: date
    time_slot_start: datetime
    time_slot_end: datetime
    party_size: int
    status: ReservationStatus = ReservationStatus.CONFIRMED
    table_id: Optional[str] = None
    waiter_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class AllotTable(BaseModel):
    table_id: str
    waiter_id: str


class ReservationOut(BaseModel):
    reservation: Reservation
    customer: Optional[Customer] = None
    order: Optional["Order"] = None
    bill: Optional["Bill"] = None


# ---------- Orders ----------
class OrderItemIn(BaseModel):
    menu_item_id: str
    quantity: int = Field(default=1, gt=0)


class OrderItemUpdate(BaseModel):
    quantity: int = Field(..., ge=0)


class OrderLine(BaseModel):
    id: str
    menu_item_id: str
    name: str
    quantity: int
    amount: Decimal
    sent_to_kitchen: bool = False


class Order(BaseModel):
    id: str
    reservation_id: str
    items: List[OrderLine] = []

    @property
    def subtotal(self) -> Decimal:
        return sum((line.amount for line in self.items), Decimal("0"))


# ---------- Bills & Payments ----------
class BillCreate(BaseModel):
    tip: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    split_into: int = Field(default=1, ge=1)


class Bill(BaseModel):
    id: str
    reservation_id: str
    order_id: str
    amount: Decimal
    tax: Decimal
    tip: Decimal
    split_into: int = 1
    net_amount: Decimal
    amount_paid: Decimal = Decimal("0")
    payment_method: Optional[PaymentMethod] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING


class PaymentIn(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    payment_method: PaymentMethod


class BillOut(BaseModel):
    bill: Bill
    installment: Decimal


ReservationOut.model_rebuild()
