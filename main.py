import logging
import os
import secrets
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Callable, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auth import authenticate, get_staff, issue_token, require_role, reset_password, staff_id_from_token
from billing import BillingService, installment_amount
from database import DATABASE_NAME, Store, get_store
from errors import EngineError
from management import ManagementService
from reservations import ReservationManager
from schemas import (
    AllotTable, Bill, BillCreate, BillOut, LoginIn, LoginOut, MenuItem, MenuItemIn, Order,
    OrderItemIn, OrderItemUpdate, PasswordReset, PaymentIn, Reservation, ReservationCreate,
    ReservationOut, Staff, StaffOut, Table, TableIn, WaiterIn,
)
from seed import seed_if_empty
from settings import EngineSettings, load_settings

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

settings = load_settings()

TOKEN_SECRET = os.getenv("STAFF_TOKEN_SECRET")
if not TOKEN_SECRET:
    # Tokens signed with a per-process key stop working on restart.
    TOKEN_SECRET = secrets.token_hex(32)
    logger.warning("STAFF_TOKEN_SECRET is not set, using a random key for this process")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if os.getenv("SEED_DATA", "").lower() in ("1", "true", "yes"):
        seed_if_empty(get_store())
    yield


app = FastAPI(title="Restaurant Dine-In Management API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EngineError)
def engine_error_handler(request: Request, exc: EngineError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "field": exc.field})


@app.exception_handler(Exception)
def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ============== DEPENDENCIES ==================
def store_dep() -> Store:
    return get_store()


def settings_dep() -> EngineSettings:
    return settings


def clock_dep() -> Callable[[], datetime]:
    return datetime.now


def reservations_dep(
    store: Store = Depends(store_dep),
    settings: EngineSettings = Depends(settings_dep),
    clock: Callable[[], datetime] = Depends(clock_dep),
) -> ReservationManager:
    return ReservationManager(store, settings, clock)


def billing_dep(
    store: Store = Depends(store_dep),
    settings: EngineSettings = Depends(settings_dep),
    reservations: ReservationManager = Depends(reservations_dep),
) -> BillingService:
    return BillingService(store, settings, reservations)


def management_dep(store: Store = Depends(store_dep)) -> ManagementService:
    return ManagementService(store)


def current_staff(authorization: Optional[str] = Header(None), store: Store = Depends(store_dep)) -> Optional[Staff]:
    """Staff member named by the ``Authorization: Bearer <token>`` issued at login, if the token verifies."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    staff_id = staff_id_from_token(token.strip(), TOKEN_SECRET)
    if not staff_id:
        return None
    return get_staff(store, staff_id)


def bill_out(bill: Bill) -> BillOut:
    return BillOut(bill=bill, installment=installment_amount(bill))


@app.get("/")
def root():
    return {"message": "Restaurant Dine-In Management API running"}


@app.get("/test")
def test_db():
    try:
        collections = get_store().db.list_collection_names()
        return {
            "backend": "fastapi",
            "database": "mongodb",
            "database_name": DATABASE_NAME,
            "connection_status": "ok",
            "collections": collections,
        }
    except Exception as e:
        return {"backend": "fastapi", "database": "mongodb", "connection_status": f"error: {e}"}


# ============== AUTH ==================
@app.post("/auth/login", response_model=LoginOut)
def login(payload: LoginIn, store: Store = Depends(store_dep)):
    staff = authenticate(store, payload.email, payload.password)
    if not staff:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return LoginOut(**staff.model_dump(), token=issue_token(staff, TOKEN_SECRET))


@app.post("/auth/reset-password", response_model=StaffOut)
def reset_own_password(payload: PasswordReset, staff: Optional[Staff] = Depends(current_staff), store: Store = Depends(store_dep)):
    return StaffOut(**reset_password(store, staff, payload.password).model_dump())


# ============== TABLES ==================
@app.get("/tables", response_model=List[Table])
def list_tables(staff: Optional[Staff] = Depends(current_staff), svc: ManagementService = Depends(management_dep)):
    return svc.list_tables(staff)


@app.post("/tables", response_model=Table)
def save_table(payload: TableIn, staff: Optional[Staff] = Depends(current_staff), svc: ManagementService = Depends(management_dep)):
    return svc.save_table(staff, payload)


# ============== MENU ==================
@app.get("/menu", response_model=List[MenuItem])
def list_menu(staff: Optional[Staff] = Depends(current_staff), svc: ManagementService = Depends(management_dep)):
    return svc.list_menu_items(staff)


@app.post("/menu", response_model=MenuItem)
def save_menu_item(payload: MenuItemIn, staff: Optional[Staff] = Depends(current_staff), svc: ManagementService = Depends(management_dep)):
    return svc.save_menu_item(staff, payload)


# ============== WAITERS ==================
@app.get("/waiters", response_model=List[StaffOut])
def list_waiters(staff: Optional[Staff] = Depends(current_staff), svc: ManagementService = Depends(management_dep)):
    return svc.list_waiters(staff)


@app.post("/waiters", response_model=StaffOut)
def save_waiter(payload: WaiterIn, staff: Optional[Staff] = Depends(current_staff), svc: ManagementService = Depends(management_dep)):
    return svc.save_waiter(staff, payload)


# ============== RESERVATIONS ==================
@app.post("/book-online", response_model=Reservation)
def book_online(payload: ReservationCreate, svc: ReservationManager = Depends(reservations_dep)):
    return svc.create(payload)


@app.get("/reservations/free-tables", response_model=List[Table])
def free_tables(
    booking_date: date,
    time_slot_start: datetime,
    time_slot_end: datetime,
    party_size: int,
    svc: ReservationManager = Depends(reservations_dep),
):
    return svc.free_tables(booking_date, time_slot_start, time_slot_end, party_size)


@app.get("/reservations", response_model=List[ReservationOut])
def list_reservations(staff: Optional[Staff] = Depends(current_staff), svc: ReservationManager = Depends(reservations_dep)):
    require_role(staff)
    # Stale bookings are swept whenever the reservation list is loaded.
    svc.expire_stale()
    return svc.list_reservations(staff)


@app.post("/reservations", response_model=Reservation)
def create_reservation(payload: ReservationCreate, staff: Optional[Staff] = Depends(current_staff), svc: ReservationManager = Depends(reservations_dep)):
    require_role(staff)
    return svc.create(payload)


@app.get("/reservations/{reservation_id}", response_model=ReservationOut)
def get_reservation(reservation_id: str, staff: Optional[Staff] = Depends(current_staff), svc: ReservationManager = Depends(reservations_dep)):
    return svc.get(staff, reservation_id)


@app.get("/reservations/{reservation_id}/free-tables", response_model=List[Table])
def free_tables_for(reservation_id: str, staff: Optional[Staff] = Depends(current_staff), svc: ReservationManager = Depends(reservations_dep)):
    return svc.free_tables_for(staff, reservation_id)


@app.post("/reservations/{reservation_id}/allot", response_model=Reservation)
def allot_table(reservation_id: str, payload: AllotTable, staff: Optional[Staff] = Depends(current_staff), svc: ReservationManager = Depends(reservations_dep)):
    return svc.allot_table(staff, reservation_id, payload.table_id, payload.waiter_id)


@app.post("/reservations/{reservation_id}/cancel", response_model=Reservation)
def cancel_reservation(reservation_id: str, staff: Optional[Staff] = Depends(current_staff), svc: ReservationManager = Depends(reservations_dep)):
    return svc.cancel(staff, reservation_id)


@app.post("/admin/sweep")
def sweep(staff: Optional[Staff] = Depends(current_staff), svc: ReservationManager = Depends(reservations_dep)):
    require_role(staff)
    return {"cancelled": svc.expire_stale()}


# ============== ORDERS ==================
@app.post("/reservations/{reservation_id}/items", response_model=Order)
def add_order_item(reservation_id: str, payload: OrderItemIn, staff: Optional[Staff] = Depends(current_staff), svc: BillingService = Depends(billing_dep)):
    return svc.add_item(staff, reservation_id, payload.menu_item_id, payload.quantity)


@app.put("/reservations/{reservation_id}/items/{menu_item_id}", response_model=Order)
def update_order_item(
    reservation_id: str,
    menu_item_id: str,
    payload: OrderItemUpdate,
    staff: Optional[Staff] = Depends(current_staff),
    svc: BillingService = Depends(billing_dep),
):
    return svc.update_item(staff, reservation_id, menu_item_id, payload.quantity)


@app.post("/reservations/{reservation_id}/send-to-kitchen", response_model=Order)
def send_to_kitchen(reservation_id: str, staff: Optional[Staff] = Depends(current_staff), svc: BillingService = Depends(billing_dep)):
    return svc.send_to_kitchen(staff, reservation_id)


# ============== BILLS & PAYMENTS ==================
@app.post("/reservations/{reservation_id}/bill", response_model=BillOut)
def generate_bill(reservation_id: str, payload: BillCreate, staff: Optional[Staff] = Depends(current_staff), svc: BillingService = Depends(billing_dep)):
    return bill_out(svc.generate_bill(staff, reservation_id, payload.tip, payload.split_into))


@app.get("/reservations/{reservation_id}/bill", response_model=BillOut)
def get_bill(reservation_id: str, staff: Optional[Staff] = Depends(current_staff), svc: BillingService = Depends(billing_dep)):
    require_role(staff)
    bill = svc.get_bill(reservation_id)
    if not bill:
        raise HTTPException(status_code=404, detail="Bill not found")
    return bill_out(bill)


@app.post("/reservations/{reservation_id}/payments", response_model=BillOut)
def record_payment(reservation_id: str, payload: PaymentIn, staff: Optional[Staff] = Depends(current_staff), svc: BillingService = Depends(billing_dep)):
    return bill_out(svc.record_payment(staff, reservation_id, payload.amount, payload.payment_method))
