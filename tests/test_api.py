from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

import main
from auth import hash_password, issue_token
from schemas import Role
from settings import EngineSettings
from tests.conftest import NOW, TOMORROW, YESTERDAY, insert_reservation, make_staff, slot


@pytest.fixture
def client(store):
    main.app.dependency_overrides[main.store_dep] = lambda: store
    main.app.dependency_overrides[main.settings_dep] = lambda: EngineSettings()
    main.app.dependency_overrides[main.clock_dep] = lambda: (lambda: NOW)
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def bearer(staff):
    return {"Authorization": f"Bearer {issue_token(staff, main.TOKEN_SECRET)}"}


@pytest.fixture
def manager(store):
    return make_staff(store, "Max", Role.MANAGER, password_hash=hash_password("password"))


@pytest.fixture
def manager_headers(manager):
    return bearer(manager)


def booking_json(start="19:00", end="20:00", party_size=2):
    s, e = slot(TOMORROW, start, end)
    return {
        "name": "Ada",
        "phone_no": "5551234",
        "party_size": party_size,
        "booking_date": TOMORROW.isoformat(),
        "time_slot_start": s.isoformat(),
        "time_slot_end": e.isoformat(),
    }


def test_login(client, manager):
    res = client.post("/auth/login", json={"email": "max@app.com", "password": "password"})
    assert res.status_code == 200
    body = res.json()
    assert body["id"] == manager.id
    assert "password_hash" not in body
    assert client.get("/tables", headers={"Authorization": f"Bearer {body['token']}"}).status_code == 200
    assert client.post("/auth/login", json={"email": "max@app.com", "password": "nope"}).status_code == 401


def test_staff_routes_need_a_verified_token(client, manager):
    assert client.get("/tables").status_code == 403
    assert client.get("/tables", headers={"X-Staff-Id": manager.id}).status_code == 403
    assert client.get("/tables", headers={"Authorization": f"Bearer {manager.id}"}).status_code == 403
    forged = issue_token(manager, "some-other-key")
    assert client.get("/tables", headers={"Authorization": f"Bearer {forged}"}).status_code == 403
    expired = issue_token(manager, main.TOKEN_SECRET, now=datetime.now(timezone.utc) - timedelta(days=1))
    assert client.get("/tables", headers={"Authorization": f"Bearer {expired}"}).status_code == 403


def test_new_waiter_resets_password(client, manager_headers):
    client.post("/waiters", json={"name": "Molly", "email": "molly@app.com", "password": "temporary"}, headers=manager_headers)
    login = client.post("/auth/login", json={"email": "molly@app.com", "password": "temporary"}).json()
    assert login["has_reset_password"] is False

    headers = {"Authorization": f"Bearer {login['token']}"}
    assert client.post("/auth/reset-password", json={"password": "short"}, headers=headers).status_code == 422
    res = client.post("/auth/reset-password", json={"password": "molly-own-pass"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["has_reset_password"] is True

    assert client.post("/auth/login", json={"email": "molly@app.com", "password": "temporary"}).status_code == 401
    login = client.post("/auth/login", json={"email": "molly@app.com", "password": "molly-own-pass"}).json()
    assert login["has_reset_password"] is True


def test_password_reset_needs_sign_in(client):
    assert client.post("/auth/reset-password", json={"password": "whatever-pass"}).status_code == 403


def test_zero_capacity_table_is_rejected(client, store, manager_headers):
    res = client.post("/tables", json={"no": "A1", "capacity": 0}, headers=manager_headers)
    assert res.status_code == 422
    assert store.count("table") == 0


def test_engine_errors_carry_the_field(client, manager_headers):
    res = client.post("/reservations", json=booking_json(start="08:00", end="09:00"), headers=manager_headers)
    assert res.status_code == 422
    assert res.json()["field"] == "time_slot_start"

    res = client.post("/reservations/missing/cancel", headers=manager_headers)
    assert res.status_code == 404
    assert res.json() == {"detail": "Reservation not found", "field": "reservation_id"}


def test_waiter_cannot_add_tables(client, store):
    waiter = make_staff(store, "Molly", Role.WAITER)
    res = client.post("/tables", json={"no": "A1", "capacity": 4}, headers=bearer(waiter))
    assert res.status_code == 403


def test_dine_in_flow(client, store, manager_headers):
    h = manager_headers
    table = client.post("/tables", json={"no": "A1", "capacity": 4}, headers=h).json()
    curry = client.post("/menu", json={"name": "Curry", "price": "10.00", "category": "Main Course"}, headers=h).json()
    naan = client.post("/menu", json={"name": "Naan", "price": "5.00", "category": ["Breads"]}, headers=h).json()
    waiter = client.post("/waiters", json={"name": "Molly", "email": "molly@app.com", "password": "password"}, headers=h).json()

    reservation = client.post("/book-online", json=booking_json()).json()
    assert reservation["status"] == "CONFIRMED"
    rid = reservation["id"]

    free = client.get(f"/reservations/{rid}/free-tables", headers=h).json()
    assert [t["id"] for t in free] == [table["id"]]

    res = client.post(f"/reservations/{rid}/allot", json={"table_id": table["id"], "waiter_id": waiter["id"]}, headers=h)
    assert res.json()["table_id"] == table["id"]

    params = {
        "booking_date": TOMORROW.isoformat(),
        "time_slot_start": booking_json()["time_slot_start"],
        "time_slot_end": booking_json()["time_slot_end"],
        "party_size": 2,
    }
    assert client.get("/reservations/free-tables", params=params).json() == []

    client.post(f"/reservations/{rid}/items", json={"menu_item_id": curry["id"], "quantity": 1}, headers=h)
    client.post(f"/reservations/{rid}/items", json={"menu_item_id": naan["id"], "quantity": 2}, headers=h)
    order = client.post(f"/reservations/{rid}/send-to-kitchen", headers=h).json()
    assert all(line["sent_to_kitchen"] for line in order["items"])

    bill = client.post(f"/reservations/{rid}/bill", json={"tip": "2.00", "split_into": 2}, headers=h).json()
    assert Decimal(bill["bill"]["net_amount"]) == Decimal("23.90")
    assert Decimal(bill["installment"]) == Decimal("11.95")
    assert client.post(f"/reservations/{rid}/bill", json={"tip": "0"}, headers=h).status_code == 409

    paid = client.post(f"/reservations/{rid}/payments", json={"amount": "10", "payment_method": "CASH"}, headers=h).json()
    assert paid["bill"]["payment_status"] == "PENDING"
    paid = client.post(f"/reservations/{rid}/payments", json={"amount": "13.90", "payment_method": "CREDIT_CARD"}, headers=h).json()
    assert paid["bill"]["payment_status"] == "PAID"

    detail = client.get(f"/reservations/{rid}", headers=h).json()
    assert detail["reservation"]["status"] == "COMPLETED"
    assert detail["customer"]["name"] == "Ada"
    assert len(detail["order"]["items"]) == 2


def test_listing_reservations_sweeps_stale_ones(client, store, manager_headers):
    stale = insert_reservation(store, YESTERDAY, "19:00", "20:00")
    rows = client.get("/reservations", headers=manager_headers).json()
    assert [row["reservation"]["status"] for row in rows if row["reservation"]["id"] == stale] == ["CANCELLED"]


@pytest.mark.parametrize("amount", ["1.001", "1" * 40])
def test_payment_amount_beyond_cents_is_a_validation_error(client, manager_headers, amount):
    res = client.post("/reservations/r1/payments", json={"amount": amount, "payment_method": "CASH"}, headers=manager_headers)
    assert res.status_code == 422
