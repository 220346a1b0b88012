"""
Seed staff accounts, tables and menu items into an empty database.
Run directly: ``python seed.py``.
"""
from __future__ import annotations
import logging
from decimal import Decimal

from auth import hash_password
from database import Store, get_store
from schemas import Role

logger = logging.getLogger(__name__)

DEFAULT_PASSWORD = "password"

SEED_STAFF = [
    ("Max", "admin@app.com", Role.MANAGER),
    ("Molly", "waiter@app.com", Role.WAITER),
    ("M", "m@waiter.app", Role.WAITER),
    ("N", "n@waiter.app", Role.WAITER),
]

SEED_TABLES = [("A1", 4), ("A2", 8), ("A3", 3), ("A4", 10), ("B1", 6), ("B2", 2), ("B3", 4)]

SEED_MENU = [
    ("Chicken Biryani", "32.99", ["Main Course"]),
    ("Chicken Tikka Masala", "22.99", ["Appetizers"]),
    ("Pizza", "19.99", ["Main Course"]),
    ("Pasta", "15.99", ["Main Course"]),
    ("Burger", "6.99", ["Main Course"]),
    ("Fries", "3.99", ["Snacks"]),
    ("Coke", "1.99", ["Beverages"]),
    ("Sprite", "1.99", ["Beverages"]),
    ("Pepsi", "1.99", ["Beverages"]),
    ("Water", "1.99", ["Beverages"]),
]


def seed_if_empty(store: Store) -> bool:
    """Add sample data if there are no staff accounts yet."""
    if store.find_one("staff", {"role": Role.MANAGER}):
        return False

    password_hash = hash_password(DEFAULT_PASSWORD)
    for name, email, role in SEED_STAFF:
        store.insert("staff", {
            "name": name,
            "email": email,
            "role": role,
            "password_hash": password_hash,
            "has_reset_password": role == Role.MANAGER,
        })
    for no, capacity in SEED_TABLES:
        store.insert("table", {"no": no, "capacity": capacity})
    for name, price, category in SEED_MENU:
        store.insert("menuitem", {"name": name, "price": Decimal(price), "category": category})

    logger.info(f"Database has been seeded with {len(SEED_STAFF)} staff, {len(SEED_TABLES)} tables, {len(SEED_MENU)} menu items")
    return True


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    seed_if_empty(get_store())
