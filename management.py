"""Manager-only upkeep of tables, menu items and waiter accounts."""
from __future__ import annotations
import logging
from typing import List, Optional

from auth import hash_password, require_role
from database import Store
from errors import ConflictError, MissingPreconditionError, NotFoundError
from schemas import MenuItem, MenuItemIn, Role, Staff, StaffOut, Table, TableIn, WaiterIn

logger = logging.getLogger(__name__)


class ManagementService:
    def __init__(self, store: Store):
        self.store = store

    # ---------- tables ----------
    def list_tables(self, actor: Optional[Staff]) -> List[Table]:
        require_role(actor)
        tables = [Table(**t) for t in self.store.find("table")]
        return sorted(tables, key=lambda t: t.no)

    def save_table(self, actor: Optional[Staff], payload: TableIn) -> Table:
        require_role(actor, Role.MANAGER)
        data = {"no": payload.no, "capacity": payload.capacity}
        if payload.table_id:
            if not self.store.update("table", payload.table_id, data):
                raise NotFoundError("Table not found", field="table_id")
            table_id = payload.table_id
        else:
            table_id = self.store.insert("table", data)
        logger.info(f"Table {payload.no} saved (capacity {payload.capacity})")
        return Table(id=table_id, **data)

    # ---------- menu ----------
    def list_menu_items(self, actor: Optional[Staff]) -> List[MenuItem]:
        require_role(actor)
        return [MenuItem(**m) for m in self.store.find("menuitem")]

    def save_menu_item(self, actor: Optional[Staff], payload: MenuItemIn) -> MenuItem:
        require_role(actor, Role.MANAGER)
        data = {"name": payload.name, "price": payload.price, "category": payload.category}
        if payload.item_id:
            if not self.store.update("menuitem", payload.item_id, data):
                raise NotFoundError("Menu item not found", field="item_id")
            item_id = payload.item_id
        else:
            item_id = self.store.insert("menuitem", data)
        logger.info(f"Menu item {payload.name} saved at {payload.price}")
        return MenuItem(id=item_id, **data)

    # ---------- waiters ----------
    def list_waiters(self, actor: Optional[Staff]) -> List[StaffOut]:
        require_role(actor)
        return [StaffOut(**s) for s in self.store.find("staff", {"role": Role.WAITER})]

    def save_waiter(self, actor: Optional[Staff], payload: WaiterIn) -> StaffOut:
        require_role(actor, Role.MANAGER)
        email = payload.email.lower()
        existing = self.store.find_one("staff", {"email": email})
        if existing and existing["id"] != payload.user_id:
            raise ConflictError("Email is already in use", field="email")

        if payload.user_id:
            doc = self.store.get("staff", payload.user_id)
            if not doc or doc.get("role") != Role.WAITER.value:
                raise NotFoundError("Waiter not found", field="user_id")
            changes = {"name": payload.name, "email": email}
            if payload.password:
                changes["password_hash"] = hash_password(payload.password)
                changes["has_reset_password"] = False
            self.store.update("staff", payload.user_id, changes)
            return StaffOut(**{**doc, **changes})

        if not payload.password:
            raise MissingPreconditionError("Password is required for new waiter", field="password")
        staff_id = self.store.insert("staff", {
            "name": payload.name,
            "email": email,
            "role": Role.WAITER,
            "password_hash": hash_password(payload.password),
            "has_reset_password": False,
        })
        logger.info(f"Waiter {email} created")
        return StaffOut(id=staff_id, name=payload.name, email=email, role=Role.WAITER)
