from __future__ import annotations
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from jwt.exceptions import InvalidTokenError

from database import Store
from errors import NotFoundError, PermissionDeniedError
from schemas import Role, Staff

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"
TOKEN_TTL = timedelta(hours=12)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode(), hashed.encode())


def require_role(staff: Optional[Staff], *roles: Role) -> Staff:
    """Ensure a signed-in staff member holds one of ``roles`` (any role if none given)."""
    if staff is None:
        raise PermissionDeniedError("Sign in required")
    if roles and staff.role not in roles:
        raise PermissionDeniedError(f"{staff.role.value.title()} cannot perform this action")
    return staff


def get_staff(store: Store, staff_id: str) -> Optional[Staff]:
    doc = store.get("staff", staff_id)
    return Staff(**doc) if doc else None


def authenticate(store: Store, email: str, password: str) -> Optional[Staff]:
    doc = store.find_one("staff", {"email": email.lower()})
    if not doc or not doc.get("password_hash"):
        return None
    if not verify_password(password, doc["password_hash"]):
        logger.info(f"Failed login for {email}")
        return None
    return Staff(**doc)


def issue_token(staff: Staff, secret: str, now: Optional[datetime] = None) -> str:
    """Signed bearer token naming the staff member; expires after ``TOKEN_TTL``."""
    now = now or datetime.now(timezone.utc)
    claims = {"sub": staff.id, "role": staff.role.value, "iat": now, "exp": now + TOKEN_TTL}
    return jwt.encode(claims, secret, algorithm=TOKEN_ALGORITHM)


def staff_id_from_token(token: str, secret: str) -> Optional[str]:
    try:
        claims = jwt.decode(token, secret, algorithms=[TOKEN_ALGORITHM])
    except InvalidTokenError as e:
        logger.info(f"Rejected staff token: {e}")
        return None
    return claims.get("sub")


def reset_password(store: Store, staff: Optional[Staff], password: str) -> Staff:
    """Replace the signed-in staff member's password and clear the reset prompt."""
    staff = require_role(staff)
    changes = {"password_hash": hash_password(password), "has_reset_password": True}
    if not store.update("staff", staff.id, changes):
        raise NotFoundError("Staff not found", field="staff_id")
    logger.info(f"Password reset for {staff.email}")
    return staff.model_copy(update=changes)
