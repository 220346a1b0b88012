from __future__ import annotations
import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Protocol

from bson import ObjectId
from bson.decimal128 import Decimal128
from bson.errors import InvalidId
from dotenv import load_dotenv
from pymongo import MongoClient
from pymongo.client_session import ClientSession
from pymongo.errors import PyMongoError

from errors import ConflictError

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "restaurant")
DATABASE_TRANSACTIONS = os.getenv("DATABASE_TRANSACTIONS", "true").lower() in ("1", "true", "yes", "on")

logger = logging.getLogger(__name__)


class Store(Protocol):
    """Document store the engine reads and writes through.

    Documents come back as plain dicts with a string ``id`` key. Filters are
    equality matches; a ``None`` value matches a missing or null field.
    """

    def insert(self, collection: str, data: Dict[str, Any]) -> str: ...

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]: ...

    def find_one(self, collection: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]: ...

    def find(self, collection: str, filter_dict: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]: ...

    def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> bool: ...

    def delete(self, collection: str, doc_id: str) -> bool: ...

    def transaction(self) -> Any: ...


def encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [encode(v) for v in value]
    return value


def decode(value: Any) -> Any:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: decode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode(v) for v in value]
    return value


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = decode(doc)
    doc["id"] = doc.pop("_id")
    return doc


def _oid(doc_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(doc_id)
    except (InvalidId, TypeError):
        return None


class MongoStore:
    def __init__(self, client: MongoClient, database_name: str, use_transactions: bool = True):
        self.client = client
        self.db = client[database_name]
        self.use_transactions = use_transactions
        self._session: ContextVar[Optional[ClientSession]] = ContextVar("mongo_session", default=None)

    @property
    def session(self) -> Optional[ClientSession]:
        return self._session.get()

    def insert(self, collection: str, data: Dict[str, Any]) -> str:
        now = datetime.utcnow()
        doc = encode({k: v for k, v in data.items() if k != "id"})
        doc["created_at"] = now
        doc["updated_at"] = now
        res = self.db[collection].insert_one(doc, session=self.session)
        return str(res.inserted_id)

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        oid = _oid(doc_id)
        if oid is None:
            return None
        return serialize(self.db[collection].find_one({"_id": oid}, session=self.session))

    def find_one(self, collection: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return serialize(self.db[collection].find_one(encode(filter_dict), session=self.session))

    def find(self, collection: str, filter_dict: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        cursor = self.db[collection].find(encode(filter_dict or {}), session=self.session)
        return [serialize(doc) for doc in cursor]

    def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> bool:
        oid = _oid(doc_id)
        if oid is None:
            return False
        changes = encode({k: v for k, v in changes.items() if k != "id"})
        changes["updated_at"] = datetime.utcnow()
        res = self.db[collection].update_one({"_id": oid}, {"$set": changes}, session=self.session)
        return res.matched_count > 0

    def delete(self, collection: str, doc_id: str) -> bool:
        oid = _oid(doc_id)
        if oid is None:
            return False
        res = self.db[collection].delete_one({"_id": oid}, session=self.session)
        return res.deleted_count > 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        # Nested units of work join the outer session.
        if not self.use_transactions or self.session is not None:
            yield
            return
        with self.client.start_session() as session:
            token = self._session.set(session)
            try:
                with session.start_transaction():
                    yield
            except PyMongoError as e:
                if e.has_error_label("TransientTransactionError"):
                    logger.warning(f"Transaction aborted by a concurrent write: {e}")
                    raise ConflictError("The record was changed concurrently, please retry") from e
                raise
            finally:
                self._session.reset(token)


_store: Optional[MongoStore] = None


def get_store() -> MongoStore:
    global _store
    if _store is None:
        _store = MongoStore(MongoClient(DATABASE_URL), DATABASE_NAME, use_transactions=DATABASE_TRANSACTIONS)
    return _store
