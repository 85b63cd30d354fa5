"""
Datastore layer

Two stores share one document interface:

- MongoStore talks to MongoDB through pymongo and runs ``transaction`` as a
  server-side multi-document transaction on a client session.
- MemoryStore keeps documents in process with per-document versions and
  optimistic commits. It backs local runs without DATABASE_URL and the tests.

Documents are plain dicts keyed by a string ``id``. A store's ``transaction``
makes a single attempt; ``run_transaction`` owns the retry policy.
"""
import copy
import itertools
import logging
import random
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, TypeVar

from bson import ObjectId
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from errors import TransactionConflict, TransientStorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY = 0.05
DEFAULT_MAX_DELAY = 1.0


class Transaction(Protocol):
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]: ...

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None: ...

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None: ...

    def add(self, collection: str, data: Dict[str, Any]) -> str: ...


class Datastore(Protocol):
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]: ...

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None: ...

    def add(self, collection: str, data: Dict[str, Any]) -> str: ...

    def query(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]: ...

    def delete(self, collection: str, doc_id: str) -> bool: ...

    def count(self, collection: str) -> int: ...

    def collections(self) -> List[str]: ...

    def transaction(self, fn: Callable[[Transaction], T]) -> T: ...


def new_id() -> str:
    return str(ObjectId())


def serialize_doc(doc: Optional[Dict[str, Any]]):
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    # Convert datetime
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
    return doc


def run_transaction(
    store: Datastore,
    fn: Callable[[Transaction], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    jitter: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``fn`` in a store transaction, retrying lost races.

    Each conflict waits ``base_delay * 2**n`` seconds (capped at ``max_delay``,
    randomised up to 50% when ``jitter`` is on) before the next attempt. When
    every attempt conflicts the last conflict is re-raised as
    ``TransientStorageError``. Any other exception raised by ``fn`` aborts the
    transaction and propagates untouched.
    """
    delay = base_delay
    for attempt in range(1, max_attempts + 1):
        try:
            return store.transaction(fn)
        except TransactionConflict as exc:
            if attempt >= max_attempts:
                logger.error("Transaction gave up after %d attempts: %s", attempt, exc)
                raise TransientStorageError(
                    f"Storage is busy, please retry (gave up after {attempt} attempts)"
                ) from exc
            wait = delay * random.uniform(1.0, 1.5) if jitter else delay
            logger.warning("Transaction conflict on attempt %d/%d, retrying in %.3fs", attempt, max_attempts, wait)
            sleep(wait)
            delay = min(delay * 2, max_delay)
    raise TransientStorageError("Transaction was not attempted")


# ----------------------- MongoDB -----------------------
def _key(doc_id: str):
    return ObjectId(doc_id) if ObjectId.is_valid(doc_id) else doc_id


def _to_mongo(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k not in ("id", "_id")}


def _from_mongo(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def _mongo_filter(filters: Dict[str, Any]) -> Dict[str, Any]:
    query = dict(filters)
    if "id" in query:
        query["_id"] = _key(query.pop("id"))
    return query


class MongoTransaction:
    def __init__(self, db, session):
        self._db = db
        self._session = session

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._db[collection].find_one({"_id": _key(doc_id)}, session=self._session)
        return _from_mongo(doc)

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        if merge:
            self._db[collection].update_one(
                {"_id": _key(doc_id)}, {"$set": _to_mongo(data)}, upsert=True, session=self._session
            )
        else:
            self._db[collection].replace_one(
                {"_id": _key(doc_id)}, _to_mongo(data), upsert=True, session=self._session
            )

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        result = self._db[collection].update_one(
            {"_id": _key(doc_id)}, {"$set": _to_mongo(fields)}, session=self._session
        )
        if result.matched_count == 0:
            raise LookupError(f"{collection}/{doc_id} does not exist")

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = new_id()
        self._db[collection].insert_one({**_to_mongo(data), "_id": ObjectId(doc_id)}, session=self._session)
        return doc_id


class MongoStore:
    """pymongo-backed store. Transactions need a replica set or sharded cluster."""

    def __init__(self, client: MongoClient, database_name: str):
        self.client = client
        self.db = client[database_name]

    @classmethod
    def from_url(cls, url: str, database_name: str) -> "MongoStore":
        return cls(MongoClient(url, tz_aware=True), database_name)

    @property
    def name(self) -> str:
        return self.db.name

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return _from_mongo(self.db[collection].find_one({"_id": _key(doc_id)}))

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        if merge:
            self.db[collection].update_one({"_id": _key(doc_id)}, {"$set": _to_mongo(data)}, upsert=True)
        else:
            self.db[collection].replace_one({"_id": _key(doc_id)}, _to_mongo(data), upsert=True)

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        result = self.db[collection].insert_one(_to_mongo(data))
        return str(result.inserted_id)

    def query(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return [_from_mongo(d) for d in self.db[collection].find(_mongo_filter(filters or {}))]

    def delete(self, collection: str, doc_id: str) -> bool:
        return self.db[collection].delete_one({"_id": _key(doc_id)}).deleted_count > 0

    def count(self, collection: str) -> int:
        return self.db[collection].count_documents({})

    def collections(self) -> List[str]:
        return self.db.list_collection_names()

    def transaction(self, fn: Callable[[Transaction], T]) -> T:
        try:
            with self.client.start_session() as session:
                with session.start_transaction():
                    return fn(MongoTransaction(self.db, session))
        except PyMongoError as exc:
            if exc.has_error_label("TransientTransactionError"):
                raise TransactionConflict(str(exc)) from exc
            raise TransientStorageError(f"Storage error: {str(exc)[:120]}") from exc

    def close(self) -> None:
        self.client.close()


# ----------------------- In-process -----------------------
def _matches(doc: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    if not filters:
        return True
    return all(doc.get(k) == v for k, v in filters.items())


class MemoryTransaction:
    def __init__(self, store: "MemoryStore"):
        self._store = store
        self._reads: Dict[Tuple[str, str], int] = {}
        # (collection, doc_id, data, merge, must_exist)
        self._writes: List[Tuple[str, str, Dict[str, Any], bool, bool]] = []

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        version, doc = self._store._read(collection, doc_id)
        self._reads.setdefault((collection, doc_id), version)
        return doc

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        self._writes.append((collection, doc_id, copy.deepcopy(data), merge, False))

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        self._writes.append((collection, doc_id, copy.deepcopy(fields), True, True))

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = new_id()
        self._writes.append((collection, doc_id, copy.deepcopy(data), False, False))
        return doc_id

    def commit(self) -> None:
        store = self._store
        with store._lock:
            for (collection, doc_id), version in self._reads.items():
                if store._version(collection, doc_id) != version:
                    raise TransactionConflict(f"{collection}/{doc_id} changed during transaction")
            for collection, doc_id, _, _, must_exist in self._writes:
                if must_exist and store._version(collection, doc_id) == 0:
                    raise LookupError(f"{collection}/{doc_id} does not exist")
            for collection, doc_id, data, merge, _ in self._writes:
                store._write(collection, doc_id, data, merge)


class MemoryStore:
    """Thread-safe in-process store with optimistic transactions.

    Every write stamps the document with a fresh version from a store-wide
    counter. A transaction remembers the version of each document it read and
    commits only if none of them moved in the meantime.
    """

    name = "memory"

    def __init__(self):
        self._lock = threading.Lock()
        self._clock = itertools.count(1)
        self._tables: Dict[str, Dict[str, Tuple[int, Dict[str, Any]]]] = {}

    def _table(self, collection: str) -> Dict[str, Tuple[int, Dict[str, Any]]]:
        return self._tables.setdefault(collection, {})

    def _version(self, collection: str, doc_id: str) -> int:
        entry = self._table(collection).get(doc_id)
        return entry[0] if entry else 0

    def _read(self, collection: str, doc_id: str) -> Tuple[int, Optional[Dict[str, Any]]]:
        with self._lock:
            entry = self._table(collection).get(doc_id)
            if entry is None:
                return 0, None
            version, body = entry
            return version, {**copy.deepcopy(body), "id": doc_id}

    def _write(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool) -> None:
        table = self._table(collection)
        body = _to_mongo(data)
        current = table.get(doc_id)
        if merge and current is not None:
            body = {**current[1], **body}
        table[doc_id] = (next(self._clock), copy.deepcopy(body))

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return self._read(collection, doc_id)[1]

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        with self._lock:
            self._write(collection, doc_id, data, merge)

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = new_id()
        self.set(collection, doc_id, data)
        return doc_id

    def query(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        with self._lock:
            docs = [{**copy.deepcopy(body), "id": doc_id} for doc_id, (_, body) in self._table(collection).items()]
        return [d for d in docs if _matches(d, filters)]

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            return self._table(collection).pop(doc_id, None) is not None

    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._table(collection))

    def collections(self) -> List[str]:
        with self._lock:
            return sorted(name for name, table in self._tables.items() if table)

    def transaction(self, fn: Callable[[Transaction], T]) -> T:
        txn = MemoryTransaction(self)
        result = fn(txn)
        txn.commit()
        return result

    def close(self) -> None:
        pass


def connect(database_url: Optional[str], database_name: str):
    """Build the store for a process. Falls back to MemoryStore without a URL."""
    if not database_url:
        logger.warning("DATABASE_URL not set, using in-process MemoryStore")
        return MemoryStore()
    logger.info("Connecting to MongoDB database %s", database_name)
    return MongoStore.from_url(database_url, database_name)
