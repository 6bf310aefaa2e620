"""
Transactional in-memory record store.

Records are plain dicts grouped in named tables. Every read-modify-write goes
through ``InMemoryStorage.transaction``, which

- takes a pessimistic lock on each record key named by the caller, always in
  the same global order so two transactions cannot deadlock,
- buffers writes and publishes them in one step on commit,
- discards the buffer when the block raises, so a failed operation leaves no
  partial writes behind.

Unique indexes (``subscription_index``, ``referral_index``,
``referral_code_index``) are tables too and follow the same rules.
"""

import threading
from contextlib import contextmanager
from typing import Any, Hashable, Iterator, Optional

import structlog


logger = structlog.get_logger(__name__)

_MISSING = object()

LockKey = tuple[str, Hashable]


class DuplicateKeyError(Exception):
    pass


class InMemoryStorage:
    TABLES = (
        "accounts",
        "orders",
        "subscriptions",
        "referrals",
        "withdrawals",
        "audit_log",
        # unique indexes
        "subscription_index",
        "referral_index",
        "referral_code_index",
    )

    def __init__(self):
        self.accounts: dict[Any, dict] = {}
        self.orders: dict[Any, dict] = {}
        self.subscriptions: dict[Any, dict] = {}
        self.referrals: dict[Any, dict] = {}
        self.withdrawals: dict[Any, dict] = {}
        self.audit_log: dict[Any, dict] = {}
        self.subscription_index: dict[tuple, Any] = {}
        self.referral_index: dict[Any, Any] = {}
        self.referral_code_index: dict[str, Any] = {}

        self._commit_guard = threading.RLock()
        self._locks_guard = threading.Lock()
        self._record_locks: dict[LockKey, threading.RLock] = {}

    def table(self, name: str) -> dict:
        if name not in self.TABLES:
            raise KeyError(f"Unknown table {name!r}")
        return getattr(self, name)

    def get(self, table: str, key: Hashable) -> Optional[dict]:
        with self._commit_guard:
            record = self.table(table).get(key)
            return dict(record) if isinstance(record, dict) else record

    def snapshot(self, table: str) -> list[dict]:
        with self._commit_guard:
            return [dict(r) for r in self.table(table).values()]

    @contextmanager
    def transaction(self, *keys: LockKey) -> Iterator["Transaction"]:
        locks = [self._lock_for(key) for key in sorted(set(keys), key=_lock_order)]
        for lock in locks:
            lock.acquire()
        try:
            txn = Transaction(self, locked=set(keys))
            yield txn
            txn.commit()
        finally:
            for lock in reversed(locks):
                lock.release()

    def _lock_for(self, key: LockKey) -> threading.RLock:
        with self._locks_guard:
            lock = self._record_locks.get(key)
            if lock is None:
                lock = self._record_locks[key] = threading.RLock()
            return lock


def _lock_order(key: LockKey) -> tuple[str, str]:
    return key[0], str(key[1])


class Transaction:
    def __init__(self, storage: InMemoryStorage, locked: set[LockKey]):
        self.storage = storage
        self.locked = locked
        self._writes: dict[tuple[str, Hashable], Any] = {}
        self._committed = False

    def get(self, table: str, key: Hashable) -> Optional[dict]:
        """Read through the write buffer; returns a private copy."""
        value = self._writes.get((table, key), _MISSING)
        if value is _MISSING:
            return self.storage.get(table, key)
        return dict(value) if isinstance(value, dict) else value

    def exists(self, table: str, key: Hashable) -> bool:
        return self.get(table, key) is not None

    def put(self, table: str, key: Hashable, value: Any) -> None:
        self.storage.table(table)
        self._writes[(table, key)] = dict(value) if isinstance(value, dict) else value

    def insert(self, table: str, key: Hashable, value: Any) -> None:
        if self.exists(table, key):
            raise DuplicateKeyError(f"{table}: key {key!r} already exists")
        self.put(table, key, value)

    def commit(self) -> None:
        if self._committed:
            return
        with self.storage._commit_guard:
            for (table, key), value in self._writes.items():
                self.storage.table(table)[key] = value
        self._committed = True
        if self._writes:
            logger.debug("transaction_committed", writes=len(self._writes), locks=len(self.locked))
