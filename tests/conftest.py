from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from core.db import ConnectionManager
from core.settings import DatabaseSettings, Settings

NOW = datetime(2026, 5, 31, 12, 0, tzinfo=timezone.utc)


# ===========================================================================
# In-memory certificates table
# ===========================================================================


@dataclass
class MemoryStore:
    rows: list[dict[str, Any]] = field(default_factory=list)
    ddl: list[str] = field(default_factory=list)
    insert_calls: int = 0
    fail_insert_on_call: int | None = None
    next_id: int = 1
    clock: datetime = NOW

    def add(self, **row: Any) -> dict[str, Any]:
        stored = {"id": self.next_id, "created_at": self.clock, **row}
        self.next_id += 1
        self.rows.append(stored)
        return stored

    def keys(self) -> set[tuple[str, str]]:
        return {(r["id_number"], r["cert_number"]) for r in self.rows}


class FakeTransaction:
    def __init__(self, conn: FakeConnection) -> None:
        self._conn = conn

    async def __aenter__(self) -> FakeTransaction:
        self._conn.events.append("begin")
        self._conn.pending = []
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> bool:
        pending, self._conn.pending = self._conn.pending, None
        if exc_type is None:
            for row in pending or []:
                self._conn.store.add(**row)
            self._conn.events.append("commit")
        else:
            self._conn.events.append("rollback")
        return False


class FakeConnection:
    """
    Understands exactly the statements the application issues.
    """

    def __init__(self, store: MemoryStore) -> None:
        self.store = store
        self.events: list[str] = []
        self.pending: list[dict[str, Any]] | None = None
        self.raise_on_fetch: BaseException | None = None

    def transaction(self) -> FakeTransaction:
        return FakeTransaction(self)

    async def execute(self, sql: str, *args: Any) -> str:
        text = " ".join(sql.split())
        if text.startswith("CREATE"):
            self.store.ddl.append(text)
            return "CREATE TABLE"
        if text.startswith("INSERT INTO certificates"):
            return self._insert(*args)
        if text.startswith("DELETE FROM certificates WHERE created_at < $1"):
            cutoff = args[0]
            kept = [r for r in self.store.rows if r["created_at"] >= cutoff]
            deleted = len(self.store.rows) - len(kept)
            self.store.rows[:] = kept
            return f"DELETE {deleted}"
        raise AssertionError(f"unexpected statement: {text}")

    def _insert(self, names, genders, id_types, id_numbers, cert_numbers) -> str:
        self.store.insert_calls += 1
        if self.store.fail_insert_on_call == self.store.insert_calls:
            raise RuntimeError("value too long for type character varying(50)")

        existing = self.store.keys() | {(r["id_number"], r["cert_number"]) for r in self.pending or []}
        inserted = 0
        for row in zip(names, genders, id_types, id_numbers, cert_numbers):
            key = (row[3], row[4])
            if key in existing:
                continue
            existing.add(key)
            record = dict(zip(("name", "gender", "id_type", "id_number", "cert_number"), row))
            if self.pending is None:
                self.store.add(**record)
            else:
                self.pending.append(record)
            inserted += 1
        return f"INSERT 0 {inserted}"

    async def fetch(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        if self.raise_on_fetch is not None:
            raise self.raise_on_fetch
        text = " ".join(sql.split())
        if "WHERE id_number = $1 OR cert_number = $1" in text:
            key = args[0]
            matches = [r for r in self.store.rows if key in (r["id_number"], r["cert_number"])]
            return sorted(matches, key=lambda r: r["id"])
        raise AssertionError(f"unexpected query: {text}")

    async def fetchrow(self, sql: str, *args: Any) -> dict[str, Any] | None:
        text = " ".join(sql.split())
        if "FROM certificates" in text and "count(*) AS total" in text:
            cutoff = args[0]
            rows = self.store.rows
            created = [r["created_at"] for r in rows]
            return {
                "total": len(rows),
                "expired": sum(1 for c in created if c < cutoff),
                "holders": len({(r["name"], r["id_number"]) for r in rows}),
                "oldest": min(created) if created else None,
                "newest": max(created) if created else None,
            }
        raise AssertionError(f"unexpected query: {text}")

    async def fetchval(self, sql: str, *args: Any) -> Any:
        assert sql == "SELECT 1"
        return 1


# ===========================================================================
# Pool + scheduler fakes
# ===========================================================================


class _Acquire:
    def __init__(self, pool: FakePool, timeout: float | None) -> None:
        self._pool = pool
        self._timeout = timeout

    async def __aenter__(self) -> FakeConnection:
        self._pool.acquire_timeouts.append(self._timeout)
        if self._pool.acquire_error is not None:
            raise self._pool.acquire_error
        self._pool.checked_out += 1
        return self._pool.conn

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> bool:
        self._pool.checked_out -= 1
        self._pool.released += 1
        return False


class FakePool:
    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn
        self.checked_out = 0
        self.released = 0
        self.acquire_timeouts: list[float | None] = []
        self.acquire_error: BaseException | None = None
        self.terminated = False
        self.closed = False

    def acquire(self, *, timeout: float | None = None) -> _Acquire:
        return _Acquire(self, timeout)

    def terminate(self) -> None:
        self.terminated = True

    async def close(self) -> None:
        self.closed = True


class PoolFactory:
    """
    Fails the first `failures` calls, then hands out fresh `FakePool`s.
    """

    def __init__(self, store: MemoryStore, *, failures: int = 0) -> None:
        self.store = store
        self.failures = failures
        self.calls = 0
        self.pools: list[FakePool] = []

    async def __call__(self, settings: DatabaseSettings) -> FakePool:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionRefusedError(111, "Connection refused")
        pool = FakePool(FakeConnection(self.store))
        self.pools.append(pool)
        return pool

    @property
    def current(self) -> FakePool:
        return self.pools[-1]


@dataclass
class FakeScheduledTask:
    delay_s: float
    callback: Any
    cancelled: bool = False
    ran: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    def __init__(self) -> None:
        self.tasks: list[FakeScheduledTask] = []

    def call_later(self, delay_s: float, callback: Any) -> FakeScheduledTask:
        task = FakeScheduledTask(delay_s, callback)
        self.tasks.append(task)
        return task

    @property
    def pending(self) -> list[FakeScheduledTask]:
        return [t for t in self.tasks if not t.cancelled and not t.ran]

    async def run_next(self) -> None:
        task = self.pending[0]
        task.ran = True
        await task.callback()


# ===========================================================================
# Builders
# ===========================================================================


def db_settings(**overrides: Any) -> DatabaseSettings:
    values: dict[str, Any] = {"host": "db.internal", "password": "s3cret", "reconnect_delay_s": 5.0}
    values.update(overrides)
    return DatabaseSettings(**values)


def make_manager(
    store: MemoryStore,
    *,
    failures: int = 0,
    scheduler: FakeScheduler | None = None,
    **overrides: Any,
) -> tuple[ConnectionManager, PoolFactory, FakeScheduler]:
    scheduler = scheduler or FakeScheduler()
    factory = PoolFactory(store, failures=failures)
    manager = ConnectionManager(db_settings(**overrides), scheduler=scheduler, pool_factory=factory)
    return manager, factory, scheduler


def started_manager(store: MemoryStore, **overrides: Any) -> tuple[ConnectionManager, PoolFactory]:
    manager, factory, _ = make_manager(store, **overrides)
    asyncio.run(manager.start())
    assert manager.is_available
    return manager, factory


def app_settings(tmp_path: Path, **overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "database": db_settings(),
        "upload_dir": tmp_path / "uploads",
        "admin_secret": "let-me-in",
    }
    values.update(overrides)
    return Settings(**values)


def person(name: str = "A", id_number: str = "111", cert_number: str = "C1", **extra: str) -> dict[str, str]:
    row = {"name": name, "gender": "F", "id_type": "ID", "id_number": id_number, "cert_number": cert_number}
    row.update(extra)
    return row


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def old_and_new_store() -> MemoryStore:
    store = MemoryStore()
    store.add(**person(cert_number="OLD"), created_at=NOW - timedelta(days=100))
    store.add(**person(cert_number="NEW"), created_at=NOW - timedelta(days=1))
    return store
