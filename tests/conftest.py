# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import asyncio
import copy
import itertools
from collections import defaultdict, deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from ops_core.auth import Identity
from ops_core.config import SyncConfig
from ops_core.data import ChangeEvent, RemoteStore, SubscriptionHandle
from ops_core.errors import NotFoundError
from ops_core.offline import LocalCacheStore, ModeSelector, StorageMode
from ops_core.services import MutationEventBus
from ops_core.sync import create_workspace


# =============================================================================
# FAKE REMOTE STORE
# =============================================================================

class FakeBackend:
    """
    The shared "server": tables plus change-feed subscribers.

    Several FakeRemoteStore clients can point at one backend to model
    multiple open browsers.
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.subscribers: Dict[str, List[Tuple[str, Callable[[ChangeEvent], None]]]] = defaultdict(list)
        self._ids = itertools.count(1)

    def next_id(self, table: str) -> str:
        return f"{table}-{next(self._ids)}"

    def seed(self, table: str, rows: List[Dict[str, Any]]) -> None:
        self.tables[table].extend(copy.deepcopy(rows))

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(self.tables[table])

    def find(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        return next((r for r in self.tables[table] if r.get("id") == record_id), None)

    def notify(self, table: str, event_type: str, record: Optional[Dict[str, Any]] = None) -> None:
        event = ChangeEvent(table=table, event_type=event_type, record=copy.deepcopy(record))
        for _, callback in list(self.subscribers[table]):
            callback(event)

    def subscriber_count(self, table: Optional[str] = None) -> int:
        if table is not None:
            return len(self.subscribers[table])
        return sum(len(subs) for subs in self.subscribers.values())


class FakeRemoteStore(RemoteStore):
    """
    In-memory RemoteStore for one client.

    - ``fail(operation, error)`` makes the next call of that operation raise
    - ``select_gates`` / ``write_gate`` hold calls until an Event is set;
      a held select returns the snapshot taken when it was called
    """

    def __init__(self, backend: Optional[FakeBackend] = None):
        self.backend = backend or FakeBackend()
        self.failures: Dict[str, List[Exception]] = defaultdict(list)
        self.select_gates: Deque[asyncio.Event] = deque()
        self.write_gate: Optional[asyncio.Event] = None
        self.calls: List[Tuple[str, str]] = []
        self.handles: Dict[str, SubscriptionHandle] = {}
        self.unsubscribe_calls = 0
        self.closed = False
        self._channels = itertools.count(1)

    def fail(self, operation: str, error: Exception) -> None:
        self.failures[operation].append(error)

    def count(self, operation: str, table: Optional[str] = None) -> int:
        return sum(1 for op, t in self.calls if op == operation and (table is None or t == table))

    def _record_call(self, operation: str, table: str) -> None:
        self.calls.append((operation, table))
        if self.failures[operation]:
            raise self.failures[operation].pop(0)

    async def _hold_write(self) -> None:
        if self.write_gate is not None:
            await self.write_gate.wait()

    async def select(self, table, filters=None, order_by=None, ascending=True):
        self._record_call("select", table)
        rows = self.backend.rows(table)
        if filters:
            rows = [r for r in rows if all(r.get(k) == v for k, v in filters.items())]
        if order_by:
            rows.sort(key=lambda r: r.get(order_by) or "", reverse=not ascending)

        gate = self.select_gates.popleft() if self.select_gates else None
        if gate is not None:
            await gate.wait()
        return rows

    async def insert(self, table, record):
        await self._hold_write()
        self._record_call("insert", table)
        row = copy.deepcopy(record)
        row["id"] = row.get("id") or self.backend.next_id(table)
        self.backend.tables[table].append(row)
        self.backend.notify(table, "INSERT", row)
        return copy.deepcopy(row)

    async def update(self, table, record_id, partial):
        await self._hold_write()
        self._record_call("update", table)
        row = self.backend.find(table, record_id)
        if row is None:
            raise NotFoundError(f"No {table} row with id {record_id}", entity_type=table, entity_id=record_id)
        row.update(copy.deepcopy(partial))
        self.backend.notify(table, "UPDATE", row)
        return copy.deepcopy(row)

    async def delete(self, table, record_id):
        await self._hold_write()
        self._record_call("delete", table)
        row = self.backend.find(table, record_id)
        if row is not None:
            self.backend.tables[table].remove(row)
        self.backend.notify(table, "DELETE", row)

    async def subscribe_to_changes(self, table, on_change):
        self._record_call("subscribe", table)
        channel_name = f"{table}_changes_{next(self._channels)}"
        self.backend.subscribers[table].append((channel_name, on_change))
        handle = SubscriptionHandle(table=table, channel_name=channel_name)
        self.handles[channel_name] = handle
        return handle

    async def unsubscribe(self, handle):
        self.unsubscribe_calls += 1
        handle.active = False
        self.handles.pop(handle.channel_name, None)
        self.backend.subscribers[handle.table] = [
            (name, cb) for name, cb in self.backend.subscribers[handle.table]
            if name != handle.channel_name
        ]

    async def close(self):
        for handle in list(self.handles.values()):
            await self.unsubscribe(handle)
        self.closed = True


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


# =============================================================================
# CONFIG / STORES
# =============================================================================

@pytest.fixture
def config():
    """Cache-only config with an in-memory SQLite cache"""
    return SyncConfig(cache_path=":memory:", activity_log_cap=1000)


@pytest.fixture
def cache():
    store = LocalCacheStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def identity():
    return Identity("user_1", "Ada Lovelace", "ada@example.com", role="admin")


@pytest.fixture
def other_identity():
    return Identity("user_2", "Grace Hopper", "grace@example.com", role="team")


@pytest.fixture
def event_bus():
    return MutationEventBus()


@pytest.fixture
def cache_mode(config):
    return ModeSelector(config, override=StorageMode.CACHE_ONLY)


@pytest.fixture
def remote_mode(config):
    return ModeSelector(config, override=StorageMode.REMOTE)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def remote(backend):
    return FakeRemoteStore(backend)


@pytest.fixture
def make_remote(backend):
    """Factory for additional clients on the same backend"""
    def _make() -> FakeRemoteStore:
        return FakeRemoteStore(backend)
    return _make


# =============================================================================
# WORKSPACES
# =============================================================================

@pytest_asyncio.fixture
async def cache_workspace(config, clock):
    """Cache-only workspace, loaded and seeded"""
    workspace = await create_workspace(config, clock=clock)
    await workspace.start()
    yield workspace
    await workspace.close()


@pytest_asyncio.fixture
async def remote_workspace(config, remote, clock, identity):
    """Remote-mode workspace with a signed-in user"""
    workspace = await create_workspace(config, remote=remote, clock=clock)
    await workspace.start()
    workspace.login(identity)
    await workspace.event_bus.drain()
    await workspace.realtime.drain()
    yield workspace
    await workspace.close()
