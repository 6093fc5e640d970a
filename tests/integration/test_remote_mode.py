# =============================================================================
# tests/integration/test_remote_mode.py
# Integration Tests for collection managers backed by the remote store
# =============================================================================

import asyncio

import pytest

from ops_core.auth import UserSession
from ops_core.errors import AuthorizationError, ConfigurationError, ConnectivityError, RemoteStoreError
from ops_core.sync import JobTaskManager, SOPManager

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]

TASK = {
    "title": "Restock shelves",
    "assigned_to": ["user_1"],
    "scheduled_date": "2024-03-01",
    "steps": [
        {"id": "s1", "title": "Count", "order": 1},
        {"id": "s2", "title": "Order", "order": 2},
        {"id": "s3", "title": "Shelve", "order": 3},
    ],
}


@pytest.fixture
def session(identity):
    session = UserSession()
    session.login(identity)
    return session


@pytest.fixture
def make_manager(config, cache, remote_mode, remote, session):
    def _make(cls, store=None):
        return cls(config, cache, remote_mode, remote=store or remote, session=session)
    return _make


@pytest.fixture
def tasks(make_manager):
    return make_manager(JobTaskManager)


@pytest.fixture
def sops(make_manager, backend):
    backend.seed("sops", [{"id": "a", "title": "A", "status": "draft", "created_at": "2024-01-01"}])
    return make_manager(SOPManager)


class TestLoad:
    """Sequence-tagged reloads from the remote store"""

    async def test_load_mirrors_to_cache(self, sops, cache, config):
        result = await sops.load()

        assert result.metadata["source"] == "remote"
        assert [s.id for s in sops.records] == ["a"]
        assert cache.read_collection(config.storage_key("sops"))[0]["id"] == "a"

    async def test_remote_mode_does_not_seed(self, sops):
        await sops.load()
        assert sops.get("sop_default_reporting") is None

    async def test_failed_load_keeps_state(self, sops, remote):
        await sops.load()
        remote.fail("select", ConnectivityError("offline"))

        result = await sops.load()

        assert not result
        assert result.error_code == "NET_001"
        assert [s.id for s in sops.records] == ["a"]
        assert sops.last_error == "offline"

    async def test_stale_reload_is_discarded(self, sops, remote, backend):
        slow = asyncio.Event()
        remote.select_gates.append(slow)

        first = asyncio.ensure_future(sops.load())
        await asyncio.sleep(0)
        backend.seed("sops", [{"id": "b", "title": "B", "created_at": "2024-01-02"}])
        second = await sops.load()
        slow.set()
        first_result = await first

        assert second.metadata["stale"] is False
        assert first_result.metadata["stale"] is True
        assert {s.id for s in sops.records} == {"a", "b"}
        assert sops.applied_sequence == second.metadata["sequence"]

    async def test_remote_mode_requires_a_remote(self, config, cache, remote_mode):
        with pytest.raises(ConfigurationError):
            SOPManager(config, cache, remote_mode, remote=None)


class TestAdd:
    """Inserts get their id from the remote store"""

    async def test_add_uses_remote_id(self, tasks, remote, backend):
        task = await tasks.add(TASK)

        assert task.id == backend.rows("job_tasks")[0]["id"]
        assert tasks.get(task.id) is not None
        assert remote.count("insert", "job_tasks") == 1
        assert remote.count("select", "job_tasks") == 1

    async def test_add_failure_leaves_memory_unchanged(self, tasks, remote):
        remote.fail("insert", RemoteStoreError("constraint violated"))

        with pytest.raises(RemoteStoreError):
            await tasks.add(TASK)
        assert len(tasks) == 0


class TestOptimisticUpdate:
    """Local state changes before the round-trip and reverts on failure"""

    async def test_change_visible_before_confirmation(self, tasks, remote, backend):
        task = await tasks.add(TASK)
        remote.write_gate = asyncio.Event()

        pending = asyncio.ensure_future(tasks.toggle_step(task.id, "s1"))
        await asyncio.sleep(0)

        assert tasks.get(task.id).progress_percentage == 33
        assert backend.find("job_tasks", task.id)["completed_steps"] == []

        remote.write_gate.set()
        confirmed = await pending

        assert confirmed.progress_percentage == 33
        assert backend.find("job_tasks", task.id)["completed_steps"] == ["s1"]

    async def test_only_changed_fields_are_sent(self, tasks, remote, backend, monkeypatch):
        task = await tasks.add(TASK)
        sent = []
        original = remote.update

        async def spy(table, record_id, partial):
            sent.append(dict(partial))
            return await original(table, record_id, partial)

        monkeypatch.setattr(remote, "update", spy)
        await tasks.update(task.id, {"description": "Aisle 4"})

        assert set(sent[0]) == {"description", "updated_at"}

    async def test_failure_rolls_back(self, tasks, remote):
        task = await tasks.add(TASK)
        remote.fail("update", ConnectivityError("offline"))

        with pytest.raises(ConnectivityError):
            await tasks.toggle_step(task.id, "s1")

        rolled_back = tasks.get(task.id)
        assert rolled_back.completed_steps == []
        assert rolled_back.progress_percentage == 0
        assert rolled_back.status == "pending"

    async def test_rollback_skipped_after_newer_reload(self, sops, remote, backend):
        await sops.load()
        remote.fail("update", ConnectivityError("offline"))
        remote.write_gate = asyncio.Event()

        pending = asyncio.ensure_future(sops.update("a", {"title": "Mine"}))
        await asyncio.sleep(0)
        assert sops.get("a").title == "Mine"

        backend.find("sops", "a")["title"] = "Theirs"
        await sops.load()
        remote.write_gate.set()
        with pytest.raises(ConnectivityError):
            await pending

        assert sops.get("a").title == "Theirs"

    async def test_deleted_remotely_is_a_no_op(self, sops, backend):
        await sops.load()
        backend.tables["sops"].clear()

        assert await sops.update("a", {"title": "Z"}) is None
        assert sops.get("a") is None


class TestDelete:
    """Optimistic removal with re-insert on failure"""

    async def test_delete(self, sops, backend):
        await sops.load()

        assert await sops.delete("a") is True
        assert backend.rows("sops") == []

    async def test_delete_failure_reinserts_in_place(self, sops, remote, backend):
        backend.seed("sops", [{"id": "b", "title": "B", "created_at": "2023-12-31"}])
        await sops.load()
        order = [s.id for s in sops.records]
        remote.fail("delete", ConnectivityError("offline"))

        with pytest.raises(ConnectivityError):
            await sops.delete(order[0])

        assert [s.id for s in sops.records] == order


class TestAuthorization:
    """Remote writes need a signed-in identity"""

    async def test_signed_out_write_fails_fast(self, tasks, session, remote):
        session.logout()

        with pytest.raises(AuthorizationError):
            await tasks.add(TASK)
        assert remote.count("insert") == 0

    async def test_expiry_blocks_writes(self, remote_workspace, clock, remote):
        task = await remote_workspace.tasks.add(TASK)
        inserts = remote.count("insert", "job_tasks")

        clock.advance(1800)
        remote_workspace.lifetime.tick()

        assert remote_workspace.session.identity is None
        with pytest.raises(AuthorizationError):
            await remote_workspace.tasks.add(TASK)
        with pytest.raises(AuthorizationError):
            await remote_workspace.tasks.toggle_step(task.id, "s1")
        assert remote.count("insert", "job_tasks") == inserts

    async def test_reads_still_work_after_expiry(self, remote_workspace, clock):
        clock.advance(1800)
        remote_workspace.lifetime.tick()

        result = await remote_workspace.sops.load()

        assert result
