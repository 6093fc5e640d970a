# =============================================================================
# tests/integration/test_cache_mode.py
# Integration Tests for collection managers backed by the local cache
# =============================================================================

import pytest

from ops_core.config import SyncConfig
from ops_core.errors import CacheStoreError, ValidationError
from ops_core.sync import WHOLE_TASK_SENTINEL, create_workspace

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


def _task_data(**overrides):
    data = {
        "title": "Restock shelves",
        "assigned_to": ["user_1"],
        "scheduled_date": "2024-03-01",
        "steps": [
            {"id": "s1", "title": "Count", "order": 1},
            {"id": "s2", "title": "Order", "order": 2},
            {"id": "s3", "title": "Shelve", "order": 3},
        ],
    }
    data.update(overrides)
    return data


class TestSeeding:
    """Built-in records appear in an empty cache"""

    async def test_defaults_seeded_once(self, cache_workspace):
        sop_ids = {s.id for s in cache_workspace.sops.records}
        template_ids = {t.id for t in cache_workspace.task_templates.records}

        assert sop_ids == {"sop_default_accounts_receivable", "sop_default_reporting"}
        assert "template_opening_duties" in template_ids
        assert len(cache_workspace.tasks) == 0

    async def test_deleted_default_stays_deleted(self, cache_workspace):
        await cache_workspace.sops.delete("sop_default_reporting")

        result = await cache_workspace.sops.load()

        assert result.metadata["seeded"] == 0
        assert cache_workspace.sops.get("sop_default_reporting") is None


class TestPersistence:
    """Every cache-mode write is durable before it is visible"""

    async def test_writes_survive_a_new_workspace(self, tmp_path, clock):
        config = SyncConfig(cache_path=str(tmp_path / "cache.db"))

        first = await create_workspace(config, clock=clock)
        await first.start()
        task = await first.tasks.add(_task_data())
        await first.tasks.toggle_step(task.id, "s1")
        await first.close()

        second = await create_workspace(config, clock=clock)
        await second.start()
        try:
            reloaded = second.tasks.get(task.id)
            assert reloaded.completed_steps == ["s1"]
            assert reloaded.progress_percentage == 33
        finally:
            await second.close()

    async def test_failed_cache_write_leaves_memory_unchanged(self, cache_workspace, monkeypatch):
        task = await cache_workspace.tasks.add(_task_data())

        def broken(key, records):
            raise CacheStoreError("disk full", key=key)

        monkeypatch.setattr(cache_workspace.cache, "write_collection", broken)

        with pytest.raises(CacheStoreError):
            await cache_workspace.tasks.update(task.id, {"title": "Changed"})
        assert cache_workspace.tasks.get(task.id).title == "Restock shelves"


class TestWritesBeforeLoad:
    """Writes on a never-loaded manager start from what the cache holds"""

    @pytest.fixture
    def file_config(self, tmp_path):
        return SyncConfig(cache_path=str(tmp_path / "cache.db"))

    async def _populate(self, config, clock, identity=None):
        workspace = await create_workspace(config, clock=clock)
        await workspace.start()
        if identity is not None:
            workspace.login(identity)
        task = await workspace.tasks.add(_task_data())
        await workspace.event_bus.drain()
        await workspace.close()
        return task

    async def test_add_keeps_stored_records(self, file_config, clock):
        await self._populate(file_config, clock)

        workspace = await create_workspace(file_config, clock=clock)
        try:
            created = await workspace.sops.add({"title": "New SOP"})
            stored = workspace.cache.read_collection(workspace.sops.storage_key)

            assert len(stored) == 3
            assert {row["id"] for row in stored} >= {"sop_default_reporting", created.id}
            assert workspace.sops.is_loaded
        finally:
            await workspace.close()

    async def test_update_and_delete_find_stored_records(self, file_config, clock):
        task = await self._populate(file_config, clock)

        workspace = await create_workspace(file_config, clock=clock)
        try:
            updated = await workspace.tasks.update(task.id, {"title": "Recount"})
            assert updated.title == "Recount"
            toggled = await workspace.tasks.toggle_step(task.id, "s1")
            assert toggled.progress_percentage == 33

            assert await workspace.sops.delete("sop_default_reporting") is True
            stored = workspace.cache.read_collection(workspace.sops.storage_key)
            assert [row["id"] for row in stored] == ["sop_default_accounts_receivable"]
        finally:
            await workspace.close()

    async def test_login_before_start_keeps_activity(self, file_config, clock, identity):
        await self._populate(file_config, clock, identity=identity)

        workspace = await create_workspace(file_config, clock=clock)
        try:
            before = len(workspace.cache.read_collection(workspace.activity.storage_key))
            workspace.login(identity)
            await workspace.event_bus.drain()
            await workspace.start()

            stored = workspace.cache.read_collection(workspace.activity.storage_key)
            assert before == 2
            assert len(stored) == 3
            assert len(workspace.activity) == 3
        finally:
            await workspace.close()

    async def test_unreadable_cache_blocks_the_write(self, monkeypatch, clock):
        workspace = await create_workspace(SyncConfig(cache_path=":memory:"), clock=clock)
        writes = []

        def unreadable(key):
            raise CacheStoreError("Corrupt cache entry", key=key)

        monkeypatch.setattr(workspace.cache, "read_collection", unreadable)
        monkeypatch.setattr(workspace.cache, "write_collection", lambda key, rows: writes.append(key))
        try:
            with pytest.raises(CacheStoreError):
                await workspace.sops.add({"title": "New SOP"})
            assert writes == []
        finally:
            await workspace.close()


class TestCrud:
    """Add, strict update, delete"""

    async def test_add_assigns_id_and_stamps(self, cache_workspace, identity):
        cache_workspace.login(identity)

        task = await cache_workspace.tasks.add(_task_data())

        assert task.id.startswith("task_")
        assert task.created_by == "user_1"
        assert task.created_at
        assert task.status == "pending"

    async def test_signed_out_writes_use_system_actor(self, cache_workspace):
        sop = await cache_workspace.sops.add({"title": "Cash handling"})
        assert sop.created_by == "system"

    async def test_add_rejects_unknown_fields(self, cache_workspace):
        with pytest.raises(ValidationError):
            await cache_workspace.sops.add({"title": "X", "colour": "red"})

    async def test_add_rejects_store_assigned_fields(self, cache_workspace):
        with pytest.raises(ValidationError):
            await cache_workspace.sops.add({"title": "X", "id": "mine"})

    async def test_update_rejects_unknown_fields(self, cache_workspace):
        sop = await cache_workspace.sops.add({"title": "Cash handling"})

        with pytest.raises(ValidationError):
            await cache_workspace.sops.update(sop.id, {"tittle": "typo"})
        assert cache_workspace.sops.get(sop.id).title == "Cash handling"

    async def test_update_sets_updated_at(self, cache_workspace):
        sop = await cache_workspace.sops.add({"title": "Cash handling"})

        updated = await cache_workspace.sops.update(sop.id, {"description": "Count the till"})

        assert updated.updated_at is not None
        assert updated.created_at == sop.created_at

    async def test_missing_id_is_a_no_op(self, cache_workspace):
        assert await cache_workspace.sops.update("nope", {"title": "X"}) is None
        assert await cache_workspace.sops.delete("nope") is False

    async def test_delete(self, cache_workspace):
        sop = await cache_workspace.sops.add({"title": "Temp"})

        assert await cache_workspace.sops.delete(sop.id) is True
        assert cache_workspace.sops.get(sop.id) is None

    async def test_records_frame(self, cache_workspace):
        df = cache_workspace.sops.records_frame()
        assert set(df["id"]) == {"sop_default_accounts_receivable", "sop_default_reporting"}
        assert "status" in df.columns


class TestSOPs:
    """Publishing, archiving and templates"""

    async def test_status_transitions(self, cache_workspace):
        sop = await cache_workspace.sops.add({"title": "Returns"})

        assert (await cache_workspace.sops.publish(sop.id)).status == "published"
        assert (await cache_workspace.sops.archive(sop.id)).status == "archived"
        assert (await cache_workspace.sops.restore(sop.id)).status == "draft"

    async def test_invalid_status(self, cache_workspace):
        with pytest.raises(ValidationError):
            await cache_workspace.sops.update_status("sop_default_reporting", "deleted")

    async def test_template_round_trip(self, cache_workspace):
        template = await cache_workspace.sops.save_as_template("sop_default_reporting")
        copy = await cache_workspace.sops.create_from_template(template.id)

        assert template.is_template and template.title.endswith("(Template)")
        assert copy.title == f"{template.title} (Copy)"
        assert copy.status == "draft"
        assert copy.template_of == template.id
        assert [s.title for s in copy.steps] == [s.title for s in template.steps]
        assert cache_workspace.sops.templates() == [template]


class TestJobTasks:
    """Progress flows through derivation on every write"""

    async def test_toggle_walkthrough(self, cache_workspace):
        task = await cache_workspace.tasks.add(_task_data())

        task = await cache_workspace.tasks.toggle_step(task.id, "s1")
        assert (task.progress_percentage, task.status) == (33, "in-progress")
        assert task.started_at

        await cache_workspace.tasks.toggle_step(task.id, "s2")
        task = await cache_workspace.tasks.toggle_step(task.id, "s3")
        assert (task.progress_percentage, task.status) == (100, "completed")
        assert task.completed_at

        task = await cache_workspace.tasks.toggle_step(task.id, "s2")
        assert (task.progress_percentage, task.status) == (67, "in-progress")
        assert task.completed_at is None

    async def test_unknown_step_rejected(self, cache_workspace):
        task = await cache_workspace.tasks.add(_task_data())
        with pytest.raises(ValidationError):
            await cache_workspace.tasks.toggle_step(task.id, "s9")

    async def test_zero_step_task_completes_as_a_whole(self, cache_workspace):
        task = await cache_workspace.tasks.add(_task_data(steps=[]))

        done = await cache_workspace.tasks.set_whole_task_complete(task.id)
        assert done.completed_steps == [WHOLE_TASK_SENTINEL]
        assert (done.progress_percentage, done.status) == (100, "completed")

        undone = await cache_workspace.tasks.set_whole_task_complete(task.id, done=False)
        assert (undone.progress_percentage, undone.status) == (0, "pending")

    async def test_derived_fields_cannot_be_forced(self, cache_workspace):
        task = await cache_workspace.tasks.add(_task_data(progress_percentage=90, status="completed"))
        assert (task.progress_percentage, task.status) == (0, "pending")

    async def test_archive_and_restore(self, cache_workspace):
        task = await cache_workspace.tasks.add(_task_data(completed_steps=["s1"]))

        archived = await cache_workspace.tasks.archive(task.id)
        assert archived.status == "archived"
        assert cache_workspace.tasks.archived() == [archived]

        restored = await cache_workspace.tasks.restore(task.id)
        assert restored.status == "in-progress"

    async def test_blocked_status_survives_progress(self, cache_workspace):
        task = await cache_workspace.tasks.add(_task_data())
        await cache_workspace.tasks.set_status(task.id, "blocked")

        task = await cache_workspace.tasks.toggle_step(task.id, "s1")

        assert task.status == "blocked"

    async def test_create_from_template(self, cache_workspace):
        template = cache_workspace.task_templates.get("template_opening_duties")

        task = await cache_workspace.tasks.create_from_template(
            template, ["user_1", "user_2"], "2024-03-04", assigned_by="user_9"
        )

        assert task.template_id == template.id
        assert [s.id for s in task.steps] == ["step_1", "step_2", "step_3", "step_4"]
        assert task.progress_percentage == 0
        assert cache_workspace.tasks.by_user("user_2") == [task]
        assert cache_workspace.tasks.by_date("2024-03-04") == [task]


class TestJobs:
    """Jobs aggregate their embedded tasks"""

    async def test_job_progress(self, cache_workspace):
        job = await cache_workspace.jobs.add({
            "title": "Saturday shift",
            "scheduled_date": "2024-03-02",
            "tasks": [
                {"title": "Open", "steps": [{"id": "a", "title": "Unlock"}]},
                {"title": "Close"},
            ],
        })
        assert all(t.id for t in job.tasks)
        assert (job.completed_tasks_count, job.total_tasks_count, job.status) == (0, 2, "pending")

        first, second = job.tasks
        job = await cache_workspace.jobs.update_task_progress(job.id, first.id, ["a"])
        assert (job.completed_tasks_count, job.progress_percentage, job.status) == (1, 50, "in-progress")

        job = await cache_workspace.jobs.update_task_progress(job.id, second.id, [WHOLE_TASK_SENTINEL])
        assert (job.progress_percentage, job.status) == (100, "completed")
        assert job.completed_at

    async def test_add_and_remove_embedded_task(self, cache_workspace):
        job = await cache_workspace.jobs.add({"title": "Delivery"})

        job = await cache_workspace.jobs.add_task_to_job(job.id, {"title": "Unload"})
        assert job.total_tasks_count == 1

        job = await cache_workspace.jobs.remove_task_from_job(job.id, job.tasks[0].id)
        assert job.total_tasks_count == 0

    async def test_unknown_embedded_task(self, cache_workspace):
        job = await cache_workspace.jobs.add({"title": "Delivery"})
        with pytest.raises(ValidationError):
            await cache_workspace.jobs.update_task_progress(job.id, "t404", [])


class TestWorkHours:
    """Derived totals, approval and summaries"""

    async def _entry(self, workspace, employee, date, start, end, break_minutes=0):
        return await workspace.work_hours.add({
            "employee_id": employee,
            "work_date": date,
            "start_time": start,
            "end_time": end,
            "break_minutes": break_minutes,
        })

    async def test_total_hours_derived(self, cache_workspace):
        entry = await self._entry(cache_workspace, "u1", "2024-03-01", "09:00", "17:30", 30)
        assert entry.total_hours == 8.0

        entry = await cache_workspace.work_hours.update(entry.id, {"end_time": "12:00"})
        assert entry.total_hours == 2.5

    async def test_negative_span_clamps_to_zero(self, cache_workspace):
        entry = await self._entry(cache_workspace, "u1", "2024-03-01", "17:00", "09:00")
        assert entry.total_hours == 0.0

    async def test_approve_and_reject(self, cache_workspace, identity):
        cache_workspace.login(identity)
        entry = await self._entry(cache_workspace, "u1", "2024-03-01", "09:00", "10:00")

        approved = await cache_workspace.work_hours.approve(entry.id)
        assert approved.status == "approved"
        assert approved.approved_by == "user_1"

        rejected = await cache_workspace.work_hours.reject(entry.id)
        assert rejected.status == "rejected"

    async def test_summaries(self, cache_workspace):
        a = await self._entry(cache_workspace, "u1", "2024-03-01", "09:00", "17:00", 60)
        await self._entry(cache_workspace, "u1", "2024-03-02", "09:00", "12:00")
        await self._entry(cache_workspace, "u2", "2024-03-01", "08:00", "18:00")
        await self._entry(cache_workspace, "u2", "2024-04-01", "08:00", "18:00")
        await cache_workspace.work_hours.approve(a.id)

        summary = cache_workspace.work_hours.summary("u1", "2024-03-01", "2024-03-31")
        assert (summary.total_hours, summary.approved_hours, summary.pending_hours) == (10.0, 7.0, 3.0)
        assert summary.days_worked == 2
        assert cache_workspace.work_hours.summary("u3", "2024-03-01", "2024-03-31") is None

        df = cache_workspace.work_hours.all_summaries("2024-03-01", "2024-03-31")
        assert list(df["employee_id"]) == ["u1", "u2"]
        assert list(df["total_hours"]) == [10.0, 10.0]

    async def test_invalid_time_rejected(self, cache_workspace):
        with pytest.raises(ValidationError):
            await self._entry(cache_workspace, "u1", "2024-03-01", "9am", "17:00")


class TestWorkDays:
    """Marked days, one per employee and date"""

    async def test_add_day_defaults_to_scheduled(self, cache_workspace):
        day = await cache_workspace.work_days.add_day("u1", "2024-03-01", notes="Stocktake")

        assert day.id.startswith("wd_")
        assert day.status == "scheduled"
        assert cache_workspace.work_days.records[0].id == day.id

    async def test_duplicate_day_rejected(self, cache_workspace):
        await cache_workspace.work_days.add_day("u1", "2024-03-01")

        with pytest.raises(ValidationError):
            await cache_workspace.work_days.add_day("u1", "2024-03-01")
        await cache_workspace.work_days.add_day("u2", "2024-03-01")
        assert len(cache_workspace.work_days) == 2

    async def test_add_days_skips_repeats_and_marked_days(self, cache_workspace):
        await cache_workspace.work_days.add_day("u1", "2024-03-02")

        created = await cache_workspace.work_days.add_days(
            "u1", ["2024-03-01", "2024-03-02", "2024-03-03", "2024-03-01"]
        )

        assert [d.work_date for d in created] == ["2024-03-01", "2024-03-03"]
        assert len(cache_workspace.work_days.by_employee("u1")) == 3

    async def test_confirm_cancel_and_queries(self, cache_workspace):
        days = await cache_workspace.work_days.add_days("u1", ["2024-03-01", "2024-03-05", "2024-04-01"])
        await cache_workspace.work_days.add_day("u2", "2024-03-03")

        confirmed = await cache_workspace.work_days.confirm(days[0].id)
        cancelled = await cache_workspace.work_days.cancel(days[1].id)

        assert (confirmed.status, cancelled.status) == ("confirmed", "cancelled")
        march = cache_workspace.work_days.by_date_range("2024-03-01", "2024-03-31")
        assert sorted(d.work_date for d in march) == ["2024-03-01", "2024-03-03", "2024-03-05"]
        assert {d.employee_id for d in cache_workspace.work_days.by_employee("u2")} == {"u2"}

    async def test_moving_onto_a_marked_date_rejected(self, cache_workspace):
        first, second = await cache_workspace.work_days.add_days("u1", ["2024-03-01", "2024-03-02"])

        with pytest.raises(ValidationError):
            await cache_workspace.work_days.update(second.id, {"work_date": "2024-03-01"})
        moved = await cache_workspace.work_days.update(second.id, {"work_date": "2024-03-09"})
        assert moved.work_date == "2024-03-09"

    async def test_invalid_status_rejected(self, cache_workspace):
        day = await cache_workspace.work_days.add_day("u1", "2024-03-01")

        with pytest.raises(ValidationError):
            await cache_workspace.work_days.update(day.id, {"status": "maybe"})

    async def test_days_survive_a_new_workspace(self, tmp_path, clock):
        config = SyncConfig(cache_path=str(tmp_path / "cache.db"))

        first = await create_workspace(config, clock=clock)
        await first.start()
        await first.work_days.add_days("u1", ["2024-03-01", "2024-03-02"])
        await first.close()

        second = await create_workspace(config, clock=clock)
        await second.start()
        try:
            assert len(second.work_days) == 2
        finally:
            await second.close()
