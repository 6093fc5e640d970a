# =============================================================================
# ops_core/sync/job_manager.py
# Jobs: containers of embedded tasks with aggregated progress
# =============================================================================

from __future__ import annotations
import dataclasses
from typing import Iterable, List, Mapping, Optional, Union

from ops_core.auth import Identity
from ops_core.errors import ValidationError
from ops_core.models import Job, Task, TaskStatus, generate_id
from .collection_manager import EntityCollectionManager
from .progress import apply_job_progress


class JobManager(EntityCollectionManager):
    """
    Every add/update re-derives each embedded task and then the job's
    counts, percentage and status in one pass.
    """

    entity_cls = Job
    table = "jobs"
    collection = "jobs"
    entity_type = "job"
    id_prefix = "job"
    order_by = "scheduled_date"
    ascending = True

    def _prepare_new(self, record: Job, actor: Identity) -> Job:
        return apply_job_progress(self._with_task_ids(record), actor.user_id)

    def _prepare_update(self, current: Job, updated: Job, actor: Identity) -> Job:
        return apply_job_progress(self._with_task_ids(updated), actor.user_id)

    def _updated_action(self, current: Job, updated: Job) -> str:
        if updated.status == TaskStatus.COMPLETED.value and current.status != TaskStatus.COMPLETED.value:
            return "job_completed"
        return "job_updated"

    @staticmethod
    def _with_task_ids(job: Job) -> Job:
        # Embedded tasks live inside the job row, so their ids are always client-side
        if all(task.id for task in job.tasks):
            return job
        tasks = [
            task if task.id else dataclasses.replace(task, id=generate_id("task"))
            for task in job.tasks
        ]
        return dataclasses.replace(job, tasks=tasks)

    # =========================================================================
    # EMBEDDED TASKS
    # =========================================================================

    async def add_task_to_job(self, job_id: str, task: Union[Task, Mapping]) -> Optional[Job]:
        job = self._get_for_write(job_id)
        if job is None:
            self.logger.info(f"job {job_id} not found; task not added")
            return None
        if isinstance(task, Task):
            new_task = task
        elif isinstance(task, Mapping):
            new_task = Task.from_record(task)
        else:
            raise ValidationError("Task must be a Task or a mapping", field="tasks", actual=type(task).__name__)
        return await self.update(job_id, {"tasks": list(job.tasks) + [new_task]})

    async def remove_task_from_job(self, job_id: str, task_id: str) -> Optional[Job]:
        job = self._get_for_write(job_id)
        if job is None:
            self.logger.info(f"job {job_id} not found; task not removed")
            return None
        return await self.update(job_id, {"tasks": [t for t in job.tasks if t.id != task_id]})

    async def update_task_progress(
        self,
        job_id: str,
        task_id: str,
        completed_step_ids: Iterable[str],
    ) -> Optional[Job]:
        """Replace one embedded task's completion set and re-aggregate the job."""
        job = self._get_for_write(job_id)
        if job is None:
            self.logger.info(f"job {job_id} not found; progress not updated")
            return None
        if not any(t.id == task_id for t in job.tasks):
            raise ValidationError(
                f"Job {job_id} has no task {task_id}",
                field="tasks",
                actual=task_id,
            )

        completed = list(completed_step_ids)
        tasks = [
            dataclasses.replace(t, completed_steps=completed) if t.id == task_id else t
            for t in job.tasks
        ]
        return await self.update(job_id, {"tasks": tasks})

    async def recompute_progress(self, job_id: str) -> Optional[Job]:
        """Force a re-derivation (e.g. after loading rows written by an older client)."""
        job = self._get_for_write(job_id)
        if job is None:
            return None
        return await self.update(job_id, {"tasks": list(job.tasks)})

    # =========================================================================
    # STATUS TRANSITIONS
    # =========================================================================

    async def archive(self, job_id: str) -> Optional[Job]:
        return await self.transition(job_id, TaskStatus.ARCHIVED.value, "job_archived")

    async def restore(self, job_id: str) -> Optional[Job]:
        return await self.transition(job_id, TaskStatus.PENDING.value, "job_restored")

    # =========================================================================
    # QUERIES
    # =========================================================================

    def by_user(self, user_id: str) -> List[Job]:
        return self.find(lambda job: user_id in job.assigned_to)

    def by_date(self, scheduled_date: str) -> List[Job]:
        return self.find(lambda job: job.scheduled_date == scheduled_date)

    def archived(self) -> List[Job]:
        return self.find(lambda job: job.status == TaskStatus.ARCHIVED.value)
