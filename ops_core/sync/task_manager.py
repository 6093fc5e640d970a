# =============================================================================
# ops_core/sync/task_manager.py
# Task templates (task library) and assignable job tasks
# =============================================================================

from __future__ import annotations
from typing import List, Optional, Iterable

from ops_core.auth import Identity
from ops_core.errors import ValidationError
from ops_core.models import JobTask, TaskStatus, TaskTemplate
from ops_core.models.entities import TASK_STATUSES
from .collection_manager import EntityCollectionManager
from .progress import WHOLE_TASK_SENTINEL, apply_task_progress
from .seed import default_task_templates


class TaskTemplateManager(EntityCollectionManager):
    """Reusable task blueprints; seeded with the built-in library."""

    entity_cls = TaskTemplate
    table = "task_templates"
    collection = "task_templates"
    entity_type = "template"
    id_prefix = "template"
    order_by = "created_at"
    ascending = False

    def default_records(self) -> List[TaskTemplate]:
        return default_task_templates()

    def by_department(self, department: str) -> List[TaskTemplate]:
        return self.find(lambda t: t.department == department)

    def by_category(self, category: str) -> List[TaskTemplate]:
        return self.find(lambda t: t.category == category)


class JobTaskManager(EntityCollectionManager):
    """
    Job tasks carry a completion set; every add/update passes through
    ``apply_task_progress`` before anything is written, so percentage and
    status can never disagree with ``completed_steps``.
    """

    entity_cls = JobTask
    table = "job_tasks"
    collection = "job_tasks"
    entity_type = "task"
    id_prefix = "task"
    order_by = "scheduled_date"
    ascending = True

    def _prepare_new(self, record: JobTask, actor: Identity) -> JobTask:
        return apply_task_progress(record, actor.user_id)

    def _prepare_update(self, current: JobTask, updated: JobTask, actor: Identity) -> JobTask:
        return apply_task_progress(updated, actor.user_id)

    def _updated_action(self, current: JobTask, updated: JobTask) -> str:
        if updated.status == TaskStatus.COMPLETED.value and current.status != TaskStatus.COMPLETED.value:
            return "task_completed"
        if len(updated.completed_steps) > len(current.completed_steps):
            if current.progress_percentage == 0:
                return "task_started"
            return "task_step_completed"
        return "task_updated"

    # =========================================================================
    # PROGRESS
    # =========================================================================

    async def update_progress(self, task_id: str, completed_step_ids: Iterable[str]) -> Optional[JobTask]:
        """Replace the completion set; unknown step ids are dropped by derivation."""
        return await self.update(task_id, {"completed_steps": list(completed_step_ids)})

    async def toggle_step(self, task_id: str, step_id: str) -> Optional[JobTask]:
        task = self._get_for_write(task_id)
        if task is None:
            self.logger.info(f"task {task_id} not found; toggle skipped")
            return None

        step_ids = [step.id for step in task.steps]
        if step_id not in step_ids:
            raise ValidationError(
                f"Task {task_id} has no step {step_id}",
                field="completed_steps",
                actual=step_id,
            )

        completed = list(task.completed_steps)
        if step_id in completed:
            completed.remove(step_id)
        else:
            completed.append(step_id)
        return await self.update_progress(task_id, completed)

    async def set_whole_task_complete(self, task_id: str, done: bool = True) -> Optional[JobTask]:
        """
        Mark the task as a single unit of work. Zero-step tasks use the
        sentinel; tasks with steps complete (or clear) every step.
        """
        task = self._get_for_write(task_id)
        if task is None:
            self.logger.info(f"task {task_id} not found; completion skipped")
            return None

        if task.steps:
            completed = [step.id for step in task.steps] if done else []
        else:
            completed = [WHOLE_TASK_SENTINEL] if done else []
        return await self.update_progress(task_id, completed)

    # =========================================================================
    # STATUS TRANSITIONS
    # =========================================================================

    async def set_status(self, task_id: str, status: str) -> Optional[JobTask]:
        """Out-of-band status such as blocked or overdue."""
        status = getattr(status, "value", status)
        if status not in TASK_STATUSES:
            raise ValidationError(f"Invalid task status: {status!r}", field="status")
        return await self.transition(task_id, status, "task_updated")

    async def archive(self, task_id: str) -> Optional[JobTask]:
        return await self.transition(task_id, TaskStatus.ARCHIVED.value, "task_archived")

    async def restore(self, task_id: str) -> Optional[JobTask]:
        """Back to pending, then re-derived from the completion set."""
        return await self.transition(task_id, TaskStatus.PENDING.value, "task_restored")

    # =========================================================================
    # TEMPLATES
    # =========================================================================

    async def create_from_template(
        self,
        template: TaskTemplate,
        assigned_to: List[str],
        scheduled_date: str,
        assigned_by: str,
    ) -> JobTask:
        """Instantiate a template as a fresh, unstarted job task."""
        return await self.add({
            "template_id": template.id,
            "title": template.title,
            "description": template.description,
            "assigned_to": list(assigned_to),
            "assigned_by": assigned_by,
            "department": template.department,
            "category": template.category,
            "scheduled_date": scheduled_date,
            "estimated_duration": template.estimated_duration,
            "status": TaskStatus.PENDING.value,
            "priority": template.priority,
            "steps": [step.to_record() for step in template.steps],
            "completed_steps": [],
            "sop_ids": list(template.sop_ids),
            "is_recurring": template.is_recurring,
            "recurrence_pattern": template.recurrence_pattern,
        })

    # =========================================================================
    # QUERIES
    # =========================================================================

    def by_user(self, user_id: str) -> List[JobTask]:
        return self.find(lambda task: user_id in task.assigned_to)

    def by_date(self, scheduled_date: str) -> List[JobTask]:
        return self.find(lambda task: task.scheduled_date == scheduled_date)

    def archived(self) -> List[JobTask]:
        return self.find(lambda task: task.status == TaskStatus.ARCHIVED.value)
