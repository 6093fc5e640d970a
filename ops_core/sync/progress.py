# =============================================================================
# ops_core/sync/progress.py
# Progress/status derivation for tasks and jobs
# Pure functions: no I/O, no clock unless a timestamp is passed in
# =============================================================================
"""
Completion set -> percentage -> status.

Rules:
- percentage = round_half_up(100 * done / total); zero steps collapse to
  0 or 100 depending on the whole-task sentinel
- done == 0 -> pending, 0 < done < total -> in-progress, done == total -> completed
- blocked/overdue/skipped/draft are only ever set explicitly and survive
  until the set reaches 100%, where completed always wins
- archived is never touched by derivation

Usage:
    snapshot = derive_progress(["s1", "s2", "s3"], ["s2"], "pending")
    # ProgressSnapshot(completed_count=1, total_count=3, percentage=33, status='in-progress')
"""

from __future__ import annotations
import dataclasses
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, TypeVar

from ops_core.models import Job, JobTask, Task, TaskStatus, utc_now_iso

WHOLE_TASK_SENTINEL = "__whole_task__"

PENDING = TaskStatus.PENDING.value
IN_PROGRESS = TaskStatus.IN_PROGRESS.value
COMPLETED = TaskStatus.COMPLETED.value
ARCHIVED = TaskStatus.ARCHIVED.value

# Explicit statuses that derivation keeps until completion
PRESERVED_STATUSES = frozenset({
    TaskStatus.BLOCKED.value,
    TaskStatus.OVERDUE.value,
    TaskStatus.SKIPPED.value,
    TaskStatus.DRAFT.value,
})

_STATUS_RANK = {PENDING: 0, IN_PROGRESS: 1, COMPLETED: 2}

TaskLike = TypeVar("TaskLike", JobTask, Task)


@dataclass(frozen=True)
class ProgressSnapshot:
    completed_count: int
    total_count: int
    percentage: int
    status: str


def status_rank(status: str) -> Optional[int]:
    """Position in pending < in-progress < completed, None for other statuses."""
    return _STATUS_RANK.get(status)


def percentage_of(done: int, total: int) -> int:
    """100 * done / total rounded half up (33.5 -> 34, never banker's rounding)."""
    if total <= 0:
        return 0
    return (200 * done + total) // (2 * total)


def normalize_completion(step_ids: Sequence[str], completed: Iterable[str]) -> List[str]:
    """
    Restrict a completion set to known steps, in step order.

    The sentinel is kept only when there are no steps; unknown ids are dropped.
    """
    done = set(completed or ())
    if not step_ids:
        return [WHOLE_TASK_SENTINEL] if WHOLE_TASK_SENTINEL in done else []
    return [step_id for step_id in dict.fromkeys(step_ids) if step_id in done]


def _derive_status(done: int, total: int, current_status: str) -> str:
    if current_status == ARCHIVED:
        return ARCHIVED
    if total > 0 and done >= total:
        return COMPLETED
    if current_status in PRESERVED_STATUSES:
        return current_status
    if done == 0:
        return PENDING
    return IN_PROGRESS


def derive_progress(
    step_ids: Sequence[str],
    completed: Iterable[str],
    current_status: str = PENDING,
) -> ProgressSnapshot:
    """Derive counts, percentage and status for one task."""
    steps = list(dict.fromkeys(step_ids))
    normalized = normalize_completion(steps, completed)

    if not steps:
        whole_done = WHOLE_TASK_SENTINEL in normalized
        return ProgressSnapshot(
            completed_count=0,
            total_count=0,
            percentage=100 if whole_done else 0,
            status=_derive_status(1 if whole_done else 0, 1, current_status),
        )

    done = len(normalized)
    return ProgressSnapshot(
        completed_count=done,
        total_count=len(steps),
        percentage=percentage_of(done, len(steps)),
        status=_derive_status(done, len(steps), current_status),
    )


def derive_job_progress(tasks: Sequence[Task], current_status: str = PENDING) -> ProgressSnapshot:
    """Same rule one level up: a task counts as done when its status is completed."""
    total = len(tasks)
    done = sum(1 for task in tasks if task.status == COMPLETED)
    return ProgressSnapshot(
        completed_count=done,
        total_count=total,
        percentage=percentage_of(done, total),
        status=_derive_status(done, total, current_status),
    )


def _stamps(record, snapshot: ProgressSnapshot, has_progress: bool, actor_id: str, now: str) -> dict:
    changes = {}
    if snapshot.status == COMPLETED:
        if record.status != COMPLETED or not record.completed_at:
            changes["completed_at"] = now
            changes["completed_by"] = actor_id
    elif snapshot.status != ARCHIVED and (record.completed_at or record.completed_by):
        changes["completed_at"] = None
        changes["completed_by"] = None

    if has_progress and not record.started_at:
        changes["started_at"] = now
    return changes


def apply_task_progress(task: TaskLike, actor_id: str, now: Optional[str] = None) -> TaskLike:
    """Return ``task`` with completed_steps, percentage, status and stamps made consistent."""
    now = now or utc_now_iso()
    step_ids = [step.id for step in task.steps]
    normalized = normalize_completion(step_ids, task.completed_steps)
    snapshot = derive_progress(step_ids, normalized, task.status)

    changes = {
        "completed_steps": normalized,
        "progress_percentage": snapshot.percentage,
        "status": snapshot.status,
    }
    changes.update(_stamps(task, snapshot, snapshot.percentage > 0, actor_id, now))
    return dataclasses.replace(task, **changes)


def apply_job_progress(job: Job, actor_id: str, now: Optional[str] = None) -> Job:
    """Re-derive every embedded task, then the job's own aggregate fields."""
    now = now or utc_now_iso()
    tasks = [apply_task_progress(task, actor_id, now) for task in job.tasks]
    snapshot = derive_job_progress(tasks, job.status)
    has_progress = any(task.progress_percentage > 0 for task in tasks)

    changes = {
        "tasks": tasks,
        "completed_tasks_count": snapshot.completed_count,
        "total_tasks_count": snapshot.total_count,
        "progress_percentage": snapshot.percentage,
        "status": snapshot.status,
    }
    changes.update(_stamps(job, snapshot, has_progress, actor_id, now))
    return dataclasses.replace(job, **changes)
