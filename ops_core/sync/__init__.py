# =============================================================================
# ops_core/sync/__init__.py
# Collection managers, derivation and realtime fan-out
# =============================================================================
"""
Sync layer for the operations board.

Architecture:
------------
                 ┌──────────────────────────┐
                 │       SyncWorkspace      │
                 └────────────┬─────────────┘
          ┌───────────────────┼──────────────────────┐
          ▼                   ▼                      ▼
  ┌───────────────┐  ┌─────────────────┐   ┌───────────────────┐
  │   Managers    │  │ MutationEventBus│──►│ActivityLogManager │
  │ sops / tasks  │  └─────────────────┘   └───────────────────┘
  │ jobs / hours  │◄── RealtimeDispatcher (reload on change)
  └───────┬───────┘
          │  ModeSelector
   ┌──────┴───────┐
   ▼              ▼
 RemoteStore   LocalCacheStore

Usage:
------
from ops_core.sync import create_workspace

workspace = await create_workspace(config)
await workspace.start()
"""

from .progress import (
    WHOLE_TASK_SENTINEL,
    ProgressSnapshot,
    derive_progress,
    derive_job_progress,
    apply_task_progress,
    apply_job_progress,
    percentage_of,
    status_rank,
)
from .collection_manager import EntityCollectionManager
from .sop_manager import SOPManager
from .task_manager import TaskTemplateManager, JobTaskManager
from .job_manager import JobManager
from .work_hours import WorkDayManager, WorkHoursManager, WorkHoursSummary, compute_total_hours
from .activity_log import ActivityLogManager, ActivityLogQuery
from .realtime import RealtimeDispatcher, TableWatch, WatchState
from .workspace import SyncWorkspace, create_workspace

__all__ = [
    # Derivation
    "WHOLE_TASK_SENTINEL",
    "ProgressSnapshot",
    "derive_progress",
    "derive_job_progress",
    "apply_task_progress",
    "apply_job_progress",
    "percentage_of",
    "status_rank",
    # Managers
    "EntityCollectionManager",
    "SOPManager",
    "TaskTemplateManager",
    "JobTaskManager",
    "JobManager",
    "WorkDayManager",
    "WorkHoursManager",
    "WorkHoursSummary",
    "compute_total_hours",
    "ActivityLogManager",
    "ActivityLogQuery",
    # Realtime
    "RealtimeDispatcher",
    "TableWatch",
    "WatchState",
    # Facade
    "SyncWorkspace",
    "create_workspace",
]
