# =============================================================================
# ops_core/models/__init__.py
# Record types for the synchronized collections
# =============================================================================

from .entities import (
    TaskStatus,
    SOPStatus,
    WorkHoursStatus,
    WorkDayStatus,
    Priority,
    EntityRecord,
    Step,
    Task,
    SOP,
    TaskTemplate,
    JobTask,
    Job,
    WorkHoursEntry,
    WorkDay,
    ActivityLog,
    apply_changes,
    generate_id,
    utc_now_iso,
)

__all__ = [
    # Vocabularies
    "TaskStatus",
    "SOPStatus",
    "WorkHoursStatus",
    "WorkDayStatus",
    "Priority",
    # Records
    "EntityRecord",
    "Step",
    "Task",
    "SOP",
    "TaskTemplate",
    "JobTask",
    "Job",
    "WorkHoursEntry",
    "WorkDay",
    "ActivityLog",
    # Helpers
    "apply_changes",
    "generate_id",
    "utc_now_iso",
]
