# =============================================================================
# ops_core/models/entities.py
# Typed records for every synchronized collection
# Records serialize to snake_case dicts; the same shape lives in the local
# cache and in the remote tables.
# =============================================================================

from __future__ import annotations
import dataclasses
import random
import re
import string
import time
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, ClassVar, Mapping, FrozenSet

from ops_core.errors import ValidationError


# =============================================================================
# STATUS VOCABULARIES
# =============================================================================

class TaskStatus(str, Enum):
    """Lifecycle of job tasks, embedded tasks and jobs"""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    OVERDUE = "overdue"
    SKIPPED = "skipped"
    DRAFT = "draft"
    ARCHIVED = "archived"


class SOPStatus(str, Enum):
    PUBLISHED = "published"
    DRAFT = "draft"
    ARCHIVED = "archived"


class WorkHoursStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WorkDayStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


TASK_STATUSES = frozenset(s.value for s in TaskStatus)
SOP_STATUSES = frozenset(s.value for s in SOPStatus)
WORK_HOURS_STATUSES = frozenset(s.value for s in WorkHoursStatus)
WORK_DAY_STATUSES = frozenset(s.value for s in WorkDayStatus)
PRIORITIES = frozenset(p.value for p in Priority)

_TIME_PATTERN = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d$")
_ID_ALPHABET = string.digits + string.ascii_lowercase


# =============================================================================
# HELPERS
# =============================================================================

def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def generate_id(prefix: str) -> str:
    """
    Client-side id for cache-only mode: ``<prefix>_<epoch-ms>_<9 base36 chars>``.

    Remote mode never uses this; the remote store assigns ids on insert.
    """
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def _require_text(value: Any, field_name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"{field_name} is required",
            field=field_name,
            expected="non-empty string",
            actual=repr(value),
        )


def _require_choice(value: Any, field_name: str, choices: FrozenSet[str]) -> None:
    if value not in choices:
        raise ValidationError(
            f"Invalid {field_name}: {value!r}",
            field=field_name,
            expected=" | ".join(sorted(choices)),
            actual=repr(value),
        )


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


# =============================================================================
# BASE RECORD
# =============================================================================

class RecordMixin:
    """dict <-> dataclass conversion shared by top-level and embedded records"""

    # field name -> record class for lists of nested records
    NESTED: ClassVar[Dict[str, type]] = {}

    @classmethod
    def field_names(cls) -> FrozenSet[str]:
        return frozenset(f.name for f in fields(cls))

    @classmethod
    def coerce_field(cls, name: str, value: Any) -> Any:
        """Normalize one incoming value (nested dicts become records)."""
        nested_cls = cls.NESTED.get(name)
        if nested_cls is None:
            return _enum_value(value)
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            raise ValidationError(
                f"{name} must be a list",
                field=name,
                expected="list",
                actual=type(value).__name__,
            )
        items = []
        for item in value:
            if isinstance(item, nested_cls):
                items.append(item)
            elif isinstance(item, Mapping):
                items.append(nested_cls.from_record(item))
            else:
                raise ValidationError(
                    f"{name} entries must be {nested_cls.__name__} records",
                    field=name,
                    expected=nested_cls.__name__,
                    actual=type(item).__name__,
                )
        return items

    @classmethod
    def from_record(cls, data: Mapping[str, Any]):
        """Build from a stored dict. Unknown keys are ignored."""
        known = cls.field_names()
        kwargs = {
            key: cls.coerce_field(key, value)
            for key, value in data.items()
            if key in known
        }
        return cls(**kwargs)

    def to_record(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class EntityRecord(RecordMixin):
    """Fields shared by every synchronized collection"""
    id: str = ""
    created_at: str = ""
    created_by: str = ""
    updated_at: Optional[str] = None

    IMMUTABLE_FIELDS: ClassVar[FrozenSet[str]] = frozenset({"id", "created_at", "created_by"})

    @property
    def display_title(self) -> str:
        return getattr(self, "title", "") or self.id

    def validate(self) -> None:
        """Raise ValidationError if the record cannot be stored."""


# =============================================================================
# STEPS AND EMBEDDED TASKS
# =============================================================================

@dataclass
class Step(RecordMixin):
    id: str = ""
    title: str = ""
    description: str = ""
    order: int = 0
    requires_photo: bool = False
    sop_id: Optional[str] = None
    image_url: Optional[str] = None


@dataclass
class Task(RecordMixin):
    """A unit of work embedded in a Job's task list"""
    id: str = ""
    title: str = ""
    description: str = ""
    status: str = TaskStatus.PENDING.value
    priority: str = Priority.MEDIUM.value
    steps: List[Step] = field(default_factory=list)
    completed_steps: List[str] = field(default_factory=list)
    progress_percentage: int = 0
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    completed_by: Optional[str] = None

    NESTED: ClassVar[Dict[str, type]] = {"steps": Step}


# =============================================================================
# COLLECTION RECORDS
# =============================================================================

@dataclass
class SOP(EntityRecord):
    title: str = ""
    description: str = ""
    department: str = ""
    category: str = ""
    icon: Optional[str] = None
    image_url: Optional[str] = None
    steps: List[Step] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    status: str = SOPStatus.DRAFT.value
    is_template: bool = False
    template_of: Optional[str] = None

    NESTED: ClassVar[Dict[str, type]] = {"steps": Step}

    def validate(self) -> None:
        _require_text(self.title, "title")
        _require_choice(self.status, "status", SOP_STATUSES)


@dataclass
class TaskTemplate(EntityRecord):
    """Reusable blueprint a job task can be created from"""
    title: str = ""
    description: str = ""
    category: str = ""
    department: str = ""
    estimated_duration: int = 0
    priority: str = Priority.MEDIUM.value
    sop_ids: List[str] = field(default_factory=list)
    steps: List[Step] = field(default_factory=list)
    is_recurring: bool = False
    recurrence_pattern: Optional[Dict[str, Any]] = None

    NESTED: ClassVar[Dict[str, type]] = {"steps": Step}

    def validate(self) -> None:
        _require_text(self.title, "title")
        _require_choice(self.priority, "priority", PRIORITIES)


@dataclass
class JobTask(EntityRecord):
    template_id: Optional[str] = None
    title: str = ""
    description: str = ""
    assigned_to: List[str] = field(default_factory=list)
    assigned_by: str = ""
    department: str = ""
    category: str = ""
    scheduled_date: str = ""
    due_time: Optional[str] = None
    estimated_duration: int = 0
    status: str = TaskStatus.PENDING.value
    priority: str = Priority.MEDIUM.value
    steps: List[Step] = field(default_factory=list)
    completed_steps: List[str] = field(default_factory=list)
    progress_percentage: int = 0
    sop_ids: List[str] = field(default_factory=list)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    completed_by: Optional[str] = None
    completion_notes: Optional[str] = None
    comments: List[Dict[str, Any]] = field(default_factory=list)
    is_recurring: bool = False
    recurrence_pattern: Optional[Dict[str, Any]] = None

    NESTED: ClassVar[Dict[str, type]] = {"steps": Step}

    def validate(self) -> None:
        _require_text(self.title, "title")
        _require_choice(self.status, "status", TASK_STATUSES)
        _require_choice(self.priority, "priority", PRIORITIES)


@dataclass
class Job(EntityRecord):
    """A container of embedded tasks with its own aggregated progress"""
    title: str = ""
    description: str = ""
    assigned_to: List[str] = field(default_factory=list)
    assigned_by: str = ""
    department: str = ""
    scheduled_date: str = ""
    due_time: Optional[str] = None
    status: str = TaskStatus.PENDING.value
    priority: str = Priority.MEDIUM.value
    tasks: List[Task] = field(default_factory=list)
    completed_tasks_count: int = 0
    total_tasks_count: int = 0
    progress_percentage: int = 0
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    completed_by: Optional[str] = None
    completion_notes: Optional[str] = None
    comments: List[Dict[str, Any]] = field(default_factory=list)

    NESTED: ClassVar[Dict[str, type]] = {"tasks": Task}

    def validate(self) -> None:
        _require_text(self.title, "title")
        _require_choice(self.status, "status", TASK_STATUSES)
        _require_choice(self.priority, "priority", PRIORITIES)
        for task in self.tasks:
            _require_text(task.title, "tasks.title")
            _require_choice(task.status, "tasks.status", TASK_STATUSES)


@dataclass
class WorkHoursEntry(EntityRecord):
    employee_id: str = ""
    work_date: str = ""
    start_time: str = ""
    end_time: str = ""
    break_minutes: int = 0
    total_hours: float = 0.0
    notes: Optional[str] = None
    status: str = WorkHoursStatus.PENDING.value
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None

    @property
    def display_title(self) -> str:
        return f"{self.work_date} {self.start_time}-{self.end_time}"

    def validate(self) -> None:
        _require_text(self.employee_id, "employee_id")
        _require_text(self.work_date, "work_date")
        for name in ("start_time", "end_time"):
            value = getattr(self, name)
            if not isinstance(value, str) or not _TIME_PATTERN.match(value):
                raise ValidationError(
                    f"{name} must be HH:MM",
                    field=name,
                    expected="HH:MM",
                    actual=repr(value),
                )
        if not isinstance(self.break_minutes, int) or self.break_minutes < 0:
            raise ValidationError(
                "break_minutes must be a non-negative integer",
                field="break_minutes",
                actual=repr(self.break_minutes),
            )
        _require_choice(self.status, "status", WORK_HOURS_STATUSES)


@dataclass
class WorkDay(EntityRecord):
    """A day an employee is marked as working, without hours."""
    employee_id: str = ""
    work_date: str = ""
    status: str = WorkDayStatus.SCHEDULED.value
    notes: Optional[str] = None

    @property
    def display_title(self) -> str:
        return f"{self.employee_id} {self.work_date}"

    def validate(self) -> None:
        _require_text(self.employee_id, "employee_id")
        _require_text(self.work_date, "work_date")
        _require_choice(self.status, "status", WORK_DAY_STATUSES)


@dataclass
class ActivityLog(EntityRecord):
    user_id: str = ""
    user_email: str = ""
    user_name: str = ""
    action: str = ""
    entity_type: str = ""
    entity_id: Optional[str] = None
    entity_title: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    def validate(self) -> None:
        _require_text(self.action, "action")
        _require_text(self.entity_type, "entity_type")


# =============================================================================
# PARTIAL UPDATES
# =============================================================================

def apply_changes(record: EntityRecord, changes: Mapping[str, Any]) -> EntityRecord:
    """
    Return a copy of ``record`` with ``changes`` applied.

    Only fields declared on the record's type are accepted. Unknown keys and
    the immutable identity fields raise ValidationError, so a typo never
    silently lands in a store.
    """
    if not isinstance(changes, Mapping):
        raise ValidationError(
            "Changes must be a mapping of field names to values",
            expected="mapping",
            actual=type(changes).__name__,
        )

    record_type = type(record)
    unknown = sorted(set(changes) - record_type.field_names())
    if unknown:
        raise ValidationError(
            f"Unknown field(s) for {record_type.__name__}: {', '.join(unknown)}",
            field=unknown[0],
        )

    immutable = sorted(set(changes) & record_type.IMMUTABLE_FIELDS)
    if immutable:
        raise ValidationError(
            f"Field(s) cannot be changed: {', '.join(immutable)}",
            field=immutable[0],
        )

    coerced = {name: record_type.coerce_field(name, value) for name, value in changes.items()}
    return dataclasses.replace(record, **coerced)
