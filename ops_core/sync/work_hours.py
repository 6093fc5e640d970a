# =============================================================================
# ops_core/sync/work_hours.py
# Work-hours entries, approval, per-employee summaries and marked work days
# =============================================================================

from __future__ import annotations
import dataclasses
from dataclasses import dataclass
from typing import Iterable, List, Optional

import pandas as pd

from ops_core.auth import Identity
from ops_core.errors import ValidationError
from ops_core.models import WorkDay, WorkDayStatus, WorkHoursEntry, WorkHoursStatus, utc_now_iso
from .collection_manager import EntityCollectionManager

SUMMARY_COLUMNS = [
    "employee_id",
    "period_start",
    "period_end",
    "total_hours",
    "approved_hours",
    "pending_hours",
    "days_worked",
]


def compute_total_hours(start_time: str, end_time: str, break_minutes: int = 0) -> float:
    """
    Hours between two HH:MM times minus the break, rounded to 2 decimals and
    never negative.
    """
    start_hour, start_min = (int(part) for part in start_time.split(":"))
    end_hour, end_min = (int(part) for part in end_time.split(":"))
    minutes = (end_hour * 60 + end_min) - (start_hour * 60 + start_min) - (break_minutes or 0)
    return max(0.0, round(minutes / 60, 2))


@dataclass(frozen=True)
class WorkHoursSummary:
    employee_id: str
    period_start: str
    period_end: str
    total_hours: float
    approved_hours: float
    pending_hours: float
    days_worked: int


class WorkHoursManager(EntityCollectionManager):
    """
    ``total_hours`` is derived from start/end/break on every write; the
    caller never sets it directly.
    """

    entity_cls = WorkHoursEntry
    table = "work_hours"
    collection = "work_hours"
    entity_type = "work_hours"
    id_prefix = "wh"
    order_by = "work_date"
    ascending = False

    def _derive(self, entry: WorkHoursEntry) -> WorkHoursEntry:
        entry.validate()
        return dataclasses.replace(
            entry,
            total_hours=compute_total_hours(entry.start_time, entry.end_time, entry.break_minutes),
        )

    def _prepare_new(self, record: WorkHoursEntry, actor: Identity) -> WorkHoursEntry:
        return self._derive(record)

    def _prepare_update(self, current: WorkHoursEntry, updated: WorkHoursEntry, actor: Identity) -> WorkHoursEntry:
        return self._derive(updated)

    # =========================================================================
    # APPROVAL
    # =========================================================================

    async def approve(self, entry_id: str) -> Optional[WorkHoursEntry]:
        approver = self._actor_for_write()
        return await self.transition(
            entry_id,
            WorkHoursStatus.APPROVED.value,
            "work_hours_approved",
            extra={"approved_by": approver.user_id, "approved_at": utc_now_iso()},
        )

    async def reject(self, entry_id: str) -> Optional[WorkHoursEntry]:
        approver = self._actor_for_write()
        return await self.transition(
            entry_id,
            WorkHoursStatus.REJECTED.value,
            "work_hours_rejected",
            extra={"approved_by": approver.user_id, "approved_at": utc_now_iso()},
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    def by_employee(self, employee_id: str) -> List[WorkHoursEntry]:
        return self.find(lambda e: e.employee_id == employee_id)

    def by_date_range(self, start_date: str, end_date: str) -> List[WorkHoursEntry]:
        """Entries with start_date <= work_date <= end_date (ISO dates compare as strings)."""
        return self.find(lambda e: start_date <= e.work_date <= end_date)

    def summary(self, employee_id: str, start_date: str, end_date: str) -> Optional[WorkHoursSummary]:
        """Totals for one employee; None when they have no entries in the period."""
        entries = [e for e in self.by_date_range(start_date, end_date) if e.employee_id == employee_id]
        if not entries:
            return None

        def _sum(status: Optional[str] = None) -> float:
            return round(sum(e.total_hours for e in entries if status is None or e.status == status), 2)

        return WorkHoursSummary(
            employee_id=employee_id,
            period_start=start_date,
            period_end=end_date,
            total_hours=_sum(),
            approved_hours=_sum(WorkHoursStatus.APPROVED.value),
            pending_hours=_sum(WorkHoursStatus.PENDING.value),
            days_worked=len({e.work_date for e in entries}),
        )

    def all_summaries(self, start_date: str, end_date: str) -> pd.DataFrame:
        """
        One row per employee with hours in the period, most hours first.

        Returns:
            DataFrame with SUMMARY_COLUMNS (empty frame if no entries)
        """
        entries = self.by_date_range(start_date, end_date)
        if not entries:
            return pd.DataFrame(columns=SUMMARY_COLUMNS)

        df = pd.DataFrame.from_records(
            [
                {
                    "employee_id": e.employee_id,
                    "work_date": e.work_date,
                    "total_hours": e.total_hours,
                    "approved_hours": e.total_hours if e.status == WorkHoursStatus.APPROVED.value else 0.0,
                    "pending_hours": e.total_hours if e.status == WorkHoursStatus.PENDING.value else 0.0,
                }
                for e in entries
            ]
        )
        grouped = df.groupby("employee_id").agg(
            total_hours=("total_hours", "sum"),
            approved_hours=("approved_hours", "sum"),
            pending_hours=("pending_hours", "sum"),
            days_worked=("work_date", "nunique"),
        ).reset_index()

        grouped[["total_hours", "approved_hours", "pending_hours"]] = (
            grouped[["total_hours", "approved_hours", "pending_hours"]].round(2)
        )
        grouped["period_start"] = start_date
        grouped["period_end"] = end_date
        grouped = grouped.sort_values("total_hours", ascending=False, kind="stable")
        return grouped[SUMMARY_COLUMNS].reset_index(drop=True)



class WorkDayManager(EntityCollectionManager):
    """
    Days marked as worked, without start/end times. At most one day per
    (employee_id, work_date).
    """

    entity_cls = WorkDay
    table = "work_days"
    collection = "work_days"
    entity_type = "work_day"
    id_prefix = "wd"
    order_by = "work_date"
    ascending = False
    prepend_new = True

    def _find_day(self, employee_id: str, work_date: str) -> Optional[WorkDay]:
        return next(
            (d for d in self._records if d.employee_id == employee_id and d.work_date == work_date),
            None,
        )

    def _check_unique(self, day: WorkDay, ignore_id: Optional[str] = None) -> None:
        existing = self._find_day(day.employee_id, day.work_date)
        if existing is not None and existing.id != ignore_id:
            raise ValidationError(
                f"{day.employee_id} is already marked for {day.work_date}",
                field="work_date",
                actual=day.work_date,
            )

    def _prepare_new(self, record: WorkDay, actor: Identity) -> WorkDay:
        self._check_unique(record)
        return record

    def _prepare_update(self, current: WorkDay, updated: WorkDay, actor: Identity) -> WorkDay:
        if (updated.employee_id, updated.work_date) != (current.employee_id, current.work_date):
            self._check_unique(updated, ignore_id=current.id)
        return updated

    async def add_day(self, employee_id: str, work_date: str, notes: Optional[str] = None) -> WorkDay:
        return await self.add({"employee_id": employee_id, "work_date": work_date, "notes": notes})

    async def add_days(
        self,
        employee_id: str,
        work_dates: Iterable[str],
        notes: Optional[str] = None,
    ) -> List[WorkDay]:
        """
        Mark several days at once. Repeated dates and days already marked
        for the employee are skipped.

        Returns:
            The newly created days, in input order
        """
        if not self.is_remote:
            self._ensure_cache_loaded()

        created = []
        for work_date in dict.fromkeys(work_dates):
            if self._find_day(employee_id, work_date) is not None:
                self.logger.debug(f"{employee_id} already marked for {work_date}; skipped")
                continue
            created.append(await self.add_day(employee_id, work_date, notes))
        return created

    async def confirm(self, day_id: str) -> Optional[WorkDay]:
        return await self.transition(day_id, WorkDayStatus.CONFIRMED.value, "work_day_confirmed")

    async def cancel(self, day_id: str) -> Optional[WorkDay]:
        return await self.transition(day_id, WorkDayStatus.CANCELLED.value, "work_day_cancelled")

    def by_employee(self, employee_id: str) -> List[WorkDay]:
        return self.find(lambda d: d.employee_id == employee_id)

    def by_date_range(self, start_date: str, end_date: str) -> List[WorkDay]:
        return self.find(lambda d: start_date <= d.work_date <= end_date)
