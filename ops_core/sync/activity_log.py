# =============================================================================
# ops_core/sync/activity_log.py
# Best-effort "who did what" recorder
# =============================================================================
"""
ActivityLogManager subscribes to the MutationEventBus and writes one
ActivityLog per event. It is fire-and-forget:

- ``record`` never raises; failures go to the ``ops_core.diagnostics`` logger
- it never emits mutation events itself (no feedback loop)
- in cache-only mode at most ``config.activity_log_cap`` entries are kept,
  newest first, oldest evicted
"""

from __future__ import annotations
import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ops_core.errors import error_boundary
from ops_core.logging import DIAGNOSTICS_LOGGER
from ops_core.models import ActivityLog, EntityRecord, generate_id, utc_now_iso
from ops_core.services import MutationEvent
from .collection_manager import EntityCollectionManager

diagnostics = logging.getLogger(DIAGNOSTICS_LOGGER)


@dataclass
class ActivityLogQuery:
    """Filters for the activity log page. Dates compare as ISO strings."""
    user_id: Optional[str] = None
    entity_type: Optional[str] = None
    action: Optional[str] = None
    search: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    limit: Optional[int] = 50
    offset: int = 0


class ActivityLogManager(EntityCollectionManager):

    entity_cls = ActivityLog
    table = "activity_logs"
    collection = "activity_logs"
    entity_type = "activity_log"
    id_prefix = "log"
    order_by = "created_at"
    ascending = False
    prepend_new = True

    @property
    def cap(self) -> int:
        return self.config.activity_log_cap

    def _emit(self, action: str, record: EntityRecord, actor, details=None) -> None:
        """Activity entries are not themselves logged."""

    @error_boundary(default_return=None, error_message="Activity log write failed", log_to=diagnostics)
    async def record(
        self,
        actor_id: str,
        actor_name: str,
        action: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        entity_title: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        actor_email: str = "",
    ) -> Optional[ActivityLog]:
        """
        Write one entry to whichever store is active.

        Returns:
            The stored entry, or None if the write failed (already logged)
        """
        entry = ActivityLog(
            created_at=utc_now_iso(),
            created_by=actor_id,
            user_id=actor_id,
            user_email=actor_email,
            user_name=actor_name,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_title=entity_title,
            details=details,
        )
        entry.validate()

        if self.is_remote:
            return await self._record_remote(entry)
        return self._record_cache(entry)

    def _record_cache(self, entry: ActivityLog) -> ActivityLog:
        self._ensure_cache_loaded()
        entry = dataclasses.replace(entry, id=generate_id(self.id_prefix))
        records = [entry] + list(self._records)
        if len(records) > self.cap:
            diagnostics.debug(f"Evicting {len(records) - self.cap} oldest activity entries")
            records = records[: self.cap]
        self._commit_cache(records)
        return entry

    async def _record_remote(self, entry: ActivityLog) -> ActivityLog:
        payload = entry.to_record()
        payload.pop("id", None)
        row = await self.remote.insert(self.table, payload)
        stored = ActivityLog.from_record(row)
        if self.get(stored.id) is None:
            self._records = [stored] + list(self._records)
        return stored

    async def handle_event(self, event: MutationEvent) -> None:
        """MutationEventBus subscriber."""
        await self.record(
            actor_id=event.actor_id,
            actor_name=event.actor_name,
            action=event.action,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            entity_title=event.entity_title,
            details=event.details,
            actor_email=event.actor_email,
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    def query(self, q: Optional[ActivityLogQuery] = None) -> Tuple[List[ActivityLog], int]:
        """
        Filter the in-memory log.

        Returns:
            (page of entries newest first, total matching count)
        """
        q = q or ActivityLogQuery()
        needle = q.search.lower() if q.search else None

        def _matches(entry: ActivityLog) -> bool:
            if q.user_id and entry.user_id != q.user_id:
                return False
            if q.entity_type and entry.entity_type != q.entity_type:
                return False
            if q.action and entry.action != q.action:
                return False
            if q.start and entry.created_at < q.start:
                return False
            if q.end and entry.created_at[: len(q.end)] > q.end:
                return False
            if needle:
                haystack = " ".join(
                    str(value or "")
                    for value in (entry.entity_title, entry.user_name, entry.user_email, entry.action)
                ).lower()
                return needle in haystack
            return True

        matches = sorted(
            (entry for entry in self._records if _matches(entry)),
            key=lambda entry: entry.created_at,
            reverse=True,
        )
        end = None if q.limit is None else q.offset + q.limit
        return matches[q.offset:end], len(matches)
