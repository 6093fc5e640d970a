# =============================================================================
# ops_core/sync/collection_manager.py
# Generic manager for one synchronized collection
# =============================================================================
"""
EntityCollectionManager - in-memory list + write path for one entity type.

Every operation decides, per call, whether it goes through the remote store
or the local cache:

    REMOTE      load   -> remote select (sequence-tagged), mirrored to cache
                writes -> optimistic in-memory change, then remote call;
                          on failure the record is reverted and the error
                          re-raised
    CACHE_ONLY  load   -> cache read (seeded with defaults when empty)
                writes -> new list written through to the cache, then
                          committed in memory

Successful mutations publish a MutationEvent; nothing downstream of the
event can fail the mutation.
"""

from __future__ import annotations
import dataclasses
from typing import Optional, Dict, Any, List, Callable, Mapping, Type, Union, Tuple, TYPE_CHECKING

import pandas as pd

from ops_core.config import SyncConfig
from ops_core.errors import (
    AuthorizationError,
    CacheStoreError,
    ConfigurationError,
    NotFoundError,
    OpsCoreError,
    ValidationError,
    handle_error,
)
from ops_core.models import EntityRecord, apply_changes, generate_id, utc_now_iso
from ops_core.offline import LocalCacheStore, ModeSelector
from ops_core.services import BaseService, ServiceResult, MutationEvent, MutationEventBus
from ops_core.auth import Identity, SYSTEM_IDENTITY

if TYPE_CHECKING:
    from ops_core.auth import UserSession
    from ops_core.data import RemoteStore

RecordInput = Union[Mapping[str, Any], EntityRecord]


class EntityCollectionManager(BaseService):
    """
    Base class for the per-entity managers.

    Subclasses set the class attributes and, where the entity has derived
    fields, override ``_prepare_new`` / ``_prepare_update``.
    """

    entity_cls: Type[EntityRecord] = EntityRecord
    table: str = ""
    collection: str = ""
    entity_type: str = ""
    id_prefix: str = "rec"
    order_by: Optional[str] = "created_at"
    ascending: bool = True
    prepend_new: bool = False

    def __init__(
        self,
        config: SyncConfig,
        cache: LocalCacheStore,
        mode: ModeSelector,
        remote: Optional[RemoteStore] = None,
        session: Optional[UserSession] = None,
        event_bus: Optional[MutationEventBus] = None,
    ):
        super().__init__()
        self.config = config
        self.cache = cache
        self.mode = mode
        self.remote = remote
        self.session = session
        self.event_bus = event_bus

        if self.mode.is_remote_mode_active() and self.remote is None:
            raise ConfigurationError(
                f"{self.__class__.__name__} is in remote mode but has no remote store",
                config_key="remote",
            )

        self._records: List[EntityRecord] = []
        self._loaded = False
        self._issued_seq = 0
        self._applied_seq = 0
        self.last_error: Optional[str] = None

    # =========================================================================
    # READ ACCESS
    # =========================================================================

    @property
    def storage_key(self) -> str:
        return self.config.storage_key(self.collection)

    @property
    def is_remote(self) -> bool:
        return self.mode.is_remote_mode_active()

    @property
    def records(self) -> List[EntityRecord]:
        return list(self._records)

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def applied_sequence(self) -> int:
        """Sequence number of the reload currently reflected in memory."""
        return self._applied_seq

    def __len__(self) -> int:
        return len(self._records)

    def get(self, record_id: str) -> Optional[EntityRecord]:
        return next((r for r in self._records if r.id == record_id), None)

    def find(self, predicate: Callable[[EntityRecord], bool]) -> List[EntityRecord]:
        return [r for r in self._records if predicate(r)]

    def records_frame(self) -> pd.DataFrame:
        """Current in-memory records as a DataFrame (one row per record)."""
        return pd.DataFrame.from_records(
            [r.to_record() for r in self._records],
            columns=[f.name for f in dataclasses.fields(self.entity_cls)],
        )

    def default_records(self) -> List[EntityRecord]:
        """Built-in records seeded into an empty cache."""
        return []

    # =========================================================================
    # LOAD
    # =========================================================================

    async def load(self) -> ServiceResult:
        """
        Replace in-memory state from the authoritative source.

        Never raises: on failure the previous state is kept and the error is
        returned in the result.
        """
        if self.is_remote:
            return await self._load_remote()
        return self._load_cache()

    def _load_cache(self) -> ServiceResult:
        with self.log_operation(f"Loading {self.collection} from cache"):
            try:
                rows = self.cache.read_collection(self.storage_key)
            except OpsCoreError as e:
                self.last_error = e.message
                handle_error(e, user_message=f"Failed to read cached {self.collection}")
                return ServiceResult.from_exception(e)

            records = self._parse_rows(rows or [])
            seeded = 0
            if not records:
                records, seeded = self._merge_defaults(records)
                if seeded:
                    result = self.safe_execute(
                        f"Seeding {self.collection}",
                        self.cache.write_collection,
                        self.storage_key,
                        [r.to_record() for r in records],
                    )
                    if not result:
                        self.logger.warning(f"Seeded {self.collection} kept in memory only")

            self._records = records
            self._loaded = True
            self.last_error = None
            return ServiceResult.ok(
                self.records,
                metadata={"source": "cache", "count": len(records), "seeded": seeded},
            )

    def _merge_defaults(self, records: List[EntityRecord]) -> Tuple[List[EntityRecord], int]:
        existing = {r.id for r in records}
        merged = list(records)
        for record in self.default_records():
            if record.id not in existing:
                merged.append(record)
                existing.add(record.id)
        return merged, len(merged) - len(records)

    async def _load_remote(self) -> ServiceResult:
        self._issued_seq += 1
        seq = self._issued_seq

        try:
            rows = await self.remote.select(self.table, order_by=self.order_by, ascending=self.ascending)
        except Exception as e:
            stale = seq != self._issued_seq
            if not stale:
                self.last_error = str(e)
            if isinstance(e, OpsCoreError):
                handle_error(e, user_message=f"Failed to load {self.collection}")
                result = ServiceResult.from_exception(e)
            else:
                self.logger.error(f"Failed to load {self.collection}: {e}", exc_info=True)
                result = ServiceResult.fail(str(e), error_code="EXCEPTION")
            result.metadata = {**(result.metadata or {}), "sequence": seq, "stale": stale}
            return result

        if seq != self._issued_seq:
            self.logger.debug(
                f"Discarding stale {self.collection} reload #{seq} (latest #{self._issued_seq})"
            )
            return ServiceResult.ok(self.records, metadata={"sequence": seq, "stale": True})

        records = self._parse_rows(rows)
        self._records = records
        self._applied_seq = seq
        self._loaded = True
        self.last_error = None
        self._mirror_to_cache()
        self.logger.debug(f"Loaded {len(records)} {self.collection} (reload #{seq})")
        return ServiceResult.ok(
            self.records,
            metadata={"source": "remote", "count": len(records), "sequence": seq, "stale": False},
        )

    def _mirror_to_cache(self) -> None:
        result = self.safe_execute(
            f"Mirroring {self.collection} to cache",
            self.cache.write_collection,
            self.storage_key,
            [r.to_record() for r in self._records],
        )
        if not result:
            self.logger.warning(f"Cache mirror for {self.collection} is out of date")

    def _parse_rows(self, rows: List[Any]) -> List[EntityRecord]:
        records = []
        for row in rows:
            if not isinstance(row, Mapping):
                self.logger.warning(f"Skipping malformed {self.collection} row: {row!r}")
                continue
            try:
                records.append(self.entity_cls.from_record(row))
            except (ValidationError, TypeError) as e:
                self.logger.warning(f"Skipping unreadable {self.collection} row {row.get('id')}: {e}")
        return records

    # =========================================================================
    # WRITE HELPERS
    # =========================================================================

    def _actor_for_write(self) -> Identity:
        """
        Remote writes need a signed-in identity; cache-only writes fall back
        to the system actor.
        """
        if self.is_remote:
            if self.session is None:
                raise AuthorizationError("No session attached to this manager", table=self.table)
            return self.session.require_authorized()
        return self.session.actor if self.session is not None else SYSTEM_IDENTITY

    def _locate(self, record_id: str) -> Tuple[int, Optional[EntityRecord]]:
        for index, record in enumerate(self._records):
            if record.id == record_id:
                return index, record
        return -1, None

    def _ensure_cache_loaded(self) -> None:
        """
        Cache writes replace the whole stored array, so they must start from
        what is stored, not from an empty never-loaded list.
        """
        if self._loaded:
            return
        result = self._load_cache()
        if not result:
            raise CacheStoreError(
                f"Cannot write {self.collection} before the cache is readable: {result.error}",
                key=self.storage_key,
            )

    def _get_for_write(self, record_id: str) -> Optional[EntityRecord]:
        """``get`` for a read that precedes a write."""
        if not self.is_remote:
            self._ensure_cache_loaded()
        return self.get(record_id)

    def _commit_cache(self, records: List[EntityRecord]) -> None:
        """Write-through, then swap the in-memory list."""
        self.cache.write_collection(self.storage_key, [r.to_record() for r in records])
        self._records = records

    def _emit(
        self,
        action: str,
        record: EntityRecord,
        actor: Identity,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self.event_bus is None:
            return
        self.event_bus.emit(MutationEvent(
            action=action,
            entity_type=self.entity_type,
            entity_id=record.id,
            entity_title=record.display_title,
            details=details,
            actor_id=actor.user_id,
            actor_name=actor.name,
            actor_email=actor.email,
        ))

    def _build(self, data: RecordInput) -> EntityRecord:
        if isinstance(data, self.entity_cls):
            fields = data.to_record()
            for name in EntityRecord.IMMUTABLE_FIELDS | {"updated_at"}:
                fields.pop(name, None)
        elif isinstance(data, Mapping):
            fields = dict(data)
            unknown = sorted(set(fields) - self.entity_cls.field_names())
            if unknown:
                raise ValidationError(
                    f"Unknown field(s) for {self.entity_cls.__name__}: {', '.join(unknown)}",
                    field=unknown[0],
                )
            assigned = sorted(set(fields) & (EntityRecord.IMMUTABLE_FIELDS | {"updated_at"}))
            if assigned:
                raise ValidationError(
                    f"Field(s) are assigned by the store: {', '.join(assigned)}",
                    field=assigned[0],
                )
        else:
            raise ValidationError(
                f"Cannot build {self.entity_cls.__name__} from {type(data).__name__}",
                expected="mapping",
                actual=type(data).__name__,
            )
        return self.entity_cls.from_record(fields)

    def _prepare_new(self, record: EntityRecord, actor: Identity) -> EntityRecord:
        """Hook: derive fields on a record about to be created."""
        return record

    def _prepare_update(self, current: EntityRecord, updated: EntityRecord, actor: Identity) -> EntityRecord:
        """Hook: derive fields on a record about to be replaced."""
        return updated

    def _created_action(self, record: EntityRecord) -> str:
        return f"{self.entity_type}_created"

    def _updated_action(self, current: EntityRecord, updated: EntityRecord) -> str:
        return f"{self.entity_type}_updated"

    def _deleted_action(self, record: EntityRecord) -> str:
        return f"{self.entity_type}_deleted"

    def _insert_position(self, records: List[EntityRecord]) -> int:
        return 0 if self.prepend_new else len(records)

    # =========================================================================
    # ADD
    # =========================================================================

    async def add(self, data: RecordInput) -> EntityRecord:
        """
        Create a record.

        Raises:
            ValidationError: Malformed input (nothing written)
            AuthorizationError: Remote mode without a signed-in identity
            ConnectivityError / RemoteStoreError / CacheStoreError: Write failed
        """
        actor = self._actor_for_write()
        if not self.is_remote:
            self._ensure_cache_loaded()
        now = utc_now_iso()
        record = self._build(data)
        record = dataclasses.replace(record, created_at=now, created_by=actor.user_id)
        record = self._prepare_new(record, actor)
        record.validate()

        if self.is_remote:
            created = await self._add_remote(record)
        else:
            created = dataclasses.replace(record, id=generate_id(self.id_prefix))
            records = list(self._records)
            records.insert(self._insert_position(records), created)
            with self.log_operation(f"Adding {self.entity_type} {created.id} to cache"):
                self._commit_cache(records)

        self._emit(self._created_action(created), created, actor)
        return created

    async def _add_remote(self, record: EntityRecord) -> EntityRecord:
        payload = record.to_record()
        payload.pop("id", None)
        with self.log_operation(f"Inserting {self.entity_type} into {self.table}"):
            row = await self.remote.insert(self.table, payload)

        created = self.entity_cls.from_record(row)
        if self.get(created.id) is None:
            records = list(self._records)
            records.insert(self._insert_position(records), created)
            self._records = records

        result = await self.load()
        if not result and not (result.metadata or {}).get("stale"):
            self.logger.warning(f"Reload after insert failed: {result.error}")
        return self.get(created.id) or created

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update(self, record_id: str, changes: Mapping[str, Any]) -> Optional[EntityRecord]:
        """
        Apply a strict partial update.

        Returns:
            The updated record, or None if the id is not present (no-op)

        Raises:
            ValidationError: Unknown or immutable fields, invalid values
            AuthorizationError / ConnectivityError / RemoteStoreError / CacheStoreError
        """
        if not isinstance(changes, Mapping):
            raise ValidationError("Changes must be a mapping", actual=type(changes).__name__)
        return await self._mutate(
            record_id,
            lambda current: apply_changes(current, changes),
            action=f"{self.entity_type}_updated",
            details={"fields": sorted(changes)},
            action_for=self._updated_action,
        )

    async def transition(
        self,
        record_id: str,
        status: str,
        action: str,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> Optional[EntityRecord]:
        """Explicit status change (archive, restore, publish, approve...)."""
        current = self._get_for_write(record_id)
        details = {"status": status}
        if current is not None:
            details["previous_status"] = getattr(current, "status", None)
        changes = {"status": status, **(extra or {})}
        return await self._mutate(
            record_id,
            lambda record: apply_changes(record, changes),
            action=action,
            details=details,
        )

    async def _mutate(
        self,
        record_id: str,
        transform: Callable[[EntityRecord], EntityRecord],
        action: str,
        details: Optional[Dict[str, Any]] = None,
        action_for: Optional[Callable[[EntityRecord, EntityRecord], str]] = None,
    ) -> Optional[EntityRecord]:
        actor = self._actor_for_write()
        if not self.is_remote:
            self._ensure_cache_loaded()
        index, current = self._locate(record_id)
        if current is None:
            self.logger.info(f"{self.entity_type} {record_id} not found; {action} skipped")
            return None

        updated = transform(current)
        updated = self._prepare_update(current, updated, actor)
        updated = dataclasses.replace(updated, updated_at=utc_now_iso())
        updated.validate()

        if action_for is not None:
            action = action_for(current, updated)

        if self.is_remote:
            result = await self._update_remote(current, updated)
            if result is None:
                return None
            updated = result
        else:
            records = list(self._records)
            records[index] = updated
            with self.log_operation(f"Updating {self.entity_type} {record_id} in cache"):
                self._commit_cache(records)

        self._emit(action, updated, actor, details)
        return updated

    async def _update_remote(self, current: EntityRecord, updated: EntityRecord) -> Optional[EntityRecord]:
        seq_at_start = self._applied_seq
        self._replace_local(updated)

        partial = self._changed_fields(current, updated)
        try:
            with self.log_operation(f"Updating {self.entity_type} {current.id} in {self.table}"):
                row = await self.remote.update(self.table, current.id, partial)
        except NotFoundError:
            self.logger.info(f"{self.entity_type} {current.id} was deleted remotely; dropping it")
            self._records = [r for r in self._records if r.id != current.id]
            return None
        except Exception:
            self._rollback(current, seq_at_start)
            raise

        confirmed = self.entity_cls.from_record(row) if row else updated
        if self._applied_seq == seq_at_start:
            self._replace_local(confirmed)
        return confirmed

    def _replace_local(self, record: EntityRecord) -> None:
        index, _ = self._locate(record.id)
        if index < 0:
            return
        records = list(self._records)
        records[index] = record
        self._records = records

    def _rollback(self, pre_image: EntityRecord, seq_at_start: int, position: Optional[int] = None) -> None:
        """
        Undo an optimistic change after a failed remote write.

        Skipped when a reload newer than the write has already replaced the
        list, since that snapshot is closer to the truth than the pre-image.
        """
        if self._applied_seq != seq_at_start:
            self.logger.info(
                f"Not rolling back {self.entity_type} {pre_image.id}: newer reload already applied"
            )
            return

        index, _ = self._locate(pre_image.id)
        records = list(self._records)
        if index >= 0:
            records[index] = pre_image
        else:
            insert_at = len(records) if position is None else min(position, len(records))
            records.insert(insert_at, pre_image)
        self._records = records
        self.logger.info(f"Rolled back optimistic change to {self.entity_type} {pre_image.id}")

    @staticmethod
    def _changed_fields(current: EntityRecord, updated: EntityRecord) -> Dict[str, Any]:
        before = current.to_record()
        after = updated.to_record()
        return {
            name: value
            for name, value in after.items()
            if name not in EntityRecord.IMMUTABLE_FIELDS
            and (before.get(name) != value or name == "updated_at")
        }

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete(self, record_id: str) -> bool:
        """
        Remove a record from the authoritative store and from memory.

        Returns:
            False if the id is not present (no-op)
        """
        actor = self._actor_for_write()
        if not self.is_remote:
            self._ensure_cache_loaded()
        index, current = self._locate(record_id)
        if current is None:
            self.logger.info(f"{self.entity_type} {record_id} not found; delete skipped")
            return False

        if self.is_remote:
            seq_at_start = self._applied_seq
            self._records = [r for r in self._records if r.id != record_id]
            try:
                with self.log_operation(f"Deleting {self.entity_type} {record_id} from {self.table}"):
                    await self.remote.delete(self.table, record_id)
            except NotFoundError:
                self.logger.info(f"{self.entity_type} {record_id} already deleted remotely")
            except Exception:
                self._rollback(current, seq_at_start, position=index)
                raise
        else:
            records = [r for r in self._records if r.id != record_id]
            with self.log_operation(f"Deleting {self.entity_type} {record_id} from cache"):
                self._commit_cache(records)

        self._emit(self._deleted_action(current), current, actor)
        return True

    def get_status(self) -> Dict[str, Any]:
        return {
            "collection": self.collection,
            "mode": "remote" if self.is_remote else "cache_only",
            "records": len(self._records),
            "reload_sequence": self._applied_seq,
            "last_error": self.last_error,
        }
