# =============================================================================
# ops_core/offline/local_cache.py
# Durable per-device cache of collection snapshots (SQLite)
# =============================================================================
"""
LocalCacheStore - SQLite-backed key/value store for collection snapshots.

Each collection is stored as one JSON array under a namespaced key, e.g.
``opsboard_job_tasks``. In cache-only mode this is the authoritative store;
in remote mode it mirrors the last successful remote read.

Features:
- Automatic schema creation
- Atomic whole-collection replacement
- DataFrame integration (pandas)
- Small settings table for device-level preferences
"""

from __future__ import annotations
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from ops_core.errors import CacheStoreError
from ops_core.logging import get_logger

logger = get_logger(__name__)

MEMORY_PATH = ":memory:"


class LocalCacheStore:
    """
    Local SQLite store holding one JSON array per collection key.

    Shared by every collection manager of a workspace. All callers run on a
    single event loop, so the store uses one connection and no locking.
    """

    SCHEMA = {
        "collections": """
            CREATE TABLE IF NOT EXISTS collections (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                record_count INTEGER DEFAULT 0,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
        "app_settings": """
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
    }

    def __init__(self, db_path: Union[str, Path] = MEMORY_PATH):
        """
        Args:
            db_path: Path to the SQLite file, or ":memory:" for a throwaway cache
        """
        self.db_path = str(db_path)
        self._connection: Optional[sqlite3.Connection] = None
        self._initialized = False

    @property
    def is_memory(self) -> bool:
        return self.db_path == MEMORY_PATH

    def _get_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            if not self.is_memory:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            try:
                self._connection = sqlite3.connect(self.db_path)
            except sqlite3.Error as e:
                raise CacheStoreError(f"Cannot open local cache at {self.db_path}: {e}") from e
            self._connection.row_factory = sqlite3.Row
        return self._connection

    @contextmanager
    def transaction(self):
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def initialize(self) -> None:
        """Create tables if needed. Safe to call repeatedly."""
        if self._initialized:
            return

        try:
            with self.transaction() as conn:
                for table_name, schema in self.SCHEMA.items():
                    conn.execute(schema)
                    logger.debug(f"Created/verified table: {table_name}")
        except sqlite3.Error as e:
            raise CacheStoreError(f"Failed to initialize local cache: {e}") from e

        self._initialized = True
        logger.info(f"Local cache initialized at: {self.db_path}")

    # =========================================================================
    # COLLECTIONS
    # =========================================================================

    def read_collection(self, key: str) -> Optional[List[Any]]:
        """
        Return the stored array for ``key``, or None if it was never written.

        Raises:
            CacheStoreError: If the read fails or the payload is not a JSON array
        """
        self.initialize()
        try:
            row = self._get_connection().execute(
                "SELECT value FROM collections WHERE key = ?", [key]
            ).fetchone()
        except sqlite3.Error as e:
            raise CacheStoreError(f"Failed to read collection: {e}", key=key) from e

        if row is None:
            return None

        try:
            records = json.loads(row["value"])
        except json.JSONDecodeError as e:
            raise CacheStoreError(f"Corrupt cache entry: {e}", key=key) from e

        if not isinstance(records, list):
            raise CacheStoreError("Cache entry is not a JSON array", key=key)
        return records

    def write_collection(self, key: str, records: List[Any]) -> None:
        """
        Replace the stored array for ``key`` in a single transaction.

        Raises:
            CacheStoreError: If the records are not JSON-serializable or the write fails
        """
        self.initialize()
        try:
            payload = json.dumps(list(records))
        except (TypeError, ValueError) as e:
            raise CacheStoreError(f"Records are not JSON-serializable: {e}", key=key) from e

        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO collections (key, value, record_count, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    [key, payload, len(records), datetime.now().isoformat()],
                )
        except sqlite3.Error as e:
            raise CacheStoreError(f"Failed to write collection: {e}", key=key) from e

        logger.debug(f"Cached {len(records)} records under '{key}'")

    def delete_collection(self, key: str) -> bool:
        """Remove a collection. Returns True if something was deleted."""
        self.initialize()
        try:
            with self.transaction() as conn:
                cursor = conn.execute("DELETE FROM collections WHERE key = ?", [key])
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise CacheStoreError(f"Failed to delete collection: {e}", key=key) from e

    def list_keys(self) -> List[str]:
        self.initialize()
        rows = self._get_connection().execute(
            "SELECT key FROM collections ORDER BY key"
        ).fetchall()
        return [row["key"] for row in rows]

    # =========================================================================
    # PANDAS INTEGRATION
    # =========================================================================

    def to_dataframe(self, key: str) -> pd.DataFrame:
        """
        Load a cached collection into a pandas DataFrame.

        Returns:
            DataFrame with one row per record (empty if the key is missing)
        """
        records = self.read_collection(key) or []
        return pd.DataFrame.from_records(records)

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get a device setting."""
        self.initialize()
        row = self._get_connection().execute(
            "SELECT value FROM app_settings WHERE key = ?", [key]
        ).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            return row["value"]

    def set_setting(self, key: str, value: Any) -> None:
        """Set a device setting."""
        self.initialize()
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO app_settings (key, value, updated_at)
                VALUES (?, ?, ?)
                """,
                [key, json.dumps(value), datetime.now().isoformat()],
            )

    def get_status(self) -> Dict[str, Any]:
        """Summary of what is cached, for status displays."""
        self.initialize()
        rows = self._get_connection().execute(
            "SELECT key, record_count, updated_at FROM collections ORDER BY key"
        ).fetchall()
        return {
            "path": self.db_path,
            "collections": {
                row["key"]: {"records": row["record_count"], "updated_at": row["updated_at"]}
                for row in rows
            },
        }

    def close(self) -> None:
        """Close database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
            self._initialized = False
