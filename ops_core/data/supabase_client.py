# =============================================================================
# ops_core/data/supabase_client.py
# Supabase implementation of the remote store
# Handles CRUD, pagination, realtime channels and error translation
# =============================================================================

from __future__ import annotations
import asyncio
import itertools
from typing import Optional, Dict, Any, List

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client

from ops_core.config import SyncConfig
from ops_core.errors import (
    AuthorizationError,
    ConfigurationError,
    ConnectivityError,
    NotFoundError,
    RemoteStoreError,
)
from ops_core.logging import get_logger
from .remote_store import ChangeCallback, ChangeEvent, RemoteStore, SubscriptionHandle

logger = get_logger(__name__)

# PostgREST / Postgres codes that mean "not allowed for this identity"
AUTH_ERROR_CODES = frozenset({"42501", "PGRST301", "PGRST302", "401", "403"})

BATCH_SIZE = 1000


def translate_remote_error(
    error: Exception,
    table: Optional[str] = None,
    operation: Optional[str] = None,
) -> RemoteStoreError:
    """
    Map a client-library exception onto the sync-core error taxonomy.

    Returns:
        AuthorizationError, ConnectivityError or RemoteStoreError
    """
    if isinstance(error, RemoteStoreError):
        return error

    context = {"table": table, "operation": operation}

    if isinstance(error, APIError):
        code = str(error.code) if error.code is not None else None
        message = error.message or str(error)
        if code in AUTH_ERROR_CODES:
            return AuthorizationError(message, remote_code=code, **context)
        return RemoteStoreError(message, remote_code=code, **context)

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status in (401, 403):
            return AuthorizationError(str(error), remote_code=str(status), **context)
        return RemoteStoreError(str(error), remote_code=str(status), **context)

    if isinstance(error, (httpx.TransportError, asyncio.TimeoutError, OSError)):
        return ConnectivityError(f"Remote store unreachable: {error}", **context)

    return RemoteStoreError(str(error), **context)


class SupabaseRemoteStore(RemoteStore):
    """
    Remote store backed by a Supabase project.

    Each subscription gets its own realtime channel, so independent managers
    watching the same table never share (or tear down) each other's channel.

    Usage:
        store = await create_supabase_store(config)
        rows = await store.select("job_tasks", order_by="created_at", ascending=False)
    """

    def __init__(self, client: AsyncClient, schema: str = "public"):
        self.client = client
        self.schema = schema
        self._channels: Dict[str, Any] = {}
        self._counter = itertools.count(1)

    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        ascending: bool = True,
    ) -> List[Dict[str, Any]]:
        """
        Fetch ALL matching rows (handles the Supabase 1000 row limit).
        """
        all_data: List[Dict[str, Any]] = []
        offset = 0

        try:
            while True:
                query = self.client.table(table).select("*")
                for column, value in (filters or {}).items():
                    query = query.eq(column, value)
                if order_by:
                    query = query.order(order_by, desc=not ascending)

                response = await query.range(offset, offset + BATCH_SIZE - 1).execute()

                if response.data:
                    all_data.extend(response.data)
                    # Fewer than a full batch means we've reached the end
                    if len(response.data) < BATCH_SIZE:
                        break
                    offset += BATCH_SIZE
                else:
                    break
        except Exception as e:
            raise translate_remote_error(e, table, "select") from e

        logger.debug(f"Fetched {len(all_data)} rows from {table}")
        return all_data

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self.client.table(table).insert(record).execute()
        except Exception as e:
            raise translate_remote_error(e, table, "insert") from e

        if not response.data:
            raise RemoteStoreError("Insert returned no row", table=table, operation="insert")
        return response.data[0]

    async def update(self, table: str, record_id: str, partial: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await (
                self.client.table(table)
                .update(partial)
                .eq("id", record_id)
                .execute()
            )
        except Exception as e:
            raise translate_remote_error(e, table, "update") from e

        if not response.data:
            raise NotFoundError(
                f"No {table} row with id {record_id}",
                entity_type=table,
                entity_id=record_id,
            )
        return response.data[0]

    async def delete(self, table: str, record_id: str) -> None:
        try:
            await self.client.table(table).delete().eq("id", record_id).execute()
        except Exception as e:
            raise translate_remote_error(e, table, "delete") from e

    # =========================================================================
    # REALTIME
    # =========================================================================

    async def subscribe_to_changes(self, table: str, on_change: ChangeCallback) -> SubscriptionHandle:
        channel_name = f"{table}_changes_{next(self._counter)}"

        def _callback(payload: Dict[str, Any]) -> None:
            data = payload.get("data", payload) if isinstance(payload, dict) else {}
            event = ChangeEvent(
                table=data.get("table", table),
                event_type=str(data.get("type") or data.get("eventType") or "UNKNOWN"),
                record=data.get("record"),
                old_record=data.get("old_record"),
            )
            try:
                on_change(event)
            except Exception as e:
                logger.error(f"Error in change callback for {channel_name}: {e}", exc_info=True)

        try:
            channel = self.client.channel(channel_name)
            channel.on_postgres_changes(
                "*",
                schema=self.schema,
                table=table,
                callback=_callback,
            )
            await channel.subscribe()
        except Exception as e:
            raise translate_remote_error(e, table, "subscribe") from e

        self._channels[channel_name] = channel
        logger.info(f"Subscribed to realtime changes on {table} ({channel_name})")
        return SubscriptionHandle(table=table, channel_name=channel_name)

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        channel = self._channels.pop(handle.channel_name, None)
        handle.active = False
        if channel is None:
            return

        try:
            await self.client.remove_channel(channel)
        except Exception as e:
            # Already forgotten locally
            logger.warning(f"Failed to remove channel {handle.channel_name}: {e}")
        else:
            logger.info(f"Unsubscribed from {handle.table} ({handle.channel_name})")

    async def close(self) -> None:
        """Remove every channel this store opened."""
        for channel_name in list(self._channels):
            table = channel_name.rsplit("_changes_", 1)[0]
            await self.unsubscribe(SubscriptionHandle(table=table, channel_name=channel_name))
        logger.debug("Supabase remote store closed")


async def create_supabase_store(config: SyncConfig) -> SupabaseRemoteStore:
    """
    Build a SupabaseRemoteStore from the injected config.

    Raises:
        ConfigurationError: If no usable credentials are configured
        ConnectivityError: If the client cannot be created
    """
    if not config.has_remote_credentials:
        raise ConfigurationError(
            "Supabase credentials not found. Configure [supabase] url/key in "
            ".streamlit/secrets.toml or SUPABASE_URL / SUPABASE_KEY",
            config_key="supabase",
        )

    try:
        client = await acreate_client(config.supabase_url, config.supabase_key)
    except Exception as e:
        raise translate_remote_error(e, operation="connect") from e

    logger.info("Supabase client initialized")
    return SupabaseRemoteStore(client, schema=config.schema)
