# =============================================================================
# ops_core/sync/realtime.py
# Realtime fan-out: change notifications -> collection reloads
# =============================================================================
"""
RealtimeDispatcher - keeps every open client converged without polling.

Features:
- One change-feed subscription per watched (table, manager) pair
- Each notification triggers a full reload of the owning manager
- Notifications that arrive during an in-flight reload coalesce into
  exactly one follow-up reload
- Idempotent unwatch/close; nothing reloads after teardown
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set, TYPE_CHECKING

from ops_core.errors import OpsCoreError, handle_error
from ops_core.logging import get_logger
from ops_core.offline import ModeSelector

if TYPE_CHECKING:
    from ops_core.data import ChangeEvent, RemoteStore, SubscriptionHandle
    from .collection_manager import EntityCollectionManager

logger = get_logger(__name__)


class WatchState(Enum):
    """Lifecycle of one table watch."""
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"


@dataclass
class TableWatch:
    """Subscription state for one manager's table."""
    manager: EntityCollectionManager
    state: WatchState = WatchState.UNSUBSCRIBED
    handle: Optional[SubscriptionHandle] = None
    reload_task: Optional[asyncio.Task] = None
    reload_pending: bool = False
    notifications: int = 0
    reloads: int = 0

    @property
    def table(self) -> str:
        return self.manager.table

    @property
    def reloading(self) -> bool:
        return self.reload_task is not None and not self.reload_task.done()


class RealtimeDispatcher:
    """
    Fans remote change notifications out to collection reloads.

    Usage:
        dispatcher = RealtimeDispatcher(remote, mode)
        await dispatcher.watch(sop_manager)
        ...
        await dispatcher.close()   # before the managers are discarded
    """

    def __init__(self, remote: Optional[RemoteStore], mode: ModeSelector):
        self.remote = remote
        self.mode = mode
        self._watches: Dict[int, TableWatch] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def watches(self) -> List[TableWatch]:
        return list(self._watches.values())

    def get_watch(self, manager: EntityCollectionManager) -> Optional[TableWatch]:
        return self._watches.get(id(manager))

    # =========================================================================
    # SUBSCRIBE / UNSUBSCRIBE
    # =========================================================================

    async def watch(self, manager: EntityCollectionManager) -> Optional[TableWatch]:
        """
        Subscribe ``manager`` to its table's change feed.

        Returns:
            The watch, or None in cache-only mode or if subscribing failed
        """
        if not self.mode.is_remote_mode_active() or self.remote is None:
            logger.info(f"Cache-only mode: not watching {manager.table}")
            return None

        existing = self._watches.get(id(manager))
        if existing is not None:
            return existing

        watch = TableWatch(manager=manager, state=WatchState.SUBSCRIBING)
        self._watches[id(manager)] = watch

        try:
            handle = await self.remote.subscribe_to_changes(
                manager.table,
                lambda event: self._on_change(watch, event),
            )
        except Exception as e:
            watch.state = WatchState.UNSUBSCRIBED
            self._watches.pop(id(manager), None)
            if isinstance(e, OpsCoreError):
                handle_error(e, user_message=f"Realtime updates unavailable for {manager.table}")
            else:
                logger.error(f"Failed to watch {manager.table}: {e}", exc_info=True)
            return None

        if watch.state is not WatchState.SUBSCRIBING:
            # Torn down while the subscription was being set up
            await self._release(handle)
            return None

        watch.handle = handle
        watch.state = WatchState.SUBSCRIBED
        logger.debug(f"Watching {manager.table} ({handle.channel_name})")
        return watch

    async def unwatch(self, manager: EntityCollectionManager) -> bool:
        """
        Stop reloading ``manager``. Safe to call more than once.

        An in-flight reload is allowed to finish; no follow-up is started.
        """
        watch = self._watches.pop(id(manager), None)
        if watch is None or watch.state is WatchState.UNSUBSCRIBED:
            return False

        watch.state = WatchState.UNSUBSCRIBED
        watch.reload_pending = False
        handle, watch.handle = watch.handle, None
        if handle is not None:
            await self._release(handle)
        logger.debug(f"Stopped watching {manager.table}")
        return True

    async def close(self) -> None:
        for watch in list(self._watches.values()):
            await self.unwatch(watch.manager)

    async def _release(self, handle: SubscriptionHandle) -> None:
        try:
            await self.remote.unsubscribe(handle)
        except Exception as e:
            logger.warning(f"Unsubscribe from {handle.table} failed: {e}")

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def _on_change(self, watch: TableWatch, event: ChangeEvent) -> None:
        if watch.state is not WatchState.SUBSCRIBED:
            return

        watch.notifications += 1
        if watch.reloading:
            watch.reload_pending = True
            return

        watch.reload_task = asyncio.ensure_future(self._reload(watch))
        self._tasks.add(watch.reload_task)
        watch.reload_task.add_done_callback(self._tasks.discard)

    async def _reload(self, watch: TableWatch) -> None:
        while True:
            watch.reload_pending = False
            watch.reloads += 1
            try:
                result = await watch.manager.load()
            except Exception as e:
                logger.error(f"Reload of {watch.table} raised: {e}", exc_info=True)
            else:
                if not result:
                    logger.warning(f"Reload of {watch.table} failed: {result.error}")

            if not (watch.reload_pending and watch.state is WatchState.SUBSCRIBED):
                return

    async def drain(self) -> None:
        """Wait for every scheduled reload (including follow-ups) to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def get_status_display(self) -> Dict[str, Any]:
        """Per-table watch status for UI display."""
        return {
            "remote_mode": self.mode.is_remote_mode_active(),
            "watches": {
                watch.table: {
                    "state": watch.state.value,
                    "reloading": watch.reloading,
                    "notifications": watch.notifications,
                    "reloads": watch.reloads,
                }
                for watch in self._watches.values()
            },
        }
