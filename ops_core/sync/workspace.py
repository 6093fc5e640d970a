# =============================================================================
# ops_core/sync/workspace.py
# One client's view of the operations board
# =============================================================================
"""
SyncWorkspace - the single entry point a UI holds on to.

Composes the storage mode, local cache, remote store, signed-in session,
inactivity timer, mutation event bus, realtime dispatcher and every
collection manager, and wires them together:

- session expiry           -> logout("session_expired")
- login / logout           -> inactivity timer start / end
- every mutation event     -> activity log

Usage:
------
from ops_core.config import SyncConfig
from ops_core.sync import create_workspace

workspace = await create_workspace(SyncConfig.from_env())
await workspace.start()
workspace.login(Identity("u1", "Ada Lovelace", "ada@example.com"))

await workspace.tasks.toggle_step(task_id, "step_1")
print(workspace.get_status())

await workspace.close()
"""

from __future__ import annotations
import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

from ops_core.auth import Identity, SessionLifetime, UserSession
from ops_core.config import SyncConfig
from ops_core.data import RemoteStore, create_supabase_store
from ops_core.errors import ConnectivityError
from ops_core.logging import get_logger
from ops_core.offline import LocalCacheStore, ModeSelector, StorageMode
from ops_core.services import MutationEventBus, ServiceResult
from .activity_log import ActivityLogManager
from .collection_manager import EntityCollectionManager
from .job_manager import JobManager
from .realtime import RealtimeDispatcher
from .sop_manager import SOPManager
from .task_manager import JobTaskManager, TaskTemplateManager
from .work_hours import WorkDayManager, WorkHoursManager

logger = get_logger(__name__)


class SyncWorkspace:
    """
    Owns every component for one client session.

    ``auto_expire`` runs the inactivity timer as a background task after
    login; with it off, callers drive expiry through ``lifetime.tick()``.
    """

    def __init__(
        self,
        config: SyncConfig,
        mode: ModeSelector,
        cache: LocalCacheStore,
        remote: Optional[RemoteStore] = None,
        clock: Optional[Callable[[], float]] = None,
        auto_expire: bool = True,
    ):
        self.config = config
        self.mode = mode
        self.cache = cache
        self.remote = remote
        self.auto_expire = auto_expire

        self.event_bus = MutationEventBus()
        self.session = UserSession(self.event_bus)
        self.lifetime = SessionLifetime(
            timeout_seconds=config.session_timeout_seconds,
            warning_seconds=config.session_warning_seconds,
            clock=clock or time.monotonic,
            on_expire=self._on_session_expired,
        )
        self.session.on_login(self._on_login)
        self.session.on_logout(self._on_logout)

        shared = dict(
            config=config,
            cache=cache,
            mode=mode,
            remote=remote,
            session=self.session,
            event_bus=self.event_bus,
        )
        self.sops = SOPManager(**shared)
        self.task_templates = TaskTemplateManager(**shared)
        self.tasks = JobTaskManager(**shared)
        self.jobs = JobManager(**shared)
        self.work_hours = WorkHoursManager(**shared)
        self.work_days = WorkDayManager(**shared)

        # Consumes events; never publishes them
        self.activity = ActivityLogManager(config, cache, mode, remote=remote, session=self.session)
        self.event_bus.subscribe(self.activity.handle_event)

        self.realtime = RealtimeDispatcher(remote, mode)
        self._timer_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def managers(self) -> List[EntityCollectionManager]:
        return [
            self.sops,
            self.task_templates,
            self.tasks,
            self.jobs,
            self.work_hours,
            self.work_days,
            self.activity,
        ]

    @property
    def is_remote(self) -> bool:
        return self.mode.is_remote_mode_active()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> Dict[str, ServiceResult]:
        """
        Load every collection and, in remote mode, watch every table.

        Returns:
            Load result per collection (failures are logged, not raised)
        """
        results: Dict[str, ServiceResult] = {}
        for manager in self.managers:
            results[manager.collection] = await manager.load()
            if not results[manager.collection]:
                logger.warning(f"Initial load of {manager.collection} failed")

        if self.is_remote:
            for manager in self.managers:
                await self.realtime.watch(manager)

        logger.info(
            f"Workspace started in {self.mode.mode.value} mode "
            f"({sum(1 for r in results.values() if r)}/{len(results)} collections loaded)"
        )
        return results

    async def close(self) -> None:
        """Unwatch first so no reload lands in a discarded manager, then release stores."""
        if self._closed:
            return
        self._closed = True

        await self.realtime.close()
        await self.realtime.drain()
        await self.event_bus.drain()
        self._stop_timer()

        if self.remote is not None:
            try:
                await self.remote.close()
            except Exception as e:
                logger.warning(f"Error closing remote store: {e}")
        self.cache.close()
        logger.info("Workspace closed")

    # =========================================================================
    # SESSION
    # =========================================================================

    def login(self, identity: Identity) -> Identity:
        return self.session.login(identity)

    def logout(self, reason: str = "manual") -> bool:
        return self.session.logout(reason)

    def record_activity(self) -> bool:
        """User interaction; only resets the timer before the warning window."""
        return self.lifetime.record_activity()

    def extend_session(self) -> bool:
        """Explicit "stay signed in" from the warning prompt."""
        return self.lifetime.extend()

    def _on_login(self, identity: Identity) -> None:
        self.lifetime.start()
        if self.auto_expire:
            self._start_timer()

    def _on_logout(self, identity: Identity, reason: str) -> None:
        self.lifetime.end()

    def _on_session_expired(self) -> None:
        self.session.logout("session_expired")

    def _start_timer(self) -> None:
        if self._timer_task is not None and not self._timer_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; session timer must be ticked manually")
            return
        self._timer_task = loop.create_task(self.lifetime.run())

    def _stop_timer(self) -> None:
        if self._timer_task is not None and not self._timer_task.done():
            self._timer_task.cancel()
        self._timer_task = None

    def get_status(self) -> Dict[str, Any]:
        identity = self.session.identity
        return {
            "mode": self.mode.get_status_display(),
            "user": identity.user_id if identity else None,
            "session": self.lifetime.get_status_display(),
            "realtime": self.realtime.get_status_display(),
            "collections": {m.collection: m.get_status() for m in self.managers},
            "pending_events": self.event_bus.pending_count,
        }


async def create_workspace(
    config: SyncConfig,
    remote: Optional[RemoteStore] = None,
    clock: Optional[Callable[[], float]] = None,
    auto_expire: Optional[bool] = None,
) -> SyncWorkspace:
    """
    Wire a workspace from configuration.

    Args:
        config: Injected configuration
        remote: Pre-built remote store; forces remote mode when given
        clock: Monotonic clock for the inactivity timer
        auto_expire: Run the timer in the background (default: only with the real clock)
    """
    if remote is not None:
        mode = ModeSelector(config, override=StorageMode.REMOTE)
    else:
        mode = ModeSelector(config)
        if mode.is_remote_mode_active():
            try:
                remote = await create_supabase_store(config)
            except ConnectivityError as e:
                logger.warning(f"Remote store unavailable, using local cache: {e.message}")
                mode = ModeSelector(config, override=StorageMode.CACHE_ONLY)

    cache = LocalCacheStore(config.cache_path)
    return SyncWorkspace(
        config,
        mode,
        cache,
        remote=remote,
        clock=clock,
        auto_expire=clock is None if auto_expire is None else auto_expire,
    )
