# =============================================================================
# ops_core/services/events.py
# Mutation events published by the collection managers
# =============================================================================
"""
Managers publish a MutationEvent after every successful mutation. Consumers
(the activity log, tests, UI toasts) subscribe to the bus and run decoupled
from the mutation: a failing subscriber is logged on the diagnostics channel
and never reaches the code that performed the write.
"""

from __future__ import annotations
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Callable, Set

from ops_core.logging import DIAGNOSTICS_LOGGER
from ops_core.models import utc_now_iso

diagnostics = logging.getLogger(DIAGNOSTICS_LOGGER)


@dataclass(frozen=True)
class MutationEvent:
    """Who did what to which entity"""
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    entity_title: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    actor_id: str = "system"
    actor_name: str = "System"
    actor_email: str = ""
    occurred_at: str = field(default_factory=utc_now_iso)


EventHandler = Callable[[MutationEvent], Any]


class MutationEventBus:
    """
    In-process publish/subscribe for mutation events.

    Plain handlers run inline inside ``emit``; coroutine handlers are
    scheduled as tasks on the running loop and tracked until ``drain``.
    """

    def __init__(self):
        self._handlers: List[EventHandler] = []
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def subscribe(self, handler: EventHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def emit(self, event: MutationEvent) -> None:
        """Deliver ``event`` to every subscriber. Never raises."""
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._schedule(result, event)
            except Exception as e:
                diagnostics.error(
                    f"Event handler failed for {event.action}: {e}",
                    exc_info=True,
                )

    def _schedule(self, awaitable, event: MutationEvent) -> None:
        try:
            task = asyncio.ensure_future(awaitable)
        except RuntimeError as e:
            # No running loop; close the coroutine so it is not left unawaited
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            diagnostics.warning(f"Dropped {event.action} event, no running event loop: {e}")
            return

        self._pending.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            diagnostics.error(
                f"Async event handler failed: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )

    async def drain(self) -> None:
        """Wait until every scheduled subscriber task has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
