# =============================================================================
# ops_core/auth/session_timer.py
# Inactivity timeout with a warning window
# =============================================================================
"""
SessionLifetime - the state machine that decides when a session ends.

    ANONYMOUS --start--> AUTHENTICATED --(timeout - lead idle)--> WARNING_WINDOW
        ^                  ^    |  activity resets idle clock         |
        |                  |    |                                     |
        |                  +----+---------- extend() -----------------+
        |                                                             |
        +------ end() (manual logout)          (lead elapses) --> EXPIRED

Passive activity only counts while AUTHENTICATED. Once the warning is shown
the user has to call ``extend()``; mouse movement alone does not keep the
session alive.
"""

from __future__ import annotations
import asyncio
import time
from enum import Enum
from typing import Optional, Callable

from ops_core.logging import get_logger

logger = get_logger(__name__)


class SessionState(Enum):
    """Session lifetime states."""
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"
    WARNING_WINDOW = "warning_window"
    EXPIRED = "expired"


class SessionLifetime:
    """
    Inactivity timer for one signed-in session.

    Time comes from an injectable monotonic ``clock`` so transitions can be
    driven deterministically with ``tick(now)``; ``run()`` drives them with
    real sleeps.

    Usage:
        lifetime = SessionLifetime(on_expire=lambda: session.logout("session_expired"))
        lifetime.start()
        task = asyncio.create_task(lifetime.run())
    """

    def __init__(
        self,
        timeout_seconds: float = 30 * 60,
        warning_seconds: float = 5 * 60,
        clock: Callable[[], float] = time.monotonic,
        on_warning: Optional[Callable[[float], None]] = None,
        on_expire: Optional[Callable[[], None]] = None,
    ):
        if not 0 <= warning_seconds < timeout_seconds:
            raise ValueError("warning_seconds must be in [0, timeout_seconds)")

        self.timeout_seconds = timeout_seconds
        self.warning_seconds = warning_seconds
        self._clock = clock
        self._on_warning = on_warning
        self._on_expire = on_expire

        self._state = SessionState.ANONYMOUS
        self._last_activity: Optional[float] = None
        self._expire_fired = False
        self._wakeup: Optional[asyncio.Event] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state in (SessionState.AUTHENTICATED, SessionState.WARNING_WINDOW)

    @property
    def warning_after(self) -> float:
        """Idle seconds before the warning window opens."""
        return self.timeout_seconds - self.warning_seconds

    def on_warning(self, callback: Callable[[float], None]) -> None:
        self._on_warning = callback

    def on_expire(self, callback: Callable[[], None]) -> None:
        self._on_expire = callback

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now

    # =========================================================================
    # EXPLICIT TRANSITIONS
    # =========================================================================

    def start(self, now: Optional[float] = None) -> None:
        """Begin a session (ANONYMOUS or EXPIRED -> AUTHENTICATED)."""
        self._state = SessionState.AUTHENTICATED
        self._last_activity = self._now(now)
        self._expire_fired = False
        self._wake()
        logger.debug("Session started")

    def record_activity(self, now: Optional[float] = None) -> bool:
        """
        Reset the idle clock. Ignored outside AUTHENTICATED.

        Returns:
            True if the activity was counted
        """
        if self._state != SessionState.AUTHENTICATED:
            return False
        self._last_activity = self._now(now)
        self._wake()
        return True

    def extend(self, now: Optional[float] = None) -> bool:
        """
        Explicit "stay signed in" (WARNING_WINDOW -> AUTHENTICATED).

        Returns:
            False if the session has already expired or never started
        """
        if not self.is_active:
            return False
        if self._state == SessionState.WARNING_WINDOW:
            logger.info("Session extended from warning window")
        self._state = SessionState.AUTHENTICATED
        self._last_activity = self._now(now)
        self._wake()
        return True

    def end(self) -> None:
        """Manual logout. An expired session stays EXPIRED until the next start."""
        if self.is_active:
            self._state = SessionState.ANONYMOUS
            self._last_activity = None
            self._wake()
            logger.debug("Session ended")

    # =========================================================================
    # AUTOMATIC TRANSITIONS
    # =========================================================================

    def idle_seconds(self, now: Optional[float] = None) -> float:
        if self._last_activity is None:
            return 0.0
        return max(0.0, self._now(now) - self._last_activity)

    def seconds_until_expiry(self, now: Optional[float] = None) -> Optional[float]:
        """Remaining seconds, or None when no session is running."""
        if not self.is_active:
            return None
        return max(0.0, self.timeout_seconds - self.idle_seconds(now))

    def tick(self, now: Optional[float] = None) -> SessionState:
        """
        Apply any transitions that are due at ``now``.

        A single late tick can pass through WARNING_WINDOW straight to
        EXPIRED; both callbacks still fire, in order.
        """
        now = self._now(now)
        idle = self.idle_seconds(now)

        if self._state == SessionState.AUTHENTICATED and idle >= self.warning_after:
            self._state = SessionState.WARNING_WINDOW
            remaining = max(0.0, self.timeout_seconds - idle)
            logger.info(f"Session inactivity warning ({remaining:.0f}s left)")
            if self._on_warning is not None:
                try:
                    self._on_warning(remaining)
                except Exception as e:
                    logger.error(f"Error in session warning callback: {e}", exc_info=True)

        if self._state == SessionState.WARNING_WINDOW and idle >= self.timeout_seconds:
            self._state = SessionState.EXPIRED
            self._last_activity = None
            logger.info("Session expired after inactivity")
            self._fire_expire()

        return self._state

    def _fire_expire(self) -> None:
        if self._expire_fired:
            return
        self._expire_fired = True
        if self._on_expire is not None:
            try:
                self._on_expire()
            except Exception as e:
                logger.error(f"Error in session expiry callback: {e}", exc_info=True)

    def _next_deadline_in(self, now: float) -> Optional[float]:
        idle = self.idle_seconds(now)
        if self._state == SessionState.AUTHENTICATED:
            return max(0.0, self.warning_after - idle)
        if self._state == SessionState.WARNING_WINDOW:
            return max(0.0, self.timeout_seconds - idle)
        return None

    def _wake(self) -> None:
        if self._wakeup is not None:
            self._wakeup.set()

    async def run(self) -> SessionState:
        """
        Drive automatic transitions until the session expires or ends.

        Activity, extend and end wake the loop so the next deadline is
        recomputed immediately.
        """
        self._wakeup = asyncio.Event()
        try:
            while self.is_active:
                delay = self._next_deadline_in(self._clock())
                if delay is None:
                    break
                self._wakeup.clear()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
                self.tick()
        finally:
            self._wakeup = None
        return self._state

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "state": self._state.value,
            "seconds_until_expiry": self.seconds_until_expiry(),
            "timeout_seconds": self.timeout_seconds,
            "warning_seconds": self.warning_seconds,
        }
