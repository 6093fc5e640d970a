# =============================================================================
# ops_core/offline/mode_selector.py
# One-shot storage mode resolution (remote vs cache-only)
# =============================================================================
"""
ModeSelector - decides once per session whether the remote store is used.

The decision is made at startup from the injected SyncConfig (credentials,
optionally a reachability probe) and never re-evaluated: a session that
started in cache-only mode stays in cache-only mode until it ends.
"""

from __future__ import annotations
import socket
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

from ops_core.config import SyncConfig
from ops_core.logging import get_logger

logger = get_logger(__name__)


class StorageMode(Enum):
    """Where collection writes go for this session."""
    REMOTE = "remote"           # Supabase is authoritative, cache mirrors it
    CACHE_ONLY = "cache_only"   # Local cache is authoritative (offline/demo)


@dataclass(frozen=True)
class ModeState:
    """Resolved mode with the reason it was chosen."""
    mode: StorageMode
    resolved_at: datetime
    reason: str


class ModeSelector:
    """
    Resolves the storage mode once and answers ``is_remote_mode_active()``.

    Usage:
        selector = ModeSelector(config)
        if selector.is_remote_mode_active():
            # talk to Supabase
        else:
            # read/write the local cache
    """

    def __init__(self, config: SyncConfig, override: Optional[StorageMode] = None):
        """
        Args:
            config: Injected configuration
            override: Force a mode (e.g. an injected remote store in tests)
        """
        self.config = config
        self._override = override
        self._state: Optional[ModeState] = None

    @property
    def state(self) -> ModeState:
        return self.resolve()

    @property
    def mode(self) -> StorageMode:
        return self.resolve().mode

    def resolve(self) -> ModeState:
        """Resolve the mode on first call; later calls return the same state."""
        if self._state is not None:
            return self._state

        if self._override is not None:
            mode, reason = self._override, "explicit override"
        elif not self.config.has_remote_credentials:
            mode, reason = StorageMode.CACHE_ONLY, "remote store not configured"
        elif self.config.probe_remote and not self._check_remote():
            mode, reason = StorageMode.CACHE_ONLY, "remote store unreachable"
        else:
            mode, reason = StorageMode.REMOTE, "remote store configured"

        self._state = ModeState(mode=mode, resolved_at=datetime.now(), reason=reason)
        logger.info(f"Storage mode resolved: {mode.value} ({reason})")
        return self._state

    def is_remote_mode_active(self) -> bool:
        return self.resolve().mode == StorageMode.REMOTE

    def _check_remote(self) -> bool:
        """
        TCP reachability check of the Supabase host.

        Returns:
            True if a connection to the host could be opened
        """
        parsed = urlparse(self.config.supabase_url or "")
        host = parsed.hostname
        port = parsed.port or 443
        if not host:
            return False

        try:
            with socket.create_connection((host, port), timeout=self.config.connection_timeout):
                return True
        except OSError as e:
            logger.debug(f"Supabase check failed: {e}")
            return False

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        state = self.resolve()
        return {
            "mode": state.mode.value,
            "is_remote": state.mode == StorageMode.REMOTE,
            "reason": state.reason,
            "resolved_at": state.resolved_at.isoformat(),
        }
