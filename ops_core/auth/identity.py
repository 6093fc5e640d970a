# =============================================================================
# ops_core/auth/identity.py
# Current user identity for one workspace
# =============================================================================
"""
Holds who is signed in. Credential checks belong to the authentication
provider; this module only records the outcome and lets the sync layer ask
"may I write as someone right now?".
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, List, Callable

from ops_core.errors import AuthorizationError
from ops_core.logging import get_logger
from ops_core.services.events import MutationEvent, MutationEventBus

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    """A signed-in user as seen by the sync layer"""
    user_id: str
    name: str
    email: str = ""
    role: str = "team"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


# Actor recorded on cache-only writes made without a signed-in user
SYSTEM_IDENTITY = Identity(user_id="system", name="System", role="admin")


class UserSession:
    """
    Tracks the signed-in identity and fans out logout notifications.

    Usage:
        session = UserSession(event_bus)
        session.login(Identity("u1", "Ada Lovelace", "ada@example.com"))
        ...
        session.logout("session_expired")
    """

    def __init__(self, event_bus: Optional[MutationEventBus] = None):
        self._identity: Optional[Identity] = None
        self._event_bus = event_bus
        self._logout_callbacks: List[Callable[[Identity, str], None]] = []
        self._login_callbacks: List[Callable[[Identity], None]] = []

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def is_authenticated(self) -> bool:
        return self._identity is not None

    @property
    def actor(self) -> Identity:
        """The identity to stamp on writes (SYSTEM_IDENTITY when signed out)."""
        return self._identity or SYSTEM_IDENTITY

    def require_authorized(self) -> Identity:
        """
        Return the signed-in identity.

        Raises:
            AuthorizationError: If nobody is signed in (e.g. after session expiry)
        """
        if self._identity is None:
            raise AuthorizationError(
                "No authorized identity; sign in again to make changes",
                operation="write",
            )
        return self._identity

    def on_login(self, callback: Callable[[Identity], None]) -> None:
        if callback not in self._login_callbacks:
            self._login_callbacks.append(callback)

    def on_logout(self, callback: Callable[[Identity, str], None]) -> None:
        if callback not in self._logout_callbacks:
            self._logout_callbacks.append(callback)

    def login(self, identity: Identity) -> Identity:
        """Record a successful sign-in."""
        if self._identity is not None and self._identity != identity:
            self.logout("replaced")

        self._identity = identity
        logger.info(f"User signed in: {identity.user_id}")
        self._emit("user_login", identity, {"role": identity.role})

        for callback in list(self._login_callbacks):
            try:
                callback(identity)
            except Exception as e:
                logger.error(f"Error in login callback: {e}", exc_info=True)
        return identity

    def logout(self, reason: str = "manual") -> bool:
        """
        Clear the identity. Idempotent: returns False if nobody was signed in.

        Callbacks run once per actual logout.
        """
        identity = self._identity
        if identity is None:
            return False

        self._identity = None
        logger.info(f"User signed out: {identity.user_id} ({reason})")
        self._emit("user_logout", identity, {"reason": reason})

        for callback in list(self._logout_callbacks):
            try:
                callback(identity, reason)
            except Exception as e:
                logger.error(f"Error in logout callback: {e}", exc_info=True)
        return True

    def _emit(self, action: str, identity: Identity, details: dict) -> None:
        if self._event_bus is None:
            return
        self._event_bus.emit(MutationEvent(
            action=action,
            entity_type="user",
            entity_id=identity.user_id,
            entity_title=identity.name,
            details=details,
            actor_id=identity.user_id,
            actor_name=identity.name,
            actor_email=identity.email,
        ))
