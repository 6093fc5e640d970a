# =============================================================================
# ops_core/auth/__init__.py
# Identity and session lifetime
# =============================================================================

from .identity import Identity, UserSession, SYSTEM_IDENTITY
from .session_timer import SessionLifetime, SessionState

__all__ = [
    "Identity",
    "UserSession",
    "SYSTEM_IDENTITY",
    "SessionLifetime",
    "SessionState",
]
