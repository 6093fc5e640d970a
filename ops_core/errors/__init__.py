# =============================================================================
# ops_core/errors/__init__.py
# Centralized Error Handling for the Operations Board sync core
# =============================================================================

from .exceptions import (
    OpsCoreError,
    ValidationError,
    NotFoundError,
    CacheStoreError,
    RemoteStoreError,
    ConnectivityError,
    AuthorizationError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    error_boundary,
)

__all__ = [
    # Exceptions
    "OpsCoreError",
    "ValidationError",
    "NotFoundError",
    "CacheStoreError",
    "RemoteStoreError",
    "ConnectivityError",
    "AuthorizationError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "error_boundary",
]
