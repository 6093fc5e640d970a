# =============================================================================
# ops_core/errors/exceptions.py
# Custom Exception Hierarchy for the Operations Board sync core
# =============================================================================

from typing import Optional, Dict, Any


class OpsCoreError(Exception):
    """
    Base exception for all sync-core errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "DATA_001")
        details: Additional context as a dictionary
        recoverable: Whether the caller can retry or continue
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "OPS_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# INPUT / LOOKUP EXCEPTIONS
# =============================================================================

class ValidationError(OpsCoreError):
    """Raised when input is malformed; never reaches a store"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if expected:
            details["expected"] = expected
        if actual:
            details["actual"] = actual

        super().__init__(
            message=message,
            code="DATA_001",
            details=details,
            **kwargs,
        )


class NotFoundError(OpsCoreError):
    """Raised when a mutation targets an id that is not present"""

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if entity_type:
            details["entity_type"] = entity_type
        if entity_id:
            details["entity_id"] = entity_id

        super().__init__(
            message=message,
            code="DATA_404",
            details=details,
            **kwargs,
        )


# =============================================================================
# STORAGE EXCEPTIONS
# =============================================================================

class CacheStoreError(OpsCoreError):
    """Raised when the local cache cannot be read or written"""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if key:
            details["key"] = key

        super().__init__(
            message=message,
            code="CACHE_001",
            details=details,
            **kwargs,
        )


class RemoteStoreError(OpsCoreError):
    """Raised when the remote store rejects or fails a request"""

    default_code = "REMOTE_001"

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        remote_code: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if operation:
            details["operation"] = operation
        if remote_code:
            details["remote_code"] = remote_code

        super().__init__(
            message=message,
            code=kwargs.pop("code", self.default_code),
            details=details,
            **kwargs,
        )


class ConnectivityError(RemoteStoreError):
    """Raised when the remote store is unreachable or timed out"""

    default_code = "NET_001"


class AuthorizationError(RemoteStoreError):
    """Raised when the current identity may not perform the request"""

    default_code = "AUTH_001"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(OpsCoreError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
