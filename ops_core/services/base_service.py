# =============================================================================
# ops_core/services/base_service.py
# Base Service Class with Common Functionality
# =============================================================================

from __future__ import annotations
from abc import ABC
from typing import Optional, Dict, Any, Callable
from dataclasses import dataclass

from ops_core.logging import get_logger, LogContext
from ops_core.errors import handle_error, OpsCoreError


@dataclass
class ServiceResult:
    """
    Standard result container for service operations.

    Read paths return one of these instead of raising, so a failed reload
    leaves the caller with the last good state and a reason.
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, data: Any = None, metadata: Dict[str, Any] = None) -> ServiceResult:
        """Create a successful result"""
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(
        cls,
        error: str,
        error_code: str = "UNKNOWN",
        metadata: Dict[str, Any] = None
    ) -> ServiceResult:
        """Create a failed result"""
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            metadata=metadata,
        )

    @classmethod
    def from_exception(cls, e: Exception) -> ServiceResult:
        """Create a failed result from an exception"""
        if isinstance(e, OpsCoreError):
            return cls(
                success=False,
                error=e.message,
                error_code=e.code,
                metadata=dict(e.details),
            )
        return cls(
            success=False,
            error=str(e),
            error_code="EXCEPTION",
        )


class BaseService(ABC):
    """
    Abstract base class for all services.

    Provides common functionality:
    - Logging
    - Error handling
    - Result standardization

    Usage:
        class SOPManager(BaseService):
            async def load(self) -> ServiceResult:
                with self.log_operation("Loading SOPs"):
                    rows = ...
                    return ServiceResult.ok(rows)
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def log_operation(self, operation: str) -> LogContext:
        """
        Create a logging context for an operation.

        Usage:
            with self.log_operation("Writing job tasks to cache"):
                cache.write_collection(key, rows)
        """
        return LogContext(self.logger, operation)

    def safe_execute(
        self,
        operation: str,
        func: Callable[..., Any],
        *args,
        **kwargs
    ) -> ServiceResult:
        """
        Execute a function with error handling and logging.

        Returns:
            ServiceResult with success/failure status
        """
        try:
            result = func(*args, **kwargs)
            return ServiceResult.ok(result)
        except OpsCoreError as e:
            handle_error(e, user_message=f"{operation} failed: {e.message}")
            return ServiceResult.from_exception(e)
        except Exception as e:
            self.logger.error(f"{operation} failed: {e}", exc_info=True)
            return ServiceResult.fail(str(e), error_code="EXCEPTION")

