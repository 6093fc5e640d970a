# =============================================================================
# ops_core/errors/handlers.py
# Error Handling Utilities for the Operations Board sync core
# =============================================================================

from __future__ import annotations
import inspect
import functools
import logging
import traceback
from typing import Optional, Callable, TypeVar, Any, Dict

from ops_core.logging import get_logger
from .exceptions import OpsCoreError

logger = get_logger(__name__)

T = TypeVar("T")


def handle_error(
    error: Exception,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        log_error: Whether to log the error
        user_message: Custom message for the caller (uses error message if None)

    Returns:
        Dict describing the error for the presentation layer
    """
    if isinstance(error, OpsCoreError):
        message = user_message or error.message
        code = error.code
        details = error.details
        recoverable = error.recoverable
    else:
        message = user_message or str(error)
        code = "UNKNOWN"
        details = {"traceback": traceback.format_exc()}
        recoverable = True

    if log_error:
        logger.error(
            f"[{code}] {message}",
            extra={"details": details},
            exc_info=(type(error), error, error.__traceback__),
        )

    return {
        "error_type": error.__class__.__name__,
        "code": code,
        "message": message if recoverable else f"Critical Error: {message}",
        "details": details,
        "recoverable": recoverable,
    }


def error_boundary(
    default_return: Any = None,
    error_message: Optional[str] = None,
    log: bool = True,
    log_to: Optional[logging.Logger] = None,
):
    """
    Decorator to wrap functions with error handling.

    Works for plain functions and coroutine functions alike; the wrapped
    callable never raises and returns ``default_return`` on failure.

    Usage:
        @error_boundary(default_return=None, error_message="Activity log write failed",
                        log_to=diagnostics)
        async def record(self, ...):
            ...
    """
    def _report(func: Callable, e: Exception) -> None:
        if log:
            (log_to or logger).error(
                f"{error_message} in {func.__name__}: {e}" if error_message else f"Error in {func.__name__}: {e}",
                exc_info=(type(e), e, e.__traceback__),
            )

    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    _report(func, e)
                    return default_return

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                _report(func, e)
                return default_return

        return wrapper

    return decorator
