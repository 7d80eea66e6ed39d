# =============================================================================
# costa_core/errors/handlers.py
# Operator-facing Error Reporting for the Costa back-office
# =============================================================================

from __future__ import annotations
import functools
import traceback
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, TypeVar
import streamlit as st

from costa_core.logging import get_logger
from .exceptions import CartValidationError, CostaError, LocalStorageError, RemoteStoreError

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class ErrorReport:
    """How an exception is logged and shown to the operator."""
    message: str
    code: str = "UNKNOWN"
    details: Dict[str, Any] = field(default_factory=dict)
    recoverable: bool = True
    level: str = "error"        # error | warning


def describe_error(error: Exception, user_message: Optional[str] = None) -> ErrorReport:
    """
    Turn an exception into an operator message.

    Backend and device-storage failures get wording that says what happened
    to the operator's data; cart problems are warnings the operator can fix.
    """
    if not isinstance(error, CostaError):
        return ErrorReport(
            message=user_message or str(error) or error.__class__.__name__,
            details={"traceback": traceback.format_exc()},
        )

    if user_message:
        message = user_message
    elif isinstance(error, RemoteStoreError) and error.permanent:
        message = f"The server rejected the data: {error.message}"
    elif isinstance(error, RemoteStoreError):
        message = "Server unreachable. Your data is kept on this device and will be sent later"
    elif isinstance(error, LocalStorageError):
        message = f"Could not write to this device's storage: {error.message}"
    else:
        message = error.message

    return ErrorReport(
        message=message,
        code=error.code,
        details=error.details,
        recoverable=error.recoverable,
        level="warning" if isinstance(error, CartValidationError) else "error",
    )


def handle_error(
    error: Exception,
    show_user_message: bool = True,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> ErrorReport:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        show_user_message: Whether to display the message in the page
        log_error: Whether to log the error
        user_message: Custom message to show (default depends on the error type)

    Returns:
        The ErrorReport that was logged and shown
    """
    report = describe_error(error, user_message)

    if log_error:
        logger.error(
            f"[{report.code}] {report.message}",
            extra={"details": report.details},
            exc_info=error,
        )

    if show_user_message:
        if report.level == "warning":
            st.warning(report.message)
        elif report.recoverable:
            st.error(f"Error: {report.message}")
        else:
            st.error(f"Critical Error: {report.message}. Please contact support.")

        # Show details in expander for debugging
        if report.details and st.session_state.get("debug_mode", False):
            with st.expander("Error Details", expanded=False):
                st.json(report.details)

    return report


def safe_execute(
    func: Callable[..., T],
    *args,
    default: Optional[T] = None,
    error_message: Optional[str] = None,
    reraise: bool = False,
    **kwargs,
) -> Optional[T]:
    """
    Call func, reporting any exception through handle_error().

    Usage:
        result = safe_execute(service.force_sync, error_message="Sync failed")
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        handle_error(e, user_message=error_message)
        if reraise:
            raise
        return default


def error_boundary(
    default_return: Any = None,
    error_message: Optional[str] = None,
    log: bool = True,
):
    """
    Decorator for Streamlit button callbacks.

    Back-office errors are reported with their own wording; anything else
    shows error_message.

    Usage:
        @error_boundary(default_return=None, error_message="Could not save the entry")
        def save_entry(note):
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except CostaError as e:
                handle_error(e, log_error=log)
                return default_return
            except Exception as e:
                if log:
                    logger.error(
                        f"Error in {func.__name__}: {e}",
                        exc_info=True,
                    )
                if error_message:
                    st.error(error_message)
                return default_return

        return wrapper

    return decorator
