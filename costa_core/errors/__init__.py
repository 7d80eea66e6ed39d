# =============================================================================
# costa_core/errors/__init__.py
# Centralized Error Handling for the Costa back-office
# =============================================================================

from .exceptions import (
    CostaError,
    RemoteStoreError,
    LocalStorageError,
    PayloadValidationError,
    UnknownOperationError,
    CartValidationError,
    ConfigurationError,
)

from .handlers import (
    ErrorReport,
    describe_error,
    handle_error,
    safe_execute,
    error_boundary,
)

__all__ = [
    # Exceptions
    "CostaError",
    "RemoteStoreError",
    "LocalStorageError",
    "PayloadValidationError",
    "UnknownOperationError",
    "CartValidationError",
    "ConfigurationError",
    # Handlers
    "ErrorReport",
    "describe_error",
    "handle_error",
    "safe_execute",
    "error_boundary",
]
