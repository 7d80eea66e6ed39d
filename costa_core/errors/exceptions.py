# =============================================================================
# costa_core/errors/exceptions.py
# Custom Exception Hierarchy for the Costa back-office
# =============================================================================

from typing import Optional, Dict, Any


class CostaError(Exception):
    """
    Base exception for all back-office errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "REMOTE_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
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
        self.code = code or "COSTA_000"
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
# REMOTE STORE EXCEPTIONS
# =============================================================================

class RemoteStoreError(CostaError):
    """
    Raised when a call to the backend fails.

    ``permanent`` is True when the backend rejected the data itself
    (constraint violation, malformed row). Those are not fixed by retrying.
    """

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        permanent: bool = False,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if operation:
            details["operation"] = operation
        details["permanent"] = permanent

        super().__init__(
            message=message,
            code="REMOTE_001",
            details=details,
            **kwargs,
        )
        self.table = table
        self.operation = operation
        self.permanent = permanent


# =============================================================================
# LOCAL STORAGE EXCEPTIONS
# =============================================================================

class LocalStorageError(CostaError):
    """Raised when the local SQLite store cannot be read or written"""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if path:
            details["path"] = path

        super().__init__(
            message=message,
            code="LOCAL_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# QUEUE EXCEPTIONS
# =============================================================================

class PayloadValidationError(CostaError):
    """Raised when a queued payload does not match its operation kind"""

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        field: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if kind:
            details["kind"] = kind
        if field:
            details["field"] = field

        super().__init__(
            message=message,
            code="QUEUE_001",
            details=details,
            **kwargs,
        )


class UnknownOperationError(CostaError):
    """Raised when a stored operation has a kind this build cannot replay"""

    def __init__(self, kind: str, **kwargs):
        super().__init__(
            message=f"Unknown operation kind: {kind}",
            code="QUEUE_002",
            details={"kind": kind},
            **kwargs,
        )


# =============================================================================
# LOSS CART EXCEPTIONS
# =============================================================================

class CartValidationError(CostaError):
    """Raised when a loss-entry cart cannot be turned into a batch"""

    def __init__(
        self,
        message: str,
        barcodes: Optional[list] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if barcodes:
            details["barcodes"] = barcodes

        super().__init__(
            message=message,
            code="CART_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(CostaError):
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
