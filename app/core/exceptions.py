from typing import Any, Dict, Optional

class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)

class ValidationError(AppException):
    """Missing required field or non-numeric/negative monetary input."""
    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: str = "VALIDATION_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.field = field
        if field and details is None:
            details = {"field": field}
        super().__init__(
            message=message,
            status_code=422,
            error_code=error_code,
            details=details
        )

class InvalidSettlementError(ValidationError):
    """A settlement that must not be committed. `constraint` names the rule it broke."""
    def __init__(self, message: str, constraint: str, details: Optional[Dict[str, Any]] = None):
        self.constraint = constraint
        super().__init__(
            message=message,
            error_code="INVALID_SETTLEMENT",
            details={"constraint": constraint, **(details or {})}
        )

class NotFoundError(AppException):
    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=404,
            error_code="NOT_FOUND"
        )

class ConcurrentModificationError(AppException):
    def __init__(self, message: str = "Data changed while the payment was being processed. Please retry.", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=409,
            error_code="CONCURRENT_MODIFICATION",
            details=details
        )

class PersistenceError(AppException):
    def __init__(self, message: str = "Failed to process payment, please retry.", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=503,
            error_code="PERSISTENCE_ERROR",
            details=details
        )

class ReconciliationError(AppException):
    """Stored debt balance disagrees with the balance replayed from its history."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=500,
            error_code="LEDGER_MISMATCH",
            details=details
        )
