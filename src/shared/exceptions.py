"""Custom exceptions for the receipt ledger application."""


class ReceiptLedgerException(Exception):
    """Base exception for all receipt ledger errors."""

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ValidationError(ReceiptLedgerException):
    """Raised when input validation fails."""

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class NotFoundError(ReceiptLedgerException):
    """Raised when a resource is not found."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)


class ConflictError(ReceiptLedgerException):
    """Raised when a conditional write loses to a concurrent writer."""

    def __init__(self, message: str = "Resource conflict"):
        super().__init__(message, status_code=409)


class ExtractionError(ReceiptLedgerException):
    """Raised when receipt data extraction fails."""

    def __init__(self, message: str = "Receipt extraction failed"):
        super().__init__(message, status_code=500)


class DatabaseError(ReceiptLedgerException):
    """Raised when database operations fail."""

    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message, status_code=500)
