"""
Custom exceptions for the time bank.
Provides specific exception types for better error handling and recovery.
"""


class TimeBankException(Exception):
    """Base exception for the time bank"""
    pass


class ValidationException(TimeBankException):
    """Raised when data validation fails"""
    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Validation error for {field}: {message}")


class InvalidAmountException(ValidationException):
    """Raised when a non-positive amount reaches a ledger operation"""
    def __init__(self, operation: str, amount):
        self.operation = operation
        self.amount = amount
        super().__init__(
            "amount",
            f"{operation} amount must be a positive integer, got {amount!r}"
        )


class TransactionNotFoundException(TimeBankException):
    """Raised when a transaction is not found"""
    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction with ID {transaction_id} not found")


class PersistenceException(TimeBankException):
    """Raised when loading or saving the ledger snapshot fails"""
    def __init__(self, operation: str, details: str):
        self.operation = operation
        self.details = details
        super().__init__(f"State {operation} failed: {details}")


class SnapshotCorruptedException(PersistenceException):
    """Raised when a stored snapshot cannot be decoded"""
    def __init__(self, key: str, details: str):
        self.key = key
        super().__init__("load", f"snapshot '{key}' is corrupted: {details}")
