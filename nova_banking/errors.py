"""
Error Taxonomy Module

Typed failures raised by the ledger, request and storage layers. Each ledger
operation either returns its result or raises exactly one of these.
"""


class BankingError(Exception):
    """Base exception for all banking errors"""


class NotFoundError(BankingError):
    """Referenced account, request, profile or notification does not resolve"""


class InvalidStateError(BankingError):
    """Entity is in the wrong state for the requested operation"""


class InsufficientFundsError(BankingError):
    """Source account balance is less than the requested amount"""


class ValidationError(BankingError):
    """Input failed a business validation rule"""


class PermissionDeniedError(BankingError):
    """Caller lacks the role required for the operation"""


class StoreError(BankingError):
    """Underlying persistence call failed"""


class DuplicateRecordError(StoreError):
    """Insert violated a primary key or unique constraint"""
