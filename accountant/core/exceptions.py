"""
Custom exception classes for the application.
Provides structured error handling across all modules.
"""

from typing import Any, Optional, Dict


class AccountantException(Exception):
    """Base exception class for the accountant."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(AccountantException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class ChainError(AccountantException):
    """Raised when an RPC call against the node fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, code: str = "CHAIN_ERROR"):
        super().__init__(message, code, details)


class MissingHistoricalStateError(ChainError):
    """The node pruned the state needed to answer at the requested block."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, "MISSING_HISTORICAL_STATE")


class NodeUnavailableError(ChainError):
    """The upstream node is down. Runs must abort rather than load a partial ledger."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, "NODE_UNAVAILABLE")


class ExplorerError(AccountantException):
    """Raised when the explorer REST API fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "EXPLORER_ERROR", details)


class CollectionFailure(AccountantException):
    """A collector could not produce entries for an epoch."""

    def __init__(self, collector: str, cause: Exception, details: Optional[Dict[str, Any]] = None):
        self.collector = collector
        self.cause = cause
        super().__init__(
            f"Unable to collect {collector} rewards: {cause}",
            "COLLECTION_FAILURE",
            details,
        )


class InvariantViolation(AccountantException):
    """Raised when ledger math hits a state that must never occur."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "INVARIANT_VIOLATION", details)


class LedgerStoreError(AccountantException):
    """Raised when there's a warehouse error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, code: str = "LEDGER_STORE_ERROR"):
        super().__init__(message, code, details)


class LoadFailure(LedgerStoreError):
    """Raised when a batch of entries could not be inserted."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, "LOAD_FAILURE")


class RevisionConflictError(LedgerStoreError):
    """Raised when two writers created the same revision."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, "REVISION_CONFLICT")


class BackfillError(AccountantException):
    """Raised when a backfill job exhausts its retries."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "BACKFILL_ERROR", details)


class ValidationError(AccountantException):
    """Raised when trigger input fails validation."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)
