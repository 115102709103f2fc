"""
Exception hierarchy for Strategy Lab.

Every error carries a stable ``error_code`` so batch results and the
service facade can report a specific error kind instead of a bare failure.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class StratLabError(Exception):
    """Base exception for all Strategy Lab errors."""

    def __init__(self, message: str, error_code: str = None, details: dict = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "STRATLAB_ERROR"
        self.details = details or {}

    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class DataFetchError(StratLabError):
    """
    Exception raised when candles cannot be fetched for a symbol/interval.

    Per-item in batch operations: a failed fetch skips that item only.
    """

    def __init__(
        self,
        message: str = "Market data fetch failed",
        symbol: str = None,
        interval: str = None,
        error_code: str = "DATA_FETCH_ERROR",
        details: dict = None
    ):
        super().__init__(message, error_code=error_code, details=details)
        self.symbol = symbol
        self.interval = interval


class SymbolNotFoundError(DataFetchError):
    """Exception raised when the provider does not know the symbol or interval."""

    def __init__(
        self,
        message: str = "Symbol not found",
        symbol: str = None,
        interval: str = None,
        details: dict = None
    ):
        super().__init__(
            message,
            symbol=symbol,
            interval=interval,
            error_code="SYMBOL_NOT_FOUND",
            details=details
        )


class RateLimitError(DataFetchError):
    """
    Exception raised when the provider throttles requests.

    ``retry_after`` is the number of seconds the provider asked us to wait,
    when it said so.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        symbol: str = None,
        interval: str = None,
        retry_after: float = None,
        details: dict = None
    ):
        super().__init__(
            message,
            symbol=symbol,
            interval=interval,
            error_code="RATE_LIMITED",
            details=details
        )
        self.retry_after = retry_after


class InsufficientDataError(StratLabError):
    """Exception raised when a candle series is shorter than a strategy's minimum window."""

    def __init__(
        self,
        message: str = "Insufficient candle history",
        required: int = None,
        available: int = None,
        details: dict = None
    ):
        super().__init__(message, error_code="INSUFFICIENT_DATA", details=details)
        self.required = required
        self.available = available


class ValidationError(StratLabError):
    """Exception raised when a request is rejected before any work starts."""

    def __init__(self, message: str = "Invalid request", field_name: str = None, details: dict = None):
        super().__init__(message, error_code="VALIDATION_ERROR", details=details)
        self.field_name = field_name


class PersistenceError(StratLabError):
    """
    Exception raised when the datastore is unavailable.

    Raised for trade and equity snapshot writes only after all retry
    attempts are exhausted.
    """

    def __init__(
        self,
        message: str = "Datastore operation failed",
        operation: str = None,
        attempts: int = None,
        details: dict = None
    ):
        super().__init__(message, error_code="PERSISTENCE_ERROR", details=details)
        self.operation = operation
        self.attempts = attempts


class NotFoundError(StratLabError):
    """Exception raised when a strategy or session id does not exist."""

    def __init__(self, message: str = "Not found", entity: str = None, entity_id: str = None):
        super().__init__(message, error_code="NOT_FOUND", details={'entity': entity, 'id': entity_id})
        self.entity = entity
        self.entity_id = entity_id


@dataclass
class BatchItemError:
    """One failed item of a batch operation."""
    item: str
    error_code: str
    message: str

    @classmethod
    def from_exception(cls, item: str, error: Exception) -> 'BatchItemError':
        """Build an item error from any exception, keeping our error codes."""
        if isinstance(error, StratLabError):
            return cls(item=item, error_code=error.error_code, message=error.message)
        return cls(item=item, error_code=type(error).__name__.upper(), message=str(error))

    def to_dict(self) -> Dict[str, Any]:
        return {'item': self.item, 'error_code': self.error_code, 'message': self.message}


@dataclass
class BatchResult:
    """
    Structured result of a batch operation.

    ``succeeded`` holds the ids (or payloads) of items that completed and
    ``failed`` one entry per item that did not.
    """
    succeeded: List[Any] = field(default_factory=list)
    failed: List[BatchItemError] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)

    def add_failure(self, item: str, error: Exception) -> None:
        self.failed.append(BatchItemError.from_exception(item, error))

    def raise_for_failures(self) -> None:
        """Raise PartialBatchError if any item failed."""
        if self.failed:
            raise PartialBatchError(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'count': self.success_count,
            'succeeded': list(self.succeeded),
            'errors': [e.to_dict() for e in self.failed],
        }


class PartialBatchError(StratLabError):
    """Exception raised on demand when a batch operation had per-item failures."""

    def __init__(self, result: BatchResult, message: Optional[str] = None):
        message = message or (
            f"{len(result.failed)} item(s) failed, {result.success_count} succeeded"
        )
        super().__init__(
            message,
            error_code="PARTIAL_BATCH",
            details={'errors': [e.to_dict() for e in result.failed]}
        )
        self.result = result
