"""Error taxonomy raised by the data-access engine."""

from __future__ import annotations


class BrokerError(RuntimeError):
    """Base class for every error raised by brokerdb."""


class BrokerConnectionError(BrokerError):
    """Raised when no database session can be obtained for a unit of work."""


class QueryError(BrokerError):
    """Raised when a statement fails to execute or a column cannot be read."""

    def __init__(self, message: str, *, statement: str | None = None) -> None:
        super().__init__(message)
        self.statement = statement


class TransientConflictError(BrokerError):
    """Raised when a retryable write keeps failing after the retry budget is spent."""

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class MalformedDirectiveError(BrokerError):
    """Raised for a LOOP or CHUNK statement that does not have the expected shape."""

    def __init__(self, message: str, *, statement: str) -> None:
        super().__init__(message)
        self.statement = statement


class IntrospectionError(BrokerError):
    """Raised when primary-key values cannot be extracted from an object."""
