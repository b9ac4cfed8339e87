"""Domain-specific exceptions for the sales reconciliation engine.

This module defines custom exceptions that are part of the public API.
All exceptions inherit from ReconError for easy catching.
"""

from __future__ import annotations


class ReconError(Exception):
    """Base exception for all reconciliation errors.

    Users can catch this exception to handle any error raised by the
    package. The driver uses the concrete subclass name as the
    ``error_kind`` of a failed run.
    """

    pass


class ConfigError(ReconError):
    """Raised when there is a configuration error.

    This exception is raised when:
    - Invalid configuration values are provided
    - A tenant has no stored shop connection
    - Connection files cannot be loaded or parsed
    """

    pass


class DataQualityError(ReconError):
    """Raised when QA helpers receive frames without the required columns."""

    pass


class ETLError(ReconError):
    """Raised when a reconciliation stage fails."""

    pass


class ExtractionError(ETLError):
    """Raised when fetching orders from the commerce platform fails.

    Non-retryable failures (bad request, GraphQL query errors) use this
    class directly.
    """

    pass


class TransientFetchError(ExtractionError):
    """Raised when a network or rate-limit failure outlives the retry budget."""

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class AuthError(ExtractionError):
    """Raised when the platform rejects the tenant's credential.

    Never retried. The credential store is expected to prompt the merchant
    to re-authenticate.
    """

    def __init__(self, message: str, tenant_id: str | None = None) -> None:
        super().__init__(message)
        self.tenant_id = tenant_id


class MalformedSourceRecordError(ETLError):
    """Raised when a raw order is missing required fields or has bad values."""

    def __init__(self, message: str, order_id: str | None = None) -> None:
        super().__init__(message)
        self.order_id = order_id


class ReconciliationInvariantViolation(ETLError):
    """Raised when computed figures break the sales identity or customer split.

    The offending values are never clamped. The exception carries the
    bucket date and the figures that failed so the discrepancy can be
    audited.
    """

    def __init__(self, message: str, date: str | None = None, details: dict | None = None) -> None:
        super().__init__(message)
        self.date = date
        self.details = details or {}


class RunCancelledError(ETLError):
    """Raised when the caller cancels a run while orders are being fetched."""

    pass
