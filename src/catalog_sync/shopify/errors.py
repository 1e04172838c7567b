"""
Error taxonomy for the catalog sync engine.

  ConfigurationError      missing credentials or a malformed field mapping.
                          Fatal, never retried.
  ConfigValidationError   generated query does not match its template or
                          baseline. Raised before any query text is used.
  RemoteTransientError    429 / 5xx / network class failures, raised only
                          after the retry policy is exhausted.
  RemoteError             any other failed HTTP or GraphQL call.
  RemoteJobError          bulk job FAILED / CANCELED on the remote side.
  BulkJobUserError        the start mutation returned userErrors.
  ParseError              one malformed NDJSON line; counted, never fatal.
  SyncTimeoutError        poll loop exceeded its wall-clock bound.
"""
from typing import List, Optional


class SyncError(RuntimeError):
    """Base class for all catalog sync failures."""


class ConfigurationError(SyncError):
    """Raised when required configuration is missing or malformed."""


class ConfigValidationError(ConfigurationError):
    """Raised when field mappings cannot produce the expected query."""


class RemoteError(SyncError):
    """Raised when a remote call fails in a way that retrying won't fix."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteTransientError(RemoteError):
    """Raised when a retryable remote failure persists past the retry budget."""


class RemoteJobError(SyncError):
    """Raised when the remote bulk job ends FAILED or CANCELED."""


class BulkJobUserError(RemoteJobError):
    """Raised when bulkOperationRunQuery returns userErrors."""

    def __init__(self, user_errors: List[dict]):
        self.user_errors = user_errors
        first = user_errors[0] if user_errors else {}
        super().__init__(f"Shopify error: {first.get('message', 'unknown user error')}")


class ParseError(SyncError, ValueError):
    """Raised for a single NDJSON line that cannot be decoded."""


class SyncTimeoutError(SyncError):
    """Raised when waiting on a bulk job exceeds the configured maximum."""
