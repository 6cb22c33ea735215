"""
Exception hierarchy for the condition-timer transparency engine.

Every error raised by the engine derives from TransparencyError so callers
(HTTP handlers, the export worker, the operator CLI) can catch the whole
family at once and still branch on the precise kind.

Redaction is never an error: expired shares and missing consent produce
degraded but successful responses.
"""

from __future__ import annotations

from typing import Any


class TransparencyError(Exception):
    """Base exception for all transparency engine errors.

    Attributes:
        message: Human-readable error message
        details: Optional dictionary of additional error context
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize the error.

        Args:
            message: Human-readable error message
            details: Optional dictionary of additional error context
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFound(TransparencyError):
    """Unknown group, share, export or webhook.

    Attributes:
        resource: Kind of record that could not be found
    """

    def __init__(
        self,
        message: str,
        resource: str = "record",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.resource = resource


class Forbidden(TransparencyError):
    """The caller's group role does not allow the operation."""
    pass


class ValidationError(TransparencyError):
    """Malformed request payload or stale acknowledgement.

    Attributes:
        errors: Mapping of field name to problem description
    """

    def __init__(
        self,
        message: str,
        errors: dict[str, str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.errors = errors or {}


class AppendFailure(TransparencyError):
    """An append-only log could not be written.

    Raised instead of silently dropping the audit record; the operation that
    triggered the append is aborted.

    Attributes:
        log_name: Name of the log that rejected the write
    """

    def __init__(
        self,
        message: str,
        log_name: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.log_name = log_name


class StorageFailure(TransparencyError):
    """A mutable table could not be written.

    The in-memory row is rolled back before this is raised, so memory and
    disk never disagree.

    Attributes:
        table: Name of the table that rejected the write
    """

    def __init__(
        self,
        message: str,
        table: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.table = table


class TransientDeliveryFailure(TransparencyError):
    """A single webhook POST failed.

    Logged and counted in the webhook's bookkeeping, never surfaced to the
    user who requested the export.

    Attributes:
        webhook_id: The webhook registration that failed
        status_code: HTTP status returned by the endpoint, if any
    """

    def __init__(
        self,
        message: str,
        webhook_id: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.webhook_id = webhook_id
        self.status_code = status_code


class FatalExportFailure(TransparencyError):
    """Building, serializing or storing an export dataset failed.

    The export is already marked failed when this is raised; the job
    scheduler decides whether to retry.

    Attributes:
        export_id: The export request that failed
    """

    def __init__(
        self,
        message: str,
        export_id: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.export_id = export_id


__all__ = [
    "TransparencyError",
    "NotFound",
    "Forbidden",
    "ValidationError",
    "AppendFailure",
    "StorageFailure",
    "TransientDeliveryFailure",
    "FatalExportFailure",
]
