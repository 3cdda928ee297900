"""
Catalog Backend — Custom Exception Hierarchy
============================================

What:  Application-specific exceptions for the scenarios the backend can recover from.
Why:   Targeted handling with appropriate HTTP status codes and safe messages.
How:   Each exception carries a message and an optional context dict.
       Global exception handlers (registered in main.py) translate the ones
       that can reach a route into structured JSON error responses.

Exception Hierarchy:
    CatalogError (base)
    ├── ConfigurationError   → 500 (sync requested but upstream not configured)
    ├── DatabaseError        → 500 (read path failed; details logged only)
    ├── UpstreamError        → internal to the fetcher, becomes a TransportFailure
    └── StaleRecordError     → internal to the applier, becomes an ApplyFailure

Reconciliation failures are NOT exceptions at the API boundary: the fetcher and
the applier convert UpstreamError / StaleRecordError / database errors into
tagged outcomes, and the route returns them as a 200 SyncSummary. Only
programming and configuration errors surface as 5xx.
"""

from typing import Any, Dict, Optional


class CatalogError(Exception):
    """
    Base exception for all catalog backend errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ConfigurationError(CatalogError):
    """
    Raised when an operation needs a setting that is missing or invalid.

    When:    POST /api/v1/regionais/sync (or a periodic tick) with no UPSTREAM_URL.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "The service is not configured for this operation",
        setting: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if setting:
            ctx["setting"] = setting
        super().__init__(message=message, context=ctx)
        self.setting = setting


class DatabaseError(CatalogError):
    """
    Raised when a read query against the local store fails.

    HTTP:    500 Internal Server Error

    The message returned to the client is always generic; the original
    exception type is kept in context for the server-side log.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class UpstreamError(CatalogError):
    """
    Raised inside the fetcher when one HTTP attempt against the upstream fails.

    `retryable` tells the tenacity policy whether another attempt can help:
    connect errors, timeouts and 5xx are retryable; 4xx and an oversized body
    are not. Never escapes RegionalFetcher.fetch().
    """

    def __init__(
        self,
        message: str = "Upstream request failed",
        retryable: bool = False,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if status_code is not None:
            ctx["status_code"] = status_code
        super().__init__(message=message, context=ctx)
        self.retryable = retryable
        self.status_code = status_code


class StaleRecordError(CatalogError):
    """
    Raised when an inactivation finds no active row for the planned id.

    The plan was built from a read that no longer matches the table, so the
    whole transaction is rolled back. Never escapes SyncApplier.apply().
    """

    def __init__(self, record_id: int, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["record_id"] = record_id
        super().__init__(
            message=f"Regional record {record_id} is no longer active",
            context=ctx,
        )
        self.record_id = record_id
