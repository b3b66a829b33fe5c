"""
Error taxonomy for the Event Report API.

Every failure that reaches the request boundary is a ReportError subclass
carrying its HTTP status. Database driver errors are translated by
classify_database_error(); anything else unexpected becomes UnknownError.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

logger = logging.getLogger(__name__)

# Postgres SQLSTATE codes we map explicitly
PG_UNIQUE_VIOLATION = "23505"
PG_CHECK_VIOLATION = "23514"

FDW_HINT = "Try using table names with '_fdw' suffix (e.g., payments_fdw instead of payments)"


class ReportError(Exception):
    """Base error: message is always safe to show, details only in debug."""

    status_code = 500

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        hint: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        debug_extra: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        self.hint = hint
        self.extra = extra or {}
        self.debug_extra = debug_extra or {}


class ValidationError(ReportError):
    status_code = 400


class WarehousePermissionError(ReportError):
    status_code = 403


class NotFoundError(ReportError):
    status_code = 404


class ConflictError(ReportError):
    status_code = 409


class UnknownError(ReportError):
    status_code = 500


class ConfigurationError(ReportError):
    status_code = 500


class DatabaseConnectionError(ReportError):
    status_code = 503


class GatewayError(ReportError):
    """Payment gateway returned a non-success response or was unreachable."""

    status_code = 500

    def __init__(self, message: str, status: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status = status


class EmailDeliveryError(ReportError):
    status_code = 500


class SchedulerError(ReportError):
    status_code = 500


def _pgcode(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(exc, "pgcode", None)


def is_connection_failure(exc: BaseException) -> bool:
    """Connection-level failures have no SQLSTATE; query errors always do."""
    if isinstance(exc, DatabaseConnectionError):
        return True
    if isinstance(exc, (OperationalError, InterfaceError)) and _pgcode(exc) is None:
        return True
    return "connect" in str(exc).lower() and _pgcode(exc) is None


def classify_database_error(
    exc: BaseException,
    message: str = "Database query failed",
    conflict_message: str = "This record already exists",
    check_message: str = "Invalid value for a constrained column",
) -> ReportError:
    """
    Translate a driver exception into the error taxonomy.

    Order matters: connection first (503), then permission (403), then the
    constraint codes the application store relies on (409/400).
    """
    if isinstance(exc, ReportError):
        return exc

    detail = str(getattr(exc, "orig", None) or exc)

    if is_connection_failure(exc):
        return DatabaseConnectionError(
            "Database connection failed. Please check your credentials and try again.",
            details=detail,
        )

    if "permission denied" in detail.lower():
        return WarehousePermissionError(
            "Permission denied for the requested table. "
            "The warehouse cluster may require different table names.",
            details=detail,
            hint=FDW_HINT,
        )

    code = _pgcode(exc)
    if code == PG_UNIQUE_VIOLATION:
        return ConflictError(conflict_message, details=detail)
    if code == PG_CHECK_VIOLATION:
        return ValidationError(check_message, details=detail)

    debug_extra = {"code": code or "UNKNOWN"} if isinstance(exc, DBAPIError) else {}
    return UnknownError(message, details=detail, debug_extra=debug_extra)


def to_response_payload(err: ReportError, debug: bool) -> Dict[str, Any]:
    """Build the {error, ...} body; detail fields are suppressed outside debug."""
    payload: Dict[str, Any] = {"error": err.message}
    if err.hint:
        payload["hint"] = err.hint
    payload.update(err.extra)
    if debug:
        if err.details:
            payload["details"] = err.details
        payload.update(err.debug_extra)
    return payload
