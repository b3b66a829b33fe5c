"""
Tests for driver-error classification and the error response body.
"""

import unittest

from sqlalchemy.exc import InterfaceError, OperationalError, ProgrammingError

from errors import (
    FDW_HINT,
    ConflictError,
    DatabaseConnectionError,
    UnknownError,
    ValidationError,
    WarehousePermissionError,
    classify_database_error,
    is_connection_failure,
    to_response_payload,
)


class FakeDriverError(Exception):
    """Stands in for a psycopg2 error: message plus optional pgcode."""

    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


def _wrap(cls, message, pgcode=None):
    return cls("SELECT 1", {}, FakeDriverError(message, pgcode))


class TestClassification(unittest.TestCase):

    def test_connection_refused_is_503(self):
        err = classify_database_error(_wrap(OperationalError, "could not connect to server"))
        self.assertIsInstance(err, DatabaseConnectionError)
        self.assertEqual(err.status_code, 503)

    def test_interface_error_is_connection(self):
        self.assertTrue(is_connection_failure(_wrap(InterfaceError, "connection already closed")))

    def test_statement_timeout_is_not_connection(self):
        exc = _wrap(OperationalError, "canceling statement due to statement timeout", pgcode="57014")
        self.assertFalse(is_connection_failure(exc))
        self.assertIsInstance(classify_database_error(exc), UnknownError)

    def test_permission_denied_gets_fdw_hint(self):
        err = classify_database_error(_wrap(ProgrammingError, "permission denied for table payments", "42501"))
        self.assertIsInstance(err, WarehousePermissionError)
        self.assertEqual(err.status_code, 403)
        self.assertEqual(err.hint, FDW_HINT)

    def test_unique_violation(self):
        err = classify_database_error(
            _wrap(ProgrammingError, "duplicate key value", "23505"),
            conflict_message="This email already exists",
        )
        self.assertIsInstance(err, ConflictError)
        self.assertEqual(err.message, "This email already exists")

    def test_check_violation(self):
        err = classify_database_error(
            _wrap(ProgrammingError, "violates check constraint", "23514"),
            check_message="Invalid cron expression format",
        )
        self.assertIsInstance(err, ValidationError)
        self.assertEqual(err.status_code, 400)

    def test_other_error_keeps_code_for_debug(self):
        err = classify_database_error(
            _wrap(ProgrammingError, 'relation "nope" does not exist', "42P01"),
            message="Failed to execute SQL query",
        )
        self.assertIsInstance(err, UnknownError)
        self.assertEqual(err.message, "Failed to execute SQL query")
        self.assertEqual(err.debug_extra, {"code": "42P01"})

    def test_report_error_passes_through(self):
        original = ValidationError("bad")
        self.assertIs(classify_database_error(original), original)


class TestResponsePayload(unittest.TestCase):

    def test_details_hidden_outside_debug(self):
        err = UnknownError("Failed", details="stack", debug_extra={"code": "X"})
        self.assertEqual(to_response_payload(err, debug=False), {"error": "Failed"})
        self.assertEqual(
            to_response_payload(err, debug=True),
            {"error": "Failed", "details": "stack", "code": "X"},
        )

    def test_hint_and_extra_always_shown(self):
        err = WarehousePermissionError("Denied", hint="use _fdw", extra={"query": "SELECT 1"})
        self.assertEqual(
            to_response_payload(err, debug=False),
            {"error": "Denied", "hint": "use _fdw", "query": "SELECT 1"},
        )


if __name__ == "__main__":
    unittest.main()
