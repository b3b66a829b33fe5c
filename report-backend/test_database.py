"""
Tests for DatabaseManager against an in-memory SQLite engine.

Only the manager's own behavior is exercised (row shaping, transactions,
error wrapping); Postgres-specific session settings are not.
"""

import unittest
from unittest.mock import patch

from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from config import Settings
from database import DatabaseManager
from errors import ConfigurationError, ReportError


def _manager():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    manager = DatabaseManager("sqlite://", name="test", statement_timeout_ms=None, engine=engine)
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE report_recipients (id INTEGER PRIMARY KEY, email TEXT UNIQUE, name TEXT)"))
        conn.execute(text("INSERT INTO report_recipients (email, name) VALUES ('a@example.com', 'Ann')"))
    return manager


class TestDatabaseManager(unittest.TestCase):

    def setUp(self):
        self.db = _manager()

    def tearDown(self):
        self.db.dispose()

    def test_fetch_all_returns_dicts(self):
        rows = self.db.fetch_all("SELECT id, email, name FROM report_recipients")
        self.assertEqual(rows, [{"id": 1, "email": "a@example.com", "name": "Ann"}])

    def test_fetch_one_binds_params(self):
        row = self.db.fetch_one("SELECT name FROM report_recipients WHERE email = :email", {"email": "a@example.com"})
        self.assertEqual(row, {"name": "Ann"})
        self.assertIsNone(self.db.fetch_one("SELECT name FROM report_recipients WHERE id = :id", {"id": 99}))

    def test_execute_commits(self):
        self.db.execute(
            "INSERT INTO report_recipients (email, name) VALUES (:email, :name)",
            {"email": "b@example.com", "name": "Bo"},
        )
        self.assertEqual(len(self.db.fetch_all("SELECT id FROM report_recipients")), 2)

    def test_transaction_rolls_back(self):
        with self.assertRaises(ReportError):
            with self.db.transaction() as conn:
                conn.execute(text("INSERT INTO report_recipients (email) VALUES ('c@example.com')"))
                conn.execute(text("INSERT INTO report_recipients (email) VALUES ('a@example.com')"))
        emails = [r["email"] for r in self.db.fetch_all("SELECT email FROM report_recipients")]
        self.assertEqual(emails, ["a@example.com"])

    def test_query_error_is_wrapped(self):
        with self.assertRaises(ReportError) as ctx:
            self.db.fetch_all("SELECT * FROM missing_table", error_message="Failed to fetch")
        self.assertIsNotNone(ctx.exception.details)

    def test_execute_raw_keeps_colons(self):
        rows = self.db.execute_raw("SELECT 'a:b' AS v")
        self.assertEqual(rows, [{"v": "a:b"}])

    def test_execute_raw_sends_percent_without_parameters(self):
        sql = "SELECT name FROM report_recipients WHERE name LIKE '%nn%'"
        dialect = self.db.engine.dialect
        with patch.object(dialect, "do_execute_no_params", wraps=dialect.do_execute_no_params) as no_params, \
                patch.object(dialect, "do_execute", wraps=dialect.do_execute) as with_params:
            rows = self.db.execute_raw(sql)

        self.assertEqual(rows, [{"name": "Ann"}])
        with_params.assert_not_called()
        no_params.assert_called_once()
        self.assertEqual(no_params.call_args.args[1], sql)


class TestFactories(unittest.TestCase):

    def test_missing_urls(self):
        with self.assertRaises(ConfigurationError):
            DatabaseManager.for_warehouse(Settings())
        with self.assertRaises(ConfigurationError):
            DatabaseManager.for_app_store(Settings())


if __name__ == "__main__":
    unittest.main()
