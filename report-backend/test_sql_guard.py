"""
Regression tests for the ad-hoc SQL guard.

Tests check_query(), FDW rewriting, SELECT * expansion and table
extraction. No DB required.
"""

import unittest

from errors import ValidationError
from sql_guard import (
    FDW_COLUMN_EXPANSIONS,
    FDW_REWRITE_REASON,
    SQLQueryGuard,
    check_query,
    expand_select_star,
    extract_table_names,
    rewrite_fdw_tables,
    sanitize_query,
)


class TestCheckQuery(unittest.TestCase):
    """Gatekeeping: non-empty, no blocked keyword, SELECT only."""

    def test_plain_select_passes(self):
        self.assertEqual(check_query("  SELECT 1  "), "select 1")

    def test_lowercase_select_passes(self):
        check_query("select id from payments_fdw")

    def test_empty_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            check_query("   ")
        self.assertEqual(ctx.exception.message, "SQL query is required")

    def test_none_rejected(self):
        with self.assertRaises(ValidationError):
            check_query(None)

    def test_non_string_rejected(self):
        with self.assertRaises(ValidationError):
            check_query(42)

    def test_non_select_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            check_query("WITH x AS (SELECT 1) SELECT * FROM x")
        self.assertEqual(ctx.exception.message, "Only SELECT queries are allowed")
        self.assertEqual(ctx.exception.status_code, 400)

    def test_blocked_keyword_reported(self):
        with self.assertRaises(ValidationError) as ctx:
            check_query("SELECT 1; DROP TABLE payments")
        self.assertIn("dangerous keyword: drop", ctx.exception.message)
        self.assertEqual(ctx.exception.extra["keyword"], "drop")

    def test_first_keyword_in_blocklist_order(self):
        # "update" appears first in the text, "delete" first in the blocklist
        with self.assertRaises(ValidationError) as ctx:
            check_query("SELECT 1; UPDATE x SET a = 1; DELETE FROM x")
        self.assertEqual(ctx.exception.extra["keyword"], "delete")

    def test_keyword_is_whole_word(self):
        check_query("SELECT updated_at, created_at FROM events_fdw")

    def test_execute_matches_exec_only_as_whole_word(self):
        with self.assertRaises(ValidationError) as ctx:
            check_query("SELECT 1 WHERE 'execute' = 'x'")
        self.assertEqual(ctx.exception.extra["keyword"], "execute")


class TestRewriteFdwTables(unittest.TestCase):

    def test_from_payments_rewritten(self):
        self.assertEqual(
            rewrite_fdw_tables("SELECT id FROM payments WHERE id = 1"),
            "SELECT id FROM payments_fdw WHERE id = 1",
        )

    def test_join_and_case_preserved(self):
        sql = "select p.id from Payments p join\n  events e on e.id = p.event_id"
        self.assertEqual(
            rewrite_fdw_tables(sql),
            "select p.id from Payments_fdw p join\n  events_fdw e on e.id = p.event_id",
        )

    def test_users_rewritten(self):
        self.assertIn("FROM users_fdw", rewrite_fdw_tables("SELECT * FROM users"))

    def test_other_tables_untouched(self):
        sql = "SELECT * FROM price_tiers JOIN payment_items ON 1=1"
        self.assertEqual(rewrite_fdw_tables(sql), sql)

    def test_prefix_of_longer_name_untouched(self):
        sql = "SELECT * FROM payments_archive"
        self.assertEqual(rewrite_fdw_tables(sql), sql)

    def test_query_already_using_fdw_not_rewritten(self):
        sql = "SELECT * FROM payments_fdw p JOIN events e ON e.id = p.event_id"
        self.assertEqual(rewrite_fdw_tables(sql), sql)

    def test_count_reported(self):
        _, count = SQLQueryGuard().rewrite_fdw_tables("SELECT 1 FROM payments JOIN users ON 1=1")
        self.assertEqual(count, 2)


class TestExpandSelectStar(unittest.TestCase):

    def test_payments_fdw_star_expanded(self):
        expanded = expand_select_star("SELECT * FROM payments_fdw")
        expected_columns = ", ".join(FDW_COLUMN_EXPANSIONS["payments_fdw"])
        self.assertEqual(expanded, f"SELECT {expected_columns} FROM payments_fdw")

    def test_only_first_star_replaced(self):
        sql = "SELECT * FROM payments_fdw WHERE id IN (SELECT * FROM x)"
        expanded = expand_select_star(sql)
        self.assertTrue(expanded.startswith("SELECT id, transaction_id"))
        self.assertIn("(SELECT * FROM x)", expanded)

    def test_events_fdw_has_no_expansion(self):
        sql = "SELECT * FROM events_fdw"
        self.assertEqual(expand_select_star(sql), sql)

    def test_no_fdw_no_expansion(self):
        sql = "SELECT * FROM price_tiers"
        self.assertEqual(expand_select_star(sql), sql)


class TestSanitizeQuery(unittest.TestCase):

    def test_star_on_bare_payments(self):
        result = sanitize_query("SELECT * FROM payments")
        self.assertTrue(result.sql.startswith("SELECT id, transaction_id, status"))
        self.assertTrue(result.sql.endswith("FROM payments_fdw"))
        self.assertTrue(result.modified)
        self.assertEqual(result.tables_rewritten, 1)
        self.assertEqual(result.star_expanded, "payments_fdw")
        self.assertIn(FDW_REWRITE_REASON, result.modification)
        self.assertEqual(result.tables, ["payments_fdw"])

    def test_unmodified_query(self):
        sql = "SELECT id FROM payments_fdw"
        result = sanitize_query(sql)
        self.assertFalse(result.modified)
        self.assertIsNone(result.modification)
        self.assertEqual(result.original, sql)
        self.assertEqual(result.sql, sql)

    def test_rejected_before_rewrite(self):
        with self.assertRaises(ValidationError):
            sanitize_query("DELETE FROM payments")


class TestExtractTableNames(unittest.TestCase):

    def test_from_and_join(self):
        sql = "SELECT p.id FROM payments_fdw p LEFT JOIN events_fdw e ON e.id = p.event_id"
        self.assertEqual(extract_table_names(sql), ["payments_fdw", "events_fdw"])

    def test_schema_qualified(self):
        self.assertEqual(extract_table_names("SELECT 1 FROM public.price_tiers"), ["public.price_tiers"])

    def test_duplicates_collapsed(self):
        sql = "SELECT 1 FROM price_tiers a JOIN price_tiers b ON a.id = b.id"
        self.assertEqual(extract_table_names(sql), ["price_tiers"])

    def test_empty(self):
        self.assertEqual(extract_table_names(""), [])


if __name__ == "__main__":
    unittest.main()
