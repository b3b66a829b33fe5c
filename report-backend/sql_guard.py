"""
Ad-hoc SQL Guard - Validation + FDW Table Rewriting
====================================================

PURPOSE:
The dashboard lets staff paste a SELECT statement and run it against the
warehouse cluster. Before execution the text goes through three steps:

    1. Gatekeeping   - non-empty, no blocked keyword, must start with SELECT
    2. FDW rewriting - FROM/JOIN payments|events|users -> <table>_fdw
    3. Star expansion - SELECT * on an FDW table -> explicit column list

WHY FDW:
On the warehouse, payments/events/users are foreign-data-wrapper views.
The bare names are not granted to the reporting role, and SELECT * on
payments_fdw trips over remote columns that no longer exist.

WHAT THIS IS NOT:
- NOT a SQL parser (keyword matching is regex on whole words)
- NOT a security boundary (comments, CTEs or alternate syntax can slip
  through; the read-only session is the real guard)
- NOT a rewriter of anything beyond the three tables above

Matching is whole-word: "updated_at" or an alias like "updates" does not
trip the "update" rule.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import sqlparse
from sqlparse import tokens as T

from errors import ValidationError

logger = logging.getLogger(__name__)


# ============================================================================
# CONFIGURATION
# ============================================================================

# Order matters: the first keyword found in this order is the one reported
BLOCKED_KEYWORDS = (
    "drop",
    "delete",
    "truncate",
    "insert",
    "update",
    "create",
    "alter",
    "grant",
    "revoke",
    "exec",
    "execute",
)

FDW_SUFFIX = "_fdw"
FDW_TABLES = ("payments", "events", "users")

# Explicit column lists for FDW tables whose remote schema drifted
FDW_COLUMN_EXPANSIONS: Dict[str, List[str]] = {
    "payments_fdw": [
        "id",
        "transaction_id",
        "status",
        "name_on_card",
        "card_type",
        "last_four",
        "amount",
        "created_at",
        "user_id",
        "event_id",
        "event_attendee_id",
        "shipping_address_id",
        "metadata",
        "payment_gateway_id",
        "refund_amount",
        "phone_number",
    ],
}

FDW_REWRITE_REASON = "Table names auto-corrected to use FDW suffix (warehouse cluster requirement)"
STAR_EXPANSION_REASON = "SELECT * replaced with explicit column list for FDW table"

_BLOCKED_PATTERNS = [(kw, re.compile(rf"\b{kw}\b")) for kw in BLOCKED_KEYWORDS]

# FROM/JOIN <table>, keeping keyword and whitespace exactly as written.
# The trailing \b also refuses "payments_fdw" and "payments_archive".
_FDW_TABLE_PATTERN = re.compile(
    r"\b(FROM|JOIN)(\s+)(" + "|".join(FDW_TABLES) + r")\b",
    re.IGNORECASE,
)

_SELECT_STAR_PATTERN = re.compile(r"\bSELECT\s+\*", re.IGNORECASE)


@dataclass
class SanitizedQuery:
    """
    Result of running a query through the guard.

    Attributes:
        original: Query text as submitted
        sql: Query text to execute
        tables_rewritten: FROM/JOIN references that gained the _fdw suffix
        star_expanded: FDW table whose column list replaced SELECT *
        tables: Table names referenced after rewriting
    """
    original: str
    sql: str
    tables_rewritten: int = 0
    star_expanded: Optional[str] = None
    tables: List[str] = field(default_factory=list)

    @property
    def modified(self) -> bool:
        return self.sql != self.original

    @property
    def modification(self) -> Optional[str]:
        if not self.modified:
            return None
        reasons = []
        if self.tables_rewritten:
            reasons.append(FDW_REWRITE_REASON)
        if self.star_expanded:
            reasons.append(STAR_EXPANSION_REASON)
        return "; ".join(reasons) or None


class SQLQueryGuard:
    """Best-effort read-only gate for ad-hoc warehouse queries."""

    def check(self, sql) -> str:
        """
        Reject anything that is not a plain SELECT.

        Returns:
            The trimmed, lower-cased form used for matching

        Raises:
            ValidationError: empty input, blocked keyword, or not a SELECT
        """
        if not isinstance(sql, str) or not sql.strip():
            raise ValidationError("SQL query is required")

        normalized = sql.lower().strip()

        for keyword, pattern in _BLOCKED_PATTERNS:
            if pattern.search(normalized):
                logger.warning(f"Blocked ad-hoc query: keyword '{keyword}'")
                raise ValidationError(
                    f"SQL query contains potentially dangerous keyword: {keyword}. "
                    "Only SELECT queries are allowed.",
                    extra={"keyword": keyword},
                )

        if not normalized.startswith("select"):
            raise ValidationError("Only SELECT queries are allowed")

        return normalized

    def rewrite_fdw_tables(self, sql: str) -> Tuple[str, int]:
        """
        Suffix bare payments/events/users references with _fdw.

        A query that mentions _fdw anywhere is taken as already written for
        the warehouse and left untouched, bare references included.
        """
        if FDW_SUFFIX in sql.lower():
            return sql, 0
        rewritten, count = _FDW_TABLE_PATTERN.subn(
            lambda m: f"{m.group(1)}{m.group(2)}{m.group(3)}{FDW_SUFFIX}", sql
        )
        if count:
            logger.info(f"Auto-corrected {count} table reference(s) to use FDW suffix")
        return rewritten, count

    def expand_select_star(self, sql: str) -> Tuple[str, Optional[str]]:
        """Replace the first SELECT * when a known FDW table is referenced."""
        lowered = sql.lower()
        if FDW_SUFFIX not in lowered or not _SELECT_STAR_PATTERN.search(sql):
            return sql, None

        for table, columns in FDW_COLUMN_EXPANSIONS.items():
            if re.search(rf"\b{table}\b", lowered):
                expanded = _SELECT_STAR_PATTERN.sub(
                    "SELECT " + ", ".join(columns), sql, count=1
                )
                logger.info(f"Expanded SELECT * to explicit columns for {table}")
                return expanded, table

        return sql, None

    def sanitize(self, sql) -> SanitizedQuery:
        self.check(sql)
        rewritten, count = self.rewrite_fdw_tables(sql)
        rewritten, expanded = self.expand_select_star(rewritten)
        return SanitizedQuery(
            original=sql,
            sql=rewritten,
            tables_rewritten=count,
            star_expanded=expanded,
            tables=extract_table_names(rewritten),
        )


# ============================================================================
# TABLE EXTRACTION
# ============================================================================

_NAME_TYPES = (T.Name, T.String.Symbol)


def _is_table_opener(token) -> bool:
    if token.ttype not in T.Keyword:
        return False
    keyword = token.normalized.upper()
    return keyword == "FROM" or keyword.endswith("JOIN")


def extract_table_names(sql: str) -> List[str]:
    """
    Table names that follow FROM/JOIN, lower-cased, in order of appearance.

    Schema-qualified names are kept whole (public.payments). Subqueries are
    skipped; their own FROM clauses are picked up when the walk reaches them.
    """
    tables: List[str] = []

    def _finish(parts: List[str]) -> None:
        if parts:
            name = "".join(parts).replace('"', "").lower()
            if name not in tables:
                tables.append(name)

    for statement in sqlparse.parse(sql or ""):
        expecting = False
        parts: List[str] = []
        for token in statement.flatten():
            if token.is_whitespace or token.ttype in T.Comment:
                if parts:
                    _finish(parts)
                    parts = []
                    expecting = False
                continue

            if expecting:
                is_name = token.ttype in _NAME_TYPES or (
                    token.ttype in T.Keyword
                    and token.ttype not in (T.Keyword.DML, T.Keyword.DDL)
                    and not _is_table_opener(token)
                )
                if is_name or (token.ttype in T.Punctuation and token.value == "." and parts):
                    parts.append(token.value)
                    continue
                _finish(parts)
                parts = []
                expecting = False

            if _is_table_opener(token):
                expecting = True

        _finish(parts)

    return tables


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

_guard = SQLQueryGuard()


def check_query(sql) -> str:
    return _guard.check(sql)


def rewrite_fdw_tables(sql: str) -> str:
    return _guard.rewrite_fdw_tables(sql)[0]


def expand_select_star(sql: str) -> str:
    return _guard.expand_select_star(sql)[0]


def sanitize_query(sql) -> SanitizedQuery:
    """Validate and rewrite an ad-hoc SELECT for the warehouse cluster."""
    return _guard.sanitize(sql)
