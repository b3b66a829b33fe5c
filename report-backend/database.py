"""
Database Access Layer
=====================

One DatabaseManager per logical database:

- warehouse: read-only analytical cluster. Every pooled connection is put
  in read-only mode and gets a statement timeout when it is first opened.
- app store: writable Postgres for recipients and scheduled reports.

Managers are created once at startup and handed to request handlers
(see main.py); nothing here is a module-level singleton. Each call checks a
connection out of the pool and returns it when the block exits.
"""

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from config import Settings
from errors import ConfigurationError, classify_database_error

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Owns a pooled SQLAlchemy engine and translates driver errors"""

    def __init__(
        self,
        database_url: str,
        name: str,
        read_only: bool = False,
        pool_size: int = 10,
        connect_timeout_ms: int = 5000,
        idle_timeout_ms: int = 10000,
        statement_timeout_ms: Optional[int] = 30000,
        engine: Optional[Engine] = None,
    ):
        self.name = name
        self.read_only = read_only
        self.statement_timeout_ms = statement_timeout_ms
        self.engine = engine or create_engine(
            database_url,
            pool_size=pool_size,
            max_overflow=0,
            pool_pre_ping=True,
            # Connections older than the idle timeout are replaced on checkout
            pool_recycle=max(1, idle_timeout_ms // 1000),
            connect_args={
                "connect_timeout": max(1, connect_timeout_ms // 1000),
                "sslmode": "require",
            },
        )
        event.listen(self.engine, "connect", self._on_connect)
        logger.info(f"Database pool '{name}' created (read_only={read_only}, size={pool_size})")

    @classmethod
    def for_warehouse(cls, settings: Settings) -> "DatabaseManager":
        if not settings.warehouse_url:
            raise ConfigurationError("Warehouse database URL is not configured")
        return cls(
            settings.warehouse_url,
            name="warehouse",
            read_only=True,
            pool_size=settings.db_max_connections,
            connect_timeout_ms=settings.db_connection_timeout_ms,
            idle_timeout_ms=settings.db_idle_timeout_ms,
            statement_timeout_ms=settings.db_statement_timeout_ms,
        )

    @classmethod
    def for_app_store(cls, settings: Settings) -> "DatabaseManager":
        if not settings.app_database_url:
            raise ConfigurationError("Application database URL is not configured")
        return cls(
            settings.app_database_url,
            name="app",
            read_only=False,
            pool_size=settings.db_max_connections,
            connect_timeout_ms=settings.db_connection_timeout_ms,
            idle_timeout_ms=settings.db_idle_timeout_ms,
            statement_timeout_ms=None,
        )

    def _on_connect(self, dbapi_connection, connection_record) -> None:
        """Session setup for every new pooled connection; failures are not fatal."""
        cursor = dbapi_connection.cursor()
        try:
            if self.read_only:
                try:
                    cursor.execute("SET default_transaction_read_only = on")
                except Exception as e:
                    logger.warning(f"Could not set read-only mode: {e}")
            if self.statement_timeout_ms:
                try:
                    cursor.execute(f"SET statement_timeout = {int(self.statement_timeout_ms)}")
                except Exception as e:
                    logger.warning(f"Could not set statement_timeout: {e}")
        finally:
            cursor.close()

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    def fetch_all(
        self,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        error_message: str = "Database query failed",
    ) -> List[Dict[str, Any]]:
        """Run a row-returning statement and return rows as dicts"""
        start = time.perf_counter()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(sql), params or {})
                rows = [dict(row._mapping) for row in result]
        except SQLAlchemyError as e:
            logger.error(f"[{self.name}] Query failed: {e}")
            raise classify_database_error(e, message=error_message) from e

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(f"[{self.name}] Query returned {len(rows)} rows in {elapsed_ms:.0f}ms")
        return rows

    def fetch_one(
        self,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        error_message: str = "Database query failed",
    ) -> Optional[Dict[str, Any]]:
        rows = self.fetch_all(sql, params, error_message=error_message)
        return rows[0] if rows else None

    def execute_raw(self, sql: str) -> List[Dict[str, Any]]:
        """
        Run ad-hoc SQL text without bind-parameter parsing.

        Used for the SQL console: colons (casts like ::date) and percent signs
        (LIKE '%x%') must reach the server untouched, so this skips text()
        and hands the cursor the statement with no parameter collection.
        """
        try:
            with self.engine.connect() as conn:
                result = conn.execution_options(no_parameters=True).exec_driver_sql(sql)
                if not result.returns_rows:
                    return []
                return [dict(row._mapping) for row in result]
        except SQLAlchemyError as e:
            logger.error(f"[{self.name}] Ad-hoc query failed: {e}")
            raise

    @contextmanager
    def transaction(self, error_message: str = "Database write failed", **classify_kwargs) -> Iterator[Connection]:
        """
        BEGIN ... COMMIT block; any exception rolls back before propagating.

        Extra keyword arguments are passed to classify_database_error so a
        caller can phrase conflict/check violations for its own table.
        """
        try:
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            logger.error(f"[{self.name}] Transaction rolled back: {e}")
            raise classify_database_error(e, message=error_message, **classify_kwargs) from e

    def execute(
        self,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        error_message: str = "Database write failed",
        **classify_kwargs,
    ) -> List[Dict[str, Any]]:
        """Single write statement in its own transaction; RETURNING rows as dicts"""
        with self.transaction(error_message=error_message, **classify_kwargs) as conn:
            result = conn.execute(text(sql), params or {})
            rows = [dict(row._mapping) for row in result] if result.returns_rows else []
            affected = result.rowcount
        logger.info(f"[{self.name}] Write affected {affected} rows")
        return rows

    def ping(self) -> Dict[str, Any]:
        """Connection test used by the dashboard's status indicator"""
        row = self.fetch_one(
            "SELECT NOW() AS current_time, current_database() AS database",
            error_message="Database connection failed",
        )
        return row or {}

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info(f"Database pool '{self.name}' closed")
