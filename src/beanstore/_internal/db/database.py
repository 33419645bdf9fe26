"""Database engine and statement adapter.

This module provides:
- Database: Engine factory with SQLite pragmas applied on connect
- Adapter: The statement executor one persistence context talks to

An Adapter owns a single connection. Outside an explicit transaction every
statement is committed as soon as it completes; begin() switches to
accumulate-until-commit() until the outermost commit() or a rollback().
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from functools import partial
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import event, text
from sqlalchemy import create_engine as sa_create_engine
from sqlalchemy.exc import SQLAlchemyError

from beanstore._internal.db.sql import Bindings, bind, is_missing_schema_error
from beanstore.core.errors import BackendError

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine, Table
    from sqlalchemy.engine import CursorResult
    from sqlalchemy.sql import Executable

logger = structlog.get_logger()

DEFAULT_BUSY_TIMEOUT_MS = 30000


class Database:
    """Engine factory for a backend URL.

    SQLite engines get pragmas for foreign keys and busy handling; file
    databases also switch to WAL mode.

    Usage::

        db = Database("sqlite:///beans.db")
        adapter = db.connect()
        adapter.exec("DELETE FROM book WHERE id = ?", [1])
    """

    def __init__(
        self,
        dsn: str = "sqlite://",
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        echo: bool = False,
    ) -> None:
        self.dsn = dsn
        self._busy_timeout_ms = busy_timeout_ms
        self._echo = echo
        self.engine = self._create_engine()

    @property
    def is_sqlite(self) -> bool:
        return self.dsn.startswith("sqlite")

    def _create_engine(self) -> Engine:
        if self.is_sqlite:
            engine = sa_create_engine(
                self.dsn,
                echo=self._echo,
                connect_args={"check_same_thread": False},
            )
            in_memory = self.dsn in ("sqlite://", "sqlite:///:memory:")
            event.listen(
                engine,
                "connect",
                partial(
                    _configure_pragmas,
                    busy_timeout_ms=self._busy_timeout_ms,
                    wal=not in_memory,
                ),
            )
            return engine
        return sa_create_engine(self.dsn, echo=self._echo, pool_pre_ping=True)

    def connect(self) -> Adapter:
        """Open a connection wrapped in a statement adapter."""
        return Adapter(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


def _configure_pragmas(
    dbapi_conn: Any,
    _connection_record: Any,
    *,
    busy_timeout_ms: int,
    wal: bool,
) -> None:
    """Configure SQLite for concurrent access and referential integrity."""
    cursor = dbapi_conn.cursor()
    if wal:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")  # Safe with WAL
    cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Adapter:
    """Statement executor over one SQLAlchemy connection."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.conn: Connection = engine.connect()
        self._depth = 0

    @property
    def dialect_name(self) -> str:
        return self.conn.dialect.name

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def quote(self, identifier: str) -> str:
        """Quote an already validated identifier, keyword or not."""
        return self.conn.dialect.identifier_preparer.quote_identifier(identifier)

    def _run(self, statement: Executable, params: dict[str, Any] | None, sql: str) -> CursorResult[Any]:
        try:
            result = self.conn.execute(statement, params or {})
        except SQLAlchemyError as e:
            reason = str(getattr(e, "orig", None) or e)
            if not self.in_transaction:
                self.conn.rollback()
            raise BackendError.statement_failed(
                sql, reason, missing_schema=is_missing_schema_error(e)
            ) from e
        return result

    def _finish(self) -> None:
        if not self.in_transaction:
            self.conn.commit()

    def execute(self, statement: Executable, params: dict[str, Any] | None = None) -> CursorResult[Any]:
        """Execute a Core construct (insert/update/DDL) and return its result."""
        result = self._run(statement, params, str(statement))
        self._finish()
        return result

    def exec(self, sql: str, bindings: Bindings = None) -> int:
        """Execute a modifying statement, returning the affected row count."""
        bound_sql, params = bind(sql, bindings)
        result = self._run(text(bound_sql), params, sql)
        count = int(result.rowcount)
        self._finish()
        return count

    def get_all(self, sql: str, bindings: Bindings = None) -> list[dict[str, Any]]:
        bound_sql, params = bind(sql, bindings)
        result = self._run(text(bound_sql), params, sql)
        rows = [dict(row) for row in result.mappings()]
        self._finish()
        return rows

    def get_row(self, sql: str, bindings: Bindings = None) -> dict[str, Any] | None:
        rows = self.get_all(sql, bindings)
        return rows[0] if rows else None

    def get_col(self, sql: str, bindings: Bindings = None) -> list[Any]:
        bound_sql, params = bind(sql, bindings)
        result = self._run(text(bound_sql), params, sql)
        column = [row[0] for row in result]
        self._finish()
        return column

    def get_cell(self, sql: str, bindings: Bindings = None) -> Any:
        column = self.get_col(sql, bindings)
        return column[0] if column else None

    def get_assoc(self, sql: str, bindings: Bindings = None) -> dict[Any, Any]:
        """First column as key, second column (or the first again) as value."""
        bound_sql, params = bind(sql, bindings)
        result = self._run(text(bound_sql), params, sql)
        assoc = {row[0]: row[1] if len(row) > 1 else row[0] for row in result}
        self._finish()
        return assoc

    def insert(self, table: Table, values: dict[str, Any]) -> int:
        """Insert one row and return its generated primary key."""
        stmt = table.insert().values(**values) if values else table.insert()
        result = self._run(stmt, None, f"INSERT INTO {table.name}")
        key = result.inserted_primary_key
        self._finish()
        return int(key[0]) if key and key[0] is not None else int(result.lastrowid)

    def begin(self) -> None:
        """Start (or join) an explicit transaction."""
        if self._depth == 0 and self.conn.in_transaction():
            self.conn.commit()
        self._depth += 1
        logger.debug("transaction_begin", depth=self._depth)

    def commit(self) -> None:
        """Commit when the outermost transaction completes."""
        if self._depth == 0:
            return
        self._depth -= 1
        if self._depth == 0:
            self.conn.commit()
            logger.debug("transaction_commit")

    def rollback(self) -> None:
        """Roll back the whole transaction, however deeply nested."""
        self._depth = 0
        self.conn.rollback()
        logger.debug("transaction_rollback")

    @contextmanager
    def transaction(self) -> Generator[Adapter, None, None]:
        """Run a block in a transaction; rolls back on exception."""
        self.begin()
        try:
            yield self
        except Exception:
            self.rollback()
            raise
        self.commit()

    def close(self) -> None:
        if self.in_transaction:
            self.rollback()
        self.conn.close()
