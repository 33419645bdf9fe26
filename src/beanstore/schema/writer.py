"""Schema reader/writer over SQLAlchemy reflection and DDL.

The writer knows nothing about modes; the synchronizer decides whether a
change is allowed and calls in here to make it. Every identifier passes
``check_identifier`` before it is quoted into a statement.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import Column, Integer, MetaData, Table, inspect, text
from sqlalchemy.schema import CreateTable

from beanstore.core.errors import ValidationError
from beanstore.schema.types import TypeRank, sql_type_for

if TYPE_CHECKING:
    from sqlalchemy.types import TypeEngine

    from beanstore._internal.db import Adapter

logger = structlog.get_logger()

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_]+$")


def check_identifier(name: str, *, owner: str = "") -> str:
    """Reject identifiers that could not be quoted safely."""
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise ValidationError.invalid_property(owner or "?", str(name))
    return name


def index_name(table: str, columns: list[str], unique: bool = False) -> str:
    prefix = "uq" if unique else "ix"
    return f"{prefix}_{table}_{'_'.join(columns)}"


def _id_column() -> Column[int]:
    return Column("id", Integer, primary_key=True, autoincrement=True, quote=True)


class SchemaWriter:
    """Reads and changes the relational schema through an Adapter."""

    def __init__(self, adapter: Adapter) -> None:
        self.adapter = adapter

    def _q(self, name: str) -> str:
        return self.adapter.quote(check_identifier(name))

    # -- reading ---------------------------------------------------------

    def get_tables(self) -> list[str]:
        return sorted(inspect(self.adapter.conn).get_table_names())

    def has_table(self, table: str) -> bool:
        return inspect(self.adapter.conn).has_table(check_identifier(table))

    def get_columns(self, table: str) -> dict[str, TypeEngine[Any]]:
        """Column name -> reflected type. Empty if the table is missing."""
        insp = inspect(self.adapter.conn)
        if not insp.has_table(check_identifier(table)):
            return {}
        return {col["name"]: col["type"] for col in insp.get_columns(table)}

    def get_index_names(self, table: str) -> set[str]:
        insp = inspect(self.adapter.conn)
        return {idx["name"] for idx in insp.get_indexes(table) if idx.get("name")}

    # -- writing ---------------------------------------------------------

    def table_for(self, table: str, columns: list[str]) -> Table:
        """Lightweight Table for Core insert/update statements."""
        check_identifier(table)
        cols = [_id_column()]
        cols.extend(
            Column(check_identifier(name, owner=table), quote=True)
            for name in columns
            if name != "id"
        )
        return Table(table, MetaData(), *cols, quote=True)

    def create_table(self, table: str) -> None:
        check_identifier(table)
        new_table = Table(table, MetaData(), _id_column(), quote=True)
        self.adapter.execute(CreateTable(new_table))
        logger.info("table_created", table=table)

    def add_column(self, table: str, column: str, rank: TypeRank) -> None:
        type_sql = sql_type_for(rank).compile(dialect=self.adapter.conn.dialect)
        self.adapter.execute(
            text(f"ALTER TABLE {self._q(table)} ADD COLUMN {self._q(column)} {type_sql}")
        )
        logger.info("column_added", table=table, column=column, rank=rank.name)

    def widen_column(self, table: str, column: str, rank: TypeRank) -> None:
        """Change a column to a wider type, keeping its rows."""
        new_type = sql_type_for(rank)
        type_sql = new_type.compile(dialect=self.adapter.conn.dialect)
        dialect = self.adapter.dialect_name
        if dialect == "sqlite":
            self._rebuild_sqlite_table(table, column, new_type)
        elif dialect == "mysql" or dialect == "mariadb":
            self.adapter.execute(
                text(f"ALTER TABLE {self._q(table)} MODIFY {self._q(column)} {type_sql}")
            )
        else:
            self.adapter.execute(
                text(f"ALTER TABLE {self._q(table)} ALTER COLUMN {self._q(column)} TYPE {type_sql}")
            )
        logger.info("column_widened", table=table, column=column, rank=rank.name)

    def _rebuild_sqlite_table(self, table: str, column: str, new_type: TypeEngine[Any]) -> None:
        """SQLite cannot retype a column in place: copy into a new table."""
        insp = inspect(self.adapter.conn)
        columns = insp.get_columns(check_identifier(table))
        indexes = insp.get_indexes(table)
        temp = check_identifier(f"{table}__widen")

        new_columns = []
        for col in columns:
            if col["name"] == "id":
                new_columns.append(_id_column())
            elif col["name"] == column:
                new_columns.append(Column(column, new_type, quote=True))
            else:
                new_columns.append(Column(col["name"], col["type"], quote=True))
        names = ", ".join(self._q(col["name"]) for col in columns)

        with self.adapter.transaction():
            self.adapter.execute(CreateTable(Table(temp, MetaData(), *new_columns, quote=True)))
            self.adapter.execute(
                text(f"INSERT INTO {self._q(temp)} ({names}) SELECT {names} FROM {self._q(table)}")
            )
            self.adapter.execute(text(f"DROP TABLE {self._q(table)}"))
            self.adapter.execute(text(f"ALTER TABLE {self._q(temp)} RENAME TO {self._q(table)}"))
            for idx in indexes:
                self._create_index(
                    table, list(idx["column_names"]), bool(idx.get("unique")), idx.get("name")
                )

    def add_index(self, table: str, columns: list[str], *, unique: bool = False) -> None:
        """Create an index unless one with the same name already exists."""
        name = index_name(table, columns, unique)
        if name in self.get_index_names(table):
            return
        self._create_index(table, columns, unique, name)
        logger.debug("index_created", table=table, columns=columns, unique=unique)

    def _create_index(self, table: str, columns: list[str], unique: bool, name: str | None) -> None:
        name = name or index_name(table, columns, unique)
        cols = ", ".join(self._q(c) for c in columns)
        kind = "UNIQUE INDEX" if unique else "INDEX"
        self.adapter.execute(text(f"CREATE {kind} {self._q(name)} ON {self._q(table)} ({cols})"))

    def wipe(self, table: str) -> int:
        return self.adapter.exec(f"DELETE FROM {self._q(table)}")

    def drop_table(self, table: str) -> None:
        self.adapter.execute(text(f"DROP TABLE IF EXISTS {self._q(table)}"))
        logger.info("table_dropped", table=table)

    def drop_all(self) -> None:
        for table in self.get_tables():
            self.drop_table(table)
