"""BeanStore: one persistence context.

A context owns its backend connection, its schema mode and its dependency
map. Nothing is process-global, so any number of contexts (for example one
per database) can coexist.

Usage::

    store = BeanStore()                      # in-memory SQLite, fluid
    book = store.dispense("book")
    book["title"] = "Dune"
    book["ownPage"] = [store.dispense("page")]
    store.store(book)

    store.freeze(True)                       # schema is stable from here on
    with store.transaction():
        store.trash(book)
"""

from __future__ import annotations

import re
from collections.abc import Generator, Iterable, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog

from beanstore._internal.db import Bindings, Database
from beanstore.bean import Bean
from beanstore.config import BeanStoreConfig, load_config
from beanstore.core.errors import ValidationError
from beanstore.core.logging import configure_logging
from beanstore.persistence import (
    OODB,
    AssociationManager,
    DuplicationManager,
    DuplicationTrail,
    Finder,
)
from beanstore.schema import FreezeState, SchemaSynchronizer, SchemaWriter

logger = structlog.get_logger()

_DISPENSE_SPEC_RE = re.compile(r"^\s*([a-z0-9_]+)\s*(?:\*\s*(\d+))?\s*$")


class BeanStore:
    """Persistence context wiring the object database and its collaborators."""

    def __init__(self, config: BeanStoreConfig | None = None, *, dsn: str | None = None) -> None:
        self.config = config or BeanStoreConfig()
        db_config = self.config.database
        store_config = self.config.store

        self.database = Database(
            dsn or db_config.dsn,
            busy_timeout_ms=db_config.busy_timeout_ms,
            echo=db_config.echo_sql,
        )
        self.adapter = self.database.connect()
        self.writer = SchemaWriter(self.adapter)
        self.synchronizer = SchemaSynchronizer(
            self.writer,
            FreezeState(store_config.mode, store_config.frozen_types),
            blob_threshold=store_config.blob_threshold,
        )
        self.oodb = OODB(
            self.adapter,
            self.writer,
            self.synchronizer,
            dependencies=store_config.dependencies,
            strict_type_names=store_config.strict_type_names,
        )
        self.associations = AssociationManager(self.oodb, unique_links=store_config.unique_links)
        self.duplication = DuplicationManager(self.oodb, self.associations)
        self.finder = Finder(self.oodb, self.duplication)

        logger.debug(
            "beanstore_opened",
            dialect=self.adapter.dialect_name,
            mode=self.synchronizer.freeze.mode,
        )

    @classmethod
    def from_config(cls, config_path: Path | None = None, **overrides: Any) -> BeanStore:
        """Open a context from YAML, environment and keyword overrides.

        The ``logging`` section is applied process-wide before the context opens.
        """
        config = load_config(config_path, **overrides)
        configure_logging(config=config.logging)
        return cls(config)

    def close(self) -> None:
        self.adapter.close()
        self.database.dispose()
        logger.debug("beanstore_closed")

    def __enter__(self) -> BeanStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- dispense ------------------------------------------------------------

    def dispense(self, type_name: str, num: int = 1) -> Bean | list[Bean]:
        return self.oodb.dispense(type_name, num)

    def dispense_all(self, order: str) -> list[Bean | list[Bean]]:
        """Dispense by recipe: ``"book,page*3"`` -> ``[book, [page, page, page]]``."""
        result: list[Bean | list[Bean]] = []
        for part in order.split(","):
            match = _DISPENSE_SPEC_RE.match(part)
            if not match:
                raise ValidationError.invalid_type(part.strip())
            type_name, count = match.groups()
            if count is None:
                result.append(self.oodb.dispense(type_name))
            else:
                beans = self.oodb.dispense(type_name, int(count))
                result.append(beans if isinstance(beans, list) else [beans])
        return result

    # -- store / load / trash -----------------------------------------------

    def store(self, bean: Bean) -> int:
        return self.oodb.store(bean)

    def store_all(self, beans: Iterable[Bean]) -> list[int]:
        return self.oodb.store_all(beans)

    def load(self, type_name: str, id: int) -> Bean:
        return self.oodb.load(type_name, id)

    def load_multi(self, types: str | Iterable[str], id: int) -> list[Bean]:
        """Load beans of several types sharing one id (``"author,bio"``)."""
        names = types.split(",") if isinstance(types, str) else list(types)
        return [self.oodb.load(name.strip(), id) for name in names]

    def batch(self, type_name: str, ids: Iterable[int]) -> list[Bean]:
        return self.oodb.batch(type_name, ids)

    load_all = batch

    def trash(self, bean: Bean) -> None:
        self.oodb.trash(bean)

    def trash_all(self, beans: Iterable[Bean]) -> None:
        self.oodb.trash_all(beans)

    def count(self, type_name: str, sql: str | None = None, bindings: Bindings = None) -> int:
        return self.oodb.count(type_name, sql, bindings)

    def wipe(self, type_name: str) -> bool:
        return self.oodb.wipe(type_name)

    def nuke(self) -> bool:
        return self.oodb.nuke()

    def convert_to_beans(self, type_name: str, rows: Iterable[Mapping[str, Any]]) -> list[Bean]:
        return self.oodb.convert_to_beans(type_name, rows)

    # -- related data ----------------------------------------------------------

    def own(self, bean: Bean, type_name: str) -> list[Bean]:
        return self.oodb.own(bean, type_name)

    def shared(self, bean: Bean, type_name: str) -> list[Bean]:
        return self.oodb.shared(bean, type_name)

    def parent(self, bean: Bean, name: str, type_name: str | None = None) -> Bean | None:
        return self.oodb.parent(bean, name, type_name)

    def link(
        self,
        beans_a: Bean | Iterable[Bean],
        beans_b: Bean | Iterable[Bean],
        extra: Any = None,
    ) -> list[int]:
        return self.associations.link(beans_a, beans_b, extra)

    def unlink(
        self,
        beans_a: Bean | Iterable[Bean],
        beans_b: Bean | Iterable[Bean],
        fast: bool = False,
    ) -> int:
        return self.associations.unlink(beans_a, beans_b, fast)

    def are_related(self, bean_a: Bean, bean_b: Bean) -> bool:
        return self.associations.are_related(bean_a, bean_b)

    def related(
        self,
        beans: Bean | Iterable[Bean],
        type_name: str,
        sql: str | None = None,
        bindings: Bindings = None,
    ) -> list[Bean]:
        return self.associations.related(beans, type_name, sql, bindings)

    def related_count(
        self, bean: Bean, type_name: str, sql: str | None = None, bindings: Bindings = None
    ) -> int:
        return self.associations.related_count(bean, type_name, sql, bindings)

    def related_one(
        self, bean: Bean, type_name: str, sql: str | None = None, bindings: Bindings = None
    ) -> Bean | None:
        return self.associations.related_one(bean, type_name, sql, bindings)

    def related_last(
        self, bean: Bean, type_name: str, sql: str | None = None, bindings: Bindings = None
    ) -> Bean | None:
        return self.associations.related_last(bean, type_name, sql, bindings)

    def clear_relations(self, bean: Bean, type_name: str) -> int:
        return self.associations.clear_relations(bean, type_name)

    # -- duplication and export ----------------------------------------------

    def dup(
        self,
        bean: Bean,
        trail: DuplicationTrail | None = None,
        preserve_ids: bool = False,
        filters: Iterable[str] = (),
    ) -> Bean:
        return self.duplication.dup(bean, trail, preserve_ids, filters)

    def export_all(
        self,
        beans: Bean | Iterable[Bean],
        parents: bool = False,
        filters: Iterable[str] = (),
    ) -> list[dict[str, Any]]:
        return self.duplication.export_all(beans, parents, filters)

    @staticmethod
    def beans_to_array(beans: Iterable[Bean]) -> list[dict[str, Any]]:
        """Export beans as they are in memory, without loading anything."""
        return [bean.export() for bean in beans]

    # -- finders ---------------------------------------------------------------

    def find(self, type_name: str, sql: str | None = None, bindings: Bindings = None) -> list[Bean]:
        return self.finder.find(type_name, sql, bindings)

    def find_all(self, type_name: str, sql: str | None = None, bindings: Bindings = None) -> list[Bean]:
        return self.finder.find_all(type_name, sql, bindings)

    def find_one(self, type_name: str, sql: str | None = None, bindings: Bindings = None) -> Bean | None:
        return self.finder.find_one(type_name, sql, bindings)

    def find_last(self, type_name: str, sql: str | None = None, bindings: Bindings = None) -> Bean | None:
        return self.finder.find_last(type_name, sql, bindings)

    def find_or_dispense(
        self, type_name: str, sql: str | None = None, bindings: Bindings = None
    ) -> list[Bean]:
        return self.finder.find_or_dispense(type_name, sql, bindings)

    def find_and_export(
        self, type_name: str, sql: str | None = None, bindings: Bindings = None
    ) -> list[dict[str, Any]]:
        return self.finder.find_and_export(type_name, sql, bindings)

    # -- raw queries -----------------------------------------------------------

    def exec(self, sql: str, bindings: Bindings = None) -> int:
        return int(self.oodb.query("exec", sql, bindings))

    def get_all(self, sql: str, bindings: Bindings = None) -> list[dict[str, Any]]:
        return self.oodb.query("get_all", sql, bindings)

    def get_row(self, sql: str, bindings: Bindings = None) -> dict[str, Any] | None:
        return self.oodb.query("get_row", sql, bindings)

    def get_col(self, sql: str, bindings: Bindings = None) -> list[Any]:
        return self.oodb.query("get_col", sql, bindings)

    def get_cell(self, sql: str, bindings: Bindings = None) -> Any:
        return self.oodb.query("get_cell", sql, bindings)

    def get_assoc(self, sql: str, bindings: Bindings = None) -> dict[Any, Any]:
        return self.oodb.query("get_assoc", sql, bindings)

    # -- schema mode -----------------------------------------------------------

    def freeze(self, flag: bool | Iterable[str] = True) -> None:
        """``True`` freezes, ``False`` thaws, a list of types freezes just those."""
        self.synchronizer.freeze = FreezeState.from_flag(flag)
        logger.info("schema_mode_changed", freeze=repr(self.synchronizer.freeze))

    def is_frozen(self, type_name: str | None = None) -> bool:
        return self.synchronizer.freeze.is_frozen(type_name)

    def set_strict_typing(self, strict: bool) -> None:
        self.oodb.strict_type_names = strict

    def dependencies(self, dependencies: Mapping[str, Iterable[str]]) -> None:
        self.oodb.set_dependencies(dependencies)

    def inspect(self, type_name: str | None = None) -> list[str] | dict[str, str]:
        """Table names, or column name -> declared type of one table."""
        if type_name is None:
            return self.writer.get_tables()
        return {name: str(col_type) for name, col_type in self.writer.get_columns(type_name).items()}

    # -- transactions ----------------------------------------------------------

    def begin(self) -> bool:
        """Start a transaction; a no-op returning False while the schema is fluid."""
        if self.synchronizer.freeze.fluid:
            return False
        self.adapter.begin()
        return True

    def commit(self) -> bool:
        if self.synchronizer.freeze.fluid:
            return False
        self.adapter.commit()
        return True

    def rollback(self) -> bool:
        if self.synchronizer.freeze.fluid:
            return False
        self.adapter.rollback()
        return True

    @contextmanager
    def transaction(self) -> Generator[BeanStore, None, None]:
        """Run a block atomically in any mode; rolls back on exception."""
        with self.adapter.transaction():
            yield self
