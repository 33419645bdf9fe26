"""Bean persistence engine: dispense, store, load, trash, count and wipe.

Storing a bean cascades through its graph:

1. Parent references are stored first so their ids can fill ``<name>_id``.
2. The synchronizer adapts (or, when frozen, guards) the schema.
3. The row is inserted (id == 0) or updated (id != 0).
4. Every own-list child gets ``<type>_id`` set and is stored; children
   removed since the list was loaded are trashed when the dependency map
   names this type as one of their parents, otherwise detached.
5. Every shared list is reconciled with the link table by the
   association manager.

Nothing here manages transactions. A failure part-way through a cascade
leaves the writes made so far; wrap calls in a transaction for atomicity.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import update

from beanstore._internal.db import Bindings, glue, slots
from beanstore.bean import OWN, SHARED, Bean, fk_column, own_key, parse_list_key, shared_key
from beanstore.core.errors import BackendError, ValidationError
from beanstore.persistence.associations import link_pair
from beanstore.schema.writer import check_identifier

if TYPE_CHECKING:
    from beanstore._internal.db import Adapter
    from beanstore.persistence.associations import AssociationManager
    from beanstore.schema.sync import FreezeState, SchemaSynchronizer
    from beanstore.schema.writer import SchemaWriter

logger = structlog.get_logger()

_STRICT_TYPE_RE = re.compile(r"^[a-z0-9]+$")
_LOOSE_TYPE_RE = re.compile(r"^[a-z0-9_]+$")

# Empty results for reads that hit a missing table in a fluid context
_EMPTY_RESULTS: dict[str, Any] = {
    "exec": 0,
    "get_all": [],
    "get_row": None,
    "get_col": [],
    "get_cell": None,
    "get_assoc": {},
}


class OODB:
    """The object database: maps beans onto tables."""

    def __init__(
        self,
        adapter: Adapter,
        writer: SchemaWriter,
        synchronizer: SchemaSynchronizer,
        *,
        dependencies: Mapping[str, Iterable[str]] | None = None,
        strict_type_names: bool = True,
    ) -> None:
        self.adapter = adapter
        self.writer = writer
        self.sync = synchronizer
        self.strict_type_names = strict_type_names
        self.dependencies: dict[str, frozenset[str]] = {}
        self.set_dependencies(dependencies or {})
        self.associations: AssociationManager | None = None
        self._storing: set[int] = set()

    @property
    def freeze(self) -> FreezeState:
        return self.sync.freeze

    def set_association_manager(self, manager: AssociationManager) -> None:
        self.associations = manager

    def set_dependencies(self, dependencies: Mapping[str, Iterable[str]]) -> None:
        """Dependent type -> parent types whose own-lists it cannot outlive."""
        self.dependencies = {child: frozenset(parents) for child, parents in dependencies.items()}

    def is_dependent(self, child_type: str, parent_type: str) -> bool:
        return parent_type in self.dependencies.get(child_type, frozenset())

    def _assoc(self) -> AssociationManager:
        if self.associations is None:
            raise RuntimeError("OODB has no association manager")
        return self.associations

    # -- reads tolerant of missing schema ---------------------------------

    def query(self, method: str, sql: str, bindings: Bindings = None) -> Any:
        """Run an adapter read; in non-frozen contexts missing schema means empty."""
        try:
            return getattr(self.adapter, method)(sql, bindings)
        except BackendError as e:
            if e.missing_schema and not self.freeze.fully_frozen:
                return _EMPTY_RESULTS[method]
            raise

    def _q(self, identifier: str) -> str:
        return self.adapter.quote(check_identifier(identifier))

    # -- dispense ----------------------------------------------------------

    def check_type(self, type_name: str) -> str:
        pattern = _STRICT_TYPE_RE if self.strict_type_names else _LOOSE_TYPE_RE
        if not isinstance(type_name, str) or not pattern.match(type_name):
            raise ValidationError.invalid_type(str(type_name))
        return type_name

    def dispense(self, type_name: str, num: int = 1) -> Bean | list[Bean]:
        """New bean(s) with id 0. A list is returned when ``num > 1``."""
        self.check_type(type_name)
        if num < 1:
            raise ValueError(f"num must be >= 1, got {num}")
        beans = [Bean(type_name) for _ in range(num)]
        return beans[0] if num == 1 else beans

    def _check(self, bean: Bean) -> None:
        check_identifier(bean.type)
        for key in bean.properties():
            check_identifier(key, owner=bean.type)

    # -- store -------------------------------------------------------------

    def store(self, bean: Bean) -> int:
        """Write the bean and its reachable graph; returns its primary key."""
        marker = id(bean)
        if marker in self._storing:
            return bean.id
        self._storing.add(marker)
        try:
            self._check(bean)
            was_new = bean.id == 0
            self._store_parents(bean)
            self._store_row(bean)
            self._store_own_lists(bean)
            self._store_shared_lists(bean, was_new)
        finally:
            self._storing.discard(marker)
        bean.tainted = False
        bean.take_snapshots()
        return bean.id

    def _store_parents(self, bean: Bean) -> None:
        for key, parent in bean.parents().items():
            if parent.id == 0 or parent.tainted:
                self.store(parent)
            bean[fk_column(key)] = parent.id or None

    def _store_row(self, bean: Bean) -> None:
        props = bean.properties()
        self.sync.ensure_compatible(bean.type, props)
        table = self.writer.table_for(bean.type, list(props))
        if bean.id == 0:
            bean.id = self.adapter.insert(table, props)
            logger.debug("bean_inserted", type=bean.type, id=bean.id)
        elif props:
            result = self.adapter.execute(
                update(table).where(table.c.id == bean.id).values(**props)
            )
            if result.rowcount == 0:
                logger.warning("bean_update_missed", type=bean.type, id=bean.id)
            else:
                logger.debug("bean_updated", type=bean.type, id=bean.id)

    def _check_members(self, key: str, expected: str, beans: list[Bean]) -> None:
        for member in beans:
            if member.type != expected:
                raise ValidationError.invalid_value(
                    key, member, f"expected beans of type {expected!r}, got {member.type!r}"
                )

    def _store_own_lists(self, bean: Bean) -> None:
        fk = fk_column(bean.type)
        for key, children in bean.lists(OWN).items():
            _kind, child_type = parse_list_key(key)  # type: ignore[misc]
            self._check_members(key, child_type, children)
            for child in children:
                if child.id == 0 or child.tainted or child.get(fk) != bean.id:
                    child[fk] = bean.id
                    self.store(child)

            snapshot = bean.snapshot(key)
            if snapshot is None:
                continue
            current = {child.id for child in children if child.id}
            for removed in snapshot:
                if removed.id and removed.id not in current:
                    self._release_child(bean, removed, fk)

    def _release_child(self, parent: Bean, child: Bean, fk: str) -> None:
        if self.is_dependent(child.type, parent.type):
            logger.debug("dependent_removed", type=child.type, id=child.id, parent=parent.type)
            self.trash(child)
        else:
            child[fk] = None
            self.store(child)

    def _store_shared_lists(self, bean: Bean, was_new: bool) -> None:
        assoc = self._assoc()
        for key, partners in bean.lists(SHARED).items():
            _kind, other_type = parse_list_key(key)  # type: ignore[misc]
            self._check_members(key, other_type, partners)
            snapshot = bean.snapshot(key)
            known = {p.id for p in snapshot or [] if p.id}
            current: set[int] = set()
            for partner in partners:
                linked = partner.id in known or (
                    snapshot is None
                    and not was_new
                    and partner.id != 0
                    and assoc.are_related(bean, partner)
                )
                if linked:
                    if partner.tainted:
                        self.store(partner)
                else:
                    assoc.link(bean, partner)
                current.add(partner.id)

            if snapshot is None:
                continue
            for removed in snapshot:
                if removed.id and removed.id not in current:
                    assoc.unlink(bean, removed)

    def store_all(self, beans: Iterable[Bean]) -> list[int]:
        return [self.store(bean) for bean in beans]

    # -- load --------------------------------------------------------------

    def load(self, type_name: str, id: int | None) -> Bean:
        """Load a bean; a missing row yields a fresh bean with id 0."""
        bean = Bean(check_identifier(type_name))
        if not id:
            return bean
        row = self.query(
            "get_row", f"SELECT * FROM {self._q(type_name)} WHERE id = :id", {"id": int(id)}
        )
        if row is None:
            return bean
        return bean.import_row(row)

    def batch(self, type_name: str, ids: Iterable[int]) -> list[Bean]:
        """Load many beans in one query, keeping the order of ``ids``."""
        wanted = [int(i) for i in ids]
        if not wanted:
            return []
        placeholders, params = slots(wanted, "id")
        rows = self.query(
            "get_all",
            f"SELECT * FROM {self._q(type_name)} WHERE id IN ({placeholders})",
            params,
        )
        by_id = {int(row["id"]): row for row in rows}
        return [
            Bean(type_name).import_row(by_id[i]) if i in by_id else Bean(type_name)
            for i in wanted
        ]

    def convert_to_beans(self, type_name: str, rows: Iterable[Mapping[str, Any]]) -> list[Bean]:
        check_identifier(type_name)
        return [Bean(type_name).import_row(row) for row in rows]

    def own(self, bean: Bean, type_name: str) -> list[Bean]:
        """Load the own-list ``own<Type>`` of ``bean`` and start tracking it."""
        bean.set_list(own_key(type_name), self.children(bean, type_name))
        return bean[own_key(type_name)]

    def children(self, bean: Bean, type_name: str) -> list[Bean]:
        """Stored beans of ``type_name`` owned by ``bean``; ``bean`` is left as is."""
        if not bean.id:
            return []
        rows = self.query(
            "get_all",
            f"SELECT * FROM {self._q(type_name)} "
            f"WHERE {self._q(fk_column(bean.type))} = :id ORDER BY id",
            {"id": bean.id},
        )
        return self.convert_to_beans(type_name, rows)

    def shared(self, bean: Bean, type_name: str) -> list[Bean]:
        """Load the shared list ``shared<Type>`` of ``bean`` and start tracking it."""
        partners = self._assoc().related(bean, type_name) if bean.id else []
        bean.set_list(shared_key(type_name), partners)
        return bean[shared_key(type_name)]

    def parent(self, bean: Bean, name: str, type_name: str | None = None) -> Bean | None:
        """Load the bean referenced by ``<name>_id``; ``type_name`` for aliases."""
        parent_id = bean.get(fk_column(name))
        if not parent_id:
            return None
        parent = self.load(type_name or name, parent_id)
        if parent.id == 0:
            return None
        tainted = bean.tainted
        bean[name] = parent
        bean.tainted = tainted
        return parent

    # -- trash -------------------------------------------------------------

    def trash(self, bean: Bean) -> None:
        """Delete the row; dependents are trashed, other children detached.

        Link rows are left alone.
        """
        self._check(bean)
        if bean.id == 0:
            return
        self._cascade(bean)
        self.query("exec", f"DELETE FROM {self._q(bean.type)} WHERE id = :id", {"id": bean.id})
        logger.info("bean_trashed", type=bean.type, id=bean.id)
        bean.id = 0

    def _cascade(self, bean: Bean) -> None:
        fk = fk_column(bean.type)
        for table in self.writer.get_tables():
            if table == bean.type:
                continue
            columns = self.writer.get_columns(table)
            if fk not in columns or link_pair(table, columns) is not None:
                continue
            if self.is_dependent(table, bean.type):
                rows = self.query(
                    "get_all",
                    f"SELECT * FROM {self._q(table)} WHERE {self._q(fk)} = :id",
                    {"id": bean.id},
                )
                for child in self.convert_to_beans(table, rows):
                    self.trash(child)
            else:
                self.query(
                    "exec",
                    f"UPDATE {self._q(table)} SET {self._q(fk)} = NULL WHERE {self._q(fk)} = :id",
                    {"id": bean.id},
                )

    def trash_all(self, beans: Iterable[Bean]) -> None:
        for bean in beans:
            self.trash(bean)

    # -- whole-table operations ---------------------------------------------

    def count(self, type_name: str, sql: str | None = None, bindings: Bindings = None) -> int:
        """Number of rows of a type; 0 when the table does not exist yet."""
        value = self.query(
            "get_cell", f"SELECT COUNT(*) FROM {self._q(type_name)}{glue(sql)}", bindings
        )
        return int(value or 0)

    def wipe(self, type_name: str) -> bool:
        """Delete every row of a type. Refused (False) when the type is frozen."""
        if self.freeze.is_frozen(type_name):
            return False
        try:
            self.writer.wipe(type_name)
        except BackendError as e:
            if e.missing_schema:
                return False
            raise
        logger.info("type_wiped", type=type_name)
        return True

    def nuke(self) -> bool:
        """Drop every table. Fluid mode only."""
        if not self.freeze.fluid:
            return False
        self.writer.drop_all()
        logger.warning("database_nuked")
        return True
