"""Deep copies and exports of bean graphs.

A copy gets:

- every scalar property of the original, with id 0
- a copy of every bean in every own-list, recursively
- the same shared beans (references, not copies)
- the same parents, unless the parent was itself copied in this call

Lists are read from memory when the bean tracks them (loaded or stored) and
from the database otherwise; an untracked in-memory list is merged with the
stored members. A trail keyed by ``(type, id)`` ends recursion: meeting a
bean a second time yields the copy already made for it.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

import structlog

from beanstore.bean import OWN, Bean, fk_column, own_key, parse_list_key, shared_key
from beanstore.persistence.associations import link_pair, link_table

if TYPE_CHECKING:
    from beanstore.persistence.associations import AssociationManager
    from beanstore.persistence.oodb import OODB

logger = structlog.get_logger()

TrailKey = tuple[str, int | str]


class DuplicationTrail:
    """Beans already duplicated in one call, mapped to their copies.

    Unstored beans (id 0) are keyed by object identity.
    """

    def __init__(self) -> None:
        self._copies: dict[TrailKey, Bean] = {}

    @staticmethod
    def key(bean: Bean) -> TrailKey:
        return (bean.type, bean.id) if bean.id else (bean.type, f"new:{id(bean)}")

    def __contains__(self, bean: object) -> bool:
        return isinstance(bean, Bean) and self.key(bean) in self._copies

    def __len__(self) -> int:
        return len(self._copies)

    def get(self, bean: Bean) -> Bean | None:
        return self._copies.get(self.key(bean))

    def add(self, bean: Bean, copy: Bean) -> None:
        self._copies[self.key(bean)] = copy


class DuplicationManager:
    """Duplicates and exports bean graphs."""

    def __init__(self, oodb: OODB, associations: AssociationManager) -> None:
        self.oodb = oodb
        self.associations = associations

    def dup(
        self,
        bean: Bean,
        trail: DuplicationTrail | None = None,
        preserve_ids: bool = False,
        filters: Iterable[str] = (),
    ) -> Bean:
        """Deep-copy ``bean``; the copy is not stored.

        ``filters`` limits the own/shared list types that take part; other
        lists are left out of the copy. ``preserve_ids`` keeps the original
        ids on the copies.
        """
        trail = trail if trail is not None else DuplicationTrail()
        tables = self.oodb.writer.get_tables()
        return self._dup(bean, trail, preserve_ids, frozenset(filters), tables)

    def _dup(
        self,
        bean: Bean,
        trail: DuplicationTrail,
        preserve_ids: bool,
        filters: frozenset[str],
        tables: list[str],
    ) -> Bean:
        existing = trail.get(bean)
        if existing is not None:
            return existing

        copy = Bean(bean.type)
        trail.add(bean, copy)
        copy.import_row(bean.properties())
        copy.tainted = True

        for key, parent in bean.parents().items():
            copy[key] = trail.get(parent) or parent

        own_types, shared_types = self._list_types(bean, filters, tables)
        for type_name in own_types:
            children = self._members(bean, own_key(type_name), type_name, own=True)
            copy[own_key(type_name)] = [
                self._dup(child, trail, preserve_ids, filters, tables) for child in children
            ]
        for type_name in shared_types:
            copy[shared_key(type_name)] = list(
                self._members(bean, shared_key(type_name), type_name, own=False)
            )

        if preserve_ids:
            copy.id = bean.id
        return copy

    def _list_types(
        self, bean: Bean, filters: frozenset[str], tables: list[str]
    ) -> tuple[list[str], list[str]]:
        """Own and shared list types of ``bean``, from memory and the schema."""
        own: list[str] = []
        shared: list[str] = []
        for key in bean.lists():
            kind, type_name = parse_list_key(key)  # type: ignore[misc]
            (own if kind == OWN else shared).append(type_name)

        if bean.id:
            fk = fk_column(bean.type)
            for table in tables:
                if table == bean.type or table in own or table in shared:
                    continue
                link = link_table(bean.type, table)
                if link in tables and link_pair(link, self.oodb.writer.get_columns(link)):
                    shared.append(table)
                    continue
                columns = self.oodb.writer.get_columns(table)
                if fk in columns and link_pair(table, columns) is None:
                    own.append(table)

        if filters:
            own = [t for t in own if t in filters]
            shared = [t for t in shared if t in filters]
        return own, shared

    def _members(self, bean: Bean, key: str, type_name: str, *, own: bool) -> list[Bean]:
        """Members of one list as the next store would leave them.

        A tracked list (loaded or stored) is authoritative. An untracked one
        only adds to what is stored, so it is merged with the stored members;
        in-memory beans win over their stored rows.
        """
        in_memory = list(bean[key]) if bean.has_list(key) else []
        if not bean.id or bean.snapshot(key) is not None:
            return in_memory
        if own:
            has_fk = fk_column(bean.type) in self.oodb.writer.get_columns(type_name)
            stored = self.oodb.children(bean, type_name) if has_fk else []
        else:
            stored = self.associations.related(bean, type_name)
        loaded = {(m.type, m.id): m for m in in_memory if m.id}
        merged = [loaded.pop((m.type, m.id), m) for m in stored]
        merged.extend(m for m in in_memory if not m.id or (m.type, m.id) in loaded)
        return merged

    def export_all(
        self,
        beans: Bean | Iterable[Bean],
        parents: bool = False,
        filters: Iterable[str] = (),
    ) -> list[dict]:
        """Export beans as plain records.

        Includes own-lists recursively and shared beans' own columns (not
        their lists). With ``parents`` every exported bean also carries the
        bean each ``<name>_id`` column points to, one level up.
        """
        beans = [beans] if isinstance(beans, Bean) else list(beans)
        filters = tuple(filters)
        tables = self.oodb.writer.get_tables()
        records = []
        for bean in beans:
            copy = self._dup(bean, DuplicationTrail(), True, frozenset(filters), tables)
            if parents:
                self._attach_parents(copy, tables, set())
            records.append(copy.export(parents=parents, filters=filters))
        return records

    def _attach_parents(self, bean: Bean, tables: list[str], seen: set[int]) -> None:
        if id(bean) in seen:
            return
        seen.add(id(bean))
        for key, value in bean.properties().items():
            name = key[:-3]
            if not key.endswith("_id") or not value or name in bean.parents() or name not in tables:
                continue
            parent = self.oodb.parent(bean, name)
            if parent is not None:
                logger.debug("export_parent_loaded", type=name, id=parent.id)
        for key, members in bean.lists(OWN).items():
            for member in members:
                self._attach_parents(member, tables, seen)
