"""Many-to-many links between beans.

Two types share one link table named after the sorted pair, so
``link(book, tag)`` and ``link(tag, book)`` write to ``book_tag``. A link row
holds ``<type>_id`` for both sides; linking a type to itself uses
``<type>_id`` and ``<type>2_id`` and is queried in both orientations.

Link rows are stored as beans of the link type, so the synchronizer adapts
the link table the same way it adapts any other table, including columns
for extra properties carried on the link.

Batch lookups group source ids per type: ``related()`` over any number of
beans costs one query per distinct source type.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from beanstore._internal.db import GLUE_AND, Bindings, bind, glue, has_order_by, slots
from beanstore.bean import Bean, fk_column
from beanstore.core.errors import ValidationError
from beanstore.schema.writer import check_identifier

if TYPE_CHECKING:
    from beanstore.persistence.oodb import OODB

logger = structlog.get_logger()


def link_table(type_a: str, type_b: str) -> str:
    """Link table name for an unordered pair of types."""
    return "_".join(sorted((type_a, type_b)))


@dataclass(frozen=True)
class LinkColumns:
    """Foreign key columns of a link table as seen from one side."""

    table: str
    source: str
    target: str


def link_columns(source_type: str, target_type: str) -> LinkColumns:
    if source_type == target_type:
        return LinkColumns(
            link_table(source_type, target_type),
            fk_column(source_type),
            fk_column(f"{target_type}2"),
        )
    return LinkColumns(
        link_table(source_type, target_type),
        fk_column(source_type),
        fk_column(target_type),
    )


def link_pair(table: str, columns: Iterable[str]) -> tuple[str, str] | None:
    """The two types ``table`` links, or None if it is not a link table.

    A link table is named after its sorted pair and carries both foreign
    keys, so ``order_item`` holding only ``order_id`` is an ordinary type.
    """
    present = set(columns)
    parts = table.split("_")
    for cut in range(1, len(parts)):
        type_a, type_b = "_".join(parts[:cut]), "_".join(parts[cut:])
        if link_table(type_a, type_b) != table:
            continue
        cols = link_columns(type_a, type_b)
        if cols.source in present and cols.target in present:
            return type_a, type_b
    return None


def _as_list(beans: Bean | Iterable[Bean]) -> list[Bean]:
    return [beans] if isinstance(beans, Bean) else list(beans)


class AssociationManager:
    """Creates, removes and queries many-to-many links."""

    def __init__(self, oodb: OODB, *, unique_links: bool = False) -> None:
        self.oodb = oodb
        self.unique_links = unique_links
        oodb.set_association_manager(self)

    def _q(self, identifier: str) -> str:
        return self.oodb.adapter.quote(check_identifier(identifier))

    # -- link / unlink -------------------------------------------------------

    def link(
        self,
        beans_a: Bean | Iterable[Bean],
        beans_b: Bean | Iterable[Bean],
        extra: Bean | Mapping[str, Any] | Any = None,
    ) -> list[int]:
        """Link every bean on one side to every bean on the other.

        Unstored beans are stored first. ``extra`` (a bean, a mapping, or a
        scalar stored as ``extra``) adds payload columns to the link row.
        Returns the link row ids.
        """
        payload = self._payload(extra)
        ids: list[int] = []
        for bean_a in _as_list(beans_a):
            for bean_b in _as_list(beans_b):
                ids.append(self._link_pair(bean_a, bean_b, payload))
        return ids

    @staticmethod
    def _payload(extra: Bean | Mapping[str, Any] | Any) -> dict[str, Any]:
        if extra is None:
            return {}
        if isinstance(extra, Bean):
            return extra.properties()
        if isinstance(extra, Mapping):
            return dict(extra)
        return {"extra": extra}

    def _link_pair(self, bean_a: Bean, bean_b: Bean, payload: dict[str, Any]) -> int:
        for bean in (bean_a, bean_b):
            if bean.id == 0 or bean.tainted:
                self.oodb.store(bean)

        if self.unique_links:
            existing = self._link_rows(bean_a, bean_b)
            if existing:
                return int(existing[0]["id"])

        cols = link_columns(bean_a.type, bean_b.type)
        link = Bean(cols.table)
        link.import_data(payload)
        link[cols.source] = bean_a.id
        link[cols.target] = bean_b.id
        link_id = self.oodb.store(link)

        if self.unique_links and not self.oodb.freeze.is_frozen(cols.table):
            self.oodb.writer.add_index(cols.table, sorted((cols.source, cols.target)), unique=True)

        logger.debug(
            "beans_linked",
            table=cols.table,
            source=(bean_a.type, bean_a.id),
            target=(bean_b.type, bean_b.id),
        )
        return link_id

    def _pair_condition(self, bean_a: Bean, bean_b: Bean) -> tuple[str, str, dict[str, Any]]:
        cols = link_columns(bean_a.type, bean_b.type)
        src, tgt = self._q(cols.source), self._q(cols.target)
        params = {"a": bean_a.id, "b": bean_b.id}
        if bean_a.type == bean_b.type:
            where = f"({src} = :a AND {tgt} = :b) OR ({src} = :b AND {tgt} = :a)"
        else:
            where = f"{src} = :a AND {tgt} = :b"
        return cols.table, where, params

    def _link_rows(self, bean_a: Bean, bean_b: Bean) -> list[dict[str, Any]]:
        if not bean_a.id or not bean_b.id:
            return []
        table, where, params = self._pair_condition(bean_a, bean_b)
        return self.oodb.query("get_all", f"SELECT * FROM {self._q(table)} WHERE {where}", params)

    def unlink(
        self,
        beans_a: Bean | Iterable[Bean],
        beans_b: Bean | Iterable[Bean],
        fast: bool = False,
    ) -> int:
        """Remove the link rows between each pair; returns rows removed.

        ``fast`` issues a single DELETE per pair. Otherwise the link rows are
        looked up first (nothing happens if there are none) and trashed as
        beans.
        """
        removed = 0
        for bean_a in _as_list(beans_a):
            for bean_b in _as_list(beans_b):
                removed += self._unlink_pair(bean_a, bean_b, fast)
        return removed

    def _unlink_pair(self, bean_a: Bean, bean_b: Bean, fast: bool) -> int:
        if not bean_a.id or not bean_b.id:
            return 0
        table, where, params = self._pair_condition(bean_a, bean_b)
        if fast:
            count = int(self.oodb.query("exec", f"DELETE FROM {self._q(table)} WHERE {where}", params))
        else:
            rows = self._link_rows(bean_a, bean_b)
            for link in self.oodb.convert_to_beans(table, rows):
                self.oodb.trash(link)
            count = len(rows)
        if count:
            logger.debug(
                "beans_unlinked",
                table=table,
                source=(bean_a.type, bean_a.id),
                target=(bean_b.type, bean_b.id),
                rows=count,
            )
        return count

    def clear_relations(self, bean: Bean, type_name: str) -> int:
        """Remove every link between ``bean`` and beans of ``type_name``."""
        if not bean.id:
            return 0
        cols = link_columns(bean.type, type_name)
        src, tgt = self._q(cols.source), self._q(cols.target)
        where = f"{src} = :id OR {tgt} = :id" if bean.type == type_name else f"{src} = :id"
        count = int(
            self.oodb.query(
                "exec", f"DELETE FROM {self._q(cols.table)} WHERE {where}", {"id": bean.id}
            )
        )
        logger.debug("relations_cleared", table=cols.table, id=bean.id, rows=count)
        return count

    # -- queries -------------------------------------------------------------

    def are_related(self, bean_a: Bean, bean_b: Bean) -> bool:
        return bool(self._link_rows(bean_a, bean_b))

    def _related_sql(
        self,
        source_type: str,
        ids: list[int],
        type_name: str,
        select: str,
    ) -> tuple[str, dict[str, Any]]:
        cols = link_columns(source_type, type_name)
        target, link = self._q(type_name), self._q(cols.table)
        src, tgt = self._q(cols.source), self._q(cols.target)
        placeholders, params = slots(ids, "src")
        if source_type == type_name:
            join = (
                f"({link}.{tgt} = {target}.id AND {link}.{src} IN ({placeholders})) OR "
                f"({link}.{src} = {target}.id AND {link}.{tgt} IN ({placeholders}))"
            )
            sql = f"SELECT {select} FROM {target} INNER JOIN {link} ON {join} WHERE 1 = 1"
        else:
            sql = (
                f"SELECT {select} FROM {target} INNER JOIN {link} ON {link}.{tgt} = {target}.id "
                f"WHERE {link}.{src} IN ({placeholders})"
            )
        return sql, params

    def _filtered(
        self, sql: str, params: dict[str, Any], extra_sql: str | None, bindings: Bindings
    ) -> tuple[str, dict[str, Any]]:
        filter_sql, filter_params = bind(glue(extra_sql, GLUE_AND), bindings)
        overlap = set(filter_params) & set(params)
        if overlap:
            raise ValidationError.invalid_value("bindings", sorted(overlap), "reserved parameter names")
        return sql + filter_sql, {**params, **filter_params}

    def related(
        self,
        beans: Bean | Iterable[Bean],
        type_name: str,
        sql: str | None = None,
        bindings: Bindings = None,
    ) -> list[Bean]:
        """Beans of ``type_name`` linked to ``beans``.

        ``sql`` is glued after the join condition (``"title = ?"``,
        ``"ORDER BY title"``). Each related bean appears once. One query is
        issued per distinct source type.
        """
        check_identifier(type_name)
        groups: dict[str, list[int]] = {}
        for bean in _as_list(beans):
            if bean.id:
                groups.setdefault(bean.type, []).append(bean.id)

        result: list[Bean] = []
        seen: set[int] = set()
        for source_type, ids in groups.items():
            base, params = self._related_sql(source_type, ids, type_name, f"{self._q(type_name)}.*")
            query, all_params = self._filtered(base, params, sql, bindings)
            for row in self.oodb.query("get_all", query, all_params):
                row_id = int(row["id"])
                if row_id in seen:
                    continue
                seen.add(row_id)
                result.append(Bean(type_name).import_row(row))
        return result

    def related_count(
        self,
        bean: Bean,
        type_name: str,
        sql: str | None = None,
        bindings: Bindings = None,
    ) -> int:
        if not bean.id:
            return 0
        check_identifier(type_name)
        base, params = self._related_sql(
            bean.type, [bean.id], type_name, f"COUNT(DISTINCT {self._q(type_name)}.id)"
        )
        query, all_params = self._filtered(base, params, sql, bindings)
        return int(self.oodb.query("get_cell", query, all_params) or 0)

    def related_one(
        self,
        bean: Bean,
        type_name: str,
        sql: str | None = None,
        bindings: Bindings = None,
    ) -> Bean | None:
        beans = self.related(bean, type_name, sql, bindings)
        return beans[0] if beans else None

    def related_last(
        self,
        bean: Bean,
        type_name: str,
        sql: str | None = None,
        bindings: Bindings = None,
    ) -> Bean | None:
        """Last related bean. ``sql`` must contain an ORDER BY."""
        if not has_order_by(sql):
            raise ValidationError.ambiguous_order("related_last")
        beans = self.related(bean, type_name, sql, bindings)
        return beans[-1] if beans else None
