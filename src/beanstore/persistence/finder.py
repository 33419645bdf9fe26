"""Finders: load beans by SQL snippet.

Snippets are glued after ``SELECT * FROM <type>``. A bare condition gets a
WHERE; ``ORDER BY``, ``LIMIT`` and similar fragments are appended as-is.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from beanstore._internal.db import Bindings, bind, glue, has_limit, has_order_by
from beanstore.bean import Bean
from beanstore.core.errors import ValidationError

if TYPE_CHECKING:
    from beanstore.persistence.duplication import DuplicationManager
    from beanstore.persistence.oodb import OODB


class Finder:
    def __init__(self, oodb: OODB, duplication: DuplicationManager) -> None:
        self.oodb = oodb
        self.duplication = duplication

    def _select(self, type_name: str, tail: str, bindings: Bindings) -> list[Bean]:
        self.oodb.check_type(type_name)
        sql, params = bind(f"SELECT * FROM {self.oodb._q(type_name)}{tail}", bindings)
        rows = self.oodb.query("get_all", sql, params)
        return self.oodb.convert_to_beans(type_name, rows)

    def find(self, type_name: str, sql: str | None = None, bindings: Bindings = None) -> list[Bean]:
        """Beans of ``type_name`` matching ``sql`` (``"title = ?"``)."""
        return self._select(type_name, glue(sql), bindings)

    def find_all(self, type_name: str, sql: str | None = None, bindings: Bindings = None) -> list[Bean]:
        """Like ``find`` but ``sql`` is appended verbatim (``"WHERE a = ? LIMIT 5"``)."""
        tail = f" {sql.strip()}" if sql and sql.strip() else ""
        return self._select(type_name, tail, bindings)

    def find_one(self, type_name: str, sql: str | None = None, bindings: Bindings = None) -> Bean | None:
        tail = glue(sql)
        if not has_limit(tail):
            tail += " LIMIT 1"
        beans = self._select(type_name, tail, bindings)
        return beans[0] if beans else None

    def find_last(self, type_name: str, sql: str | None = None, bindings: Bindings = None) -> Bean | None:
        """Last match under an explicit ordering; ``sql`` must contain ORDER BY."""
        if not has_order_by(sql):
            raise ValidationError.ambiguous_order("find_last")
        beans = self.find(type_name, sql, bindings)
        return beans[-1] if beans else None

    def find_or_dispense(
        self, type_name: str, sql: str | None = None, bindings: Bindings = None
    ) -> list[Bean]:
        """Matches, or a single fresh bean when nothing matches."""
        beans = self.find(type_name, sql, bindings)
        if beans:
            return beans
        return [self.oodb.dispense(type_name)]  # type: ignore[list-item]

    def find_and_export(
        self, type_name: str, sql: str | None = None, bindings: Bindings = None
    ) -> list[dict[str, Any]]:
        return self.duplication.export_all(self.find(type_name, sql, bindings))
