"""Bean: a typed record with a narrow set of value variants.

A bean maps property names to one of:

- a scalar (None, bool, int, float, str, bytes), stored in a column
- another Bean, a parent reference stored as ``<name>_id``
- a list of beans under ``own<Type>`` (owned children) or
  ``shared<Type>`` (many-to-many partners)

Lists remember which members they held when they were last loaded or
stored (their snapshot). Only a list with a snapshot can signal removals;
a list assigned from scratch is purely additive.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from typing import Any, Union

from beanstore.core.errors import ValidationError

OWN = "own"
SHARED = "shared"

_TYPE_RE = re.compile(r"^[A-Za-z0-9_]+$")
_PROPERTY_RE = re.compile(r"^[a-z0-9_]+$")
_LIST_KEY_RE = re.compile(r"^(own|shared)([A-Z][A-Za-z0-9_]*)$")

Scalar = Union[None, bool, int, float, str, bytes]
_SCALAR_TYPES = (bool, int, float, str, bytes, bytearray)


def own_key(type_name: str) -> str:
    """``page`` -> ``ownPage``."""
    return OWN + type_name[:1].upper() + type_name[1:]


def shared_key(type_name: str) -> str:
    """``tag`` -> ``sharedTag``."""
    return SHARED + type_name[:1].upper() + type_name[1:]


def parse_list_key(key: str) -> tuple[str, str] | None:
    """``ownPage`` -> ``("own", "page")``; None for non-list keys."""
    match = _LIST_KEY_RE.match(key)
    if not match:
        return None
    kind, rest = match.groups()
    return kind, rest[:1].lower() + rest[1:]


def fk_column(name: str) -> str:
    return f"{name}_id"


class Bean:
    """A typed record.

    ``id == 0`` means the bean has never been stored.
    """

    __slots__ = ("type", "id", "tainted", "meta", "_props", "_parents", "_lists", "_snapshots")

    def __init__(self, type_name: str, id: int = 0) -> None:
        if not _TYPE_RE.match(type_name or ""):
            raise ValidationError.invalid_type(type_name)
        self.type = type_name
        self.id = int(id)
        self.tainted = False
        self.meta: dict[str, Any] = {}
        self._props: dict[str, Scalar] = {}
        self._parents: dict[str, Bean] = {}
        self._lists: dict[str, list[Bean]] = {}
        self._snapshots: dict[str, list[Bean]] = {}

    # -- mapping protocol --------------------------------------------------

    def __getitem__(self, key: str) -> Any:
        if key == "id":
            return self.id
        if key in self._props:
            return self._props[key]
        if key in self._parents:
            return self._parents[key]
        if parse_list_key(key):
            return self._lists.setdefault(key, [])
        raise KeyError(key)

    def __setitem__(self, key: str, value: Any) -> None:
        if key == "id":
            self.id = int(value or 0)
            return
        if parse_list_key(key):
            self._lists[key] = self._check_list(key, value)
        elif not _PROPERTY_RE.match(key):
            raise ValidationError.invalid_property(self.type, key)
        elif isinstance(value, Bean):
            self._props.pop(key, None)
            self._parents[key] = value
        elif value is None or isinstance(value, _SCALAR_TYPES):
            self._parents.pop(key, None)
            self._props[key] = bytes(value) if isinstance(value, bytearray) else value
        else:
            raise ValidationError.invalid_value(key, value, f"unsupported type {type(value).__name__}")
        self.tainted = True

    def __delitem__(self, key: str) -> None:
        for store in (self._props, self._parents, self._lists):
            if key in store:
                del store[key]
                self.tainted = True
                return
        raise KeyError(key)

    def __contains__(self, key: object) -> bool:
        return key in self._props or key in self._parents or key in self._lists

    def __iter__(self) -> Iterator[str]:
        yield from self._props
        yield from self._parents
        yield from self._lists

    def get(self, key: str, default: Any = None) -> Any:
        if key == "id":
            return self.id
        return self[key] if key in self else default

    def _check_list(self, key: str, value: Any) -> list[Bean]:
        if not isinstance(value, (list, tuple)):
            raise ValidationError.invalid_value(key, value, "expected a list of beans")
        for member in value:
            if not isinstance(member, Bean):
                raise ValidationError.invalid_value(key, member, "list members must be beans")
        return list(value)

    # -- views -------------------------------------------------------------

    def properties(self) -> dict[str, Scalar]:
        """Scalar properties, the columns of this bean's own row."""
        return dict(self._props)

    def parents(self) -> dict[str, Bean]:
        return dict(self._parents)

    def lists(self, kind: str | None = None) -> dict[str, list[Bean]]:
        """List properties, optionally only ``own`` or ``shared`` ones."""
        if kind is None:
            return dict(self._lists)
        return {k: v for k, v in self._lists.items() if parse_list_key(k)[0] == kind}  # type: ignore[index]

    def has_list(self, key: str) -> bool:
        return key in self._lists

    # -- snapshots ---------------------------------------------------------

    def snapshot(self, key: str) -> list[Bean] | None:
        return self._snapshots.get(key)

    def set_list(self, key: str, beans: list[Bean]) -> None:
        """Install a loaded list and remember its members for removal tracking."""
        if not parse_list_key(key):
            raise ValidationError.invalid_property(self.type, key)
        self._lists[key] = list(beans)
        self._snapshots[key] = list(beans)

    def take_snapshots(self) -> None:
        for key, beans in self._lists.items():
            self._snapshots[key] = list(beans)

    def clear_snapshot(self, key: str) -> None:
        self._snapshots.pop(key, None)

    # -- import / export ---------------------------------------------------

    def import_row(self, row: Mapping[str, Any]) -> Bean:
        """Fill from a database row; the bean is clean afterwards."""
        for key, value in row.items():
            if key == "id":
                self.id = int(value) if value is not None else 0
            else:
                self._props[key] = value
        self.tainted = False
        return self

    def import_data(self, data: Mapping[str, Any]) -> Bean:
        """Copy scalar values, validating each one."""
        for key, value in data.items():
            self[key] = value
        return self

    def export(
        self,
        *,
        parents: bool = False,
        filters: tuple[str, ...] | list[str] = (),
        _seen: set[int] | None = None,
    ) -> dict[str, Any]:
        """Plain dict of this bean and the lists it currently holds.

        A bean reached twice in one export (a cycle) is written as ``{"id": ...}``.
        """
        seen = _seen if _seen is not None else set()
        if id(self) in seen:
            return {"id": self.id}
        seen.add(id(self))

        data: dict[str, Any] = {"id": self.id, **self._props}
        if parents:
            for key, parent in self._parents.items():
                data[key] = parent.export(filters=filters, _seen=seen)
        for key, beans in self._lists.items():
            _kind, type_name = parse_list_key(key)  # type: ignore[misc]
            if filters and type_name not in filters:
                continue
            data[key] = [bean.export(parents=parents, filters=filters, _seen=seen) for bean in beans]
        return data

    def __repr__(self) -> str:
        return f"Bean({self.type!r}, id={self.id})"
