"""SQL snippet helpers shared by the adapter, finders and association queries.

Callers pass SQL fragments that are glued after a generated WHERE clause
(``" title = ? ORDER BY id"``). Bindings may be a sequence for ``?`` markers
or a mapping for ``:name`` markers.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

Bindings = Sequence[Any] | Mapping[str, Any] | None

GLUE_WHERE = "where"
GLUE_AND = "and"

# Fragments starting with one of these are not conditions
_NON_CONDITION_RE = re.compile(r"^\s*(ORDER\s+BY|GROUP\s+BY|LIMIT|HAVING|OFFSET)\b", re.IGNORECASE)
_LEADING_WHERE_RE = re.compile(r"^\s*WHERE\b", re.IGNORECASE)
_LEADING_CONJ_RE = re.compile(r"^\s*(AND|OR)\b", re.IGNORECASE)
_ORDER_BY_RE = re.compile(r"\bORDER\s+BY\b", re.IGNORECASE)
_LIMIT_RE = re.compile(r"\bLIMIT\s+(\d|\?|:)", re.IGNORECASE)
_LITERAL_RE = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"")


def bind(sql: str, bindings: Bindings = None) -> tuple[str, dict[str, Any]]:
    """Normalize bindings into named SQLAlchemy parameters.

    Positional ``?`` markers outside quoted literals become ``:_p0``, ``:_p1``...
    """
    if bindings is None:
        return sql, {}
    if isinstance(bindings, Mapping):
        return sql, dict(bindings)

    values = list(bindings)
    out: list[str] = []
    params: dict[str, Any] = {}
    quote: str | None = None
    for ch in sql:
        if quote:
            if ch == quote:
                quote = None
            out.append(ch)
        elif ch in ("'", '"'):
            quote = ch
            out.append(ch)
        elif ch == "?":
            index = len(params)
            if index >= len(values):
                raise ValueError(f"Not enough bindings for SQL: {sql}")
            name = f"_p{index}"
            params[name] = values[index]
            out.append(f":{name}")
        else:
            out.append(ch)
    if len(params) != len(values):
        raise ValueError(f"Too many bindings for SQL: {sql}")
    return "".join(out), params


def glue(sql: str | None, mode: str = GLUE_WHERE) -> str:
    """Glue a user fragment onto a generated query.

    With GLUE_WHERE the fragment follows a table reference, with GLUE_AND it
    follows an existing WHERE clause.
    """
    if not sql or not sql.strip():
        return ""
    fragment = sql.strip()
    if _NON_CONDITION_RE.match(fragment):
        return f" {fragment}"
    if mode == GLUE_WHERE:
        if _LEADING_WHERE_RE.match(fragment):
            return f" {fragment}"
        if _LEADING_CONJ_RE.match(fragment):
            return " WHERE " + _LEADING_CONJ_RE.sub("", fragment, count=1).strip()
        return f" WHERE {fragment}"
    if _LEADING_WHERE_RE.match(fragment):
        return " AND " + _LEADING_WHERE_RE.sub("", fragment, count=1).strip()
    if _LEADING_CONJ_RE.match(fragment):
        return f" {fragment}"
    return f" AND {fragment}"


def _without_literals(sql: str) -> str:
    return _LITERAL_RE.sub("''", sql)


def has_order_by(sql: str | None) -> bool:
    return bool(sql) and _ORDER_BY_RE.search(_without_literals(sql or "")) is not None


def has_limit(sql: str | None) -> bool:
    """True when ``sql`` has a LIMIT clause outside quoted literals."""
    return bool(sql) and _LIMIT_RE.search(_without_literals(sql or "")) is not None


def slots(values: Sequence[Any], prefix: str) -> tuple[str, dict[str, Any]]:
    """Generate ``:prefix0, :prefix1`` placeholders for an IN clause."""
    names = [f"{prefix}{i}" for i in range(len(values))]
    placeholders = ", ".join(f":{name}" for name in names)
    return placeholders, dict(zip(names, values, strict=True))


def is_missing_schema_error(error: BaseException) -> bool:
    """Check if a backend error means a table or column does not exist."""
    error_str = str(error).lower()
    return (
        "no such table" in error_str
        or "no such column" in error_str
        or "undefinedtable" in error_str
        or "undefinedcolumn" in error_str
        or "unknown column" in error_str
        or ("relation" in error_str and "does not exist" in error_str)
        or ("column" in error_str and "does not exist" in error_str)
        or ("table" in error_str and "doesn't exist" in error_str)
    )
