"""Column type inference on a total order of storage widths.

Every value a bean can hold maps to the cheapest TypeRank able to store it
losslessly. Persisted column types map back onto the same ranks so the
synchronizer can compare what a column holds against what a value needs.
Columns only ever move up this order.
"""

from __future__ import annotations

import re
from enum import IntEnum
from typing import Any

from sqlalchemy import BigInteger, Double, Integer, LargeBinary, SmallInteger, Text
from sqlalchemy.types import (
    Boolean,
    Float,
    Numeric,
    String,
    TypeEngine,
)

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

DEFAULT_BLOB_THRESHOLD = 65535

# Canonical forms only: "007" and "3.10" must stay text to round-trip
_INT_RE = re.compile(r"^-?(0|[1-9][0-9]*)$")
_FLOAT_RE = re.compile(r"^-?(0|[1-9][0-9]*)\.[0-9]+([eE][-+]?[0-9]+)?$")


class TypeRank(IntEnum):
    """Storage widths, narrowest first."""

    NULL = 0
    BOOL = 1
    INT32 = 2
    INT64 = 3
    DOUBLE = 4
    TEXT = 5
    BLOB = 6
    # Declared by hand outside the enumeration; never widened
    SPECIFIED = 99


def _rank_int(value: int) -> TypeRank:
    if value in (0, 1):
        return TypeRank.BOOL
    if INT32_MIN <= value <= INT32_MAX:
        return TypeRank.INT32
    if INT64_MIN <= value <= INT64_MAX:
        return TypeRank.INT64
    return TypeRank.TEXT


def infer_type(value: Any, blob_threshold: int = DEFAULT_BLOB_THRESHOLD) -> TypeRank:
    """Return the cheapest rank that holds ``value`` losslessly."""
    if value is None or isinstance(value, bool):
        return TypeRank.NULL if value is None else TypeRank.BOOL
    if isinstance(value, int):
        return _rank_int(value)
    if isinstance(value, float):
        return TypeRank.DOUBLE
    if isinstance(value, (bytes, bytearray, memoryview)):
        return TypeRank.BLOB
    if isinstance(value, str):
        if _INT_RE.match(value):
            return _rank_int(int(value))
        if _FLOAT_RE.match(value) and str(float(value)) == value:
            return TypeRank.DOUBLE
        if len(value) > blob_threshold:
            return TypeRank.BLOB
        return TypeRank.TEXT
    raise TypeError(f"Cannot infer a column type for {type(value).__name__}")


def rank_of(column_type: TypeEngine[Any] | str) -> TypeRank:
    """Map a persisted column type back onto the rank order.

    Accepts reflected SQLAlchemy types or declared type strings.
    """
    if isinstance(column_type, str):
        return _rank_of_declared(column_type)
    # Subclasses first: SmallInteger and BigInteger are both Integer
    if isinstance(column_type, (Boolean, SmallInteger)):
        return TypeRank.BOOL
    if isinstance(column_type, BigInteger):
        return TypeRank.INT64
    if isinstance(column_type, Integer):
        return TypeRank.INT32
    if isinstance(column_type, (Float, Numeric)):
        return TypeRank.DOUBLE
    if isinstance(column_type, LargeBinary):
        return TypeRank.BLOB
    if isinstance(column_type, Text):
        return TypeRank.TEXT
    if isinstance(column_type, String):
        # VARCHAR(n) and friends were declared by hand
        return TypeRank.SPECIFIED if getattr(column_type, "length", None) else TypeRank.TEXT
    return TypeRank.SPECIFIED


_DECLARED_RANKS = {
    "SMALLINT": TypeRank.BOOL,
    "BOOLEAN": TypeRank.BOOL,
    "TINYINT": TypeRank.BOOL,
    "INTEGER": TypeRank.INT32,
    "INT": TypeRank.INT32,
    "BIGINT": TypeRank.INT64,
    "DOUBLE": TypeRank.DOUBLE,
    "DOUBLE PRECISION": TypeRank.DOUBLE,
    "FLOAT": TypeRank.DOUBLE,
    "REAL": TypeRank.DOUBLE,
    "NUMERIC": TypeRank.DOUBLE,
    "TEXT": TypeRank.TEXT,
    "LONGTEXT": TypeRank.TEXT,
    "BLOB": TypeRank.BLOB,
    "LONGBLOB": TypeRank.BLOB,
    "BYTEA": TypeRank.BLOB,
}


def _rank_of_declared(declared: str) -> TypeRank:
    return _DECLARED_RANKS.get(declared.strip().upper(), TypeRank.SPECIFIED)


def widen(a: TypeRank, b: TypeRank) -> TypeRank:
    """Return the wider of two ranks."""
    return max(a, b)


def sql_type_for(rank: TypeRank) -> TypeEngine[Any]:
    """SQLAlchemy type materializing a rank. NULL materializes as BOOL."""
    if rank == TypeRank.SPECIFIED:
        raise ValueError("SPECIFIED columns are never created by the synchronizer")
    if rank <= TypeRank.BOOL:
        return SmallInteger()
    if rank == TypeRank.INT32:
        return Integer()
    if rank == TypeRank.INT64:
        return BigInteger()
    if rank == TypeRank.DOUBLE:
        return Double()
    if rank == TypeRank.TEXT:
        return Text()
    return LargeBinary()
