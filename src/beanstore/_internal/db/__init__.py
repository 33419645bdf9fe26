"""Database layer: engine factory, statement adapter and SQL helpers."""

from beanstore._internal.db.database import Adapter, Database
from beanstore._internal.db.sql import (
    GLUE_AND,
    GLUE_WHERE,
    Bindings,
    bind,
    glue,
    has_limit,
    has_order_by,
    is_missing_schema_error,
    slots,
)

__all__ = [
    "Adapter",
    "Database",
    "Bindings",
    "GLUE_AND",
    "GLUE_WHERE",
    "bind",
    "glue",
    "has_limit",
    "has_order_by",
    "is_missing_schema_error",
    "slots",
]
