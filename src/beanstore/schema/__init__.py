"""Schema inference, reflection and synchronization."""

from beanstore.schema.sync import (
    ActionKind,
    FreezeState,
    SchemaAction,
    SchemaSynchronizer,
)
from beanstore.schema.types import TypeRank, infer_type, rank_of, sql_type_for, widen
from beanstore.schema.writer import SchemaWriter, check_identifier

__all__ = [
    "ActionKind",
    "FreezeState",
    "SchemaAction",
    "SchemaSynchronizer",
    "SchemaWriter",
    "TypeRank",
    "check_identifier",
    "infer_type",
    "rank_of",
    "sql_type_for",
    "widen",
]
