"""Schema synchronizer: reconcile a bean's columns with the persisted schema.

Before every write the synchronizer plans the changes a bean needs
(create the table, add a column, widen a column) and then either applies
them or, when the type is frozen, refuses the write with a SchemaError.

Columns are only ever widened, never narrowed, even when a new value would
fit a narrower type.

Known limitation: two callers sharing a backend may both decide to widen the
same column. Nothing here serializes that race; callers must.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from beanstore.core.errors import SchemaError
from beanstore.schema.types import DEFAULT_BLOB_THRESHOLD, TypeRank, infer_type, rank_of, widen

if TYPE_CHECKING:
    from beanstore.schema.writer import SchemaWriter

logger = structlog.get_logger()

FLUID = "fluid"
FROZEN = "frozen"
CHILLY = "chilly"


class ActionKind(str, Enum):
    """Kinds of schema change."""

    NONE = "none"
    CREATE_TABLE = "create_table"
    ADD_COLUMN = "add_column"
    WIDEN_COLUMN = "widen_column"


@dataclass(frozen=True)
class SchemaAction:
    """A single planned schema change."""

    kind: ActionKind
    table: str
    column: str | None = None
    from_rank: TypeRank | None = None
    to_rank: TypeRank | None = None

    def describe(self) -> str:
        if self.kind == ActionKind.CREATE_TABLE:
            return f"create table {self.table}"
        if self.kind == ActionKind.ADD_COLUMN:
            return f"add column {self.table}.{self.column} as {self.to_rank.name}"  # type: ignore[union-attr]
        if self.kind == ActionKind.WIDEN_COLUMN:
            return (
                f"widen column {self.table}.{self.column} "
                f"from {self.from_rank.name} to {self.to_rank.name}"  # type: ignore[union-attr]
            )
        return "nothing"


class FreezeState:
    """Fluid, frozen, or chilly (a set of individually frozen types)."""

    def __init__(self, mode: str = FLUID, frozen_types: Iterable[str] = ()) -> None:
        if mode not in (FLUID, FROZEN, CHILLY):
            raise ValueError(f"Unknown schema mode: {mode!r}")
        self.mode = mode
        self.frozen_types = frozenset(frozen_types)

    @classmethod
    def from_flag(cls, flag: bool | Iterable[str]) -> FreezeState:
        """``True`` freezes everything, ``False`` thaws, a list of types is chilly."""
        if isinstance(flag, bool):
            return cls(FROZEN if flag else FLUID)
        return cls(CHILLY, flag)

    @property
    def fully_frozen(self) -> bool:
        return self.mode == FROZEN

    @property
    def fluid(self) -> bool:
        return self.mode == FLUID

    def is_frozen(self, table: str | None = None) -> bool:
        """Whether schema changes for ``table`` (or in general) are forbidden."""
        if self.mode == FROZEN:
            return True
        if self.mode == CHILLY and table is not None:
            return table in self.frozen_types
        return False

    def __repr__(self) -> str:
        if self.mode == CHILLY:
            return f"FreezeState(chilly, {sorted(self.frozen_types)})"
        return f"FreezeState({self.mode})"


class SchemaSynchronizer:
    """Plans and applies the schema changes a bean write requires."""

    def __init__(
        self,
        writer: SchemaWriter,
        freeze: FreezeState | None = None,
        blob_threshold: int = DEFAULT_BLOB_THRESHOLD,
    ) -> None:
        self.writer = writer
        self.freeze = freeze or FreezeState()
        self.blob_threshold = blob_threshold

    def plan(self, table: str, properties: Mapping[str, Any]) -> list[SchemaAction]:
        """Compare required ranks against the backend, returning needed changes."""
        existing = self.writer.get_columns(table)
        actions: list[SchemaAction] = []

        if not existing:
            actions.append(SchemaAction(ActionKind.CREATE_TABLE, table))

        for column, value in properties.items():
            required = infer_type(value, self.blob_threshold)
            if column not in existing:
                actions.append(
                    SchemaAction(
                        ActionKind.ADD_COLUMN,
                        table,
                        column,
                        to_rank=widen(required, TypeRank.BOOL),
                    )
                )
                continue
            current = rank_of(existing[column])
            if current == TypeRank.SPECIFIED or required == TypeRank.NULL:
                continue
            if required > current:
                actions.append(
                    SchemaAction(
                        ActionKind.WIDEN_COLUMN,
                        table,
                        column,
                        from_rank=current,
                        to_rank=required,
                    )
                )
        return actions

    def ensure_compatible(self, table: str, properties: Mapping[str, Any]) -> list[SchemaAction]:
        """Make the schema able to hold ``properties`` or raise SchemaError.

        Nothing is changed when the type is frozen: the first required action
        is reported and the write is rejected.
        """
        actions = self.plan(table, properties)
        if not actions:
            return actions
        if self.freeze.is_frozen(table):
            logger.warning("schema_change_refused", table=table, action=actions[0].describe())
            raise SchemaError.frozen(table, actions[0].describe())
        self.apply(actions)
        return actions

    def apply(self, actions: Iterable[SchemaAction]) -> None:
        for action in actions:
            if action.kind == ActionKind.CREATE_TABLE:
                self.writer.create_table(action.table)
            elif action.kind == ActionKind.ADD_COLUMN:
                assert action.column is not None and action.to_rank is not None
                self.writer.add_column(action.table, action.column, action.to_rank)
                if action.column.endswith("_id"):
                    self.writer.add_index(action.table, [action.column])
            elif action.kind == ActionKind.WIDEN_COLUMN:
                assert action.column is not None and action.to_rank is not None
                self.writer.widen_column(action.table, action.column, action.to_rank)
