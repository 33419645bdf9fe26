"""beanstore error types with typed error codes.

Error code ranges:
- 1xxx: Validation
- 2xxx: Config
- 3xxx: Schema
- 4xxx: Backend
- 9xxx: Internal
"""

from dataclasses import FrozenInstanceError, dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Validation (1xxx)
    INVALID_TYPE_NAME = 1001
    INVALID_PROPERTY_NAME = 1002
    INVALID_VALUE = 1003
    AMBIGUOUS_ORDER = 1004

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_MISSING_REQUIRED = 2003
    CONFIG_FILE_NOT_FOUND = 2004

    # Schema (3xxx)
    SCHEMA_FROZEN = 3001

    # Backend (4xxx)
    BACKEND_STATEMENT_FAILED = 4001
    BACKEND_MISSING_SCHEMA = 4002

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


@dataclass(eq=False)
class BeanStoreError(Exception):
    """Base error with structured context.

    Fields are read-only once set. Exception machinery attributes such as
    ``__traceback__`` stay writable so errors pass through context managers.
    """

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in self.__dataclass_fields__ and name in self.__dict__:
            raise FrozenInstanceError(f"cannot assign to field {name!r}")
        super().__setattr__(name, value)

    def __delattr__(self, name: str) -> None:
        if name in self.__dataclass_fields__:
            raise FrozenInstanceError(f"cannot delete field {name!r}")
        super().__delattr__(name)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'SCHEMA_FROZEN')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON responses."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ValidationError(BeanStoreError):
    """Malformed type or property identifiers and unsupported values."""

    @classmethod
    def invalid_type(cls, type_name: str) -> "ValidationError":
        return cls(
            code=ErrorCode.INVALID_TYPE_NAME,
            message=f"Invalid type: {type_name!r}",
            details={"type": type_name},
        )

    @classmethod
    def invalid_property(cls, type_name: str, prop: str) -> "ValidationError":
        return cls(
            code=ErrorCode.INVALID_PROPERTY_NAME,
            message=f"Invalid bean {type_name!r}: property {prop!r}",
            details={"type": type_name, "property": prop},
        )

    @classmethod
    def invalid_value(cls, prop: str, value: Any, reason: str) -> "ValidationError":
        return cls(
            code=ErrorCode.INVALID_VALUE,
            message=f"Invalid value for {prop!r}: {reason}",
            details={"property": prop, "value": repr(value), "reason": reason},
        )

    @classmethod
    def ambiguous_order(cls, operation: str) -> "ValidationError":
        return cls(
            code=ErrorCode.AMBIGUOUS_ORDER,
            message=f"{operation} requires an explicit ORDER BY clause",
            details={"operation": operation},
        )


class ConfigError(BeanStoreError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def missing_required(cls, field: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_MISSING_REQUIRED,
            message=f"Missing required config field: {field}",
            details={"field": field},
        )

    @classmethod
    def file_not_found(cls, path: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_FILE_NOT_FOUND,
            message=f"Config file not found: {path}",
            details={"path": path},
        )


class SchemaError(BeanStoreError):
    """A schema change is required but the type is frozen."""

    @classmethod
    def frozen(cls, type_name: str, action: str) -> "SchemaError":
        return cls(
            code=ErrorCode.SCHEMA_FROZEN,
            message=f"Schema for {type_name!r} is frozen, refusing to {action}",
            details={"type": type_name, "action": action},
        )


class BackendError(BeanStoreError):
    """The statement executor failed."""

    @property
    def missing_schema(self) -> bool:
        """True when the failure was a missing table or column."""
        return self.code == ErrorCode.BACKEND_MISSING_SCHEMA

    @classmethod
    def statement_failed(cls, sql: str, reason: str, *, missing_schema: bool = False) -> "BackendError":
        return cls(
            code=(
                ErrorCode.BACKEND_MISSING_SCHEMA
                if missing_schema
                else ErrorCode.BACKEND_STATEMENT_FAILED
            ),
            message=f"Statement failed: {reason}",
            details={"sql": sql, "reason": reason},
        )


class InternalError(BeanStoreError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )
