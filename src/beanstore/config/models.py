"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (BEANSTORE__SECTION__KEY)
3. YAML config file passed to load_config()
4. Global YAML (~/.config/beanstore/config.yaml)
5. Built-in defaults (this file)

Environment Variable Format:
    BEANSTORE__<SECTION>__<KEY>=<VALUE>

Examples:
    BEANSTORE__LOGGING__LEVEL=DEBUG
    BEANSTORE__DATABASE__DSN=sqlite:///beans.db
    BEANSTORE__STORE__MODE=frozen
"""

import re
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
SchemaMode = Literal["fluid", "frozen", "chilly"]

_TYPE_NAME_RE = re.compile(r"^[a-z0-9_]+$")


class LogOutputConfig(BaseModel):
    """Single logging output configuration.

    Env vars: Not directly configurable via env (use YAML for multi-output).
    """

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        BEANSTORE__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every schema change and bean write.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class DatabaseConfig(BaseModel):
    """Database connection configuration.

    Env vars:
        BEANSTORE__DATABASE__DSN: SQLAlchemy URL of the backend
        BEANSTORE__DATABASE__BUSY_TIMEOUT_MS: SQLite busy timeout
        BEANSTORE__DATABASE__ECHO_SQL: Log every statement via sqlalchemy.engine
    """

    dsn: str = Field(
        default="sqlite://",
        description="SQLAlchemy database URL. The default is a private in-memory SQLite database.",
    )
    busy_timeout_ms: int = Field(
        default=30000,
        description="SQLite busy timeout (ms). How long to wait for locks.",
    )
    echo_sql: bool = Field(
        default=False,
        description="Echo every SQL statement. Verbose.",
    )

    @field_validator("busy_timeout_ms")
    @classmethod
    def validate_busy_timeout(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"busy_timeout_ms must be >= 0, got {v}")
        return v


class StoreConfig(BaseModel):
    """Schema mode and relation behavior of one persistence context.

    Env vars:
        BEANSTORE__STORE__MODE: fluid, frozen or chilly
        BEANSTORE__STORE__STRICT_TYPE_NAMES: Require lowercase alphanumeric bean types
        BEANSTORE__STORE__UNIQUE_LINKS: Refuse duplicate many-to-many link rows
    """

    mode: SchemaMode = Field(
        default="fluid",
        description="fluid adapts the schema, frozen never touches it, "
        "chilly freezes only the types listed in frozen_types.",
    )
    frozen_types: list[str] = Field(
        default_factory=list,
        description="Types whose schema is frozen in chilly mode.",
    )
    dependencies: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Dependent type -> parent types. A dependent bean is trashed "
        "when removed from the own-list of one of its parents.",
    )
    strict_type_names: bool = Field(
        default=True,
        description="Only accept lowercase alphanumeric bean types in dispense().",
    )
    unique_links: bool = Field(
        default=False,
        description="Keep at most one link row per bean pair.",
    )
    blob_threshold: int = Field(
        default=65535,
        description="Strings longer than this many characters are stored as BLOB.",
    )

    @field_validator("frozen_types")
    @classmethod
    def validate_frozen_types(cls, v: list[str]) -> list[str]:
        for name in v:
            if not _TYPE_NAME_RE.match(name):
                raise ValueError(f"Invalid type name in frozen_types: {name!r}")
        return v

    @field_validator("dependencies")
    @classmethod
    def validate_dependencies(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        for dependent, parents in v.items():
            for name in (dependent, *parents):
                if not _TYPE_NAME_RE.match(name):
                    raise ValueError(f"Invalid type name in dependencies: {name!r}")
        return v

    @field_validator("blob_threshold")
    @classmethod
    def validate_blob_threshold(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"blob_threshold must be positive, got {v}")
        return v

    @model_validator(mode="after")
    def check_chilly_types(self) -> "StoreConfig":
        if self.frozen_types and self.mode != "chilly":
            raise ValueError("frozen_types is only meaningful in chilly mode")
        return self


class BeanStoreConfig(BaseModel):
    """Root configuration for beanstore.

    All settings can be configured via:
    1. Environment variables: BEANSTORE__SECTION__KEY
    2. YAML config files
    3. Direct kwargs to load_config()
    """

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
