"""Core module exports."""

from beanstore.core.errors import (
    BackendError,
    BeanStoreError,
    ConfigError,
    ErrorCode,
    InternalError,
    SchemaError,
    ValidationError,
)
from beanstore.core.logging import (
    configure_logging,
    get_log_file_path,
    get_logger,
)

__all__ = [
    # Errors
    "BackendError",
    "BeanStoreError",
    "ConfigError",
    "ErrorCode",
    "InternalError",
    "SchemaError",
    "ValidationError",
    # Logging
    "configure_logging",
    "get_log_file_path",
    "get_logger",
]
