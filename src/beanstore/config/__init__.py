"""Config module exports."""

from beanstore.config.loader import BeanStoreSettings, load_config
from beanstore.config.models import (
    BeanStoreConfig,
    DatabaseConfig,
    LoggingConfig,
    LogOutputConfig,
    StoreConfig,
)

__all__ = [
    "load_config",
    "BeanStoreConfig",
    "BeanStoreSettings",
    "DatabaseConfig",
    "LoggingConfig",
    "LogOutputConfig",
    "StoreConfig",
]
