"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages.
"""

import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Insert local src directory at the beginning of sys.path
# This ensures that the local beanstore package is used, not any installed one
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

# Force reimport of beanstore modules if already imported
for module_name in list(sys.modules.keys()):
    if module_name.startswith("beanstore"):
        del sys.modules[module_name]

from beanstore.config.models import BeanStoreConfig, StoreConfig  # noqa: E402
from beanstore.instance import BeanStore  # noqa: E402


@pytest.fixture
def store() -> Generator[BeanStore, None, None]:
    """Fluid BeanStore on a private in-memory SQLite database."""
    bean_store = BeanStore()
    yield bean_store
    bean_store.close()


@pytest.fixture
def make_store() -> Generator:
    """Factory for BeanStores with custom store settings, closed after the test."""
    opened: list[BeanStore] = []

    def _make(**store_settings: object) -> BeanStore:
        config = BeanStoreConfig(store=StoreConfig(**store_settings))
        bean_store = BeanStore(config)
        opened.append(bean_store)
        return bean_store

    yield _make
    for bean_store in opened:
        bean_store.close()
