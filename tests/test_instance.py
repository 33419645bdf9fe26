"""Tests for the BeanStore persistence context."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from unittest.mock import patch

import pytest

from beanstore.bean import Bean
from beanstore.config.models import BeanStoreConfig, DatabaseConfig
from beanstore.core.errors import BackendError, ValidationError
from beanstore.instance import BeanStore


def _stored(store: BeanStore, type_name: str, **props: object) -> Bean:
    bean = Bean(type_name)
    bean.import_data(props)
    store.store(bean)
    return bean


class TestLifecycle:
    """Tests for opening and closing contexts."""

    def test_defaults_to_fluid_memory(self, store: BeanStore) -> None:
        """A default context is fluid on in-memory SQLite."""
        assert store.database.dsn == "sqlite://"
        assert not store.is_frozen()

    def test_dsn_override_persists_to_file(self, tmp_path: Path) -> None:
        """Data written through a file DSN is visible to a new context."""
        dsn = f"sqlite:///{tmp_path / 'beans.db'}"
        with BeanStore(dsn=dsn) as first:
            book_id = _stored(first, "book", title="Dune").id

        with BeanStore(dsn=dsn) as second:
            assert second.load("book", book_id)["title"] == "Dune"

    def test_config_database_section(self, tmp_path: Path) -> None:
        """The database section selects the backend."""
        config = BeanStoreConfig(database=DatabaseConfig(dsn=f"sqlite:///{tmp_path / 'x.db'}"))
        with BeanStore(config) as bean_store:
            assert bean_store.database.dsn.endswith("x.db")

    def test_from_config_file(self, tmp_path: Path) -> None:
        """Contexts can be opened from YAML."""
        config_file = tmp_path / "beans.yaml"
        config_file.write_text("store:\n  mode: chilly\n  frozen_types: [book]\n")

        with (
            patch("beanstore.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"),
            BeanStore.from_config(config_file) as bean_store,
        ):
            assert bean_store.is_frozen("book")
            assert not bean_store.is_frozen("page")

    def test_from_config_applies_logging(self, tmp_path: Path) -> None:
        """The logging section of the file configures logging."""
        config_file = tmp_path / "beans.yaml"
        config_file.write_text("logging:\n  level: DEBUG\n")

        with (
            patch("beanstore.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"),
            patch("beanstore.instance.configure_logging") as configure,
            BeanStore.from_config(config_file),
        ):
            configure.assert_called_once()
            assert configure.call_args.kwargs["config"].level == "DEBUG"

    def test_contexts_are_independent(self, make_store: Callable[..., BeanStore]) -> None:
        """Mode and data of one context never leak into another."""
        first = make_store()
        second = make_store()
        _stored(first, "book", title="Dune")

        first.freeze(True)

        assert first.is_frozen()
        assert not second.is_frozen()
        assert second.count("book") == 0


class TestDispenseHelpers:
    """Tests for dispense_all, load_multi and friends."""

    def test_dispense_all(self, store: BeanStore) -> None:
        """A recipe yields single beans and lists."""
        book, pages = store.dispense_all("book, page*3")

        assert isinstance(book, Bean) and book.type == "book"
        assert isinstance(pages, list) and len(pages) == 3
        assert all(p.type == "page" for p in pages)

    def test_dispense_all_single_star(self, store: BeanStore) -> None:
        """A count of one still yields a list."""
        [pages] = store.dispense_all("page*1")
        assert isinstance(pages, list) and len(pages) == 1

    def test_dispense_all_rejects_bad_recipe(self, store: BeanStore) -> None:
        """Malformed recipes are rejected."""
        with pytest.raises(ValidationError):
            store.dispense_all("book,Page x 2")

    def test_load_multi(self, store: BeanStore) -> None:
        """Beans of several types sharing an id."""
        author = _stored(store, "author", name="Herbert")
        _stored(store, "bio", text="Born 1920")

        loaded_author, loaded_bio = store.load_multi("author, bio", author.id)

        assert loaded_author["name"] == "Herbert"
        assert loaded_bio["text"] == "Born 1920"

    def test_load_all_alias(self, store: BeanStore) -> None:
        """load_all is batch."""
        ids = store.store_all([Bean("book"), Bean("book")])
        assert [b.id for b in store.load_all("book", ids)] == ids

    def test_convert_to_beans(self, store: BeanStore) -> None:
        """Raw rows become clean beans."""
        _stored(store, "book", title="Dune")
        [book] = store.convert_to_beans("book", store.get_all("SELECT * FROM book"))
        assert book["title"] == "Dune"
        assert not book.tainted

    def test_beans_to_array(self, store: BeanStore) -> None:
        """In-memory export without traversal."""
        book = _stored(store, "book", title="Dune")
        assert store.beans_to_array([book]) == [{"id": book.id, "title": "Dune"}]


class TestRawQueries:
    """Tests for the raw query helpers."""

    def test_helpers(self, store: BeanStore) -> None:
        """Each helper shapes the result."""
        _stored(store, "book", title="Dune", rating=5)
        _stored(store, "book", title="Emma", rating=3)

        assert store.get_col("SELECT title FROM book ORDER BY title") == ["Dune", "Emma"]
        assert store.get_cell("SELECT MAX(rating) FROM book") == 5
        assert store.get_row("SELECT title FROM book WHERE rating = ?", [3]) == {"title": "Emma"}
        assert store.get_assoc("SELECT title, rating FROM book") == {"Dune": 5, "Emma": 3}
        assert store.exec("UPDATE book SET rating = ?", [1]) == 2

    def test_missing_schema_tolerated_when_fluid(self, store: BeanStore) -> None:
        """Reads of missing tables come back empty in fluid mode."""
        assert store.get_all("SELECT * FROM ghost") == []
        assert store.get_row("SELECT * FROM ghost") is None
        assert store.get_col("SELECT name FROM ghost") == []
        assert store.get_cell("SELECT name FROM ghost") is None
        assert store.get_assoc("SELECT id, name FROM ghost") == {}
        assert store.exec("DELETE FROM ghost") == 0

    def test_missing_schema_raises_when_frozen(self, store: BeanStore) -> None:
        """Frozen contexts report missing tables."""
        store.freeze(True)
        with pytest.raises(BackendError):
            store.get_all("SELECT * FROM ghost")

    def test_other_errors_always_raise(self, store: BeanStore) -> None:
        """Only missing schema is tolerated."""
        with pytest.raises(BackendError):
            store.exec("SELEC 1")


class TestSchemaMode:
    """Tests for freeze, strict typing, dependencies and inspect."""

    def test_freeze_cycle(self, store: BeanStore) -> None:
        """freeze() switches between fluid, frozen and chilly."""
        store.freeze(True)
        assert store.is_frozen() and store.is_frozen("book")

        store.freeze(["book"])
        assert store.is_frozen("book") and not store.is_frozen("page")

        store.freeze(False)
        assert not store.is_frozen("book")

    def test_dependencies(self, store: BeanStore) -> None:
        """Dependencies set at runtime drive trash cascades."""
        book = Bean("book")
        book["ownPage"] = [Bean("page")]
        store.store(book)

        store.dependencies({"page": ["book"]})
        store.trash(book)

        assert store.count("page") == 0

    def test_inspect(self, store: BeanStore) -> None:
        """Tables, or the columns of one table."""
        _stored(store, "book", title="Dune", rating=5)

        assert store.inspect() == ["book"]
        assert store.inspect("book") == {"id": "INTEGER", "title": "TEXT", "rating": "INTEGER"}
        assert store.inspect("ghost") == {}


class TestTransactions:
    """Tests for transaction passthroughs."""

    def test_passthroughs_noop_when_fluid(self, store: BeanStore) -> None:
        """begin/commit/rollback do nothing while the schema is fluid."""
        assert store.begin() is False
        assert store.commit() is False
        assert store.rollback() is False
        assert not store.adapter.in_transaction

    def test_rollback_when_frozen(self, store: BeanStore) -> None:
        """Once frozen, rollback undoes stores."""
        _stored(store, "book", title="Dune")
        store.freeze(True)

        assert store.begin() is True
        _stored(store, "book", title="Emma")
        assert store.rollback() is True

        assert store.count("book") == 1

    def test_commit_when_frozen(self, store: BeanStore) -> None:
        """Once frozen, commit keeps stores."""
        _stored(store, "book", title="Dune")
        store.freeze(True)

        store.begin()
        _stored(store, "book", title="Emma")
        assert store.commit() is True

        assert store.count("book") == 2

    def test_transaction_context_rolls_back(self, store: BeanStore) -> None:
        """The context manager works in any mode and undoes failed blocks."""
        _stored(store, "book", title="Dune")

        with pytest.raises(RuntimeError), store.transaction():
            _stored(store, "book", title="Emma")
            raise RuntimeError("abort")

        assert store.count("book") == 1

    def test_transaction_context_commits(self, store: BeanStore) -> None:
        """A clean block is committed."""
        _stored(store, "book", title="Dune")

        with store.transaction() as tx:
            _stored(tx, "book", title="Emma")

        assert store.count("book") == 2
