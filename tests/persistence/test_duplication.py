"""Tests for bean duplication and export."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from beanstore.bean import Bean
from beanstore.instance import BeanStore
from beanstore.persistence.duplication import DuplicationTrail


@pytest.fixture
def stored_book(store: BeanStore) -> Bean:
    """A stored book with two pages and two tags."""
    book = Bean("book")
    book["title"] = "Dune"
    pages = [Bean("page"), Bean("page")]
    for number, page in enumerate(pages, start=1):
        page["num"] = number
    book["ownPage"] = pages
    book["sharedTag"] = [Bean("tag"), Bean("tag")]
    book["sharedTag"][0]["name"] = "classic"
    book["sharedTag"][1]["name"] = "sci-fi"
    store.store(book)
    return book


class TestDuplicationTrail:
    """Tests for the visited set."""

    def test_keys_by_type_and_id(self) -> None:
        """Stored beans are keyed by (type, id)."""
        trail = DuplicationTrail()
        original = Bean("book", 3)
        copy = Bean("book")

        trail.add(original, copy)

        assert Bean("book", 3) in trail
        assert trail.get(Bean("book", 3)) is copy
        assert Bean("page", 3) not in trail

    def test_unstored_beans_keyed_by_identity(self) -> None:
        """Two unstored beans never collide."""
        trail = DuplicationTrail()
        first = Bean("book")
        trail.add(first, Bean("book"))

        assert first in trail
        assert Bean("book") not in trail
        assert len(trail) == 1


class TestDupInMemory:
    """Tests for duplicating beans that hold their lists."""

    def test_copy_is_unstored(self, store: BeanStore) -> None:
        """The copy has id 0, the same scalars and is ready to store."""
        book = Bean("book")
        book["title"] = "Dune"
        store.store(book)

        copy = store.dup(book)

        assert copy is not book
        assert copy.id == 0
        assert copy["title"] == "Dune"
        assert copy.tainted

    def test_own_lists_deep_copied(self, store: BeanStore) -> None:
        """Owned beans are copied, not shared."""
        book = Bean("book")
        page = Bean("page")
        page["num"] = 1
        book["ownPage"] = [page]

        copy = store.dup(book)

        assert len(copy["ownPage"]) == 1
        assert copy["ownPage"][0] is not page
        assert copy["ownPage"][0]["num"] == 1

    def test_shared_lists_keep_references(self, store: BeanStore) -> None:
        """Shared beans are the same objects in the copy."""
        book = Bean("book")
        tag = Bean("tag")
        book["sharedTag"] = [tag]

        copy = store.dup(book)

        assert copy["sharedTag"][0] is tag

    def test_parent_kept_unless_copied(self, store: BeanStore) -> None:
        """Parents are referenced; a parent copied in the same call is replaced."""
        author = Bean("author")
        book = Bean("book")
        book["author"] = author
        page = Bean("page")
        page["book"] = book
        book["ownPage"] = [page]

        copy = store.dup(book)

        assert copy.parents()["author"] is author
        assert copy["ownPage"][0].parents()["book"] is copy

    def test_cycle_terminates(self, store: BeanStore) -> None:
        """A back-reference resolves to the copy already made."""
        book = Bean("book")
        page = Bean("page")
        book["ownPage"] = [page]
        page["ownBook"] = [book]

        copy = store.dup(book)

        page_copy = copy["ownPage"][0]
        assert page_copy["ownBook"][0] is copy

    def test_repeated_bean_copied_once(self, store: BeanStore) -> None:
        """The same stored bean met twice yields one copy."""
        page = Bean("page", 7)
        book = Bean("book")
        book["ownPage"] = [page, Bean("page", 7)]
        trail = DuplicationTrail()

        copy = store.dup(book, trail)

        assert copy["ownPage"][0] is copy["ownPage"][1]
        assert len(trail) == 2

    def test_filters_limit_lists(self, store: BeanStore) -> None:
        """Only filtered list types take part."""
        book = Bean("book")
        book["ownPage"] = [Bean("page")]
        book["sharedTag"] = [Bean("tag")]

        copy = store.dup(book, filters=["tag"])

        assert copy.has_list("sharedTag")
        assert not copy.has_list("ownPage")

    def test_preserve_ids(self, store: BeanStore) -> None:
        """Copies may keep the original ids."""
        book = Bean("book", 5)
        book["ownPage"] = [Bean("page", 9)]

        copy = store.dup(book, preserve_ids=True)

        assert copy.id == 5
        assert copy["ownPage"][0].id == 9

    def test_original_untouched(self, store: BeanStore) -> None:
        """Duplicating leaves the original as it was."""
        book = Bean("book")
        book["title"] = "Dune"
        book["ownPage"] = [Bean("page")]

        copy = store.dup(book)
        copy["title"] = "Changed"
        copy["ownPage"].append(Bean("page"))

        assert book["title"] == "Dune"
        assert len(book["ownPage"]) == 1


class TestDupFromDatabase:
    """Tests for duplicating beans whose lists live in the database."""

    def test_loaded_bean_lists_discovered(self, store: BeanStore, stored_book: Bean) -> None:
        """Own and shared lists are read from the schema."""
        loaded = store.load("book", stored_book.id)

        copy = store.dup(loaded)

        assert sorted(p["num"] for p in copy["ownPage"]) == [1, 2]
        assert all(p.id == 0 for p in copy["ownPage"])
        assert sorted(t["name"] for t in copy["sharedTag"]) == ["classic", "sci-fi"]
        assert all(t.id for t in copy["sharedTag"])

    def test_storing_copy_duplicates_owned_only(self, store: BeanStore, stored_book: Bean) -> None:
        """A stored copy gets new pages but links to the same tags."""
        copy = store.dup(store.load("book", stored_book.id))

        store.store(copy)

        assert copy.id != stored_book.id
        assert store.count("book") == 2
        assert store.count("page") == 4
        assert store.count("tag") == 2
        assert store.related_count(copy, "tag") == 2
        assert len(store.own(stored_book, "page")) == 2
        assert {p["book_id"] for p in store.own(copy, "page")} == {copy.id}

    def test_reading_unloaded_list_keeps_stored_children(
        self, store: BeanStore, stored_book: Bean
    ) -> None:
        """Looking at a list that was never loaded does not hide stored children."""
        # Given
        loaded = store.load("book", stored_book.id)
        assert loaded["ownPage"] == []

        # When
        copy = store.dup(loaded)

        # Then
        assert sorted(p["num"] for p in copy["ownPage"]) == [1, 2]
        assert len(copy["sharedTag"]) == 2
        assert loaded["ownPage"] == []

    def test_untracked_list_merged_with_stored(self, store: BeanStore, stored_book: Bean) -> None:
        """Beans added to an unloaded list join the stored ones in the copy."""
        loaded = store.load("book", stored_book.id)
        extra = Bean("page")
        extra["num"] = 3
        first = store.load("page", stored_book["ownPage"][0].id)
        first["num"] = 10
        loaded["ownPage"] = [first, extra]

        copy = store.dup(loaded)

        assert sorted(p["num"] for p in copy["ownPage"]) == [2, 3, 10]

    def test_underscored_own_list_discovered(self, make_store: Callable[..., BeanStore]) -> None:
        """A type named like a pair of types is an own-list when it has one foreign key."""
        bean_store = make_store(strict_type_names=False)
        item = Bean("item")
        item["sku"] = "X-1"
        bean_store.store(item)
        order = Bean("order")
        line = Bean("order_item")
        line["qty"] = 2
        order["ownOrder_item"] = [line]
        bean_store.store(order)

        copy = bean_store.dup(bean_store.load("order", order.id))

        assert [m["qty"] for m in copy["ownOrder_item"]] == [2]
        assert not copy.has_list("sharedItem")

    def test_filters_apply_to_database_lists(self, store: BeanStore, stored_book: Bean) -> None:
        """Filtered-out types are not loaded into the copy."""
        copy = store.dup(store.load("book", stored_book.id), filters=["page"])

        assert len(copy["ownPage"]) == 2
        assert not copy.has_list("sharedTag")


class TestExportAll:
    """Tests for export_all."""

    def test_export_nested(self, store: BeanStore, stored_book: Bean) -> None:
        """Exports keep ids and nest own and shared lists."""
        [record] = store.export_all(store.load("book", stored_book.id))

        assert record["id"] == stored_book.id
        assert record["title"] == "Dune"
        assert sorted(p["num"] for p in record["ownPage"]) == [1, 2]
        assert all(p["id"] for p in record["ownPage"])
        assert sorted(t["name"] for t in record["sharedTag"]) == ["classic", "sci-fi"]

    def test_export_filters(self, store: BeanStore, stored_book: Bean) -> None:
        """Filters restrict exported lists."""
        [record] = store.export_all([store.load("book", stored_book.id)], filters=["tag"])

        assert "sharedTag" in record
        assert "ownPage" not in record

    def test_export_parents(self, store: BeanStore, stored_book: Bean) -> None:
        """With parents, each <name>_id gains the referenced bean."""
        page_id = stored_book["ownPage"][0].id

        [record] = store.export_all(store.load("page", page_id), parents=True)

        assert record["book"]["id"] == stored_book.id
        assert record["book"]["title"] == "Dune"
        assert "ownPage" not in record["book"]

    def test_export_does_not_write(self, store: BeanStore, stored_book: Bean) -> None:
        """Exporting never stores anything."""
        store.export_all(store.load("book", stored_book.id), parents=True)

        assert store.count("book") == 1
        assert store.count("page") == 2
