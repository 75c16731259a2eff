"""Unit tests for the file based spec store.

This module tests markdown serialization, the metadata index, file
layout, updates, listing, search and relationship updates.
"""

import asyncio
import json
from unittest.mock import patch

import pytest

from specgen.errors import SpecNotFoundError, StoreError
from specgen.models import SpecRecord
from specgen.store import (
    FileSpecStore,
    METADATA_FILENAME,
    build_markdown,
    extract_tags,
    parse_markdown,
    slugify,
)


@pytest.fixture
def store(tmp_path):
    return FileSpecStore(tmp_path)


class TestHelpers:
    """Test cases for module level helpers."""

    def test_slugify(self):
        assert slugify("Hello, World!") == "hello-world"
        assert slugify("!!!") == "spec"
        assert len(slugify("word " * 30)) == 50

    def test_extract_tags(self):
        tags = extract_tags("Add #Perf and #cache to the API database #perf")

        assert tags == ["perf", "cache", "api", "database"]

    def test_extract_tags_limit(self):
        body = " ".join(f"#tag{i}" for i in range(15))

        assert len(extract_tags(body)) == 10


class TestMarkdownSerialization:
    """Test cases for build_markdown and parse_markdown."""

    def test_round_trip_preserves_body_exactly(self):
        """Test that bodies with separators and leading newlines survive."""
        record = SpecRecord(
            id=3,
            title='Quote "this": please',
            body_md="\n# Heading\n\n---\nnot frontmatter\n",
            feature_group="api",
            related_specs=[1, 2],
            parent_spec_id=1,
            tags=["api"],
        )

        parsed = parse_markdown(build_markdown(record))

        assert parsed == record

    def test_frontmatter_layout(self):
        markdown = build_markdown(SpecRecord(id=1, title="T", body_md="body"))

        assert markdown.startswith("---\nid: 1\ntitle: \"T\"\n")
        assert markdown.endswith("\n---\n\nbody")

    def test_missing_frontmatter(self):
        with pytest.raises(ValueError):
            parse_markdown("# Just a document\n")

    def test_unterminated_frontmatter(self):
        with pytest.raises(ValueError):
            parse_markdown("---\nid: 1\n")


class TestCreateSpec:
    """Test cases for FileSpecStore.create_spec."""

    def test_ids_and_layout(self, store):
        """Test sequential ids, file placement and the metadata index."""
        async def scenario():
            first = await store.create_spec("Login page", "body one", feature_group="auth")
            second = await store.create_spec("Orders API", "body two", feature_group="api")
            return first, second

        first, second = asyncio.run(scenario())

        assert (first.id, second.id) == (1, 2)
        assert (store.specs_dir / "auth" / "SPEC-001-login-page.md").exists()
        assert (store.specs_dir / "api" / "SPEC-002-orders-api.md").exists()

        metadata = json.loads((store.base_dir / METADATA_FILENAME).read_text())
        assert metadata["next_id"] == 3
        assert metadata["specs"]["1"]["file_path"] == "specs/auth/SPEC-001-login-page.md"
        assert len(metadata["specs"]["2"]["checksum"]) == 64

    def test_detects_missing_metadata(self, store):
        record = asyncio.run(store.create_spec("Login page", "User password token"))

        assert record.feature_group == "auth"
        assert record.theme_category == "backend"
        assert record.priority == "medium"
        assert record.status == "draft"
        assert record.created_via == "manual"
        assert record.tags == []

    def test_explicit_metadata_wins(self, store):
        record = asyncio.run(store.create_spec(
            "Urgent security fix",
            "body",
            feature_group="ui",
            theme_category="frontend",
            priority="low",
            tags=["x"],
        ))

        assert (record.feature_group, record.theme_category, record.priority) == ("ui", "frontend", "low")
        assert record.tags == ["x"]

    def test_empty_title_rejected(self, store):
        with pytest.raises(ValueError):
            asyncio.run(store.create_spec("   ", "body"))

    def test_invalid_status_rejected(self, store):
        with pytest.raises(ValueError):
            asyncio.run(store.create_spec("Title", "body", status="archived"))

        assert not (store.base_dir / METADATA_FILENAME).exists()

    def test_concurrent_creates_get_unique_ids(self, store):
        async def scenario():
            return await asyncio.gather(*(store.create_spec(f"Spec {i}", "body") for i in range(5)))

        records = asyncio.run(scenario())

        assert sorted(record.id for record in records) == [1, 2, 3, 4, 5]

    def test_invalid_feature_group_rejected(self, store):
        with pytest.raises(ValueError, match="Invalid feature group"):
            asyncio.run(store.create_spec("Title", "body", feature_group="../outside"))

        assert not (store.base_dir / "outside").exists()

    def test_failed_index_write_removes_new_file(self, store):
        with patch.object(store, "_save_metadata", side_effect=StoreError("disk full")):
            with pytest.raises(StoreError):
                asyncio.run(store.create_spec("Title", "body", feature_group="api"))

        assert not (store.specs_dir / "api").exists()
        assert asyncio.run(store.get_spec_by_id(1)) is None

    def test_unwritable_root(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        with pytest.raises(StoreError):
            FileSpecStore(blocker)


class TestReadAndUpdate:
    """Test cases for reads and updates."""

    def test_get_missing_returns_none(self, store):
        assert asyncio.run(store.get_spec_by_id(42)) is None

    def test_update_body_persists(self, store):
        async def scenario():
            created = await store.create_spec("Title", "old body", feature_group="api")
            await store.update_spec(created.id, {"body_md": "new body", "id": 99, "bogus": True})
            return await store.get_spec_by_id(created.id)

        record = asyncio.run(scenario())

        assert record.id == 1
        assert record.body_md == "new body"

    def test_group_change_moves_file(self, store):
        async def scenario():
            created = await store.create_spec("Title", "body", feature_group="api")
            return await store.update_spec(created.id, {"feature_group": "data"})

        record = asyncio.run(scenario())

        assert record.feature_group == "data"
        assert (store.specs_dir / "data" / "SPEC-001-title.md").exists()
        assert not (store.specs_dir / "api").exists()

    def test_failed_index_write_keeps_spec_readable(self, store):
        """Test that a rename whose index write fails leaves the old spec in place."""
        asyncio.run(store.create_spec("Old title", "body", feature_group="api"))

        with patch.object(store, "_save_metadata", side_effect=StoreError("disk full")):
            with pytest.raises(StoreError):
                asyncio.run(store.update_spec(1, {"title": "New title"}))

        record = asyncio.run(store.get_spec_by_id(1))

        assert record is not None
        assert record.title == "Old title"
        assert (store.specs_dir / "api" / "SPEC-001-old-title.md").exists()
        assert not (store.specs_dir / "api" / "SPEC-001-new-title.md").exists()

    def test_failed_index_write_keeps_group_directory(self, store):
        asyncio.run(store.create_spec("Title", "body", feature_group="api"))

        with patch.object(store, "_save_metadata", side_effect=StoreError("disk full")):
            with pytest.raises(StoreError):
                asyncio.run(store.update_spec(1, {"feature_group": "data"}))

        record = asyncio.run(store.get_spec_by_id(1))

        assert record.feature_group == "api"
        assert not (store.specs_dir / "data").exists()

    def test_status_transitions(self, store):
        async def scenario():
            created = await store.create_spec("Title", "body", feature_group="api")
            seen = []
            for status in ("todo", "in-progress", "done"):
                seen.append((await store.update_spec(created.id, {"status": status})).status)
            return seen, await store.get_spec_by_id(created.id)

        seen, record = asyncio.run(scenario())

        assert seen == ["todo", "in-progress", "done"]
        assert record.status == "done"
        metadata = json.loads(store.metadata_path.read_text())
        assert metadata["specs"]["1"]["status"] == "done"

    def test_invalid_status_update_rejected(self, store):
        async def scenario():
            created = await store.create_spec("Title", "body", feature_group="api")
            await store.update_spec(created.id, {"status": "shipped"})

        with pytest.raises(ValueError, match="Invalid status"):
            asyncio.run(scenario())

    def test_update_missing_spec(self, store):
        with pytest.raises(SpecNotFoundError) as exc_info:
            asyncio.run(store.update_spec(5, {"body_md": "x"}))

        assert exc_info.value.spec_id == 5

    def test_self_parent_rejected(self, store):
        async def scenario():
            created = await store.create_spec("Title", "body", feature_group="api")
            await store.update_spec(created.id, {"parent_spec_id": created.id})

        with pytest.raises(ValueError):
            asyncio.run(scenario())

    def test_update_relationships(self, store):
        """Test that None clears the parent while related ids are kept."""
        async def scenario():
            await store.create_spec("Parent", "body", feature_group="api")
            child = await store.create_spec("Child", "body", feature_group="api")
            linked = await store.update_relationships(child.id, related_specs=[1], parent_spec_id=1)
            cleared = await store.update_relationships(child.id, parent_spec_id=None)
            return linked, cleared

        linked, cleared = asyncio.run(scenario())

        assert (linked.related_specs, linked.parent_spec_id) == ([1], 1)
        assert (cleared.related_specs, cleared.parent_spec_id) == ([1], None)


class TestListAndSearch:
    """Test cases for list_specs and search_specs."""

    def test_list_filters(self, store):
        async def scenario():
            await store.create_spec("One", "body", feature_group="api")
            await store.create_spec("Two", "body", feature_group="ui", status="todo")
            await store.create_spec("Three", "body", feature_group="api", status="todo")
            return (
                await store.list_specs(),
                await store.list_specs(feature_group="api"),
                await store.list_specs(feature_group="api", status="todo"),
            )

        everything, api, api_todo = asyncio.run(scenario())

        assert [record.id for record in everything] == [1, 2, 3]
        assert [record.id for record in api] == [1, 3]
        assert [record.id for record in api_todo] == [3]

    def test_search_ranks_title_hits_higher(self, store):
        async def scenario():
            await store.create_spec("Invoice", "payment reminder", feature_group="api")
            await store.create_spec("Payment export", "csv files", feature_group="data")
            return await store.search_specs("payment"), await store.search_specs("weather forecast")

        hits, misses = asyncio.run(scenario())

        assert [(record.id, score) for record, score in hits] == [
            (2, pytest.approx(2 / 3)),
            (1, pytest.approx(1 / 3)),
        ]
        assert misses == []

    def test_search_limit(self, store):
        async def scenario():
            for i in range(4):
                await store.create_spec(f"Report {i}", "report body", feature_group="data")
            return await store.search_specs("report", limit=2)

        assert [record.id for record, _ in asyncio.run(scenario())] == [1, 2]


class TestDeleteSpec:
    """Test cases for delete_spec."""

    def test_delete_removes_file_and_entry(self, store):
        async def scenario():
            await store.create_spec("Keep", "body", feature_group="api")
            doomed = await store.create_spec("Drop", "body", feature_group="data")
            entry = await store.delete_spec(doomed.id)
            return entry, await store.get_spec_by_id(doomed.id), await store.list_specs()

        entry, missing, remaining = asyncio.run(scenario())

        assert entry["title"] == "Drop"
        assert missing is None
        assert [record.id for record in remaining] == [1]
        assert not (store.specs_dir / "data").exists()
        metadata = json.loads(store.metadata_path.read_text())
        assert "2" not in metadata["specs"]
        assert metadata["next_id"] == 3

    def test_ids_are_not_reused(self, store):
        async def scenario():
            first = await store.create_spec("First", "body", feature_group="api")
            await store.delete_spec(first.id)
            return await store.create_spec("Second", "body", feature_group="api")

        assert asyncio.run(scenario()).id == 2

    def test_delete_unknown_spec(self, store):
        with pytest.raises(SpecNotFoundError) as exc_info:
            asyncio.run(store.delete_spec(7))

        assert exc_info.value.spec_id == 7

    def test_delete_with_missing_file(self, store):
        """Test that an index entry whose file is gone can still be deleted."""
        record = asyncio.run(store.create_spec("Title", "body", feature_group="api"))
        store.spec_path(record).unlink()

        entry = asyncio.run(store.delete_spec(record.id))

        assert entry["id"] == 1
        assert asyncio.run(store.list_specs()) == []
