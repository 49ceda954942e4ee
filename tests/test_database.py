"""Tests for database — file-backed tables: schema, rows, columns, views."""

import json

import pytest
from pathlib import Path

from mcp.shared.exceptions import McpError
from mcp.types import INVALID_PARAMS, INVALID_REQUEST

from hillnote_mcp import frontmatter
from hillnote_mcp.database import DatabaseStore, view_slug


@pytest.fixture
def store(tmp_path: Path) -> DatabaseStore:
    (tmp_path / "documents").mkdir()
    return DatabaseStore(tmp_path)


@pytest.fixture
def tasks(store: DatabaseStore) -> str:
    store.create_database("Tasks")
    store.add_rows("Tasks", [
        {"title": "Write Docs", "status": "Todo", "priority": 2},
        {"title": "Ship Release", "status": "Done", "priority": 10},
        {"title": "Fix Bug", "status": "Todo", "priority": 5},
    ])
    return "Tasks"


def _config(store: DatabaseStore, db: str) -> dict:
    return json.loads((store.documents_dir / db / "database.json").read_text(encoding="utf-8"))


def _row_file(store: DatabaseStore, db: str, name: str) -> tuple[dict, str]:
    return frontmatter.parse((store.documents_dir / db / name).read_text(encoding="utf-8"))


def _titles(result: dict) -> list[str]:
    return [r["title"] for r in result["rows"]]


# ---------------------------------------------------------------------------
# Databases
# ---------------------------------------------------------------------------

class TestCreateDatabase:
    def test_defaults(self, store):
        result = store.create_database("Tasks")
        assert result["success"] is True
        config = _config(store, "Tasks")
        assert [c["id"] for c in config["columns"]] == ["title", "status", "tags"]
        assert config["views"][0]["id"] == "default"
        assert config["defaultView"] == "default"
        assert "created" in config

    def test_in_folder(self, store):
        result = store.create_database("Bugs", folder="Work")
        assert result["database"]["path"] == "Work/Bugs"
        assert (store.documents_dir / "Work" / "Bugs" / "database.json").is_file()

    def test_title_column_prepended(self, store):
        store.create_database("People", columns=[{"id": "email", "name": "Email", "type": "url"}])
        assert [c["id"] for c in _config(store, "People")["columns"]] == ["title", "email"]

    def test_already_exists(self, store):
        store.create_database("Tasks")
        with pytest.raises(McpError) as exc_info:
            store.create_database("Tasks")
        assert exc_info.value.error.code == INVALID_REQUEST

    def test_bad_column_type(self, store):
        with pytest.raises(McpError) as exc_info:
            store.create_database("X", columns=[{"id": "a", "name": "A", "type": "money"}])
        assert exc_info.value.error.code == INVALID_PARAMS


class TestListDatabases:
    def test_walks_nested_folders(self, store, tasks):
        store.create_database("Bugs", folder="Work/Eng")
        databases = {db["path"]: db for db in store.list_databases()}
        assert set(databases) == {"Tasks", "Work/Eng/Bugs"}
        assert databases["Tasks"]["row_count"] == 3
        assert databases["Work/Eng/Bugs"]["row_count"] == 0

    def test_does_not_descend_into_databases(self, store, tasks):
        store.create_database("Inner", folder="Tasks")
        assert [db["path"] for db in store.list_databases()] == ["Tasks"]

    def test_skips_unreadable_config(self, store, tasks):
        broken = store.documents_dir / "Broken"
        broken.mkdir()
        (broken / "database.json").write_text("{", encoding="utf-8")
        assert [db["path"] for db in store.list_databases()] == ["Tasks"]

    def test_no_documents_dir(self, tmp_path):
        assert DatabaseStore(tmp_path).list_databases() == []


class TestDeleteDatabase:
    def test_removes_folder(self, store, tasks):
        store.delete_database(tasks)
        assert not (store.documents_dir / "Tasks").exists()

    def test_not_found_lists_available(self, store, tasks):
        with pytest.raises(McpError, match="- Tasks"):
            store.delete_database("Nope")


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------

class TestAddRows:
    def test_files_and_front_matter(self, store, tasks):
        attrs, body = _row_file(store, tasks, "write-docs.md")
        assert attrs == {"status": "Todo", "priority": 2}
        assert body == "# Write Docs\n\n"

    def test_single_row_and_content(self, store, tasks):
        result = store.add_rows(tasks, {"title": "Plan", "_content": "Body text"})
        assert result["count"] == 1
        assert result["added_rows"][0]["file_name"] == "plan.md"
        attrs, body = _row_file(store, tasks, "plan.md")
        assert attrs == {}
        assert body == "Body text"

    def test_collision_suffix(self, store, tasks):
        result = store.add_rows(tasks, [{"title": "Fix Bug"}, {"title": "Fix Bug"}])
        assert [r["file_name"] for r in result["added_rows"]] == ["fix-bug-1.md", "fix-bug-2.md"]

    def test_identity_wins_over_fields(self, store, tasks):
        result = store.add_rows(tasks, {"title": "Spoof", "id": "fake", "file_path": "elsewhere.md"})
        row = result["added_rows"][0]
        assert row["id"] == row["file_path"]
        assert row["file_path"].endswith("spoof.md")
        read = next(r for r in store.read_database(tasks)["rows"] if r["file_name"] == "spoof.md")
        assert read["id"] == row["id"]

    def test_untitled(self, store, tasks):
        result = store.add_rows(tasks, [{"status": "Todo"}, {"title": "!!!"}])
        assert [r["file_name"] for r in result["added_rows"]] == ["untitled.md", "untitled-1.md"]


class TestReadDatabase:
    def test_rows(self, store, tasks):
        result = store.read_database(tasks)
        assert result["total_count"] == 3
        row = next(r for r in result["rows"] if r["file_name"] == "fix-bug.md")
        assert row["title"] == "fix-bug"
        assert row["status"] == "Todo"
        assert row["_content_preview"] == "# Fix Bug\n\n"
        assert row["id"] == row["file_path"]

    def test_search_filter_sort_limit(self, store, tasks):
        result = store.read_database(
            tasks,
            filters=[{"column": "status", "operator": "equals", "value": "Todo"}],
            sort={"column": "priority", "direction": "desc"},
            limit=1,
        )
        assert _titles(result) == ["fix-bug"]
        assert result["total_count"] == 1

    def test_explicit_sort_beats_view(self, store, tasks):
        store.create_view(tasks, {"name": "By Priority", "sorts": [{"column": "priority", "direction": "desc"}]})
        by_view = store.read_database(tasks, view_id="by_priority")
        assert _titles(by_view) == ["ship-release", "fix-bug", "write-docs"]
        explicit = store.read_database(tasks, view_id="by_priority", sort={"column": "priority", "direction": "asc"})
        assert _titles(explicit) == ["write-docs", "fix-bug", "ship-release"]

    def test_front_matter_title_is_ignored(self, store, tasks):
        path = store.documents_dir / tasks / "odd.md"
        path.write_text("---\ntitle: Spoofed\nid: nope\n---\n", encoding="utf-8")
        row = next(r for r in store.read_database(tasks)["rows"] if r["file_name"] == "odd.md")
        assert row["title"] == "odd"
        assert row["id"].endswith("odd.md")

    @pytest.mark.parametrize("filters", [["status"], [None], [{"operator": "equals"}], "status"])
    def test_malformed_filters(self, store, tasks, filters):
        with pytest.raises(McpError) as exc_info:
            store.read_database(tasks, filters=filters)
        assert exc_info.value.error.code == INVALID_PARAMS

    def test_malformed_saved_view(self, store, tasks):
        config_path = store.documents_dir / tasks / "database.json"
        config = _config(store, tasks)
        config["views"].append({"id": "broken", "name": "Broken", "type": "table", "filters": [42], "sorts": []})
        config_path.write_text(json.dumps(config), encoding="utf-8")
        with pytest.raises(McpError) as exc_info:
            store.read_database(tasks, view_id="broken")
        assert exc_info.value.error.code == INVALID_PARAMS

    def test_unknown_database(self, store):
        with pytest.raises(McpError) as exc_info:
            store.read_database("Missing")
        assert exc_info.value.error.code == INVALID_REQUEST


class TestUpdateRows:
    def test_by_where(self, store, tasks):
        result = store.update_rows(tasks, {"status": "Done"}, where={"status": "Todo"})
        assert result["count"] == 2
        assert _row_file(store, tasks, "fix-bug.md")[0]["status"] == "Done"

    def test_where_is_type_aware(self, store, tasks):
        result = store.update_rows(tasks, {"status": "Done"}, where={"priority": "5"})
        assert result["count"] == 0

    def test_title_renames_file(self, store, tasks):
        row_id = str(store.documents_dir / tasks / "fix-bug.md").replace("\\", "/")
        result = store.update_rows(tasks, {"title": "Fix Crash"}, ids=[row_id])
        db_dir = store.documents_dir / tasks
        assert not (db_dir / "fix-bug.md").exists()
        attrs, body = _row_file(store, tasks, "fix-crash.md")
        assert attrs == {"status": "Todo", "priority": 5}
        assert body == "# Fix Bug\n\n"
        assert result["updated_rows"][0]["title"] == "fix-crash"

    def test_rename_avoids_collision(self, store, tasks):
        store.update_rows(tasks, {"title": "Write Docs"}, where={"priority": 5})
        assert (store.documents_dir / tasks / "write-docs-1.md").is_file()
        assert (store.documents_dir / tasks / "write-docs.md").is_file()

    def test_content_replaces_body(self, store, tasks):
        store.update_rows(tasks, {"_content": "New body"}, where={"priority": 2})
        attrs, body = _row_file(store, tasks, "write-docs.md")
        assert body == "New body"
        assert "_content" not in attrs

    def test_needs_exactly_one_selector(self, store, tasks):
        with pytest.raises(McpError) as exc_info:
            store.update_rows(tasks, {"status": "Done"})
        assert exc_info.value.error.code == INVALID_PARAMS
        with pytest.raises(McpError):
            store.update_rows(tasks, {"status": "Done"}, ids=[], where={})


class TestDeleteRows:
    def test_by_where(self, store, tasks):
        result = store.delete_rows(tasks, where={"status": "Todo"})
        assert result["count"] == 2
        assert _titles(store.read_database(tasks)) == ["ship-release"]


# ---------------------------------------------------------------------------
# Columns
# ---------------------------------------------------------------------------

class TestAddColumn:
    def test_backfill(self, store, tasks):
        result = store.add_column(tasks, {"id": "owner", "name": "Owner", "type": "text"}, "me")
        assert result["rows_updated"] == 3
        assert _row_file(store, tasks, "ship-release.md")[0]["owner"] == "me"

    def test_no_default_leaves_rows(self, store, tasks):
        assert store.add_column(tasks, {"id": "owner", "name": "Owner", "type": "text"})["rows_updated"] == 0

    def test_duplicate(self, store, tasks):
        with pytest.raises(McpError) as exc_info:
            store.add_column(tasks, {"id": "status", "name": "Status", "type": "select"})
        assert exc_info.value.error.code == INVALID_REQUEST


class TestUpdateColumn:
    def test_rename_migrates_rows_and_views(self, store, tasks):
        store.create_view(tasks, {
            "name": "Open",
            "filters": [{"column": "status", "operator": "equals", "value": "Todo"}],
            "sorts": [{"column": "status"}],
        })
        result = store.update_column(tasks, "status", {"id": "state", "name": "State"})
        assert result["rows_updated"] == 3
        attrs, _ = _row_file(store, tasks, "write-docs.md")
        assert attrs == {"priority": 2, "state": "Todo"}
        view = next(v for v in _config(store, tasks)["views"] if v["id"] == "open")
        assert view["filters"][0]["column"] == "state"
        assert view["sorts"][0]["column"] == "state"

    def test_title_id_cannot_change(self, store, tasks):
        with pytest.raises(McpError) as exc_info:
            store.update_column(tasks, "title", {"id": "name"})
        assert exc_info.value.error.code == INVALID_REQUEST
        assert _config(store, tasks)["columns"][0]["id"] == "title"

    def test_rename_to_existing(self, store, tasks):
        with pytest.raises(McpError):
            store.update_column(tasks, "status", {"id": "tags"})

    def test_not_found_lists_columns(self, store, tasks):
        with pytest.raises(McpError, match="- status"):
            store.update_column(tasks, "colour", {"name": "Color"})


class TestDeleteColumn:
    def test_strips_views_and_rows(self, store, tasks):
        store.create_view(tasks, {
            "name": "Done",
            "filters": [{"column": "status", "operator": "equals", "value": "Done"}],
            "sorts": [{"column": "priority"}],
        })
        result = store.delete_column(tasks, "status")
        assert result["rows_updated"] == 3
        config = _config(store, tasks)
        assert "status" not in [c["id"] for c in config["columns"]]
        view = next(v for v in config["views"] if v["id"] == "done")
        assert view["filters"] == []
        assert view["sorts"] == [{"column": "priority"}]
        for name in ("write-docs.md", "ship-release.md", "fix-bug.md"):
            assert "status" not in _row_file(store, tasks, name)[0]

    def test_title_always_fails(self, store, tasks):
        with pytest.raises(McpError) as exc_info:
            store.delete_column(tasks, "title")
        assert exc_info.value.error.code == INVALID_REQUEST

    def test_title_fails_before_lookup(self, store):
        with pytest.raises(McpError, match="title column"):
            store.delete_column("Missing", "title")

    def test_not_found(self, store, tasks):
        with pytest.raises(McpError):
            store.delete_column(tasks, "nope")


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

class TestViews:
    def test_slug(self):
        assert view_slug("My Board!") == "my_board"

    def test_create_and_list(self, store, tasks):
        result = store.create_view(tasks, {"name": "Kanban Board", "type": "kanban", "groupBy": "status"})
        assert result["view"]["id"] == "kanban_board"
        assert result["view"]["groupBy"] == "status"
        views = store.list_views(tasks)
        assert views["count"] == 2
        assert views["default_view"] == "default"

    def test_duplicate_id(self, store, tasks):
        with pytest.raises(McpError) as exc_info:
            store.create_view(tasks, {"name": "Default"})
        assert exc_info.value.error.code == INVALID_REQUEST

    def test_malformed_view_criteria(self, store, tasks):
        with pytest.raises(McpError) as exc_info:
            store.create_view(tasks, {"name": "Odd", "sorts": ["priority"]})
        assert exc_info.value.error.code == INVALID_PARAMS
        assert store.list_views(tasks)["count"] == 1

    def test_bad_type(self, store, tasks):
        with pytest.raises(McpError) as exc_info:
            store.create_view(tasks, {"name": "Timeline", "type": "timeline"})
        assert exc_info.value.error.code == INVALID_PARAMS
