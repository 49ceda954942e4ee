"""File-backed tabular databases.

A database is a folder under ``<workspace>/documents/`` holding a
``database.json`` schema and one markdown file per row:

    documents/Projects/
        database.json        # {name, columns[], views[], defaultView, created}
        launch-website.md    # ---\\nstatus: Todo\\n---\\n# Launch website
        hire-designer.md

The row title is the filename stem and never lives in front matter; renaming a
title renames the file. Multi-row changes (column back-fill, key rename,
column delete) rewrite rows one file at a time with no rollback; re-running
a key removal is harmless.
"""

from __future__ import annotations

import copy
import logging
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from . import frontmatter
from .errors import internal_errors, invalid_params, invalid_request, not_found
from .files import (
    atomic_write,
    ensure_dir,
    list_markdown,
    read_json,
    read_text,
    remove,
    safe_filename,
    to_posix,
    unique_path,
    write_json,
)
from .query import run_query, same_value

logger = logging.getLogger(__name__)

CONFIG_NAME = "database.json"
PREVIEW_CHARS = 200

COLUMN_TYPES = ("title", "text", "number", "select", "multiselect", "checkbox", "date", "url")
VIEW_TYPES = ("table", "kanban", "gallery", "chart")

# Keys that never go into row front matter.
RESERVED_KEYS = ("title", "_content")

TITLE_COLUMN = {"id": "title", "name": "Title", "type": "title"}


def default_columns() -> list[dict[str, Any]]:
    return [
        dict(TITLE_COLUMN),
        {"id": "status", "name": "Status", "type": "select", "options": ["Todo", "In Progress", "Done"]},
        {"id": "tags", "name": "Tags", "type": "multiselect", "options": []},
    ]


def default_view() -> dict[str, Any]:
    return {"id": "default", "name": "All Items", "type": "table", "filters": [], "sorts": []}


def view_slug(name: str) -> str:
    s = re.sub(r"\s+", "_", name.lower())
    return re.sub(r"[^a-z0-9_]", "", s)


def _validate_column(column: Any) -> dict[str, Any]:
    if not isinstance(column, dict):
        raise invalid_params(f"Column definition must be an object, got {column!r}")
    for key in ("id", "name", "type"):
        if not column.get(key):
            raise invalid_params(f"Column definition is missing '{key}': {column!r}")
    if column["type"] not in COLUMN_TYPES:
        raise invalid_params(
            f"Invalid column type '{column['type']}'. Must be one of: {', '.join(COLUMN_TYPES)}"
        )
    return column


def _validate_criteria(entries: Any, label: str) -> list[dict[str, Any]]:
    """Filters and sorts are lists of objects that each name a column."""
    if not isinstance(entries, list):
        raise invalid_params(f'"{label}" must be a list of objects with a "column"')
    for entry in entries:
        if not isinstance(entry, dict) or not isinstance(entry.get("column"), str):
            raise invalid_params(f'Each entry in "{label}" must be an object with a "column", got {entry!r}')
    return entries


def _strip_reserved(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in fields.items() if k not in RESERVED_KEYS}


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class DatabaseStore:
    """Databases of one workspace, rooted at ``<workspace>/documents``."""

    def __init__(self, workspace_path: str | Path):
        self.workspace_path = Path(workspace_path)
        self.documents_dir = self.workspace_path / "documents"

    # -- paths & config ----------------------------------------------------

    def _db_dir(self, database_path: str) -> Path:
        if not database_path:
            raise invalid_params("Database path is required")
        return self.documents_dir / database_path

    def _load(self, database_path: str) -> tuple[dict[str, Any], Path]:
        db_dir = self._db_dir(database_path)
        config_path = db_dir / CONFIG_NAME
        if not config_path.is_file():
            available = [db["path"] for db in self._scan()]
            raise not_found("database", database_path, available)
        config = read_json(config_path)
        config.setdefault("columns", [])
        config.setdefault("views", [])
        return config, db_dir

    def _save(self, db_dir: Path, config: dict[str, Any]) -> None:
        write_json(db_dir / CONFIG_NAME, config)

    def _scan(self) -> Iterator[dict[str, Any]]:
        """Depth-first walk; a folder holding database.json is not descended into."""
        if not self.documents_dir.is_dir():
            return
        stack = [self.documents_dir]
        while stack:
            current = stack.pop()
            for child in sorted(current.iterdir(), reverse=True):
                if not child.is_dir():
                    continue
                config_path = child / CONFIG_NAME
                if not config_path.is_file():
                    stack.append(child)
                    continue
                try:
                    config = read_json(config_path)
                except (OSError, ValueError) as exc:
                    logger.warning("Skipping unreadable database config %s: %s", config_path, exc)
                    continue
                yield {
                    "name": config.get("name") or child.name,
                    "path": to_posix(child.relative_to(self.documents_dir)),
                    "full_path": to_posix(child),
                    "columns": config.get("columns", []),
                    "views": config.get("views", []),
                    "default_view": config.get("defaultView", "default"),
                }

    # -- rows --------------------------------------------------------------

    def _rows(self, db_dir: Path) -> list[dict[str, Any]]:
        rows = []
        for path in list_markdown(db_dir):
            attrs, body = frontmatter.parse(read_text(path))
            row = _strip_reserved(attrs)
            row.update(self._row_identity(path))
            row["_content_preview"] = body[:PREVIEW_CHARS]
            rows.append(row)
        return rows

    @staticmethod
    def _row_identity(path: Path) -> dict[str, Any]:
        return {
            "id": to_posix(path),
            "file_path": to_posix(path),
            "file_name": path.name,
            "title": path.stem,
        }

    @staticmethod
    def _select(
        rows: list[dict[str, Any]],
        ids: Optional[list[str]],
        where: Optional[dict[str, Any]],
        action: str,
    ) -> list[dict[str, Any]]:
        if ids is None and where is None:
            raise invalid_params(f'Must provide either "ids" or "where" criteria for {action}')
        if ids is not None and where is not None:
            raise invalid_params(f'Provide only one of "ids" or "where" for {action}, not both')
        if ids is not None:
            if not isinstance(ids, list):
                raise invalid_params('"ids" must be a list of row IDs (file paths)')
            wanted = {to_posix(i) for i in ids}
            return [r for r in rows if r["id"] in wanted or r["file_path"] in wanted]
        if not isinstance(where, dict):
            raise invalid_params('"where" must be an object of column/value pairs')
        return [
            r for r in rows
            if all(k in r and same_value(r[k], v) for k, v in where.items())
        ]

    def _rewrite_rows(self, db_dir: Path, change) -> int:
        """Apply ``change(front_matter) -> bool`` to every row; rewrite rows it changed."""
        touched = 0
        for path in list_markdown(db_dir):
            attrs, body = frontmatter.parse(read_text(path))
            if change(attrs):
                atomic_write(path, frontmatter.serialize(attrs, body))
                touched += 1
        return touched

    # -- databases ---------------------------------------------------------

    @internal_errors("create database")
    def create_database(
        self,
        name: str,
        columns: Optional[list[dict[str, Any]]] = None,
        folder: Optional[str] = None,
    ) -> dict[str, Any]:
        if not name or not name.strip():
            raise invalid_params("Database name is required")

        rel = f"{folder.strip('/')}/{name}" if folder else name
        db_dir = self.documents_dir / rel
        if (db_dir / CONFIG_NAME).exists():
            raise invalid_request(f'Database "{name}" already exists at this path')

        if columns:
            columns = [dict(_validate_column(c)) for c in columns]
            ids = [c["id"] for c in columns]
            dupes = sorted({i for i in ids if ids.count(i) > 1})
            if dupes:
                raise invalid_params(f"Duplicate column ids: {', '.join(dupes)}")
            if "title" not in ids:
                columns.insert(0, dict(TITLE_COLUMN))
        else:
            columns = default_columns()

        config = {
            "name": name,
            "columns": columns,
            "views": [default_view()],
            "defaultView": "default",
            "created": datetime.now(timezone.utc).isoformat(),
        }
        ensure_dir(db_dir)
        self._save(db_dir, config)
        logger.info("Created database %s", db_dir)

        return {
            "success": True,
            "database": {
                "name": name,
                "path": to_posix(rel),
                "full_path": to_posix(db_dir),
                "columns": columns,
                "views": config["views"],
            },
            "message": f'Database "{name}" created successfully',
        }

    @internal_errors("read database")
    def read_database(
        self,
        database_path: str,
        *,
        search: Optional[str] = None,
        filters: Optional[list[dict[str, Any]]] = None,
        sort: Optional[dict[str, Any]] = None,
        view_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> dict[str, Any]:
        if filters is not None:
            _validate_criteria(filters, "filters")
        if sort is not None and (not isinstance(sort, dict) or not sort.get("column")):
            raise invalid_params('"sort" must be an object with a "column"')

        config, db_dir = self._load(database_path)
        saved = next((v for v in config["views"] if view_id and v.get("id") == view_id), None)
        if saved is not None:
            _validate_criteria(saved.get("filters") or [], f"{view_id}.filters")
            _validate_criteria(saved.get("sorts") or [], f"{view_id}.sorts")
        rows = run_query(
            self._rows(db_dir),
            views=config["views"],
            search=search,
            filters=filters,
            sort=sort,
            view_id=view_id,
            limit=limit,
        )
        return {
            "database": {
                "name": config.get("name"),
                "path": database_path,
                "columns": config["columns"],
                "views": config["views"],
                "default_view": config.get("defaultView"),
            },
            "rows": rows,
            "total_count": len(rows),
        }

    @internal_errors("list databases")
    def list_databases(self) -> list[dict[str, Any]]:
        databases = []
        for db in self._scan():
            db["row_count"] = len(list_markdown(db["full_path"]))
            databases.append(db)
        return databases

    @internal_errors("delete database")
    def delete_database(self, database_path: str) -> dict[str, Any]:
        _, db_dir = self._load(database_path)
        shutil.rmtree(db_dir)
        logger.info("Deleted database %s", db_dir)
        return {"success": True, "message": f'Database at "{database_path}" deleted successfully'}

    # -- rows --------------------------------------------------------------

    @internal_errors("add rows")
    def add_rows(
        self,
        database_path: str,
        rows: Union[dict[str, Any], list[dict[str, Any]]],
    ) -> dict[str, Any]:
        batch = rows if isinstance(rows, list) else [rows]
        if not all(isinstance(r, dict) for r in batch):
            raise invalid_params("Each row must be an object of column values")
        _, db_dir = self._load(database_path)

        added = []
        for data in batch:
            title = data.get("title") or "Untitled"
            path = unique_path(db_dir, safe_filename(str(title)))
            fields = _strip_reserved(data)
            body = data.get("_content") or f"# {title}\n\n"
            atomic_write(path, frontmatter.serialize(fields, body))
            logger.debug("Added row %s", path)
            added.append({**fields, **self._row_identity(path)})

        return {
            "success": True,
            "added_rows": added,
            "count": len(added),
            "message": f"Added {len(added)} row(s) to database",
        }

    @internal_errors("update rows")
    def update_rows(
        self,
        database_path: str,
        updates: dict[str, Any],
        *,
        ids: Optional[list[str]] = None,
        where: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        if not isinstance(updates, dict):
            raise invalid_params('"updates" must be an object of column values')
        _, db_dir = self._load(database_path)
        targets = self._select(self._rows(db_dir), ids, where, "updates")

        new_title = updates.get("title")
        updated = []
        for row in targets:
            old_path = Path(row["file_path"])
            attrs, body = frontmatter.parse(read_text(old_path))
            attrs = _strip_reserved({**attrs, **updates})
            if updates.get("_content") is not None:
                body = updates["_content"]
            text = frontmatter.serialize(attrs, body)

            path = old_path
            if new_title and str(new_title) != row["title"]:
                candidate = unique_path(db_dir, safe_filename(str(new_title)), ignore=old_path)
                if candidate != old_path:
                    path = candidate

            atomic_write(path, text)
            if path != old_path:
                remove(old_path)
                logger.info("Renamed row %s -> %s", old_path.name, path.name)
            updated.append({**attrs, **self._row_identity(path)})

        return {
            "success": True,
            "updated_rows": updated,
            "count": len(updated),
            "message": f"Updated {len(updated)} row(s)",
        }

    @internal_errors("delete rows")
    def delete_rows(
        self,
        database_path: str,
        *,
        ids: Optional[list[str]] = None,
        where: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        _, db_dir = self._load(database_path)
        targets = self._select(self._rows(db_dir), ids, where, "deletion")
        deleted = []
        for row in targets:
            remove(row["file_path"])
            deleted.append({"id": row["id"], "title": row["title"]})
        return {
            "success": True,
            "deleted_rows": deleted,
            "count": len(deleted),
            "message": f"Deleted {len(deleted)} row(s)",
        }

    # -- columns -----------------------------------------------------------

    @internal_errors("add column")
    def add_column(
        self,
        database_path: str,
        column: dict[str, Any],
        default_value: Any = None,
    ) -> dict[str, Any]:
        column = dict(_validate_column(column))
        config, db_dir = self._load(database_path)
        if any(c.get("id") == column["id"] for c in config["columns"]):
            raise invalid_request(f'Column "{column["id"]}" already exists')

        config["columns"].append(column)
        self._save(db_dir, config)

        backfilled = 0
        if default_value is not None:
            def fill(attrs: dict[str, Any]) -> bool:
                attrs[column["id"]] = copy.deepcopy(default_value)
                return True
            backfilled = self._rewrite_rows(db_dir, fill)

        return {
            "success": True,
            "column": column,
            "rows_updated": backfilled,
            "message": f'Column "{column["name"]}" added successfully',
        }

    @internal_errors("update column")
    def update_column(
        self,
        database_path: str,
        column_id: str,
        updates: dict[str, Any],
    ) -> dict[str, Any]:
        if not isinstance(updates, dict):
            raise invalid_params('"updates" must be an object of column properties')
        if "type" in updates and updates["type"] not in COLUMN_TYPES:
            raise invalid_params(
                f"Invalid column type '{updates['type']}'. Must be one of: {', '.join(COLUMN_TYPES)}"
            )
        config, db_dir = self._load(database_path)
        columns = config["columns"]
        index = next((i for i, c in enumerate(columns) if c.get("id") == column_id), None)
        if index is None:
            raise not_found("column", column_id, [c.get("id") for c in columns])

        new_id = updates.get("id")
        renaming = bool(new_id) and new_id != column_id
        if renaming:
            if column_id == "title":
                raise invalid_request("Cannot change the id of the title column")
            if any(c.get("id") == new_id for c in columns):
                raise invalid_request(f'Column "{new_id}" already exists')

        columns[index] = {**columns[index], **updates}
        if renaming:
            for view in config["views"]:
                for ref in (view.get("filters") or []) + (view.get("sorts") or []):
                    if ref.get("column") == column_id:
                        ref["column"] = new_id
        self._save(db_dir, config)

        migrated = 0
        if renaming:
            def rename_key(attrs: dict[str, Any]) -> bool:
                if column_id not in attrs:
                    return False
                attrs[new_id] = attrs.pop(column_id)
                return True
            migrated = self._rewrite_rows(db_dir, rename_key)

        return {
            "success": True,
            "column": columns[index],
            "rows_updated": migrated,
            "message": f'Column "{column_id}" updated successfully',
        }

    @internal_errors("delete column")
    def delete_column(self, database_path: str, column_id: str) -> dict[str, Any]:
        if column_id == "title":
            raise invalid_request("Cannot delete the title column")
        config, db_dir = self._load(database_path)
        columns = config["columns"]
        index = next((i for i, c in enumerate(columns) if c.get("id") == column_id), None)
        if index is None:
            raise not_found("column", column_id, [c.get("id") for c in columns])

        deleted = columns.pop(index)
        for view in config["views"]:
            view["filters"] = [f for f in view.get("filters") or [] if f.get("column") != column_id]
            view["sorts"] = [s for s in view.get("sorts") or [] if s.get("column") != column_id]
        self._save(db_dir, config)

        def drop_key(attrs: dict[str, Any]) -> bool:
            return attrs.pop(column_id, _MISSING) is not _MISSING
        cleared = self._rewrite_rows(db_dir, drop_key)

        return {
            "success": True,
            "deleted_column": deleted,
            "rows_updated": cleared,
            "message": f'Column "{deleted.get("name", column_id)}" deleted successfully',
        }

    # -- views -------------------------------------------------------------

    @internal_errors("create view")
    def create_view(self, database_path: str, view: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(view, dict) or not view.get("name"):
            raise invalid_params("View definition requires a 'name'")
        view_type = view.get("type") or "table"
        if view_type not in VIEW_TYPES:
            raise invalid_params(
                f"Invalid view type '{view_type}'. Must be one of: {', '.join(VIEW_TYPES)}"
            )
        filters = _validate_criteria(view.get("filters") or [], "filters")
        sorts = _validate_criteria(view.get("sorts") or [], "sorts")
        config, db_dir = self._load(database_path)

        view_id = view.get("id") or view_slug(view["name"])
        if not view_id:
            raise invalid_params(f"Cannot derive a view id from name {view['name']!r}; pass an 'id'")
        if any(v.get("id") == view_id for v in config["views"]):
            raise invalid_request(f'View "{view_id}" already exists')

        new_view: dict[str, Any] = {
            "id": view_id,
            "name": view["name"],
            "type": view_type,
            "filters": filters,
            "sorts": sorts,
        }
        for key in ("groupBy", "rowGroupBy"):
            if view.get(key):
                new_view[key] = view[key]

        config["views"].append(new_view)
        self._save(db_dir, config)
        return {
            "success": True,
            "view": new_view,
            "message": f'View "{view["name"]}" created successfully',
        }

    @internal_errors("list views")
    def list_views(self, database_path: str) -> dict[str, Any]:
        config, _ = self._load(database_path)
        return {
            "database": config.get("name"),
            "views": config["views"],
            "default_view": config.get("defaultView"),
            "count": len(config["views"]),
        }


_MISSING = object()
