"""MCP server exposing Hillnote workspaces: positional document editing and
file-backed databases.

Usage:
    python -m hillnote_mcp --workspaces-file ~/Library/Application\\ Support/Hillnote/workspaces.json

Claude Code config (.mcp.json):
    {
      "mcpServers": {
        "hillnote": {
          "command": "python",
          "args": ["-m", "hillnote_mcp"]
        }
      }
    }
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional, Union

from mcp.server import FastMCP

from . import content, frontmatter
from .database import DatabaseStore
from .files import read_text_guarded, to_posix
from .workspace import WorkspaceResolver, default_workspaces_file, find_document

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Global state — initialized once at startup
# ---------------------------------------------------------------------------

_resolver: WorkspaceResolver | None = None

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _json(obj: Any) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False)


def _error(msg: str, **extra: Any) -> str:
    return _json({"error": msg, **extra})


def _resolver_or_error() -> WorkspaceResolver | str:
    if _resolver is None:
        return _error("Hillnote workspace resolver not initialized")
    return _resolver


def _store(workspace: str) -> DatabaseStore | str:
    resolver = _resolver_or_error()
    if isinstance(resolver, str):
        return resolver
    return DatabaseStore(resolver.resolve(workspace).path)


def _document_path(workspace: str, document: str) -> tuple[dict[str, Any], Path] | str:
    resolver = _resolver_or_error()
    if isinstance(resolver, str):
        return resolver
    return find_document(resolver.resolve(workspace), document)

# ---------------------------------------------------------------------------
# MCP Server
# ---------------------------------------------------------------------------

server = FastMCP(
    name="hillnote",
    instructions="""\
Hillnote MCP Server — edit markdown documents and file-backed databases in a
Hillnote workspace.

## Workspaces

Every tool takes a `workspace`: an absolute path, or the id / name of an entry
in the desktop app's workspaces.json.

## Editing documents safely

1. `read_document` to get the raw text and `body_offset`.
2. Edit by position with `insert_content` / `delete_content`, passing
   `expected_line_before` / `expected_content` so stale positions are caught.
3. Or edit by text with `replace_content` (first occurrence or `replace_all`).

A failed check is NOT an error: the result has `"success": false`, the text
actually found, `suggested_positions` / `suggestions` and a `hint`. Nothing is
written in that case; retry with a suggested position.

## Databases

A database is a folder under `documents/` with a `database.json` schema and
one markdown file per row (front matter = column values, filename = title).

- Discover: `list_databases`, `read_database`, `list_views`
- Rows: `add_rows`, `update_rows`, `delete_rows` (select by `ids` OR `where`)
- Schema: `create_database`, `add_column`, `update_column`, `delete_column`,
  `create_view`, `delete_database`

Filter operators: equals, notEquals, contains, notContains, greaterThan,
lessThan, isEmpty, isNotEmpty. Column types: title, text, number, select,
multiselect, checkbox, date, url. View types: table, kanban, gallery, chart.
""",
)

# ===== Documents ==========================================================

@server.tool()
def read_document(workspace: str, document: str) -> str:
    """Read a document with its registry entry and parsed front matter.

    Args:
        workspace: Workspace path, id or name.
        document: Document id, name or file name from the registry.

    Returns:
        JSON with metadata, frontmatter, body, length and body_offset
        (character offset where the body starts in the raw text).
    """
    found = _document_path(workspace, document)
    if isinstance(found, str):
        return found
    doc, path = found
    text = read_text_guarded(path)
    attributes, body = frontmatter.parse(text)
    return _json({
        "metadata": {**doc, "file_path": to_posix(path)},
        "frontmatter": attributes,
        "body": body,
        "content": text,
        "length": len(text),
        "body_offset": frontmatter.body_offset(text),
    })


@server.tool()
def insert_content(
    workspace: str,
    document: str,
    text: str,
    position: Union[int, str] = "end",
    expected_line_before: Optional[str] = None,
) -> str:
    """Insert text at a character offset, "start" or "end".

    Args:
        workspace: Workspace path, id or name.
        document: Document id, name or file name.
        text: Text to insert.
        position: Character offset (0-based), "start" or "end". Offsets past
            the end of the document append.
        expected_line_before: Optional guard: the line that must precede the
            insertion point. On mismatch nothing is written and candidate
            positions are returned.

    Returns:
        JSON with insertion details and a preview, or a soft failure with
        suggested_positions.
    """
    found = _document_path(workspace, document)
    if isinstance(found, str):
        return found
    _, path = found
    return _json(content.insert_content(path, position, text, expected_line_before))


@server.tool()
def delete_content(
    workspace: str,
    document: str,
    start_pos: int,
    end_pos: int,
    expected_content: Optional[str] = None,
) -> str:
    """Delete the characters in [start_pos, end_pos).

    Args:
        workspace: Workspace path, id or name.
        document: Document id, name or file name.
        start_pos: Start offset (inclusive).
        end_pos: End offset (exclusive).
        expected_content: Optional guard compared (trimmed) with the text in
            the range before deleting.

    Returns:
        JSON with deleted_length and a preview, or a soft failure listing
        where the expected text actually is.
    """
    found = _document_path(workspace, document)
    if isinstance(found, str):
        return found
    _, path = found
    return _json(content.delete_content(path, start_pos, end_pos, expected_content))


@server.tool()
def replace_content(
    workspace: str,
    document: str,
    search_text: str,
    replace_text: str,
    replace_all: bool = False,
) -> str:
    """Replace the first (or every) occurrence of literal text.

    Args:
        workspace: Workspace path, id or name.
        document: Document id, name or file name.
        search_text: Exact text to find (not a regex).
        replace_text: Replacement text.
        replace_all: Replace every non-overlapping occurrence.

    Returns:
        JSON with occurrence counts and positions, or a soft failure with
        suggestions when the text is not found.
    """
    found = _document_path(workspace, document)
    if isinstance(found, str):
        return found
    _, path = found
    return _json(content.replace_content(path, search_text, replace_text, replace_all))

# ===== Databases ==========================================================

@server.tool()
def list_databases(workspace: str) -> str:
    """List every database under the workspace's documents folder."""
    store = _store(workspace)
    if isinstance(store, str):
        return store
    databases = store.list_databases()
    return _json({"databases": databases, "count": len(databases)})


@server.tool()
def create_database(
    workspace: str,
    name: str,
    columns: Optional[list[dict[str, Any]]] = None,
    folder: Optional[str] = None,
) -> str:
    """Create a new database folder with a schema and a default table view.

    Args:
        workspace: Workspace path, id or name.
        name: Database name; also the folder name.
        columns: Column definitions ``{id, name, type, options?}``. Defaults
            to title / status / tags. A title column is added if missing.
        folder: Optional parent folder relative to documents/.

    Returns:
        JSON with the created database's path and schema.
    """
    store = _store(workspace)
    if isinstance(store, str):
        return store
    return _json(store.create_database(name, columns, folder))


@server.tool()
def read_database(
    workspace: str,
    database_path: str,
    search: Optional[str] = None,
    filters: Optional[list[dict[str, Any]]] = None,
    sort: Optional[dict[str, Any]] = None,
    view_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> str:
    """Read rows from a database.

    Applied in order: search, filters, sort, view, limit. A view contributes
    its first filter only when ``filters`` is omitted and its first sort only
    when ``sort`` is omitted.

    Args:
        workspace: Workspace path, id or name.
        database_path: Database folder relative to documents/.
        search: Case-insensitive text matched against title and text values.
        filters: List of ``{column, operator, value}``.
        sort: ``{column, direction}`` with direction "asc" or "desc".
        view_id: Saved view to apply.
        limit: Maximum number of rows.

    Returns:
        JSON with the schema, rows and total_count.
    """
    store = _store(workspace)
    if isinstance(store, str):
        return store
    return _json(store.read_database(
        database_path, search=search, filters=filters, sort=sort, view_id=view_id, limit=limit,
    ))


@server.tool()
def delete_database(workspace: str, database_path: str) -> str:
    """Delete a database folder and every row in it."""
    store = _store(workspace)
    if isinstance(store, str):
        return store
    return _json(store.delete_database(database_path))


@server.tool()
def add_rows(
    workspace: str,
    database_path: str,
    rows: Union[dict[str, Any], list[dict[str, Any]]],
) -> str:
    """Add one row or a list of rows.

    Args:
        workspace: Workspace path, id or name.
        database_path: Database folder relative to documents/.
        rows: Column values per row. ``title`` becomes the filename and
            ``_content`` the markdown body.

    Returns:
        JSON with the added rows and their ids (file paths).
    """
    store = _store(workspace)
    if isinstance(store, str):
        return store
    return _json(store.add_rows(database_path, rows))


@server.tool()
def update_rows(
    workspace: str,
    database_path: str,
    updates: dict[str, Any],
    ids: Optional[list[str]] = None,
    where: Optional[dict[str, Any]] = None,
) -> str:
    """Update rows selected by ``ids`` or by ``where``, not both.

    Args:
        workspace: Workspace path, id or name.
        database_path: Database folder relative to documents/.
        updates: Column values to merge. A new ``title`` renames the file;
            ``_content`` replaces the body.
        ids: Row ids (file paths) from read_database.
        where: Column/value pairs that must all match exactly.

    Returns:
        JSON with the updated rows.
    """
    store = _store(workspace)
    if isinstance(store, str):
        return store
    return _json(store.update_rows(database_path, updates, ids=ids, where=where))


@server.tool()
def delete_rows(
    workspace: str,
    database_path: str,
    ids: Optional[list[str]] = None,
    where: Optional[dict[str, Any]] = None,
) -> str:
    """Delete rows selected by ``ids`` or by ``where``, not both."""
    store = _store(workspace)
    if isinstance(store, str):
        return store
    return _json(store.delete_rows(database_path, ids=ids, where=where))


@server.tool()
def add_column(
    workspace: str,
    database_path: str,
    column: dict[str, Any],
    default_value: Any = None,
) -> str:
    """Add a column, optionally back-filling a default value into every row.

    Args:
        workspace: Workspace path, id or name.
        database_path: Database folder relative to documents/.
        column: ``{id, name, type, options?}``.
        default_value: Value written into every existing row.

    Returns:
        JSON with the column and the number of rows updated.
    """
    store = _store(workspace)
    if isinstance(store, str):
        return store
    return _json(store.add_column(database_path, column, default_value))


@server.tool()
def update_column(
    workspace: str,
    database_path: str,
    column_id: str,
    updates: dict[str, Any],
) -> str:
    """Update a column definition.

    Changing ``id`` renames the key in every row and in view filters / sorts.

    Args:
        workspace: Workspace path, id or name.
        database_path: Database folder relative to documents/.
        column_id: Current column id.
        updates: Properties to merge (name, type, options, id).

    Returns:
        JSON with the updated column and the number of rows migrated.
    """
    store = _store(workspace)
    if isinstance(store, str):
        return store
    return _json(store.update_column(database_path, column_id, updates))


@server.tool()
def delete_column(workspace: str, database_path: str, column_id: str) -> str:
    """Delete a column from the schema, every view and every row.

    The title column cannot be deleted.
    """
    store = _store(workspace)
    if isinstance(store, str):
        return store
    return _json(store.delete_column(database_path, column_id))


@server.tool()
def create_view(workspace: str, database_path: str, view: dict[str, Any]) -> str:
    """Create a saved view.

    Args:
        workspace: Workspace path, id or name.
        database_path: Database folder relative to documents/.
        view: ``{name, type?, id?, filters?, sorts?, groupBy?, rowGroupBy?}``.
            The id defaults to the name lowercased with spaces as underscores.

    Returns:
        JSON with the created view.
    """
    store = _store(workspace)
    if isinstance(store, str):
        return store
    return _json(store.create_view(database_path, view))


@server.tool()
def list_views(workspace: str, database_path: str) -> str:
    """List a database's saved views and its default view."""
    store = _store(workspace)
    if isinstance(store, str):
        return store
    return _json(store.list_views(database_path))


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main():
    parser = argparse.ArgumentParser(
        description="MCP server for Hillnote workspaces",
    )
    parser.add_argument(
        "--workspaces-file",
        type=Path,
        default=default_workspaces_file(),
        help="Path to Hillnote's workspaces.json "
             "(default: ~/Library/Application Support/Hillnote/workspaces.json)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for stderr output (default: WARNING)",
    )

    args = parser.parse_args()

    # stdout carries the stdio protocol; logs go to stderr.
    logging.basicConfig(
        stream=sys.stderr,
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.workspaces_file.exists():
        logger.warning("Workspaces file not found: %s (only absolute paths will resolve)",
                       args.workspaces_file)

    global _resolver
    _resolver = WorkspaceResolver(args.workspaces_file)
    logger.info("Hillnote MCP server initialized: %s", args.workspaces_file)

    server.run("stdio")


if __name__ == "__main__":
    main()
