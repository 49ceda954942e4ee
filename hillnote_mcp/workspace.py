"""Workspace and document lookup.

A workspace is identified by an absolute path, or by the id or name of an
entry in the desktop app's ``workspaces.json``:

    [{"id": "ws-1", "name": "Notes", "path": "/Users/me/Notes"}, ...]

Documents are looked up in ``<workspace>/documents-registry.json``:

    {"documents": [{"id": ..., "name": ..., "fileName": ..., "path": "documents/x.md"}],
     "folders": []}
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .errors import invalid_params, invalid_request
from .files import read_json

logger = logging.getLogger(__name__)

REGISTRY_NAME = "documents-registry.json"
DOCUMENTS_DIR = "documents"


def default_workspaces_file() -> Path:
    return Path.home() / "Library" / "Application Support" / "Hillnote" / "workspaces.json"


@dataclass
class Workspace:
    path: Path
    name: str
    id: Optional[str] = None

    @property
    def documents_dir(self) -> Path:
        return self.path / DOCUMENTS_DIR


class WorkspaceResolver:
    """Resolve workspace identifiers against a ``workspaces.json`` file."""

    def __init__(self, workspaces_file: str | Path | None = None):
        self.workspaces_file = Path(workspaces_file) if workspaces_file else default_workspaces_file()

    def _entries(self) -> list[dict[str, Any]]:
        if not self.workspaces_file.exists():
            return []
        try:
            data = read_json(self.workspaces_file)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable workspaces file %s: %s", self.workspaces_file, exc)
            return []
        return data if isinstance(data, list) else []

    def workspaces(self) -> list[Workspace]:
        return [
            Workspace(path=Path(e["path"]), name=e.get("name") or Path(e["path"]).name, id=e.get("id"))
            for e in self._entries()
            if e.get("path")
        ]

    def resolve(self, ident: str) -> Workspace:
        if not ident:
            raise invalid_params("Workspace ID or path is required")

        path = Path(ident)
        if path.is_absolute() or "\\" in ident:
            return Workspace(path=path, name=path.name)

        workspaces = self.workspaces()
        for ws in workspaces:
            if ident in (ws.id, ws.name):
                return ws

        listing = "\n".join(f'- Name: "{ws.name}", Path: "{ws.path}"' for ws in workspaces)
        raise invalid_request(
            f'Workspace not found: "{ident}"\n\n'
            f"Available workspaces:\n{listing or '(none)'}\n\n"
            "Please use one of the available workspace paths or names listed above."
        )


# ---------------------------------------------------------------------------
# Document registry
# ---------------------------------------------------------------------------

def read_registry(workspace: Workspace) -> dict[str, Any]:
    registry_path = workspace.path / REGISTRY_NAME
    try:
        registry = read_json(registry_path)
    except FileNotFoundError:
        return {"documents": [], "folders": []}
    registry.setdefault("documents", [])
    return registry


def find_document(workspace: Workspace, document_id: str) -> tuple[dict[str, Any], Path]:
    """Registry entry and absolute path for ``document_id`` (id, name or file name)."""
    if not document_id:
        raise invalid_params("Document ID is required")

    documents = read_registry(workspace)["documents"]
    doc = next(
        (
            d for d in documents
            if document_id in (d.get("id"), d.get("name"), d.get("fileName"))
            or d.get("fileName") == f"{document_id}.md"
        ),
        None,
    )
    if doc is None:
        filename = document_id if document_id.endswith(".md") else f"{document_id}.md"
        doc = next(
            (d for d in documents if d.get("path") in (f"{DOCUMENTS_DIR}/{filename}", filename)),
            None,
        )

    if doc is None:
        shown = [f'- "{d.get("name") or d.get("title")}" (id: {d.get("id")})' for d in documents[:10]]
        if len(documents) > 10:
            shown.append(f"... and {len(documents) - 10} more documents")
        raise invalid_request(
            f'Document "{document_id}" not found in workspace.\n\n'
            f"Available documents:\n{chr(10).join(shown) or 'No documents found in this workspace.'}"
        )

    if doc.get("path"):
        return doc, workspace.path / doc["path"]
    if doc.get("fileName"):
        return doc, workspace.documents_dir / doc["fileName"]
    name = doc.get("name", document_id)
    return doc, workspace.documents_dir / (name if name.endswith(".md") else f"{name}.md")
