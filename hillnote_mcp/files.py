"""Plain file I/O used by the editor and the database store.

All text is UTF-8. Whole-file writes go through ``atomic_write``: content is
written to ``<path>.tmp.<epoch-ms>`` and then renamed over the target, so a
reader never observes a half-written file.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from pathlib import Path
from typing import Any

from .errors import internal_error, invalid_params

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MiB


def to_posix(path: str | Path) -> str:
    """Normalize separators to forward slashes."""
    return str(path).replace("\\", "/")


def read_text(path: str | Path) -> str:
    return Path(path).read_text(encoding="utf-8")


def read_text_guarded(path: str | Path, max_size: int = MAX_FILE_SIZE) -> str:
    """Read a document, rejecting files larger than ``max_size`` before reading."""
    size = Path(path).stat().st_size
    if size > max_size:
        raise invalid_params(
            f"File too large ({size / 1024 / 1024:.2f}MB). "
            f"Maximum supported size is {max_size // (1024 * 1024)}MB."
        )
    return read_text(path)


def read_json(path: str | Path) -> Any:
    return json.loads(read_text(path))


def _discard(tmp: Path) -> None:
    try:
        tmp.unlink(missing_ok=True)
    except OSError:
        logger.warning("Could not remove temp file %s", tmp)


def atomic_write(path: str | Path, content: str) -> None:
    """Write ``content`` to a temp file, then rename it over ``path``."""
    path = Path(path)
    tmp = path.with_name(f"{path.name}.tmp.{int(time.time() * 1000)}")
    try:
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, path)
    except OSError as exc:
        _discard(tmp)
        raise internal_error(f"Failed to write file: {exc}") from exc
    except BaseException:
        _discard(tmp)
        raise
    logger.debug("Wrote %s (%d chars)", path, len(content))


def write_json(path: str | Path, obj: Any) -> None:
    atomic_write(path, json.dumps(obj, indent=2, ensure_ascii=False))


def remove(path: str | Path) -> None:
    Path(path).unlink()
    logger.debug("Removed %s", path)


def ensure_dir(path: str | Path) -> Path:
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def list_markdown(directory: str | Path) -> list[Path]:
    """Markdown files directly inside ``directory``, sorted by name."""
    return sorted(
        p for p in Path(directory).iterdir()
        if p.is_file() and p.suffix == ".md"
    )


# ---------------------------------------------------------------------------
# Filenames
# ---------------------------------------------------------------------------

def slugify(title: str) -> str:
    """Lowercase, drop non-alphanumerics, hyphenate whitespace, collapse hyphens."""
    s = title.lower()
    s = re.sub(r"[^a-z0-9\s-]", "", s)
    s = re.sub(r"\s+", "-", s)
    s = re.sub(r"-+", "-", s)
    return s.strip()


def safe_filename(title: str) -> str:
    return f"{slugify(title) or 'untitled'}.md"


def unique_path(directory: Path, filename: str, *, ignore: Path | None = None) -> Path:
    """First free path for ``filename`` in ``directory``: name.md, name-1.md, name-2.md..."""
    stem = filename[:-3] if filename.endswith(".md") else filename
    candidate = directory / filename
    counter = 1
    while candidate.exists() and candidate != ignore:
        candidate = directory / f"{stem}-{counter}.md"
        counter += 1
    return candidate
