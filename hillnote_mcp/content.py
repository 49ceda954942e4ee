"""Position-addressed editing of document text.

Every operation runs the same pipeline:

    validate -> (soft failure with diagnostics) -> mutate in memory -> atomic write -> report

The ``plan_*`` functions are pure: they take the current text and return an
``Edit`` holding the new text (``None`` when nothing must be written) and the
report dict sent back to the caller. ``insert_content`` / ``delete_content`` /
``replace_content`` wrap them with the size-guarded read and the atomic write.

Soft failures carry ``success: False`` plus enough context (matching lines,
offsets, surrounding text) for the caller to retry with corrected arguments.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from .errors import internal_errors, invalid_params
from .files import atomic_write, read_text_guarded

logger = logging.getLogger(__name__)

Position = Union[str, int, float, None]

CONTEXT_LINES = 3
INSERTED_PREVIEW_CHARS = 200
DELETED_PREVIEW_CHARS = 100
MAX_SUGGESTIONS = 3
PARTIAL_MATCH_CHARS = 50

BEGINNING = "(beginning of document)"
END = "(end of document)"

# Headings, "Fact N:" markers and capitalized word pairs.
_RE_KEY_PHRASE = re.compile(r"#+\s+[^\n]+|Fact \d+:|[A-Z][a-z]+ [A-Z][a-z]+")


@dataclass
class Edit:
    """Outcome of a planned edit."""
    report: dict[str, Any]
    content: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.content is not None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _truncate(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def _find_all(content: str, needle: str, *, overlapping: bool = True) -> list[int]:
    """Start offsets of every occurrence of ``needle`` in ``content``."""
    hits: list[int] = []
    if not needle:
        return hits
    pos = 0
    while True:
        idx = content.find(needle, pos)
        if idx < 0:
            return hits
        hits.append(idx)
        pos = idx + (1 if overlapping else len(needle))


def normalize_position(position: Position) -> str | int:
    """Return "start", "end" or a non-negative int; None means "end"."""
    if position is None:
        return "end"
    if isinstance(position, bool):
        raise invalid_params(f"Invalid position {position!r}. Use \"start\", \"end\", or a number.")
    if isinstance(position, str):
        p = position.strip().lower()
        if p in ("start", "end"):
            return p
        raise invalid_params(f'Invalid position "{position}". Use "start", "end", or a number.')
    if isinstance(position, float):
        if not math.isfinite(position) or not position.is_integer():
            raise invalid_params(
                f"Invalid position number {position}. Must be a non-negative whole number."
            )
        position = int(position)
    if isinstance(position, int):
        if position < 0:
            raise invalid_params(
                f"Invalid position number {position}. Must be a non-negative whole number."
            )
        return position
    raise invalid_params(f"Invalid position {position!r}. Use \"start\", \"end\", or a number.")


def enclosing_line(lines: list[str], offset: int) -> int:
    """Index of the line containing character ``offset``."""
    char_count = 0
    for i, line in enumerate(lines):
        if char_count + len(line) >= offset:
            return i
        char_count += len(line) + 1
    return len(lines)


def _line_occurrences(lines: list[str], wanted: str) -> list[dict[str, Any]]:
    found = []
    end_offset = -1
    for i, line in enumerate(lines):
        end_offset += len(line) + 1
        if line != wanted:
            continue
        found.append({
            "line_number": i + 1,
            "after_position": end_offset,
            "context_before": lines[i - 1] if i > 0 else "(beginning)",
            "context_after": lines[i + 1] if i + 1 < len(lines) else "(end)",
        })
    return found


def _focused_preview(new_lines: list[str], first: int, end: int) -> tuple[str, list[int]]:
    """Render context-before / inserted / context-after lines with markers."""
    rendered: list[str] = []
    counts = [0, 0, 0]
    for i in range(max(0, first - CONTEXT_LINES), first):
        rendered.append(f"     {i + 1:>4}: {new_lines[i]}")
        counts[0] += 1
    for i in range(first, min(end, len(new_lines))):
        marker = ">>> "
        if i == first:
            marker = ">>> [START]"
        if i == end - 1:
            marker = ">>> [END]  "
        rendered.append(f"{marker} {i + 1:>4}: {new_lines[i]}")
        counts[1] += 1
    for i in range(end, min(len(new_lines), end + CONTEXT_LINES)):
        rendered.append(f"     {i + 1:>4}: {new_lines[i]}")
        counts[2] += 1
    return "\n".join(rendered), counts


# ---------------------------------------------------------------------------
# Insert
# ---------------------------------------------------------------------------

def plan_insert(
    content: str,
    position: Position,
    text: str,
    expected_line_before: Optional[str] = None,
) -> Edit:
    """Insert ``text`` at ``position``.

    Integer positions are spliced verbatim. Positions past the end of the
    document are treated as "end", so an out-of-range offset lands exactly
    where "end" would put it.
    """
    mode = normalize_position(position)
    lines = content.split("\n")

    if isinstance(mode, int) and mode > len(content):
        mode = "end"

    if mode == "start":
        offset, line_index = 0, 0
    elif mode == "end":
        offset, line_index = len(content), len(lines)
    else:
        offset = mode
        line_index = enclosing_line(lines, offset)

    actual_before = lines[line_index - 1] if line_index > 0 else BEGINNING

    if expected_line_before is not None and actual_before != expected_line_before:
        suggestions = _line_occurrences(lines, expected_line_before)
        if suggestions:
            hint = (
                f"Found {len(suggestions)} occurrence(s) of the expected line. "
                "Please verify the insertion position."
            )
        else:
            hint = "The expected line was not found in the document. Please check the content."
        return Edit({
            "success": False,
            "error": "Position validation failed",
            "message": "The line before the insertion point does not match the expected content",
            "expected": expected_line_before,
            "actual": actual_before,
            "current_position": {"line": line_index + 1, "character": offset},
            "suggested_positions": suggestions,
            "hint": hint,
        })

    separator = "\n\n" if content else ""
    if mode == "start":
        new_content = text + separator + content
        text_start = 0
    elif mode == "end":
        new_content = content + separator + text
        text_start = len(content) + len(separator)
    else:
        new_content = content[:offset] + text + content[offset:]
        text_start = offset

    new_lines = new_content.split("\n")
    # A trailing newline ends the inserted text; it does not start another line.
    inserted_line_count = text.rstrip("\n").count("\n") + 1
    first = new_content.count("\n", 0, text_start)
    end = first + inserted_line_count
    focused, counts = _focused_preview(new_lines, first, end)

    return Edit(
        {
            "success": True,
            "message": "Content inserted successfully",
            "insertion": {
                "position": mode,
                "line_number": line_index + 1,
                "text_length": len(text),
                "lines_inserted": inserted_line_count,
            },
            "preview": {
                "focused": focused,
                "context": {
                    "before": "\n".join(new_lines[max(0, first - CONTEXT_LINES):first]) or BEGINNING,
                    "inserted": _truncate(text, INSERTED_PREVIEW_CHARS),
                    "after": "\n".join(new_lines[end:end + CONTEXT_LINES]) or END,
                },
                "summary": (
                    f"Showing {sum(counts)} lines: {counts[0]} before, "
                    f"{counts[1]} inserted, {counts[2]} after"
                ),
            },
            "validation": {
                "expected_line_before": (
                    expected_line_before if expected_line_before is not None else "not provided"
                ),
                "actual_line_before": actual_before,
                "position_validated": expected_line_before is not None,
            },
            "document_stats": {
                "original_length": len(content),
                "new_length": len(new_content),
                "original_lines": len(lines),
                "new_lines": len(new_lines),
            },
        },
        new_content,
    )


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

def _check_offset(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise invalid_params(f"{name} must be a number, got {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise invalid_params(f"{name} must be a whole number, got {value}")
        value = int(value)
    return value


def plan_delete(
    content: str,
    start_pos: int,
    end_pos: int,
    expected_content: Optional[str] = None,
) -> Edit:
    """Remove ``content[start_pos:end_pos]``, optionally verifying what is there."""
    start_pos = _check_offset("start_pos", start_pos)
    end_pos = _check_offset("end_pos", end_pos)
    if start_pos < 0 or end_pos > len(content) or start_pos >= end_pos:
        raise invalid_params(
            f"Invalid positions: start_pos={start_pos}, end_pos={end_pos}, "
            f"content length={len(content)}"
        )

    doomed = content[start_pos:end_pos]

    if expected_content is not None and expected_content.strip() != doomed.strip():
        suggestions = [
            {
                "start_pos": idx,
                "end_pos": idx + len(expected_content),
                "context": content[max(0, idx - 20):idx + len(expected_content) + 20],
            }
            for idx in _find_all(content, expected_content)
        ]
        if suggestions:
            hint = (
                f"Found {len(suggestions)} occurrence(s) of the expected content at different "
                "positions. Please verify and use the correct positions."
            )
        else:
            hint = (
                "The expected content was not found anywhere in the document. "
                "Please check the content and try again."
            )
        return Edit({
            "success": False,
            "error": "Content mismatch",
            "message": "The content at the specified positions does not match the expected content",
            "actual_at_position": {
                "content": _truncate(doomed, 200),
                "start_pos": start_pos,
                "end_pos": end_pos,
            },
            "suggested_positions": suggestions,
            "hint": hint,
        })

    return Edit(
        {
            "success": True,
            "message": "Content deleted successfully",
            "deleted_length": end_pos - start_pos,
            "deleted_preview": _truncate(doomed, DELETED_PREVIEW_CHARS),
        },
        content[:start_pos] + content[end_pos:],
    )


# ---------------------------------------------------------------------------
# Replace
# ---------------------------------------------------------------------------

def _suggest(content: str, search_text: str) -> list[dict[str, Any]]:
    """Candidate locations for text that was not found verbatim."""
    suggestions: list[dict[str, Any]] = []

    partial = search_text[:PARTIAL_MATCH_CHARS]
    for idx in _find_all(content, partial)[:MAX_SUGGESTIONS]:
        suggestions.append({
            "type": "partial",
            "start_pos": idx,
            "end_pos": min(idx + len(search_text), len(content)),
            "content": content[idx:idx + 200],
            "match_length": len(partial),
        })
    if suggestions:
        return suggestions

    for phrase in _RE_KEY_PHRASE.findall(search_text)[:MAX_SUGGESTIONS]:
        idx = content.find(phrase)
        if idx >= 0:
            suggestions.append({
                "type": "key_phrase",
                "phrase": phrase,
                "start_pos": idx,
                "end_pos": min(idx + 200, len(content)),
                "content": content[idx:idx + 200],
            })
    if suggestions:
        return suggestions

    if "\n" in search_text:
        first_line = next((line for line in search_text.split("\n") if line.strip()), "")
        idx = content.find(first_line) if first_line else -1
        if idx >= 0:
            suggestions.append({
                "type": "first_line",
                "start_pos": idx,
                "end_pos": min(idx + len(search_text), len(content)),
                "content": content[idx:idx + 300],
                "note": "Found the first line of your search text",
            })
    return suggestions


def plan_replace(
    content: str,
    search_text: str,
    replace_text: str,
    replace_all: bool = False,
) -> Edit:
    """Replace the first (or every) occurrence of ``search_text``."""
    if not isinstance(search_text, str) or search_text == "":
        raise invalid_params("Search text is required and cannot be empty")
    if not isinstance(replace_text, str):
        raise invalid_params("Replace text is required")
    if not isinstance(replace_all, bool):
        raise invalid_params(f"'all' must be a boolean, got {replace_all!r}")

    if search_text not in content:
        suggestions = _suggest(content, search_text)
        if suggestions:
            hint = (
                f"Found {len(suggestions)} potential match(es). The content might have been "
                "modified. Try using one of the suggested positions or search for a smaller, "
                "exact portion of text."
            )
        else:
            hint = "No similar content found. Please verify the exact text exists in the document."
        return Edit({
            "success": False,
            "error": "Content not found",
            "message": "The exact search text was not found in the document",
            "search_text_preview": _truncate(search_text, 200),
            "suggestions": suggestions,
            "hint": hint,
            "document_info": {
                "total_length": len(content),
                "line_count": content.count("\n") + 1,
            },
        })

    occurrences = _find_all(content, search_text, overlapping=False)
    if replace_all:
        new_content = content.replace(search_text, replace_text)
        replaced = occurrences
    else:
        new_content = content.replace(search_text, replace_text, 1)
        replaced = occurrences[:1]

    if new_content == content:
        return Edit({
            "success": False,
            "error": "No changes made",
            "message": "The replacement did not result in any changes to the document",
            "hint": "This might occur if the search and replace text are identical",
            "search_text": search_text[:200],
            "replace_text": replace_text[:200],
        })

    delta = len(replace_text) - len(search_text)
    return Edit(
        {
            "success": True,
            "message": "Content replaced successfully",
            "details": {
                "occurrences_found": len(occurrences),
                "occurrences_replaced": len(replaced),
                "mode": "all occurrences" if replace_all else "first occurrence only",
                "positions": [
                    {
                        "original_start": start,
                        "original_end": start + len(search_text),
                        "new_start": start + n * delta,
                        "new_length": len(replace_text),
                    }
                    for n, start in enumerate(replaced)
                ],
                "original_length": len(search_text),
                "new_length": len(replace_text),
                "document_length_change": len(new_content) - len(content),
            },
        },
        new_content,
    )


# ---------------------------------------------------------------------------
# File-level operations
# ---------------------------------------------------------------------------

def _commit(path: Path, edit: Edit) -> dict[str, Any]:
    if edit.changed:
        atomic_write(path, edit.content)  # type: ignore[arg-type]
        logger.info("Edited %s: %s", path, edit.report.get("message"))
    else:
        logger.info("Edit of %s not applied: %s", path, edit.report.get("error"))
    return edit.report


@internal_errors("insert content")
def insert_content(
    path: str | Path,
    position: Position,
    text: str,
    expected_line_before: Optional[str] = None,
) -> dict[str, Any]:
    if text is None:
        raise invalid_params("Text to insert is required")
    normalize_position(position)
    content = read_text_guarded(path)
    return _commit(Path(path), plan_insert(content, position, text, expected_line_before))


@internal_errors("delete content")
def delete_content(
    path: str | Path,
    start_pos: int,
    end_pos: int,
    expected_content: Optional[str] = None,
) -> dict[str, Any]:
    _check_offset("start_pos", start_pos)
    _check_offset("end_pos", end_pos)
    content = read_text_guarded(path)
    return _commit(Path(path), plan_delete(content, start_pos, end_pos, expected_content))


@internal_errors("replace content")
def replace_content(
    path: str | Path,
    search_text: str,
    replace_text: str,
    replace_all: bool = False,
) -> dict[str, Any]:
    if not isinstance(search_text, str) or search_text == "":
        raise invalid_params("Search text is required and cannot be empty")
    if replace_text is None:
        raise invalid_params("Replace text is required")
    content = read_text_guarded(path)
    return _commit(Path(path), plan_replace(content, search_text, replace_text, replace_all))
