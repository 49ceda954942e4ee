"""Row query evaluation: search, filters, sort, saved views, limit.

Rows are plain dicts (front matter plus ``id``/``file_path``/``file_name``/
``title``). Evaluation order is fixed and each stage consumes the previous
stage's output:

    search -> filters -> sort -> view (first filter / first sort) -> limit

A view only contributes what the caller did not pass explicitly: its first
filter when ``filters`` is None, its first sort when ``sort`` is None.
"""

from __future__ import annotations

import functools
import math
from typing import Any, Iterable, Optional

OPERATORS = (
    "equals",
    "notEquals",
    "contains",
    "notContains",
    "greaterThan",
    "lessThan",
    "isEmpty",
    "isNotEmpty",
)

# Row keys that are bookkeeping, not front matter.
ROW_META_KEYS = frozenset({"id", "file_path", "file_name", "title", "_content_preview"})


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------

def as_text(value: Any) -> str:
    """String form of a front-matter value: lists join with commas, bools are lowercase."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(as_text(v) for v in value)
    return str(value)


def _loose_text(value: Any) -> str:
    """Lowercased text where falsy values (None, "", 0, False) read as empty."""
    return as_text(value or "").lower()


def as_number(value: Any) -> float:
    """Numeric form of a value; NaN when it has none."""
    if value is None:
        return math.nan
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return 0.0
        try:
            return float(s)
        except ValueError:
            return math.nan
    return math.nan


def is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


def same_value(a: Any, b: Any) -> bool:
    """Equality that keeps booleans apart from numbers."""
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def search_rows(rows: list[dict[str, Any]], query: str) -> list[dict[str, Any]]:
    """Case-insensitive substring match on title or any string front-matter value."""
    q = query.lower()

    def hit(row: dict[str, Any]) -> bool:
        if q in str(row.get("title", "")).lower():
            return True
        return any(
            isinstance(v, str) and q in v.lower()
            for k, v in row.items()
            if k not in ROW_META_KEYS
        )

    return [r for r in rows if hit(r)]


def matches_filter(row: dict[str, Any], flt: dict[str, Any]) -> bool:
    """Evaluate one filter against one row. Unknown operators match everything."""
    value = row.get(flt.get("column", ""))
    wanted = flt.get("value")
    op = flt.get("operator")

    if op == "equals":
        if isinstance(value, bool):
            return value is wanted
        return _loose_text(value) == _loose_text(wanted)
    if op == "notEquals":
        if isinstance(value, bool):
            return value is not wanted
        return _loose_text(value) != _loose_text(wanted)
    if op == "contains":
        return _loose_text(wanted) in _loose_text(value)
    if op == "notContains":
        return _loose_text(wanted) not in _loose_text(value)
    if op == "greaterThan":
        return as_number(value) > as_number(wanted)
    if op == "lessThan":
        return as_number(value) < as_number(wanted)
    if op == "isEmpty":
        return is_empty(value)
    if op == "isNotEmpty":
        return not is_empty(value)
    return True


def filter_rows(rows: list[dict[str, Any]], filters: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    for flt in filters:
        rows = [r for r in rows if matches_filter(r, flt)]
    return rows


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _compare(a: Any, b: Any) -> int:
    if _is_number(a) and _is_number(b):
        return (a > b) - (a < b)
    sa, sb = as_text(a), as_text(b)
    ka, kb = (sa.casefold(), sa), (sb.casefold(), sb)
    return (ka > kb) - (ka < kb)


def sort_rows(rows: list[dict[str, Any]], sort: dict[str, Any]) -> list[dict[str, Any]]:
    """Stable single-key sort. Missing values compare as ""."""
    column = sort.get("column", "")
    sign = -1 if sort.get("direction", "asc") == "desc" else 1

    def cmp(x: dict[str, Any], y: dict[str, Any]) -> int:
        a = x.get(column)
        b = y.get(column)
        return sign * _compare("" if a is None else a, "" if b is None else b)

    return sorted(rows, key=functools.cmp_to_key(cmp))


def apply_view(
    rows: list[dict[str, Any]],
    view: dict[str, Any],
    *,
    filters_given: bool,
    sort_given: bool,
) -> list[dict[str, Any]]:
    """Apply a saved view's first filter and first sort where not overridden."""
    view_filters = view.get("filters") or []
    view_sorts = view.get("sorts") or []
    if not filters_given and view_filters:
        rows = filter_rows(rows, view_filters[:1])
    if not sort_given and view_sorts:
        rows = sort_rows(rows, view_sorts[0])
    return rows


def run_query(
    rows: list[dict[str, Any]],
    *,
    views: Iterable[dict[str, Any]] = (),
    search: Optional[str] = None,
    filters: Optional[list[dict[str, Any]]] = None,
    sort: Optional[dict[str, Any]] = None,
    view_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> list[dict[str, Any]]:
    """Run the full pipeline over ``rows``."""
    if search:
        rows = search_rows(rows, search)
    if filters is not None:
        rows = filter_rows(rows, filters)
    if sort:
        rows = sort_rows(rows, sort)
    if view_id:
        view = next((v for v in views if v.get("id") == view_id), None)
        if view is not None:
            rows = apply_view(
                rows, view, filters_given=filters is not None, sort_given=bool(sort)
            )
    if isinstance(limit, int) and not isinstance(limit, bool) and limit > 0:
        rows = rows[:limit]
    return rows
