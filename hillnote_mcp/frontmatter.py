"""YAML front matter for markdown files.

    ---
    status: Todo
    tags:
    - work
    ---
    # Body text

``parse`` never raises: anything that is not a well-formed mapping header is
treated as plain body text. ``serialize`` emits no header for empty attributes.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any

import yaml

_DELIM = "---"

# Opening delimiter: first line of the text is exactly "---".
_RE_OPEN = re.compile(r"\A---[ \t]*\r?\n")
# Closing delimiter: a later line that is exactly "---".
_RE_CLOSE = re.compile(r"^---[ \t]*(?:\r?\n|\Z)", re.MULTILINE)


def _plain(value: Any) -> Any:
    """YAML timestamps become ISO strings so attributes stay JSON-serializable."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    return value


def parse(text: str) -> tuple[dict[str, Any], str]:
    """Split ``text`` into (attributes, body)."""
    m = _RE_OPEN.match(text)
    if not m:
        return {}, text
    close = _RE_CLOSE.search(text, m.end())
    if close is None:
        return {}, text

    header = text[m.end():close.start()]
    try:
        data = yaml.safe_load(header) if header.strip() else {}
    except yaml.YAMLError:
        return {}, text
    if not isinstance(data, dict):
        return {}, text

    return {str(k): _plain(v) for k, v in data.items()}, text[close.end():]


def serialize(attributes: dict[str, Any], body: str) -> str:
    """Prepend a YAML header for ``attributes`` to ``body``."""
    if not attributes:
        return body
    dumped = yaml.safe_dump(
        attributes,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
    return f"{_DELIM}\n{dumped}{_DELIM}\n{body}"


def body_offset(text: str) -> int:
    """Character offset where the body starts (0 when there is no valid header)."""
    attributes, body = parse(text)
    if not attributes and body == text:
        return 0
    return len(text) - len(body)
