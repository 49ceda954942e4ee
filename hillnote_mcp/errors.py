"""Error taxonomy for hillnote tools.

Hard failures are raised as ``McpError`` so the FastMCP dispatcher turns them
into error results:

- ``invalid_params``   malformed or missing input, raised before any I/O
- ``not_found``        referenced entity does not exist (lists alternatives)
- ``internal_error``   filesystem / JSON failures, original message preserved

Soft failures (stale positions, text not found, no-op replacement) are NOT
errors; they come back as ``{"success": False, ...}`` result dicts.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Iterable, TypeVar

from mcp.shared.exceptions import McpError
from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, ErrorData

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def invalid_params(message: str) -> McpError:
    return McpError(ErrorData(code=INVALID_PARAMS, message=message))


def invalid_request(message: str) -> McpError:
    return McpError(ErrorData(code=INVALID_REQUEST, message=message))


def internal_error(message: str) -> McpError:
    return McpError(ErrorData(code=INTERNAL_ERROR, message=message))


def not_found(kind: str, ident: str, available: Iterable[str] = (), *, limit: int = 10) -> McpError:
    """Build a not-found error that lists what the caller could use instead.

    Example:
        Column "priority" not found.

        Available columns:
        - title
        - status
    """
    names = list(available)
    lines = [f'{kind.capitalize()} "{ident}" not found.']
    if names:
        lines.append("")
        lines.append(f"Available {kind}s:")
        lines.extend(f"- {n}" for n in names[:limit])
        if len(names) > limit:
            lines.append(f"... and {len(names) - limit} more")
    else:
        lines.append(f"No {kind}s exist yet.")
    return invalid_request("\n".join(lines))


def internal_errors(action: str) -> Callable[[F], F]:
    """Wrap unexpected exceptions as INTERNAL_ERROR ``Failed to <action>: ...``.

    McpError passes through unchanged so deliberate client errors keep their code.
    """
    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return fn(*args, **kwargs)
            except McpError:
                raise
            except Exception as exc:
                logger.exception("Failed to %s", action)
                raise internal_error(f"Failed to {action}: {exc}") from exc
        return wrapper  # type: ignore[return-value]
    return decorator
