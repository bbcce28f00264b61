"""
Line formatter.

Turns a raw message template, a severity and substitution arguments
into one finished line:

    2026-10-17T09:30:00.123Z - WARN: disk at 93%

Placeholders are 1-based: ``{1}`` takes the first argument.
"""

import dataclasses
import json
import re
import traceback
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from logsequencer.errors import FormatError
from logsequencer.severity import Severity

MISSING_VALUE = "undefined"
UNPARSABLE_ARGUMENT = "can't parse argument text"

_PLACEHOLDER = re.compile(r"\{(\d+)\}")
# Longer indices cannot name an argument.
_MAX_INDEX_DIGITS = 9


def _describe_exception(exc: BaseException) -> dict:
    return {
        "message": str(exc),
        "name": type(exc).__name__,
        "stack": "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        ),
    }


def _to_json(value: Any) -> str:
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError, RecursionError) as e:
        raise FormatError(f"Cannot serialize {type(value).__name__}: {e}") from e


def _serialize(value: Any) -> str:
    if isinstance(value, BaseException):
        return _to_json(_describe_exception(value))
    
    if value is None or isinstance(value, (Mapping, list, tuple)):
        return _to_json(value)
    
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _to_json(dataclasses.asdict(value))
    
    if hasattr(value, "__dict__"):
        return _to_json(vars(value))
    
    raise FormatError(f"No text representation for {type(value).__name__}")


def stringify_arg(value: Any) -> str:
    """
    Convert one substitution argument to text.
    
    Strings pass through, numbers and booleans use str(), everything
    else is serialized as compact JSON. Never raises: anything that
    cannot be serialized becomes UNPARSABLE_ARGUMENT.
    
    Args:
        value: Argument to convert
    
    Returns:
        Text representation
    """
    if isinstance(value, str):
        return value
    
    if isinstance(value, (bool, int, float)):
        return str(value)
    
    try:
        return _serialize(value)
    except FormatError:
        return UNPARSABLE_ARGUMENT
    except Exception:
        # user __dict__/asdict hooks may raise anything
        return UNPARSABLE_ARGUMENT


def substitute(message: str, args: Sequence[Any]) -> str:
    """
    Resolve ``{n}`` placeholders in a single pass.
    
    Args:
        message: Template text
        args: Substitution arguments
    
    Returns:
        Template with every placeholder replaced
    """
    texts = [stringify_arg(arg) for arg in args]
    
    def replace(match: "re.Match[str]") -> str:
        digits = match.group(1)
        if len(digits) > _MAX_INDEX_DIGITS:
            return MISSING_VALUE
        index = int(digits) - 1
        if 0 <= index < len(texts):
            return texts[index]
        return MISSING_VALUE
    
    return _PLACEHOLDER.sub(replace, message)


def timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and Z suffix."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_line(
    message: Any,
    severity: Severity,
    args: Sequence[Any] = (),
    now: Optional[datetime] = None,
) -> str:
    """
    Build a finished log line.
    
    Args:
        message: Raw message template (non-strings are stringified first)
        severity: Entry severity
        args: Substitution arguments for {1}, {2}, ...
        now: Timestamp override
    
    Returns:
        "<timestamp> - <SEVERITY>: <resolved message>"
    """
    template = message if isinstance(message, str) else stringify_arg(message)
    body = substitute(template, args)
    return f"{timestamp(now)} - {Severity.parse(severity).label}: {body}"
