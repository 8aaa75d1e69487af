"""Scrub credentials from structured log events.

Only the logger calls this. Request handling and run results keep raw
values so command output reaches the operator unchanged.
"""

from __future__ import annotations

import re
from typing import Any

MASK = "[REDACTED]"

# Matched against free text inside log fields (error messages, paths, notes).
_SECRET_SHAPES: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b[Bb]earer\s+\S+"),
    # Session tokens: base64url of a JSON object, a dot, then the MAC.
    re.compile(r"\beyJ[\w-]{8,}\.[\w-]{20,}"),
    re.compile(r"-----BEGIN [A-Z0-9 ]*PRIVATE KEY-----"),
    # Generated passwords printed by adduser/resetpwd.
    re.compile(r"(?i)(password is\s+)\S+"),
)

# Field names whose values are never logged, compared case-insensitively.
SENSITIVE_FIELDS = frozenset(
    {
        "pass",
        "password",
        "admin_pass",
        "admin_password",
        "session_secret",
        "secret",
        "cookie",
        "authorization",
    }
)


def _mask_match(match: re.Match[str]) -> str:
    prefix = match.group(1) if match.re.groups else ""
    return f"{prefix}{MASK}"


def redact_text(value: str) -> str:
    text = str(value or "")
    for pattern in _SECRET_SHAPES:
        text = pattern.sub(_mask_match, text)
    return text


def is_sensitive_field(name: Any) -> bool:
    return str(name).casefold() in SENSITIVE_FIELDS


def redact_obj(obj: Any) -> Any:
    """Return a JSON-ready copy of ``obj`` with secrets masked."""
    if obj is None or isinstance(obj, (bool, int, float)):
        return obj
    if isinstance(obj, str):
        return redact_text(obj)
    if isinstance(obj, dict):
        return {k: MASK if is_sensitive_field(k) else redact_obj(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [redact_obj(v) for v in obj]
    return redact_text(str(obj))
