"""Argument validation ahead of process invocation.

Each validated value becomes exactly one argv element. Nothing here ever
builds a shell string.
"""

from __future__ import annotations

import re
from typing import Any, Mapping
from urllib.parse import urlsplit

from snac_admin.commands.registry import ArgKind, ArgSpec, CommandSpec
from snac_admin.kernel.errors import ArgumentError

_IDENTIFIER_RE = re.compile(r"[A-Za-z0-9_]+")
_URL_FORBIDDEN_RE = re.compile(r"[\s\x00-\x1f\x7f]")
_URL_SCHEMES = {"http", "https"}


def _check_identifier(spec: ArgSpec, value: str) -> str:
    if not _IDENTIFIER_RE.fullmatch(value):
        raise ArgumentError(f"{spec.name} must match [A-Za-z0-9_]+", field=spec.name)
    return value


def _check_url(spec: ArgSpec, value: str) -> str:
    invalid = ArgumentError(f"{spec.name} must be a valid URL", field=spec.name)
    if _URL_FORBIDDEN_RE.search(value):
        raise invalid
    try:
        parts = urlsplit(value)
        parts.port  # raises on a malformed port
    except ValueError as exc:
        raise invalid from exc
    if not parts.scheme:
        raise invalid
    if parts.scheme.lower() not in _URL_SCHEMES:
        raise ArgumentError(f"{spec.name} must be http(s)", field=spec.name)
    if not parts.netloc or not parts.hostname:
        raise invalid
    return value


def _check_freetext(spec: ArgSpec, value: str) -> str:
    if not value:
        raise ArgumentError(f"{spec.name} must not be empty", field=spec.name)
    return value


_KIND_CHECKS = {
    ArgKind.IDENTIFIER: _check_identifier,
    ArgKind.URL: _check_url,
    ArgKind.FREETEXT: _check_freetext,
}


def validate_arg(spec: ArgSpec, raw: Any) -> str | None:
    """Return the normalized value, or None when an optional arg is absent."""
    if raw is None or (isinstance(raw, str) and raw == ""):
        if spec.required:
            raise ArgumentError(f"Missing {spec.name}", field=spec.name)
        return None
    if not isinstance(raw, str):
        raise ArgumentError(f"{spec.name} must be a string", field=spec.name)
    if "\x00" in raw:
        raise ArgumentError(f"{spec.name} must not contain NUL bytes", field=spec.name)
    value = raw.strip()
    if spec.max_len and len(value) > spec.max_len:
        raise ArgumentError(f"{spec.name} too long", field=spec.name)
    return _KIND_CHECKS[spec.kind](spec, value)


def build_argv(command: CommandSpec, raw_args: Any) -> list[str]:
    if raw_args is None:
        raw_args = {}
    if not isinstance(raw_args, Mapping):
        raise ArgumentError("args must be an object", field="args")
    argv: list[str] = []
    for spec in command.args:
        value = validate_arg(spec, raw_args.get(spec.name))
        if value is not None:
            argv.append(value)
    return argv
