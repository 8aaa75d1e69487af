"""Kernel error types."""

from __future__ import annotations


class GatewayError(RuntimeError):
    """Base error for the admin gateway."""


class ConfigError(GatewayError):
    """Raised when startup configuration is missing or invalid."""


class CommandNotAllowed(GatewayError):
    """Raised when a command name is not in the allowlist."""


class ArgumentError(GatewayError):
    """Raised when a supplied argument fails validation.

    The message is safe to return to the caller verbatim.
    """

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field
