"""Environment-driven gateway settings."""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from snac_admin.kernel.errors import ConfigError
from snac_admin.kernel.session import DEFAULT_TTL_MS, derive_session_secret

BASEDIR_ENV = "SNAC_BASEDIR"
BASEDIR_MARKER = "server.json"
SESSION_COOKIE_NAME = "snac_admin"

# Project checkout that holds both this package and a locally built executable.
_REPO_ROOT = Path(__file__).resolve().parents[2]


class GatewaySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    admin_user: str = Field(default="admin", min_length=1)
    admin_password: str = Field(min_length=1)
    session_secret: str = Field(min_length=1)
    session_ttl_ms: int = Field(default=DEFAULT_TTL_MS, gt=0)
    host: str = "127.0.0.1"
    port: int = Field(default=3939, gt=0, lt=65536)
    basedir: Path
    executable: str = Field(min_length=1)
    timeout_ms: int = Field(default=60_000, gt=0)
    cookie_secure: bool = False
    rate_limit: int = Field(default=120, gt=0)
    rate_window_ms: int = Field(default=60_000, gt=0)
    max_concurrent_runs: int = Field(default=0, ge=0)
    log_dir: Path | None = None

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def rate_window_s(self) -> float:
        return self.rate_window_ms / 1000.0

    def public_summary(self) -> dict[str, Any]:
        return {
            "admin_user": self.admin_user,
            "host": self.host,
            "port": self.port,
            "basedir": str(self.basedir),
            "executable": self.executable,
            "timeout_ms": self.timeout_ms,
            "session_ttl_ms": self.session_ttl_ms,
            "cookie_secure": self.cookie_secure,
            "rate_limit": self.rate_limit,
            "rate_window_ms": self.rate_window_ms,
            "max_concurrent_runs": self.max_concurrent_runs,
            "log_dir": str(self.log_dir) if self.log_dir else None,
        }


def _get(env: Mapping[str, str], name: str, fallback: str = "") -> str:
    value = env.get(name)
    return fallback if value is None or value == "" else value


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def resolve_executable(env: Mapping[str, str], *, repo_root: Path | None = None) -> str:
    root = repo_root or _REPO_ROOT
    explicit = _get(env, "SNAC_BIN")
    if explicit:
        candidate = Path(explicit).expanduser()
        if not candidate.is_absolute():
            candidate = (root / candidate).resolve()
        return str(candidate)
    repo_bin = root / "snac"
    if _is_executable(repo_bin):
        return str(repo_bin)
    found = shutil.which("snac")
    return found or "snac"


def check_basedir(basedir: Path) -> Path:
    marker = basedir / BASEDIR_MARKER
    if not marker.is_file():
        raise ConfigError(f"{BASEDIR_ENV} does not contain {BASEDIR_MARKER}: {marker}")
    return basedir


def load_settings(environ: Mapping[str, str] | None = None) -> GatewaySettings:
    """Build settings from the environment, refusing to start on bad input."""
    env = os.environ if environ is None else environ
    password = _get(env, "ADMIN_PASS")
    if not password:
        raise ConfigError("ADMIN_PASS is required")
    basedir_raw = _get(env, BASEDIR_ENV)
    if not basedir_raw:
        raise ConfigError(f"{BASEDIR_ENV} is required")
    basedir = check_basedir(Path(basedir_raw).expanduser().resolve())
    log_dir = _get(env, "ADMIN_LOG_DIR")
    raw: dict[str, Any] = {
        "admin_user": _get(env, "ADMIN_USER", "admin"),
        "admin_password": password,
        "session_secret": derive_session_secret(_get(env, "ADMIN_SESSION_SECRET"), password),
        "session_ttl_ms": _get(env, "ADMIN_SESSION_TTL_MS", str(DEFAULT_TTL_MS)),
        "host": _get(env, "HOST", "127.0.0.1"),
        "port": _get(env, "PORT", "3939"),
        "basedir": basedir,
        "executable": resolve_executable(env),
        "timeout_ms": _get(env, "SNAC_TIMEOUT_MS", "60000"),
        "cookie_secure": _get(env, "COOKIE_SECURE", "0") == "1",
        "rate_limit": _get(env, "ADMIN_RATE_LIMIT", "120"),
        "rate_window_ms": _get(env, "ADMIN_RATE_WINDOW_MS", "60000"),
        "max_concurrent_runs": _get(env, "ADMIN_MAX_CONCURRENT_RUNS", "0"),
        "log_dir": Path(log_dir).expanduser() if log_dir else None,
    }
    try:
        return GatewaySettings.model_validate(raw)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise ConfigError(f"Invalid settings: {', '.join(fields)}") from exc
