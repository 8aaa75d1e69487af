"""Structured gateway events as JSON lines.

Every event is one JSON object with sorted keys, passed through redaction
first. With a log directory the events go to ``<dir>/gateway.jsonl``; once
that file reaches ``rotate_max_bytes`` it is moved into ``<dir>/archive/``
and a fresh file is started. Archived files are never deleted here.
Without a log directory events go to stderr.
"""

from __future__ import annotations

import json
import sys
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TextIO

from snac_admin.kernel.redaction import redact_obj

DEFAULT_ROTATE_BYTES = 5_000_000


def new_run_id() -> str:
    return uuid.uuid4().hex[:16]


def _archive_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")


@dataclass(frozen=True)
class JsonlLoggerConfig:
    path: Path | None
    rotate_max_bytes: int = DEFAULT_ROTATE_BYTES


class JsonlLogger:
    def __init__(self, cfg: JsonlLoggerConfig, *, stream: TextIO | None = None) -> None:
        self._cfg = cfg
        self._stream = stream
        self._lock = threading.Lock()
        if cfg.path is not None:
            cfg.path.parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_log_dir(cls, log_dir: Path | None, *, name: str = "gateway") -> "JsonlLogger":
        path = Path(log_dir) / f"{name}.jsonl" if log_dir is not None else None
        return cls(JsonlLoggerConfig(path=path))

    @property
    def path(self) -> str | None:
        return None if self._cfg.path is None else str(self._cfg.path)

    def _archive_full_file(self, path: Path) -> None:
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            return
        if size < self._cfg.rotate_max_bytes:
            return
        archive_dir = path.parent / "archive"
        archive_dir.mkdir(exist_ok=True)
        target = archive_dir / f"{path.stem}.{_archive_stamp()}{path.suffix}"
        if not target.exists():
            path.replace(target)

    def _emit(self, line: str) -> None:
        path = self._cfg.path
        if path is None:
            out = self._stream or sys.stderr
            print(line, file=out, flush=True)
            return
        self._archive_full_file(path)
        with path.open("a", encoding="utf-8") as fh:
            fh.write(f"{line}\n")

    def event(
        self,
        *,
        event: str,
        run_id: str | None = None,
        level: str = "info",
        ts_utc: str | None = None,
        **fields: Any,
    ) -> None:
        record: dict[str, Any] = dict(fields)
        record.update(
            ts_utc=ts_utc or datetime.now(timezone.utc).isoformat(),
            level=level or "info",
            event=event,
            run_id=run_id or "",
        )
        line = json.dumps(redact_obj(record), sort_keys=True, default=str)
        with self._lock:
            try:
                self._emit(line)
            except OSError:
                # Logging failures never fail the request being logged.
                return
