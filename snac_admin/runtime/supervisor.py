"""Supervised invocation of the snac executable.

The child gets ``[command, basedir, *args]`` as discrete argv elements,
stdin closed, and both output streams captured. A wall-clock timeout is the
only cancellation mechanism; on expiry the child's process group is sent
SIGKILL. Callers always receive a RunResult, never an exception.
"""

from __future__ import annotations

import asyncio
import codecs
import os
import signal
import time
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Mapping, Sequence

from snac_admin.kernel.config import BASEDIR_ENV

SPAWN_FAILED_CODE = 127
READ_CHUNK_BYTES = 8192
# Upper bound on draining pipes after the child is gone; a grandchild that
# escaped the process group could otherwise hold them open forever.
DRAIN_GRACE_S = 2.0


@dataclass(frozen=True)
class RunResult:
    argv: tuple[str, ...]
    code: int | None
    signal: str | None
    stdout: str
    stderr: str
    timed_out: bool = False
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.code == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "command": self.argv[0] if self.argv else "",
            "argv": list(self.argv),
            "code": self.code,
            "signal": self.signal,
            "stdout": self.stdout,
            "stderr": self.stderr,
        }


def build_child_env(base: Mapping[str, str] | None = None) -> dict[str, str]:
    # snac treats SNAC_BASEDIR as an override and then stops consuming the
    # positional basedir, which shifts every following argument by one.
    env = dict(os.environ if base is None else base)
    env.pop(BASEDIR_ENV, None)
    return env


def _signal_name(returncode: int | None) -> str | None:
    if returncode is None or returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.monotonic() - started) * 1000))


@dataclass
class _Capture:
    chunks: list[str] = field(default_factory=list)

    def append(self, text: str) -> None:
        self.chunks.append(text)

    def text(self) -> str:
        return "".join(self.chunks)


async def _pump(stream: asyncio.StreamReader | None, sink: _Capture) -> None:
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(READ_CHUNK_BYTES)
        if not chunk:
            break
        sink.append(decoder.decode(chunk))
    tail = decoder.decode(b"", final=True)
    if tail:
        sink.append(tail)


class _Child:
    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self.process = process
        self.stdout = _Capture()
        self.stderr = _Capture()
        self._readers = [
            asyncio.ensure_future(_pump(process.stdout, self.stdout)),
            asyncio.ensure_future(_pump(process.stderr, self.stderr)),
        ]

    @property
    def alive(self) -> bool:
        return self.process.returncode is None

    def kill(self) -> None:
        if not self.alive:
            return
        if os.name != "nt":
            with suppress(ProcessLookupError, PermissionError):
                os.killpg(self.process.pid, signal.SIGKILL)
                return
        with suppress(ProcessLookupError):
            self.process.kill()

    async def drain(self) -> None:
        done, pending = await asyncio.wait(self._readers, timeout=DRAIN_GRACE_S)
        for task in pending:
            task.cancel()
        for task in pending:
            with suppress(asyncio.CancelledError):
                await task
        for task in done:
            # Re-raises reader errors.
            if not task.cancelled():
                task.result()

    async def close(self) -> None:
        self.kill()
        try:
            await self.drain()
        finally:
            await self.process.wait()


async def _spawn(executable: str, argv: Sequence[str], env: Mapping[str, str]) -> asyncio.subprocess.Process:
    return await asyncio.create_subprocess_exec(
        executable,
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=dict(env),
        start_new_session=os.name != "nt",
    )


@asynccontextmanager
async def _supervised(process: asyncio.subprocess.Process) -> AsyncIterator[_Child]:
    child = _Child(process)
    try:
        yield child
    finally:
        await child.close()


async def run_process(
    executable: str,
    basedir: str | Path,
    command: str,
    args: Sequence[str],
    *,
    timeout_s: float,
    env: Mapping[str, str] | None = None,
) -> RunResult:
    argv = (command, str(basedir), *args)
    started = time.monotonic()
    try:
        process = await _spawn(executable, argv, build_child_env(env))
    except (OSError, ValueError) as exc:
        # ValueError: exec rejects argv or env strings holding NUL bytes.
        return RunResult(
            argv=argv,
            code=SPAWN_FAILED_CODE,
            signal=None,
            stdout="",
            stderr=f"\n{exc}",
            duration_ms=_elapsed_ms(started),
        )

    timed_out = False
    async with _supervised(process) as child:
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout_s)
        except asyncio.TimeoutError:
            timed_out = True
            child.stderr.append(f"\n[admin] Timeout after {int(timeout_s * 1000)}ms; killing process.\n")
            child.kill()
            await process.wait()
        await child.drain()

    returncode = process.returncode
    return RunResult(
        argv=argv,
        code=returncode if returncode is not None and returncode >= 0 else None,
        signal=_signal_name(returncode),
        stdout=child.stdout.text(),
        stderr=child.stderr.text(),
        timed_out=timed_out,
        duration_ms=_elapsed_ms(started),
    )


class ProcessSupervisor:
    def __init__(self, executable: str, basedir: str | Path, *, timeout_s: float) -> None:
        self.executable = executable
        self.basedir = str(basedir)
        self.timeout_s = float(timeout_s)

    async def run(self, command: str, args: Sequence[str]) -> RunResult:
        return await run_process(
            self.executable,
            self.basedir,
            command,
            args,
            timeout_s=self.timeout_s,
        )
