"""Gateway facade shared by the HTTP routes and the CLI.

Holds everything that is fixed at startup (settings, signing key, registry,
supervisor, limits, logger) and exposes the operations the routes need.
Handlers reach it through ``request.app.state.facade``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from snac_admin.commands.registry import describe_commands, get_command
from snac_admin.commands.validators import build_argv
from snac_admin.kernel.config import GatewaySettings
from snac_admin.kernel.errors import ArgumentError, CommandNotAllowed
from snac_admin.kernel.logging import JsonlLogger, new_run_id
from snac_admin.kernel.session import SessionCodec, check_login, constant_time_equals
from snac_admin.runtime.limits import RunSlots, SlidingWindowRateLimiter
from snac_admin.runtime.supervisor import ProcessSupervisor, RunResult


@dataclass(frozen=True)
class RunOutcome:
    status_code: int
    payload: dict[str, Any]
    result: RunResult | None = field(default=None)


class GatewayFacade:
    def __init__(
        self,
        settings: GatewaySettings,
        *,
        logger: JsonlLogger | None = None,
        supervisor: ProcessSupervisor | None = None,
    ) -> None:
        self._settings = settings
        self._codec = SessionCodec(settings.session_secret, ttl_ms=settings.session_ttl_ms)
        self._supervisor = supervisor or ProcessSupervisor(
            settings.executable,
            settings.basedir,
            timeout_s=settings.timeout_s,
        )
        self._logger = logger or JsonlLogger.from_log_dir(settings.log_dir)
        self.rate_limiter = SlidingWindowRateLimiter(settings.rate_limit, settings.rate_window_s)
        self.run_slots = RunSlots(settings.max_concurrent_runs)

    @property
    def settings(self) -> GatewaySettings:
        return self._settings

    @property
    def codec(self) -> SessionCodec:
        return self._codec

    @property
    def logger(self) -> JsonlLogger:
        return self._logger

    def is_authenticated(self, token: str | None) -> bool:
        subject = self._codec.verify(token)
        return subject is not None and constant_time_equals(subject, self._settings.admin_user)

    def login(self, user: str, password: str, *, client: str = "") -> str | None:
        ok = check_login(
            user,
            password,
            admin_user=self._settings.admin_user,
            admin_password=self._settings.admin_password,
        )
        self._logger.event(event="auth.login", outcome="ok" if ok else "failed", client=client)
        if not ok:
            return None
        return self._codec.issue(self._settings.admin_user)

    def logout(self, *, client: str = "") -> None:
        self._logger.event(event="auth.logout", client=client)

    def commands_listing(self) -> dict[str, Any]:
        return {
            "basedir": str(self._settings.basedir),
            "executablePath": self._settings.executable,
            "commands": describe_commands(),
        }

    def _reject(self, run_id: str, command: Any, error: str, *, client: str, status_code: int = 400) -> RunOutcome:
        self._logger.event(
            event="run.rejected",
            run_id=run_id,
            level="warning",
            command=command if isinstance(command, str) else repr(command),
            error=error,
            client=client,
        )
        return RunOutcome(status_code, {"ok": False, "error": error})

    async def run(self, command: Any, raw_args: Any, *, client: str = "") -> RunOutcome:
        run_id = new_run_id()
        try:
            spec = get_command(command)
            args = build_argv(spec, raw_args)
        except (CommandNotAllowed, ArgumentError) as exc:
            return self._reject(run_id, command, str(exc), client=client)

        if not self.run_slots.try_acquire():
            return self._reject(run_id, command, "Too many concurrent runs", client=client, status_code=429)
        try:
            result = await self._supervisor.run(spec.name, args)
        finally:
            self.run_slots.release()

        self._logger.event(
            event="run.finished",
            run_id=run_id,
            level="info" if result.ok else "warning",
            command=spec.name,
            argv=list(result.argv),
            code=result.code,
            signal=result.signal,
            timed_out=result.timed_out,
            duration_ms=result.duration_ms,
            client=client,
        )
        return RunOutcome(200, result.to_dict(), result)


def create_facade(settings: GatewaySettings, **kwargs: Any) -> GatewayFacade:
    return GatewayFacade(settings, **kwargs)
