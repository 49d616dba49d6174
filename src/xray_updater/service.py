"""Service control through systemd or a legacy init script.

``detect_supervisor()`` picks the mechanism present on the host once per
run. Stop failures are logged and ignored (the service may simply not be
running). Start failures raise ``ServiceControlDegradedError`` so callers
can report a replaced-but-unconfirmed service without failing the run.
"""

from __future__ import annotations

import asyncio
import shutil
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from xray_updater.constants import (
    COMMAND_TIMEOUT_SECONDS,
    DEFAULT_INIT_SCRIPT,
    DEFAULT_SERVICE_NAME,
    SYSTEMCTL,
)
from xray_updater.errors import ServiceControlDegradedError
from xray_updater.logging import get_logger

log = get_logger("xray_updater.service")


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a service-control command."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def run_command(
    argv: Sequence[str],
    timeout: float = COMMAND_TIMEOUT_SECONDS,
) -> CommandResult:
    """Run ``argv`` without a shell; spawn errors and timeouts become failures."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        log.warning("command_spawn_failed", cmd=list(argv), error=str(exc))
        return CommandResult(returncode=127, stderr=str(exc))

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        log.warning("command_timeout", cmd=list(argv), timeout=timeout)
        return CommandResult(returncode=-1, stderr=f"timed out after {timeout}s")

    result = CommandResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    if not result.ok:
        log.warning(
            "command_failed",
            cmd=list(argv),
            returncode=result.returncode,
            stderr=result.stderr[:500],
        )
    return result


class ServiceSupervisor(ABC):
    """Stops and starts the managed service."""

    mechanism: str = "unknown"

    def __init__(self, service_name: str, timeout: float = COMMAND_TIMEOUT_SECONDS) -> None:
        self.service_name = service_name
        self._timeout = timeout

    @abstractmethod
    def command(self, action: str) -> list[str]:
        """Return the argv performing ``action`` (``stop`` or ``start``)."""

    async def stop(self) -> bool:
        """Stop the service. Returns False on failure instead of raising."""
        result = await run_command(self.command("stop"), timeout=self._timeout)
        if result.ok:
            log.info("service_stopped", service=self.service_name, via=self.mechanism)
            return True
        log.warning(
            "service_stop_failed_ignored",
            service=self.service_name,
            via=self.mechanism,
            returncode=result.returncode,
        )
        return False

    async def start(self) -> None:
        """Start the service.

        Raises:
            ServiceControlDegradedError: the start command did not succeed.
        """
        result = await run_command(self.command("start"), timeout=self._timeout)
        if not result.ok:
            raise ServiceControlDegradedError(
                self.service_name,
                result.stderr.strip() or f"exit status {result.returncode}",
            )
        log.info("service_started", service=self.service_name, via=self.mechanism)


class SystemSupervisor(ServiceSupervisor):
    """systemd via ``systemctl <action> <service>``."""

    mechanism = "systemd"

    def __init__(
        self,
        service_name: str = DEFAULT_SERVICE_NAME,
        systemctl: str = SYSTEMCTL,
        timeout: float = COMMAND_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(service_name, timeout)
        self._systemctl = systemctl

    def command(self, action: str) -> list[str]:
        return [self._systemctl, action, self.service_name]


class InitScriptSupervisor(ServiceSupervisor):
    """SysV/OpenWrt style ``<script> <action>``."""

    mechanism = "init.d"

    def __init__(
        self,
        script: str = DEFAULT_INIT_SCRIPT,
        service_name: str = DEFAULT_SERVICE_NAME,
        timeout: float = COMMAND_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(service_name, timeout)
        self.script = script

    def command(self, action: str) -> list[str]:
        return [self.script, action]


def detect_supervisor(
    service_name: str = DEFAULT_SERVICE_NAME,
    init_script: str = DEFAULT_INIT_SCRIPT,
    timeout: float = COMMAND_TIMEOUT_SECONDS,
    which: Callable[[str], str | None] = shutil.which,
) -> ServiceSupervisor:
    """Return the supervisor for whichever mechanism this host provides."""
    systemctl = which(SYSTEMCTL)
    if systemctl:
        supervisor: ServiceSupervisor = SystemSupervisor(service_name, systemctl, timeout)
    else:
        supervisor = InitScriptSupervisor(init_script, service_name, timeout)
    log.info("service_supervisor_selected", via=supervisor.mechanism, service=service_name)
    return supervisor
