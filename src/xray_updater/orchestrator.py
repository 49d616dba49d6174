"""Update orchestrator: the state machine driving one update run.

Lifecycle:
1. Resolve the host architecture to a release artifact
2. Probe the installed binary for its version
3. Choose a direct or proxied route to GitHub
4. Query the latest release and resolve the artifact URL
5. Compare versions; stop here when they are equal
6. Download and verify the archive into a scoped staging directory
7. Stop the service, back up the live binary, swap in the new one,
   mark it executable, start the service
8. Remove the staging directory

Every step either completes or fails the whole run. Nothing goes out on the
network before steps 1 and 2 have passed. The live binary and backup slot
are only touched between steps 6 and 8, under the update lock.
"""

from __future__ import annotations

import contextlib
import functools
import os
import shutil
import stat
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from xray_updater.architecture import ArtifactDescriptor, detect_host_identifier, resolve_artifact
from xray_updater.constants import BACKUP_SUFFIX, EXTRACT_DIRNAME
from xray_updater.errors import (
    InstallFailedError,
    ServiceControlDegradedError,
    UpdaterError,
)
from xray_updater.fetcher import ArtifactFetcher, staging_directory
from xray_updater.lock import UpdateLock
from xray_updater.logging import get_logger
from xray_updater.models import UpdatePlan, UpdateResult, UpdateState
from xray_updater.network import NetworkConfig, negotiate_network
from xray_updater.release import ReleaseClient
from xray_updater.service import ServiceSupervisor, detect_supervisor
from xray_updater.versioning import VersionProbe, needs_update, normalize_version

if TYPE_CHECKING:
    from xray_updater.config import Settings

log = get_logger("xray_updater.orchestrator")

_EXECUTABLE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


def backup_path_for(binary_path: str | Path) -> Path:
    """Return the single backup slot next to the live binary."""
    live = Path(binary_path)
    return live.with_name(live.name + BACKUP_SUFFIX)


class UpdateOrchestrator:
    """Runs the check → fetch → verify → swap → restart sequence once."""

    def __init__(
        self,
        binary_path: str,
        release_client: ReleaseClient,
        fetcher: ArtifactFetcher,
        version_probe: VersionProbe | None = None,
        supervisor_factory: Callable[[], ServiceSupervisor] = detect_supervisor,
        lock: UpdateLock | None = None,
        architecture: str | None = None,
        staging_root: str | None = None,
        network_negotiator: Callable[[], Awaitable[NetworkConfig]] | None = None,
    ) -> None:
        self._binary_path = Path(binary_path)
        self._release_client = release_client
        self._fetcher = fetcher
        self._version_probe = version_probe or VersionProbe()
        self._supervisor_factory = supervisor_factory
        self._lock = lock
        self._architecture = architecture
        self._staging_root = staging_root
        self._network_negotiator = network_negotiator

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        architecture: str | None = None,
    ) -> UpdateOrchestrator:
        """Wire an orchestrator from settings.

        The route to GitHub is negotiated during the run, once the local
        checks have passed.
        """
        token = settings.github_token.get_secret_value() if settings.github_token else None
        network = NetworkConfig(
            connect_timeout=settings.connect_timeout,
            request_timeout=settings.request_timeout,
        )
        return cls(
            binary_path=settings.resolved_binary_path,
            release_client=ReleaseClient(
                settings.latest_release_url,
                network=network,
                github_token=token,
            ),
            fetcher=ArtifactFetcher(
                network=network,
                retries=settings.download_retries,
                retry_delay=settings.retry_delay,
                download_timeout=settings.download_timeout,
                executable_name=settings.executable_name,
            ),
            version_probe=VersionProbe(
                product_name=settings.product_name,
                version_flag=settings.version_flag,
                timeout=settings.command_timeout,
            ),
            supervisor_factory=lambda: detect_supervisor(
                settings.service_name,
                settings.init_script,
                settings.command_timeout,
            ),
            lock=UpdateLock(settings.lock_path),
            architecture=architecture,
            staging_root=settings.staging_root,
            network_negotiator=functools.partial(negotiate_network, settings),
        )

    @property
    def binary_path(self) -> Path:
        return self._binary_path

    @property
    def backup_path(self) -> Path:
        return backup_path_for(self._binary_path)

    # ------------------------------------------------------------------
    # Primary flow
    # ------------------------------------------------------------------

    async def run(self, check_only: bool = False) -> UpdateResult:
        """Execute one update run and return its terminal result.

        With ``check_only`` the run stops after the version comparison
        without touching the installation.
        """
        start = time.monotonic()
        result = UpdateResult()
        log.info("update_run_started", binary=str(self._binary_path), check_only=check_only)

        try:
            descriptor, plan = await self._plan(result)
            if not plan.needs_update:
                self._transition(result, UpdateState.UP_TO_DATE)
                log.info("update_not_needed", version=plan.current_version)
                return result
            if check_only:
                self._transition(result, UpdateState.UPDATE_AVAILABLE)
                log.info(
                    "update_available",
                    current=plan.current_version,
                    latest=plan.latest_version,
                )
                return result

            await self._apply(result, descriptor, plan)
            self._transition(result, UpdateState.UPDATED)
            log.info(
                "update_success",
                previous=plan.current_version,
                version=plan.latest_version,
                service_degraded=result.service_degraded,
            )
            return result

        except UpdaterError as exc:
            self._fail(result, exc)
            return result
        except Exception as exc:
            self._fail_unexpected(result, exc)
            return result
        finally:
            result.duration_seconds = round(time.monotonic() - start, 2)
            result.completed_at = datetime.now(UTC).isoformat()
            log.info(
                "update_run_finished",
                state=result.state.value,
                exit_code=result.exit_code,
                duration_seconds=result.duration_seconds,
            )

    async def _plan(self, result: UpdateResult) -> tuple[ArtifactDescriptor, UpdatePlan]:
        """Establish current and target state; no host mutation happens here."""
        self._transition(result, UpdateState.RESOLVING_ARCHITECTURE)
        identifier = self._architecture or detect_host_identifier()
        descriptor = resolve_artifact(identifier)
        result.architecture = identifier
        result.archive_filename = descriptor.archive_filename
        log.info(
            "architecture_resolved",
            architecture=identifier,
            archive=descriptor.archive_filename,
        )
        result.steps_completed.append("resolve_architecture")

        self._transition(result, UpdateState.PROBING_CURRENT_VERSION)
        current = await self._version_probe.probe(str(self._binary_path))
        result.current_version = current
        log.info("current_version", version=current)
        result.steps_completed.append("probe_current_version")

        if self._network_negotiator is not None:
            self._transition(result, UpdateState.NEGOTIATING_NETWORK)
            network = await self._network_negotiator()
            self._release_client.network = network
            self._fetcher.network = network
            log.info("network_selected", proxy=network.proxy)
            result.steps_completed.append("negotiate_network")

        self._transition(result, UpdateState.QUERYING_LATEST)
        metadata, download_url = await self._release_client.resolve(descriptor)
        result.latest_version = metadata.tag
        result.download_url = download_url
        log.info("latest_version", version=metadata.tag, url=download_url)
        result.steps_completed.append("query_latest")

        self._transition(result, UpdateState.COMPARING_VERSIONS)
        plan = UpdatePlan(
            current_version=current,
            latest_version=metadata.tag,
            download_url=download_url,
            needs_update=needs_update(current, metadata.tag),
        )
        log.info(
            "versions_compared",
            current=normalize_version(current),
            latest=normalize_version(metadata.tag),
            needs_update=plan.needs_update,
        )
        result.steps_completed.append("compare_versions")
        return descriptor, plan

    async def _apply(
        self,
        result: UpdateResult,
        descriptor: ArtifactDescriptor,
        plan: UpdatePlan,
    ) -> None:
        """Fetch, verify and install the new binary under the update lock."""
        self._transition(result, UpdateState.FETCHING)
        lock = self._lock if self._lock is not None else contextlib.nullcontext()

        with lock, staging_directory(self._staging_root) as staging:
            archive = staging / descriptor.archive_filename
            await self._fetcher.download(plan.download_url, archive)
            result.steps_completed.append("download")

            self._transition(result, UpdateState.VERIFYING)
            self._fetcher.verify_archive(archive)
            new_binary = self._fetcher.extract(archive, staging / EXTRACT_DIRNAME)
            result.steps_completed.append("verify")

            self._transition(result, UpdateState.STOPPING_SERVICE)
            supervisor = self._supervisor_factory()
            stopped = await supervisor.stop()
            result.steps_completed.append("stop_service" if stopped else "stop_service_ignored")

            try:
                self._transition(result, UpdateState.BACKING_UP)
                result.backup_path = str(self._backup())
                result.steps_completed.append("backup")

                self._transition(result, UpdateState.SWAPPING)
                self._swap(new_binary)
                result.steps_completed.append("swap")
            except InstallFailedError:
                # The previous binary is still live; bring the service back.
                await self._restart_previous(supervisor, result)
                raise

            self._transition(result, UpdateState.SETTING_PERMISSIONS)
            self._make_executable()
            result.steps_completed.append("set_permissions")

            self._transition(result, UpdateState.STARTING_SERVICE)
            try:
                await supervisor.start()
                result.steps_completed.append("start_service")
            except ServiceControlDegradedError as exc:
                result.service_degraded = True
                result.service_error = str(exc)
                log.error(
                    "service_start_degraded",
                    kind=exc.kind,
                    service=exc.service,
                    error=exc.reason,
                )

            self._transition(result, UpdateState.CLEANING_UP)
        result.steps_completed.append("cleanup")

    # ------------------------------------------------------------------
    # Backup / swap
    # ------------------------------------------------------------------

    def _backup(self) -> Path:
        """Replace the backup slot with a copy of the live binary."""
        backup = self.backup_path
        try:
            if backup.exists() or backup.is_symlink():
                log.info("backup_removing_previous", path=str(backup))
                backup.unlink()
            shutil.copy2(self._binary_path, backup)
        except OSError as exc:
            raise InstallFailedError("backup", str(exc)) from exc
        log.info("backup_created", path=str(backup))
        return backup

    def _swap(self, new_binary: Path) -> None:
        """Move ``new_binary`` over the live path.

        The file is first staged next to the live binary so the final
        ``os.replace`` is a same-filesystem rename; until then the previous
        binary stays in place.
        """
        live = self._binary_path
        staged = live.with_name(f".{live.name}.new")
        try:
            shutil.move(str(new_binary), str(staged))
            os.replace(staged, live)
        except OSError as exc:
            with contextlib.suppress(FileNotFoundError):
                staged.unlink()
            raise InstallFailedError("swap", str(exc)) from exc
        log.info("binary_replaced", path=str(live))

    def _make_executable(self) -> None:
        live = self._binary_path
        try:
            mode = live.stat().st_mode
            live.chmod(mode | _EXECUTABLE_BITS)
        except OSError as exc:
            raise InstallFailedError(
                "set_permissions",
                str(exc),
                manual_intervention_required=True,
            ) from exc
        log.info("binary_permissions_set", path=str(live))

    async def _restart_previous(self, supervisor: ServiceSupervisor, result: UpdateResult) -> None:
        log.warning("restarting_previous_binary", path=str(self._binary_path))
        try:
            await supervisor.start()
            result.steps_completed.append("restart_previous_binary")
        except ServiceControlDegradedError as exc:
            result.service_degraded = True
            result.service_error = str(exc)
            log.error("previous_binary_restart_failed", error=exc.reason)

    # ------------------------------------------------------------------
    # State bookkeeping
    # ------------------------------------------------------------------

    @staticmethod
    def _transition(result: UpdateResult, state: UpdateState) -> None:
        log.info("update_state", state=state.value, previous=result.state.value)
        result.state = state

    @staticmethod
    def _fail(result: UpdateResult, exc: UpdaterError) -> None:
        result.failed_step = result.state
        result.error_kind = exc.kind
        result.error = str(exc)
        result.error_exit_code = exc.exit_code
        if isinstance(exc, InstallFailedError):
            result.manual_intervention_required = exc.manual_intervention_required
        log.error(
            "update_failed",
            step=result.failed_step.value,
            kind=exc.kind,
            error=str(exc),
            manual_intervention_required=result.manual_intervention_required,
        )
        result.state = UpdateState.FAILED

    @staticmethod
    def _fail_unexpected(result: UpdateResult, exc: Exception) -> None:
        result.failed_step = result.state
        result.error_kind = type(exc).__name__
        result.error = f"Unexpected error: {exc}"
        log.exception("update_failed_unexpected", step=result.failed_step.value)
        result.state = UpdateState.FAILED
