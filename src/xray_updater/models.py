"""Data models for update runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from xray_updater.constants import EXIT_DEGRADED, EXIT_OK, EXIT_UNEXPECTED


class UpdateState(Enum):
    """States of the update state machine."""

    INIT = "init"
    RESOLVING_ARCHITECTURE = "resolving_architecture"
    PROBING_CURRENT_VERSION = "probing_current_version"
    NEGOTIATING_NETWORK = "negotiating_network"
    QUERYING_LATEST = "querying_latest"
    COMPARING_VERSIONS = "comparing_versions"
    UP_TO_DATE = "up_to_date"
    UPDATE_AVAILABLE = "update_available"
    FETCHING = "fetching"
    VERIFYING = "verifying"
    STOPPING_SERVICE = "stopping_service"
    BACKING_UP = "backing_up"
    SWAPPING = "swapping"
    SETTING_PERMISSIONS = "setting_permissions"
    STARTING_SERVICE = "starting_service"
    CLEANING_UP = "cleaning_up"
    UPDATED = "updated"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


# UPDATE_AVAILABLE is only terminal for check-only runs.
_TERMINAL_STATES = frozenset(
    {UpdateState.UP_TO_DATE, UpdateState.UPDATE_AVAILABLE, UpdateState.UPDATED, UpdateState.FAILED}
)


@dataclass(frozen=True)
class UpdatePlan:
    """Outcome of the version comparison for one run."""

    current_version: str
    latest_version: str
    download_url: str
    needs_update: bool


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class UpdateResult:
    """Result of an update run."""

    state: UpdateState = UpdateState.INIT
    architecture: str | None = None
    archive_filename: str | None = None
    current_version: str | None = None
    latest_version: str | None = None
    download_url: str | None = None
    backup_path: str | None = None
    failed_step: UpdateState | None = None
    error_kind: str | None = None
    error: str | None = None
    error_exit_code: int | None = None
    service_degraded: bool = False
    service_error: str | None = None
    manual_intervention_required: bool = False
    steps_completed: list[str] = field(default_factory=list)
    started_at: str = field(default_factory=_now_iso)
    completed_at: str | None = None
    duration_seconds: float | None = None

    @property
    def succeeded(self) -> bool:
        return self.state in (
            UpdateState.UP_TO_DATE,
            UpdateState.UPDATE_AVAILABLE,
            UpdateState.UPDATED,
        )

    @property
    def exit_code(self) -> int:
        """Process exit status for this result."""
        if self.state is UpdateState.FAILED:
            return self.error_exit_code or EXIT_UNEXPECTED
        if self.service_degraded:
            return EXIT_DEGRADED
        return EXIT_OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "architecture": self.architecture,
            "archive_filename": self.archive_filename,
            "current_version": self.current_version,
            "latest_version": self.latest_version,
            "download_url": self.download_url,
            "backup_path": self.backup_path,
            "failed_step": self.failed_step.value if self.failed_step else None,
            "error_kind": self.error_kind,
            "error": self.error,
            "service_degraded": self.service_degraded,
            "service_error": self.service_error,
            "manual_intervention_required": self.manual_intervention_required,
            "steps_completed": self.steps_completed,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_seconds": self.duration_seconds,
            "exit_code": self.exit_code,
        }
