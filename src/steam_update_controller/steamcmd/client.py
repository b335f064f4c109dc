"""Update engine: build ID comparison, update application and validation.

Lifecycle:
1. ``check_update()`` compares the manifest build ID with the latest
   public build reported by ``app_info_print``. It never downloads.
2. ``apply_update()`` runs ``app_update`` and recovers once, in place,
   from the 0x6 app state error by clearing ``steamapps``.
3. ``validate_update()`` runs ``app_update ... validate``.

SteamCMD's exit code alone is never trusted; a successful run must also
print the success marker.
"""

from __future__ import annotations

import contextlib
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from steam_update_controller.logging import get_logger
from steam_update_controller.steamcmd.errors import (
    BuildIDQueryError,
    SteamCMDError,
    UpdateFailedError,
    ValidationFailedError,
)
from steam_update_controller.steamcmd.installation import Installation
from steam_update_controller.steamcmd.parsing import (
    has_corruption_signature,
    has_success_marker,
    parse_app_info_build_id,
)
from steam_update_controller.steamcmd.runner import CommandResult, SteamCMDRunner
from steam_update_controller.steamcmd.scripts import (
    render_app_info_script,
    render_update_script,
    write_script,
)

log = get_logger("steam_update_controller.steamcmd.client")

APP_INFO_SCRIPT = "app_info_check.txt"
VALIDATE_SCRIPT = "validate_script.txt"


class EngineState(Enum):
    """Where the engine is in the update lifecycle."""

    IDLE = "idle"
    CHECKING_INSTALL_STATE = "checking_install_state"
    INITIAL_INSTALL_NEEDED = "initial_install_needed"
    COMPARING_BUILD_IDS = "comparing_build_ids"
    UP_TO_DATE = "up_to_date"
    UPDATE_NEEDED = "update_needed"
    APPLYING = "applying"
    SUCCEEDED = "succeeded"
    CORRUPTION_DETECTED = "corruption_detected"
    FAILED = "failed"
    VALIDATING = "validating"
    VALIDATION_SUCCEEDED = "validation_succeeded"
    VALIDATION_FAILED = "validation_failed"


class AttemptOutcome(Enum):
    """Outcome of one ``app_update`` run."""

    SUCCEEDED = "succeeded"
    CORRUPTION_DETECTED = "corruption_detected"
    FAILED = "failed"


@dataclass
class UpdateAttempt:
    """Result of one ``apply_update()`` call.

    Returned on success; attached to ``UpdateFailedError.attempt`` on
    failure.
    """

    outcome: AttemptOutcome
    output: str
    retry_count: int = 0
    recovered: bool = False
    initial_install: bool = False
    completed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "retry_count": self.retry_count,
            "recovered": self.recovered,
            "initial_install": self.initial_install,
            "completed_at": self.completed_at,
            "output": self.output[-2000:],
        }


class SteamCMDClient:
    """Drives SteamCMD against one installation."""

    def __init__(
        self,
        installation: Installation,
        runner: SteamCMDRunner,
        steam_app_id: str,
        update_script: str = "tf_update.txt",
    ) -> None:
        self._installation = installation
        self._runner = runner
        self._app_id = steam_app_id
        self._update_script = update_script
        self._state = EngineState.IDLE

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def installation(self) -> Installation:
        return self._installation

    # ------------------------------------------------------------------
    # Check for updates
    # ------------------------------------------------------------------

    async def check_update(self) -> bool:
        """Return True if the installation needs an update.

        Only reads local files and queries build metadata; no download
        is ever started from here.
        """
        self._state = EngineState.CHECKING_INSTALL_STATE
        if not self._installation.is_installed():
            self._state = EngineState.INITIAL_INSTALL_NEEDED
            log.info("game_not_installed", path=str(self._installation.game_dir))
            return True

        installed = self._installation.installed_build_id()
        if not installed:
            self._state = EngineState.UPDATE_NEEDED
            log.info("manifest_build_id_missing", path=str(self._installation.manifest_path))
            return True

        self._state = EngineState.COMPARING_BUILD_IDS
        latest = await self.latest_build_id()
        log.debug("build_ids", installed=installed, latest=latest)

        if installed != latest:
            self._state = EngineState.UPDATE_NEEDED
            log.info("update_available", installed=installed, latest=latest)
            return True

        self._state = EngineState.UP_TO_DATE
        log.info("game_up_to_date", build_id=installed)
        return False

    async def latest_build_id(self) -> str:
        """Query SteamCMD for the latest public build ID without downloading."""
        script_path = self._installation.root / APP_INFO_SCRIPT
        write_script(script_path, render_app_info_script(self._app_id))
        try:
            result = await self._runner.run_script(script_path, "app-info")
        finally:
            with contextlib.suppress(FileNotFoundError):
                script_path.unlink()

        if not result.ok:
            raise BuildIDQueryError(
                f"failed to query app info (exit {result.returncode})",
                output=result.output,
            )
        return parse_app_info_build_id(result.output, self._app_id)

    # ------------------------------------------------------------------
    # Apply update
    # ------------------------------------------------------------------

    async def apply_update(self, retry_count: int = 0) -> UpdateAttempt:
        """Download and install the latest build.

        Raises UpdateFailedError if SteamCMD fails or does not report
        success, including after a 0x6 recovery attempt.
        """
        initial_install = not self._installation.is_installed()
        if initial_install:
            log.info("initial_install_starting", path=str(self._installation.root))
        else:
            log.info("update_starting", path=str(self._installation.root))

        self._state = EngineState.APPLYING
        script_path = self._installation.root / self._update_script
        write_script(script_path, render_update_script(self._installation.root, self._app_id))

        recovered = False
        corrupted = False
        try:
            result = await self._runner.run_script(script_path, "update")

            if has_corruption_signature(result.output):
                self._state = EngineState.CORRUPTION_DETECTED
                corrupted = True
                log.warning("steamcmd_state_0x6_detected", retry_count=retry_count)
                result = await self._recover(script_path)
                recovered = True
            elif not result.ok:
                raise UpdateFailedError(
                    f"steamcmd update failed (exit {result.returncode})",
                    output=result.output,
                )

            if not has_success_marker(result.output):
                raise UpdateFailedError(
                    "update may have failed, success marker missing",
                    output=result.output,
                )
        except SteamCMDError as exc:
            self._state = EngineState.FAILED
            if isinstance(exc, UpdateFailedError):
                exc.attempt = UpdateAttempt(
                    outcome=(
                        AttemptOutcome.CORRUPTION_DETECTED if corrupted else AttemptOutcome.FAILED
                    ),
                    output=exc.output,
                    retry_count=retry_count,
                    recovered=False,
                    initial_install=initial_install,
                    completed_at=datetime.now().isoformat(),
                )
            raise

        self._state = EngineState.SUCCEEDED
        log.info("update_applied", recovered=recovered, initial_install=initial_install)
        return UpdateAttempt(
            outcome=AttemptOutcome.SUCCEEDED,
            output=result.output,
            retry_count=retry_count,
            recovered=recovered,
            initial_install=initial_install,
            completed_at=datetime.now().isoformat(),
        )

    async def _recover(self, script_path: Path) -> CommandResult:
        """Clear ``steamapps`` and run the update script exactly once more."""
        try:
            self._installation.clear_metadata()
        except OSError as exc:
            raise UpdateFailedError(f"failed to clear steamapps for recovery: {exc}") from exc

        log.info("update_retrying_after_recovery")
        result = await self._runner.run_script(script_path, "update-retry")
        if not result.ok:
            raise UpdateFailedError(
                f"steamcmd update failed after 0x6 recovery (exit {result.returncode})",
                output=result.output,
            )
        return result

    # ------------------------------------------------------------------
    # Validate
    # ------------------------------------------------------------------

    async def validate_update(self) -> None:
        """Verify the installed files with ``app_update <id> validate``.

        Raises ValidationFailedError if SteamCMD reports issues.
        """
        log.info("validation_starting", path=str(self._installation.root))
        self._state = EngineState.VALIDATING
        script_path = self._installation.root / VALIDATE_SCRIPT
        write_script(
            script_path,
            render_update_script(self._installation.root, self._app_id, validate=True),
        )

        try:
            result = await self._runner.run_script(script_path, "validate")
            if not result.ok:
                raise ValidationFailedError(
                    f"validation failed (exit {result.returncode})",
                    output=result.output,
                )
            if not has_success_marker(result.output):
                raise ValidationFailedError("validation reported issues", output=result.output)
        except SteamCMDError:
            self._state = EngineState.VALIDATION_FAILED
            raise

        self._state = EngineState.VALIDATION_SUCCEEDED
        log.info("validation_passed")
