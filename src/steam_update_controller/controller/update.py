"""Update cycle coordinator.

Each cycle runs check -> apply -> validate -> restart. A failure at any
stage counts against a retry budget held by the controller instance:
below the budget the controller backs off for ``retry_delay`` and lets
the next tick try again; at the budget the counter resets and the
failure is reported as exhausted. Any fully successful cycle resets the
counter.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, NoReturn

from steam_update_controller.controller.restart import (
    RestartError,
    RestartSummary,
    WorkloadRestarter,
)
from steam_update_controller.k8s.client import KubeApiError
from steam_update_controller.logging import get_logger
from steam_update_controller.steamcmd.client import SteamCMDClient
from steam_update_controller.steamcmd.errors import SteamCMDError, UpdateFailedError

log = get_logger("steam_update_controller.controller.update")


class CycleStage(Enum):
    CHECK = "check"
    APPLY = "apply"
    VALIDATE = "validate"
    RESTART = "restart"


class CycleStatus(Enum):
    UP_TO_DATE = "up_to_date"
    UPDATED = "updated"


class CycleFailedError(Exception):
    """Raised when a stage of an update cycle fails.

    Carries the stage, the retry attempt this failure used up, and the
    retry budget, along with the underlying error as ``__cause__``.
    """

    def __init__(
        self,
        stage: CycleStage,
        attempt: int,
        max_retries: int,
        error: BaseException,
        message: str | None = None,
    ) -> None:
        self.stage = stage
        self.attempt = attempt
        self.max_retries = max_retries
        self.error = error
        super().__init__(
            message or f"{stage.value} failed (attempt {attempt}/{max_retries}): {error}"
        )


class RetriesExhaustedError(CycleFailedError):
    """Raised when a failure uses up the last retry; the counter is reset."""

    def __init__(
        self, stage: CycleStage, attempt: int, max_retries: int, error: BaseException
    ) -> None:
        super().__init__(
            stage,
            attempt,
            max_retries,
            error,
            message=f"update failed after {max_retries} attempts, {stage.value} failed: {error}",
        )


@dataclass
class CycleResult:
    """Result of a successful update cycle."""

    status: CycleStatus
    steps_completed: list[str] = field(default_factory=list)
    restart: RestartSummary | None = None
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    completed_at: str | None = None

    @property
    def degraded(self) -> bool:
        return self.restart is not None and self.restart.degraded

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "steps_completed": self.steps_completed,
            "restart": self.restart.to_dict() if self.restart else None,
            "degraded": self.degraded,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


# Failures that count against the retry budget; anything else is a bug
_STAGE_ERRORS = (SteamCMDError, RestartError, KubeApiError, OSError, ValueError)


class UpdateController:
    """Keeps the game installation current and restarts its workloads.

    Typical flow:
    1. ``run()`` calls ``run_cycle()`` immediately, then every
       ``check_interval`` seconds until cancelled
    2. ``run_cycle()`` checks, applies, validates and restarts
    """

    def __init__(
        self,
        steam: SteamCMDClient,
        restarter: WorkloadRestarter,
        pod_selector: str,
        check_interval: float = 1800.0,
        max_retries: int = 3,
        retry_delay: float = 300.0,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._steam = steam
        self._restarter = restarter
        self._pod_selector = pod_selector
        self._check_interval = check_interval
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._retry_count = 0

    @property
    def retry_count(self) -> int:
        return self._retry_count

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Run update cycles until cancelled.

        Cycles never overlap: the next wait starts only after the
        previous cycle, including any retry backoff, has finished.
        """
        log.info(
            "update_controller_started",
            check_interval=self._check_interval,
            pod_selector=self._pod_selector,
        )
        try:
            while True:
                try:
                    await self.run_cycle()
                except RetriesExhaustedError as exc:
                    log.error(
                        "update_retries_exhausted", stage=exc.stage.value, error=str(exc.error)
                    )
                except CycleFailedError as exc:
                    log.error(
                        "update_cycle_failed",
                        stage=exc.stage.value,
                        attempt=exc.attempt,
                        max_retries=exc.max_retries,
                        error=str(exc.error),
                    )
                except Exception:
                    # Not a stage failure, so the retry budget is untouched
                    log.exception("update_cycle_crashed")
                await asyncio.sleep(self._check_interval)
        except asyncio.CancelledError:
            log.info("update_controller_stopping")
            raise

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> CycleResult:
        """Run one check -> apply -> validate -> restart cycle.

        Raises CycleFailedError (or RetriesExhaustedError) if any stage
        fails.
        """
        log.info("checking_for_updates")
        result = CycleResult(status=CycleStatus.UP_TO_DATE)

        try:
            needed = await self._steam.check_update()
        except _STAGE_ERRORS as exc:
            await self._handle_failure(CycleStage.CHECK, exc)
        result.steps_completed.append(CycleStage.CHECK.value)

        if not needed:
            log.info("no_update_available")
            return self._succeed(result)

        log.info("update_process_starting")
        try:
            attempt = await self._steam.apply_update(retry_count=self._retry_count)
        except _STAGE_ERRORS as exc:
            if isinstance(exc, UpdateFailedError) and exc.attempt is not None:
                log.warning("update_attempt_failed", **exc.attempt.to_dict())
            await self._handle_failure(CycleStage.APPLY, exc)
        result.steps_completed.append(CycleStage.APPLY.value)
        log.debug("update_attempt", **attempt.to_dict())

        try:
            await self._steam.validate_update()
        except _STAGE_ERRORS as exc:
            await self._handle_failure(CycleStage.VALIDATE, exc)
        result.steps_completed.append(CycleStage.VALIDATE.value)

        log.info("update_successful_restarting_pods")
        try:
            result.restart = await self._restarter.restart_pods(self._pod_selector)
        except _STAGE_ERRORS as exc:
            await self._handle_failure(CycleStage.RESTART, exc)
        result.steps_completed.append(CycleStage.RESTART.value)

        result.status = CycleStatus.UPDATED
        log.info("update_process_completed", degraded=result.degraded)
        return self._succeed(result)

    def _succeed(self, result: CycleResult) -> CycleResult:
        self._retry_count = 0
        result.completed_at = datetime.now().isoformat()
        return result

    async def _handle_failure(self, stage: CycleStage, error: BaseException) -> NoReturn:
        """Count a failure, back off if budget remains, and raise."""
        self._retry_count += 1
        attempt = self._retry_count
        log.error(
            "update_stage_failed",
            stage=stage.value,
            attempt=attempt,
            max_retries=self._max_retries,
            error=str(error),
        )

        if attempt >= self._max_retries:
            log.error("max_retries_exceeded", stage=stage.value)
            self._retry_count = 0
            raise RetriesExhaustedError(stage, attempt, self._max_retries, error) from error

        log.info("retry_scheduled", delay_seconds=self._retry_delay)
        await asyncio.sleep(self._retry_delay)
        raise CycleFailedError(stage, attempt, self._max_retries, error) from error
