"""SteamCMD process execution with streamed, captured output."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

from steam_update_controller.logging import get_logger
from steam_update_controller.steamcmd.errors import SteamCMDError
from steam_update_controller.steamcmd.parsing import is_progress_line

log = get_logger("steam_update_controller.steamcmd.runner")

# SteamCMD progress lines can be long; keep readline from overrunning
STREAM_LIMIT = 1024 * 1024


@dataclass
class CommandResult:
    """Exit status and combined stdout/stderr of one SteamCMD run.

    Lines from the two streams are interleaved in arrival order, which is
    not deterministic. Only substring checks against ``output`` are valid.
    """

    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class SteamCMDRunner:
    """Runs ``steamcmd.sh +runscript <file>`` and captures its output."""

    def __init__(self, executable: str) -> None:
        self._executable = executable

    @property
    def executable(self) -> str:
        return self._executable

    async def run_script(self, script_path: Path, stage: str) -> CommandResult:
        """Run a script, logging each output line as it arrives.

        Returns once the process has exited and both streams are fully
        drained. Cancelling the caller kills the process.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                self._executable,
                "+runscript",
                str(script_path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as exc:
            raise SteamCMDError(f"failed to start steamcmd ({self._executable}): {exc}") from exc

        log.debug("steamcmd_started", stage=stage, pid=proc.pid, script=str(script_path))

        lines: list[str] = []
        lines_lock = asyncio.Lock()

        async def drain(stream: asyncio.StreamReader | None, name: str) -> None:
            if stream is None:
                return
            while True:
                try:
                    raw = await stream.readline()
                except ValueError as exc:
                    log.warning(
                        "steamcmd_output_read_error", stage=stage, stream=name, error=str(exc)
                    )
                    continue
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                async with lines_lock:
                    lines.append(line)

                trimmed = line.strip()
                if not trimmed:
                    continue
                if is_progress_line(trimmed):
                    log.info("steamcmd_output", stage=stage, stream=name, line=trimmed)
                else:
                    log.debug("steamcmd_output", stage=stage, stream=name, line=trimmed)

        try:
            await asyncio.gather(drain(proc.stdout, "stdout"), drain(proc.stderr, "stderr"))
            returncode = await proc.wait()
        except asyncio.CancelledError:
            if proc.returncode is None:
                log.warning("steamcmd_killed", stage=stage, pid=proc.pid)
                proc.kill()
                await proc.wait()
            raise

        output = "".join(f"{line}\n" for line in lines)
        log.debug("steamcmd_exited", stage=stage, returncode=returncode, lines=len(lines))
        return CommandResult(returncode=returncode, output=output)
