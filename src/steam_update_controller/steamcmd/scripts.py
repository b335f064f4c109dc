"""SteamCMD ``+runscript`` file rendering."""

from __future__ import annotations

from pathlib import Path

from steam_update_controller.logging import get_logger

log = get_logger("steam_update_controller.steamcmd.scripts")

_PREAMBLE = ("@ShutdownOnFailedCommand 1", "@NoPromptForPassword 1")


def render_update_script(install_dir: str | Path, app_id: str, validate: bool = False) -> str:
    """Script that downloads and installs ``app_id`` into ``install_dir``."""
    app_update = f"app_update {app_id} validate" if validate else f"app_update {app_id}"
    lines = [
        *_PREAMBLE,
        f"force_install_dir {install_dir}",
        "login anonymous",
        app_update,
        "quit",
    ]
    return "\n".join(lines) + "\n"


def render_app_info_script(app_id: str) -> str:
    """Metadata-only script; never includes an ``app_update`` directive."""
    lines = [
        *_PREAMBLE,
        "login anonymous",
        f"app_info_print {app_id}",
        "quit",
    ]
    return "\n".join(lines) + "\n"


def write_script(path: Path, content: str) -> Path:
    """Write a script file and return its path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    path.chmod(0o644)
    log.debug("steamcmd_script_written", path=str(path))
    return path
