"""Local install-state inspection.

Reads the shared game volume to decide whether the game is installed and
which build it holds. Nothing here talks to Steam.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from steam_update_controller.logging import get_logger
from steam_update_controller.steamcmd.errors import MalformedManifestError, ManifestReadError
from steam_update_controller.steamcmd.parsing import parse_manifest_build_id

log = get_logger("steam_update_controller.steamcmd.installation")

METADATA_DIR = "steamapps"


class Installation:
    """The on-disk game installation under the shared mount path."""

    def __init__(
        self,
        root: str | Path,
        steam_app: str,
        steam_app_id: str,
        marker_file: str = "srcds_run",
    ) -> None:
        self._root = Path(root)
        self._steam_app = steam_app
        self._steam_app_id = steam_app_id
        self._marker_file = marker_file

    @property
    def root(self) -> Path:
        return self._root

    @property
    def game_dir(self) -> Path:
        return self._root / self._steam_app

    @property
    def metadata_dir(self) -> Path:
        return self._root / METADATA_DIR

    @property
    def manifest_path(self) -> Path:
        return self.metadata_dir / f"appmanifest_{self._steam_app_id}.acf"

    def is_installed(self) -> bool:
        """Return True if the game directory and its marker file both exist."""
        if not self.game_dir.is_dir():
            return False
        return (self.game_dir / self._marker_file).exists()

    def installed_build_id(self) -> str:
        """Read the installed build ID from the app manifest.

        Returns an empty string when the manifest does not exist; callers
        treat that as "update needed". A manifest without a build ID line
        raises ``MalformedManifestError``.
        """
        try:
            text = self.manifest_path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            log.debug("manifest_missing", path=str(self.manifest_path))
            return ""
        except OSError as exc:
            raise ManifestReadError(f"failed to read manifest {self.manifest_path}: {exc}") from exc

        build_id = parse_manifest_build_id(text)
        if build_id is None:
            raise MalformedManifestError(f"buildid not found in manifest {self.manifest_path}")
        return build_id

    def clear_metadata(self) -> None:
        """Remove the SteamCMD metadata directory, leaving game files alone."""
        log.warning("clearing_steamapps", path=str(self.metadata_dir))
        if self.metadata_dir.exists():
            shutil.rmtree(self.metadata_dir)
        log.info("steamapps_cleared", path=str(self.metadata_dir))
