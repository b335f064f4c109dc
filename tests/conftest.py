"""Shared fixtures for the Steam Update Controller test suite."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from steam_update_controller.config import get_settings

_APP_ID = "232250"
_PUBLIC_BUILD_ID = "15734402"

_APP_INFO_TEMPLATE = """\
Redirecting stderr to '/home/steam/Steam/logs/stderr.txt'
Loading Steam API...OK
Connecting anonymously to Steam Public...OK
Waiting for user info...OK
AppID : 232250, change number : 21938470/0, last change : Mon Oct 12 18:01:27 2026
"232250"
{
\t"common"
\t{
\t\t"name"\t\t"Team Fortress 2 Dedicated Server"
\t\t"type"\t\t"Tool"
\t}
\t"depots"
\t{
\t\t"branches"
\t\t{
\t\t\t"public"
\t\t\t{
\t\t\t\t"buildid"\t\t"15734402"
\t\t\t\t"timeupdated"\t\t"1760292087"
\t\t\t}
\t\t\t"prerelease"
\t\t\t{
\t\t\t\t"buildid"\t\t"15799999"
\t\t\t}
\t\t}
\t}
}
"""


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Make every test see a fresh Settings instance."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def app_info_output() -> Callable[..., str]:
    """Build ``app_info_print`` output whose public branch reports ``build_id``.

    The prerelease branch always reports 15799999.
    """

    def _build(build_id: str = _PUBLIC_BUILD_ID) -> str:
        return _APP_INFO_TEMPLATE.replace(_PUBLIC_BUILD_ID, build_id)

    return _build


@pytest.fixture
def manifest_text() -> Callable[..., str]:
    """Build an ``appmanifest_232250.acf`` body with the given build ID."""

    def _build(build_id: str = _PUBLIC_BUILD_ID) -> str:
        return (
            '"AppState"\n'
            "{\n"
            f'\t"appid"\t\t"{_APP_ID}"\n'
            '\t"Universe"\t\t"1"\n'
            '\t"name"\t\t"Team Fortress 2 Dedicated Server"\n'
            '\t"StateFlags"\t\t"4"\n'
            f'\t"buildid"\t\t"{build_id}"\n'
            '\t"LastOwner"\t\t"0"\n'
            "}\n"
        )

    return _build


@pytest.fixture
def install_game(manifest_text: Callable[..., str]) -> Callable[..., None]:
    """Lay out a minimal installed game under a root directory.

    Pass ``build_id=None`` to leave out ``steamapps`` and the manifest.
    """

    def _install(root: Path, build_id: str | None = _PUBLIC_BUILD_ID) -> None:
        game_dir = root / "tf"
        game_dir.mkdir(parents=True, exist_ok=True)
        (game_dir / "srcds_run").write_text("#!/bin/sh\n", encoding="utf-8")
        if build_id is not None:
            steamapps = root / "steamapps"
            steamapps.mkdir(parents=True, exist_ok=True)
            (steamapps / f"appmanifest_{_APP_ID}.acf").write_text(
                manifest_text(build_id), encoding="utf-8"
            )

    return _install
