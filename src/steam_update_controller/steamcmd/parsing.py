"""Text scraping of SteamCMD output and app manifests.

SteamCMD has no structured interface, so every substring heuristic the
controller depends on lives here. The rest of the package only sees
build ID strings and booleans.
"""

from __future__ import annotations

from steam_update_controller.steamcmd.errors import BuildIDNotFoundError

BUILD_ID_KEY = '"buildid"'
PUBLIC_BRANCH_KEY = '"public"'
SUCCESS_MARKER = "Success"

# How far past the app ID line the fallback scan looks for a build ID
APP_SECTION_SCAN_LINES = 50

_PROGRESS_TOKENS = (
    "update state",
    "progress",
    "downloading",
    "install",
    "validat",
    "success",
    "error",
    "app_update",
)


def _value_after_key(line: str) -> str | None:
    """Return the token following the key on a ``"key"  "value"`` line."""
    parts = line.split()
    if len(parts) < 2:
        return None
    return parts[1].strip('"')


def parse_manifest_build_id(text: str) -> str | None:
    """Extract the build ID from an ``appmanifest_<id>.acf`` file.

    Returns None if no line carries a build ID.
    """
    for line in text.splitlines():
        if BUILD_ID_KEY in line:
            value = _value_after_key(line)
            if value is not None:
                return value
    return None


def _public_branch_build_id(lines: list[str]) -> str | None:
    in_public = False
    for line in lines:
        if PUBLIC_BRANCH_KEY in line:
            in_public = True
            continue
        if not in_public:
            continue
        if BUILD_ID_KEY in line:
            value = _value_after_key(line)
            if value:
                return value
        elif "}" in line:
            in_public = False
    return None


def _app_section_build_id(lines: list[str], app_id: str) -> str | None:
    app_key = f'"{app_id}"'
    for i, line in enumerate(lines):
        if app_key not in line:
            continue
        for candidate in lines[i : i + APP_SECTION_SCAN_LINES]:
            if BUILD_ID_KEY not in candidate or "branches" in candidate:
                continue
            value = _value_after_key(candidate)
            if value and value != "0":
                return value
    return None


def parse_app_info_build_id(output: str, app_id: str) -> str:
    """Find the latest public build ID in ``app_info_print`` output.

    The ``"public"`` branch section is authoritative. If that heuristic
    finds nothing, the lines following the app ID are scanned instead.

    Raises BuildIDNotFoundError if neither yields a build ID.
    """
    lines = output.splitlines()
    build_id = _public_branch_build_id(lines)
    if build_id is None:
        build_id = _app_section_build_id(lines, app_id)
    if build_id is None:
        raise BuildIDNotFoundError("buildid not found in app_info output", output=output)
    return build_id


def has_corruption_signature(output: str) -> bool:
    """Return True if output shows the recoverable 0x6 app state error."""
    return (
        "state is 0x6" in output
        or "state is 0x606" in output
        or ("Error! App" in output and "0x6" in output)
    )


def has_success_marker(output: str) -> bool:
    return SUCCESS_MARKER in output


def is_progress_line(line: str) -> bool:
    """Decide whether a SteamCMD line is worth logging at info level."""
    lower = line.lower()
    return any(token in lower for token in _PROGRESS_TOKENS)
