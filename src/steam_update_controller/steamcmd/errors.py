"""Exceptions raised by the SteamCMD integration."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from steam_update_controller.steamcmd.client import UpdateAttempt


class SteamCMDError(Exception):
    """Base class for SteamCMD failures.

    ``output`` carries the captured tool output, when there is any, so
    callers can report a failure without re-running the tool.
    """

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output

    def __str__(self) -> str:
        message = super().__str__()
        if self.output:
            return f"{message}, output: {self.output}"
        return message


class ManifestReadError(SteamCMDError):
    """Raised when the app manifest exists but cannot be read."""


class MalformedManifestError(SteamCMDError):
    """Raised when the app manifest has no build ID line."""


class BuildIDQueryError(SteamCMDError):
    """Raised when the remote build ID cannot be determined."""


class BuildIDNotFoundError(BuildIDQueryError):
    """Raised when app_info output contains no usable build ID."""


class UpdateFailedError(SteamCMDError):
    """Raised when ``app_update`` does not finish successfully.

    ``attempt`` records how the failed run ended, once the client has
    classified it.
    """

    def __init__(
        self, message: str, output: str = "", attempt: UpdateAttempt | None = None
    ) -> None:
        super().__init__(message, output)
        self.attempt = attempt


class ValidationFailedError(SteamCMDError):
    """Raised when post-update validation reports issues."""
