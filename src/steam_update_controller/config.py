"""Configuration management for the Steam Update Controller."""

import re
from datetime import timedelta
from functools import lru_cache
from typing import Any

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Go-style durations as found in deployment manifests: 30m, 1h30m, 250ms
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_SECONDS_RE = re.compile(r"\d+(?:\.\d+)?")

_DURATION_UNITS = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 0.001,
}


def parse_duration(value: str) -> timedelta:
    """Parse a Go-style duration string such as ``"5m"`` or ``"1h30m"``.

    Raises ValueError if the string is not a valid duration.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")

    pos = 0
    seconds = 0.0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return timedelta(seconds=seconds)


def _env(name: str, env_var: str) -> AliasChoices:
    return AliasChoices(name, env_var)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Polling
    check_interval: timedelta = Field(
        default=timedelta(minutes=30),
        validation_alias=_env("check_interval", "CHECK_INTERVAL"),
        description="How often to check for a new build",
    )

    # SteamCMD
    steamcmd_path: str = Field(
        default="/home/steam/steamcmd",
        validation_alias=_env("steamcmd_path", "STEAMCMD_PATH"),
        description="Directory containing steamcmd.sh",
    )
    steam_app: str = Field(
        default="tf",
        validation_alias=_env("steam_app", "STEAMAPP"),
        description="Short game directory name under the mount path",
    )
    steam_app_id: str = Field(
        default="232250",
        validation_alias=_env("steam_app_id", "STEAMAPPID"),
        description="Steam application ID",
    )
    game_mount_path: str = Field(
        default="/tf",
        validation_alias=_env("game_mount_path", "GAME_MOUNT_PATH"),
        description="Root of the shared installation volume",
    )
    update_script: str = Field(
        default="tf_update.txt",
        validation_alias=_env("update_script", "UPDATE_SCRIPT"),
        description="Filename of the generated update script",
    )
    install_marker: str = Field(
        default="srcds_run",
        validation_alias=_env("install_marker", "INSTALL_MARKER"),
        description="File inside the game directory that proves an installation",
    )

    # Retry policy
    max_retries: int = Field(
        default=3,
        ge=1,
        validation_alias=_env("max_retries", "MAX_RETRIES"),
        description="Consecutive failed cycles before giving up on an update",
    )
    retry_delay: timedelta = Field(
        default=timedelta(minutes=5),
        validation_alias=_env("retry_delay", "RETRY_DELAY"),
        description="Backoff after a failed cycle",
    )

    # Kubernetes
    pod_selector: str = Field(
        default="app=tf2-server",
        validation_alias=_env("pod_selector", "POD_SELECTOR"),
        description="Label selector for pods to restart after an update",
    )
    namespace: str = Field(
        default="default",
        validation_alias=_env("namespace", "NAMESPACE"),
        description="Namespace holding the game server workloads",
    )
    kubeconfig: str | None = Field(
        default=None,
        validation_alias=_env("kubeconfig", "KUBECONFIG"),
        description="Kubeconfig path; in-cluster credentials are used when unset",
    )
    restart_grace_period: timedelta = Field(
        default=timedelta(seconds=2),
        validation_alias=_env("restart_grace_period", "RESTART_GRACE_PERIOD"),
        description="Pause between scaling a ReplicaSet down and back up",
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("check_interval", "retry_delay", "restart_grace_period", mode="before")
    @classmethod
    def _parse_go_duration(cls, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        text = value.strip()
        if _SECONDS_RE.fullmatch(text):
            return timedelta(seconds=float(text))
        if text.upper().startswith("P"):
            # ISO 8601, left to pydantic
            return text
        return parse_duration(text)

    @field_validator("check_interval", "retry_delay")
    @classmethod
    def _positive(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("duration must be positive")
        return value

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def steamcmd_executable(self) -> str:
        """Get the full path to the SteamCMD launcher script."""
        return f"{self.steamcmd_path.rstrip('/')}/steamcmd.sh"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
