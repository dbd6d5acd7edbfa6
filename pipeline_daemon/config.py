"""Daemon configuration via environment variables.

Settings are loaded once at process start with ``load_settings()`` and passed
explicitly to the scheduler, dispatcher and clients.
"""

import os
import socket
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings

DEFAULT_ENV_FILE = ".daemon.env"


def _default_daemon_id() -> str:
    return f"daemon-{socket.gethostname()}"


class Settings(BaseSettings):
    # Identity
    daemon_id: str = Field(
        default_factory=_default_daemon_id,
        validation_alias=AliasChoices("daemon_id", "DAEMON_ID", "DAEMON_INSTANCE_ID"),
    )

    # Remote store
    supabase_url: str = Field(
        default="", validation_alias=AliasChoices("supabase_url", "SUPABASE_URL")
    )
    supabase_service_role_key: str = Field(
        default="",
        validation_alias=AliasChoices(
            "supabase_service_role_key", "SUPABASE_SERVICE_ROLE_KEY"
        ),
    )
    storage_bucket: str = "project-assets"

    # Scheduling
    interval_ms: int = 1000
    max_concurrency: int = 2
    task_timeout_seconds: int = 3600
    request_timeout_ms: int = 15000

    # Workspaces
    script_workspace: str = "../script"
    script_workspace_v2: str = "../script-v2"
    script_caption_workspace: str = "../script-caption"
    projects_workspace: str = "./projects"

    # Generation
    audio_default_voice: str = "Kore"
    audio_default_style: Optional[str] = None
    captions_renderer: str = "python"  # "python" or "legacy"
    script_mode: str = "normal"  # "fast" or "normal"
    video_effect: str = "fade"
    default_music_path: Optional[str] = None
    default_overlay_path: Optional[str] = None
    fake_cli: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "fake_cli", "DAEMON_FAKE_CLI", "DAEMON_USE_FAKE_CLI"
        ),
    )

    # Logging / HTTP
    log_level: str = "INFO"
    log_format: str = "console"  # "console" or "json"
    http_port: int = 8010

    model_config = {
        "env_prefix": "DAEMON_",
        "env_file": DEFAULT_ENV_FILE,
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "frozen": True,
        "populate_by_name": True,
    }

    @field_validator("interval_ms")
    @classmethod
    def _clamp_interval(cls, value: int) -> int:
        return max(50, value)

    @field_validator("max_concurrency", "task_timeout_seconds")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, value)

    @field_validator("request_timeout_ms")
    @classmethod
    def _clamp_request_timeout(cls, value: int) -> int:
        return max(1000, value)

    @field_validator("captions_renderer")
    @classmethod
    def _renderer(cls, value: str) -> str:
        return "legacy" if value.strip().lower() == "legacy" else "python"

    @field_validator("script_mode")
    @classmethod
    def _script_mode(cls, value: str) -> str:
        return "fast" if value.strip().lower() == "fast" else "normal"

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000.0

    @property
    def request_timeout_seconds(self) -> float:
        return self.request_timeout_ms / 1000.0

    def ensure_workspaces(self) -> None:
        """Create the projects workspace and verify the script workspaces exist.

        Raises:
            RuntimeError: a required script workspace is missing.
        """
        os.makedirs(self.projects_workspace, exist_ok=True)
        for name in ("script_workspace", "script_workspace_v2", "script_caption_workspace"):
            path = getattr(self, name)
            if not os.path.isdir(path):
                raise RuntimeError(f"{name} does not exist: {os.path.abspath(path)}")


def load_settings(env_file: Optional[str] = None, **overrides) -> Settings:
    """Build the Settings instance for this process.

    The env file defaults to ``.daemon.env`` and can be redirected with
    ``DAEMON_ENV_FILE``.
    """
    path = env_file or os.environ.get("DAEMON_ENV_FILE") or DEFAULT_ENV_FILE
    return Settings(_env_file=path, **overrides)
