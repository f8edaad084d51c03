"""Configuration for a crossrun hub."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


DEFAULT_CONFIG_PATH = "crossrun.yaml"


class HubSettings(BaseModel):
    """Settings for one hub instance (one port)."""

    host: str = Field(default="localhost", description="Interface to bind and to use in composed URLs")
    port: int = Field(default=9000, ge=1, le=65535, description="Port to listen on")
    serve_root: str = Field(default_factory=os.getcwd, description="Only files under this directory are served")
    log_level: str = Field(default="INFO", description="Logging level")

    browsers: list[str] = Field(default_factory=list, description="Browser engines to launch against the hub")
    force_visit: bool = Field(default=False, description="Open the browsers at the landing page on serve")

    # How often a held request checks whether the browser hung up.
    disconnect_poll_seconds: float = Field(default=1.0, gt=0, le=60)
    # Driver side only; the hub never times out a status poll.
    status_timeout_seconds: Optional[float] = Field(default=None, gt=0)

    @field_validator("serve_root")
    @classmethod
    def _absolute_root(cls, value: str) -> str:
        return str(Path(value or os.getcwd()).expanduser().resolve())

    @field_validator("browsers", mode="before")
    @classmethod
    def _split_browsers(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [b.strip().lower() for b in value.split(",") if b.strip()]
        return value

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


def _env_overrides() -> dict[str, Any]:
    env = {
        "host": os.getenv("CROSSRUN_HOST"),
        "port": os.getenv("CROSSRUN_PORT"),
        "serve_root": os.getenv("CROSSRUN_PATH"),
        "log_level": os.getenv("CROSSRUN_LOG_LEVEL") or os.getenv("LOG_LEVEL"),
        "browsers": os.getenv("CROSSRUN_BROWSERS"),
        "disconnect_poll_seconds": os.getenv("CROSSRUN_DISCONNECT_POLL_SECONDS"),
        "status_timeout_seconds": os.getenv("CROSSRUN_STATUS_TIMEOUT_SECONDS"),
    }
    return {k: v for k, v in env.items() if v is not None and str(v).strip() != ""}


def load_settings(config_path: Optional[str] = None, **overrides: Any) -> HubSettings:
    """Load settings from an optional YAML file, then environment, then explicit overrides."""
    if config_path is None:
        config_path = os.getenv("CROSSRUN_CONFIG", DEFAULT_CONFIG_PATH)

    data: dict[str, Any] = {}
    if config_path and os.path.exists(config_path):
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{config_path}: expected a mapping at the top level")

    data.update(_env_overrides())
    data.update({k: v for k, v in overrides.items() if v is not None})
    return HubSettings(**data)
