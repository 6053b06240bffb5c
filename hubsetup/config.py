"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is driven by environment variables."""

    # SSH transport
    hub_ssh_port: int = 22
    hub_connect_timeout_seconds: float = 20.0
    hub_banner_timeout_seconds: float = 20.0
    hub_auth_timeout_seconds: float = 20.0
    hub_keepalive_seconds: int = 15

    # Retry policy: connecting
    hub_connect_retry_limit: int = Field(default=3, ge=1)
    hub_connect_retry_delay_seconds: float = 2.0

    # Retry policy: remote commands
    hub_command_retry_limit: int = Field(default=5, ge=1)
    hub_command_retry_delay_seconds: float = 3.0

    # Source archive defaults
    hub_source_owner: str = "rahul-keus"
    hub_source_repo: str = "media-hub-setup"
    hub_source_branch: str = "main"
    hub_base_path: str = "/data/hub-setup"
    hub_archive_name: str = "repo.tar.gz"

    # Setup script
    hub_setup_script: str = "hub-setup.js"
    hub_setup_interpreter: str = "node"
    hub_dependency_manifest: str = "package.json"
    hub_install_command: str = "npm install"

    # API key
    hub_api_key: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "console"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton – import this from anywhere
settings = Settings()
