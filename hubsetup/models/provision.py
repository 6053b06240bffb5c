"""Provisioning plan for the standalone hub setup run.

Defaults reproduce the platform layout the hub image expects; a JSON file
with the same shape can override any part of it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class UploadSpec(BaseModel):
    local_path: str
    remote_path: str
    # Optional final location on the hub (``mv`` after upload)
    install_path: Optional[str] = None
    mode: Optional[str] = None


class ArchiveSpec(BaseModel):
    path: str
    extract_to: str


class SupervisorSpec(BaseModel):
    config_local: str = "./ecosystem.config.js"
    config_remote: str = "/data/ecosystem.config.js"
    startup_commands: list[str] = Field(
        default_factory=lambda: [
            "pm2 startup",
            "systemctl enable pm2-root",
            "pm2 save --force",
            "pm2 install pm2-logrotate",
        ],
    )
    start_command: str = "pm2 start {config}"
    save_command: str = "pm2 save --force"


class ProvisionPlan(BaseModel):
    required_commands: list[str] = Field(default_factory=lambda: ["npm"])
    global_packages: list[str] = Field(default_factory=lambda: ["pm2", "zx"])
    directories: list[str] = Field(
        default_factory=lambda: [
            "/data/keus-iot-platform/logs",
            "/data/keus-iot-platform/plugins",
        ],
    )
    uploads: list[UploadSpec] = Field(
        default_factory=lambda: [
            UploadSpec(
                local_path="./node-manager-1.0.0.tar.gz",
                remote_path="/data/keus-iot-platform/node-manager-1.0.0.tar.gz",
            ),
            UploadSpec(
                local_path="./index-linux-arm64",
                remote_path="/data/podman-remote-api",
                install_path="/usr/bin/podman-remote-api",
                mode="+x",
            ),
        ],
    )
    archives: list[ArchiveSpec] = Field(
        default_factory=lambda: [
            ArchiveSpec(
                path="/data/keus-iot-platform/node-manager-1.0.0.tar.gz",
                extract_to="/data/keus-iot-platform",
            ),
        ],
    )
    container_runtime: str = "podman"
    network: Optional[str] = "kiotp-network"
    supervisor: Optional[SupervisorSpec] = Field(default_factory=SupervisorSpec)

    @classmethod
    def from_file(cls, path: Path) -> ProvisionPlan:
        return cls.model_validate_json(path.read_text(encoding="utf-8"))
