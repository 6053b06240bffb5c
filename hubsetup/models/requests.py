"""Request and response models for the HTTP API.

Request bodies accept both the snake_case field names and the names sent by
the browser client (``ip``, ``basePath``, ``filePath`` ...).
"""

from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class HealthResponse(BaseModel):
    status: str
    version: str


class HubTarget(BaseModel):
    """Connection parameters identifying one hub session."""

    host: str = Field(min_length=1, validation_alias=AliasChoices("host", "ip"))
    username: str = Field(min_length=1)
    password: str = Field(min_length=1, repr=False)


class DisconnectRequest(BaseModel):
    host: str = Field(min_length=1, validation_alias=AliasChoices("host", "ip"))
    username: str = Field(min_length=1)


class ExecuteRequest(HubTarget):
    command: str = Field(min_length=1)
    cwd: Optional[str] = None


class SourceRequest(HubTarget):
    """Archive source parameters; blanks fall back to the configured defaults."""

    owner: Optional[str] = None
    repo: Optional[str] = None
    branch: Optional[str] = None
    base_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("base_path", "basePath"),
    )


class FileDownloadRequest(SourceRequest):
    file_path: str = Field(
        min_length=1,
        validation_alias=AliasChoices("file_path", "filePath"),
    )
    output_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("output_path", "outputPath"),
    )


class ExtractRequest(HubTarget):
    archive_path: str = Field(
        min_length=1,
        validation_alias=AliasChoices("archive_path", "archivePath"),
    )
    extract_to: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("extract_to", "extractTo"),
    )


class ActionResponse(BaseModel):
    success: bool
    message: str


class ExecuteResponse(BaseModel):
    success: bool
    stdout: str
    stderr: str
    code: int


class SessionInfo(BaseModel):
    host: str
    username: str
    healthy: bool

