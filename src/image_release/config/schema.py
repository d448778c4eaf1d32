"""Pydantic schemas defining the release configuration contract."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

# Repository part of an image reference: optional registry host, then path
# components. Tags and digests are resolved per run and may not appear here.
_IMAGE_PATTERN = re.compile(
    r"^(?:[a-zA-Z0-9.-]+(?::[0-9]+)?/)?[a-z0-9]+(?:[._-][a-z0-9]+)*(?:/[a-z0-9]+(?:[._-][a-z0-9]+)*)*$"
)


class RegistryConfig(BaseModel):
    host: str = "ghcr.io"
    username_secret: str = "REGISTRY_USERNAME"
    password_secret: str = "REGISTRY_PASSWORD"


class TargetConfig(BaseModel):
    context: str
    dockerfile: str
    image: str
    build_args: Dict[str, str] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}

    @field_validator("image")
    @classmethod
    def _check_image(cls, value: str) -> str:
        if not _IMAGE_PATTERN.match(value):
            raise ValueError(f"'{value}' is not a repository reference (tags and digests are not allowed)")
        return value


class TagPolicyConfig(BaseModel):
    ref: bool = True
    semver: List[str] = Field(default_factory=lambda: ["{{version}}", "{{major}}.{{minor}}"])
    latest: Literal["auto", "true", "false"] = "auto"
    sha: bool = False

    @field_validator("latest", mode="before")
    @classmethod
    def _coerce_bool(cls, value: object) -> object:
        # YAML turns bare true/false into booleans.
        if isinstance(value, bool):
            return "true" if value else "false"
        return value


class AttestationConfig(BaseModel):
    enabled: bool = True
    policy: Literal["strict", "warn"] = "strict"
    key: Optional[str] = None


class ExecutionConfig(BaseModel):
    max_parallel: Optional[int] = Field(default=None, ge=1)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
    report_dir: str = "artifacts/releases"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: Optional[str] = None
    json_logs: bool = False


class ReleaseConfig(BaseModel):
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    targets: List[TargetConfig]
    tags: TagPolicyConfig = Field(default_factory=TagPolicyConfig)
    labels: Dict[str, str] = Field(default_factory=dict)
    attestation: AttestationConfig = Field(default_factory=AttestationConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def _check_targets(self) -> "ReleaseConfig":
        if not self.targets:
            raise ValueError("at least one build target is required")
        return self

    def report_directory(self) -> Path:
        return Path(self.execution.report_dir)
