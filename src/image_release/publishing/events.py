"""The triggering event of a release run."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from ..core.exceptions import ConfigError

_TAG_REF_PREFIX = "refs/tags/"


@dataclass(frozen=True)
class RunEvent:
    """Immutable description of what triggered the run (usually a published release)."""

    version: Optional[str]
    event_name: str = "release"
    repository: str = ""
    source_url: str = ""
    revision: str = ""
    ref: str = ""
    prerelease: bool = False
    description: str = ""
    licenses: str = ""

    @classmethod
    def from_version(cls, version: str, *, env: Optional[Mapping[str, str]] = None, **fields: Any) -> "RunEvent":
        """Build an event for an explicit version, filling source details from CI variables."""

        base = cls._from_ci_env(env if env is not None else os.environ)
        ref = fields.pop("ref", None) or f"{_TAG_REF_PREFIX}{version}"
        return replace(base, version=version, ref=ref, **fields)

    @classmethod
    def from_github_event(cls, path: str | Path, *, env: Optional[Mapping[str, str]] = None) -> "RunEvent":
        """Read a GitHub Actions event payload (``$GITHUB_EVENT_PATH``)."""

        env = env if env is not None else os.environ
        path = Path(path)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Cannot read event payload {path}: {exc}", metadata={"source": str(path)}) from exc

        base = cls._from_ci_env(env)
        release = payload.get("release") or {}
        repository = payload.get("repository") or {}
        license_info = repository.get("license") or {}

        version = release.get("tag_name")
        if not version and base.ref.startswith(_TAG_REF_PREFIX):
            version = base.ref[len(_TAG_REF_PREFIX):]

        return replace(
            base,
            version=version or None,
            repository=repository.get("full_name") or base.repository,
            source_url=repository.get("html_url") or base.source_url,
            prerelease=bool(release.get("prerelease", False)),
            description=repository.get("description") or "",
            licenses=license_info.get("spdx_id") or "",
        )

    @classmethod
    def from_environment(cls, env: Optional[Mapping[str, str]] = None) -> "RunEvent":
        env = env if env is not None else os.environ
        event_path = env.get("GITHUB_EVENT_PATH")
        if event_path:
            return cls.from_github_event(event_path, env=env)
        base = cls._from_ci_env(env)
        if base.ref.startswith(_TAG_REF_PREFIX):
            return replace(base, version=base.ref[len(_TAG_REF_PREFIX):])
        return base

    @classmethod
    def _from_ci_env(cls, env: Mapping[str, str]) -> "RunEvent":
        server = env.get("GITHUB_SERVER_URL", "https://github.com")
        repository = env.get("GITHUB_REPOSITORY", "")
        return cls(
            version=None,
            event_name=env.get("GITHUB_EVENT_NAME", "release"),
            repository=repository,
            source_url=f"{server}/{repository}" if repository else "",
            revision=env.get("GITHUB_SHA", ""),
            ref=env.get("GITHUB_REF", ""),
        )
