"""In-toto statements with SLSA Provenance v1 predicates for published images."""

from __future__ import annotations

import hashlib
import json
import os
import platform
import socket
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

IN_TOTO_STATEMENT_TYPE = "https://in-toto.io/Statement/v1"
SLSA_PROVENANCE_PREDICATE_TYPE = "https://slsa.dev/provenance/v1"
BUILD_TYPE = "https://image-release.dev/container-build/v1"


@dataclass(frozen=True)
class BuildContext:
    """Identity of the platform running the build."""

    builder_id: str
    invocation_id: str = ""
    workflow_ref: str = ""
    runner_os: str = ""
    runner_arch: str = ""
    is_ci: bool = False

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "BuildContext":
        env = env if env is not None else os.environ
        if env.get("GITHUB_ACTIONS") == "true":
            server = env.get("GITHUB_SERVER_URL", "https://github.com")
            repo = env.get("GITHUB_REPOSITORY", "")
            run_id = env.get("GITHUB_RUN_ID", "")
            attempt = env.get("GITHUB_RUN_ATTEMPT", "1")
            hosted = env.get("RUNNER_ENVIRONMENT", "") == "github-hosted"
            return cls(
                builder_id=f"{server}/actions/runner" if hosted else f"{server}/actions/runner/self-hosted",
                invocation_id=f"{server}/{repo}/actions/runs/{run_id}/attempts/{attempt}" if repo and run_id else "",
                workflow_ref=env.get("GITHUB_WORKFLOW_REF", ""),
                runner_os=env.get("RUNNER_OS", platform.system()),
                runner_arch=env.get("RUNNER_ARCH", platform.machine()),
                is_ci=True,
            )
        return cls(
            builder_id=f"local://{socket.gethostname()}",
            runner_os=platform.system(),
            runner_arch=platform.machine(),
        )


@dataclass(frozen=True)
class ProvenanceStatement:
    subject_name: str
    subject_digest: str
    predicate: Dict[str, Any] = field(default_factory=dict, hash=False)

    def to_dict(self) -> Dict[str, Any]:
        algorithm, _, value = self.subject_digest.partition(":")
        return {
            "_type": IN_TOTO_STATEMENT_TYPE,
            "subject": [{"name": self.subject_name, "digest": {algorithm: value}}],
            "predicateType": SLSA_PROVENANCE_PREDICATE_TYPE,
            "predicate": self.predicate,
        }

    def to_json(self) -> str:
        """Canonical JSON (sorted keys, no whitespace)."""

        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    @property
    def digest(self) -> str:
        return "sha256:" + hashlib.sha256(self.to_json().encode("utf-8")).hexdigest()


def _timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_predicate(
    *,
    context: str,
    dockerfile: str,
    tags: List[str],
    version: str,
    source_url: str,
    revision: str,
    ref: str,
    build: BuildContext,
    started_on: datetime,
    finished_on: datetime,
) -> Dict[str, Any]:
    dependencies: List[Dict[str, Any]] = []
    if source_url:
        entry: Dict[str, Any] = {"uri": f"git+{source_url}@{ref}" if ref else f"git+{source_url}"}
        if revision:
            entry["digest"] = {"gitCommit": revision}
        dependencies.append(entry)

    internal: Dict[str, Any] = {}
    if build.workflow_ref:
        internal["workflow"] = build.workflow_ref
    if build.runner_os:
        internal["runner"] = {"os": build.runner_os, "arch": build.runner_arch}

    metadata: Dict[str, Any] = {
        "startedOn": _timestamp(started_on),
        "finishedOn": _timestamp(finished_on),
    }
    if build.invocation_id:
        metadata["invocationId"] = build.invocation_id

    return {
        "buildDefinition": {
            "buildType": BUILD_TYPE,
            "externalParameters": {
                "context": context,
                "dockerfile": dockerfile,
                "tags": list(tags),
                "version": version,
            },
            "internalParameters": internal,
            "resolvedDependencies": dependencies,
        },
        "runDetails": {
            "builder": {"id": build.builder_id},
            "metadata": metadata,
        },
    }
