"""Exception hierarchy shared by every stage of a release run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional, Sequence, Tuple

from .stages import Stage


@dataclass
class ReleaseError(RuntimeError):
    message: str
    code: str = "release_error"
    metadata: Dict[str, Any] = None  # type: ignore[assignment]

    stage: ClassVar[Optional[Stage]] = None

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.metadata is None:
            self.metadata = {}

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message, "metadata": self.metadata}
        if self.stage is not None:
            payload["stage"] = self.stage.value
        return payload


@dataclass
class ConfigError(ReleaseError):
    """The target list or configuration file is malformed. Aborts before any target runs."""

    code: str = "config_error"


@dataclass
class AuthError(ReleaseError):
    """Registry credentials are missing, invalid or expired. Fatal for the whole run."""

    code: str = "auth_error"
    stage: ClassVar[Optional[Stage]] = Stage.AUTH


@dataclass
class MetadataError(ReleaseError):
    code: str = "metadata_error"
    stage: ClassVar[Optional[Stage]] = Stage.METADATA


@dataclass
class BuildError(ReleaseError):
    """The image build exited non-zero; ``log_excerpt`` holds the tail of its output."""

    code: str = "build_error"
    log_excerpt: str = ""
    stage: ClassVar[Optional[Stage]] = Stage.BUILD

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["log_excerpt"] = self.log_excerpt
        return payload


@dataclass
class PushError(ReleaseError):
    """A tag push failed. Tags in ``pushed_tags`` are not considered published."""

    code: str = "push_error"
    pushed_tags: Tuple[str, ...] = field(default_factory=tuple)
    stage: ClassVar[Optional[Stage]] = Stage.PUSH

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["pushed_tags"] = list(self.pushed_tags)
        return payload


@dataclass
class AttestError(ReleaseError):
    """Provenance could not be signed or uploaded. The published image is left in place."""

    code: str = "attest_error"
    stage: ClassVar[Optional[Stage]] = Stage.ATTEST


class CommandError(RuntimeError):
    """Raised when a subprocess exits with a non-zero status code."""

    def __init__(self, command: Sequence[str], returncode: int, stdout: str, stderr: str) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"Command {' '.join(command)} failed with exit code {returncode}\nSTDERR:{stderr}")


def tail(text: str, lines: int = 20) -> str:
    """Return the last ``lines`` non-empty lines of ``text``."""

    kept = [line for line in text.splitlines() if line.strip()]
    return "\n".join(kept[-lines:])
