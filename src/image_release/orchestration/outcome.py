"""Per-target and per-run outcome records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from ..core.stages import Stage, TargetState
from ..publishing.attest import AttestationRecord
from ..publishing.metadata import TagSet
from ..publishing.publisher import PublishResult
from ..targets import BuildTarget


@dataclass(frozen=True)
class TargetOutcome:
    """Terminal result of one target's build → push → attest chain."""

    target: BuildTarget
    state: TargetState
    stage: Optional[Stage] = None
    cause: Optional[str] = None
    error: Optional[Dict[str, Any]] = field(default=None, hash=False)
    tags: Optional[TagSet] = None
    published: Optional[PublishResult] = None
    attestation: Optional[AttestationRecord] = None
    warnings: Tuple[str, ...] = ()
    transitions: Tuple[TargetState, ...] = ()
    duration_s: float = 0.0

    def __post_init__(self) -> None:
        if not self.state.terminal:
            raise ValueError(f"TargetOutcome requires a terminal state, got {self.state.value}")
        if self.state is TargetState.FAILED and self.stage is None:
            raise ValueError("Failed outcomes must name the failing stage")

    @property
    def succeeded(self) -> bool:
        return self.state is TargetState.SUCCEEDED

    @property
    def digest(self) -> Optional[str]:
        return self.published.digest if self.published else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image": self.target.image,
            "context": str(self.target.context),
            "dockerfile": str(self.target.dockerfile),
            "state": self.state.value,
            "stage": self.stage.value if self.stage else None,
            "cause": self.cause,
            "error": self.error,
            "tags": list(self.tags.tags) if self.tags else [],
            "digest": self.digest,
            "attestation": self.attestation.to_dict() if self.attestation else None,
            "warnings": list(self.warnings),
            "transitions": [state.value for state in self.transitions],
            "duration_s": round(self.duration_s, 3),
        }


@dataclass(frozen=True)
class RunOutcome:
    """Aggregated outcomes, one per target in target order."""

    run_id: str
    outcomes: Tuple[TargetOutcome, ...]
    started_at: str
    finished_at: str

    @property
    def succeeded(self) -> bool:
        return all(outcome.succeeded for outcome in self.outcomes)

    @property
    def failures(self) -> Tuple[TargetOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if not outcome.succeeded)

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def get(self, image: str) -> TargetOutcome:
        for outcome in self.outcomes:
            if outcome.target.image == image:
                return outcome
        raise KeyError(image)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "succeeded": self.succeeded,
            "targets": [outcome.to_dict() for outcome in self.outcomes],
        }
