"""Persisted JSON report of a finished release run."""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..publishing.events import RunEvent
from .outcome import RunOutcome


class RunReport(BaseModel):
    run_id: str
    started_at: str
    finished_at: str
    exit_status: str  # succeeded, failed
    event: Dict[str, Any] = Field(default_factory=dict)
    targets: List[Dict[str, Any]] = Field(default_factory=list)
    config_path: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: RunOutcome, event: RunEvent, *, config_path: Optional[str] = None) -> "RunReport":
        summary = outcome.to_dict()
        return cls(
            run_id=outcome.run_id,
            started_at=outcome.started_at,
            finished_at=outcome.finished_at,
            exit_status="succeeded" if outcome.succeeded else "failed",
            event=asdict(event),
            targets=summary["targets"],
            config_path=config_path,
        )

    def save(self, reports_dir: Path) -> Path:
        """Write the report to ``<reports_dir>/<run_id>.json``."""
        reports_dir = Path(reports_dir)
        reports_dir.mkdir(parents=True, exist_ok=True)
        path = reports_dir / f"{self.run_id}.json"
        with path.open("w", encoding="utf-8") as f:
            f.write(self.model_dump_json(indent=2))
        return path

    @classmethod
    def load(cls, path: Path) -> "RunReport":
        with Path(path).open("r", encoding="utf-8") as f:
            data = json.load(f)
        return cls(**data)
