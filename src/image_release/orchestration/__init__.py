"""Run coordination: fan-out, per-target state machine and outcome aggregation."""

from .coordinator import RunCoordinator
from .outcome import RunOutcome, TargetOutcome
from .report import RunReport

__all__ = ["RunCoordinator", "RunOutcome", "RunReport", "TargetOutcome"]
