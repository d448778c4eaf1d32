"""Stage markers and per-target lifecycle states."""

from __future__ import annotations

from enum import Enum


class Stage(str, Enum):
    """Pipeline stage a failure is attributed to."""

    AUTH = "auth"
    METADATA = "metadata"
    BUILD = "build"
    PUSH = "push"
    ATTEST = "attest"


class TargetState(str, Enum):
    """Lifecycle state of a single build target."""

    PENDING = "PENDING"
    AUTHENTICATING = "AUTHENTICATING"
    BUILDING = "BUILDING"
    PUSHING = "PUSHING"
    ATTESTING = "ATTESTING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in (TargetState.SUCCEEDED, TargetState.FAILED)


# Stage a target is in while occupying a non-terminal state.
STATE_STAGES = {
    TargetState.PENDING: Stage.BUILD,
    TargetState.AUTHENTICATING: Stage.AUTH,
    TargetState.BUILDING: Stage.BUILD,
    TargetState.PUSHING: Stage.PUSH,
    TargetState.ATTESTING: Stage.ATTEST,
}
