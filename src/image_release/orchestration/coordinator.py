"""Fan build targets out to independent workers and aggregate their outcomes."""

from __future__ import annotations

import contextvars
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Protocol, Sequence, Tuple

from ..config.schema import ReleaseConfig, TagPolicyConfig
from ..core.commands import CommandRunner, DeadlineRunner, run_command
from ..core.exceptions import AttestError, AuthError, ReleaseError
from ..core.logging import get_run_id, set_run_id, target_context
from ..core.stages import STATE_STAGES, Stage, TargetState
from ..publishing.attest import AttestationRecord, ProvenanceAttestor
from ..publishing.auth import Authenticator, RegistryCredentials, RegistrySession
from ..publishing.events import RunEvent
from ..publishing.metadata import TagSet, resolve_tags
from ..publishing.publisher import DockerPublisher, PublishResult
from ..targets import BuildTarget, TargetRegistry, normalize_host
from .outcome import RunOutcome, TargetOutcome

LOGGER = logging.getLogger(__name__)

CANCELLED = "cancelled"


class Publisher(Protocol):
    def build_and_push(
        self,
        target: BuildTarget,
        tags: TagSet,
        session: RegistrySession,
        *,
        before_push: Optional[Callable[[], None]] = None,
    ) -> PublishResult: ...


class Attestor(Protocol):
    def attest(
        self,
        published: PublishResult,
        session: RegistrySession,
        *,
        target: BuildTarget,
        event: RunEvent,
        started_on: Optional[datetime] = None,
    ) -> AttestationRecord: ...


class _Cancelled(Exception):
    def __init__(self, stage: Stage) -> None:
        super().__init__(CANCELLED)
        self.stage = stage


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.replace(microsecond=0).isoformat().replace("+00:00", "Z")


class _Progress:
    """Mutable per-target bookkeeping, owned by exactly one worker."""

    def __init__(self, target: BuildTarget) -> None:
        self.target = target
        self.state = TargetState.PENDING
        self.transitions: List[TargetState] = [TargetState.PENDING]
        self.started_on = _now()
        self._start = time.perf_counter()
        self.tags: Optional[TagSet] = None
        self.published: Optional[PublishResult] = None
        self.attestation: Optional[AttestationRecord] = None
        self.warnings: List[str] = []

    @property
    def stage(self) -> Stage:
        return STATE_STAGES.get(self.state, Stage.BUILD)

    def advance(self, state: TargetState) -> None:
        LOGGER.debug("%s -> %s", self.state.value, state.value)
        self.state = state
        self.transitions.append(state)

    def _finish(
        self,
        state: TargetState,
        stage: Optional[Stage],
        cause: Optional[str],
        error: Optional[Dict[str, Any]] = None,
    ) -> TargetOutcome:
        self.advance(state)
        return TargetOutcome(
            target=self.target,
            state=state,
            stage=stage,
            cause=cause,
            error=error,
            tags=self.tags,
            published=self.published,
            attestation=self.attestation,
            warnings=tuple(self.warnings),
            transitions=tuple(self.transitions),
            duration_s=time.perf_counter() - self._start,
        )

    def succeed(self) -> TargetOutcome:
        return self._finish(TargetState.SUCCEEDED, None, None)

    def fail(self, stage: Stage, cause: str, error: Optional[Dict[str, Any]] = None) -> TargetOutcome:
        return self._finish(TargetState.FAILED, stage, cause, error)


class RunCoordinator:
    """Run every target's chain independently; one failure never stops a sibling."""

    def __init__(
        self,
        registry: TargetRegistry,
        *,
        registry_host: str,
        authenticator: Authenticator,
        publisher: Publisher,
        attestor: Optional[Attestor] = None,
        tag_policy: Optional[TagPolicyConfig] = None,
        extra_labels: Optional[Mapping[str, str]] = None,
        attestation_policy: Literal["strict", "warn"] = "strict",
        max_parallel: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        deadline: Optional[DeadlineRunner] = None,
    ) -> None:
        self.registry = registry
        self.registry_host = registry_host
        self.authenticator = authenticator
        self.publisher = publisher
        self.attestor = attestor
        self.tag_policy = tag_policy or TagPolicyConfig()
        self.extra_labels = dict(extra_labels or {})
        self.attestation_policy = attestation_policy
        self.max_parallel = max_parallel
        self.timeout_seconds = timeout_seconds
        # Shared by every component when built from config, so timeout_seconds also bounds running commands.
        self.deadline = deadline
        self._cancel = threading.Event()

    @classmethod
    def from_config(
        cls,
        config: ReleaseConfig,
        *,
        base_dir: Optional[Path] = None,
        runner: CommandRunner = run_command,
        only: Optional[Sequence[str]] = None,
    ) -> "RunCoordinator":
        """Wire the docker/cosign components from ``config``.

        ``only`` restricts the run to the named images, in configuration order.
        """

        registry = TargetRegistry.from_config(config, base_dir=base_dir)
        if only:
            registry = registry.select(only)
        deadline = DeadlineRunner(runner)
        attestor = ProvenanceAttestor(deadline, key=config.attestation.key) if config.attestation.enabled else None
        return cls(
            registry,
            registry_host=config.registry.host,
            authenticator=Authenticator(deadline),
            publisher=DockerPublisher(deadline),
            attestor=attestor,
            tag_policy=config.tags,
            extra_labels=config.labels,
            attestation_policy=config.attestation.policy,
            max_parallel=config.execution.max_parallel,
            timeout_seconds=config.execution.timeout_seconds,
            deadline=deadline,
        )

    def cancel(self) -> None:
        """Stop targets at their next stage boundary. Already-pushed images still get attested."""

        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self, event: RunEvent, credentials: RegistryCredentials, *, run_id: Optional[str] = None) -> RunOutcome:
        """Authenticate once, then run every target and aggregate the outcomes.

        ConfigError and AuthError propagate before any target starts.
        """

        if run_id:
            set_run_id(run_id)
        run_id = get_run_id()
        started_at = _now()
        if self.deadline is not None:
            self.deadline.arm(self.timeout_seconds)

        targets = self.registry.list_targets()
        LOGGER.info("Release run %s: %d target(s), version %s", run_id, len(targets), event.version)

        session = self.authenticator.authenticate(self.registry_host, credentials)
        try:
            outcomes = self._fan_out(targets, event, session)
        finally:
            session.close()

        outcome = RunOutcome(
            run_id=run_id,
            outcomes=outcomes,
            started_at=_iso(started_at),
            finished_at=_iso(_now()),
        )
        LOGGER.info(
            "Release run %s finished: %d succeeded, %d failed",
            run_id,
            len(outcomes) - len(outcome.failures),
            len(outcome.failures),
        )
        return outcome

    def _fan_out(
        self,
        targets: Sequence[BuildTarget],
        event: RunEvent,
        session: RegistrySession,
    ) -> Tuple[TargetOutcome, ...]:
        # One slot per target, each written once by its own worker and read after the join.
        slots: List[Optional[TargetOutcome]] = [None] * len(targets)
        if not targets:
            return ()

        workers = min(self.max_parallel or len(targets), len(targets))
        futures: List[Future] = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="image-release") as executor:
            for index, target in enumerate(targets):
                context = contextvars.copy_context()
                futures.append(executor.submit(context.run, self._run_slot, slots, index, target, event, session))

            _, not_done = wait(futures, timeout=self.timeout_seconds)
            if not_done:
                LOGGER.warning(
                    "Run exceeded %ss; cancelling %d unfinished target(s)", self.timeout_seconds, len(not_done)
                )
                self.cancel()
                for future in not_done:
                    future.cancel()

        results: List[TargetOutcome] = []
        for index, (target, slot) in enumerate(zip(targets, slots)):
            if slot is None:
                slot = self._unfinished(target, futures[index])
            results.append(slot)
        return tuple(results)

    def _unfinished(self, target: BuildTarget, future: Future) -> TargetOutcome:
        progress = _Progress(target)
        if future.cancelled():
            return progress.fail(Stage.BUILD, CANCELLED)
        error = future.exception()
        return progress.fail(Stage.BUILD, f"worker aborted: {error!r}")

    def _run_slot(
        self,
        slots: List[Optional[TargetOutcome]],
        index: int,
        target: BuildTarget,
        event: RunEvent,
        session: RegistrySession,
    ) -> None:
        slots[index] = self._run_target(target, event, session)

    def _check_cancelled(self, stage: Stage) -> None:
        if self._cancel.is_set():
            raise _Cancelled(stage)

    def _run_target(self, target: BuildTarget, event: RunEvent, session: RegistrySession) -> TargetOutcome:
        progress = _Progress(target)
        with target_context(target.image):
            try:
                progress.advance(TargetState.AUTHENTICATING)
                if target.registry != normalize_host(session.registry):
                    raise AuthError(
                        f"{target.image} is hosted on {target.registry} but the run is logged in to {session.registry}",
                        metadata={"target": target.image, "registry": session.registry},
                    )
                progress.tags = resolve_tags(target.image, event, self.tag_policy, extra_labels=self.extra_labels)

                self._check_cancelled(Stage.BUILD)
                progress.advance(TargetState.BUILDING)

                def _before_push() -> None:
                    self._check_cancelled(Stage.PUSH)
                    progress.advance(TargetState.PUSHING)

                progress.published = self.publisher.build_and_push(
                    target, progress.tags, session, before_push=_before_push
                )

                # Attestation is attempted even after cancellation: the push cannot be undone.
                if self.attestor is not None:
                    progress.advance(TargetState.ATTESTING)
                    self._attest(progress, session, event)
            except _Cancelled as exc:
                LOGGER.warning("Cancelled before %s", exc.stage.value)
                return progress.fail(exc.stage, CANCELLED)
            except ReleaseError as exc:
                stage = exc.stage or progress.stage
                error = exc.to_dict()
                LOGGER.error("Failed at %s: %s", stage.value, exc)
                if error.get("log_excerpt"):
                    LOGGER.error("Build output (tail):\n%s", error["log_excerpt"])
                return progress.fail(stage, str(exc), error)
            except Exception as exc:
                LOGGER.exception("Unexpected error during %s", progress.stage.value)
                cause = f"{type(exc).__name__}: {exc}"
                return progress.fail(progress.stage, cause, {"code": "unexpected_error", "message": cause})

            LOGGER.info("Succeeded: %s", progress.published.reference if progress.published else target.image)
            return progress.succeed()

    def _attest(self, progress: _Progress, session: RegistrySession, event: RunEvent) -> None:
        assert self.attestor is not None and progress.published is not None
        try:
            progress.attestation = self.attestor.attest(
                progress.published,
                session,
                target=progress.target,
                event=event,
                started_on=progress.started_on,
            )
        except AttestError as exc:
            if self.attestation_policy != "warn":
                raise
            LOGGER.warning("Published but unattested: %s", exc)
            progress.warnings.append(f"attest: {exc}")

