"""Sign and upload build provenance for a published image digest."""

from __future__ import annotations

import json
import logging
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from ..core.commands import CommandRunner, run_command
from ..core.exceptions import AttestError, tail
from ..targets import BuildTarget
from .auth import RegistrySession
from .events import RunEvent
from .provenance import BuildContext, ProvenanceStatement, build_predicate
from .publisher import PublishResult

LOGGER = logging.getLogger(__name__)

COSIGN_PREDICATE_TYPE = "slsaprovenance1"


@dataclass(frozen=True)
class AttestationRecord:
    """Signed statement binding ``subject_digest`` to its build provenance."""

    subject_name: str
    subject_digest: str
    statement: Mapping[str, Any] = field(hash=False)
    statement_digest: str
    signer: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_name": self.subject_name,
            "subject_digest": self.subject_digest,
            "statement_digest": self.statement_digest,
            "signer": self.signer,
        }


class ProvenanceAttestor:
    """Attach SLSA provenance to an image digest with ``cosign attest``.

    Without a key cosign signs keylessly using the ambient OIDC identity of the
    CI job.
    """

    def __init__(
        self,
        runner: CommandRunner = run_command,
        *,
        key: Optional[str] = None,
        build_context: Optional[BuildContext] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.runner = runner
        self.key = key
        self.build_context = build_context or BuildContext.from_env()
        self.clock = clock

    @property
    def signer(self) -> str:
        return f"key:{self.key}" if self.key else "keyless"

    def attest(
        self,
        published: PublishResult,
        session: RegistrySession,
        *,
        target: BuildTarget,
        event: RunEvent,
        started_on: Optional[datetime] = None,
    ) -> AttestationRecord:
        self._verify_digest(published, session)

        finished_on = self.clock()
        statement = ProvenanceStatement(
            subject_name=published.image,
            subject_digest=published.digest,
            predicate=build_predicate(
                context=str(target.context),
                dockerfile=str(target.dockerfile),
                tags=list(published.tags),
                version=event.version or "",
                source_url=event.source_url,
                revision=event.revision,
                ref=event.ref,
                build=self.build_context,
                started_on=started_on or finished_on,
                finished_on=finished_on,
            ),
        )

        with tempfile.TemporaryDirectory(prefix="image-release-attest-") as workdir:
            predicate_path = Path(workdir) / "predicate.json"
            predicate_path.write_text(json.dumps(statement.predicate, sort_keys=True), encoding="utf-8")
            cmd = [
                "cosign",
                "attest",
                "--yes",
                "--type",
                COSIGN_PREDICATE_TYPE,
                "--predicate",
                str(predicate_path),
            ]
            if self.key:
                cmd.extend(["--key", self.key])
            cmd.append(published.reference)
            result = self.runner(cmd, env=session.env(), check=False)

        if result.returncode != 0:
            raise AttestError(
                f"Signing provenance for {published.reference} failed: {tail(result.stderr, 3)}",
                metadata={"target": published.image, "digest": published.digest, "returncode": result.returncode},
            )

        LOGGER.info("Attested %s (%s)", published.reference, self.signer)
        return AttestationRecord(
            subject_name=published.image,
            subject_digest=published.digest,
            statement=statement.to_dict(),
            statement_digest=statement.digest,
            signer=self.signer,
        )

    def _verify_digest(self, published: PublishResult, session: RegistrySession) -> None:
        """Fail if the registry no longer resolves the pushed manifest."""

        result = self.runner(
            ["docker", "buildx", "imagetools", "inspect", published.reference],
            env=session.env(),
            check=False,
        )
        if result.returncode != 0:
            raise AttestError(
                f"Registry no longer resolves {published.reference}: {tail(result.stderr, 3)}",
                metadata={"target": published.image, "digest": published.digest, "stale": True},
            )
