"""Build container images and publish them under every resolved tag."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ..core.commands import CommandRunner, run_command
from ..core.exceptions import BuildError, PushError, tail
from ..targets import BuildTarget
from .auth import RegistrySession
from .metadata import TagSet

LOGGER = logging.getLogger(__name__)

DIGEST_PATTERN = re.compile(r"^sha256:[0-9a-f]{64}$")
_PUSH_DIGEST = re.compile(r"digest:\s*(sha256:[0-9a-f]{64})")
LOG_EXCERPT_LINES = 20


@dataclass(frozen=True)
class PublishResult:
    """A pushed image. Only constructible with the digest the registry reported."""

    image: str
    digest: str
    tags: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not DIGEST_PATTERN.match(self.digest or ""):
            raise ValueError(f"PublishResult requires a sha256 manifest digest, got {self.digest!r}")
        object.__setattr__(self, "tags", tuple(self.tags))

    @property
    def pushed(self) -> bool:
        return True

    @property
    def reference(self) -> str:
        """Digest-pinned reference (``image@sha256:...``)."""

        return f"{self.image}@{self.digest}"


def build_command(target: BuildTarget, tags: TagSet) -> List[str]:
    cmd = [
        "docker",
        "build",
        "-f",
        str(target.dockerfile),
    ]
    for ref in tags.references(target.image):
        cmd.extend(["-t", ref])
    for key, value in target.build_args.items():
        cmd.extend(["--build-arg", f"{key}={value}"])
    for key, value in tags.labels.items():
        cmd.extend(["--label", f"{key}={value}"])
    cmd.append(str(target.context))
    return cmd


def parse_push_digest(output: str) -> Optional[str]:
    """Extract the manifest digest from ``docker push`` output."""

    matches = _PUSH_DIGEST.findall(output)
    return matches[-1] if matches else None


class DockerPublisher:
    """Build with ``docker build`` and publish with ``docker push``."""

    def __init__(self, runner: CommandRunner = run_command) -> None:
        self.runner = runner

    def build(self, target: BuildTarget, tags: TagSet, session: RegistrySession) -> None:
        LOGGER.info("Building %s from %s", target.image, target.dockerfile)
        result = self.runner(build_command(target, tags), env=session.env(), check=False)
        if result.returncode != 0:
            excerpt = tail(f"{result.stdout}\n{result.stderr}", LOG_EXCERPT_LINES)
            raise BuildError(
                f"docker build for {target.image} exited with status {result.returncode}",
                metadata={"target": target.image, "returncode": result.returncode},
                log_excerpt=excerpt,
            )

    def push(self, target: BuildTarget, tags: TagSet, session: RegistrySession) -> PublishResult:
        pushed: List[str] = []
        digests: Dict[str, str] = {}
        for ref in tags.references(target.image):
            LOGGER.info("Pushing %s", ref)
            result = self.runner(["docker", "push", ref], env=session.env(), check=False)
            if result.returncode != 0:
                raise PushError(
                    f"docker push {ref} exited with status {result.returncode}: {tail(result.stderr, 3)}",
                    metadata={"target": target.image, "tag": ref},
                    pushed_tags=tuple(pushed),
                )
            digest = parse_push_digest(result.stdout)
            if digest is None:
                raise PushError(
                    f"docker push {ref} did not report a manifest digest",
                    metadata={"target": target.image, "tag": ref},
                    pushed_tags=tuple(pushed),
                )
            pushed.append(ref)
            digests[ref] = digest

        distinct = sorted(set(digests.values()))
        if len(distinct) != 1:
            raise PushError(
                f"Tags of {target.image} resolved to different digests: {', '.join(distinct)}",
                metadata={"target": target.image, "digests": digests},
                pushed_tags=tuple(pushed),
            )
        LOGGER.info("Published %s@%s", target.image, distinct[0])
        return PublishResult(image=target.image, digest=distinct[0], tags=tuple(pushed))

    def build_and_push(
        self,
        target: BuildTarget,
        tags: TagSet,
        session: RegistrySession,
        *,
        before_push: Optional[Callable[[], None]] = None,
    ) -> PublishResult:
        """Build ``target`` and push every tag, returning the published digest.

        ``before_push`` runs between the two steps; raising from it aborts the
        push with nothing published.
        """

        self.build(target, tags, session)
        if before_push is not None:
            before_push()
        return self.push(target, tags, session)


__all__ = [
    "DIGEST_PATTERN",
    "DockerPublisher",
    "PublishResult",
    "build_command",
    "parse_push_digest",
]
