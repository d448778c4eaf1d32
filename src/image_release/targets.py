"""Registry of the build targets declared for a release run."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple

from .config.schema import ReleaseConfig
from .core.exceptions import ConfigError

DEFAULT_REGISTRY = "docker.io"
_DOCKER_HUB_ALIASES = frozenset({"index.docker.io", "registry-1.docker.io"})


def normalize_host(host: str) -> str:
    host = host.strip().lower().rstrip("/")
    return DEFAULT_REGISTRY if host in _DOCKER_HUB_ALIASES else host


def registry_host(image: str) -> str:
    """Registry host of an image reference.

    Follows the docker CLI: the first path component is a host only when it
    contains a dot or a port, or is ``localhost``; otherwise the image lives on
    Docker Hub.
    """

    first, sep, _ = image.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        return normalize_host(first)
    return DEFAULT_REGISTRY


@dataclass(frozen=True)
class BuildTarget:
    """One independently buildable and publishable image definition."""

    context: Path
    dockerfile: Path
    image: str
    build_args: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "context", Path(self.context))
        object.__setattr__(self, "dockerfile", Path(self.dockerfile))
        object.__setattr__(self, "build_args", MappingProxyType(dict(self.build_args)))

    @property
    def registry(self) -> str:
        """Registry host the image is pushed to."""

        return registry_host(self.image)


class TargetRegistry:
    """Ordered, read-only view over the configured build targets."""

    def __init__(self, targets: Tuple[BuildTarget, ...], base_dir: Optional[Path] = None) -> None:
        self._targets = tuple(targets)
        self.base_dir = base_dir
        self._index: Dict[str, BuildTarget] = {}
        for position, target in enumerate(self._targets):
            if target.image in self._index:
                raise ConfigError(
                    f"targets[{position}] ({target.image}) is declared more than once",
                    metadata={"entry": position},
                )
            self._index[target.image] = target

    @classmethod
    def from_config(cls, config: ReleaseConfig, base_dir: Optional[Path] = None) -> "TargetRegistry":
        """Build the registry, resolving relative paths against ``base_dir`` when given."""

        def _resolve(value: str) -> Path:
            path = Path(value)
            if base_dir is not None and not path.is_absolute():
                return base_dir / path
            return path

        targets = tuple(
            BuildTarget(
                context=_resolve(entry.context),
                dockerfile=_resolve(entry.dockerfile),
                image=entry.image,
                build_args=entry.build_args,
            )
            for entry in config.targets
        )
        return cls(targets, base_dir=base_dir)

    def list_targets(self) -> Tuple[BuildTarget, ...]:
        return self._targets

    def get(self, image: str) -> BuildTarget:
        try:
            return self._index[image]
        except KeyError as exc:
            known = ", ".join(self._index)
            raise ConfigError(f"Unknown build target '{image}'. Expected one of: {known}") from exc

    def select(self, images: Iterable[str]) -> "TargetRegistry":
        """Return a registry holding only ``images``, kept in configuration order."""

        wanted = {self.get(image).image for image in images}
        return TargetRegistry(tuple(t for t in self._targets if t.image in wanted), base_dir=self.base_dir)

    def __len__(self) -> int:
        return len(self._targets)


__all__ = ["DEFAULT_REGISTRY", "BuildTarget", "TargetRegistry", "normalize_host", "registry_host"]
