"""Secrets resolution for registry credentials."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

LOGGER = logging.getLogger(__name__)

BACKENDS = ("env", "file")


class SecretResolutionError(RuntimeError):
    """Raised when a secret cannot be resolved."""


@dataclass
class SecretsConfig:
    backend: str = "env"
    env_prefix: str = ""
    secrets_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> "SecretsConfig":
        return cls(
            backend=os.getenv("IMAGE_RELEASE_SECRETS_BACKEND", "env").lower(),
            env_prefix=os.getenv("IMAGE_RELEASE_SECRETS_ENV_PREFIX", ""),
            secrets_dir=os.getenv("IMAGE_RELEASE_SECRETS_DIR", "/run/secrets"),
        )


class SecretManager:
    """Look up registry secrets by name.

    The ``env`` backend reads ``<PREFIX><NAME>`` and falls back to ``NAME``
    (so ``GITHUB_TOKEN`` works unprefixed in CI). The ``file`` backend reads
    ``<secrets_dir>/<NAME>``, the layout of Docker and Kubernetes secret mounts.
    Resolved values are cached for the lifetime of the manager.
    """

    def __init__(self, config: SecretsConfig) -> None:
        self.config = config
        self._cache: Dict[str, str] = {}

    def get(self, name: str, *, required: bool = True, default: Optional[str] = None) -> Optional[str]:
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        if self.config.backend not in BACKENDS:
            raise SecretResolutionError(
                f"Unsupported secrets backend: {self.config.backend} (expected one of {', '.join(BACKENDS)})"
            )
        lookup = self._from_env if self.config.backend == "env" else self._from_file
        value = lookup(name)
        if value is None:
            if not required:
                return default
            raise SecretResolutionError(f"Secret '{name}' not found in backend '{self.config.backend}'.")

        self._cache[name] = value
        return value

    def validate_required(self, names: Iterable[str]) -> None:
        """Raise listing every name in ``names`` that does not resolve."""

        missing: List[str] = []
        for name in names:
            try:
                self.get(name)
            except SecretResolutionError:
                missing.append(name)
        if missing:
            raise SecretResolutionError(
                f"Missing secret(s) in backend '{self.config.backend}': {', '.join(missing)}"
            )

    def _from_env(self, name: str) -> Optional[str]:
        prefixed = f"{self.config.env_prefix}{name}".upper()
        return os.getenv(prefixed) or os.getenv(name)

    def _from_file(self, name: str) -> Optional[str]:
        if not self.config.secrets_dir:
            raise SecretResolutionError("Secrets directory not configured for file backend.")
        path = Path(self.config.secrets_dir) / name
        if not path.is_file():
            return None
        LOGGER.debug("Reading secret %s from %s", name, path)
        return path.read_text(encoding="utf-8").strip() or None
