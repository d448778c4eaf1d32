"""Registry authentication scoped to a single release run."""

from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from ..config.schema import RegistryConfig
from ..core.commands import CommandRunner, run_command
from ..core.exceptions import AuthError
from ..core.secrets import SecretManager, SecretResolutionError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistryCredentials:
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class RegistrySession:
    """Authenticated, run-scoped registry session.

    The session only carries a private Docker config directory holding the
    login; it is never mutated after creation and may be shared by every
    target worker.
    """

    registry: str
    username: str
    docker_config: Path

    def env(self) -> Dict[str, str]:
        """Environment for docker/cosign subprocesses using this session."""

        return {"DOCKER_CONFIG": str(self.docker_config)}

    def close(self) -> None:
        shutil.rmtree(self.docker_config, ignore_errors=True)


def resolve_credentials(config: RegistryConfig, secrets: SecretManager) -> RegistryCredentials:
    try:
        secrets.validate_required([config.username_secret, config.password_secret])
        username = secrets.get(config.username_secret)
        password = secrets.get(config.password_secret)
    except SecretResolutionError as exc:
        raise AuthError(f"Registry credentials for {config.host} unavailable: {exc}", metadata={"registry": config.host}) from exc
    return RegistryCredentials(username=str(username), password=str(password))


class Authenticator:
    """Log in to a registry with ``docker login`` using a throwaway config directory."""

    def __init__(self, runner: CommandRunner = run_command, *, workdir: Optional[Path] = None) -> None:
        self.runner = runner
        self.workdir = workdir

    def authenticate(self, registry_host: str, credentials: RegistryCredentials) -> RegistrySession:
        if not credentials.username or not credentials.password:
            raise AuthError(f"Empty credentials for registry {registry_host}", metadata={"registry": registry_host})

        config_dir = Path(tempfile.mkdtemp(prefix="image-release-auth-", dir=self.workdir))
        session = RegistrySession(registry=registry_host, username=credentials.username, docker_config=config_dir)
        result = self.runner(
            ["docker", "login", registry_host, "--username", credentials.username, "--password-stdin"],
            env=session.env(),
            input=credentials.password,
            check=False,
        )
        if result.returncode != 0:
            session.close()
            raise AuthError(
                f"docker login to {registry_host} failed: {result.stderr.strip() or result.stdout.strip()}",
                metadata={"registry": registry_host, "returncode": result.returncode},
            )
        LOGGER.info("Authenticated to %s as %s", registry_host, credentials.username)
        return session
