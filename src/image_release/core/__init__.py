"""Core primitives: errors, logging, secrets and subprocess execution."""

from .commands import CommandRunner, run_command
from .exceptions import (
    AttestError,
    AuthError,
    BuildError,
    CommandError,
    ConfigError,
    MetadataError,
    PushError,
    ReleaseError,
)
from .logging import configure_logging, get_run_id, set_run_id, target_context
from .secrets import SecretManager, SecretResolutionError, SecretsConfig
from .stages import Stage, TargetState

__all__ = [
    "AttestError",
    "AuthError",
    "BuildError",
    "CommandError",
    "CommandRunner",
    "ConfigError",
    "MetadataError",
    "PushError",
    "ReleaseError",
    "SecretManager",
    "SecretResolutionError",
    "SecretsConfig",
    "Stage",
    "TargetState",
    "configure_logging",
    "get_run_id",
    "run_command",
    "set_run_id",
    "target_context",
]
