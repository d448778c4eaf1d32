"""Configuration loading utilities.

Loads and validates the release configuration (registry, targets, tag policy,
attestation, execution and logging sections) from YAML with dotted overrides.
"""

from .loader import config_from_dict, load_config, save_resolved_config
from .schema import (
    AttestationConfig,
    ExecutionConfig,
    LoggingConfig,
    RegistryConfig,
    ReleaseConfig,
    TagPolicyConfig,
    TargetConfig,
)

__all__ = [
    "AttestationConfig",
    "ExecutionConfig",
    "LoggingConfig",
    "RegistryConfig",
    "ReleaseConfig",
    "TagPolicyConfig",
    "TargetConfig",
    "config_from_dict",
    "load_config",
    "save_resolved_config",
]
