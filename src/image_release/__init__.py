"""Multi-target container image build, publish and attestation pipeline."""

__version__ = "0.1.0"

__all__ = [
    "cli",
    "config",
    "core",
    "orchestration",
    "publishing",
    "targets",
]
