"""Registry-facing stages: metadata, authentication, build/push and attestation."""

from .attest import AttestationRecord, ProvenanceAttestor
from .auth import Authenticator, RegistryCredentials, RegistrySession, resolve_credentials
from .events import RunEvent
from .metadata import TagSet, resolve_tags
from .publisher import DockerPublisher, PublishResult

__all__ = [
    "AttestationRecord",
    "Authenticator",
    "DockerPublisher",
    "ProvenanceAttestor",
    "PublishResult",
    "RegistryCredentials",
    "RegistrySession",
    "RunEvent",
    "TagSet",
    "resolve_credentials",
    "resolve_tags",
]
