"""Derive image tags and OCI labels from the triggering event.

Resolution is a pure function of (image, event, policy): the same inputs always
produce the same tag sequence and labels, so re-running a release re-pushes the
same tags. The one exception is ``org.opencontainers.image.created``, which
records the build time unless a fixed ``created`` timestamp is passed in.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from ..config.schema import TagPolicyConfig
from ..core.exceptions import MetadataError
from .events import RunEvent

TAG_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
MAX_TAG_LENGTH = 128
OCI_LABEL_PREFIX = "org.opencontainers.image."
CREATED_LABEL = f"{OCI_LABEL_PREFIX}created"

_SEMVER = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>[0-9A-Za-z.-]+))?(?:\+(?P<build>[0-9A-Za-z.-]+))?$"
)
_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")
_INVALID_TAG_CHARS = re.compile(r"[^A-Za-z0-9_.-]")
# Patterns that keep the full version are the only ones rendered for prereleases.
_PRERELEASE_SAFE = ("raw", "version")


@dataclass(frozen=True)
class TagSet:
    """Ordered tags plus labels for one target."""

    tags: Tuple[str, ...]
    labels: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        tags = tuple(self.tags)
        if not tags:
            raise MetadataError("Resolved tag set is empty")
        invalid = [tag for tag in tags if not TAG_PATTERN.match(tag)]
        if invalid:
            raise MetadataError(f"Invalid registry tag(s): {', '.join(invalid)}", metadata={"tags": invalid})
        object.__setattr__(self, "tags", tags)
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))

    def references(self, image: str) -> Tuple[str, ...]:
        return tuple(f"{image}:{tag}" for tag in self.tags)


def sanitize_tag(value: str) -> str:
    """Map an arbitrary identifier onto the registry tag alphabet."""

    cleaned = _INVALID_TAG_CHARS.sub("-", value.strip()).lstrip(".-")
    return cleaned[:MAX_TAG_LENGTH]


def parse_semver(value: str) -> Optional[Dict[str, str]]:
    match = _SEMVER.match(value.strip())
    if not match:
        return None
    parts = {key: (val or "") for key, val in match.groupdict().items()}
    version = f"{parts['major']}.{parts['minor']}.{parts['patch']}"
    if parts["prerelease"]:
        version = f"{version}-{parts['prerelease']}"
    if parts["build"]:
        version = f"{version}+{parts['build']}"
    parts["version"] = version
    parts["raw"] = value.strip()
    return parts


def _render(pattern: str, values: Mapping[str, str]) -> str:
    def _substitute(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key not in values:
            raise MetadataError(f"Unknown placeholder '{{{{{key}}}}}' in tag pattern '{pattern}'")
        return values[key]

    return _PLACEHOLDER.sub(_substitute, pattern)


def _keeps_prerelease(pattern: str) -> bool:
    return any(key in _PRERELEASE_SAFE for key in _PLACEHOLDER.findall(pattern))


def _format_created(created: Optional[datetime]) -> str:
    moment = created or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def resolve_tags(
    image: str,
    event: RunEvent,
    policy: Optional[TagPolicyConfig] = None,
    *,
    extra_labels: Optional[Mapping[str, str]] = None,
    created: Optional[datetime] = None,
) -> TagSet:
    """Resolve the tags and labels ``image`` is published under for ``event``."""

    policy = policy or TagPolicyConfig()
    raw = (event.version or "").strip()
    if not raw:
        raise MetadataError(
            f"Event '{event.event_name}' carries no version identifier",
            metadata={"image": image},
        )
    sanitized = sanitize_tag(raw)
    if not sanitized:
        raise MetadataError(f"Version identifier '{raw}' has no usable tag characters", metadata={"image": image})

    semver = parse_semver(raw)
    prerelease = event.prerelease or bool(semver and semver["prerelease"])

    tags = []
    if policy.ref:
        tags.append(sanitized)

    version_label = sanitized
    if semver:
        for pattern in policy.semver:
            if prerelease and not _keeps_prerelease(pattern):
                continue
            tags.append(sanitize_tag(_render(pattern, semver)))
        version_label = sanitize_tag(semver["version"])

    if policy.latest == "true" or (policy.latest == "auto" and semver and not prerelease):
        tags.append("latest")
    if policy.sha and event.revision:
        tags.append(f"sha-{event.revision[:7]}")

    ordered = tuple(dict.fromkeys(tag for tag in tags if tag))

    optional = {
        "title": image.rsplit("/", 1)[-1],
        "description": event.description,
        "url": event.source_url,
        "source": event.source_url,
        "revision": event.revision,
        "licenses": event.licenses,
    }
    labels = {f"{OCI_LABEL_PREFIX}{key}": value for key, value in optional.items() if value}
    labels[f"{OCI_LABEL_PREFIX}version"] = version_label
    labels[CREATED_LABEL] = _format_created(created)
    labels.update(extra_labels or {})

    return TagSet(ordered, dict(sorted(labels.items())))
