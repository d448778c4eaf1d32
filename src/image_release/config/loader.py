"""Helpers for reading and writing release configuration files."""

from __future__ import annotations

import json
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

import yaml
from pydantic import ValidationError

from ..core.exceptions import ConfigError
from .schema import ReleaseConfig


def _merge_dict(base: MutableMapping[str, Any], updates: Mapping[str, Any]) -> MutableMapping[str, Any]:
    for key, value in updates.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), Mapping):
            base[key] = _merge_dict(deepcopy(base[key]), value)
        else:
            base[key] = deepcopy(value)
    return base


def _parse_override(override: str) -> Dict[str, Any]:
    if "=" not in override:
        raise ConfigError(f"Override '{override}' must be in key=value format")
    key, raw_value = override.split("=", 1)
    # JSON first so numbers, lists and booleans keep their type
    try:
        value = json.loads(raw_value)
    except json.JSONDecodeError:
        value = raw_value
    nested_keys = key.split(".")
    current: Dict[str, Any] = {}
    cursor = current
    for nested_key in nested_keys[:-1]:
        cursor[nested_key] = {}
        cursor = cursor[nested_key]
    cursor[nested_keys[-1]] = value
    return current


def _describe_location(loc: Sequence[Any], payload: Mapping[str, Any]) -> str:
    """Render a pydantic error location, naming the target entry when there is one."""

    if len(loc) >= 2 and loc[0] == "targets" and isinstance(loc[1], int):
        index = loc[1]
        label = f"targets[{index}]"
        targets = payload.get("targets")
        if isinstance(targets, list) and index < len(targets) and isinstance(targets[index], Mapping):
            image = targets[index].get("image")
            if image:
                label = f"{label} ({image})"
        rest = ".".join(str(part) for part in loc[2:])
        return f"{label}: {rest}" if rest else label
    return ".".join(str(part) for part in loc) or "<root>"


def _validate(payload: Mapping[str, Any], source: str) -> ReleaseConfig:
    try:
        config = ReleaseConfig.model_validate(payload)
    except ValidationError as exc:
        problems = [f"{_describe_location(err['loc'], payload)}: {err['msg']}" for err in exc.errors()]
        raise ConfigError(
            f"Invalid configuration {source}: " + "; ".join(problems),
            metadata={"source": source, "errors": problems},
        ) from exc

    seen: Dict[str, int] = {}
    for index, target in enumerate(config.targets):
        if target.image in seen:
            raise ConfigError(
                f"Invalid configuration {source}: targets[{index}] ({target.image}) duplicates targets[{seen[target.image]}]",
                metadata={"source": source, "entry": index},
            )
        seen[target.image] = index
    return config


def load_config(path: str | Path, overrides: Optional[Iterable[str]] = None) -> ReleaseConfig:
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}", metadata={"source": str(path)})
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file {path} is not valid YAML: {exc}", metadata={"source": str(path)}) from exc
    if not isinstance(payload, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping", metadata={"source": str(path)})
    payload = deepcopy(dict(payload))

    if overrides:
        for override in overrides:
            payload = _merge_dict(payload, _parse_override(override))

    return _validate(payload, str(path))


def config_from_dict(payload: Mapping[str, Any]) -> ReleaseConfig:
    """Validate an in-memory configuration mapping."""
    return _validate(deepcopy(dict(payload)), "<mapping>")


def save_resolved_config(config: ReleaseConfig, output_dir: str | Path, *, filename: str = "config_resolved.yaml") -> Path:
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / filename
    serializable = json.loads(config.model_dump_json())
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(serializable, handle, sort_keys=False)
    return path
