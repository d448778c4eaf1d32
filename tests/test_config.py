"""
Configuration tests.
"""
from pathlib import Path

import pytest
import yaml

from image_release.config import load_config, save_resolved_config
from image_release.core.exceptions import ConfigError

ROOT = Path(__file__).resolve().parents[1]


def _write(tmp_path: Path, payload) -> Path:
    path = tmp_path / "release.yaml"
    path.write_text(yaml.safe_dump(payload) if not isinstance(payload, str) else payload)
    return path


def test_load_bundled_release_config():
    config = load_config(ROOT / "configs" / "release.yaml")
    assert [target.image for target in config.targets] == [
        "ghcr.io/lmnr-ai/app-server",
        "ghcr.io/lmnr-ai/frontend",
        "ghcr.io/lmnr-ai/semantic-search-service",
    ]
    assert config.registry.host == "ghcr.io"
    assert config.attestation.policy == "strict"


def test_defaults_applied(tmp_path, release_payload):
    config = load_config(_write(tmp_path, release_payload))
    assert config.tags.latest == "auto"
    assert config.tags.semver == ["{{version}}", "{{major}}.{{minor}}"]
    assert config.execution.max_parallel is None
    assert config.attestation.enabled is True


def test_overrides_are_merged(tmp_path, release_payload):
    config = load_config(
        _write(tmp_path, release_payload),
        overrides=["execution.max_parallel=1", "attestation.policy=warn", "tags.latest=false"],
    )
    assert config.execution.max_parallel == 1
    assert config.attestation.policy == "warn"
    assert config.tags.latest == "false"


def test_error_names_offending_target(tmp_path, release_payload):
    del release_payload["targets"][1]["dockerfile"]
    with pytest.raises(ConfigError) as excinfo:
        load_config(_write(tmp_path, release_payload))
    assert "targets[1] (registry.test/frontend): dockerfile" in str(excinfo.value)


def test_image_with_tag_is_rejected(tmp_path, release_payload):
    release_payload["targets"][0]["image"] = "registry.test/app-server:latest"
    with pytest.raises(ConfigError, match=r"targets\[0\]"):
        load_config(_write(tmp_path, release_payload))


def test_duplicate_images_are_rejected(tmp_path, release_payload):
    release_payload["targets"][1]["image"] = "registry.test/app-server"
    with pytest.raises(ConfigError, match="duplicates targets"):
        load_config(_write(tmp_path, release_payload))


def test_empty_target_list_is_rejected(tmp_path, release_payload):
    release_payload["targets"] = []
    with pytest.raises(ConfigError, match="at least one build target"):
        load_config(_write(tmp_path, release_payload))


def test_unknown_keys_are_rejected(tmp_path, release_payload):
    release_payload["targets"][0]["platforms"] = ["linux/arm64"]
    with pytest.raises(ConfigError, match="platforms"):
        load_config(_write(tmp_path, release_payload))


def test_invalid_yaml_and_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not valid YAML"):
        load_config(_write(tmp_path, "targets: [unclosed"))
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "missing.yaml")


def test_bad_override_format(tmp_path, release_payload):
    with pytest.raises(ConfigError, match="key=value"):
        load_config(_write(tmp_path, release_payload), overrides=["execution.max_parallel"])


def test_save_resolved_config(tmp_path, release_config):
    path = save_resolved_config(release_config, tmp_path / "out")
    saved = yaml.safe_load(path.read_text())
    assert saved["targets"][0]["image"] == "registry.test/app-server"
    assert saved["tags"]["latest"] == "auto"
