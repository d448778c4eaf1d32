import pytest

from image_release.core.secrets import SecretManager, SecretResolutionError, SecretsConfig


def test_env_backend_with_prefix(monkeypatch):
    monkeypatch.setenv("CI_GITHUB_TOKEN", "prefixed")
    manager = SecretManager(SecretsConfig(env_prefix="ci_"))
    assert manager.get("GITHUB_TOKEN") == "prefixed"


def test_env_backend_falls_back_to_plain_name(monkeypatch):
    monkeypatch.delenv("CI_GITHUB_ACTOR", raising=False)
    monkeypatch.setenv("GITHUB_ACTOR", "octocat")
    assert SecretManager(SecretsConfig(env_prefix="CI_")).get("GITHUB_ACTOR") == "octocat"


def test_file_backend(tmp_path):
    (tmp_path / "GITHUB_TOKEN").write_text("from-file\n", encoding="utf-8")
    manager = SecretManager(SecretsConfig(backend="file", secrets_dir=str(tmp_path)))
    assert manager.get("GITHUB_TOKEN") == "from-file"
    assert manager.get("MISSING", required=False, default="x") == "x"


def test_missing_secret_raises(monkeypatch):
    monkeypatch.delenv("NOPE_TOKEN", raising=False)
    with pytest.raises(SecretResolutionError):
        SecretManager(SecretsConfig()).validate_required(["NOPE_TOKEN"])


def test_unknown_backend():
    with pytest.raises(SecretResolutionError, match="vault"):
        SecretManager(SecretsConfig(backend="vault")).get("X")


def test_validate_required_lists_every_missing_name(monkeypatch):
    monkeypatch.setenv("GITHUB_ACTOR", "octocat")
    monkeypatch.delenv("NOPE_A", raising=False)
    monkeypatch.delenv("NOPE_B", raising=False)
    with pytest.raises(SecretResolutionError, match="NOPE_A, NOPE_B"):
        SecretManager(SecretsConfig()).validate_required(["GITHUB_ACTOR", "NOPE_A", "NOPE_B"])
