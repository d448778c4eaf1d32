import pytest
import yaml
from typer.testing import CliRunner

from image_release.cli import main as cli_main
from image_release.orchestration import RunCoordinator, RunReport

pytestmark = pytest.mark.cli

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path, release_payload):
    release_payload["execution"] = {"report_dir": str(tmp_path / "reports")}
    path = tmp_path / "release.yaml"
    path.write_text(yaml.safe_dump(release_payload), encoding="utf-8")
    return path


@pytest.fixture
def cli_env(monkeypatch, fake_docker):
    original = RunCoordinator.from_config
    monkeypatch.setattr(
        cli_main.RunCoordinator,
        "from_config",
        staticmethod(lambda config, **kwargs: original(config, runner=fake_docker, **kwargs)),
    )
    logging_calls = []
    monkeypatch.setattr(cli_main, "configure_logging", lambda *args, **kwargs: logging_calls.append((args, kwargs)))
    for name in ("IMAGE_RELEASE_SECRETS_BACKEND", "IMAGE_RELEASE_SECRETS_ENV_PREFIX", "GITHUB_EVENT_PATH", "GITHUB_REF"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("REGISTRY_USERNAME", "release-bot")
    monkeypatch.setenv("REGISTRY_PASSWORD", "s3cret")
    return logging_calls


def test_targets_lists_images(config_file):
    result = runner.invoke(cli_main.app, ["targets", "--config", str(config_file)])
    assert result.exit_code == 0, result.output
    assert "registry.test/app-server" in result.output
    assert "registry.test/frontend" in result.output


def test_plan_shows_tags(config_file, cli_env):
    result = runner.invoke(cli_main.app, ["plan", "--config", str(config_file), "--version", "v2.0.0-rc.1"])
    assert result.exit_code == 0, result.output
    assert "registry.test/frontend:v2.0.0-rc.1" in result.output
    assert "registry.test/frontend:latest" not in result.output
    assert "org.opencontainers.image.version=2.0.0-rc.1" in result.output


def test_plan_without_version_fails(config_file, cli_env):
    result = runner.invoke(cli_main.app, ["plan", "--config", str(config_file)])
    assert result.exit_code == cli_main.EXIT_TARGET_FAILED


def test_run_writes_report(config_file, cli_env, fake_docker, tmp_path):
    result = runner.invoke(
        cli_main.app,
        ["run", "--config", str(config_file), "--version", "v1.2.3", "--run-id", "cli-run", "--json-logs"],
    )
    assert result.exit_code == 0, result.output
    assert cli_env[0][1]["json_logs"] is True

    report = RunReport.load(tmp_path / "reports" / "cli-run.json")
    assert report.exit_status == "succeeded"
    assert report.event["version"] == "v1.2.3"
    digests = {entry["image"]: entry["digest"] for entry in report.targets}
    assert digests == {
        "registry.test/app-server": fake_docker.digest_for("registry.test/app-server"),
        "registry.test/frontend": fake_docker.digest_for("registry.test/frontend"),
    }
    assert (tmp_path / "reports" / "cli-run" / "config_resolved.yaml").exists()


def test_run_exits_one_when_a_target_fails(config_file, cli_env, fake_docker, tmp_path):
    fake_docker.fail_build.add("registry.test/frontend")
    result = runner.invoke(cli_main.app, ["run", "--config", str(config_file), "--version", "v1.2.3", "--run-id", "r2"])
    assert result.exit_code == cli_main.EXIT_TARGET_FAILED

    report = RunReport.load(tmp_path / "reports" / "r2.json")
    assert report.exit_status == "failed"
    states = {entry["image"]: (entry["state"], entry["stage"]) for entry in report.targets}
    assert states["registry.test/frontend"] == ("FAILED", "build")
    assert states["registry.test/app-server"] == ("SUCCEEDED", None)
    failed = next(entry for entry in report.targets if entry["image"] == "registry.test/frontend")
    assert "failed to solve" in failed["error"]["log_excerpt"]


def test_run_aborts_without_credentials(config_file, cli_env, fake_docker, monkeypatch):
    monkeypatch.delenv("REGISTRY_PASSWORD")
    result = runner.invoke(cli_main.app, ["run", "--config", str(config_file), "--version", "v1.2.3"])
    assert result.exit_code == cli_main.EXIT_RUN_ABORTED
    assert fake_docker.calls == []


def test_run_aborts_on_rejected_login(config_file, cli_env, fake_docker):
    fake_docker.fail_login = True
    result = runner.invoke(cli_main.app, ["run", "--config", str(config_file), "--version", "v1.2.3"])
    assert result.exit_code == cli_main.EXIT_RUN_ABORTED
    assert fake_docker.commands("docker", "build") == []


def test_invalid_config_aborts(tmp_path, cli_env):
    path = tmp_path / "release.yaml"
    path.write_text("targets: []\n", encoding="utf-8")
    result = runner.invoke(cli_main.app, ["run", "--config", str(path), "--version", "v1.2.3"])
    assert result.exit_code == cli_main.EXIT_RUN_ABORTED


def test_set_override(config_file, cli_env, tmp_path):
    result = runner.invoke(
        cli_main.app,
        [
            "run",
            "--config",
            str(config_file),
            "--version",
            "v1.2.3",
            "--run-id",
            "r3",
            "--set",
            f"execution.report_dir={tmp_path / 'elsewhere'}",
        ],
    )
    assert result.exit_code == 0, result.output
    assert (tmp_path / "elsewhere" / "r3.json").exists()


def test_run_selected_target_only(config_file, cli_env, fake_docker, tmp_path):
    result = runner.invoke(
        cli_main.app,
        ["run", "--config", str(config_file), "--version", "v1.2.3", "--run-id", "r4", "--target", "registry.test/frontend"],
    )
    assert result.exit_code == 0, result.output
    report = RunReport.load(tmp_path / "reports" / "r4.json")
    assert [entry["image"] for entry in report.targets] == ["registry.test/frontend"]
    assert len(fake_docker.commands("docker", "build")) == 1


def test_unknown_target_aborts(config_file, cli_env, fake_docker):
    result = runner.invoke(
        cli_main.app, ["plan", "--config", str(config_file), "--version", "v1.2.3", "--target", "registry.test/nope"]
    )
    assert result.exit_code == cli_main.EXIT_RUN_ABORTED


def test_summary_shows_failure_detail(release_config, fake_docker, event, credentials):
    from rich.console import Console

    fake_docker.fail_build.add("registry.test/app-server")
    fake_docker.fail_push.add("registry.test/frontend:1.2")
    outcome = RunCoordinator.from_config(release_config, runner=fake_docker).run(event, credentials)

    console = Console(width=400, record=True)
    console.print(cli_main.render_summary(outcome))
    text = console.export_text()
    assert "failed to solve" in text
    assert "pushed before failing: registry.test/frontend:v1.2.3, registry.test/frontend:1.2.3" in text
