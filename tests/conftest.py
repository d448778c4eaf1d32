import hashlib
import subprocess
import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from image_release.config import config_from_dict  # noqa: E402
from image_release.publishing.auth import RegistryCredentials, RegistrySession  # noqa: E402
from image_release.publishing.events import RunEvent  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "coordinator: marks run coordination tests")
    config.addinivalue_line("markers", "cli: marks command line tests")


def _image_of(ref: str) -> str:
    if "@" in ref:
        return ref.split("@", 1)[0]
    return ref.rsplit(":", 1)[0]


class FakeDocker:
    """Stand-in for the docker and cosign CLIs.

    Every invocation is recorded; failures are switched on per image or per
    tag reference. Digests are derived from the image name so that each
    target publishes a distinct, stable digest.
    """

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.envs: List[Dict[str, str]] = []
        self.inputs: List[Optional[str]] = []
        self.timeouts: List[Optional[float]] = []
        self.fail_login = False
        self.fail_build: Set[str] = set()
        self.fail_push: Set[str] = set()
        self.stale: Set[str] = set()
        self.fail_cosign: Set[str] = set()
        self.digests: Dict[str, str] = {}
        self._lock = threading.Lock()

    def digest_for(self, image: str) -> str:
        return self.digests.get(image) or "sha256:" + hashlib.sha256(image.encode("utf-8")).hexdigest()

    def commands(self, *prefix: str) -> List[List[str]]:
        return [call for call in self.calls if call[: len(prefix)] == list(prefix)]

    def __call__(self, command, *, cwd=None, env=None, input=None, check=True, timeout=None):
        argv = list(command)
        with self._lock:
            self.calls.append(argv)
            self.envs.append(dict(env or {}))
            self.inputs.append(input)
            self.timeouts.append(timeout)

        def done(code: int, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
            return subprocess.CompletedProcess(argv, code, stdout, stderr)

        if argv[:2] == ["docker", "login"]:
            if self.fail_login:
                return done(1, stderr="Error response from daemon: denied: invalid credentials")
            return done(0, "Login Succeeded\n")

        if argv[:2] == ["docker", "build"]:
            image = _image_of(argv[argv.index("-t") + 1])
            if image in self.fail_build:
                return done(1, "#5 [2/3] RUN make\n", "#5 ERROR: process \"make\" did not complete\nfailed to solve\n")
            return done(0, "#6 naming to docker.io done\n")

        if argv[:2] == ["docker", "push"]:
            ref = argv[2]
            if ref in self.fail_push:
                return done(1, stderr="denied: permission_denied: write_package\n")
            tag = ref.rsplit(":", 1)[1]
            return done(0, f"{tag}: digest: {self.digest_for(_image_of(ref))} size: 1573\n")

        if argv[:4] == ["docker", "buildx", "imagetools", "inspect"]:
            if _image_of(argv[4]) in self.stale:
                return done(1, stderr="ERROR: not found\n")
            return done(0, f"Name: {argv[4]}\n")

        if argv[:2] == ["cosign", "attest"]:
            if _image_of(argv[-1]) in self.fail_cosign:
                return done(1, stderr="Error: signing: fetching OIDC token\n")
            return done(0)

        raise AssertionError(f"unexpected command {argv}")


@pytest.fixture
def fake_docker() -> FakeDocker:
    return FakeDocker()


@pytest.fixture
def event() -> RunEvent:
    return RunEvent(
        version="v1.2.3",
        repository="acme/platform",
        source_url="https://github.com/acme/platform",
        revision="0123456789abcdef0123456789abcdef01234567",
        ref="refs/tags/v1.2.3",
    )


@pytest.fixture
def credentials() -> RegistryCredentials:
    return RegistryCredentials(username="release-bot", password="s3cret")


@pytest.fixture
def session(tmp_path) -> RegistrySession:
    config_dir = tmp_path / "docker-config"
    config_dir.mkdir()
    return RegistrySession(registry="registry.test", username="release-bot", docker_config=config_dir)


@pytest.fixture
def release_payload() -> dict:
    return {
        "registry": {"host": "registry.test"},
        "targets": [
            {"context": "./app-server", "dockerfile": "./app-server/Dockerfile", "image": "registry.test/app-server"},
            {"context": "./frontend", "dockerfile": "./frontend/Dockerfile", "image": "registry.test/frontend"},
        ],
    }


@pytest.fixture
def release_config(release_payload):
    return config_from_dict(release_payload)
