"""Subprocess helpers used for every docker and cosign invocation."""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Sequence

from .exceptions import CommandError

LOGGER = logging.getLogger(__name__)

CommandRunner = Callable[..., "subprocess.CompletedProcess[str]"]

# Exit status reported for a command killed by its timeout (as coreutils ``timeout`` does).
TIMEOUT_RETURNCODE = 124


def run_command(
    command: Sequence[str],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    input: Optional[str] = None,
    check: bool = True,
    timeout: Optional[float] = None,
) -> subprocess.CompletedProcess[str]:
    """Execute ``command`` capturing stdout/stderr as text.

    ``env`` is layered on top of the current process environment. A command
    still running after ``timeout`` seconds is killed and reported with
    ``TIMEOUT_RETURNCODE``.
    """

    process_env = os.environ.copy()
    if env:
        process_env.update(env)

    LOGGER.debug("exec: %s", " ".join(command))
    try:
        result = subprocess.run(
            list(command),
            cwd=str(cwd) if cwd else None,
            env=process_env,
            input=input,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            check=False,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        # Missing executables look like any other failed command to callers.
        result = subprocess.CompletedProcess(list(command), 127, "", str(exc))
    except subprocess.TimeoutExpired as exc:
        LOGGER.warning("Killed after %.1fs: %s", timeout, " ".join(command))
        result = subprocess.CompletedProcess(
            list(command),
            TIMEOUT_RETURNCODE,
            _as_text(exc.stdout),
            f"{_as_text(exc.stderr)}\ntimed out after {timeout:.1f}s",
        )
    if check and result.returncode != 0:
        raise CommandError(command, result.returncode, result.stdout, result.stderr)
    return result


def _as_text(output: Any) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


class DeadlineRunner:
    """Wrap a runner so that no command outlives a shared run deadline.

    Until :meth:`arm` is called commands run unbounded. Once the deadline has
    passed, commands are not started at all and report ``TIMEOUT_RETURNCODE``.
    """

    def __init__(self, runner: CommandRunner = run_command) -> None:
        self.runner = runner
        self._expires_at: Optional[float] = None
        self._lock = threading.Lock()

    def arm(self, seconds: Optional[float]) -> None:
        with self._lock:
            self._expires_at = time.monotonic() + seconds if seconds else None

    def remaining(self) -> Optional[float]:
        with self._lock:
            if self._expires_at is None:
                return None
            return max(self._expires_at - time.monotonic(), 0.0)

    def __call__(self, command: Sequence[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        remaining = self.remaining()
        if remaining is None:
            return self.runner(command, **kwargs)
        if remaining <= 0:
            LOGGER.warning("Run deadline passed; not starting: %s", " ".join(command))
            result = subprocess.CompletedProcess(list(command), TIMEOUT_RETURNCODE, "", "run deadline exceeded")
            if kwargs.get("check", True):
                raise CommandError(command, result.returncode, result.stdout, result.stderr)
            return result
        return self.runner(command, timeout=remaining, **kwargs)
