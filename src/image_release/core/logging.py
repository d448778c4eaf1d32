"""Logging configuration with structured JSON support and run/target correlation."""

from __future__ import annotations

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

_RUN_ID: ContextVar[str] = ContextVar("run_id", default="")
_TARGET: ContextVar[str] = ContextVar("target", default="")


class JsonFormatter(logging.Formatter):
    """Format records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "lineno": record.lineno,
            "run_id": _RUN_ID.get(),
            "target": _TARGET.get(),
        }

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_context"):
            payload.update(record.extra_context)  # type: ignore[attr-defined]

        return json.dumps(payload)


class TargetFilter(logging.Filter):
    """Prefix plain-text messages with the target being processed."""

    def filter(self, record: logging.LogRecord) -> bool:
        target = _TARGET.get()
        record.target_prefix = f"[{target}] " if target else ""
        return True


def get_run_id() -> str:
    """Get the current run ID or generate a new one."""
    run_id = _RUN_ID.get()
    if not run_id:
        run_id = uuid.uuid4().hex
        _RUN_ID.set(run_id)
    return run_id


def set_run_id(run_id: str) -> None:
    _RUN_ID.set(run_id)


@contextmanager
def target_context(image: str) -> Iterator[None]:
    """Tag every record emitted inside the block with ``image``."""
    token = _TARGET.set(image)
    try:
        yield
    finally:
        _TARGET.reset(token)


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    json_logs: bool = False,
) -> None:
    """Configure global logging."""
    handlers: list[Any] = [logging.StreamHandler(sys.stderr)]

    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "image-release.log"))

    if json_logs:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(target_prefix)s%(message)s")
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(TargetFilter())

    logging.basicConfig(
        level=level.upper(),
        handlers=handlers,
        force=True,
    )
