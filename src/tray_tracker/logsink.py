"""Side-channel notifications emitted by the migration engine."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from rich.logging import RichHandler

logger = logging.getLogger("tray_tracker.engine")

LogSink = Callable[[str, str, Optional[Any], Optional[str]], None]


def logging_sink(level: str, message: str, data: Any = None, context: Optional[str] = None) -> None:
    """Forward a notification to the standard logger."""
    prefix = f"[{context}] " if context else ""
    suffix = f" {json.dumps(data, default=str)}" if data else ""
    logger.log(logging.getLevelName(level.upper()), f"{prefix}{message}{suffix}")


class JsonlLogSink:
    """Append notifications to a JSON-lines audit file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def __call__(self, level: str, message: str, data: Any = None, context: Optional[str] = None) -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level.lower(),
            "message": message,
            "data": data,
            "context": context,
        }
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(record, default=str) + "\n")


def fan_out(sinks: Iterable[LogSink]) -> LogSink:
    targets = list(sinks)

    def _sink(level: str, message: str, data: Any = None, context: Optional[str] = None) -> None:
        for target in targets:
            target(level, message, data, context)

    return _sink


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
