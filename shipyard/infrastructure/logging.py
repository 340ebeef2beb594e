"""
Centralized Logging

Architectural Intent:
- One stderr handler on the "shipyard" logger, human-readable or JSON lines
- Records emitted while a pipeline run executes carry that run's id
- Levels come from CLI flags (--verbose, --debug) or the config file
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, UTC
from typing import Optional

HUMAN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class RunContextFilter(logging.Filter):
    """Stamps records with the run id held by a context variable.

    An explicit ``extra={"run_id": ...}`` on the call wins over the context.
    """

    def __init__(self, run_context: ContextVar):
        super().__init__()
        self.run_context = run_context

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "run_id", None):
            record.run_id = self.run_context.get()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line; run_id and exception only when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        run_id = getattr(record, "run_id", None)
        if run_id:
            entry["run_id"] = run_id
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def parse_level(name: str, default: int = logging.WARNING) -> int:
    """Maps a level name from configuration ("info", "DEBUG") to its number."""
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else default


def configure_logging(
    level: int = logging.INFO,
    json_format: bool = False,
    run_context: Optional[ContextVar] = None,
) -> logging.Handler:
    """Install the Shipyard handler, replacing any previous one.

    Args:
        level: Logging level for the "shipyard" logger and its handler.
        json_format: Emit JSON lines instead of the human format.
        run_context: Context variable holding the id of the executing run.

    Returns:
        The installed handler.
    """
    root = logging.getLogger("shipyard")
    root.setLevel(level)
    for old in list(root.handlers):
        root.removeHandler(old)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(HUMAN_FORMAT))
    if run_context is not None:
        handler.addFilter(RunContextFilter(run_context))

    root.addHandler(handler)
    return handler
