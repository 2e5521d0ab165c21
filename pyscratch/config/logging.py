"""
Logging configuration for pyscratch.

The host CLI and every sandbox worker configure logging through
setup_logging(). Records always go to stderr: the host's stdout carries
rendered results and a worker's stdout carries protocol frames.
"""
import logging
import sys
from typing import Optional, TextIO

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Loggers that only matter when something is wrong with them
QUIET_LOGGERS = ("asyncio", "opentelemetry")


def resolve_level(level: str) -> int:
    """Map a level name such as "debug" to its number; unknown names give INFO."""
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def worker_log_format(session_id: str) -> str:
    """Format for worker records, tagged with a short form of the session id."""
    return f"%(asctime)s - worker[{session_id[:8]}] - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> None:
    log_level = resolve_level(level)

    handlers = [logging.StreamHandler(stream or sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format=format_string or LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))
