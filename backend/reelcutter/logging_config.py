"""
Logging configuration for the pipeline service.

Environment variables:
- LOG_LEVEL: Global log level (default: INFO)
- LOG_FORMAT: "structured" (default) or "simple"
- LOG_LEVEL_<GROUP>: Per-group override, e.g. LOG_LEVEL_PROCESS=DEBUG
  to see every external tool command line
"""

import logging
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reelcutter.config import Settings


# Settings field suffix -> loggers in that group
MODULE_LOGGERS: dict[str, list[str]] = {
    "process": ["reelcutter.services.process", "reelcutter.services.tools"],
    "pipeline": ["reelcutter.services.pipeline", "reelcutter.services.job_manager"],
    "stages": [
        "reelcutter.services.stages",
        "reelcutter.services.media",
        "reelcutter.services.downloader",
        "reelcutter.services.transcriber",
    ],
    "store": ["reelcutter.services.store"],
    "titles": ["reelcutter.services.title_generator", "reelcutter.services.ai_clients"],
}

# Third-party loggers that flood INFO with per-request lines
QUIET_LOGGERS = ["httpx", "httpcore", "uvicorn.access", "asyncio"]

# Prefix -> replacement for the logger column
_NAME_PREFIXES = [
    ("reelcutter.services.", ""),
    ("reelcutter.api.", "api."),
    ("reelcutter.", ""),
]


def short_logger_name(name: str) -> str:
    """reelcutter.services.stages.split_stage -> stages.split_stage"""
    for prefix, replacement in _NAME_PREFIXES:
        if name.startswith(prefix):
            return replacement + name[len(prefix):]
    return name


class StructuredFormatter(logging.Formatter):
    """
    One line per record: timestamp | level | logger | message

    Tracebacks follow on the next lines.
    """

    def format(self, record: logging.LogRecord) -> str:
        line = " | ".join(
            [
                self.formatTime(record, "%Y-%m-%d %H:%M:%S"),
                f"{record.levelname:8}",
                f"{short_logger_name(record.name):24}",
                record.getMessage(),
            ]
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(settings: "Settings") -> None:
    """
    Configure root handler, formatter and per-group levels.

    Safe to call more than once; existing root handlers are replaced.

    Args:
        settings: Application settings with log configuration
    """
    root_level = _parse_level(settings.log_level, logging.INFO)

    if settings.log_format == "structured":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(root_level)

    for group, logger_names in MODULE_LOGGERS.items():
        override = getattr(settings, f"log_level_{group}", None)
        if not override:
            continue
        level = _parse_level(override, root_level)
        for logger_name in logger_names:
            logging.getLogger(logger_name).setLevel(level)

    for logger_name in QUIET_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def _parse_level(name: str, default: int) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else default
