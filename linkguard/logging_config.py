"""Structured logging configuration."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from pythonjsonlogger import jsonlogger

from linkguard.config import settings

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "apscheduler.executors.default", "apscheduler.scheduler")


def component_for(logger_name: str) -> str:
    """Subpackage a logger belongs to, e.g. ``verify`` for linkguard.verify.cache."""
    parts = logger_name.split(".")
    if parts[0] != "linkguard":
        return parts[0]
    return parts[1] if len(parts) > 2 else "app"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps records with level, component and source location."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['component'] = component_for(record.name)
        log_record['source'] = f"{record.filename}:{record.lineno}"


class ComponentFilter(logging.Filter):
    """Pass only records from the given linkguard subpackage."""

    def __init__(self, component: str):
        super().__init__(f"linkguard.{component}")


def setup_logging(base_dir: str | Path | None = None):
    """Configure logging for the application.

    Besides the console and the main JSON log, verification problems (fetch
    timeouts, breaker trips, cache failures) go to their own
    ``verification.log`` so outages of the checking path are easy to spot.

    Args:
        base_dir: Optional base directory to place the logs/ folder in.
                  If omitted, uses the current working directory.
    """
    logs_dir = (Path(base_dir) if base_dir else Path.cwd()) / "logs"
    logs_dir.mkdir(exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(console_handler)

    json_formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")

    json_handler = logging.FileHandler(logs_dir / "linkguard.log")
    json_handler.setFormatter(json_formatter)
    root_logger.addHandler(json_handler)

    verification_handler = logging.FileHandler(logs_dir / "verification.log")
    verification_handler.setLevel(logging.WARNING)
    verification_handler.addFilter(ComponentFilter("verify"))
    verification_handler.setFormatter(json_formatter)
    root_logger.addHandler(verification_handler)

    error_handler = logging.FileHandler(logs_dir / "error.log")
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(json_formatter)
    root_logger.addHandler(error_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger
