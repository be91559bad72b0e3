"""Logging configuration built around structlog JSON logging."""

from __future__ import annotations

import logging
import logging.config
import os
from collections import OrderedDict
from pathlib import Path
from threading import Lock
from typing import Iterable

import structlog

_LOGGING_INITIALISED = False
MAX_LINK_HANDLERS = 128
_LINK_HANDLERS: "OrderedDict[str, logging.FileHandler]" = OrderedDict()
_LINK_HANDLERS_LOCK = Lock()


def _default_log_dir() -> Path:
    env_root = os.environ.get("FEED_RELAY_HOME")
    if env_root:
        return Path(env_root).expanduser().resolve() / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def _slug(link: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "-" for ch in link).strip("-")[:120]


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Configure structlog + stdlib handlers and return application logger."""

    global _LOGGING_INITIALISED
    log_dir = _default_log_dir()
    error_log = log_dir / "error.log"
    relay_log = log_dir / "relay.log"
    (log_dir / "links").mkdir(parents=True, exist_ok=True)
    error_log.touch(exist_ok=True)
    relay_log.touch(exist_ok=True)

    if not _LOGGING_INITIALISED:
        level = "DEBUG" if verbose else "INFO"
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "plain": {
                        "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                        "fmt": "%(asctime)s %(levelname)s %(name)s %(processName)s %(message)s",
                    }
                },
                "handlers": {
                    "console": {
                        "class": "logging.StreamHandler",
                        "level": level,
                        "formatter": "plain",
                    },
                    "relay_file": {
                        "class": "logging.FileHandler",
                        "level": "INFO",
                        "filename": str(relay_log),
                        "formatter": "plain",
                    },
                    "error_file": {
                        "class": "logging.FileHandler",
                        "level": "ERROR",
                        "filename": str(error_log),
                        "formatter": "plain",
                    },
                },
                "loggers": {
                    "feed_relay": {
                        "handlers": ["console", "relay_file", "error_file"],
                        "level": level,
                        "propagate": False,
                    },
                },
            }
        )

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_INITIALISED = True
    return structlog.get_logger("feed_relay")


def _drop_link_handler(logger_name: str, handler: logging.FileHandler) -> None:
    logging.getLogger(logger_name).removeHandler(handler)
    handler.close()


def link_logger(link: str, verbose: bool = False) -> structlog.BoundLogger:
    """Return a logger bound to one feed link, mirrored into its own file.

    At most ``MAX_LINK_HANDLERS`` link files stay open; the least recently
    used one is closed when another link needs a handler.
    """

    if not _LOGGING_INITIALISED:
        configure_logging(verbose)
    slug = _slug(link)
    path = link_log_path(link)
    logger_name = f"feed_relay.link.{slug}"

    with _LINK_HANDLERS_LOCK:
        handler = _LINK_HANDLERS.get(logger_name)
        if handler is not None and handler.baseFilename == str(path):
            _LINK_HANDLERS.move_to_end(logger_name)
        else:
            if handler is not None:
                _drop_link_handler(logger_name, _LINK_HANDLERS.pop(logger_name))
            path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(path, encoding="utf-8", delay=True)
            global_logger = logging.getLogger("feed_relay")
            if global_logger.handlers:
                handler.setFormatter(global_logger.handlers[0].formatter)
            handler.setLevel(logging.INFO)
            logging.getLogger(logger_name).addHandler(handler)
            _LINK_HANDLERS[logger_name] = handler
            while len(_LINK_HANDLERS) > MAX_LINK_HANDLERS:
                _drop_link_handler(*_LINK_HANDLERS.popitem(last=False))

    return structlog.get_logger(logger_name).bind(link=link)


def link_log_path(link: str) -> Path:
    return _default_log_dir() / "links" / f"{_slug(link)}.log"


def relay_log_path() -> Path:
    return _default_log_dir() / "relay.log"


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return the last N lines from a log file."""

    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


def available_link_logs() -> Iterable[Path]:
    """Yield available per-link log file paths."""

    links_dir = _default_log_dir() / "links"
    if not links_dir.exists():
        return []
    return sorted(p for p in links_dir.glob("*.log"))


__all__ = [
    "available_link_logs",
    "configure_logging",
    "link_log_path",
    "link_logger",
    "relay_log_path",
    "tail_log",
]
