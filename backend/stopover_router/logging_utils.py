from __future__ import annotations

import logging
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from pythonjsonlogger import jsonlogger

from .settings import settings

LOGGER_NAME = "stopover_router"
LOG_FILE_NAME = "router.log.jsonl"


def _parse_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _writable_dir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
        probe = path / ".writetest"
        probe.touch(exist_ok=True)
        probe.unlink(missing_ok=True)
    except OSError:
        return False
    return True


def _log_dir() -> Path | None:
    """First writable of OUT_DIR/logs, ./out/logs and a temp dir."""
    for candidate in (
        Path(settings.out_dir) / "logs",
        Path.cwd() / "out" / "logs",
        Path(gettempdir()) / LOGGER_NAME / "logs",
    ):
        if _writable_dir(candidate):
            return candidate
    return None


def _handlers(formatter: logging.Formatter) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_dir = _log_dir()
    if log_dir is not None:
        try:
            handlers.append(logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8"))
        except OSError:
            pass
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def get_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)

    # Reloaders import the app twice; configure once.
    if getattr(logger, "_configured", False):
        return logger

    logger.setLevel(_parse_level(settings.log_level))
    logger.propagate = False
    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(message)s",
        rename_fields={"levelname": "level"},
    )
    for handler in _handlers(formatter):
        logger.addHandler(handler)

    logger._configured = True  # type: ignore[attr-defined]
    return logger


def log_event(event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    # event doubles as the message and a top-level key for grepping JSONL
    get_logger().log(level, event, extra={"event": event, **fields})


def log_warning(event: str, **fields: Any) -> None:
    log_event(event, level=logging.WARNING, **fields)
