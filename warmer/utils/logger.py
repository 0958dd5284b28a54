import os
from datetime import datetime
from typing import Any, Optional

from loguru import logger

_logger_initialized = False
_sink_ids: list[int] = []

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | worker={extra[worker_id]} | {message}"


def setup_logger(
    log_level: str = "INFO",
    log_path: Optional[str] = None,
    worker_id: str | None = None,
):
    global _logger_initialized, _sink_ids

    resolved_worker_id = worker_id or os.getenv("WORKER_ID") or str(os.getpid())

    if not _logger_initialized:
        logger.remove()
        logger.configure(extra={"worker_id": resolved_worker_id})

        sinks = []
        if log_path:
            log_dir = os.path.dirname(log_path)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            sinks.append(
                logger.add(
                    log_path,
                    rotation="10 MB",
                    retention="7 days",
                    level=log_level,
                    format=LOG_FORMAT,
                )
            )
        sinks.append(
            logger.add(
                lambda msg: print(msg, end=""),
                colorize=True,
                level=log_level,
                format=LOG_FORMAT,
            )
        )

        _sink_ids = sinks
        _logger_initialized = True

    return logger.bind(worker_id=resolved_worker_id)


def _format_key(key: str) -> str:
    # batch_nr -> Batch-Nr
    return "-".join(part.capitalize() for part in key.replace(" ", "_").split("_") if part)


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return f"'{value}'"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, float):
        return f"{value:.2f}"
    if isinstance(value, datetime):
        return value.strftime("%d.%m.%Y %H:%M:%S")
    return str(value)


def format_event(component: str, event: str, data: Optional[dict] = None, note: str = "") -> str:
    """Render ``[COMPONENT:EVENT] note Key: value, ...``."""
    message = f"[{component.upper()}:{event}]"
    if note:
        message += f" {note}"
    if data:
        message += " " + ", ".join(f"{_format_key(k)}: {_format_value(v)}" for k, v in data.items())
    return message


def log_event(level: str, component: str, event: str, data: Optional[dict] = None, note: str = "") -> None:
    # Braces in values must not be treated as loguru format fields.
    logger.opt(depth=1).log(level, "{}", format_event(component, event, data, note))
