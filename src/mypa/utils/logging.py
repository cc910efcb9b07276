"""
MyPA · Structured Logging Setup.

structlog vorne, stdlib-Handler hinten: structlog-Events und normale
``logging``-Records (db-Layer, APScheduler) laufen durch denselben
ProcessorFormatter und landen im gleichen Format auf stderr und in
``logs/mypa.jsonl``.

Verwendung in jedem Modul:
    from mypa.utils.logging import get_logger
    log = get_logger(__name__)
    log.info("job_completed", job_id=job.id)
"""

from __future__ import annotations

import inspect
import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from pathlib import Path

LOG_FILE_NAME = "mypa.jsonl"
_FILE_MAX_BYTES = 5 * 1024 * 1024
_FILE_BACKUPS = 3

# Bibliotheken, die auf INFO zu gesprächig sind (APScheduler: jeder Tick)
_QUIET_LOGGERS = ("apscheduler", "asyncio")


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def _build_handlers(level: int, log_dir: Path | None, console: bool) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if console:
        stream = logging.StreamHandler(sys.stderr)
        stream.setLevel(level)
        handlers.append(stream)
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        # Datei bekommt alles ab DEBUG, unabhängig vom Konsolen-Level
        rotating = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=_FILE_MAX_BYTES,
            backupCount=_FILE_BACKUPS,
            encoding="utf-8",
        )
        rotating.setLevel(logging.DEBUG)
        handlers.append(rotating)
    return handlers


def _select_renderer(json_logs: bool) -> structlog.types.Processor:
    if json_logs:
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    # structlog <=25.4: pad_event, >=25.5: pad_event_to
    params = inspect.signature(structlog.dev.ConsoleRenderer).parameters
    pad_kwarg = "pad_event_to" if "pad_event_to" in params else "pad_event"
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty(), **{pad_kwarg: 32})


def setup_logging(
    *,
    level: str = "INFO",
    log_dir: Path | None = None,
    json_logs: bool = False,
    console: bool = True,
) -> None:
    """Initialisiert das Logging. Einmal beim Start aufrufen (``__main__``).

    Args:
        level: DEBUG, INFO, WARNING oder ERROR. Unbekannt = INFO.
        log_dir: Verzeichnis für ``mypa.jsonl``. None = keine Datei-Logs.
        json_logs: JSON-Lines statt farbiger Konsolen-Ausgabe.
        console: Ausgabe auf stderr.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=_build_handlers(log_level, log_dir, console),
        force=True,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # Läuft für structlog-Events und (als foreign_pre_chain) für stdlib-Records
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _select_renderer(json_logs),
        ],
    )
    for handler in logging.getLogger().handlers:
        handler.setFormatter(formatter)


def bind_context(**kwargs: Any) -> None:
    """Bindet Felder an alle folgenden Log-Events dieses Tasks."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def tick_context(**kwargs: Any) -> Iterator[str]:
    """Versieht alle Events eines Scan-Zyklus mit derselben ``tick_id``.

    Entfernt nur die eigenen Felder wieder; anderer gebundener Kontext
    bleibt erhalten.

    Yields:
        Die erzeugte tick_id.
    """
    tick_id = uuid.uuid4().hex[:12]
    tokens = structlog.contextvars.bind_contextvars(tick_id=tick_id, **kwargs)
    try:
        yield tick_id
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
