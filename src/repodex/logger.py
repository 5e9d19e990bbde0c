"""
Logger configuration for repodex.

structlog is bridged into the standard logging module so the CLI, the API
server and the background indexing workers share one event-style stream.
Indexing jobs bind the repository key into a context variable, which every
log line emitted from the job thread picks up automatically.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import structlog
from structlog.stdlib import BoundLogger, ProcessorFormatter
from structlog.typing import Processor

_PRE_CHAIN: tuple[Processor, ...] = (
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
)


def _configure_structlog(min_level: int) -> None:
    structlog.configure(
        processors=_PRE_CHAIN + (ProcessorFormatter.wrap_for_formatter,),
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _renderer(json_output: bool) -> Processor:
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def configure_logging(
    level: int = logging.INFO,
    enable_console: bool = True,
    console_level: int | None = None,
    json_output: bool = False,
) -> None:
    """
    Configure global logging.

    Parameters
    ----------
    level:
        Base logging level for the root logger.
    enable_console:
        When False, suppress log emission to stdout/stderr.
    console_level:
        Severity threshold for messages emitted to stdout/stderr. Defaults to ``level``.
    json_output:
        Render one JSON object per line instead of the console format. The API
        server uses this so log shippers can parse job events.
    """
    _configure_structlog(level)
    logging.captureWarnings(True)

    handlers: list[logging.Handler] = []
    if enable_console:
        handler = logging.StreamHandler()
        handler.setLevel(console_level if console_level is not None else level)
        handler.setFormatter(
            ProcessorFormatter(processor=_renderer(json_output), foreign_pre_chain=_PRE_CHAIN)
        )
        handlers.append(handler)
    else:
        handlers.append(logging.NullHandler())

    logging.basicConfig(level=level, handlers=handlers, force=True)


def get_logger(name: Optional[str] = None) -> BoundLogger:
    """Retrieve a structlog logger with the provided name."""
    return structlog.get_logger(name)


@contextmanager
def job_context(repository_key: str, **extra: object) -> Iterator[None]:
    """Tag every log event emitted inside the block with the repository key."""
    with structlog.contextvars.bound_contextvars(repository_key=repository_key, **extra):
        yield


def redirect_logging_to_file(path: Path) -> None:
    """Send standard logging output to ``path`` instead of the console."""
    _configure_structlog(logging.INFO)
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="w", encoding="utf-8")
    handler.setFormatter(
        ProcessorFormatter(processor=_renderer(False), foreign_pre_chain=_PRE_CHAIN)
    )
    root.addHandler(handler)
    root.setLevel(logging.INFO)
