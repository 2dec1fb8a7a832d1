# Structured logging: JSON events on stderr, tagged with the load run id

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional, TextIO

import structlog

# Set once per run in the main thread; worker threads start from a copy of
# the main thread's context, so they inherit it.
run_id_ctx: ContextVar[Optional[str]] = ContextVar("run_id", default=None)


def get_run_id() -> str:
    """Return the current run id, creating one on first use."""
    run_id = run_id_ctx.get()
    if run_id is None:
        run_id = f"run_{uuid.uuid4().hex[:12]}"
        run_id_ctx.set(run_id)
    return run_id


def add_run_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    run_id = run_id_ctx.get()
    if run_id:
        event_dict.setdefault("run_id", run_id)
    return event_dict


def bind_run_context(**fields: Any) -> None:
    """Attach fields (phase, loader index, ...) to every later event in this context."""
    structlog.contextvars.bind_contextvars(**fields)


def setup_logging(log_level: str = "INFO", stream: Optional[TextIO] = None) -> None:
    """
    Route structlog through stdlib logging with a JSON renderer.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        stream: Destination, stderr by default. stdout carries the progress table.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stderr,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_run_id,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
