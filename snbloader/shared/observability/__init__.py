# Observability package
from .logging import (
    bind_run_context,
    get_logger,
    get_run_id,
    setup_logging,
)

__all__ = [
    "bind_run_context",
    "get_logger",
    "setup_logging",
    "get_run_id",
]
