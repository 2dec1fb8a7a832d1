# Prometheus metrics for the graph loader

from typing import Optional

from prometheus_client import Counter, Histogram, start_http_server

from .logging import get_logger

logger = get_logger(__name__)

# ===== Ingestion metrics =====
lines_committed_total = Counter(
    "snb_loader_lines_committed_total",
    "Total data lines committed to the graph store",
    ["phase"],
)

bytes_read_total = Counter(
    "snb_loader_bytes_read_total",
    "Total bytes read from dataset files",
    ["phase"],
)

files_completed_total = Counter(
    "snb_loader_files_completed_total",
    "Total dataset files fully loaded",
    ["phase"],
)

# ===== Transaction metrics =====
tx_failures_total = Counter(
    "snb_loader_tx_failures_total",
    "Total failed transaction commits",
    ["phase"],
)

backoff_sleeps_total = Counter(
    "snb_loader_backoff_sleeps_total",
    "Total randomized backoff sleeps after repeated commit failures",
    ["phase"],
)

commit_duration_seconds = Histogram(
    "snb_loader_commit_duration_seconds",
    "Duration of one batch submit+commit attempt in seconds",
    ["phase", "status"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


def setup_metrics(port: Optional[int]) -> bool:
    """Start the Prometheus exposition endpoint when a port is configured."""
    if not port:
        return False
    start_http_server(port)
    logger.info("metrics_server_started", port=port)
    return True
