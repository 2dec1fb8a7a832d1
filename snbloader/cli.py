"""
Command-line interface for the SNB graph loader.

    snb-graph-loader schema
    snb-graph-loader nodes SOURCE [options]
    snb-graph-loader props SOURCE [options]
    snb-graph-loader edges SOURCE [options]

Phases are run one after another (nodes, then props, then edges); property and
relation lines reference nodes loaded by an earlier phase.

Exit codes: 0 completed or cancelled, 1 load failed, 2 invalid arguments or
configuration.
"""

import argparse
import signal
import sys
import threading
from typing import Any, Dict, List, Optional

from neo4j.exceptions import DriverError, Neo4jError

from .ingestion.errors import LoadAborted
from .ingestion.loader import GraphLoader
from .ingestion.work import LoadPhase, discover_work_units
from .neo.schema import uniqueness_constraints
from .neo.session import StoreError, create_constraints
from .shared.config import load_config
from .shared.connections import ConnectionManager
from .shared.observability import (
    bind_run_context,
    get_logger,
    get_run_id,
    setup_logging,
)
from .shared.observability.metrics import setup_metrics

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2

# argparse dest -> path inside the loader config mapping
OVERRIDE_PATHS = {
    "num_loaders": ("num_loaders",),
    "loader_idx": ("loader_idx",),
    "num_threads": ("num_threads",),
    "seed": ("seed",),
    "tx_size": ("tx", "size"),
    "tx_retries": ("tx", "retries"),
    "tx_backoff": ("tx", "backoff_ms"),
    "tx_boff_ceil": ("tx", "backoff_ceiling_ms"),
    "report_int": ("report", "interval_seconds"),
    "report_fmt": ("report", "format"),
}


def build_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Nested config overrides for every loader option given on the command line."""
    overrides: Dict[str, Any] = {}
    for dest, path in OVERRIDE_PATHS.items():
        value = getattr(args, dest, None)
        if value is None:
            continue
        target = overrides
        for key in path[:-1]:
            target = target.setdefault(key, {})
        target[path[-1]] = value
    return overrides


def install_signal_handlers(cancel_event: threading.Event) -> Dict[int, Any]:
    """Route SIGINT/SIGTERM to the cancellation event; returns previous handlers."""

    def handle_shutdown(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        cancel_event.set()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, handle_shutdown)
    return previous


def restore_signal_handlers(previous: Dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def write_progress(line: str) -> None:
    print(line, flush=True)


def _configure(args: argparse.Namespace):
    config, settings = load_config(args.config, build_overrides(args))
    setup_logging(args.log_level or settings.log_level)
    setup_metrics(args.metrics_port or settings.metrics_port)
    return config, settings


def cmd_load(args: argparse.Namespace) -> int:
    """Run one load phase over a dataset directory."""
    phase = LoadPhase(args.command)
    try:
        config, settings = _configure(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_USAGE

    get_run_id()
    bind_run_context(phase=phase.value, loader_idx=config.loader_idx)
    logger.info(
        "loader_configuration",
        phase=phase.value,
        source=args.source,
        neo4j_uri=settings.neo4j_uri,
        **config.model_dump(),
    )

    try:
        units = discover_work_units(args.source, phase)
    except FileNotFoundError as e:
        print(f"Invalid source: {e}", file=sys.stderr)
        return EXIT_USAGE

    cancel_event = threading.Event()
    previous_handlers = install_signal_handlers(cancel_event)
    manager = ConnectionManager(settings, pool_size=config.num_threads + 1)
    try:
        loader = GraphLoader(
            units,
            config,
            manager.open_session,
            phase=phase.value,
            write=write_progress,
            cancel_event=cancel_event,
        )
        summary = loader.run()
    except LoadAborted as e:
        cause = e.__cause__ or e
        print(f"Load failed: {cause}", file=sys.stderr)
        return EXIT_FAILED
    except (StoreError, Neo4jError, DriverError) as e:
        logger.error("loader_store_unavailable", error=str(e))
        print(f"Load failed: {e}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        manager.close()
        restore_signal_handlers(previous_handlers)

    logger.info("loader_exiting", status=summary["status"])
    return EXIT_OK


def cmd_schema(args: argparse.Namespace) -> int:
    """Create the uid uniqueness constraints for every entity label."""
    try:
        _config, settings = _configure(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_USAGE

    manager = ConnectionManager(settings)
    try:
        count = create_constraints(
            manager.get_neo4j_driver(),
            uniqueness_constraints(),
            database=settings.neo4j_database,
        )
    except (Neo4jError, DriverError) as e:
        logger.error("schema_setup_failed", error=str(e))
        print(f"Schema setup failed: {e}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        manager.close()

    print(f"Applied {count} schema statements")
    return EXIT_OK


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="YAML config file (default: $CONFIG_PATH)")
    parser.add_argument(
        "--log-level",
        help="DEBUG, INFO, WARNING, ERROR or CRITICAL (default: $LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--metrics-port", type=int, help="Expose Prometheus metrics on this port"
    )


def _add_loader_options(parser: argparse.ArgumentParser) -> None:
    # camelCase spellings are kept for existing launch scripts
    parser.add_argument(
        "--num-loaders",
        "--numLoaders",
        dest="num_loaders",
        type=int,
        help="Number of cooperating loader instances (default: 1)",
    )
    parser.add_argument(
        "--loader-idx",
        "--loaderIdx",
        dest="loader_idx",
        type=int,
        help="Index of this loader instance, 0-based (default: 0)",
    )
    parser.add_argument(
        "--num-threads",
        "--numThreads",
        dest="num_threads",
        type=int,
        help="Worker threads in this instance (default: 1)",
    )
    parser.add_argument(
        "--tx-size",
        "--txSize",
        dest="tx_size",
        type=int,
        help="Lines per transaction (default: 128)",
    )
    parser.add_argument(
        "--tx-retries",
        "--txRetries",
        dest="tx_retries",
        type=int,
        help="Failed commits per batch before backoff starts (default: 10)",
    )
    parser.add_argument(
        "--tx-backoff",
        "--txBackoff",
        dest="tx_backoff",
        type=int,
        help="Initial backoff bound in ms (default: 1000)",
    )
    parser.add_argument(
        "--tx-boff-ceil",
        "--txBoffCeil",
        dest="tx_boff_ceil",
        type=int,
        help="Backoff bound ceiling in ms (default: 10000)",
    )
    parser.add_argument(
        "--report-int",
        "--reportInt",
        dest="report_int",
        type=int,
        help="Seconds between progress lines (default: 10)",
    )
    parser.add_argument(
        "--report-fmt",
        "--reportFmt",
        dest="report_fmt",
        help="Progress columns, any of LlFfXxDdT (default: LFDT)",
    )
    parser.add_argument("--seed", type=int, help="Seed for backoff jitter")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snb-graph-loader",
        description="Bulk-load an LDBC SNB dataset into Neo4j",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    schema_parser = subparsers.add_parser(
        "schema", help="Create uniqueness constraints"
    )
    _add_common_options(schema_parser)

    for phase, help_text in (
        (LoadPhase.NODES, "Load entity node files"),
        (LoadPhase.PROPS, "Append multi-valued person properties"),
        (LoadPhase.EDGES, "Load relation files"),
    ):
        phase_parser = subparsers.add_parser(phase.value, help=help_text)
        phase_parser.add_argument("source", help="Directory with the SNB csv files")
        _add_common_options(phase_parser)
        _add_loader_options(phase_parser)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_USAGE

    if args.command == "schema":
        return cmd_schema(args)
    return cmd_load(args)


if __name__ == "__main__":
    sys.exit(main())
