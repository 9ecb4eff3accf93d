"""
CLI command implementation.

Loads configuration, sets up the ambient stack (logging, metrics,
tracing) and runs the orchestrator until it halts or a signal arrives.
"""

import argparse
import asyncio
import logging
import os
import signal
from typing import Optional

from dotenv import load_dotenv

from synchronization import __version__
from synchronization.config import SyncConfig
from synchronization.exceptions import ConfigurationError
from synchronization.orchestrator import SyncOrchestrator
from synchronization.cli.parser import create_parser
from utils.logging import configure_from_env, shutdown_logging
from utils.logging.formatters import APP_NAME
from utils.metrics import SyncMetrics, initialize_metrics
from utils.tracing import initialize_tracing, instrument_pymongo, shutdown_tracing

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_FAILURE = 2


def configure_logging(args: argparse.Namespace) -> None:
    """
    Setup logging from options, falling back to LOG_* environment variables

    Args:
        args: Parsed command-line arguments
    """
    configure_from_env(level=args.log_level, log_file=args.log_file, json_format=args.json_logs)


def load_config(args: argparse.Namespace) -> SyncConfig:
    """
    Build configuration from the environment and command-line overrides

    Raises:
        ConfigurationError: If a value is missing or invalid
    """
    config = SyncConfig.from_env(env_file=args.env_file)
    return config.with_overrides(
        source_collection=args.source_collection,
        target_collection=args.target_collection,
        bunch_size=args.bunch_size,
        flush_interval_ms=args.flush_interval_ms,
        scan_page_size=args.page_size,
        scan_pagination=args.pagination,
        anonymizer=args.anonymizer,
    )


def install_signal_handlers(orchestrator: SyncOrchestrator) -> list[signal.Signals]:
    """
    Route SIGINT and SIGTERM to a graceful stop

    Returns:
        Signals whose handlers were installed
    """
    loop = asyncio.get_running_loop()
    installed = []

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, orchestrator.request_stop)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            logger.warning(f"Cannot install handler for {sig.name} on this platform")

    return installed


async def run_sync(
    config: SyncConfig,
    force_reindex: bool = False,
    metrics: Optional[SyncMetrics] = None,
    orchestrator: Optional[SyncOrchestrator] = None,
) -> None:
    """
    Run one synchronization until it halts

    Args:
        config: Validated configuration
        force_reindex: Backfill everything once, then stop
        metrics: Optional SyncMetrics
        orchestrator: Pre-built orchestrator (default: built from config)
    """
    orchestrator = orchestrator or SyncOrchestrator(config, force_reindex=force_reindex, metrics=metrics)
    installed = install_signal_handlers(orchestrator)

    try:
        await orchestrator.run()
    finally:
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)


def cmd_sync(args: argparse.Namespace) -> int:
    """
    Run the sync command

    Args:
        args: Parsed command-line arguments

    Returns:
        Process exit code
    """
    try:
        config = load_config(args)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIG_ERROR

    sync_metrics = None
    if args.enable_metrics:
        try:
            sync_metrics = initialize_metrics(port=args.metrics_port, version=__version__)["sync"]
        except RuntimeError as e:
            logger.error(f"Cannot start metrics server: {e}")
            return EXIT_CONFIG_ERROR

    if args.enable_tracing:
        otlp_endpoint = args.otlp_endpoint or os.getenv("OTLP_ENDPOINT")
        initialize_tracing(
            service_name=APP_NAME,
            otlp_endpoint=otlp_endpoint,
            console_export=not otlp_endpoint,
        )
        instrument_pymongo()

    try:
        asyncio.run(run_sync(config, force_reindex=args.full_reindex, metrics=sync_metrics))
    except KeyboardInterrupt:
        logger.info("Sync interrupted")
    except Exception as e:
        logger.error(f"Sync failed: {type(e).__name__}: {e}")
        return EXIT_FAILURE
    finally:
        if args.enable_tracing:
            shutdown_tracing()

    logger.info("Sync finished")
    return EXIT_OK


def main_with_args(argv: Optional[list[str]] = None) -> int:
    """Parse arguments, configure logging and run; returns the exit code."""
    args = create_parser().parse_args(argv)
    # Load .env before logging reads LOG_* variables
    if args.env_file is None or os.path.isfile(args.env_file):
        load_dotenv(dotenv_path=args.env_file, override=False)
    configure_logging(args)
    try:
        return cmd_sync(args)
    finally:
        shutdown_logging()
