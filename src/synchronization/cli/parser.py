"""
Command-line argument parser configuration.

Every option overrides the matching environment variable; options left
unset fall back to the environment (and the ``.env`` file).
"""

import argparse

from synchronization import __version__


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got '{value}'") from None
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {number}")
    return number


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="anon-sync",
        description="Mirror a MongoDB collection into an anonymized copy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Backfill missing records, then follow the change stream
  DB_URI=mongodb://localhost:27017/shop anon-sync

  # Rescan the whole source once and exit
  anon-sync --full-reindex

  # Use another env file and smaller batches
  anon-sync --env-file prod.env --bunch-size 500 --flush-interval-ms 250

  # JSON logs, Prometheus metrics and OTLP tracing
  anon-sync --json-logs --enable-metrics --metrics-port 9091 \\
            --enable-tracing --otlp-endpoint localhost:4317
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    parser.add_argument(
        '--full-reindex',
        action='store_true',
        help='Rescan every source record, ignoring the target, then stop'
    )
    parser.add_argument(
        '--env-file',
        help='Path of a dotenv file to load (default: .env if present)'
    )

    # ========== Pipeline overrides ==========
    pipeline = parser.add_argument_group('pipeline')
    pipeline.add_argument(
        '--source-collection',
        help='Source collection (env: SOURCE_COLLECTION, default: customers)'
    )
    pipeline.add_argument(
        '--target-collection',
        help='Target collection (env: TARGET_COLLECTION, default: customers_anonymised)'
    )
    pipeline.add_argument(
        '--bunch-size',
        type=_positive_int,
        help='Maximum records per write (env: BUNCH_SIZE, default: 1000)'
    )
    pipeline.add_argument(
        '--flush-interval-ms',
        type=_positive_int,
        help='Idle time before buffered records are written (env: FLUSH_INTERVAL_MS, default: 1000)'
    )
    pipeline.add_argument(
        '--page-size',
        type=_positive_int,
        help='Backfill page size (env: SCAN_PAGE_SIZE, default: 10000)'
    )
    pipeline.add_argument(
        '--pagination',
        choices=['skip', 'keyset'],
        help='Backfill pagination strategy (env: SCAN_PAGINATION, default: skip)'
    )
    pipeline.add_argument(
        '--anonymizer',
        choices=['customer', 'pii'],
        help='Anonymizer to apply (env: ANONYMIZER, default: customer)'
    )

    # ========== Logging ==========
    logs = parser.add_argument_group('logging')
    logs.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (env: LOG_LEVEL, default: INFO)'
    )
    logs.add_argument(
        '--log-file',
        help='Also write logs to this rotating file (env: LOG_FILE)'
    )
    logs.add_argument(
        '--json-logs',
        action='store_true',
        help='Emit structured JSON logs (env: LOG_JSON)'
    )

    # ========== Observability ==========
    observability = parser.add_argument_group('observability')
    observability.add_argument(
        '--enable-metrics',
        action='store_true',
        help='Expose Prometheus metrics over HTTP'
    )
    observability.add_argument(
        '--metrics-port',
        type=_positive_int,
        default=9091,
        help='Prometheus metrics port (default: 9091)'
    )
    observability.add_argument(
        '--enable-tracing',
        action='store_true',
        help='Export OpenTelemetry spans'
    )
    observability.add_argument(
        '--otlp-endpoint',
        help='OTLP collector endpoint (env: OTLP_ENDPOINT); spans go to stdout when unset'
    )

    return parser
