"""
Command-line interface for the anonymized sync service.

Usage:
    anon-sync [--full-reindex] [--env-file PATH] [options]

Exit codes:
    0: stopped cleanly (backfill finished, or SIGINT/SIGTERM)
    1: configuration error
    2: pipeline failure
"""

import sys

from .commands import (
    EXIT_CONFIG_ERROR,
    EXIT_FAILURE,
    EXIT_OK,
    cmd_sync,
    configure_logging,
    load_config,
    main_with_args,
    run_sync,
)
from .parser import create_parser


def main() -> None:
    """Main entry point for the anon-sync CLI"""
    sys.exit(main_with_args())


__all__ = [
    'main',
    'main_with_args',
    'cmd_sync',
    'run_sync',
    'load_config',
    'configure_logging',
    'create_parser',
    'EXIT_OK',
    'EXIT_CONFIG_ERROR',
    'EXIT_FAILURE',
]


if __name__ == '__main__':
    main()
