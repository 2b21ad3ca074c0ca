#!/usr/bin/env python3
"""
Query Unbound statistics and print them as Prometheus metrics.
"""

import argparse
import logging
import sys
from typing import List, Optional

from pydantic import ValidationError

from . import __version__
from .config import load_config
from .control import DependencyMissingError, StatsSourceError, UnboundControl, collect_metrics
from .utils import setup_logging

logger = logging.getLogger(__name__)

COMMANDS = ('collect', 'test', 'version', 'help')


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='unbound-exporter',
        description='Collect Unbound statistics and print them in Prometheus format',
        epilog='Configured through UNBOUND_CONTROL, UNBOUND_HOST, UNBOUND_PORT and METRICS_PREFIX.'
    )
    parser.add_argument(
        'command',
        nargs='?',
        default='collect',
        choices=COMMANDS,
        help='collect (default), test, version or help'
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    
    if args.command == 'version':
        print(f'Unbound Exporter v{__version__}')
        return 0
    if args.command == 'help':
        parser.print_help()
        return 0
    
    try:
        config = load_config()
    except ValidationError as e:
        print(f'Error: Invalid configuration: {e}', file=sys.stderr)
        return 1
    setup_logging(config.log_level)
    
    source = UnboundControl(config)
    try:
        source.ensure_available()
    except DependencyMissingError as e:
        logger.error('%s', e)
        return 1
    
    if args.command == 'test':
        logger.info('Testing connection to Unbound...')
        if source.probe():
            logger.info('SUCCESS: Connected to Unbound')
            return 0
        logger.error('Cannot connect to Unbound')
        return 1
    
    try:
        sys.stdout.write(collect_metrics(config, source))
    except StatsSourceError as e:
        logger.error('Cannot collect statistics from Unbound: %s', e)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
