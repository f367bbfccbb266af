#!/usr/bin/env python3
"""
Bridge Stats Runner

Entry point for the statistics service.

Usage:
    python stats_runner.py run              # schedule every pass until Ctrl+C
    python stats_runner.py once <pass>      # run a single pass and print its summary
    python stats_runner.py init-db          # create the database tables
"""

import sys
import os
import asyncio
import logging
import signal

sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

from bridgestats.config import load_config, ConfigError, INTERVAL_VARIABLES
from bridgestats.processors.stats_service import StatsService, build_passes
from bridgestats.storage.database import init_database

logger = logging.getLogger(__name__)


async def run_service(service: StatsService):
    """Run the scheduler until SIGINT/SIGTERM"""

    def signal_handler(sig, frame):
        """Handle Ctrl+C for graceful shutdown."""
        logger.info("Received interrupt signal. Shutting down gracefully...")
        asyncio.create_task(service.stop())

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    await service.run()


def main(argv=None):
    """Main execution"""
    import argparse

    parser = argparse.ArgumentParser(description='Cross-chain bridge statistics service')
    parser.add_argument('action', choices=['run', 'once', 'init-db'],
                        help='Action to perform')
    parser.add_argument('pass_name', nargs='?', choices=sorted(INTERVAL_VARIABLES),
                        help='Pass to run with the "once" action')

    args = parser.parse_args(argv)

    try:
        config = load_config()
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        for problem in e.problems:
            logger.error(f"Config: {problem}")
        return 1

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    db_manager = init_database(config.database_url)
    try:
        if args.action == 'init-db':
            logger.info(f"Database initialized at {config.database_url}")
            return 0

        if args.action == 'once':
            if not args.pass_name:
                parser.error('the "once" action needs a pass name')
            passes = build_passes(config, db_manager)
            result = passes[args.pass_name].run_once()
            print(result)
            return 0

        service = StatsService.from_config(config, db_manager)
        try:
            asyncio.run(run_service(service))
        except KeyboardInterrupt:
            logger.info("Shutdown complete.")
        return 0
    finally:
        db_manager.close()


if __name__ == "__main__":
    sys.exit(main())
