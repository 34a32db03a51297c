#!/usr/bin/env python3
"""
HN Digest Mailer - Main Entry Point

Usage:
    python main.py run              # Send digests to all subscribers once
    python main.py health-check     # Check the story source is reachable

Schedule `run` with cron or any other job runner.
"""

import asyncio
import argparse
import logging
import sys
from pathlib import Path

import structlog

from config import ConfigError, load_config

logger = structlog.get_logger()


def configure_logging(debug: bool = False):
    """Configure structlog on top of stdlib logging."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.DEBUG if debug else logging.INFO,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


async def run_digest(config) -> int:
    """Send one round of digests."""
    from connectors import get_connector
    from delivery import DeliveryStatus, MailDeliveryClient
    from pipeline import DigestPipeline
    from storage import get_storage

    template_path = Path(config.digest.template_path)
    try:
        template = template_path.read_text(encoding="utf-8")
    except OSError as e:
        logger.error("template_unreadable", path=str(template_path), error=str(e))
        return 1

    pipeline = DigestPipeline(
        config,
        storage=get_storage(config.storage),
        source=get_connector(config.source),
        template=template,
        mailer=MailDeliveryClient(config.email),
    )
    report = await pipeline.run()

    print("\n" + "="*60)
    print("DIGEST RUN COMPLETE" if report.success else "DIGEST RUN FAILED")
    print("="*60)
    print(f"Subscribers: {report.subscribers}")
    print(f"Stories fetched: {report.stories}")
    print(f"Sent: {report.sent} | Failed: {report.failed} | Skipped: {report.skipped}")
    for result in report.results:
        if result.status == DeliveryStatus.FAILED:
            print(f"  ✗ {result.email}: {result.error}")
    if report.error:
        print(f"Error: {report.error}")
    print(f"Duration: {report.metrics['total_duration_seconds']:.1f}s")
    print("="*60 + "\n")

    return 0 if report.success else 1


async def health_check(config) -> int:
    """Check the story source connector."""
    from connectors import get_connector

    connector = get_connector(config.source)
    status = await connector.test_connection()

    icon = "✓" if status["healthy"] else "✗"
    print("\n" + "="*60)
    print("CONNECTOR HEALTH CHECK")
    print("="*60)
    print(f"  {icon} {status['connector']}: {status['status']}")
    print("="*60 + "\n")

    return 0 if status["healthy"] else 1


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Send Hacker News digests to subscribers"
    )
    parser.add_argument(
        "command",
        choices=["run", "health-check"],
        help="Command to run"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )

    args = parser.parse_args()
    configure_logging(args.debug)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error("config_invalid", error=str(e))
        sys.exit(1)

    try:
        if args.command == "run":
            exit_code = asyncio.run(run_digest(config))
        elif args.command == "health-check":
            exit_code = asyncio.run(health_check(config))
        else:
            parser.print_help()
            exit_code = 1
    except ConfigError as e:
        logger.error("config_invalid", error=str(e))
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
