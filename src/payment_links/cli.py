#!/usr/bin/env python3
"""Command-line interface for payment link operations.

Usage:
    python -m payment_links.cli sync --limit 200
    python -m payment_links.cli show 3f0c9a9e-6f1e-4a43-9d55-0c6a4c1f2b7e --format json
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Optional, Callable

from .database import (
    Base,
    PaymentLinkRepository,
    create_async_engine,
    get_db_context,
    get_database_url,
)
from .providers import ProviderBase, get_provider
from .services import PaymentLinkService

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def format_link_text(link) -> str:
    """Render a payment link and its history as plain text."""
    lines = [
        f"Payment link {link.id}",
        f"  Status:    {link.status_info['label']} ({link.status})",
        f"  Amount:    {link.formatted_amount}",
        f"  Invoice:   {link.invoice.get('number')}",
        f"  Customer:  {link.customer.get('name')} <{link.customer.get('email')}>",
        f"  Provider:  {link.provider} ({link.provider_ref() or 'no reference'})",
        f"  Checkout:  {link.checkout_url}",
        f"  SMS:       {link.sms_status}",
        f"  Email:     {link.email_status}",
        "  History:",
    ]
    for event in link.event_history:
        lines.append(
            f"    {event.get('timestamp')}  {event.get('status'):<10} "
            f"[{event.get('source')}] {event.get('description')}"
        )
    return "\n".join(lines)


async def run_sync_async(
    database_url: Optional[str] = None,
    limit: int = 100,
    provider_factory: Callable[[Optional[str]], ProviderBase] = get_provider,
) -> int:
    """Poll the provider for every active payment link.

    Args:
        database_url: Database URL. If None, uses get_database_url().
        limit: Maximum records fetched per status.
        provider_factory: Builds a provider from its name.

    Returns:
        Exit code (0 if every poll succeeded, 1 otherwise).
    """
    engine = create_async_engine(database_url=database_url or get_database_url())

    # Create tables if they don't exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        async with get_db_context(engine) as session:
            service = PaymentLinkService(session, provider_factory=provider_factory)
            try:
                summary = await service.sync_active_links(limit=limit)
            finally:
                await service.close()

        print(
            f"Checked {summary.checked} payment links: {summary.changed} changed, "
            f"{summary.failed} failed, {summary.skipped} without provider reference"
        )
        for link_id in summary.changed_ids:
            print(f"  updated {link_id}")

        if summary.failed:
            logger.warning(f"{summary.failed} status polls failed")
            return 1
        return 0

    finally:
        await engine.dispose()


async def show_link_async(
    link_id: str,
    database_url: Optional[str] = None,
    output_format: str = "text",
) -> int:
    """Print one payment link with its event history.

    Returns:
        Exit code (0 if found, 1 if not).
    """
    engine = create_async_engine(database_url=database_url or get_database_url())

    try:
        async with get_db_context(engine) as session:
            link = await PaymentLinkRepository(session).get(link_id)
            if link is None:
                logger.error(f"Payment link not found: {link_id}")
                return 1

            if output_format == "json":
                print(json.dumps(link.to_dict(), indent=2, default=str))
            else:
                print(format_link_text(link))
            return 0
    finally:
        await engine.dispose()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="payment-links",
        description="Payment link operations: bulk status sync and record inspection.",
    )
    parser.add_argument(
        "--database-url",
        help="Database URL (default: DATABASE_URL or local SQLite)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sync_parser = subparsers.add_parser(
        "sync",
        help="Poll the provider for every created or pending payment link",
    )
    sync_parser.add_argument(
        "--limit", "-l",
        type=int,
        default=100,
        help="Maximum records per status (default: 100)",
    )

    show_parser = subparsers.add_parser(
        "show",
        help="Show one payment link with its event history",
    )
    show_parser.add_argument("link_id", help="Payment link ID")
    show_parser.add_argument(
        "--format", "-f",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    if parsed_args.command == "sync":
        if parsed_args.limit <= 0:
            logger.error("--limit must be positive")
            return 1
        return asyncio.run(run_sync_async(
            database_url=parsed_args.database_url,
            limit=parsed_args.limit,
        ))

    if parsed_args.command == "show":
        return asyncio.run(show_link_async(
            parsed_args.link_id,
            database_url=parsed_args.database_url,
            output_format=parsed_args.format,
        ))

    return 0


if __name__ == "__main__":
    sys.exit(main())
