#!/usr/bin/env python3
"""Command-line interface for reconciliation and maintenance jobs.

Usage:
    python -m donation_payments.reconciliation.cli payouts --all
    python -m donation_payments.reconciliation.cli payouts --church-id <uuid>
    python -m donation_payments.reconciliation.cli payouts --payout-id po_123
    python -m donation_payments.reconciliation.cli sweep-pending --max-age-days 7
    python -m donation_payments.reconciliation.cli purge-webhook-markers
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional, Any, Awaitable, Callable

from ..config import get_settings
from ..connectors import ConnectorBase, build_connector
from ..database import (
    Base,
    create_async_engine,
    get_async_session_factory,
)
from .service import ReconciliationService, DEFAULT_SWEEP_AGE_DAYS

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def run_job_async(
    job: Callable[[ReconciliationService], Awaitable[Any]],
    database_url: Optional[str] = None,
    gateway: Optional[ConnectorBase] = None,
) -> Any:
    """Run one job against a fresh engine and session.

    Args:
        job: Coroutine function receiving the service.
        database_url: Database URL. If None, uses configuration.
        gateway: Payment connector. If None, built from configuration.

    Returns:
        Whatever the job returns.
    """
    engine = create_async_engine(database_url=database_url)

    # Create tables if they don't exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = get_async_session_factory(engine)
    gateway = gateway or build_connector(get_settings())

    try:
        async with session_factory() as session:
            return await job(ReconciliationService(session, gateway))
    finally:
        await engine.dispose()


def _print(result: Any) -> None:
    if hasattr(result, "model_dump"):
        result = result.model_dump(mode="json")
    print(json.dumps(result, indent=2, default=str))


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="reconciliation",
        description="Payout reconciliation and donation maintenance jobs.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    payouts_parser = subparsers.add_parser("payouts", help="Reconcile paid payouts")
    target = payouts_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--payout-id", help="Reconcile a single payout")
    target.add_argument("--church-id", help="Reconcile every unreconciled payout of a church")
    target.add_argument("--all", action="store_true", help="Reconcile every church with unreconciled payouts")

    sweep_parser = subparsers.add_parser("sweep-pending", help="Resolve stale pending donations")
    sweep_parser.add_argument(
        "--max-age-days",
        type=int,
        default=DEFAULT_SWEEP_AGE_DAYS,
        help=f"Age in days after which a pending donation is stale (default: {DEFAULT_SWEEP_AGE_DAYS})",
    )

    subparsers.add_parser("purge-webhook-markers", help="Delete expired processed webhook markers")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code: 0 success, 1 usage error or partial failure.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    if parsed_args.command == "payouts":
        if parsed_args.payout_id:
            result = asyncio.run(run_job_async(lambda s: s.reconcile_payout(parsed_args.payout_id)))
            _print(result)
            return 0 if result.success else 1
        if parsed_args.church_id:
            result = asyncio.run(run_job_async(lambda s: s.reconcile_church(parsed_args.church_id)))
            _print(result)
            return 0 if result.failed == 0 else 1
        result = asyncio.run(run_job_async(lambda s: s.reconcile_all()))
        _print(result)
        return 0 if result.total_failed == 0 else 1

    if parsed_args.command == "sweep-pending":
        result = asyncio.run(run_job_async(lambda s: s.sweep_stale_pending(parsed_args.max_age_days)))
        _print(result)
        return 0 if result.errors == 0 else 1

    if parsed_args.command == "purge-webhook-markers":
        deleted = asyncio.run(run_job_async(lambda s: s.purge_webhook_markers()))
        _print({"deleted": deleted})
        return 0

    return 0


if __name__ == "__main__":
    sys.exit(main())
