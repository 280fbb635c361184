"""
funding-scheduler -- command-line invoker for the billing scheduler.

Intended to run from cron (or any external timer) every few minutes:

    funding-scheduler tick
    funding-scheduler tick --config /etc/funding/ledger.yaml --now 2026-07-01T02:00:00+00:00
    funding-scheduler create-tables

Settings come from funding_config (defaults.yaml, FUNDING_LEDGER_CONFIG,
DATABASE_URL, SCHEDULER_SECRET).  When a scheduler secret is configured the
tick presents it as ``Bearer <secret>`` unless ``--authorization`` is given.

Exit codes: 0 all due automations succeeded (or none were due), 1 at least
one automation failed, 2 configuration or authorization error.
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime

from funding_config import load_settings
from funding_kernel.exceptions import ConfigurationError, SchedulerAuthorizationError
from funding_kernel.logging_config import configure_logging, get_logger
from funding_services.ledger_api import BEARER_PREFIX, FundingLedgerAPI

logger = get_logger("cli.scheduler")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="funding-scheduler",
        description="Run the funding ledger's billing automation scheduler.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Settings file merged over the defaults (default: $FUNDING_LEDGER_CONFIG)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    tick = sub.add_parser("tick", help="Run every automation that is due now")
    tick.add_argument(
        "--authorization",
        default=None,
        help="Authorization header value (default: Bearer <configured secret>)",
    )
    tick.add_argument(
        "--now",
        default=None,
        type=datetime.fromisoformat,
        help="Evaluate as of this ISO-8601 instant (must carry an offset)",
    )

    sub.add_parser("create-tables", help="Create ledger and scheduler tables")
    return parser.parse_args(argv)


def _tick(api: FundingLedgerAPI, args: argparse.Namespace, secret: str | None) -> int:
    if args.now is not None and args.now.tzinfo is None:
        print("--now must include a UTC offset", file=sys.stderr)
        return 2
    authorization = args.authorization
    if authorization is None and secret:
        authorization = f"{BEARER_PREFIX}{secret}"

    result = api.run_scheduler(now=args.now, authorization=authorization)
    print(json.dumps({
        "processed": result.processed,
        "message": result.message,
        "results": [
            {
                "automation_id": str(r.automation_id),
                "name": r.name,
                "success": r.success,
                "summary": r.summary,
                "run_id": str(r.run_id) if r.run_id else None,
            }
            for r in result.results
        ],
    }, indent=2))
    return 1 if result.failed else 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        settings = load_settings(args.config)
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    configure_logging(level=settings.log_level)
    api = FundingLedgerAPI.from_settings(settings)

    if args.command == "create-tables":
        from funding_kernel.db.engine import create_tables

        create_tables()
        logger.info("tables_created", extra={"source": settings.source})
        print("Tables created.")
        return 0

    try:
        return _tick(api, args, settings.scheduler_secret)
    except SchedulerAuthorizationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
