"""CLI entry point for billing period operations.

Usage:
    python -m src.cli.billing create-period 2025-01 2025-01-01 2025-01-31
    python -m src.cli.billing generate 1 --types membership target --force
    python -m src.cli.billing lock 1
    python -m src.cli.billing unlock 1
    python -m src.cli.billing reconcile 1 --only-with-debt --sort debt_desc
    python -m src.cli.billing apply-penalties 2 --as-of 2025-03-01 --rate 0.1

Exit Codes:
    0 - Success
    1 - Failure: operation rejected or unexpected error; nothing written

Logging:
    LOG_LEVEL level logs to both stdout and LOG_FILE (default logs/billing.log)
"""

import argparse
import logging
import sys
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence

from src.services.config import load_config
from src.services.errors import BillingError
from src.services.logging import setup_server_logging

logger = logging.getLogger("src.cli.billing")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="billing", description="Billing period operations")
    parser.add_argument("--actor-id", type=int, default=None, help="Staff user performing the action")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-period", help="Create a draft billing period")
    create.add_argument("name")
    create.add_argument("date_from", type=date.fromisoformat)
    create.add_argument("date_to", type=date.fromisoformat)

    generate = sub.add_parser("generate", help="Generate accruals for a draft period")
    generate.add_argument("period_id", type=int)
    generate.add_argument("--types", nargs="+", default=None)
    generate.add_argument("--force", action="store_true", help="Overwrite existing accruals")

    lock = sub.add_parser("lock", help="Lock a draft period")
    lock.add_argument("period_id", type=int)

    unlock = sub.add_parser("unlock", help="Return a locked period to draft")
    unlock.add_argument("period_id", type=int)

    reconcile = sub.add_parser("reconcile", help="Print the period debt picture as CSV")
    reconcile.add_argument("period_id", type=int)
    reconcile.add_argument("--only-with-debt", action="store_true")
    reconcile.add_argument("--min-debt", type=Decimal, default=None)
    reconcile.add_argument("--sort", choices=["debt_asc", "debt_desc"], default=None)

    penalties = sub.add_parser("apply-penalties", help="Charge penalties for overdue debt to a draft period")
    penalties.add_argument("period_id", type=int)
    penalties.add_argument("--as-of", type=date.fromisoformat, default=None, help="Default: today")
    penalties.add_argument(
        "--rate", type=Decimal, default=None, help="Annual rate (default PENALTY_ANNUAL_RATE)"
    )
    penalties.add_argument("--min-penalty", type=Decimal, default=Decimal("0"))

    return parser


def run(args: argparse.Namespace, db) -> int:
    from src.services.accrual_service import AccrualService
    from src.services.penalty_service import PenaltyService
    from src.services.period_service import BillingPeriodService
    from src.services.reconciliation_service import (
        ReconciliationService,
        filter_rows,
        rows_to_csv,
        sort_rows,
        summarize,
    )

    periods = BillingPeriodService(db)

    if args.command == "create-period":
        period = periods.create_period(args.name, args.date_from, args.date_to, args.actor_id)
        print(f"Created period {period.id} ({period.name})")
    elif args.command == "generate":
        result = AccrualService(db).generate(args.period_id, args.types, args.force, args.actor_id)
        print(
            f"Period {args.period_id}: created={result.created} updated={result.updated} "
            f"skipped={len(result.skipped)} needs_review={len(result.needs_review)}"
        )
    elif args.command == "lock":
        periods.lock_period(args.period_id, args.actor_id)
        print(f"Period {args.period_id} locked")
    elif args.command == "unlock":
        periods.unlock_period(args.period_id, args.actor_id)
        print(f"Period {args.period_id} unlocked")
    elif args.command == "reconcile":
        reconciliation = ReconciliationService(db).build(args.period_id)
        rows = filter_rows(
            reconciliation.rows, only_with_debt=args.only_with_debt, min_debt=args.min_debt
        )
        if args.sort:
            rows = sort_rows(rows, args.sort)
        sys.stdout.write(rows_to_csv(rows))
        totals = summarize(reconciliation)
        logger.info(
            "Reconciliation for period %d: accrued=%s paid=%s debt=%s debtors=%d",
            args.period_id,
            totals.accrued,
            totals.paid,
            totals.debt,
            totals.debtors,
        )
    elif args.command == "apply-penalties":
        result = PenaltyService(db).apply(
            args.period_id, args.as_of or date.today(), args.rate, args.min_penalty, args.actor_id
        )
        print(
            f"Period {args.period_id}: penalties created={result.created} updated={result.updated} "
            f"frozen={result.skipped_frozen} total={result.total}"
        )
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Parse arguments and run one billing command.

    Returns:
        Exit code: 0 for success, 1 for failure
    """
    args = build_parser().parse_args(argv)
    setup_server_logging(load_config().log_file)

    from src.services import SessionLocal

    db = SessionLocal()
    try:
        return run(args, db)
    except BillingError as e:
        logger.error("%s failed: [%s] %s", args.command, e.code, e.message)
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 1
    except Exception as e:
        logger.error("%s failed: %s", args.command, e, exc_info=True)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
