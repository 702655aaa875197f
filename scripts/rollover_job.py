#!/usr/bin/env python
"""
Monthly Rollover Job

Meant to run once a day (e.g. from cron) to:
1. Open the current month's budget for every user
2. Fill in template expenses and income events that are still missing
3. Optionally open next month's budget ahead of time

Usage:
    python scripts/rollover_job.py [--date YYYY-MM-DD] [--user-id ID] [--next-month]

Options:
    --date: Treat this date as today (default: today)
    --user-id: Process only specific user (default: all users)
    --next-month: Also create and fill next month's budget
"""
import sys
from pathlib import Path
from datetime import date, datetime
from argparse import ArgumentParser

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from monthly_ledger.db.core import get_db, init_db, UserDB
from monthly_ledger.logging_config import setup_logging
from monthly_ledger.services.materializer import MaterializationError
from monthly_ledger.services.rollover import run_rollover

logger = setup_logging()


def run_rollover_job(
    run_date: date,
    user_id: int = None,
    include_next_month: bool = False
) -> int:
    """
    Run the rollover for all users (or a specific user).
    Returns the number of users that failed.
    """
    logger.info(f"Running rollover job for {run_date}")

    init_db()
    db = next(get_db())
    try:
        if user_id:
            users = db.query(UserDB).filter(UserDB.db_id == user_id).all()
            if not users:
                logger.error(f"User {user_id} not found")
                return 1
        else:
            users = db.query(UserDB).order_by(UserDB.db_id).all()

        logger.info(f"Processing {len(users)} user(s)...")

        total_expenses = 0
        total_income_events = 0
        total_errors = 0

        for user in users:
            username = user.username
            try:
                result = run_rollover(
                    db=db,
                    user_id=user.db_id,
                    today=run_date,
                    include_next_month=include_next_month
                )
            except MaterializationError as e:
                logger.error(f"Rollover failed for user {username}: {e}")
                total_errors += 1
                continue

            opened = [m for m, created in (
                (result.current_month, result.current_created),
                (result.next_month, result.next_created),
            ) if created]
            logger.info(
                f"User {username}: opened {', '.join(opened) or 'no new months'}; "
                f"{result.expenses_created} expense(s), {result.income_events_created} income event(s) created"
            )
            total_expenses += result.expenses_created
            total_income_events += result.income_events_created

        logger.info(
            f"Rollover job complete: {total_expenses} expense(s), "
            f"{total_income_events} income event(s), {total_errors} error(s)"
        )
        return total_errors
    finally:
        db.close()


def main():
    parser = ArgumentParser(description="Open and fill monthly budgets from recurring templates")

    parser.add_argument(
        '--date',
        type=str,
        help='Date to treat as today (YYYY-MM-DD), defaults to today'
    )

    parser.add_argument(
        '--user-id',
        type=int,
        help='Process only specific user ID'
    )

    parser.add_argument(
        '--next-month',
        action='store_true',
        help="Also create next month's budget"
    )

    args = parser.parse_args()

    # Parse date
    if args.date:
        try:
            run_date = datetime.strptime(args.date, '%Y-%m-%d').date()
        except ValueError:
            print(f"Invalid date format: {args.date}. Use YYYY-MM-DD")
            sys.exit(1)
    else:
        run_date = date.today()

    errors = run_rollover_job(
        run_date=run_date,
        user_id=args.user_id,
        include_next_month=args.next_month
    )
    sys.exit(1 if errors else 0)


if __name__ == "__main__":
    main()
