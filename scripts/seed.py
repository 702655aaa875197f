import sys
import os
import random
from sqlalchemy.orm import Session
from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import uuid4
from faker import Faker

# Add the project root to the Python path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from monthly_ledger.db.core import (
    init_db,
    session_local,
    UserDB,
    ExpenseTemplateDB,
    IncomeTemplateDB,
    Frequency,
)
from monthly_ledger.services import rollover

fake = Faker()

EXPENSE_TEMPLATES = [
    # name, frequency, day of month, amount range
    ("Rent", Frequency.MONTHLY, 1, (900, 2200)),
    ("Electricity", Frequency.MONTHLY, 15, (40, 160)),
    ("Internet", Frequency.MONTHLY, 20, (40, 90)),
    ("Phone", Frequency.MONTHLY, 28, (25, 80)),
    ("Car Insurance", Frequency.MONTHLY, 31, (80, 220)),
    ("Groceries", Frequency.WEEKLY, 3, (80, 180)),
    ("Gym", Frequency.MONTHLY, 5, (20, 60)),
    ("Domain Renewal", Frequency.YEARLY, 12, (10, 40)),
]


def _money(low: float, high: float) -> Decimal:
    return Decimal(str(round(random.uniform(low, high), 2)))


def seed_database(user_count: int = 3):
    """
    Fills the database with demo users, their recurring templates and the
    current and next month's budgets.
    """
    init_db()
    db: Session = session_local()

    try:
        # Check if data exists to prevent duplicate seeding
        if db.query(UserDB).count() > 0:
            print("Database appears to be already seeded. Exiting.")
            return

        print("Seeding database with sample data...")
        today = date.today()

        for i in range(user_count):
            print(f"--- Seeding user {i+1}/{user_count} ---")

            user = UserDB(
                id=uuid4(),
                email=fake.unique.email(),
                username=fake.unique.user_name(),
                display_name=fake.first_name(),
                created_at=datetime.utcnow(),
                updated_at=datetime.utcnow()
            )
            db.add(user)
            db.flush()

            print("Creating expense templates...")
            for name, frequency, day, (low, high) in EXPENSE_TEMPLATES:
                anchor = date(today.year, today.month, min(day, 28))
                if frequency == Frequency.YEARLY:
                    anchor = fake.date_between(start_date="-1y", end_date="today").replace(day=min(day, 28))
                db.add(ExpenseTemplateDB(
                    user_id=user.db_id,
                    name=name,
                    frequency=frequency,
                    due_date=anchor,
                    auto_create=random.random() > 0.15,
                    default_amount=_money(low, high),
                ))

            print("Creating income templates...")
            paycheck_anchor = today - timedelta(days=random.randint(0, 13))
            db.add(IncomeTemplateDB(
                user_id=user.db_id,
                name=f"{fake.company()} Paycheck",
                frequency=Frequency.BI_WEEKLY,
                due_date=paycheck_anchor,
                auto_create=True,
                estimated_amount=_money(1400, 3200),
                last_payment_to_next_month=random.choice([True, False]),
            ))
            if random.random() > 0.5:
                db.add(IncomeTemplateDB(
                    user_id=user.db_id,
                    name="Side Gig",
                    frequency=Frequency.MONTHLY,
                    due_date=date(today.year, today.month, random.randint(1, 28)),
                    auto_create=True,
                    estimated_amount=_money(150, 600),
                ))
            db.commit()

            print("Opening budgets...")
            result = rollover.run_rollover(db, user.db_id, today=today, include_next_month=True)
            print(
                f"User {i+1} seeded: {result.expenses_created} expense(s), "
                f"{result.income_events_created} income event(s)."
            )

        print("Successfully seeded database.")

    except Exception as e:
        print(f"An error occurred: {e}")
        import traceback
        traceback.print_exc()
        db.rollback()
    finally:
        db.close()

if __name__ == "__main__":
    seed_database()
