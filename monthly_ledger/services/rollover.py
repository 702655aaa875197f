"""
Rollover Coordinator

Decides when month budgets come into existence and keeps month-level income
figures consistent:

- the current month's budget is created lazily and filled from templates
- next month's budget is created on explicit request
- expected income is projected from the active income templates
"""
from sqlalchemy.orm import Session
from datetime import date
from decimal import Decimal
from typing import NamedTuple, Optional

from monthly_ledger.crud import crud_budget, crud_template
from monthly_ledger.db.core import IncomeTemplateDB, MonthlyBudgetDB
from monthly_ledger.logging_config import get_logger
from monthly_ledger.services import materializer
from monthly_ledger.services.occurrences import current_month_year, next_month_year, parse_month_year

logger = get_logger(__name__)


class RolloverResult(NamedTuple):
    current_month: str
    current_created: bool
    next_month: Optional[str]
    next_created: bool
    expenses_created: int
    income_events_created: int


def ensure_current_budget(db: Session, user_id: int, today: Optional[date] = None) -> MonthlyBudgetDB:
    """
    Find the budget for the current month, creating it on first use.

    A newly created budget is filled with the month's template expenses.
    Calling this repeatedly never creates a second budget or duplicate rows.
    """
    month_year = current_month_year(today)
    budget, created = crud_budget.get_or_create_budget(db, user_id, month_year)

    if created:
        materializer.materialize_expenses(db, budget)
        logger.info(f"Opened current budget {month_year} for user {user_id}")

    return budget


def create_next_month_budget(db: Session, user_id: int, today: Optional[date] = None) -> Optional[MonthlyBudgetDB]:
    """
    Create next month's budget and materialize its templates.

    Returns None when that budget already exists.
    """
    month_year = next_month_year(current_month_year(today))

    if crud_budget.read_budget_by_month(db, user_id, month_year):
        logger.info(f"Budget {month_year} already exists for user {user_id}")
        return None

    try:
        budget = crud_budget.create_db_budget(db, user_id, month_year)
    except ValueError:
        # Created concurrently
        return None

    materializer.materialize(db, user_id, month_year, today=today)
    db.refresh(budget)
    return budget


def expected_income(db: Session, user_id: int, month_year: str) -> Decimal:
    """Projected income for a month from the active income templates"""
    parse_month_year(month_year)

    total = Decimal("0.00")
    for template in crud_template.read_db_templates(db, IncomeTemplateDB, user_id):
        count = len(template.occurrences(month_year))
        total += count * (template.estimated_amount or Decimal("0.00"))
    return total


def run_rollover(db: Session, user_id: int, today: Optional[date] = None,
                 include_next_month: bool = False) -> RolloverResult:
    """Bring a user's current (and optionally next) month up to date"""
    today = today or date.today()
    month_year = current_month_year(today)

    current_created = crud_budget.read_budget_by_month(db, user_id, month_year) is None
    current = materializer.materialize(db, user_id, month_year, today=today)

    expenses_created = current.expenses_created
    income_events_created = current.income_events_created
    next_month = None
    next_created = False

    if include_next_month:
        next_month = next_month_year(month_year)
        next_created = create_next_month_budget(db, user_id, today=today) is not None
        # Fill in anything added to templates since the budget was created
        upcoming = materializer.materialize(db, user_id, next_month, today=today)
        expenses_created += upcoming.expenses_created
        income_events_created += upcoming.income_events_created

    return RolloverResult(
        current_month=month_year,
        current_created=current_created,
        next_month=next_month,
        next_created=next_created,
        expenses_created=expenses_created,
        income_events_created=income_events_created,
    )
