"""
Ledger Materializer

Expands active, auto-created templates into month-scoped ledger rows:
expenses inside a MonthlyBudget and income events filed under the month.

Materialization is idempotent. Each (template, occurrence date) gets at most
one row, enforced by a unique constraint on ``occurrence_on``. That column
records the occurrence a row was made for and never changes, so moving an
expense or income event to another date does not make its occurrence look
missing. Rows that already exist are never modified or removed. Every insert
runs inside a SAVEPOINT so a concurrent request that inserted the same row
first is treated as "already materialized".
"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from typing import List, NamedTuple, Optional, Set
from datetime import date
from decimal import Decimal

from monthly_ledger.crud import crud_budget, crud_template
from monthly_ledger.db.core import ExpenseDB, ExpenseTemplateDB, IncomeEventDB, IncomeTemplateDB, MonthlyBudgetDB
from monthly_ledger.logging_config import get_logger
from monthly_ledger.services.income_totals import affected_months, refresh_income_totals
from monthly_ledger.services.occurrences import parse_month_year

logger = get_logger(__name__)


class MaterializationError(Exception):
    """A template could not be expanded; earlier templates stay materialized."""
    pass


class MaterializationResult(NamedTuple):
    month_year: str
    budget_id: int
    expenses_created: int
    income_events_created: int


def _insert_once(db: Session, instance) -> bool:
    """Insert a ledger row; False when the unique constraint says it already exists."""
    try:
        with db.begin_nested():
            db.add(instance)
            db.flush()
    except IntegrityError:
        logger.debug(f"Skipped duplicate {type(instance).__name__}; already materialized")
        return False
    return True


# ===== EXPENSES =====

def _existing_expense_dates(db: Session, budget_id: int, template_id: int) -> Set[date]:
    rows = db.query(ExpenseDB.occurrence_on).filter(
        ExpenseDB.monthly_budget_id == budget_id,
        ExpenseDB.expense_template_id == template_id
    ).all()
    return {row.occurrence_on for row in rows}


def _materialize_expense_template(db: Session, budget: MonthlyBudgetDB, template: ExpenseTemplateDB) -> int:
    existing = _existing_expense_dates(db, budget.id, template.id)
    created = 0

    for occurrence in template.occurrences(budget.month_year):
        if occurrence in existing:
            continue
        expense = ExpenseDB(
            monthly_budget_id=budget.id,
            expense_template_id=template.id,
            name=template.name,
            allotted_amount=template.default_amount or Decimal("0.00"),
            expected_on=occurrence,
            occurrence_on=occurrence,
        )
        if _insert_once(db, expense):
            created += 1

    return created


def materialize_expenses(db: Session, budget: MonthlyBudgetDB) -> int:
    """Create the missing expenses of a budget from the owner's expense templates"""

    month_year = budget.month_year
    user_id = budget.user_id
    budget_id = budget.id

    templates = crud_template.read_materializable_templates(db, ExpenseTemplateDB, user_id)
    created = 0

    for template in templates:
        template_id = template.id
        try:
            created += _materialize_expense_template(db, budget, template)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to materialize expense template {template_id} into budget {budget_id} ({month_year}): {e}")
            raise MaterializationError(
                f"Could not create expenses for template {template_id} in {month_year}"
            ) from e

    if created:
        logger.info(f"Materialized {created} expense(s) for user {user_id} in {month_year}")
    return created


# ===== INCOME EVENTS =====

def _existing_income_dates(db: Session, user_id: int, template_id: int, dates: List[date]) -> Set[date]:
    # Not filtered by month_year: an edited received_on can move the row to another month
    rows = db.query(IncomeEventDB.occurrence_on).filter(
        IncomeEventDB.user_id == user_id,
        IncomeEventDB.income_template_id == template_id,
        IncomeEventDB.occurrence_on.in_(dates)
    ).all()
    return {row.occurrence_on for row in rows}


def _materialize_income_template(db: Session, user_id: int, month_year: str,
                                 template: IncomeTemplateDB, today: date) -> int:
    dates = template.occurrences(month_year)
    if not dates:
        return 0

    existing = _existing_income_dates(db, user_id, template.id, dates)
    last_occurrence = dates[-1]
    created = 0

    for occurrence in dates:
        if occurrence in existing:
            continue
        # Future-dated income has not been received yet
        received = template.estimated_amount if occurrence <= today else None
        event = IncomeEventDB(
            user_id=user_id,
            income_template_id=template.id,
            month_year=month_year,
            received_on=occurrence,
            occurrence_on=occurrence,
            actual_amount=received or Decimal("0.00"),
            apply_to_next_month=bool(template.last_payment_to_next_month and occurrence == last_occurrence),
        )
        if _insert_once(db, event):
            created += 1

    return created


def materialize_income_events(db: Session, user_id: int, month_year: str, today: Optional[date] = None) -> int:
    """Create the missing income events of a month from the owner's income templates"""

    parse_month_year(month_year)
    today = today or date.today()

    templates = crud_template.read_materializable_templates(db, IncomeTemplateDB, user_id)
    created = 0

    try:
        for template in templates:
            template_id = template.id
            try:
                created += _materialize_income_template(db, user_id, month_year, template, today)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to materialize income template {template_id} for user {user_id} ({month_year}): {e}")
                raise MaterializationError(
                    f"Could not create income events for template {template_id} in {month_year}"
                ) from e
    finally:
        # Totals must reflect whatever was committed, including partial runs
        if created:
            refresh_income_totals(db, user_id, affected_months(month_year))

    if created:
        logger.info(f"Materialized {created} income event(s) for user {user_id} in {month_year}")
    return created


# ===== ENTRY POINT =====

def materialize(db: Session, user_id: int, month_year: str, today: Optional[date] = None) -> MaterializationResult:
    """
    Bring a month's ledger in line with the user's templates.

    Creates the month's budget when it does not exist yet, then fills in any
    missing expenses and income events. Safe to call on every request.
    """
    parse_month_year(month_year)

    budget, _ = crud_budget.get_or_create_budget(db, user_id, month_year)
    budget_id = budget.id

    expenses_created = materialize_expenses(db, budget)
    income_events_created = materialize_income_events(db, user_id, month_year, today=today)

    return MaterializationResult(
        month_year=month_year,
        budget_id=budget_id,
        expenses_created=expenses_created,
        income_events_created=income_events_created,
    )
