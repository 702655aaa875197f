"""
Income Total Maintenance

``MonthlyBudgetDB.total_actual_income`` is the one stored aggregate in the
ledger. It is written only by ``recalculate_total_actual_income``, which is
invoked from income event mutation paths and when a budget is created.

An income event counts toward its own month unless it is flagged
``apply_to_next_month``, in which case it counts toward the following month.
"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import and_, or_, func, update
from typing import Iterable, Optional, Set
from decimal import Decimal

from monthly_ledger.db.core import IncomeEventDB, MonthlyBudgetDB
from monthly_ledger.logging_config import get_logger
from monthly_ledger.services.occurrences import next_month_year, parse_month_year, previous_month_year

logger = get_logger(__name__)


def counted_income_filter(user_id: int, month_year: str):
    """SQL condition selecting the events that count toward ``month_year``."""
    previous_month = previous_month_year(month_year)
    return and_(
        IncomeEventDB.user_id == user_id,
        or_(
            and_(IncomeEventDB.month_year == month_year, IncomeEventDB.apply_to_next_month.is_(False)),
            and_(IncomeEventDB.month_year == previous_month, IncomeEventDB.apply_to_next_month.is_(True)),
        ),
    )


def sum_counted_income(db: Session, user_id: int, month_year: str) -> Decimal:
    parse_month_year(month_year)
    result = db.query(func.coalesce(func.sum(IncomeEventDB.actual_amount), 0)).filter(
        counted_income_filter(user_id, month_year)
    ).scalar()
    return Decimal(str(result)) if result else Decimal("0.00")


def carryover_from_previous_month(db: Session, user_id: int, month_year: str) -> Decimal:
    """Deferred income from the previous month that counts toward ``month_year``."""
    result = db.query(func.coalesce(func.sum(IncomeEventDB.actual_amount), 0)).filter(
        IncomeEventDB.user_id == user_id,
        IncomeEventDB.month_year == previous_month_year(month_year),
        IncomeEventDB.apply_to_next_month.is_(True),
    ).scalar()
    return Decimal(str(result)) if result else Decimal("0.00")


def affected_months(month_year: str) -> Set[str]:
    """Months whose totals an event filed under ``month_year`` can change."""
    return {month_year, next_month_year(month_year)}


def recalculate_total_actual_income(db: Session, user_id: int, month_year: str) -> Optional[Decimal]:
    """
    Recompute and persist a budget's ``total_actual_income``.

    Writes with a direct UPDATE so no other budget field is touched. Returns
    the new total, or None when the user has no budget for that month yet.
    """
    total = sum_counted_income(db, user_id, month_year)

    result = db.execute(
        update(MonthlyBudgetDB)
        .where(MonthlyBudgetDB.user_id == user_id, MonthlyBudgetDB.month_year == month_year)
        .values(total_actual_income=total)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    if result.rowcount == 0:
        return None

    logger.debug(f"Income total for user {user_id} {month_year} is now {total}")
    return total


def refresh_income_totals(db: Session, user_id: int, month_years: Iterable[str]) -> None:
    """
    Recalculate several months after an income event change.

    The triggering change is already committed; a failed recalculation
    leaves a stale total and is logged rather than raised.
    """
    for month_year in sorted(set(month_years)):
        try:
            recalculate_total_actual_income(db, user_id, month_year)
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Could not refresh income total for user {user_id} {month_year}: {e}")
