from sqlalchemy.orm import Session, selectinload
from sqlalchemy.exc import IntegrityError
from sqlalchemy import desc
from typing import Optional, List, Tuple
from datetime import datetime

from monthly_ledger.db.core import MonthlyBudgetDB, ExpenseDB, UserDB, NotFoundError
from monthly_ledger.models.budget import MonthlyBudgetUpdate
from monthly_ledger.services.income_totals import recalculate_total_actual_income
from monthly_ledger.services.occurrences import parse_month_year
from monthly_ledger.logging_config import get_logger

logger = get_logger(__name__)


# ===== DATABASE OPERATIONS =====

def read_budget_by_month(db: Session, user_id: int, month_year: str) -> Optional[MonthlyBudgetDB]:
    """Read a user's budget for a YYYY-MM month, if it exists"""
    parse_month_year(month_year)
    return db.query(MonthlyBudgetDB).filter(
        MonthlyBudgetDB.user_id == user_id,
        MonthlyBudgetDB.month_year == month_year
    ).options(
        selectinload(MonthlyBudgetDB.expenses).selectinload(ExpenseDB.payments)
    ).first()


def require_budget_by_month(db: Session, user_id: int, month_year: str) -> MonthlyBudgetDB:
    budget = read_budget_by_month(db, user_id, month_year)
    if not budget:
        raise NotFoundError(f"Budget for {month_year} not found")
    return budget


def read_db_budgets(db: Session, user_id: int, skip: int = 0, limit: int = 100) -> List[MonthlyBudgetDB]:
    """Read all budgets for a user, newest month first"""
    return db.query(MonthlyBudgetDB).filter(
        MonthlyBudgetDB.user_id == user_id
    ).order_by(desc(MonthlyBudgetDB.month_year)).offset(skip).limit(limit).all()


def list_month_years(db: Session, user_id: int) -> List[str]:
    rows = db.query(MonthlyBudgetDB.month_year).filter(
        MonthlyBudgetDB.user_id == user_id
    ).order_by(MonthlyBudgetDB.month_year).all()
    return [row.month_year for row in rows]


def adjacent_month_years(db: Session, user_id: int, month_year: str) -> Tuple[Optional[str], Optional[str]]:
    """Previous and next months that have a budget, for month navigation"""
    months = list_month_years(db, user_id)
    earlier = [m for m in months if m < month_year]
    later = [m for m in months if m > month_year]
    return (earlier[-1] if earlier else None, later[0] if later else None)


def create_db_budget(db: Session, user_id: int, month_year: str) -> MonthlyBudgetDB:
    """Create an empty budget for a month"""

    parse_month_year(month_year)

    user = db.query(UserDB).filter(UserDB.db_id == user_id).first()
    if not user:
        raise NotFoundError(f"User with id {user_id} not found")

    existing_budget = db.query(MonthlyBudgetDB).filter(
        MonthlyBudgetDB.user_id == user_id,
        MonthlyBudgetDB.month_year == month_year
    ).first()
    if existing_budget:
        raise ValueError(f"Budget for {month_year} already exists")

    db_budget = MonthlyBudgetDB(
        user_id=user_id,
        month_year=month_year,
        created_at=datetime.utcnow(),
        updated_at=datetime.utcnow()
    )

    try:
        db.add(db_budget)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValueError("Budget creation failed due to database constraint")

    # Income already recorded for this month (or deferred from the last one)
    recalculate_total_actual_income(db, user_id, month_year)
    db.refresh(db_budget)
    logger.info(f"Created budget {month_year} for user {user_id}")
    return db_budget


def get_or_create_budget(db: Session, user_id: int, month_year: str) -> Tuple[MonthlyBudgetDB, bool]:
    """Find a month's budget, creating it when missing. Returns (budget, created)."""
    budget = read_budget_by_month(db, user_id, month_year)
    if budget:
        return budget, False

    try:
        return create_db_budget(db, user_id, month_year), True
    except ValueError:
        # Another request created it first
        budget = read_budget_by_month(db, user_id, month_year)
        if budget is None:
            raise
        return budget, False


def update_db_budget(db: Session, user_id: int, month_year: str, budget_updates: MonthlyBudgetUpdate) -> MonthlyBudgetDB:
    """Update the flex fund or bank balance of a budget"""

    db_budget = require_budget_by_month(db, user_id, month_year)

    update_data = budget_updates.model_dump(exclude_unset=True)
    if update_data.get('flex_fund', 0) is None:
        raise ValueError("flex_fund cannot be cleared")

    for field, value in update_data.items():
        setattr(db_budget, field, value)

    db_budget.updated_at = datetime.utcnow()

    try:
        db.commit()
        db.refresh(db_budget)
        return db_budget
    except IntegrityError:
        db.rollback()
        raise ValueError("Budget update failed due to database constraint")


def delete_db_budget(db: Session, user_id: int, month_year: str) -> bool:
    """Delete a budget together with its expenses and payments"""

    db_budget = require_budget_by_month(db, user_id, month_year)

    try:
        db.delete(db_budget)
        db.commit()
        return True
    except Exception as e:
        db.rollback()
        raise ValueError(f"Failed to delete budget: {str(e)}")
