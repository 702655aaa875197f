from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import Optional, Tuple
from datetime import date, datetime
from decimal import Decimal

from monthly_ledger.crud import crud_budget, crud_template
from monthly_ledger.db.core import ExpenseDB, ExpenseTemplateDB, MonthlyBudgetDB, PaymentDB, NotFoundError
from monthly_ledger.models.expense import ExpenseCreate, ExpenseUpdate, PaymentCreate
from monthly_ledger.services.occurrences import current_month_year, month_bounds, occurrences
from monthly_ledger.logging_config import get_logger

logger = get_logger(__name__)


# ===== EXPENSE OPERATIONS =====

def read_db_expense(db: Session, expense_id: int, user_id: int) -> Optional[ExpenseDB]:
    """Read an expense, checking it belongs to one of the user's budgets"""
    return db.query(ExpenseDB).join(MonthlyBudgetDB).filter(
        ExpenseDB.id == expense_id,
        MonthlyBudgetDB.user_id == user_id
    ).first()


def require_db_expense(db: Session, expense_id: int, user_id: int) -> ExpenseDB:
    db_expense = read_db_expense(db, expense_id, user_id)
    if not db_expense:
        raise NotFoundError(f"Expense with id {expense_id} not found")
    return db_expense


def _template_occurrence(template: ExpenseTemplateDB, month_year: str,
                         expected_on: Optional[date]) -> Tuple[Optional[date], date]:
    """
    Resolve which occurrence of ``template`` a manual expense stands for.

    Returns ``(expected_on, occurrence_on)``. A template without an anchor date
    has no schedule, so it gets one expense per month keyed on the first day.
    """
    if template.due_date is None:
        month_start, month_end = month_bounds(month_year)
        if expected_on is not None and not month_start <= expected_on <= month_end:
            raise ValueError(f"expected_on must fall within {month_year}")
        return expected_on, month_start

    dates = occurrences(template.frequency, template.due_date, month_year)
    if not dates:
        raise ValueError(f"Template '{template.name}' has no occurrence in {month_year}")
    if expected_on is None:
        if len(dates) > 1:
            raise ValueError("expected_on is required for a template that occurs more than once a month")
        expected_on = dates[0]
    if expected_on not in dates:
        allowed = ", ".join(d.isoformat() for d in dates)
        raise ValueError(f"expected_on must be one of the template's occurrences in {month_year}: {allowed}")
    return expected_on, expected_on


def create_db_expense(db: Session, user_id: int, month_year: str, expense_data: ExpenseCreate) -> ExpenseDB:
    """
    Add an expense to a month's budget.

    Without a template the expense is a one-off and needs a name. With a
    template, name and allotted amount default to the template's, and the
    expense stands for one of the template's occurrences in that month.
    """
    budget = crud_budget.require_budget_by_month(db, user_id, month_year)

    name = expense_data.name
    allotted_amount = expense_data.allotted_amount
    expected_on = expense_data.expected_on
    occurrence_on = None

    if expense_data.expense_template_id is not None:
        template = crud_template.require_db_template(
            db, ExpenseTemplateDB, expense_data.expense_template_id, user_id
        )
        name = name or template.name
        if allotted_amount is None:
            allotted_amount = template.default_amount
        expected_on, occurrence_on = _template_occurrence(template, month_year, expected_on)
    elif not name:
        raise ValueError("name is required for a one-off expense")

    db_expense = ExpenseDB(
        monthly_budget_id=budget.id,
        expense_template_id=expense_data.expense_template_id,
        name=name,
        allotted_amount=allotted_amount or Decimal("0.00"),
        expected_on=expected_on,
        occurrence_on=occurrence_on,
        notes=expense_data.notes,
        created_at=datetime.utcnow(),
        updated_at=datetime.utcnow()
    )

    try:
        db.add(db_expense)
        db.commit()
        db.refresh(db_expense)
        logger.info(f"Created expense '{db_expense.name}' ({db_expense.id}) in {month_year} for user {user_id}")
        return db_expense
    except IntegrityError:
        db.rollback()
        raise ValueError("This template already has an expense for that occurrence in this month")


def update_db_expense(db: Session, expense_id: int, user_id: int, expense_updates: ExpenseUpdate) -> ExpenseDB:
    """Update an expense instance; its template is left untouched"""

    db_expense = require_db_expense(db, expense_id, user_id)

    update_data = expense_updates.model_dump(exclude_unset=True)
    for field in ('name', 'allotted_amount'):
        if field in update_data and update_data[field] is None:
            raise ValueError(f"{field} cannot be cleared")

    for field, value in update_data.items():
        setattr(db_expense, field, value)

    db_expense.updated_at = datetime.utcnow()

    try:
        db.commit()
        db.refresh(db_expense)
        return db_expense
    except IntegrityError:
        db.rollback()
        raise ValueError("Expense update failed due to database constraint")


def delete_db_expense(db: Session, expense_id: int, user_id: int) -> bool:
    """Delete a one-off expense and its payments"""

    db_expense = require_db_expense(db, expense_id, user_id)
    if not db_expense.is_one_off:
        raise ValueError("Expenses created from a template cannot be deleted; set the amount to 0 instead")

    db.delete(db_expense)
    db.commit()
    logger.info(f"Deleted expense {expense_id} for user {user_id}")
    return True


# ===== PAYMENT OPERATIONS =====

def add_payment(db: Session, expense_id: int, user_id: int, payment_data: PaymentCreate) -> PaymentDB:
    """Record money spent against an expense"""

    db_expense = require_db_expense(db, expense_id, user_id)

    db_payment = PaymentDB(
        expense_id=db_expense.id,
        amount=payment_data.amount,
        spent_on=payment_data.spent_on,
        notes=payment_data.notes,
        created_at=datetime.utcnow()
    )

    try:
        db.add(db_payment)
        db.commit()
        db.refresh(db_payment)
        return db_payment
    except IntegrityError:
        db.rollback()
        raise ValueError("Payment creation failed due to database constraint")


def delete_payment(db: Session, payment_id: int, user_id: int) -> bool:
    db_payment = db.query(PaymentDB).join(ExpenseDB).join(MonthlyBudgetDB).filter(
        PaymentDB.id == payment_id,
        MonthlyBudgetDB.user_id == user_id
    ).first()
    if not db_payment:
        raise NotFoundError(f"Payment with id {payment_id} not found")

    db.delete(db_payment)
    db.commit()
    return True


def mark_expense_paid(db: Session, expense_id: int, user_id: int, today: Optional[date] = None) -> PaymentDB:
    """
    Pay off whatever remains of an expense in one payment dated today.

    Only expenses in the current month's budget can be marked paid.
    """
    today = today or date.today()
    db_expense = require_db_expense(db, expense_id, user_id)

    if db_expense.monthly_budget.month_year != current_month_year(today):
        raise ValueError("Only expenses in the current month can be marked as paid")

    remaining = db_expense.remaining
    if remaining <= 0:
        raise ValueError("Expense is already paid")

    payment = add_payment(db, expense_id, user_id, PaymentCreate(
        amount=remaining,
        spent_on=today,
        notes="Marked as paid",
    ))
    logger.info(f"Marked expense {expense_id} as paid ({remaining}) for user {user_id}")
    return payment
