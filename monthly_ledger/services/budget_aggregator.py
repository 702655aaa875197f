"""
Budget Aggregator

Derived month totals for a MonthlyBudget. Everything here is recomputed from
the ledger on every call; the only stored aggregate, total_actual_income, is
read as-is (see services.income_totals).
"""
from sqlalchemy.orm import Session
from sqlalchemy import func
from decimal import Decimal
from typing import Optional

from monthly_ledger.crud import crud_budget
from monthly_ledger.db.core import ExpenseDB, MonthlyBudgetDB, PaymentDB
from monthly_ledger.models.budget import BudgetSummary
from monthly_ledger.services import rollover
from monthly_ledger.services.income_totals import carryover_from_previous_month
from monthly_ledger.services.occurrences import month_name

# "Close enough" when reconciling against the bank
BANK_MATCH_TOLERANCE = Decimal("50")


def _as_decimal(value) -> Decimal:
    return Decimal(str(value)) if value else Decimal("0.00")


def total_allotted(db: Session, budget: MonthlyBudgetDB) -> Decimal:
    result = db.query(func.coalesce(func.sum(ExpenseDB.allotted_amount), 0)).filter(
        ExpenseDB.monthly_budget_id == budget.id
    ).scalar()
    return _as_decimal(result)


def total_spent(db: Session, budget: MonthlyBudgetDB) -> Decimal:
    result = db.query(func.coalesce(func.sum(PaymentDB.amount), 0)).join(
        ExpenseDB, PaymentDB.expense_id == ExpenseDB.id
    ).filter(
        ExpenseDB.monthly_budget_id == budget.id
    ).scalar()
    return _as_decimal(result)


def remaining_to_assign(budget: MonthlyBudgetDB, allotted: Decimal) -> Decimal:
    """Income not yet allotted to an expense; negative when over-assigned"""
    return budget.total_actual_income - allotted


def unassigned(budget: MonthlyBudgetDB, allotted: Decimal) -> Decimal:
    return max(remaining_to_assign(budget, allotted), Decimal("0.00"))


def bank_difference(budget: MonthlyBudgetDB, spent: Decimal) -> Optional[Decimal]:
    if budget.bank_balance is None:
        return None
    return budget.bank_balance - (budget.total_actual_income - spent)


def bank_match(budget: MonthlyBudgetDB, spent: Decimal) -> bool:
    difference = bank_difference(budget, spent)
    if difference is None:
        return True
    return abs(difference) <= BANK_MATCH_TOLERANCE


def summarize_budget(db: Session, budget: MonthlyBudgetDB) -> BudgetSummary:
    """
    Bundle every derived total of a budget into a BudgetSummary.

    ``available_income`` is the month's actual income (carryover included)
    plus the flex fund; ``remaining`` is what is left of it after payments.
    """
    allotted = total_allotted(db, budget)
    spent = total_spent(db, budget)
    available_income = budget.total_actual_income + budget.flex_fund
    previous_month, next_month = crud_budget.adjacent_month_years(db, budget.user_id, budget.month_year)
    expense_count = db.query(func.count(ExpenseDB.id)).filter(
        ExpenseDB.monthly_budget_id == budget.id
    ).scalar()

    return BudgetSummary(
        month_year=budget.month_year,
        month_name=month_name(budget.month_year),
        total_actual_income=budget.total_actual_income,
        expected_income=rollover.expected_income(db, budget.user_id, budget.month_year),
        carryover_from_previous_month=carryover_from_previous_month(db, budget.user_id, budget.month_year),
        available_income=available_income,
        flex_fund=budget.flex_fund,
        total_allotted=allotted,
        total_spent=spent,
        remaining=available_income - spent,
        remaining_to_assign=remaining_to_assign(budget, allotted),
        unassigned=unassigned(budget, allotted),
        bank_balance=budget.bank_balance,
        bank_difference=bank_difference(budget, spent),
        bank_match=bank_match(budget, spent),
        expense_count=expense_count or 0,
        previous_month=previous_month,
        next_month=next_month,
    )
