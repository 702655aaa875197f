from datetime import date
from decimal import Decimal

from monthly_ledger.crud import crud_budget, crud_expense
from monthly_ledger.db.core import ExpenseDB, IncomeEventDB, PaymentDB
from monthly_ledger.models.expense import PaymentCreate
from monthly_ledger.services import budget_aggregator
from monthly_ledger.services.income_totals import recalculate_total_actual_income


def _budget_with_income(db, user, month_year="2025-03", income=Decimal("5000.00")):
    budget = crud_budget.create_db_budget(db, user.db_id, month_year)
    db.add(IncomeEventDB(
        user_id=user.db_id,
        custom_label="Salary",
        month_year=month_year,
        received_on=date.fromisoformat(f"{month_year}-01"),
        actual_amount=income,
    ))
    db.commit()
    recalculate_total_actual_income(db, user.db_id, month_year)
    db.refresh(budget)
    return budget


def _add_expense(db, budget, name, allotted):
    expense = ExpenseDB(monthly_budget_id=budget.id, name=name, allotted_amount=Decimal(allotted))
    db.add(expense)
    db.commit()
    db.refresh(expense)
    return expense


def test_totals_for_allotted_expenses(db, user):
    budget = _budget_with_income(db, user)
    for name, allotted in [("Rent", "1200"), ("Food", "500"), ("Utilities", "300")]:
        _add_expense(db, budget, name, allotted)

    allotted = budget_aggregator.total_allotted(db, budget)

    assert budget.total_actual_income == Decimal("5000.00")
    assert allotted == Decimal("2000")
    assert budget_aggregator.remaining_to_assign(budget, allotted) == Decimal("3000")
    assert budget_aggregator.unassigned(budget, allotted) == Decimal("3000")


def test_over_assignment_goes_negative_but_unassigned_floors_at_zero(db, user):
    budget = _budget_with_income(db, user, income=Decimal("1000.00"))
    _add_expense(db, budget, "Rent", "1500")

    allotted = budget_aggregator.total_allotted(db, budget)

    assert budget_aggregator.remaining_to_assign(budget, allotted) == Decimal("-500")
    assert budget_aggregator.unassigned(budget, allotted) == Decimal("0.00")


def test_expense_payment_progress(db, user):
    budget = _budget_with_income(db, user)
    expense = _add_expense(db, budget, "Groceries", "100")

    for amount in ("40", "40"):
        crud_expense.add_payment(db, expense.id, user.db_id,
                                 PaymentCreate(amount=Decimal(amount), spent_on=date(2025, 3, 5)))
    db.refresh(expense)

    assert expense.spent_amount == Decimal("80")
    assert expense.remaining == Decimal("20")
    assert expense.available == Decimal("20")
    assert expense.spent_percentage == 80.0
    assert expense.is_paid is False

    crud_expense.add_payment(db, expense.id, user.db_id,
                             PaymentCreate(amount=Decimal("20"), spent_on=date(2025, 3, 6)))
    db.refresh(expense)

    assert expense.is_paid is True
    assert expense.over_budget is False
    assert budget_aggregator.total_spent(db, budget) == Decimal("100")


def test_overspent_expense(db, user):
    budget = _budget_with_income(db, user)
    expense = _add_expense(db, budget, "Dining", "50")
    db.add(PaymentDB(expense_id=expense.id, amount=Decimal("80"), spent_on=date(2025, 3, 2)))
    db.commit()
    db.refresh(expense)

    assert expense.remaining == Decimal("-30")
    assert expense.available == Decimal("0.00")
    assert expense.spent_percentage == 100.0
    assert expense.over_budget is True


def test_zero_allotment_has_zero_percentage(db, user):
    budget = _budget_with_income(db, user)
    expense = _add_expense(db, budget, "Placeholder", "0")

    assert expense.spent_percentage == 0.0
    assert expense.is_paid is True


def test_bank_match_without_balance(db, user):
    budget = _budget_with_income(db, user)

    assert budget_aggregator.bank_difference(budget, Decimal("0")) is None
    assert budget_aggregator.bank_match(budget, Decimal("0")) is True


def test_bank_match_tolerance(db, user):
    budget = _budget_with_income(db, user)
    spent = Decimal("1000.00")

    budget.bank_balance = Decimal("4050.00")
    assert budget_aggregator.bank_difference(budget, spent) == Decimal("50.00")
    assert budget_aggregator.bank_match(budget, spent) is True

    budget.bank_balance = Decimal("3949.99")
    assert budget_aggregator.bank_difference(budget, spent) == Decimal("-50.01")
    assert budget_aggregator.bank_match(budget, spent) is False


def test_summarize_budget(db, user, make_income_template):
    make_income_template(due_date=date(2025, 3, 7), estimated_amount=Decimal("2000.00"))
    crud_budget.create_db_budget(db, user.db_id, "2025-02")
    budget = _budget_with_income(db, user)
    budget.flex_fund = Decimal("250.00")
    budget.bank_balance = Decimal("4800.00")
    db.commit()

    rent = _add_expense(db, budget, "Rent", "1200")
    db.add(PaymentDB(expense_id=rent.id, amount=Decimal("1200"), spent_on=date(2025, 3, 1)))
    db.commit()

    summary = budget_aggregator.summarize_budget(db, budget)

    assert summary.month_name == "March 2025"
    assert summary.total_actual_income == Decimal("5000.00")
    # Bi-weekly from 2025-03-07: the 7th and the 21st
    assert summary.expected_income == Decimal("4000.00")
    assert summary.carryover_from_previous_month == Decimal("0.00")
    assert summary.available_income == Decimal("5250.00")
    assert summary.total_allotted == Decimal("1200")
    assert summary.total_spent == Decimal("1200")
    assert summary.remaining == Decimal("4050.00")
    assert summary.remaining_to_assign == Decimal("3800.00")
    assert summary.bank_difference == Decimal("1000.00")
    assert summary.bank_match is False
    assert summary.expense_count == 1
    assert summary.previous_month == "2025-02"
    assert summary.next_month is None
