from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from monthly_ledger.crud import crud_budget, crud_expense, crud_income_event, crud_template
from monthly_ledger.db.core import ExpenseDB, ExpenseTemplateDB, Frequency, IncomeEventDB, MonthlyBudgetDB
from monthly_ledger.models.expense import ExpenseUpdate
from monthly_ledger.models.income_event import IncomeEventUpdate
from monthly_ledger.models.template import ExpenseTemplateUpdate
from monthly_ledger.services import materializer


def _expenses(db, month_year):
    return db.query(ExpenseDB).join(MonthlyBudgetDB).filter(
        MonthlyBudgetDB.month_year == month_year
    ).order_by(ExpenseDB.expected_on, ExpenseDB.id).all()


def _income_events(db, month_year):
    return db.query(IncomeEventDB).filter(
        IncomeEventDB.month_year == month_year
    ).order_by(IncomeEventDB.received_on).all()


def test_materialize_creates_budget_and_expenses(db, user, make_expense_template):
    make_expense_template(name="Rent", due_date=date(2025, 1, 1), default_amount=Decimal("1200.00"))
    make_expense_template(name="Phone", due_date=date(2025, 1, 31), default_amount=Decimal("45.00"))

    result = materializer.materialize(db, user.db_id, "2025-04", today=date(2025, 4, 2))

    assert result.month_year == "2025-04"
    assert result.expenses_created == 2
    expenses = _expenses(db, "2025-04")
    assert [(e.name, e.allotted_amount, e.expected_on) for e in expenses] == [
        ("Rent", Decimal("1200.00"), date(2025, 4, 1)),
        ("Phone", Decimal("45.00"), date(2025, 4, 30)),
    ]
    assert all(e.monthly_budget_id == result.budget_id for e in expenses)


def test_materialize_twice_is_idempotent(db, user, make_expense_template, make_income_template):
    make_expense_template(name="Groceries", frequency=Frequency.WEEKLY, due_date=date(2025, 1, 3),
                          default_amount=Decimal("100.00"))
    make_income_template(frequency=Frequency.BI_WEEKLY, due_date=date(2025, 1, 3))

    first = materializer.materialize(db, user.db_id, "2025-01", today=date(2025, 1, 20))
    expenses_after_first = [(e.id, e.expected_on) for e in _expenses(db, "2025-01")]
    events_after_first = [(e.id, e.received_on) for e in _income_events(db, "2025-01")]

    second = materializer.materialize(db, user.db_id, "2025-01", today=date(2025, 1, 20))

    assert first.expenses_created == 5
    assert first.income_events_created == 3
    assert second.expenses_created == 0
    assert second.income_events_created == 0
    assert second.budget_id == first.budget_id
    assert [(e.id, e.expected_on) for e in _expenses(db, "2025-01")] == expenses_after_first
    assert [(e.id, e.received_on) for e in _income_events(db, "2025-01")] == events_after_first
    assert db.query(MonthlyBudgetDB).count() == 1


def test_weekly_template_gets_one_expense_per_occurrence(db, user, make_expense_template):
    make_expense_template(name="Groceries", frequency=Frequency.WEEKLY, due_date=date(2025, 3, 1),
                          default_amount=Decimal("80.00"))

    materializer.materialize(db, user.db_id, "2025-03", today=date(2025, 3, 1))

    assert [e.expected_on for e in _expenses(db, "2025-03")] == [
        date(2025, 3, 1), date(2025, 3, 8), date(2025, 3, 15), date(2025, 3, 22), date(2025, 3, 29),
    ]


def test_income_received_by_today_uses_estimate_and_future_income_is_zero(db, user, make_income_template):
    make_income_template(frequency=Frequency.BI_WEEKLY, due_date=date(2025, 12, 1),
                         estimated_amount=Decimal("2000.00"))

    materializer.materialize(db, user.db_id, "2025-12", today=date(2025, 12, 15))

    events = _income_events(db, "2025-12")
    assert [(e.received_on, e.actual_amount) for e in events] == [
        (date(2025, 12, 1), Decimal("2000.00")),
        (date(2025, 12, 15), Decimal("2000.00")),
        (date(2025, 12, 29), Decimal("0.00")),
    ]
    budget = crud_budget.read_budget_by_month(db, user.db_id, "2025-12")
    assert budget.total_actual_income == Decimal("4000.00")


def test_last_payment_is_deferred_to_next_month(db, user, make_income_template):
    make_income_template(frequency=Frequency.BI_WEEKLY, due_date=date(2025, 12, 1),
                         estimated_amount=Decimal("1500.00"), last_payment_to_next_month=True)

    materializer.materialize(db, user.db_id, "2025-12", today=date(2025, 12, 31))

    events = _income_events(db, "2025-12")
    assert [e.apply_to_next_month for e in events] == [False, False, True]

    december = crud_budget.read_budget_by_month(db, user.db_id, "2025-12")
    assert december.total_actual_income == Decimal("3000.00")

    # The deferred paycheck shows up once January's budget exists
    january = crud_budget.create_db_budget(db, user.db_id, "2026-01")
    assert january.total_actual_income == Decimal("1500.00")


def test_deleted_template_is_skipped_and_its_history_kept(db, user, make_expense_template):
    rent = make_expense_template(name="Rent", due_date=date(2025, 1, 1))
    make_expense_template(name="Gym", due_date=date(2025, 1, 5), default_amount=Decimal("30.00"))

    materializer.materialize(db, user.db_id, "2025-05", today=date(2025, 5, 1))
    before = [(e.id, e.name, e.allotted_amount) for e in _expenses(db, "2025-05")]

    crud_template.soft_delete_db_template(db, ExpenseTemplateDB, rent.id, user.db_id)
    result = materializer.materialize(db, user.db_id, "2025-06", today=date(2025, 5, 1))

    assert result.expenses_created == 1
    assert [e.name for e in _expenses(db, "2025-06")] == ["Gym"]
    assert [(e.id, e.name, e.allotted_amount) for e in _expenses(db, "2025-05")] == before
    assert _expenses(db, "2025-05")[0].expense_template_id == rent.id


def test_user_edits_survive_rematerialization(db, user, make_expense_template):
    make_expense_template(name="Rent", default_amount=Decimal("1200.00"))
    materializer.materialize(db, user.db_id, "2025-02", today=date(2025, 2, 1))

    expense = _expenses(db, "2025-02")[0]
    expense.allotted_amount = Decimal("0.00")
    db.commit()

    result = materializer.materialize(db, user.db_id, "2025-02", today=date(2025, 2, 1))

    assert result.expenses_created == 0
    assert [e.allotted_amount for e in _expenses(db, "2025-02")] == [Decimal("0.00")]


def test_moving_an_expense_date_does_not_recreate_its_occurrence(db, user, make_expense_template):
    make_expense_template(name="Rent", due_date=date(2025, 1, 1))
    materializer.materialize(db, user.db_id, "2025-02", today=date(2025, 2, 1))
    expense = _expenses(db, "2025-02")[0]

    crud_expense.update_db_expense(db, expense.id, user.db_id, ExpenseUpdate(expected_on=date(2025, 2, 3)))
    result = materializer.materialize(db, user.db_id, "2025-02", today=date(2025, 2, 5))

    assert result.expenses_created == 0
    expenses = _expenses(db, "2025-02")
    assert [(e.expected_on, e.occurrence_on) for e in expenses] == [(date(2025, 2, 3), date(2025, 2, 1))]


def test_moving_an_income_date_does_not_recreate_its_occurrence(db, user, make_income_template):
    make_income_template(frequency=Frequency.MONTHLY, due_date=date(2025, 1, 1), estimated_amount=Decimal("2000.00"))
    materializer.materialize(db, user.db_id, "2025-12", today=date(2025, 12, 1))
    paycheck = _income_events(db, "2025-12")[0]

    crud_income_event.update_db_income_event(db, paycheck.id, user.db_id, IncomeEventUpdate(received_on=date(2025, 12, 2)))
    result = materializer.materialize(db, user.db_id, "2025-12", today=date(2025, 12, 3))

    assert result.income_events_created == 0
    assert [(e.received_on, e.occurrence_on) for e in _income_events(db, "2025-12")] == [
        (date(2025, 12, 2), date(2025, 12, 1))
    ]
    budget = crud_budget.read_budget_by_month(db, user.db_id, "2025-12")
    db.refresh(budget)
    assert budget.total_actual_income == Decimal("2000.00")


def test_income_moved_to_next_month_is_not_recreated(db, user, make_income_template):
    make_income_template(frequency=Frequency.MONTHLY, due_date=date(2025, 1, 31), estimated_amount=Decimal("2000.00"))
    materializer.materialize(db, user.db_id, "2025-12", today=date(2025, 12, 31))
    paycheck = _income_events(db, "2025-12")[0]

    crud_income_event.update_db_income_event(db, paycheck.id, user.db_id, IncomeEventUpdate(received_on=date(2026, 1, 2)))
    result = materializer.materialize(db, user.db_id, "2025-12", today=date(2026, 1, 2))

    assert result.income_events_created == 0
    assert _income_events(db, "2025-12") == []
    assert [e.occurrence_on for e in _income_events(db, "2026-01")] == [date(2025, 12, 31)]


def test_template_amount_change_only_affects_new_months(db, user, make_expense_template):
    rent = make_expense_template(name="Rent", default_amount=Decimal("1200.00"))
    materializer.materialize(db, user.db_id, "2025-02", today=date(2025, 2, 1))

    crud_template.update_db_template(db, ExpenseTemplateDB, rent.id, user.db_id,
                                     ExpenseTemplateUpdate(default_amount=Decimal("1300.00")))
    materializer.materialize(db, user.db_id, "2025-02", today=date(2025, 2, 1))
    materializer.materialize(db, user.db_id, "2025-03", today=date(2025, 2, 1))

    assert _expenses(db, "2025-02")[0].allotted_amount == Decimal("1200.00")
    assert _expenses(db, "2025-03")[0].allotted_amount == Decimal("1300.00")


def test_manual_and_unanchored_templates_are_skipped(db, user, make_expense_template):
    make_expense_template(name="Occasional", auto_create=False)
    make_expense_template(name="Someday", due_date=None)

    result = materializer.materialize(db, user.db_id, "2025-02", today=date(2025, 2, 1))

    assert result.expenses_created == 0
    assert _expenses(db, "2025-02") == []


def test_template_without_amount_materializes_at_zero(db, user, make_expense_template):
    make_expense_template(name="Car Repair", default_amount=None)

    materializer.materialize(db, user.db_id, "2025-02", today=date(2025, 2, 1))

    assert _expenses(db, "2025-02")[0].allotted_amount == Decimal("0.00")


def test_duplicate_insert_is_treated_as_already_materialized(db, user, make_expense_template):
    rent = make_expense_template(name="Rent")
    result = materializer.materialize(db, user.db_id, "2025-02", today=date(2025, 2, 1))

    duplicate = ExpenseDB(
        monthly_budget_id=result.budget_id,
        expense_template_id=rent.id,
        name="Rent",
        allotted_amount=Decimal("1200.00"),
        expected_on=date(2025, 2, 1),
        occurrence_on=date(2025, 2, 1),
    )
    assert materializer._insert_once(db, duplicate) is False

    # The outer transaction is still usable after the rolled back savepoint
    other = ExpenseDB(
        monthly_budget_id=result.budget_id,
        expense_template_id=rent.id,
        name="Rent",
        allotted_amount=Decimal("1200.00"),
        expected_on=date(2025, 2, 2),
        occurrence_on=date(2025, 2, 2),
    )
    assert materializer._insert_once(db, other) is True
    db.commit()

    assert [e.expected_on for e in _expenses(db, "2025-02")] == [date(2025, 2, 1), date(2025, 2, 2)]


def test_failure_keeps_earlier_templates_and_raises(db, user, make_expense_template, monkeypatch):
    make_expense_template(name="Rent", due_date=date(2025, 1, 1))
    make_expense_template(name="Broken", due_date=date(2025, 1, 2))

    original = materializer._materialize_expense_template

    def flaky(session, budget, template):
        if template.name == "Broken":
            raise OperationalError("INSERT INTO expenses", {}, Exception("disk I/O error"))
        return original(session, budget, template)

    monkeypatch.setattr(materializer, "_materialize_expense_template", flaky)

    with pytest.raises(materializer.MaterializationError):
        materializer.materialize(db, user.db_id, "2025-02", today=date(2025, 2, 1))

    assert [e.name for e in _expenses(db, "2025-02")] == ["Rent"]


def test_materialize_rejects_malformed_month(db, user):
    with pytest.raises(ValueError):
        materializer.materialize(db, user.db_id, "2025-2")
