from fastapi import APIRouter, Depends, HTTPException, Path, Response, status
from sqlalchemy.orm import Session
from typing import List
from typing_extensions import Annotated
from datetime import date
from decimal import Decimal

from monthly_ledger.crud import crud_budget, crud_expense, crud_income_event
from monthly_ledger.models import budget as budget_models
from monthly_ledger.models import expense as expense_models
from monthly_ledger.models import income_event as income_event_models
from monthly_ledger.db.core import MonthlyBudgetDB, get_db, NotFoundError
from monthly_ledger.routers.dependencies import get_current_user_id
from monthly_ledger.services import budget_aggregator, materializer, rollover
from monthly_ledger.services.occurrences import MONTH_YEAR_PATTERN, current_month_year, next_month_year

router = APIRouter(
    prefix="/budgets",
    tags=["budgets"],
)

MonthYearPath = Annotated[str, Path(pattern=MONTH_YEAR_PATTERN, description="Month in YYYY-MM form")]


def _budget_detail(db: Session, budget: MonthlyBudgetDB) -> budget_models.BudgetDetail:
    expenses = sorted(budget.expenses, key=lambda e: (e.expected_on or date.max, e.id))
    return budget_models.BudgetDetail(
        budget=budget_models.MonthlyBudgetResponse.model_validate(budget),
        summary=budget_aggregator.summarize_budget(db, budget),
        expenses=[expense_models.ExpenseResponse.model_validate(e) for e in expenses],
    )


def _materialization_failed() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Could not bring the month up to date with your templates",
    )


@router.get("/", response_model=List[budget_models.MonthlyBudgetResponse])
def read_budgets(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Retrieve all monthly budgets for the current user, newest month first.
    """
    return crud_budget.read_db_budgets(db=db, user_id=user_id, skip=skip, limit=limit)

@router.post("/current", response_model=budget_models.BudgetDetail)
def open_current_budget(
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Open the current month: creates its budget on first use and fills in any
    template expenses and income events that are still missing.
    """
    month_year = current_month_year()
    try:
        rollover.ensure_current_budget(db=db, user_id=user_id)
        materializer.materialize(db=db, user_id=user_id, month_year=month_year)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except materializer.MaterializationError:
        raise _materialization_failed()

    return _budget_detail(db, crud_budget.require_budget_by_month(db, user_id, month_year))

@router.post("/next", response_model=budget_models.RolloverResponse)
def create_next_month_budget(
    response: Response,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Create next month's budget. Answers 201 when it was created and 200 with
    ``created: false`` when it already existed.
    """
    try:
        budget = rollover.create_next_month_budget(db=db, user_id=user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except materializer.MaterializationError:
        raise _materialization_failed()

    month_year = next_month_year(current_month_year())
    if budget is None:
        existing = crud_budget.read_budget_by_month(db, user_id, month_year)
        return budget_models.RolloverResponse(
            created=False,
            month_year=month_year,
            budget=budget_models.MonthlyBudgetResponse.model_validate(existing) if existing else None,
            expense_count=len(existing.expenses) if existing else 0,
        )

    response.status_code = status.HTTP_201_CREATED
    return budget_models.RolloverResponse(
        created=True,
        month_year=month_year,
        budget=budget_models.MonthlyBudgetResponse.model_validate(budget),
        expense_count=len(budget.expenses),
    )

@router.get("/{month_year}", response_model=budget_models.BudgetDetail)
def read_budget(
    month_year: MonthYearPath,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Retrieve a month's budget with its expenses and derived totals.
    """
    try:
        budget = crud_budget.require_budget_by_month(db=db, user_id=user_id, month_year=month_year)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _budget_detail(db, budget)

@router.get("/{month_year}/summary", response_model=budget_models.BudgetSummary)
def read_budget_summary(
    month_year: MonthYearPath,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    try:
        budget = crud_budget.require_budget_by_month(db=db, user_id=user_id, month_year=month_year)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return budget_aggregator.summarize_budget(db, budget)

@router.put("/{month_year}", response_model=budget_models.MonthlyBudgetResponse)
def update_budget(
    budget: budget_models.MonthlyBudgetUpdate,
    month_year: MonthYearPath,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Update a budget's flex fund or bank balance.
    """
    try:
        return crud_budget.update_db_budget(db=db, user_id=user_id, month_year=month_year, budget_updates=budget)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.delete("/{month_year}", status_code=status.HTTP_204_NO_CONTENT)
def delete_budget(
    month_year: MonthYearPath,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Delete a budget and all of its expenses and payments.
    """
    try:
        crud_budget.delete_db_budget(db=db, user_id=user_id, month_year=month_year)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.post("/{month_year}/materialize", response_model=budget_models.MaterializationResponse)
def materialize_month(
    month_year: MonthYearPath,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Create any missing template expenses and income events for a month.
    Running it again creates nothing new.
    """
    try:
        result = materializer.materialize(db=db, user_id=user_id, month_year=month_year)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except materializer.MaterializationError:
        raise _materialization_failed()

    return budget_models.MaterializationResponse(
        month_year=result.month_year,
        expenses_created=result.expenses_created,
        income_events_created=result.income_events_created,
    )

@router.post("/{month_year}/expenses", response_model=expense_models.ExpenseResponse, status_code=status.HTTP_201_CREATED)
def create_expense(
    expense: expense_models.ExpenseCreate,
    month_year: MonthYearPath,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Add a one-off expense (or a manual copy of a template) to a month.
    """
    try:
        return crud_expense.create_db_expense(db=db, user_id=user_id, month_year=month_year, expense_data=expense)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.get("/{month_year}/income", response_model=income_event_models.IncomeMonthResponse)
def read_month_income(
    month_year: MonthYearPath,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Income events counting toward a month, including deferrals from the month before.
    """
    try:
        events = crud_income_event.list_income_events_for_month(db=db, user_id=user_id, month_year=month_year)
        budget = crud_budget.read_budget_by_month(db=db, user_id=user_id, month_year=month_year)
        expected = rollover.expected_income(db=db, user_id=user_id, month_year=month_year)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return income_event_models.IncomeMonthResponse(
        month_year=month_year,
        total_actual_income=budget.total_actual_income if budget else sum(
            (event.actual_amount for event in events), Decimal("0.00")
        ),
        expected_income=expected,
        events=[income_event_models.IncomeEventResponse.model_validate(event) for event in events],
    )
