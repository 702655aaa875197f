from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

from monthly_ledger.models.expense import ExpenseResponse


# ===== MONTHLY BUDGET PYDANTIC MODELS =====

class MonthlyBudgetUpdate(BaseModel):
    """User-editable budget fields; income totals are maintained by the engine."""
    flex_fund: Optional[Decimal] = Field(None, ge=0, description="Flex fund set aside this month")
    bank_balance: Optional[Decimal] = Field(None, description="Manually entered bank balance")

    @field_validator('flex_fund', 'bank_balance')
    @classmethod
    def validate_amounts(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return round(v, 2) if v is not None else v


class MonthlyBudgetResponse(BaseModel):
    id: int
    month_year: str
    total_actual_income: Decimal
    flex_fund: Decimal
    bank_balance: Optional[Decimal]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BudgetSummary(BaseModel):
    """Derived month totals, recomputed on every read"""
    month_year: str
    month_name: str
    total_actual_income: Decimal
    expected_income: Decimal
    carryover_from_previous_month: Decimal
    available_income: Decimal
    flex_fund: Decimal
    total_allotted: Decimal
    total_spent: Decimal
    remaining: Decimal
    remaining_to_assign: Decimal
    unassigned: Decimal
    bank_balance: Optional[Decimal] = None
    bank_difference: Optional[Decimal] = None
    bank_match: bool
    expense_count: int
    previous_month: Optional[str] = None
    next_month: Optional[str] = None


class BudgetDetail(BaseModel):
    budget: MonthlyBudgetResponse
    summary: BudgetSummary
    expenses: List[ExpenseResponse]


class RolloverResponse(BaseModel):
    """Outcome of a create-next-month request; created is False when it already existed."""
    created: bool
    month_year: str
    budget: Optional[MonthlyBudgetResponse] = None
    expense_count: int = 0


class MaterializationResponse(BaseModel):
    month_year: str
    expenses_created: int
    income_events_created: int
