from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime, date
from decimal import Decimal


# ===== EXPENSE & PAYMENT PYDANTIC MODELS =====

class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, description="Amount paid")
    spent_on: date = Field(..., description="Date of the payment")
    notes: Optional[str] = Field(None, description="Free-text notes")

    @field_validator('amount')
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        return round(v, 2)


class PaymentResponse(BaseModel):
    id: int
    expense_id: int
    amount: Decimal
    spent_on: date
    notes: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class ExpenseCreate(BaseModel):
    """One-off expense (no template) or a manual copy of a template"""
    expense_template_id: Optional[int] = Field(None, description="Template this expense comes from")
    name: Optional[str] = Field(None, max_length=255, description="Display name; required for one-off expenses")
    allotted_amount: Optional[Decimal] = Field(None, ge=0, description="Amount allotted this month")
    expected_on: Optional[date] = Field(None, description="Date the expense is due")
    notes: Optional[str] = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v

    @field_validator('allotted_amount')
    @classmethod
    def validate_allotted_amount(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return round(v, 2) if v is not None else v


class ExpenseUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    allotted_amount: Optional[Decimal] = Field(None, ge=0)
    expected_on: Optional[date] = None
    notes: Optional[str] = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v

    @field_validator('allotted_amount')
    @classmethod
    def validate_allotted_amount(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return round(v, 2) if v is not None else v


class ExpenseResponse(BaseModel):
    id: int
    monthly_budget_id: int
    expense_template_id: Optional[int]
    name: str
    allotted_amount: Decimal
    expected_on: Optional[date]
    occurrence_on: Optional[date]
    notes: Optional[str]
    spent_amount: Decimal
    remaining: Decimal
    available: Decimal
    spent_percentage: float
    is_paid: bool
    over_budget: bool
    payments: List[PaymentResponse] = []

    class Config:
        from_attributes = True
