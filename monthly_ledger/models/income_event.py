from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime, date
from decimal import Decimal


# ===== INCOME EVENT PYDANTIC MODELS =====

class IncomeEventCreate(BaseModel):
    """A one-off income event; template-backed events come from materialization."""
    custom_label: str = Field(..., min_length=1, max_length=255, description="Label for the income")
    received_on: date = Field(..., description="Date the money was received")
    actual_amount: Decimal = Field(..., ge=0, description="Amount received")
    notes: Optional[str] = None

    @field_validator('custom_label')
    @classmethod
    def validate_custom_label(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('custom_label must not be blank')
        return v

    @field_validator('actual_amount')
    @classmethod
    def validate_actual_amount(cls, v: Decimal) -> Decimal:
        return round(v, 2)


class IncomeEventUpdate(BaseModel):
    custom_label: Optional[str] = Field(None, max_length=255)
    received_on: Optional[date] = None
    actual_amount: Optional[Decimal] = Field(None, ge=0)
    apply_to_next_month: Optional[bool] = None
    notes: Optional[str] = None

    @field_validator('custom_label')
    @classmethod
    def validate_custom_label(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v

    @field_validator('actual_amount')
    @classmethod
    def validate_actual_amount(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return round(v, 2) if v is not None else v


class IncomeEventResponse(BaseModel):
    id: int
    income_template_id: Optional[int]
    custom_label: Optional[str]
    display_name: str
    month_year: str
    received_on: date
    occurrence_on: Optional[date]
    actual_amount: Decimal
    apply_to_next_month: bool
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class IncomeMonthResponse(BaseModel):
    """Income events that count toward a month, with its totals"""
    month_year: str
    total_actual_income: Decimal
    expected_income: Decimal
    events: List[IncomeEventResponse]
