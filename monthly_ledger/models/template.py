from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing_extensions import Self

from monthly_ledger.services.occurrences import normalize_frequency


# ===== TEMPLATE PYDANTIC MODELS =====

class FrequencyEnum(str, Enum):
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    YEARLY = "yearly"


class TemplateStatusEnum(str, Enum):
    ACTIVE = "ACTIVE"
    DELETED = "DELETED"


def _clean_frequency(v):
    if v is None:
        return v
    return normalize_frequency(v)


def _round_amount(v: Optional[Decimal]) -> Optional[Decimal]:
    return round(v, 2) if v is not None else v


class TemplateBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Template name")
    frequency: FrequencyEnum = Field(default=FrequencyEnum.MONTHLY, description="How often the template fires")
    due_date: Optional[date] = Field(None, description="Anchor date for occurrences")
    auto_create: bool = Field(default=False, description="Materialize into monthly ledgers automatically")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('name must not be blank')
        return v

    @field_validator('frequency', mode='before')
    @classmethod
    def validate_frequency(cls, v):
        return _clean_frequency(v)

    @model_validator(mode="after")
    def check_anchor_for_auto_create(self) -> Self:
        if self.auto_create and self.due_date is None:
            raise ValueError("due_date is required when auto_create is enabled")
        return self


class ExpenseTemplateCreate(TemplateBase):
    default_amount: Optional[Decimal] = Field(None, ge=0, description="Default allotted amount")

    @field_validator('default_amount')
    @classmethod
    def validate_default_amount(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _round_amount(v)


class IncomeTemplateCreate(TemplateBase):
    estimated_amount: Optional[Decimal] = Field(None, ge=0, description="Expected amount per occurrence")
    last_payment_to_next_month: bool = Field(default=False, description="Defer the month's final payment")

    @field_validator('estimated_amount')
    @classmethod
    def validate_estimated_amount(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _round_amount(v)

    @field_validator('frequency')
    @classmethod
    def validate_income_frequency(cls, v: FrequencyEnum) -> FrequencyEnum:
        if v == FrequencyEnum.YEARLY:
            raise ValueError('income templates support monthly, weekly or bi_weekly frequencies')
        return v


class TemplateUpdate(BaseModel):
    """Update template - all fields optional"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    frequency: Optional[FrequencyEnum] = None
    due_date: Optional[date] = None
    auto_create: Optional[bool] = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v

    @field_validator('frequency', mode='before')
    @classmethod
    def validate_frequency(cls, v):
        return _clean_frequency(v)


class ExpenseTemplateUpdate(TemplateUpdate):
    default_amount: Optional[Decimal] = Field(None, ge=0)

    @field_validator('default_amount')
    @classmethod
    def validate_default_amount(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _round_amount(v)


class IncomeTemplateUpdate(TemplateUpdate):
    estimated_amount: Optional[Decimal] = Field(None, ge=0)
    last_payment_to_next_month: Optional[bool] = None

    @field_validator('estimated_amount')
    @classmethod
    def validate_estimated_amount(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _round_amount(v)

    @field_validator('frequency')
    @classmethod
    def validate_income_frequency(cls, v: Optional[FrequencyEnum]) -> Optional[FrequencyEnum]:
        if v == FrequencyEnum.YEARLY:
            raise ValueError('income templates support monthly, weekly or bi_weekly frequencies')
        return v


class TemplateResponse(BaseModel):
    id: int
    name: str
    frequency: FrequencyEnum
    due_date: Optional[date]
    auto_create: bool
    status: TemplateStatusEnum
    deleted_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    @field_validator('frequency', 'status', mode='before')
    @classmethod
    def unwrap_enum(cls, v):
        return getattr(v, "value", v)

    class Config:
        from_attributes = True


class ExpenseTemplateResponse(TemplateResponse):
    default_amount: Optional[Decimal]


class IncomeTemplateResponse(TemplateResponse):
    estimated_amount: Optional[Decimal]
    last_payment_to_next_month: bool
