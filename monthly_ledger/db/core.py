from typing import List, Optional
from sqlalchemy import create_engine, event, ForeignKey, Index, UniqueConstraint, Boolean, String, Text, DECIMAL, DateTime, Date, text
from sqlalchemy.types import Enum
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Mapped, relationship, mapped_column
from datetime import datetime, date
from uuid import UUID
from decimal import Decimal
import enum

from monthly_ledger import config
from monthly_ledger.services.occurrences import template_occurrences


DATABASE_URL = config.DATABASE_URL


class NotFoundError(Exception):
    pass


class Base(DeclarativeBase):
    pass


class Frequency(str, enum.Enum):
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    YEARLY = "yearly"


class TemplateStatus(enum.Enum):
    ACTIVE = "ACTIVE"
    DELETED = "DELETED"


class UserDB(Base):
    __tablename__ = "users"

    __table_args__ = (
        UniqueConstraint("email", name="uq_user_email"),
        UniqueConstraint("username", name="uq_user_username"),
    )

    # Core User Identification
    db_id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    id: Mapped[UUID] = mapped_column(unique=True, nullable=False)

    email: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(100))

    # Audit Trail
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    monthly_budgets = relationship("MonthlyBudgetDB", back_populates="user", cascade="all, delete-orphan")
    expense_templates = relationship("ExpenseTemplateDB", back_populates="user", cascade="all, delete-orphan")
    income_templates = relationship("IncomeTemplateDB", back_populates="user", cascade="all, delete-orphan")
    income_events = relationship("IncomeEventDB", back_populates="user", cascade="all, delete-orphan")


class RecurringTemplateMixin:
    """
    Columns and behaviour shared by income and expense templates.

    Templates are never hard-deleted: ``deleted_at`` marks them as removed so
    already-materialized ledger rows keep a valid reference.
    """
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    frequency: Mapped[Frequency] = mapped_column(Enum(Frequency), default=Frequency.MONTHLY, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date)  # occurrence anchor
    auto_create: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Audit Trail
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def status(self) -> TemplateStatus:
        return TemplateStatus.ACTIVE if self.deleted_at is None else TemplateStatus.DELETED

    @property
    def is_active(self) -> bool:
        return self.status == TemplateStatus.ACTIVE

    def soft_delete(self, at: Optional[datetime] = None) -> None:
        self.deleted_at = at or datetime.utcnow()

    def restore(self) -> None:
        self.deleted_at = None

    def occurrences(self, month_year: str) -> List[date]:
        return template_occurrences(self, month_year)


class ExpenseTemplateDB(RecurringTemplateMixin, Base):
    __tablename__ = "expense_templates"

    __table_args__ = (
        # Names only need to be unique among a user's active templates
        Index(
            "uq_expense_template_active_name", "user_id", "name",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
        Index("idx_expense_templates_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.db_id"))

    default_amount: Mapped[Optional[Decimal]] = mapped_column(DECIMAL(15, 2))

    user = relationship("UserDB", back_populates="expense_templates")
    expenses = relationship("ExpenseDB", back_populates="expense_template")


class IncomeTemplateDB(RecurringTemplateMixin, Base):
    __tablename__ = "income_templates"

    __table_args__ = (
        Index(
            "uq_income_template_active_name", "user_id", "name",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
        Index("idx_income_templates_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.db_id"))

    estimated_amount: Mapped[Optional[Decimal]] = mapped_column(DECIMAL(15, 2))
    # The month's final payment lands in the next month's budget
    last_payment_to_next_month: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    user = relationship("UserDB", back_populates="income_templates")
    income_events = relationship("IncomeEventDB", back_populates="income_template")

    @property
    def default_amount(self) -> Optional[Decimal]:
        return self.estimated_amount


class MonthlyBudgetDB(Base):
    __tablename__ = "monthly_budgets"

    __table_args__ = (
        UniqueConstraint("user_id", "month_year", name="uq_user_month_year"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.db_id"))

    month_year: Mapped[str] = mapped_column(String(7), nullable=False)  # YYYY-MM
    # Written only by services.income_totals.recalculate_total_actual_income
    total_actual_income: Mapped[Decimal] = mapped_column(DECIMAL(15, 2), default=Decimal("0.00"), nullable=False)
    flex_fund: Mapped[Decimal] = mapped_column(DECIMAL(15, 2), default=Decimal("0.00"), nullable=False)
    bank_balance: Mapped[Optional[Decimal]] = mapped_column(DECIMAL(15, 2))

    # Audit Trail
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("UserDB", back_populates="monthly_budgets")
    expenses = relationship("ExpenseDB", back_populates="monthly_budget", cascade="all, delete-orphan")


class ExpenseDB(Base):
    __tablename__ = "expenses"

    __table_args__ = (
        # Weekly and bi-weekly templates get one row per occurrence
        UniqueConstraint("monthly_budget_id", "expense_template_id", "occurrence_on", name="uq_budget_template_occurrence"),
        Index("idx_expenses_budget", "monthly_budget_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    monthly_budget_id: Mapped[int] = mapped_column(ForeignKey("monthly_budgets.id", ondelete="CASCADE"))
    expense_template_id: Mapped[Optional[int]] = mapped_column(ForeignKey("expense_templates.id"))

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    allotted_amount: Mapped[Decimal] = mapped_column(DECIMAL(15, 2), default=Decimal("0.00"), nullable=False)
    expected_on: Mapped[Optional[date]] = mapped_column(Date)
    # Template occurrence this row stands for; fixed at creation, null for one-offs
    occurrence_on: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Audit Trail
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    monthly_budget = relationship("MonthlyBudgetDB", back_populates="expenses")
    expense_template = relationship("ExpenseTemplateDB", back_populates="expenses")
    payments = relationship("PaymentDB", back_populates="expense", cascade="all, delete-orphan", order_by="PaymentDB.spent_on")

    @property
    def is_one_off(self) -> bool:
        return self.expense_template_id is None

    @property
    def spent_amount(self) -> Decimal:
        # Always derived from payment history, never stored
        return sum((payment.amount for payment in self.payments), Decimal("0.00"))

    @property
    def remaining(self) -> Decimal:
        return self.allotted_amount - self.spent_amount

    @property
    def available(self) -> Decimal:
        return max(self.remaining, Decimal("0.00"))

    @property
    def spent_percentage(self) -> float:
        if not self.allotted_amount or self.allotted_amount <= 0:
            return 0.0
        return min(round(float(self.spent_amount / self.allotted_amount * 100), 1), 100.0)

    @property
    def is_paid(self) -> bool:
        return self.spent_amount >= self.allotted_amount

    @property
    def over_budget(self) -> bool:
        return self.spent_amount > self.allotted_amount


class IncomeEventDB(Base):
    __tablename__ = "income_events"

    __table_args__ = (
        UniqueConstraint("user_id", "income_template_id", "occurrence_on", name="uq_user_template_occurrence"),
        Index("idx_income_events_user_month", "user_id", "month_year"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.db_id"))
    income_template_id: Mapped[Optional[int]] = mapped_column(ForeignKey("income_templates.id"))

    custom_label: Mapped[Optional[str]] = mapped_column(String(255))
    month_year: Mapped[str] = mapped_column(String(7), nullable=False)  # YYYY-MM of received_on
    received_on: Mapped[date] = mapped_column(Date, nullable=False)
    # Template occurrence this row stands for; fixed at creation, null for one-offs
    occurrence_on: Mapped[Optional[date]] = mapped_column(Date)
    actual_amount: Mapped[Decimal] = mapped_column(DECIMAL(15, 2), default=Decimal("0.00"), nullable=False)
    apply_to_next_month: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Audit Trail
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("UserDB", back_populates="income_events")
    income_template = relationship("IncomeTemplateDB", back_populates="income_events")

    @property
    def is_one_off(self) -> bool:
        return self.income_template_id is None

    @property
    def display_name(self) -> str:
        if self.income_template is not None:
            return self.income_template.name
        return self.custom_label or "Income"


class PaymentDB(Base):
    __tablename__ = "payments"

    __table_args__ = (
        Index("idx_payments_expense", "expense_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    expense_id: Mapped[int] = mapped_column(ForeignKey("expenses.id", ondelete="CASCADE"))

    amount: Mapped[Decimal] = mapped_column(DECIMAL(15, 2), nullable=False)
    spent_on: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    expense = relationship("ExpenseDB", back_populates="payments")


def enable_sqlite_savepoints(sqlite_engine) -> None:
    """
    Let pysqlite honour SAVEPOINT: the driver's implicit transaction handling
    is switched off and SQLAlchemy emits BEGIN itself.
    """
    @event.listens_for(sqlite_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(sqlite_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


engine = create_engine(DATABASE_URL, echo=config.SQL_ECHO)
if engine.dialect.name == "sqlite":
    enable_sqlite_savepoints(engine)
session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None) -> None:
    """Create all tables on the given engine (defaults to the configured one)."""
    Base.metadata.create_all(bind=bind or engine)


# Dependency to get the database session
def get_db():
    database = session_local()
    try:
        yield database
    finally:
        database.close()
