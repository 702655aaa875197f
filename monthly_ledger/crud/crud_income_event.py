"""
Income event commands.

Every change is committed first; the affected budgets' total_actual_income
is refreshed afterwards (see services.income_totals).
"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import List, Optional
from datetime import datetime

from monthly_ledger.db.core import IncomeEventDB, UserDB, NotFoundError
from monthly_ledger.models.income_event import IncomeEventCreate, IncomeEventUpdate
from monthly_ledger.services.income_totals import affected_months, counted_income_filter, refresh_income_totals
from monthly_ledger.services.occurrences import month_year_for, parse_month_year
from monthly_ledger.logging_config import get_logger

logger = get_logger(__name__)


def read_db_income_event(db: Session, event_id: int, user_id: int) -> Optional[IncomeEventDB]:
    return db.query(IncomeEventDB).filter(
        IncomeEventDB.id == event_id,
        IncomeEventDB.user_id == user_id
    ).first()


def require_db_income_event(db: Session, event_id: int, user_id: int) -> IncomeEventDB:
    db_event = read_db_income_event(db, event_id, user_id)
    if not db_event:
        raise NotFoundError(f"Income event with id {event_id} not found")
    return db_event


def list_income_events_for_month(db: Session, user_id: int, month_year: str) -> List[IncomeEventDB]:
    """Events counting toward a month, including those deferred from the previous one"""
    parse_month_year(month_year)
    return db.query(IncomeEventDB).filter(
        counted_income_filter(user_id, month_year)
    ).order_by(IncomeEventDB.received_on, IncomeEventDB.id).all()


def create_one_off_income_event(db: Session, user_id: int, event_data: IncomeEventCreate) -> IncomeEventDB:
    """Record income that does not come from a template"""

    user = db.query(UserDB).filter(UserDB.db_id == user_id).first()
    if not user:
        raise NotFoundError(f"User with id {user_id} not found")

    db_event = IncomeEventDB(
        user_id=user_id,
        income_template_id=None,
        custom_label=event_data.custom_label,
        month_year=month_year_for(event_data.received_on),
        received_on=event_data.received_on,
        actual_amount=event_data.actual_amount,
        apply_to_next_month=False,
        notes=event_data.notes,
        created_at=datetime.utcnow(),
        updated_at=datetime.utcnow()
    )

    try:
        db.add(db_event)
        db.commit()
        db.refresh(db_event)
    except IntegrityError:
        db.rollback()
        raise ValueError("Income event creation failed due to database constraint")

    logger.info(f"Recorded income '{db_event.custom_label}' ({db_event.actual_amount}) for user {user_id}")
    refresh_income_totals(db, user_id, affected_months(db_event.month_year))
    db.refresh(db_event)
    return db_event


def update_db_income_event(db: Session, event_id: int, user_id: int, event_updates: IncomeEventUpdate) -> IncomeEventDB:
    """
    Update an income event. Moving ``received_on`` into another month moves
    the event with it; both the old and new months get their totals refreshed.
    A template-backed event keeps its ``occurrence_on``.
    """

    db_event = require_db_income_event(db, event_id, user_id)
    old_month = db_event.month_year

    update_data = event_updates.model_dump(exclude_unset=True)

    for field in ('received_on', 'actual_amount', 'apply_to_next_month'):
        if field in update_data and update_data[field] is None:
            raise ValueError(f"{field} cannot be cleared")

    if 'custom_label' in update_data and db_event.is_one_off and not update_data['custom_label']:
        raise ValueError("custom_label is required for income without a template")

    for field, value in update_data.items():
        setattr(db_event, field, value)

    db_event.month_year = month_year_for(db_event.received_on)
    db_event.updated_at = datetime.utcnow()

    try:
        db.commit()
        db.refresh(db_event)
    except IntegrityError:
        db.rollback()
        raise ValueError("Income event update failed due to database constraint")

    refresh_income_totals(db, user_id, affected_months(old_month) | affected_months(db_event.month_year))
    db.refresh(db_event)
    return db_event


def toggle_income_event_deferral(db: Session, event_id: int, user_id: int) -> IncomeEventDB:
    """Move an event's amount to the following month's budget, or back"""

    db_event = require_db_income_event(db, event_id, user_id)
    db_event.apply_to_next_month = not db_event.apply_to_next_month
    db_event.updated_at = datetime.utcnow()

    db.commit()
    db.refresh(db_event)

    refresh_income_totals(db, user_id, affected_months(db_event.month_year))
    db.refresh(db_event)
    return db_event


def mark_income_event_received(db: Session, event_id: int, user_id: int) -> IncomeEventDB:
    """Set the received amount to the template's estimate"""

    db_event = require_db_income_event(db, event_id, user_id)

    template = db_event.income_template
    if template is None:
        raise ValueError("Only income from a template can be marked as received")
    if not template.estimated_amount or template.estimated_amount <= 0:
        raise ValueError(f"Income template '{template.name}' has no estimated amount")

    db_event.actual_amount = template.estimated_amount
    db_event.updated_at = datetime.utcnow()

    db.commit()
    db.refresh(db_event)

    refresh_income_totals(db, user_id, affected_months(db_event.month_year))
    db.refresh(db_event)
    return db_event


def delete_db_income_event(db: Session, event_id: int, user_id: int) -> bool:
    """Delete one-off income; template income is zeroed instead of deleted"""

    db_event = require_db_income_event(db, event_id, user_id)
    if not db_event.is_one_off:
        raise ValueError("Income from a template cannot be deleted; set the amount to 0 instead")

    month_year = db_event.month_year
    db.delete(db_event)
    db.commit()

    logger.info(f"Deleted income event {event_id} for user {user_id}")
    refresh_income_totals(db, user_id, affected_months(month_year))
    return True
