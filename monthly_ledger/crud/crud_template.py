"""
Template Store

Income and expense templates share one set of operations; callers pass the
model class (``ExpenseTemplateDB`` or ``IncomeTemplateDB``) they work with.
Deleting a template only stamps ``deleted_at`` so existing ledger rows keep
their reference.
"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import Optional, List, Type, Union
from datetime import datetime

from monthly_ledger.db.core import ExpenseTemplateDB, IncomeTemplateDB, UserDB, Frequency, NotFoundError
from monthly_ledger.models.template import (
    ExpenseTemplateCreate,
    IncomeTemplateCreate,
    TemplateUpdate,
)
from monthly_ledger.logging_config import get_logger

logger = get_logger(__name__)

TemplateModel = Type[Union[ExpenseTemplateDB, IncomeTemplateDB]]
TemplateDB = Union[ExpenseTemplateDB, IncomeTemplateDB]


def _kind(model: TemplateModel) -> str:
    return "Income template" if model is IncomeTemplateDB else "Expense template"


def _ensure_name_available(db: Session, model: TemplateModel, user_id: int, name: str,
                           exclude_id: Optional[int] = None) -> None:
    query = db.query(model).filter(
        model.user_id == user_id,
        model.name == name,
        model.deleted_at.is_(None)
    )
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    if query.first():
        raise ValueError(f"{_kind(model)} with name '{name}' already exists")


# ===== DATABASE OPERATIONS =====

def create_db_template(db: Session, model: TemplateModel, user_id: int,
                       template_data: Union[ExpenseTemplateCreate, IncomeTemplateCreate]) -> TemplateDB:
    """Create a new recurring template"""

    user = db.query(UserDB).filter(UserDB.db_id == user_id).first()
    if not user:
        raise NotFoundError(f"User with id {user_id} not found")

    _ensure_name_available(db, model, user_id, template_data.name)

    data = template_data.model_dump()
    data['frequency'] = Frequency(getattr(data['frequency'], 'value', data['frequency']))

    db_template = model(
        user_id=user_id,
        created_at=datetime.utcnow(),
        updated_at=datetime.utcnow(),
        **data
    )

    try:
        db.add(db_template)
        db.commit()
        db.refresh(db_template)
        logger.info(f"Created {_kind(model).lower()} '{db_template.name}' ({db_template.id}) for user {user_id}")
        return db_template
    except IntegrityError:
        db.rollback()
        raise ValueError(f"{_kind(model)} creation failed due to database constraint")


def read_db_template(db: Session, model: TemplateModel, template_id: int, user_id: Optional[int] = None,
                     include_deleted: bool = False) -> Optional[TemplateDB]:
    """Read a template by ID; soft-deleted templates only when asked for"""

    query = db.query(model).filter(model.id == template_id)

    if user_id:
        query = query.filter(model.user_id == user_id)
    if not include_deleted:
        query = query.filter(model.deleted_at.is_(None))

    return query.first()


def require_db_template(db: Session, model: TemplateModel, template_id: int, user_id: int,
                        include_deleted: bool = False) -> TemplateDB:
    db_template = read_db_template(db, model, template_id, user_id, include_deleted=include_deleted)
    if not db_template:
        raise NotFoundError(f"{_kind(model)} with id {template_id} not found")
    return db_template


def read_db_templates(db: Session, model: TemplateModel, user_id: int,
                      include_deleted: bool = False, deleted_only: bool = False) -> List[TemplateDB]:
    """Read a user's templates ordered by name (active only by default)"""

    query = db.query(model).filter(model.user_id == user_id)

    if deleted_only:
        query = query.filter(model.deleted_at.isnot(None))
    elif not include_deleted:
        query = query.filter(model.deleted_at.is_(None))

    return query.order_by(model.name).all()


def read_materializable_templates(db: Session, model: TemplateModel, user_id: int) -> List[TemplateDB]:
    """Active templates with auto-create switched on"""
    return db.query(model).filter(
        model.user_id == user_id,
        model.deleted_at.is_(None),
        model.auto_create.is_(True)
    ).order_by(model.id).all()


def update_db_template(db: Session, model: TemplateModel, template_id: int, user_id: int,
                       template_updates: TemplateUpdate) -> TemplateDB:
    """
    Update an active template.

    Amount changes apply to future materialization only; instances already in
    a monthly ledger keep the amount they were created with.
    """

    db_template = require_db_template(db, model, template_id, user_id)

    update_data = template_updates.model_dump(exclude_unset=True)

    if 'name' in update_data:
        if not update_data['name']:
            raise ValueError("name cannot be blank")
        _ensure_name_available(db, model, user_id, update_data['name'], exclude_id=template_id)

    if 'frequency' in update_data:
        if update_data['frequency'] is None:
            raise ValueError("frequency cannot be cleared")
        update_data['frequency'] = Frequency(getattr(update_data['frequency'], 'value', update_data['frequency']))

    for flag in ('auto_create', 'last_payment_to_next_month'):
        if flag in update_data and update_data[flag] is None:
            raise ValueError(f"{flag} cannot be cleared")

    auto_create = update_data.get('auto_create', db_template.auto_create)
    due_date = update_data['due_date'] if 'due_date' in update_data else db_template.due_date
    if auto_create and due_date is None:
        raise ValueError("due_date is required when auto_create is enabled")

    for field, value in update_data.items():
        setattr(db_template, field, value)

    db_template.updated_at = datetime.utcnow()

    try:
        db.commit()
        db.refresh(db_template)
        return db_template
    except IntegrityError:
        db.rollback()
        raise ValueError(f"{_kind(model)} update failed due to database constraint")


def soft_delete_db_template(db: Session, model: TemplateModel, template_id: int, user_id: int) -> TemplateDB:
    """Turn a template off; it stops appearing in new months"""

    db_template = require_db_template(db, model, template_id, user_id)
    db_template.soft_delete()

    db.commit()
    db.refresh(db_template)
    logger.info(f"Deactivated {_kind(model).lower()} {template_id} for user {user_id}")
    return db_template


def restore_db_template(db: Session, model: TemplateModel, template_id: int, user_id: int) -> TemplateDB:
    """Turn a soft-deleted template back on"""

    db_template = require_db_template(db, model, template_id, user_id, include_deleted=True)
    if db_template.is_active:
        return db_template

    _ensure_name_available(db, model, user_id, db_template.name, exclude_id=template_id)
    db_template.restore()

    try:
        db.commit()
        db.refresh(db_template)
        logger.info(f"Reactivated {_kind(model).lower()} {template_id} for user {user_id}")
        return db_template
    except IntegrityError:
        db.rollback()
        raise ValueError(f"{_kind(model)} reactivation failed due to database constraint")
