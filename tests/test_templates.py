from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from monthly_ledger.crud import crud_template
from monthly_ledger.db.core import ExpenseTemplateDB, Frequency, IncomeTemplateDB, NotFoundError, TemplateStatus
from monthly_ledger.models.template import (
    ExpenseTemplateCreate,
    ExpenseTemplateUpdate,
    FrequencyEnum,
    IncomeTemplateCreate,
    IncomeTemplateUpdate,
)


def _rent(**overrides):
    data = dict(name="Rent", frequency="monthly", due_date=date(2025, 1, 1), auto_create=True,
                default_amount=Decimal("1200"))
    data.update(overrides)
    return ExpenseTemplateCreate(**data)


def test_create_expense_template(db, user):
    template = crud_template.create_db_template(db, ExpenseTemplateDB, user.db_id, _rent())

    assert template.id is not None
    assert template.frequency == Frequency.MONTHLY
    assert template.default_amount == Decimal("1200.00")
    assert template.status == TemplateStatus.ACTIVE
    assert template.is_active is True


def test_biweekly_spelling_is_normalized():
    assert IncomeTemplateCreate(name="Pay", frequency="biweekly").frequency == FrequencyEnum.BI_WEEKLY


def test_auto_create_requires_anchor_date():
    with pytest.raises(ValidationError):
        _rent(due_date=None)


def test_income_templates_cannot_be_yearly():
    with pytest.raises(ValidationError):
        IncomeTemplateCreate(name="Bonus", frequency="yearly", due_date=date(2025, 12, 15))
    with pytest.raises(ValidationError):
        IncomeTemplateUpdate(frequency="yearly")


def test_negative_amounts_are_rejected():
    with pytest.raises(ValidationError):
        _rent(default_amount=Decimal("-5"))
    with pytest.raises(ValidationError):
        IncomeTemplateCreate(name="Pay", estimated_amount=Decimal("-1"))


def test_active_names_are_unique_per_user(db, user):
    crud_template.create_db_template(db, ExpenseTemplateDB, user.db_id, _rent())

    with pytest.raises(ValueError):
        crud_template.create_db_template(db, ExpenseTemplateDB, user.db_id, _rent())

    # Income templates have their own namespace
    crud_template.create_db_template(db, IncomeTemplateDB, user.db_id, IncomeTemplateCreate(name="Rent"))


def test_name_is_reusable_after_soft_delete(db, user):
    old = crud_template.create_db_template(db, ExpenseTemplateDB, user.db_id, _rent())
    crud_template.soft_delete_db_template(db, ExpenseTemplateDB, old.id, user.db_id)

    new = crud_template.create_db_template(db, ExpenseTemplateDB, user.db_id, _rent(default_amount=Decimal("1300")))

    assert new.id != old.id
    # Reactivating the old one would clash with the new active name
    with pytest.raises(ValueError):
        crud_template.restore_db_template(db, ExpenseTemplateDB, old.id, user.db_id)


def test_soft_delete_and_restore(db, user):
    template = crud_template.create_db_template(db, ExpenseTemplateDB, user.db_id, _rent())

    deleted = crud_template.soft_delete_db_template(db, ExpenseTemplateDB, template.id, user.db_id)
    assert deleted.status == TemplateStatus.DELETED
    assert deleted.deleted_at is not None
    assert crud_template.read_db_templates(db, ExpenseTemplateDB, user.db_id) == []
    assert [t.id for t in crud_template.read_db_templates(db, ExpenseTemplateDB, user.db_id, deleted_only=True)] == [template.id]
    assert crud_template.read_materializable_templates(db, ExpenseTemplateDB, user.db_id) == []
    with pytest.raises(NotFoundError):
        crud_template.require_db_template(db, ExpenseTemplateDB, template.id, user.db_id)

    restored = crud_template.restore_db_template(db, ExpenseTemplateDB, template.id, user.db_id)
    assert restored.status == TemplateStatus.ACTIVE
    assert [t.id for t in crud_template.read_materializable_templates(db, ExpenseTemplateDB, user.db_id)] == [template.id]


def test_update_template(db, user):
    template = crud_template.create_db_template(db, ExpenseTemplateDB, user.db_id, _rent())

    updated = crud_template.update_db_template(db, ExpenseTemplateDB, template.id, user.db_id, ExpenseTemplateUpdate(
        name="Mortgage", frequency="bi_weekly", default_amount=Decimal("650")
    ))

    assert updated.name == "Mortgage"
    assert updated.frequency == Frequency.BI_WEEKLY
    assert updated.default_amount == Decimal("650.00")


def test_update_rejects_name_clash_and_missing_anchor(db, user):
    crud_template.create_db_template(db, ExpenseTemplateDB, user.db_id, _rent())
    phone = crud_template.create_db_template(db, ExpenseTemplateDB, user.db_id, _rent(name="Phone"))

    with pytest.raises(ValueError):
        crud_template.update_db_template(db, ExpenseTemplateDB, phone.id, user.db_id, ExpenseTemplateUpdate(name="Rent"))
    with pytest.raises(ValueError):
        crud_template.update_db_template(db, ExpenseTemplateDB, phone.id, user.db_id, ExpenseTemplateUpdate(due_date=None))


def test_turning_off_auto_create_allows_clearing_anchor(db, user):
    template = crud_template.create_db_template(db, ExpenseTemplateDB, user.db_id, _rent())

    updated = crud_template.update_db_template(db, ExpenseTemplateDB, template.id, user.db_id,
                                               ExpenseTemplateUpdate(auto_create=False, due_date=None))

    assert updated.auto_create is False
    assert updated.due_date is None


def test_template_for_missing_user(db):
    with pytest.raises(NotFoundError):
        crud_template.create_db_template(db, ExpenseTemplateDB, 999, _rent())
