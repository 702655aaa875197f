from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from monthly_ledger.db.core import (
    ExpenseTemplateDB,
    Frequency,
    IncomeTemplateDB,
    UserDB,
    enable_sqlite_savepoints,
    get_db,
    init_db,
)
from monthly_ledger.main import app
from monthly_ledger.routers.dependencies import get_current_user_id


@pytest.fixture()
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(test_engine)
    init_db(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def user(db):
    db_user = UserDB(
        id=uuid4(),
        email="casey@example.com",
        username="casey",
        display_name="Casey",
        created_at=datetime.utcnow(),
        updated_at=datetime.utcnow(),
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user


@pytest.fixture()
def make_expense_template(db, user):
    def _make(name="Rent", frequency=Frequency.MONTHLY, due_date=date(2025, 1, 1),
              default_amount=Decimal("1200.00"), auto_create=True):
        template = ExpenseTemplateDB(
            user_id=user.db_id,
            name=name,
            frequency=frequency,
            due_date=due_date,
            auto_create=auto_create,
            default_amount=default_amount,
        )
        db.add(template)
        db.commit()
        db.refresh(template)
        return template
    return _make


@pytest.fixture()
def make_income_template(db, user):
    def _make(name="Paycheck", frequency=Frequency.BI_WEEKLY, due_date=date(2025, 1, 3),
              estimated_amount=Decimal("2000.00"), auto_create=True, last_payment_to_next_month=False):
        template = IncomeTemplateDB(
            user_id=user.db_id,
            name=name,
            frequency=frequency,
            due_date=due_date,
            auto_create=auto_create,
            estimated_amount=estimated_amount,
            last_payment_to_next_month=last_payment_to_next_month,
        )
        db.add(template)
        db.commit()
        db.refresh(template)
        return template
    return _make


@pytest.fixture()
def client(session_factory, db, user):
    user_id = user.db_id
    # Release the shared in-memory connection before requests open their own transactions
    db.rollback()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user_id] = lambda: user_id
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
