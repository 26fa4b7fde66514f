"""
Shared fixtures.

Each test gets its own in-memory SQLite database (StaticPool keeps the
single connection alive across sessions) and factories for the rows
most tests need.
"""

import os

# Keep the module-level engine off disk and the scheduler off
os.environ.setdefault("LEDGER_DATABASE_URL", "sqlite://")
os.environ.setdefault("LEDGER_SCHEDULER_ENABLED", "false")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from finance_ledger import models
from finance_ledger.db import Base
from finance_ledger.deps import get_db, get_session_factory
from finance_ledger.main import app
from finance_ledger.services import accounts as account_service


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# -------------------------------------------------------------------
# Factories
# -------------------------------------------------------------------

@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(username=None):
        counter["n"] += 1
        user = models.User(username=username or f"user{counter['n']}")
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def user(make_user):
    return make_user("alice")


@pytest.fixture
def make_bank(db):
    def _make(name="First Bank"):
        bank = models.Bank(name=name, code=name[:4].upper())
        db.add(bank)
        db.commit()
        return bank

    return _make


@pytest.fixture
def make_account(db):
    def _make(user, name="Wallet", initial_balance="0", account_type=models.AccountType.CASH, bank_id=None):
        return account_service.create_account(
            db,
            user.id,
            account_name=name,
            account_type=account_type,
            initial_balance=Decimal(initial_balance),
            bank_id=bank_id,
        )

    return _make


@pytest.fixture
def make_category(db):
    def _make(user=None, name="Groceries", category_type=models.CategoryType.EXPENSE, parent_id=None):
        category = models.Category(
            user_id=user.id if user is not None else None,
            name=name,
            category_type=category_type,
            parent_id=parent_id,
        )
        db.add(category)
        db.commit()
        return category

    return _make


@pytest.fixture
def balance(db):
    """Stored balance of an account, read fresh from the database."""

    def _balance(account_id) -> Decimal:
        db.expire_all()
        return db.get(models.Account, account_id).current_balance

    return _balance


# -------------------------------------------------------------------
# HTTP
# -------------------------------------------------------------------

@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    # Not used as a context manager: the lifespan (table creation on the
    # configured engine, seeding, scheduler) stays out of tests
    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def auth(user):
    return {"X-User-Id": user.id}
