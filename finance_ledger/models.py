# models.py
# Role: SQLAlchemy ORM models for the finance ledger domain.
#       Users own accounts, categories, transactions, recurring templates and budgets.
#       Account.current_balance is the running total maintained by the ledger services.

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from finance_ledger.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    # Naive UTC everywhere; SQLite has no timezone support
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Fixed 2-decimal precision for every money column
Money = Numeric(12, 2)


# -------------------------------------------------------------------
# Enumerations
# -------------------------------------------------------------------

class AccountType(str, enum.Enum):
    CASH = "CASH"
    BANK = "BANK"


class CategoryType(str, enum.Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class TransactionType(str, enum.Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class RecurringInterval(str, enum.Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class RecurringStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class AuditAction(str, enum.Enum):
    ACCOUNT_CREATE = "ACCOUNT_CREATE"
    ACCOUNT_UPDATE = "ACCOUNT_UPDATE"
    ACCOUNT_DELETE = "ACCOUNT_DELETE"
    CATEGORY_CREATE = "CATEGORY_CREATE"
    CATEGORY_UPDATE = "CATEGORY_UPDATE"
    CATEGORY_DELETE = "CATEGORY_DELETE"
    TRANSACTION_CREATE_INCOME = "TRANSACTION_CREATE_INCOME"
    TRANSACTION_CREATE_EXPENSE = "TRANSACTION_CREATE_EXPENSE"
    TRANSACTION_CREATE_TRANSFER = "TRANSACTION_CREATE_TRANSFER"
    TRANSACTION_UPDATE = "TRANSACTION_UPDATE"
    TRANSACTION_DELETE = "TRANSACTION_DELETE"
    RECURRING_CREATE = "RECURRING_CREATE"
    RECURRING_DELETE = "RECURRING_DELETE"
    RECURRING_POST = "RECURRING_POST"
    BUDGET_CREATE = "BUDGET_CREATE"
    BUDGET_UPDATE = "BUDGET_UPDATE"
    BUDGET_DELETE = "BUDGET_DELETE"


# -------------------------------------------------------------------
# Users & reference data
# -------------------------------------------------------------------

class User(Base):
    """
    Owner of all ledger data.

    Sign-up and login live outside this service; requests identify
    their user by id (see deps.get_current_user).
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    username = Column(String(50), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)


class Bank(Base):
    __tablename__ = "banks"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), unique=True, nullable=False)
    code = Column(String(20), nullable=True)


# -------------------------------------------------------------------
# Accounts
# -------------------------------------------------------------------

class Account(Base):
    """
    A cash wallet or bank account with a running balance.

    current_balance == initial_balance + signed sum of the transactions
    that reference this account. Clients never write it directly.
    """

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    account_name = Column(String(100), nullable=False)
    account_type = Column(Enum(AccountType), nullable=False)

    # Required iff account_type == BANK
    bank_id = Column(String(36), ForeignKey("banks.id"), nullable=True)
    account_number = Column(String(50), nullable=True)

    initial_balance = Column(Money, nullable=False, default=0)
    current_balance = Column(Money, nullable=False, default=0)
    currency = Column(String(3), nullable=False)

    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    bank = relationship("Bank")


# -------------------------------------------------------------------
# Categories
# -------------------------------------------------------------------

class Category(Base):
    """
    Two-level category tree. user_id NULL marks a global category
    visible to everyone; children always share their parent's type.
    """

    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)

    name = Column(String(100), nullable=False)
    category_type = Column(Enum(CategoryType), nullable=False)
    parent_id = Column(String(36), ForeignKey("categories.id"), nullable=True)

    # Display metadata
    icon = Column(String(50), nullable=True)
    color = Column(String(7), nullable=True)

    created_at = Column(DateTime, default=_utcnow, nullable=False)

    parent = relationship("Category", remote_side=[id], back_populates="children")
    children = relationship(
        "Category",
        back_populates="parent",
        order_by="Category.name",
    )

    __table_args__ = (
        UniqueConstraint(
            "name", "category_type", "parent_id", "user_id",
            name="uq_category_name_type_parent_user",
        ),
    )


# -------------------------------------------------------------------
# Ledger
# -------------------------------------------------------------------

class Transaction(Base):
    """
    One ledger entry.

    Account references by type:
        INCOME    destination only
        EXPENSE   source only
        TRANSFER  source and destination
    amount, type and accounts are immutable after creation.
    """

    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    transaction_type = Column(Enum(TransactionType), nullable=False)
    amount = Column(Money, nullable=False)
    transaction_date = Column(DateTime, nullable=False, index=True)
    description = Column(Text, nullable=True)

    category_id = Column(String(36), ForeignKey("categories.id"), nullable=True)
    source_account_id = Column(String(36), ForeignKey("accounts.id"), nullable=True)
    destination_account_id = Column(String(36), ForeignKey("accounts.id"), nullable=True)

    # Set when posted by a recurring template
    recurring_transaction_id = Column(
        String(36), ForeignKey("recurring_transactions.id"), nullable=True
    )

    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    category = relationship("Category")
    source_account = relationship("Account", foreign_keys=[source_account_id])
    destination_account = relationship("Account", foreign_keys=[destination_account_id])
    recurring_transaction = relationship("RecurringTransaction", back_populates="transactions")

    __table_args__ = (
        Index("idx_transaction_user_date", "user_id", "transaction_date"),
        Index("idx_transaction_category", "category_id"),
    )


class RecurringTransaction(Base):
    """
    Template that the scheduler materializes into Transactions.

    next_run_date is always last_run_date advanced by one interval step.
    INACTIVE is terminal.
    """

    __tablename__ = "recurring_transactions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    transaction_type = Column(Enum(TransactionType), nullable=False)
    amount = Column(Money, nullable=False)
    description = Column(Text, nullable=True)

    category_id = Column(String(36), ForeignKey("categories.id"), nullable=True)
    source_account_id = Column(String(36), ForeignKey("accounts.id"), nullable=True)
    destination_account_id = Column(String(36), ForeignKey("accounts.id"), nullable=True)

    interval = Column(Enum(RecurringInterval), nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)
    status = Column(Enum(RecurringStatus), nullable=False, default=RecurringStatus.ACTIVE)

    next_run_date = Column(DateTime, nullable=False, index=True)
    last_run_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    category = relationship("Category")
    source_account = relationship("Account", foreign_keys=[source_account_id])
    destination_account = relationship("Account", foreign_keys=[destination_account_id])
    transactions = relationship(
        "Transaction",
        back_populates="recurring_transaction",
        order_by="desc(Transaction.transaction_date)",
    )


# -------------------------------------------------------------------
# Budgets
# -------------------------------------------------------------------

class Budget(Base):
    """Monthly spending cap for one category. Never touched by the ledger."""

    __tablename__ = "budgets"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    category_id = Column(String(36), ForeignKey("categories.id"), nullable=False)

    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    amount = Column(Money, nullable=False)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    category = relationship("Category")

    __table_args__ = (
        UniqueConstraint(
            "user_id", "category_id", "year", "month",
            name="uq_budget_user_category_period",
        ),
    )


# -------------------------------------------------------------------
# Audit log
# -------------------------------------------------------------------

class AuditLog(Base):
    """Append-only record of user actions. Written best-effort."""

    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)

    action_type = Column(Enum(AuditAction), nullable=False)
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(String(36), nullable=True)
    description = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)

    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=_utcnow, nullable=False, index=True)
