# schemas.py
# Role: Pydantic request and response models for the JSON API.
#       Request models do shape validation; ownership and ledger rules live in services/.

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from finance_ledger.models import (
    AccountType,
    AuditAction,
    CategoryType,
    RecurringInterval,
    RecurringStatus,
    TransactionType,
)

# 2-decimal money amounts
PositiveMoney = Annotated[Decimal, Field(gt=0, max_digits=12, decimal_places=2)]
NonNegativeMoney = Annotated[Decimal, Field(ge=0, max_digits=12, decimal_places=2)]


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# -------------------------------------------------------------------
# Banks & accounts
# -------------------------------------------------------------------

class BankOut(ORMModel):
    id: str
    name: str
    code: Optional[str] = None


class AccountCreate(BaseModel):
    account_name: str = Field(min_length=1, max_length=100)
    account_type: AccountType
    bank_id: Optional[str] = None
    account_number: Optional[str] = Field(default=None, max_length=50)
    initial_balance: NonNegativeMoney = Decimal("0")
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)

    @field_validator("account_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class AccountUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    account_type: Optional[AccountType] = None
    bank_id: Optional[str] = None
    account_number: Optional[str] = Field(default=None, max_length=50)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)


class AccountOut(ORMModel):
    id: str
    account_name: str
    account_type: AccountType
    bank_id: Optional[str] = None
    bank: Optional[BankOut] = None
    account_number: Optional[str] = None
    initial_balance: Decimal
    current_balance: Decimal
    currency: str
    created_at: datetime


class AccountRef(ORMModel):
    id: str
    account_name: str
    account_type: AccountType


# -------------------------------------------------------------------
# Categories
# -------------------------------------------------------------------

class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    type: CategoryType
    parent_id: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=50)
    color: Optional[str] = Field(default=None, pattern=r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[CategoryType] = None
    parent_id: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=50)
    color: Optional[str] = Field(default=None, pattern=r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")


class CategoryOut(ORMModel):
    id: str
    name: str
    category_type: CategoryType
    parent_id: Optional[str] = None
    user_id: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None

    @computed_field
    @property
    def is_global(self) -> bool:
        return self.user_id is None


class CategoryTreeOut(CategoryOut):
    children: List[CategoryOut] = []


# -------------------------------------------------------------------
# Transactions
# -------------------------------------------------------------------

class IncomeCreate(BaseModel):
    amount: PositiveMoney
    destination_account_id: str
    category_id: str
    transaction_date: Optional[datetime] = None
    description: Optional[str] = None


class ExpenseCreate(BaseModel):
    amount: PositiveMoney
    source_account_id: str
    category_id: str
    transaction_date: Optional[datetime] = None
    description: Optional[str] = None


class TransferCreate(BaseModel):
    amount: PositiveMoney
    source_account_id: str
    destination_account_id: str
    transaction_date: Optional[datetime] = None
    description: Optional[str] = None


class TransactionUpdate(BaseModel):
    """
    Only description, transaction_date and category_id can change.
    The other fields are accepted so the service can reject changes to
    them with a clear message.
    """

    model_config = ConfigDict(extra="forbid")

    description: Optional[str] = None
    transaction_date: Optional[datetime] = None
    category_id: Optional[str] = None
    amount: Optional[Decimal] = None
    transaction_type: Optional[TransactionType] = None
    source_account_id: Optional[str] = None
    destination_account_id: Optional[str] = None


class TransactionOut(ORMModel):
    id: str
    transaction_type: TransactionType
    amount: Decimal
    transaction_date: datetime
    description: Optional[str] = None
    category_id: Optional[str] = None
    source_account_id: Optional[str] = None
    destination_account_id: Optional[str] = None
    recurring_transaction_id: Optional[str] = None
    category: Optional[CategoryOut] = None
    source_account: Optional[AccountRef] = None
    destination_account: Optional[AccountRef] = None
    created_at: datetime


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    last_page: int
    has_next_page: bool
    has_previous_page: bool


class TransactionPage(BaseModel):
    data: List[TransactionOut]
    meta: PageMeta


class DeleteResult(BaseModel):
    id: str
    message: str


# -------------------------------------------------------------------
# Recurring transactions
# -------------------------------------------------------------------

class RecurringCreate(BaseModel):
    transaction_type: TransactionType
    amount: PositiveMoney
    interval: RecurringInterval
    description: Optional[str] = None
    category_id: Optional[str] = None
    source_account_id: Optional[str] = None
    destination_account_id: Optional[str] = None
    start_date: Optional[datetime] = None
    transaction_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class RecurringOut(ORMModel):
    id: str
    transaction_type: TransactionType
    amount: Decimal
    description: Optional[str] = None
    category_id: Optional[str] = None
    source_account_id: Optional[str] = None
    destination_account_id: Optional[str] = None
    interval: RecurringInterval
    start_date: datetime
    end_date: Optional[datetime] = None
    status: RecurringStatus
    next_run_date: datetime
    last_run_date: Optional[datetime] = None
    created_at: datetime


class RecurringDetailOut(RecurringOut):
    recent_transactions: List[TransactionOut] = []


# -------------------------------------------------------------------
# Budgets
# -------------------------------------------------------------------

class BudgetCreate(BaseModel):
    category_id: str
    amount: NonNegativeMoney
    year: int = Field(ge=2000, le=2100)
    month: int = Field(ge=1, le=12)
    description: Optional[str] = None


class BudgetUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category_id: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    year: Optional[int] = Field(default=None, ge=2000, le=2100)
    month: Optional[int] = Field(default=None, ge=1, le=12)
    description: Optional[str] = None


class BudgetOut(ORMModel):
    id: str
    category_id: str
    category: Optional[CategoryOut] = None
    year: int
    month: int
    amount: Decimal
    description: Optional[str] = None


class BudgetReportRow(BaseModel):
    budget_id: str
    category_id: str
    category_name: Optional[str] = None
    year: int
    month: int
    amount: Decimal
    spent: Decimal
    remaining: Decimal
    percentage: Decimal
    status: str


# -------------------------------------------------------------------
# Reports
# -------------------------------------------------------------------

class SummaryOut(BaseModel):
    start: Optional[datetime] = None
    end: datetime
    total_income: Decimal
    total_expense: Decimal
    net_cash_flow: Decimal
    savings_rate: Decimal


class CategoryBreakdownRow(BaseModel):
    category_id: str
    category_name: str
    icon: Optional[str] = None
    color: Optional[str] = None
    total_amount: Decimal
    percentage: Decimal
    transaction_count: int


class ComparisonOut(BaseModel):
    current: Decimal
    previous: Decimal
    difference: Decimal
    percentage_change: Decimal
    status: str


class MonthComparisonOut(BaseModel):
    current_period: str
    previous_period: str
    income: ComparisonOut
    expense: ComparisonOut


# -------------------------------------------------------------------
# Audit log
# -------------------------------------------------------------------

class AuditLogOut(ORMModel):
    id: str
    action_type: AuditAction
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    description: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime


class AuditLogPage(BaseModel):
    data: List[AuditLogOut]
    meta: PageMeta
