# services/ledger.py
"""
Balance bookkeeping shared by transactions and recurring postings.

Every posting moves money with signed deltas:

    INCOME    destination += amount
    EXPENSE   source      -= amount
    TRANSFER  source      -= amount, destination += amount

Deletion applies the same deltas with the sign flipped. Deltas are
applied with a single UPDATE relative to the stored balance, inside the
caller's session transaction; nothing here commits.
"""

from decimal import Decimal, InvalidOperation
from typing import List, Tuple

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from finance_ledger.errors import LedgerIntegrityError, PermissionDenied, ValidationError
from finance_ledger.models import Account, Category, CategoryType, TransactionType

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")

# Which account references each transaction type requires
REQUIRED_ACCOUNTS = {
    TransactionType.INCOME: ("destination_account_id",),
    TransactionType.EXPENSE: ("source_account_id",),
    TransactionType.TRANSFER: ("source_account_id", "destination_account_id"),
}


# -------------------------------------------------------------------
# Balance deltas
# -------------------------------------------------------------------

def balance_effects(
    transaction_type: TransactionType,
    amount: Decimal,
    source_account_id: str | None,
    destination_account_id: str | None,
) -> List[Tuple[str, Decimal]]:
    """
    Signed (account_id, delta) pairs for posting a transaction.

    Raises LedgerIntegrityError if an account reference the type needs is
    missing, so a malformed row can never be posted or reversed halfway.
    """
    refs = {
        "source_account_id": source_account_id,
        "destination_account_id": destination_account_id,
    }
    missing = [name for name in REQUIRED_ACCOUNTS[transaction_type] if not refs[name]]
    if missing:
        raise LedgerIntegrityError(
            f"{transaction_type.value} transaction is missing {', '.join(missing)}"
        )

    effects: List[Tuple[str, Decimal]] = []
    if transaction_type in (TransactionType.EXPENSE, TransactionType.TRANSFER):
        effects.append((source_account_id, -amount))
    if transaction_type in (TransactionType.INCOME, TransactionType.TRANSFER):
        effects.append((destination_account_id, amount))
    return effects


def reversal_effects(effects: List[Tuple[str, Decimal]]) -> List[Tuple[str, Decimal]]:
    return [(account_id, -delta) for account_id, delta in effects]


def apply_delta(db: Session, account_id: str, signed_amount: Decimal) -> None:
    """
    Atomically add `signed_amount` to the account's stored balance.

    The arithmetic happens in the database (current_balance + :delta), so
    concurrent postings against one account cannot lose updates.
    """
    updated = (
        db.query(Account)
        .filter(Account.id == account_id)
        .update(
            {Account.current_balance: Account.current_balance + signed_amount},
            synchronize_session=False,
        )
    )
    if updated != 1:
        logger.error("balance_update_missed", account_id=account_id, delta=str(signed_amount))
        raise LedgerIntegrityError(f"Account {account_id} could not be updated")


def apply_effects(db: Session, effects: List[Tuple[str, Decimal]]) -> None:
    for account_id, delta in effects:
        apply_delta(db, account_id, delta)


# -------------------------------------------------------------------
# Validation & ownership
# -------------------------------------------------------------------

def normalize_amount(value, field: str = "amount", allow_zero: bool = False) -> Decimal:
    """
    Parse a money amount: positive (or >= 0 with allow_zero), at most 2 decimals.
    """
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} is invalid", field=field)

    if not amount.is_finite():
        raise ValidationError(f"{field} is invalid", field=field)
    if amount < 0 or (amount == 0 and not allow_zero):
        bound = "greater than or equal to 0" if allow_zero else "greater than 0"
        raise ValidationError(f"{field} must be {bound}", field=field)
    if amount != amount.quantize(CENT):
        raise ValidationError(f"{field} must have at most 2 decimal places", field=field)
    return amount.quantize(CENT)


def get_owned_account(db: Session, user_id: str, account_id: str, label: str) -> Account:
    """Missing and foreign accounts both count as a permission failure."""
    account = (
        db.query(Account)
        .filter(Account.id == account_id, Account.user_id == user_id)
        .first()
    )
    if account is None:
        raise PermissionDenied(f"{label} account not found or access denied")
    return account


def visible_category_filter(user_id: str):
    """Categories a user may use: their own plus the global ones."""
    return or_(Category.user_id == user_id, Category.user_id.is_(None))


def get_usable_category(
    db: Session,
    user_id: str,
    category_id: str,
    transaction_type: TransactionType,
) -> Category:
    category = (
        db.query(Category)
        .filter(Category.id == category_id, visible_category_filter(user_id))
        .first()
    )
    if category is None:
        raise PermissionDenied("Category not found or access denied")

    expected = CategoryType(transaction_type.value)
    if category.category_type != expected:
        raise ValidationError(
            f"Category '{category.name}' is not an {expected.value} category",
            field="category_id",
        )
    return category


def validate_posting(
    db: Session,
    user_id: str,
    transaction_type: TransactionType,
    source_account_id: str | None,
    destination_account_id: str | None,
    category_id: str | None,
) -> None:
    """
    Check the account/category references of a new posting, before any write.

    Shape errors (missing or forbidden fields) come first as
    ValidationError, then ownership as PermissionDenied.
    """
    if transaction_type == TransactionType.INCOME:
        if not destination_account_id:
            raise ValidationError("destination_account_id is required for INCOME", "destination_account_id")
        if source_account_id:
            raise ValidationError("source_account_id is not allowed for INCOME", "source_account_id")
    elif transaction_type == TransactionType.EXPENSE:
        if not source_account_id:
            raise ValidationError("source_account_id is required for EXPENSE", "source_account_id")
        if destination_account_id:
            raise ValidationError("destination_account_id is not allowed for EXPENSE", "destination_account_id")
    else:
        if not source_account_id:
            raise ValidationError("source_account_id is required for TRANSFER", "source_account_id")
        if not destination_account_id:
            raise ValidationError("destination_account_id is required for TRANSFER", "destination_account_id")
        if source_account_id == destination_account_id:
            raise ValidationError(
                "source and destination accounts must differ", "destination_account_id"
            )
        if category_id:
            raise ValidationError("category_id is not allowed for TRANSFER", "category_id")

    if transaction_type != TransactionType.TRANSFER and not category_id:
        raise ValidationError(
            f"category_id is required for {transaction_type.value}", "category_id"
        )

    if source_account_id:
        get_owned_account(db, user_id, source_account_id, "Source")
    if destination_account_id:
        get_owned_account(db, user_id, destination_account_id, "Destination")
    if category_id:
        get_usable_category(db, user_id, category_id, transaction_type)
