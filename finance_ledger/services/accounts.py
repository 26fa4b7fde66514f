# services/accounts.py
"""
Account CRUD.

Balances are never written here except at creation, where
current_balance starts at initial_balance; afterwards only the ledger
moves it.
"""

from typing import Any, Dict, List

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from finance_ledger.config import get_settings
from finance_ledger.errors import ConflictError, NotFoundError, ValidationError
from finance_ledger.models import (
    Account,
    AccountType,
    AuditAction,
    Bank,
    RecurringTransaction,
    Transaction,
)
from finance_ledger.services.audit import AuditLogger, serialize_details
from finance_ledger.services.ledger import normalize_amount

logger = structlog.get_logger(__name__)

# Fields clients may patch; balances are deliberately absent
EDITABLE_FIELDS = ("account_name", "account_number", "currency")


def _resolve_bank(db: Session, account_type: AccountType, bank_id: str | None) -> str | None:
    """bank_id is required for BANK accounts and forbidden for CASH ones."""
    if account_type == AccountType.BANK:
        if not bank_id:
            raise ValidationError("bank_id is required for bank account type", field="bank_id")
        if db.get(Bank, bank_id) is None:
            raise ValidationError("bank_id is invalid", field="bank_id")
        return bank_id
    if bank_id:
        raise ValidationError("bank_id is not allowed for non bank account type", field="bank_id")
    return None


def create_account(
    db: Session,
    user_id: str,
    account_name: str,
    account_type: AccountType,
    initial_balance=0,
    currency: str | None = None,
    bank_id: str | None = None,
    account_number: str | None = None,
    audit: AuditLogger | None = None,
) -> Account:
    account_type = AccountType(account_type)
    if not account_name or not account_name.strip():
        raise ValidationError("account_name is required", field="account_name")
    initial = normalize_amount(initial_balance, field="initial_balance", allow_zero=True)

    account = Account(
        user_id=user_id,
        account_name=account_name.strip(),
        account_type=account_type,
        bank_id=_resolve_bank(db, account_type, bank_id),
        account_number=account_number,
        initial_balance=initial,
        current_balance=initial,
        currency=(currency or get_settings().default_currency).upper(),
    )
    db.add(account)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(account)

    if audit is not None:
        audit.record(
            user_id,
            AuditAction.ACCOUNT_CREATE,
            "Account",
            account.id,
            f"Created {account.account_name} account",
            serialize_details(
                {
                    "account_type": account.account_type,
                    "initial_balance": account.initial_balance,
                    "currency": account.currency,
                    "bank_id": account.bank_id,
                }
            ),
        )
    return account


def list_accounts(db: Session, user_id: str) -> List[Account]:
    return (
        db.query(Account)
        .options(joinedload(Account.bank))
        .filter(Account.user_id == user_id)
        .order_by(Account.account_name.asc())
        .all()
    )


def get_account(db: Session, user_id: str, account_id: str) -> Account:
    account = (
        db.query(Account)
        .options(joinedload(Account.bank))
        .filter(Account.id == account_id, Account.user_id == user_id)
        .first()
    )
    if account is None:
        raise NotFoundError("Account not found")
    return account


def update_account(
    db: Session,
    user_id: str,
    account_id: str,
    patch: Dict[str, Any],
    audit: AuditLogger | None = None,
) -> Account:
    account = get_account(db, user_id, account_id)

    for forbidden in ("initial_balance", "current_balance"):
        if patch.get(forbidden) is not None:
            raise ValidationError(f"{forbidden} cannot be changed", field=forbidden)

    changes: Dict[str, Any] = {}
    for field in EDITABLE_FIELDS:
        if field in patch and patch[field] is not None:
            changes[field] = patch[field]
    if "currency" in changes:
        changes["currency"] = changes["currency"].upper()
    if "account_name" in changes and not changes["account_name"].strip():
        raise ValidationError("account_name cannot be empty", field="account_name")

    # Type and bank are validated together against the resulting type
    if patch.get("account_type") is not None or "bank_id" in patch:
        new_type = AccountType(patch.get("account_type") or account.account_type)
        bank_id = patch["bank_id"] if "bank_id" in patch else account.bank_id
        if new_type == AccountType.CASH and "bank_id" not in patch:
            bank_id = None
        changes["account_type"] = new_type
        changes["bank_id"] = _resolve_bank(db, new_type, bank_id)

    if not changes:
        return account

    for key, value in changes.items():
        setattr(account, key, value)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

    if audit is not None:
        audit.record(
            user_id,
            AuditAction.ACCOUNT_UPDATE,
            "Account",
            account_id,
            f"Updated {account.account_name} account",
            serialize_details(changes),
        )
    return get_account(db, user_id, account_id)


def remove_account(
    db: Session,
    user_id: str,
    account_id: str,
    audit: AuditLogger | None = None,
) -> Dict[str, str]:
    """Blocked while any transaction or recurring template references the account."""
    account = get_account(db, user_id, account_id)

    references = (
        db.query(Transaction.id)
        .filter(
            or_(
                Transaction.source_account_id == account_id,
                Transaction.destination_account_id == account_id,
            )
        )
        .count()
    )
    references += (
        db.query(RecurringTransaction.id)
        .filter(
            or_(
                RecurringTransaction.source_account_id == account_id,
                RecurringTransaction.destination_account_id == account_id,
            )
        )
        .count()
    )
    if references:
        raise ConflictError("Account has related transactions")

    name = account.account_name
    db.delete(account)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

    if audit is not None:
        audit.record(
            user_id,
            AuditAction.ACCOUNT_DELETE,
            "Account",
            account_id,
            f"Deleted {name} account",
            {"account_name": name},
        )
    return {"id": account_id, "message": f"Account {name} has been deleted"}


def list_banks(db: Session) -> List[Bank]:
    return db.query(Bank).order_by(Bank.name.asc()).all()
