# services/transactions.py
"""
Transaction ledger operations.

create / remove move account balances in the same unit of work as the
row insert / delete: both commit together or neither does. update only
touches description, date and category, so balances never change.
Audit entries are recorded after commit and cannot fail the operation.
"""

import math
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from finance_ledger.errors import NotFoundError, ValidationError
from finance_ledger.models import AuditAction, Transaction, TransactionType
from finance_ledger.services.audit import AuditLogger, serialize_details
from finance_ledger.services.ledger import (
    apply_effects,
    balance_effects,
    get_usable_category,
    normalize_amount,
    reversal_effects,
    validate_posting,
)
from finance_ledger.services.periods import to_naive_utc, utcnow

logger = structlog.get_logger(__name__)

CREATE_ACTIONS = {
    TransactionType.INCOME: AuditAction.TRANSACTION_CREATE_INCOME,
    TransactionType.EXPENSE: AuditAction.TRANSACTION_CREATE_EXPENSE,
    TransactionType.TRANSFER: AuditAction.TRANSACTION_CREATE_TRANSFER,
}

# Fields a client may never change after creation
IMMUTABLE_FIELDS = ("amount", "transaction_type", "source_account_id", "destination_account_id")

SORTABLE_COLUMNS = {
    "transaction_date": Transaction.transaction_date,
    "amount": Transaction.amount,
    "created_at": Transaction.created_at,
}


def _with_relations(query):
    return query.options(
        joinedload(Transaction.category),
        joinedload(Transaction.source_account),
        joinedload(Transaction.destination_account),
    )


def _snapshot(tx: Transaction) -> Dict[str, Any]:
    return serialize_details(
        {
            "amount": tx.amount,
            "transaction_type": tx.transaction_type,
            "transaction_date": tx.transaction_date,
            "description": tx.description,
            "category_id": tx.category_id,
            "source_account_id": tx.source_account_id,
            "destination_account_id": tx.destination_account_id,
        }
    )


# -------------------------------------------------------------------
# Create
# -------------------------------------------------------------------

def create_transaction(
    db: Session,
    user_id: str,
    transaction_type: TransactionType,
    amount,
    source_account_id: str | None = None,
    destination_account_id: str | None = None,
    category_id: str | None = None,
    transaction_date: datetime | None = None,
    description: str | None = None,
    audit: AuditLogger | None = None,
) -> Transaction:
    """
    Record an INCOME, EXPENSE or TRANSFER and apply its balance effect.

    Raises:
        ValidationError: bad amount or account/category shape for the type
        PermissionDenied: an account or category is missing or not the caller's
        LedgerIntegrityError: a balance update did not apply (rolled back)
    """
    transaction_type = TransactionType(transaction_type)
    amount = normalize_amount(amount)
    validate_posting(
        db, user_id, transaction_type, source_account_id, destination_account_id, category_id
    )

    tx = Transaction(
        user_id=user_id,
        transaction_type=transaction_type,
        amount=amount,
        transaction_date=to_naive_utc(transaction_date) or utcnow(),
        description=description,
        category_id=category_id,
        source_account_id=source_account_id,
        destination_account_id=destination_account_id,
    )

    try:
        db.add(tx)
        apply_effects(
            db, balance_effects(transaction_type, amount, source_account_id, destination_account_id)
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("transaction_create_failed", user_id=user_id, type=transaction_type.value)
        raise

    db.refresh(tx)
    logger.info(
        "transaction_created",
        transaction_id=tx.id,
        type=transaction_type.value,
        amount=str(amount),
    )

    if audit is not None:
        audit.record(
            user_id,
            CREATE_ACTIONS[transaction_type],
            "Transaction",
            tx.id,
            f"User created {transaction_type.value.lower()} transaction {tx.id} for {tx.amount}",
            _snapshot(tx),
        )
    return tx


# -------------------------------------------------------------------
# Read
# -------------------------------------------------------------------

def get_transaction(db: Session, user_id: str, transaction_id: str) -> Transaction:
    tx = (
        _with_relations(db.query(Transaction))
        .filter(Transaction.id == transaction_id, Transaction.user_id == user_id)
        .first()
    )
    if tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return tx


def list_transactions(
    db: Session,
    user_id: str,
    account_id: str | None = None,
    transaction_type: TransactionType | None = None,
    category_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "transaction_date",
    sort_order: str = "desc",
) -> Dict[str, Any]:
    """
    Owner-scoped, filtered, sorted, paginated listing.

    Returns {"data": [...], "meta": {...}} with page bookkeeping in meta.
    """
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive", field="page")

    query = db.query(Transaction).filter(Transaction.user_id == user_id)

    if transaction_type:
        query = query.filter(Transaction.transaction_type == TransactionType(transaction_type))
    if category_id:
        query = query.filter(Transaction.category_id == category_id)
    if start_date:
        query = query.filter(Transaction.transaction_date >= to_naive_utc(start_date))
    if end_date:
        query = query.filter(Transaction.transaction_date <= to_naive_utc(end_date))
    if search:
        # User input is matched literally
        pattern = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        query = query.filter(Transaction.description.ilike(f"%{pattern}%", escape="\\"))
    if account_id:
        query = query.filter(
            or_(
                Transaction.source_account_id == account_id,
                Transaction.destination_account_id == account_id,
            )
        )

    total = query.count()

    # Sorting (whitelisted columns only)
    sort_col = SORTABLE_COLUMNS.get(sort_by, Transaction.transaction_date)
    order = sort_col.asc() if sort_order == "asc" else sort_col.desc()

    data = (
        _with_relations(query)
        .order_by(order, Transaction.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return {
        "data": data,
        "meta": {
            "total": total,
            "page": page,
            "limit": limit,
            "last_page": math.ceil(total / limit) if total else 0,
            "has_next_page": page * limit < total,
            "has_previous_page": page > 1,
        },
    }


# -------------------------------------------------------------------
# Update
# -------------------------------------------------------------------

def update_transaction(
    db: Session,
    user_id: str,
    transaction_id: str,
    patch: Dict[str, Any],
    audit: AuditLogger | None = None,
) -> Transaction:
    """
    Apply a patch of description / transaction_date / category_id.

    `patch` holds only the fields the client sent. Any attempt to change
    amount, type or accounts is rejected: delete and recreate instead.
    """
    tx = get_transaction(db, user_id, transaction_id)

    for field in IMMUTABLE_FIELDS:
        if field not in patch:
            continue
        new_value = patch[field]
        current = getattr(tx, field)
        if field == "amount" and new_value is not None:
            if normalize_amount(new_value) == current:
                continue
        elif field == "transaction_type" and new_value is not None:
            if TransactionType(new_value) == current:
                continue
        elif new_value == current:
            continue
        raise ValidationError(
            f"{field} cannot be changed; delete and recreate the transaction instead",
            field=field,
        )

    old_values = serialize_details(
        {
            "description": tx.description,
            "transaction_date": tx.transaction_date,
            "category_id": tx.category_id,
        }
    )
    changes: Dict[str, Any] = {}

    if "description" in patch:
        changes["description"] = patch["description"]

    if "transaction_date" in patch:
        if patch["transaction_date"] is None:
            raise ValidationError("transaction_date cannot be empty", field="transaction_date")
        changes["transaction_date"] = to_naive_utc(patch["transaction_date"])

    if "category_id" in patch:
        category_id = patch["category_id"]
        if category_id is None:
            if tx.transaction_type != TransactionType.TRANSFER:
                raise ValidationError(
                    "Category cannot be removed from Income or Expense transactions",
                    field="category_id",
                )
        elif tx.transaction_type == TransactionType.TRANSFER:
            raise ValidationError("category_id is not allowed for TRANSFER", field="category_id")
        else:
            get_usable_category(db, user_id, category_id, tx.transaction_type)
        changes["category_id"] = category_id

    if not changes:
        return tx

    try:
        for field, value in changes.items():
            setattr(tx, field, value)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("transaction_update_failed", transaction_id=transaction_id)
        raise

    tx = get_transaction(db, user_id, transaction_id)

    if audit is not None:
        audit.record(
            user_id,
            AuditAction.TRANSACTION_UPDATE,
            "Transaction",
            transaction_id,
            f"User updated transaction {transaction_id}",
            {"old_values": old_values, "new_values": serialize_details(changes)},
        )
    return tx


# -------------------------------------------------------------------
# Delete
# -------------------------------------------------------------------

def remove_transaction(
    db: Session,
    user_id: str,
    transaction_id: str,
    audit: AuditLogger | None = None,
) -> Dict[str, str]:
    """
    Reverse the transaction's balance effect and delete it, atomically.

    A stored row missing an account its type requires is a ledger
    inconsistency: LedgerIntegrityError is raised and nothing changes.
    """
    tx = (
        db.query(Transaction)
        .filter(Transaction.id == transaction_id, Transaction.user_id == user_id)
        .first()
    )
    if tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")

    details = _snapshot(tx)
    label = tx.description or transaction_id

    try:
        effects = balance_effects(
            tx.transaction_type,
            Decimal(tx.amount),
            tx.source_account_id,
            tx.destination_account_id,
        )
        apply_effects(db, reversal_effects(effects))
        db.delete(tx)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("transaction_delete_failed", transaction_id=transaction_id)
        raise

    logger.info("transaction_deleted", transaction_id=transaction_id)

    if audit is not None:
        audit.record(
            user_id,
            AuditAction.TRANSACTION_DELETE,
            "Transaction",
            transaction_id,
            f"User deleted transaction {transaction_id} ({details['transaction_type']}, {details['amount']})",
            details,
        )

    return {
        "id": transaction_id,
        "message": f"Transaction '{label}' deleted and balances adjusted",
    }
