# routes_transactions.py
"""
Routes for the transaction ledger: create income / expense / transfer,
list with filters, read, patch and delete.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from finance_ledger.deps import (
    Pagination,
    get_audit_logger,
    get_current_user,
    get_db,
    parse_optional_date,
)
from finance_ledger.models import TransactionType, User
from finance_ledger.schemas import (
    DeleteResult,
    ExpenseCreate,
    IncomeCreate,
    TransactionOut,
    TransactionPage,
    TransactionUpdate,
    TransferCreate,
)
from finance_ledger.services import transactions as ledger
from finance_ledger.services.audit import AuditLogger

router = APIRouter(prefix="/transactions", tags=["transactions"])


# -------------------------------------------------------------------
# Create
# -------------------------------------------------------------------

@router.post("/income", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
def create_income(
    body: IncomeCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Money in: destination account balance goes up by amount.
    """
    tx = ledger.create_transaction(
        db,
        user.id,
        TransactionType.INCOME,
        body.amount,
        destination_account_id=body.destination_account_id,
        category_id=body.category_id,
        transaction_date=body.transaction_date,
        description=body.description,
        audit=audit,
    )
    return ledger.get_transaction(db, user.id, tx.id)


@router.post("/expense", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
def create_expense(
    body: ExpenseCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Money out: source account balance goes down by amount.
    """
    tx = ledger.create_transaction(
        db,
        user.id,
        TransactionType.EXPENSE,
        body.amount,
        source_account_id=body.source_account_id,
        category_id=body.category_id,
        transaction_date=body.transaction_date,
        description=body.description,
        audit=audit,
    )
    return ledger.get_transaction(db, user.id, tx.id)


@router.post("/transfer", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
def create_transfer(
    body: TransferCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Move money between two of the caller's accounts. Both balances
    change together or not at all.
    """
    tx = ledger.create_transaction(
        db,
        user.id,
        TransactionType.TRANSFER,
        body.amount,
        source_account_id=body.source_account_id,
        destination_account_id=body.destination_account_id,
        transaction_date=body.transaction_date,
        description=body.description,
        audit=audit,
    )
    return ledger.get_transaction(db, user.id, tx.id)


# -------------------------------------------------------------------
# Read
# -------------------------------------------------------------------

@router.get("", response_model=TransactionPage)
def list_transactions(
    account_id: str | None = Query(None),
    transaction_type: TransactionType | None = Query(None),
    category_id: str | None = Query(None),
    start_date: str | None = Query(None),
    end_date: str | None = Query(None),
    search: str | None = Query(None),
    sort_by: str = Query("transaction_date"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    pagination: Pagination = Depends(),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return ledger.list_transactions(
        db,
        user.id,
        account_id=account_id,
        transaction_type=transaction_type,
        category_id=category_id,
        start_date=parse_optional_date(start_date),
        end_date=parse_optional_date(end_date, end_of_day=True),
        search=search,
        page=pagination.page,
        limit=pagination.limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@router.get("/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return ledger.get_transaction(db, user.id, transaction_id)


# -------------------------------------------------------------------
# Update / delete
# -------------------------------------------------------------------

@router.patch("/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: str,
    body: TransactionUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Only description, transaction_date and category_id may change.
    """
    return ledger.update_transaction(
        db, user.id, transaction_id, body.model_dump(exclude_unset=True), audit=audit
    )


@router.delete("/{transaction_id}", response_model=DeleteResult)
def delete_transaction(
    transaction_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Delete a transaction and reverse its balance effect.
    """
    return ledger.remove_transaction(db, user.id, transaction_id, audit=audit)
