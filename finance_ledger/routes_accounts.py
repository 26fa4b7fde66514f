# routes_accounts.py
"""
Routes for accounts and the bank reference list.
"""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from finance_ledger.deps import get_audit_logger, get_current_user, get_db
from finance_ledger.models import User
from finance_ledger.schemas import AccountCreate, AccountOut, AccountUpdate, BankOut, DeleteResult
from finance_ledger.services import accounts as account_service
from finance_ledger.services.audit import AuditLogger

router = APIRouter(tags=["accounts"])


@router.get("/banks", response_model=List[BankOut])
def list_banks(db: Session = Depends(get_db)):
    return account_service.list_banks(db)


@router.post("/accounts", response_model=AccountOut, status_code=status.HTTP_201_CREATED)
def create_account(
    body: AccountCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Open a CASH or BANK account. current_balance starts at initial_balance.
    """
    return account_service.create_account(db, user.id, audit=audit, **body.model_dump())


@router.get("/accounts", response_model=List[AccountOut])
def list_accounts(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return account_service.list_accounts(db, user.id)


@router.get("/accounts/{account_id}", response_model=AccountOut)
def get_account(
    account_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return account_service.get_account(db, user.id, account_id)


@router.patch("/accounts/{account_id}", response_model=AccountOut)
def update_account(
    account_id: str,
    body: AccountUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Edit name, number, currency or type/bank. Balances are not editable.
    """
    return account_service.update_account(
        db, user.id, account_id, body.model_dump(exclude_unset=True), audit=audit
    )


@router.delete("/accounts/{account_id}", response_model=DeleteResult)
def delete_account(
    account_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Delete an account; 409 while transactions still reference it.
    """
    return account_service.remove_account(db, user.id, account_id, audit=audit)
