# routes_recurring.py
"""
Routes for recurring transaction templates.
Posting of due templates happens in the scheduler, not here.
"""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from finance_ledger.deps import get_audit_logger, get_current_user, get_db
from finance_ledger.models import User
from finance_ledger.schemas import (
    DeleteResult,
    RecurringCreate,
    RecurringDetailOut,
    RecurringOut,
    TransactionOut,
)
from finance_ledger.services import recurring as recurring_service
from finance_ledger.services.audit import AuditLogger

router = APIRouter(prefix="/recurring-transactions", tags=["recurring"])


@router.post("", response_model=RecurringOut, status_code=status.HTTP_201_CREATED)
def create_recurring(
    body: RecurringCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Create a template. The first transaction is posted immediately,
    dated at the start date; next_run_date is one interval later.
    """
    return recurring_service.create_recurring(db, user.id, audit=audit, **body.model_dump())


@router.get("", response_model=List[RecurringOut])
def list_recurring(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return recurring_service.list_recurring(db, user.id)


@router.get("/{recurring_id}", response_model=RecurringDetailOut)
def get_recurring(
    recurring_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rt = recurring_service.get_recurring(db, user.id, recurring_id)
    detail = RecurringDetailOut.model_validate(rt)
    detail.recent_transactions = [
        TransactionOut.model_validate(tx) for tx in recurring_service.recent_postings(db, rt)
    ]
    return detail


@router.delete("/{recurring_id}", response_model=DeleteResult)
def delete_recurring(
    recurring_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Delete a template. Already posted transactions stay.
    """
    return recurring_service.remove_recurring(db, user.id, recurring_id, audit=audit)
