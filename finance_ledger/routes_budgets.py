# routes_budgets.py
"""
Routes for monthly category budgets and the budget-vs-actual report.
"""

from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from finance_ledger.deps import get_audit_logger, get_current_user, get_db
from finance_ledger.models import User
from finance_ledger.schemas import (
    BudgetCreate,
    BudgetOut,
    BudgetReportRow,
    BudgetUpdate,
    DeleteResult,
)
from finance_ledger.services import budgets as budget_service
from finance_ledger.services.audit import AuditLogger
from finance_ledger.services.periods import utcnow

router = APIRouter(prefix="/budgets", tags=["budgets"])


@router.post("", response_model=BudgetOut, status_code=status.HTTP_201_CREATED)
def create_budget(
    body: BudgetCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    One budget per (category, year, month); a second one is a 409.
    """
    budget = budget_service.create_budget(db, user.id, audit=audit, **body.model_dump())
    return budget_service.get_budget(db, user.id, budget.id)


@router.get("", response_model=List[BudgetOut])
def list_budgets(
    year: int | None = Query(None, ge=2000, le=2100),
    month: int | None = Query(None, ge=1, le=12),
    category_id: str | None = Query(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return budget_service.list_budgets(db, user.id, year=year, month=month, category_id=category_id)


# Declared before /{budget_id} so "report" is not taken for an id
@router.get("/report", response_model=List[BudgetReportRow])
def budget_report(
    year: int | None = Query(None, ge=2000, le=2100),
    month: int | None = Query(None, ge=1, le=12),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Budget vs actual for a month (defaults to the current one),
    most consumed budget first.
    """
    now = utcnow()
    return budget_service.budget_report(db, user.id, year or now.year, month or now.month)


@router.get("/{budget_id}", response_model=BudgetOut)
def get_budget(
    budget_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return budget_service.get_budget(db, user.id, budget_id)


@router.patch("/{budget_id}", response_model=BudgetOut)
def update_budget(
    budget_id: str,
    body: BudgetUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    return budget_service.update_budget(
        db, user.id, budget_id, body.model_dump(exclude_unset=True), audit=audit
    )


@router.delete("/{budget_id}", response_model=DeleteResult)
def delete_budget(
    budget_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    return budget_service.remove_budget(db, user.id, budget_id, audit=audit)
