# routes_reports.py
"""
Read-only reporting endpoints (dashboard numbers as JSON).
"""

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from finance_ledger.deps import get_current_user, get_db, parse_optional_date
from finance_ledger.models import TransactionType, User
from finance_ledger.schemas import CategoryBreakdownRow, MonthComparisonOut, SummaryOut
from finance_ledger.services import reports
from finance_ledger.services.periods import previous_month, utcnow

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/summary", response_model=SummaryOut)
def summary(
    start_date: str | None = Query(None),
    end_date: str | None = Query(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Income / expense / net cash flow / savings rate. Transfers are excluded.
    """
    return reports.summary(
        db,
        user.id,
        start=parse_optional_date(start_date),
        end=parse_optional_date(end_date, end_of_day=True),
    )


@router.get("/categories", response_model=List[CategoryBreakdownRow])
def categories(
    transaction_type: TransactionType = Query(TransactionType.EXPENSE),
    start_date: str | None = Query(None),
    end_date: str | None = Query(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return reports.category_breakdown(
        db,
        user.id,
        transaction_type=transaction_type,
        start=parse_optional_date(start_date),
        end=parse_optional_date(end_date, end_of_day=True),
    )


@router.get("/comparison", response_model=MonthComparisonOut)
def comparison(
    year: int | None = Query(None, ge=2000, le=2100),
    month: int | None = Query(None, ge=1, le=12),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    A month against the one before it. Defaults to last month, which is
    the latest complete one.
    """
    if year is None or month is None:
        now = utcnow()
        year, month = previous_month(now.year, now.month)
    return reports.month_comparison(db, user.id, year, month)
