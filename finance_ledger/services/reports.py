# services/reports.py
"""
Read-only aggregates over the ledger: summary totals, per-category
breakdown, and month-over-month comparison. No writes.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from finance_ledger.models import Category, Transaction, TransactionType
from finance_ledger.services.periods import get_month_range, previous_month, to_naive_utc, utcnow

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def _money(value) -> Decimal:
    # SQLite hands SUM() back as float; keep 2-decimal Decimals in the API
    return Decimal(str(value or 0)).quantize(CENT)


def _period_filters(user_id: str, start: datetime | None, end: datetime | None):
    filters = [Transaction.user_id == user_id]
    if start is not None:
        filters.append(Transaction.transaction_date >= to_naive_utc(start))
    if end is not None:
        filters.append(Transaction.transaction_date <= to_naive_utc(end))
    return filters


def _income_expense(db: Session, filters) -> tuple[Decimal, Decimal]:
    income, expense = (
        db.query(
            func.coalesce(
                func.sum(
                    case(
                        (Transaction.transaction_type == TransactionType.INCOME, Transaction.amount),
                        else_=0,
                    )
                ),
                0,
            ).label("income"),
            func.coalesce(
                func.sum(
                    case(
                        (Transaction.transaction_type == TransactionType.EXPENSE, Transaction.amount),
                        else_=0,
                    )
                ),
                0,
            ).label("expense"),
        )
        .filter(*filters)
        .one()
    )
    return _money(income), _money(expense)


def summary(
    db: Session,
    user_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
) -> Dict[str, Any]:
    """
    Income, expense, net cash flow and savings rate for a period.
    Transfers move money between own accounts and are not counted.
    """
    end = to_naive_utc(end) or utcnow()
    income, expense = _income_expense(db, _period_filters(user_id, start, end))
    net = income - expense
    savings_rate = (net / income * 100).quantize(Decimal("0.1")) if income > 0 else Decimal("0")

    return {
        "start": to_naive_utc(start),
        "end": end,
        "total_income": income,
        "total_expense": expense,
        "net_cash_flow": net,
        "savings_rate": savings_rate,
    }


def category_breakdown(
    db: Session,
    user_id: str,
    transaction_type: TransactionType = TransactionType.EXPENSE,
    start: datetime | None = None,
    end: datetime | None = None,
) -> List[Dict[str, Any]]:
    """Totals per category for one transaction type, largest first."""
    total_col = func.coalesce(func.sum(Transaction.amount), 0)

    rows = (
        db.query(
            Category.id.label("category_id"),
            Category.name.label("category_name"),
            Category.icon,
            Category.color,
            total_col.label("total"),
            func.count(Transaction.id).label("count"),
        )
        .select_from(Transaction)
        .join(Category, Category.id == Transaction.category_id)
        .filter(
            *_period_filters(user_id, start, end),
            Transaction.transaction_type == TransactionType(transaction_type),
        )
        .group_by(Category.id, Category.name, Category.icon, Category.color)
        .order_by(total_col.desc())
        .all()
    )

    grand_total = sum((_money(r.total) for r in rows), ZERO)
    return [
        {
            "category_id": r.category_id,
            "category_name": r.category_name,
            "icon": r.icon,
            "color": r.color,
            "total_amount": _money(r.total),
            "percentage": (_money(r.total) / grand_total * 100).quantize(CENT) if grand_total > 0 else ZERO,
            "transaction_count": int(r.count),
        }
        for r in rows
    ]


def _compare(current: Decimal, previous: Decimal) -> Dict[str, Any]:
    difference = current - previous
    if previous == 0:
        change = Decimal("100") if current > 0 else Decimal("0")
    else:
        change = (difference / previous * 100).quantize(Decimal("0.1"))

    status = "STAGNANT"
    if difference > 0:
        status = "INCREASED"
    elif difference < 0:
        status = "DECREASED"

    return {
        "current": current,
        "previous": previous,
        "difference": difference,
        "percentage_change": change,
        "status": status,
    }


def month_comparison(db: Session, user_id: str, year: int, month: int) -> Dict[str, Any]:
    """Income and expense of (year, month) against the month before."""
    current_start, current_end = get_month_range(year, month)
    prev_year, prev_month = previous_month(year, month)
    prev_start, prev_end = get_month_range(prev_year, prev_month)

    cur_income, cur_expense = _income_expense(db, _period_filters(user_id, current_start, current_end))
    prev_income, prev_expense = _income_expense(db, _period_filters(user_id, prev_start, prev_end))

    return {
        "current_period": f"{year:04d}-{month:02d}",
        "previous_period": f"{prev_year:04d}-{prev_month:02d}",
        "income": _compare(cur_income, prev_income),
        "expense": _compare(cur_expense, prev_expense),
    }
