# services/budgets.py
"""
Monthly category budgets and the budget-vs-actual report.

Budgets are declarative: the ledger never writes to them. The report
compares each cap with the EXPENSE total of its category for the month.
"""

from decimal import Decimal
from typing import Any, Dict, List

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from finance_ledger.errors import ConflictError, NotFoundError, ValidationError
from finance_ledger.models import (
    AuditAction,
    Budget,
    Category,
    CategoryType,
    Transaction,
    TransactionType,
)
from finance_ledger.services.audit import AuditLogger, serialize_details
from finance_ledger.services.ledger import normalize_amount, visible_category_filter
from finance_ledger.services.periods import get_month_range

logger = structlog.get_logger(__name__)

MIN_YEAR, MAX_YEAR = 2000, 2100

# Health thresholds (percent of the cap)
WARNING_AT = Decimal("80")
EXCEEDED_ABOVE = Decimal("100")

DUPLICATE_MESSAGE = "Budget for this category, month, and year already exists"


def _check_period(year: int, month: int) -> None:
    if not (MIN_YEAR <= year <= MAX_YEAR):
        raise ValidationError(f"year must be between {MIN_YEAR} and {MAX_YEAR}", field="year")
    if not (1 <= month <= 12):
        raise ValidationError("month must be between 1 and 12", field="month")


def _check_category(db: Session, user_id: str, category_id: str) -> Category:
    category = (
        db.query(Category)
        .filter(Category.id == category_id, visible_category_filter(user_id))
        .first()
    )
    if category is None:
        raise NotFoundError("Category not found")
    # The report only sums EXPENSE postings
    if category.category_type != CategoryType.EXPENSE:
        raise ValidationError("Budgets can only be set on EXPENSE categories", field="category_id")
    return category


def _commit_budget(db: Session) -> None:
    # The unique constraint on (user, category, year, month) is the source of truth
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(DUPLICATE_MESSAGE)
    except Exception:
        db.rollback()
        raise


# -------------------------------------------------------------------
# CRUD
# -------------------------------------------------------------------

def create_budget(
    db: Session,
    user_id: str,
    category_id: str,
    year: int,
    month: int,
    amount,
    description: str | None = None,
    audit: AuditLogger | None = None,
) -> Budget:
    _check_period(year, month)
    amount = normalize_amount(amount, allow_zero=True)
    _check_category(db, user_id, category_id)

    budget = Budget(
        user_id=user_id,
        category_id=category_id,
        year=year,
        month=month,
        amount=amount,
        description=description,
    )
    db.add(budget)
    _commit_budget(db)
    db.refresh(budget)

    if audit is not None:
        audit.record(
            user_id,
            AuditAction.BUDGET_CREATE,
            "Budget",
            budget.id,
            f"User created budget {year}-{month:02d} of {budget.amount}",
            serialize_details(
                {"category_id": category_id, "year": year, "month": month, "amount": budget.amount}
            ),
        )
    return budget


def list_budgets(
    db: Session,
    user_id: str,
    year: int | None = None,
    month: int | None = None,
    category_id: str | None = None,
) -> List[Budget]:
    query = db.query(Budget).options(joinedload(Budget.category)).filter(Budget.user_id == user_id)
    if year:
        query = query.filter(Budget.year == year)
    if month:
        query = query.filter(Budget.month == month)
    if category_id:
        query = query.filter(Budget.category_id == category_id)
    return query.order_by(Budget.year.desc(), Budget.month.desc()).all()


def get_budget(db: Session, user_id: str, budget_id: str) -> Budget:
    budget = (
        db.query(Budget)
        .options(joinedload(Budget.category))
        .filter(Budget.id == budget_id, Budget.user_id == user_id)
        .first()
    )
    if budget is None:
        raise NotFoundError("Budget not found")
    return budget


def update_budget(
    db: Session,
    user_id: str,
    budget_id: str,
    patch: Dict[str, Any],
    audit: AuditLogger | None = None,
) -> Budget:
    budget = get_budget(db, user_id, budget_id)
    changes: Dict[str, Any] = {}

    if patch.get("category_id") is not None:
        _check_category(db, user_id, patch["category_id"])
        changes["category_id"] = patch["category_id"]
    if patch.get("year") is not None:
        changes["year"] = patch["year"]
    if patch.get("month") is not None:
        changes["month"] = patch["month"]
    if patch.get("amount") is not None:
        changes["amount"] = normalize_amount(patch["amount"], allow_zero=True)
    if "description" in patch:
        changes["description"] = patch["description"]

    _check_period(changes.get("year", budget.year), changes.get("month", budget.month))

    if not changes:
        return budget

    for key, value in changes.items():
        setattr(budget, key, value)
    _commit_budget(db)

    if audit is not None:
        audit.record(
            user_id,
            AuditAction.BUDGET_UPDATE,
            "Budget",
            budget_id,
            f"User updated budget {budget_id}",
            serialize_details(changes),
        )
    return get_budget(db, user_id, budget_id)


def remove_budget(
    db: Session,
    user_id: str,
    budget_id: str,
    audit: AuditLogger | None = None,
) -> Dict[str, str]:
    budget = get_budget(db, user_id, budget_id)
    db.delete(budget)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

    if audit is not None:
        audit.record(
            user_id,
            AuditAction.BUDGET_DELETE,
            "Budget",
            budget_id,
            f"User deleted budget {budget_id}",
        )
    return {"id": budget_id, "message": "Budget deleted"}


# -------------------------------------------------------------------
# Report
# -------------------------------------------------------------------

def health_status(percentage: Decimal, capped: Decimal, spent: Decimal) -> str:
    # A zero cap reports 0% but any spending still exceeds it
    if percentage > EXCEEDED_ABOVE or (capped == 0 and spent > 0):
        return "EXCEEDED"
    if percentage >= WARNING_AT:
        return "WARNING"
    return "SAFE"


def budget_report(db: Session, user_id: str, year: int, month: int) -> List[Dict[str, Any]]:
    """
    Budget vs actual for every budget of (user, year, month).

    spent       EXPENSE total of the budget's category within the month
    remaining   amount - spent (negative once overspent)
    percentage  spent / amount * 100, or 0 when amount is 0
    """
    _check_period(year, month)
    start, end = get_month_range(year, month)

    budgets = (
        db.query(Budget)
        .options(joinedload(Budget.category))
        .filter(Budget.user_id == user_id, Budget.year == year, Budget.month == month)
        .all()
    )
    if not budgets:
        return []

    rows = (
        db.query(
            Transaction.category_id,
            func.coalesce(func.sum(Transaction.amount), 0).label("spent"),
        )
        .filter(
            Transaction.user_id == user_id,
            Transaction.transaction_type == TransactionType.EXPENSE,
            Transaction.transaction_date >= start,
            Transaction.transaction_date <= end,
            Transaction.category_id.in_([b.category_id for b in budgets]),
        )
        .group_by(Transaction.category_id)
        .all()
    )
    spent_by_category = {r.category_id: Decimal(str(r.spent)).quantize(Decimal("0.01")) for r in rows}

    report: List[Dict[str, Any]] = []
    for budget in budgets:
        capped = Decimal(budget.amount)
        spent = spent_by_category.get(budget.category_id, Decimal("0.00"))
        if capped > 0:
            percentage = (spent / capped * 100).quantize(Decimal("0.01"))
        else:
            percentage = Decimal("0")

        report.append(
            {
                "budget_id": budget.id,
                "category_id": budget.category_id,
                "category_name": budget.category.name if budget.category else None,
                "year": budget.year,
                "month": budget.month,
                "amount": capped,
                "spent": spent,
                "remaining": capped - spent,
                "percentage": percentage,
                "status": health_status(percentage, capped, spent),
            }
        )

    return sorted(report, key=lambda r: r["percentage"], reverse=True)
