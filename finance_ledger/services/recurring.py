# services/recurring.py
"""
Recurring transaction templates and the daily posting run.

Lifecycle of a template:
    ACTIVE --(posting)--> ACTIVE   next_run_date advances one interval
    ACTIVE --(end_date passed)--> INACTIVE   (terminal)

create_recurring posts the first transaction for the start date right
away. run_due_recurring posts every due template, each in its own unit
of work, so one failing template never blocks the others.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List

import structlog
from sqlalchemy.orm import Session, joinedload

from finance_ledger.errors import NotFoundError, ValidationError
from finance_ledger.models import (
    AuditAction,
    RecurringInterval,
    RecurringStatus,
    RecurringTransaction,
    Transaction,
    TransactionType,
)
from finance_ledger.services.audit import AuditLogger, serialize_details
from finance_ledger.services.ledger import (
    apply_effects,
    balance_effects,
    normalize_amount,
    validate_posting,
)
from finance_ledger.services.periods import next_run_date, to_naive_utc, utcnow

logger = structlog.get_logger(__name__)

# How many recent postings get_recurring returns
RECENT_POSTINGS = 10


@dataclass
class TickResult:
    posted: List[str] = field(default_factory=list)
    deactivated: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def _post(db: Session, rt: RecurringTransaction, when: datetime) -> Transaction:
    """
    Add one concrete transaction for `rt` and apply its balance effect.
    Caller owns the commit.
    """
    tx = Transaction(
        user_id=rt.user_id,
        transaction_type=rt.transaction_type,
        amount=rt.amount,
        transaction_date=when,
        description=rt.description,
        category_id=rt.category_id,
        source_account_id=rt.source_account_id,
        destination_account_id=rt.destination_account_id,
        recurring_transaction_id=rt.id,
    )
    db.add(tx)
    apply_effects(
        db,
        balance_effects(rt.transaction_type, rt.amount, rt.source_account_id, rt.destination_account_id),
    )
    return tx


# -------------------------------------------------------------------
# CRUD
# -------------------------------------------------------------------

def create_recurring(
    db: Session,
    user_id: str,
    transaction_type: TransactionType,
    amount,
    interval: RecurringInterval,
    start_date: datetime | None = None,
    transaction_date: datetime | None = None,
    end_date: datetime | None = None,
    source_account_id: str | None = None,
    destination_account_id: str | None = None,
    category_id: str | None = None,
    description: str | None = None,
    audit: AuditLogger | None = None,
) -> RecurringTransaction:
    """
    Create a template and post its first transaction, dated at the start date.

    start_date wins over transaction_date; one of them is required.
    """
    transaction_type = TransactionType(transaction_type)
    interval = RecurringInterval(interval)
    amount = normalize_amount(amount)

    effective_start = to_naive_utc(start_date or transaction_date)
    if effective_start is None:
        raise ValidationError(
            "Either start_date or transaction_date must be provided", field="start_date"
        )
    end_date = to_naive_utc(end_date)
    if end_date is not None and end_date < effective_start:
        raise ValidationError("end_date cannot be before the start date", field="end_date")

    validate_posting(
        db, user_id, transaction_type, source_account_id, destination_account_id, category_id
    )

    rt = RecurringTransaction(
        user_id=user_id,
        transaction_type=transaction_type,
        amount=amount,
        description=description,
        category_id=category_id,
        source_account_id=source_account_id,
        destination_account_id=destination_account_id,
        interval=interval,
        start_date=effective_start,
        end_date=end_date,
        status=RecurringStatus.ACTIVE,
        last_run_date=effective_start,
        next_run_date=next_run_date(effective_start, interval),
    )

    try:
        db.add(rt)
        db.flush()
        first = _post(db, rt, effective_start)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("recurring_create_failed", user_id=user_id)
        raise

    db.refresh(rt)
    logger.info(
        "recurring_created",
        recurring_id=rt.id,
        interval=interval.value,
        next_run_date=rt.next_run_date.isoformat(),
    )

    if audit is not None:
        audit.record(
            user_id,
            AuditAction.RECURRING_CREATE,
            "RecurringTransaction",
            rt.id,
            f"User created {interval.value.lower()} recurring {transaction_type.value.lower()} of {rt.amount}",
            serialize_details(
                {
                    "amount": rt.amount,
                    "transaction_type": transaction_type,
                    "interval": interval,
                    "start_date": rt.start_date,
                    "end_date": rt.end_date,
                    "first_transaction_id": first.id,
                }
            ),
        )
    return rt


def list_recurring(db: Session, user_id: str) -> List[RecurringTransaction]:
    """ACTIVE templates first, newest first within each status."""
    return (
        db.query(RecurringTransaction)
        .options(
            joinedload(RecurringTransaction.category),
            joinedload(RecurringTransaction.source_account),
            joinedload(RecurringTransaction.destination_account),
        )
        .filter(RecurringTransaction.user_id == user_id)
        .order_by(RecurringTransaction.status.asc(), RecurringTransaction.created_at.desc())
        .all()
    )


def get_recurring(db: Session, user_id: str, recurring_id: str) -> RecurringTransaction:
    rt = (
        db.query(RecurringTransaction)
        .filter(RecurringTransaction.id == recurring_id, RecurringTransaction.user_id == user_id)
        .first()
    )
    if rt is None:
        raise NotFoundError("Recurring transaction not found")
    return rt


def recent_postings(db: Session, rt: RecurringTransaction, limit: int = RECENT_POSTINGS) -> List[Transaction]:
    return (
        db.query(Transaction)
        .filter(Transaction.recurring_transaction_id == rt.id)
        .order_by(Transaction.transaction_date.desc())
        .limit(limit)
        .all()
    )


def remove_recurring(
    db: Session,
    user_id: str,
    recurring_id: str,
    audit: AuditLogger | None = None,
) -> Dict[str, str]:
    """
    Delete a template. Transactions it already posted stay in the ledger,
    detached from the template.
    """
    rt = get_recurring(db, user_id, recurring_id)

    try:
        db.query(Transaction).filter(Transaction.recurring_transaction_id == rt.id).update(
            {Transaction.recurring_transaction_id: None}, synchronize_session=False
        )
        db.delete(rt)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("recurring_delete_failed", recurring_id=recurring_id)
        raise

    if audit is not None:
        audit.record(
            user_id,
            AuditAction.RECURRING_DELETE,
            "RecurringTransaction",
            recurring_id,
            f"User deleted recurring transaction {recurring_id}",
        )
    return {"id": recurring_id, "message": "Recurring transaction deleted"}


# -------------------------------------------------------------------
# Scheduler tick
# -------------------------------------------------------------------

def run_due_recurring(
    db: Session,
    now: datetime | None = None,
    audit: AuditLogger | None = None,
) -> TickResult:
    """
    Post every ACTIVE template whose next_run_date <= now.

    - end_date already passed: flip to INACTIVE, post nothing
    - otherwise: post a transaction dated `now`, apply balances, set
      last_run_date = now and next_run_date = next step, in one commit
    - an item that fails is rolled back and logged; the run continues
    """
    now = to_naive_utc(now) or utcnow()
    result = TickResult()

    due_ids = [
        row.id
        for row in db.query(RecurringTransaction.id)
        .filter(
            RecurringTransaction.status == RecurringStatus.ACTIVE,
            RecurringTransaction.next_run_date <= now,
        )
        .order_by(RecurringTransaction.next_run_date.asc())
        .all()
    ]
    logger.info("recurring_run_started", due=len(due_ids), now=now.isoformat())

    for rt_id in due_ids:
        try:
            rt = db.get(RecurringTransaction, rt_id)
            # Deleted or already advanced since due_ids was read
            if (
                rt is None
                or rt.status != RecurringStatus.ACTIVE
                or rt.next_run_date > now
            ):
                logger.info("recurring_skipped", recurring_id=rt_id)
                continue

            if rt.end_date is not None and rt.end_date < now:
                rt.status = RecurringStatus.INACTIVE
                db.commit()
                result.deactivated.append(rt_id)
                logger.info("recurring_deactivated", recurring_id=rt_id)
                continue

            tx = _post(db, rt, now)
            rt.last_run_date = now
            rt.next_run_date = next_run_date(rt.next_run_date, rt.interval)
            db.commit()
        except Exception as e:
            db.rollback()
            result.failed.append(rt_id)
            logger.error("recurring_post_failed", recurring_id=rt_id, error=repr(e))
            continue

        result.posted.append(rt_id)
        logger.info(
            "recurring_posted",
            recurring_id=rt_id,
            transaction_id=tx.id,
            next_run_date=rt.next_run_date.isoformat(),
        )
        if audit is not None:
            audit.record(
                rt.user_id,
                AuditAction.RECURRING_POST,
                "Transaction",
                tx.id,
                f"Scheduler posted recurring transaction {rt_id}",
                serialize_details({"recurring_transaction_id": rt_id, "amount": tx.amount}),
            )

    logger.info(
        "recurring_run_finished",
        posted=len(result.posted),
        deactivated=len(result.deactivated),
        failed=len(result.failed),
    )
    return result
