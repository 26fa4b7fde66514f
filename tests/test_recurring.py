"""
Tests for recurring templates, interval stepping and the daily posting run.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from finance_ledger.errors import NotFoundError, ValidationError
from finance_ledger.models import (
    Account,
    AuditAction,
    AuditLog,
    CategoryType,
    RecurringInterval,
    RecurringStatus,
    RecurringTransaction,
    Transaction,
    TransactionType,
)
from finance_ledger.scheduler import run_recurring_once, seconds_until_next_run
from finance_ledger.services import recurring
from finance_ledger.services.periods import next_run_date


@pytest.fixture
def rent(make_category, user):
    return make_category(user, "Rent", CategoryType.EXPENSE)


@pytest.fixture
def wallet(make_account, user):
    return make_account(user, "Wallet", initial_balance="1000")


def monthly_rent(db, user, wallet, rent, start=datetime(2024, 1, 15), **kwargs):
    return recurring.create_recurring(
        db,
        user.id,
        TransactionType.EXPENSE,
        "100",
        RecurringInterval.MONTHLY,
        start_date=start,
        source_account_id=wallet.id,
        category_id=rent.id,
        description="rent",
        **kwargs,
    )


class TestNextRunDate:

    def test_daily_and_weekly(self):
        start = datetime(2024, 2, 28, 8, 0)
        assert next_run_date(start, RecurringInterval.DAILY) == datetime(2024, 2, 29, 8, 0)
        assert next_run_date(start, RecurringInterval.WEEKLY) == datetime(2024, 3, 6, 8, 0)

    def test_monthly_clamps_to_month_end(self):
        """Jan 31 -> Feb 29 -> Mar 29: each step starts from the previous result."""
        first = next_run_date(datetime(2024, 1, 31), RecurringInterval.MONTHLY)
        second = next_run_date(first, RecurringInterval.MONTHLY)
        assert first == datetime(2024, 2, 29)
        assert second == datetime(2024, 3, 29)

    def test_yearly_from_leap_day(self):
        assert next_run_date(datetime(2024, 2, 29), RecurringInterval.YEARLY) == datetime(2025, 2, 28)


class TestCreateRecurring:

    def test_first_posting_and_schedule(self, db, user, wallet, rent, balance):
        rt = monthly_rent(db, user, wallet, rent)

        assert rt.status == RecurringStatus.ACTIVE
        assert rt.last_run_date == datetime(2024, 1, 15)
        assert rt.next_run_date == datetime(2024, 2, 15)

        postings = db.query(Transaction).filter(Transaction.recurring_transaction_id == rt.id).all()
        assert len(postings) == 1
        assert postings[0].transaction_date == datetime(2024, 1, 15)
        assert balance(wallet.id) == Decimal("900.00")

    def test_transaction_date_used_when_no_start_date(self, db, user, wallet, rent):
        rt = recurring.create_recurring(
            db, user.id, TransactionType.EXPENSE, "10", RecurringInterval.WEEKLY,
            transaction_date=datetime(2024, 6, 1),
            source_account_id=wallet.id, category_id=rent.id,
        )
        assert rt.start_date == datetime(2024, 6, 1)
        assert rt.next_run_date == datetime(2024, 6, 8)

    def test_start_required(self, db, user, wallet, rent):
        with pytest.raises(ValidationError):
            recurring.create_recurring(
                db, user.id, TransactionType.EXPENSE, "10", RecurringInterval.DAILY,
                source_account_id=wallet.id, category_id=rent.id,
            )

    def test_end_before_start_rejected(self, db, user, wallet, rent):
        with pytest.raises(ValidationError):
            monthly_rent(db, user, wallet, rent, end_date=datetime(2024, 1, 1))
        assert db.query(RecurringTransaction).count() == 0

    def test_invalid_template_writes_nothing(self, db, user, wallet, balance):
        with pytest.raises(ValidationError):
            recurring.create_recurring(
                db, user.id, TransactionType.EXPENSE, "10", RecurringInterval.DAILY,
                start_date=datetime(2024, 1, 1), source_account_id=wallet.id,
            )
        assert db.query(RecurringTransaction).count() == 0
        assert balance(wallet.id) == Decimal("1000.00")


class TestRunDueRecurring:

    def test_posts_due_template_and_advances(self, db, user, wallet, rent, balance):
        rt = monthly_rent(db, user, wallet, rent)

        result = recurring.run_due_recurring(db, now=datetime(2024, 2, 16))

        assert result.posted == [rt.id]
        db.refresh(rt)
        assert rt.last_run_date == datetime(2024, 2, 16)
        assert rt.next_run_date == datetime(2024, 3, 15)
        latest = recurring.recent_postings(db, rt)[0]
        assert latest.transaction_date == datetime(2024, 2, 16)
        assert balance(wallet.id) == Decimal("800.00")

    def test_not_due_is_left_alone(self, db, user, wallet, rent):
        monthly_rent(db, user, wallet, rent)
        result = recurring.run_due_recurring(db, now=datetime(2024, 2, 14))
        assert result.posted == []
        assert db.query(Transaction).count() == 1

    def test_posts_at_most_once_per_run(self, db, user, wallet, rent):
        """A template several periods behind catches up one posting per run."""
        rt = monthly_rent(db, user, wallet, rent)

        recurring.run_due_recurring(db, now=datetime(2024, 6, 1))

        db.refresh(rt)
        assert rt.next_run_date == datetime(2024, 3, 15)
        assert db.query(Transaction).count() == 2

    def test_expired_template_goes_inactive(self, db, user, wallet, rent, balance):
        rt = recurring.create_recurring(
            db, user.id, TransactionType.EXPENSE, "10", RecurringInterval.DAILY,
            start_date=datetime(2024, 1, 1), end_date=datetime(2024, 1, 20),
            source_account_id=wallet.id, category_id=rent.id,
        )

        result = recurring.run_due_recurring(db, now=datetime(2024, 2, 1))

        assert result.deactivated == [rt.id]
        assert result.posted == []
        db.refresh(rt)
        assert rt.status == RecurringStatus.INACTIVE
        assert db.query(Transaction).count() == 1
        assert balance(wallet.id) == Decimal("990.00")

        # INACTIVE is terminal
        again = recurring.run_due_recurring(db, now=datetime(2024, 3, 1))
        assert again.posted == [] and again.deactivated == []

    def test_one_failure_does_not_block_others(self, db, user, make_account, rent, balance):
        doomed = make_account(user, "Doomed", initial_balance="500")
        healthy = make_account(user, "Healthy", initial_balance="500")
        a = monthly_rent(db, user, doomed, rent)
        b = monthly_rent(db, user, healthy, rent)

        # Account vanishes underneath template A
        db.query(Account).filter(Account.id == doomed.id).delete(synchronize_session=False)
        db.commit()

        result = recurring.run_due_recurring(db, now=datetime(2024, 2, 16))

        assert result.failed == [a.id]
        assert result.posted == [b.id]
        db.refresh(a)
        assert a.next_run_date == datetime(2024, 2, 15)
        assert a.status == RecurringStatus.ACTIVE
        assert balance(healthy.id) == Decimal("300.00")

    def test_vanished_template_is_skipped(self, db, user, make_account, rent, monkeypatch):
        a = monthly_rent(db, user, make_account(user, "A", initial_balance="500"), rent)
        b = monthly_rent(db, user, make_account(user, "B", initial_balance="500"), rent)
        real_get = db.get

        def get_after_delete(entity, ident, **kwargs):
            if ident == a.id:
                return None
            return real_get(entity, ident, **kwargs)

        monkeypatch.setattr(db, "get", get_after_delete)
        result = recurring.run_due_recurring(db, now=datetime(2024, 2, 16))

        assert result.failed == []
        assert result.posted == [b.id]

    def test_template_advanced_elsewhere_is_skipped(self, db, user, wallet, rent, monkeypatch):
        rt = monthly_rent(db, user, wallet, rent)
        real_get = db.get

        def get_after_other_run(entity, ident, **kwargs):
            found = real_get(entity, ident, **kwargs)
            found.next_run_date = datetime(2024, 3, 15)
            return found

        monkeypatch.setattr(db, "get", get_after_other_run)
        result = recurring.run_due_recurring(db, now=datetime(2024, 2, 16))

        assert result.posted == [] and result.failed == []
        assert db.query(Transaction).filter(Transaction.recurring_transaction_id == rt.id).count() == 1

    def test_audits_postings(self, db, user, wallet, rent, session_factory):
        rt = monthly_rent(db, user, wallet, rent)

        result = run_recurring_once(session_factory, now=datetime(2024, 2, 16))

        assert result.posted == [rt.id]
        db.expire_all()
        entries = db.query(AuditLog).filter(AuditLog.action_type == AuditAction.RECURRING_POST).all()
        assert len(entries) == 1
        assert entries[0].user_id == user.id
        assert entries[0].details["recurring_transaction_id"] == rt.id


class TestReadAndDelete:

    def test_list_active_first(self, db, user, wallet, rent):
        old = recurring.create_recurring(
            db, user.id, TransactionType.EXPENSE, "10", RecurringInterval.DAILY,
            start_date=datetime(2024, 1, 1), end_date=datetime(2024, 1, 2),
            source_account_id=wallet.id, category_id=rent.id,
        )
        recurring.run_due_recurring(db, now=datetime(2024, 2, 1))
        current = monthly_rent(db, user, wallet, rent, start=datetime(2024, 2, 1))

        ids = [rt.id for rt in recurring.list_recurring(db, user.id)]
        assert ids == [current.id, old.id]

    def test_get_foreign_template_is_not_found(self, db, user, wallet, rent, make_user):
        rt = monthly_rent(db, user, wallet, rent)
        with pytest.raises(NotFoundError):
            recurring.get_recurring(db, make_user("bob").id, rt.id)

    def test_remove_keeps_posted_transactions(self, db, user, wallet, rent, balance):
        rt = monthly_rent(db, user, wallet, rent)
        recurring.run_due_recurring(db, now=datetime(2024, 2, 16))

        recurring.remove_recurring(db, user.id, rt.id)

        assert db.query(RecurringTransaction).count() == 0
        postings = db.query(Transaction).all()
        assert len(postings) == 2
        assert all(t.recurring_transaction_id is None for t in postings)
        assert balance(wallet.id) == Decimal("800.00")


class TestSchedulerTiming:

    def test_later_today(self):
        assert seconds_until_next_run(datetime(2024, 1, 1, 9, 59), 10) == 60

    def test_tomorrow_when_hour_passed(self):
        assert seconds_until_next_run(datetime(2024, 1, 1, 10, 0), 0) == 14 * 3600

    def test_exact_hour_waits_a_full_day(self):
        assert seconds_until_next_run(datetime(2024, 1, 1, 0, 0), 0) == 24 * 3600
