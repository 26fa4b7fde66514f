"""
Tests for the audit logger.
"""

from datetime import datetime
from decimal import Decimal

from finance_ledger.models import AuditAction, AuditLog, CategoryType, TransactionType
from finance_ledger.services import transactions as tx_service
from finance_ledger.services.audit import AuditLogger, serialize_details


class TestAuditLogger:

    def test_inline_write(self, db, user, session_factory):
        audit = AuditLogger(session_factory, ip_address="10.0.0.1", user_agent="pytest")
        audit.record(user.id, AuditAction.ACCOUNT_CREATE, "Account", "acc-1", "Created account")

        db.expire_all()
        entry = db.query(AuditLog).one()
        assert entry.action_type == AuditAction.ACCOUNT_CREATE
        assert entry.ip_address == "10.0.0.1"
        assert entry.user_id == user.id

    def test_failures_are_swallowed(self):
        def broken_factory():
            raise RuntimeError("database is gone")

        audit = AuditLogger(broken_factory)
        entry = {
            "user_id": "u",
            "action_type": AuditAction.BUDGET_DELETE,
            "entity_type": "Budget",
            "entity_id": "b",
            "description": "x",
            "details": None,
            "ip_address": None,
            "user_agent": None,
            "created_at": datetime(2024, 1, 1),
        }
        assert audit.write(entry) is False

    def test_failed_audit_does_not_undo_ledger_write(self, db, user, make_account, make_category, balance):
        def broken_factory():
            raise RuntimeError("database is gone")

        wallet = make_account(user, initial_balance="100")
        food = make_category(user, "Food", CategoryType.EXPENSE)

        tx = tx_service.create_transaction(
            db, user.id, TransactionType.EXPENSE, "30",
            source_account_id=wallet.id, category_id=food.id,
            audit=AuditLogger(broken_factory),
        )

        assert tx.id
        assert balance(wallet.id) == Decimal("70.00")

    def test_transaction_entries_carry_snapshot(self, db, user, make_account, make_category, session_factory):
        wallet = make_account(user, initial_balance="100")
        food = make_category(user, "Food", CategoryType.EXPENSE)

        tx = tx_service.create_transaction(
            db, user.id, TransactionType.EXPENSE, "30",
            source_account_id=wallet.id, category_id=food.id,
            audit=AuditLogger(session_factory),
        )

        db.expire_all()
        entry = db.query(AuditLog).one()
        assert entry.action_type == AuditAction.TRANSACTION_CREATE_EXPENSE
        assert entry.entity_id == tx.id
        assert entry.details["amount"] == "30.00"
        assert entry.details["transaction_type"] == "EXPENSE"


def test_serialize_details():
    out = serialize_details(
        {
            "amount": Decimal("1.50"),
            "when": datetime(2024, 1, 2, 3, 4),
            "kind": TransactionType.INCOME,
            "nested": {"flag": True, "none": None},
        }
    )
    assert out == {
        "amount": "1.50",
        "when": "2024-01-02T03:04:00",
        "kind": "INCOME",
        "nested": {"flag": True, "none": None},
    }
