"""
Tests for balance bookkeeping and the transaction ledger services.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from finance_ledger.errors import LedgerIntegrityError, NotFoundError, PermissionDenied, ValidationError
from finance_ledger.models import CategoryType, Transaction, TransactionType
from finance_ledger.services import ledger
from finance_ledger.services import transactions as tx_service


@pytest.fixture
def salary(make_category):
    return make_category(None, "Salary", CategoryType.INCOME)


@pytest.fixture
def groceries(make_category, user):
    return make_category(user, "Groceries", CategoryType.EXPENSE)


class TestBalanceEffects:
    """Signed deltas per transaction type."""

    def test_income_credits_destination(self):
        assert ledger.balance_effects(TransactionType.INCOME, Decimal("5"), None, "d") == [("d", Decimal("5"))]

    def test_expense_debits_source(self):
        assert ledger.balance_effects(TransactionType.EXPENSE, Decimal("5"), "s", None) == [("s", Decimal("-5"))]

    def test_transfer_moves_between_accounts(self):
        effects = ledger.balance_effects(TransactionType.TRANSFER, Decimal("5"), "s", "d")
        assert effects == [("s", Decimal("-5")), ("d", Decimal("5"))]
        assert ledger.reversal_effects(effects) == [("s", Decimal("5")), ("d", Decimal("-5"))]

    def test_missing_reference_is_integrity_error(self):
        with pytest.raises(LedgerIntegrityError):
            ledger.balance_effects(TransactionType.TRANSFER, Decimal("5"), "s", None)
        with pytest.raises(LedgerIntegrityError):
            ledger.balance_effects(TransactionType.INCOME, Decimal("5"), "s", None)

    def test_apply_delta_on_unknown_account_fails(self, db):
        with pytest.raises(LedgerIntegrityError):
            ledger.apply_delta(db, "no-such-account", Decimal("1"))
        db.rollback()


class TestNormalizeAmount:

    def test_accepts_two_decimals(self):
        assert ledger.normalize_amount("12.5") == Decimal("12.50")

    @pytest.mark.parametrize("value", ["0", "-1", "1.005", "abc", "NaN"])
    def test_rejects_bad_amounts(self, value):
        with pytest.raises(ValidationError):
            ledger.normalize_amount(value)

    def test_zero_allowed_when_asked(self):
        assert ledger.normalize_amount("0", allow_zero=True) == Decimal("0.00")


class TestCreateTransaction:

    def test_income_raises_destination_balance(self, db, user, make_account, salary, balance):
        wallet = make_account(user, initial_balance="100")
        tx = tx_service.create_transaction(
            db, user.id, TransactionType.INCOME, "250.00",
            destination_account_id=wallet.id, category_id=salary.id,
        )
        assert tx.amount == Decimal("250.00")
        assert balance(wallet.id) == Decimal("350.00")

    def test_expense_lowers_source_balance(self, db, user, make_account, groceries, balance):
        wallet = make_account(user, initial_balance="100")
        tx_service.create_transaction(
            db, user.id, TransactionType.EXPENSE, "40",
            source_account_id=wallet.id, category_id=groceries.id,
        )
        assert balance(wallet.id) == Decimal("60.00")

    def test_transfer_moves_money(self, db, user, make_account, balance):
        a = make_account(user, "A", initial_balance="1000")
        b = make_account(user, "B", initial_balance="0")
        tx_service.create_transaction(
            db, user.id, TransactionType.TRANSFER, "300",
            source_account_id=a.id, destination_account_id=b.id,
        )
        assert balance(a.id) == Decimal("700.00")
        assert balance(b.id) == Decimal("300.00")

    def test_transfer_is_all_or_nothing(self, db, user, make_account, balance, monkeypatch):
        """If the second balance update fails, the first one is rolled back too."""
        a = make_account(user, "A", initial_balance="1000")
        b = make_account(user, "B", initial_balance="0")

        real_apply_delta = ledger.apply_delta
        calls = []

        def failing_second_update(session, account_id, amount):
            calls.append(account_id)
            if len(calls) == 2:
                raise LedgerIntegrityError("simulated failure")
            real_apply_delta(session, account_id, amount)

        monkeypatch.setattr(ledger, "apply_delta", failing_second_update)

        with pytest.raises(LedgerIntegrityError):
            tx_service.create_transaction(
                db, user.id, TransactionType.TRANSFER, "300",
                source_account_id=a.id, destination_account_id=b.id,
            )

        assert len(calls) == 2
        assert balance(a.id) == Decimal("1000.00")
        assert balance(b.id) == Decimal("0.00")
        assert db.query(Transaction).count() == 0

    def test_foreign_account_is_permission_denied(self, db, user, make_user, make_account, groceries, balance):
        other = make_user("bob")
        theirs = make_account(other, initial_balance="50")
        with pytest.raises(PermissionDenied):
            tx_service.create_transaction(
                db, user.id, TransactionType.EXPENSE, "10",
                source_account_id=theirs.id, category_id=groceries.id,
            )
        assert balance(theirs.id) == Decimal("50.00")
        assert db.query(Transaction).count() == 0

    def test_foreign_category_is_permission_denied(self, db, user, make_user, make_account, make_category):
        wallet = make_account(user)
        other_category = make_category(make_user("bob"), "Hobby", CategoryType.EXPENSE)
        with pytest.raises(PermissionDenied):
            tx_service.create_transaction(
                db, user.id, TransactionType.EXPENSE, "10",
                source_account_id=wallet.id, category_id=other_category.id,
            )

    def test_category_type_must_match(self, db, user, make_account, salary):
        wallet = make_account(user)
        with pytest.raises(ValidationError):
            tx_service.create_transaction(
                db, user.id, TransactionType.EXPENSE, "10",
                source_account_id=wallet.id, category_id=salary.id,
            )

    def test_transfer_shape_rules(self, db, user, make_account, groceries):
        a = make_account(user, "A")
        b = make_account(user, "B")
        with pytest.raises(ValidationError):
            tx_service.create_transaction(
                db, user.id, TransactionType.TRANSFER, "1",
                source_account_id=a.id, destination_account_id=a.id,
            )
        with pytest.raises(ValidationError):
            tx_service.create_transaction(
                db, user.id, TransactionType.TRANSFER, "1",
                source_account_id=a.id, destination_account_id=b.id, category_id=groceries.id,
            )

    def test_income_rejects_source_account(self, db, user, make_account, salary):
        a = make_account(user, "A")
        b = make_account(user, "B")
        with pytest.raises(ValidationError):
            tx_service.create_transaction(
                db, user.id, TransactionType.INCOME, "1",
                source_account_id=a.id, destination_account_id=b.id, category_id=salary.id,
            )

    def test_balance_matches_initial_plus_history(self, db, user, make_account, salary, groceries, balance):
        wallet = make_account(user, "Wallet", initial_balance="500")
        savings = make_account(user, "Savings", initial_balance="0")

        tx_service.create_transaction(db, user.id, TransactionType.INCOME, "1200",
                                      destination_account_id=wallet.id, category_id=salary.id)
        tx_service.create_transaction(db, user.id, TransactionType.EXPENSE, "85.40",
                                      source_account_id=wallet.id, category_id=groceries.id)
        tx_service.create_transaction(db, user.id, TransactionType.TRANSFER, "400",
                                      source_account_id=wallet.id, destination_account_id=savings.id)

        assert balance(wallet.id) == Decimal("500") + Decimal("1200") - Decimal("85.40") - Decimal("400")
        assert balance(savings.id) == Decimal("400.00")


class TestRemoveTransaction:

    def test_remove_restores_balances(self, db, user, make_account, balance):
        a = make_account(user, "A", initial_balance="1000")
        b = make_account(user, "B", initial_balance="0")
        tx = tx_service.create_transaction(
            db, user.id, TransactionType.TRANSFER, "300",
            source_account_id=a.id, destination_account_id=b.id,
        )

        result = tx_service.remove_transaction(db, user.id, tx.id)

        assert result["id"] == tx.id
        assert balance(a.id) == Decimal("1000.00")
        assert balance(b.id) == Decimal("0.00")
        assert db.query(Transaction).count() == 0

    def test_remove_unknown_is_not_found(self, db, user):
        with pytest.raises(NotFoundError):
            tx_service.remove_transaction(db, user.id, "missing")

    def test_remove_fails_closed_on_malformed_row(self, db, user, make_account, balance):
        """An EXPENSE row without a source account cannot be reversed; nothing changes."""
        wallet = make_account(user, initial_balance="100")
        broken = Transaction(
            user_id=user.id,
            transaction_type=TransactionType.EXPENSE,
            amount=Decimal("10"),
            transaction_date=datetime(2024, 1, 1),
        )
        db.add(broken)
        db.commit()

        with pytest.raises(LedgerIntegrityError):
            tx_service.remove_transaction(db, user.id, broken.id)

        assert db.query(Transaction).count() == 1
        assert balance(wallet.id) == Decimal("100.00")


class TestUpdateTransaction:

    @pytest.fixture
    def expense(self, db, user, make_account, groceries):
        wallet = make_account(user, initial_balance="100")
        return tx_service.create_transaction(
            db, user.id, TransactionType.EXPENSE, "20",
            source_account_id=wallet.id, category_id=groceries.id, description="milk",
        )

    def test_description_and_date_change(self, db, user, expense):
        updated = tx_service.update_transaction(
            db, user.id, expense.id,
            {"description": "bread", "transaction_date": datetime(2024, 5, 1, 9, 30)},
        )
        assert updated.description == "bread"
        assert updated.transaction_date == datetime(2024, 5, 1, 9, 30)

    def test_amount_change_rejected(self, db, user, expense):
        with pytest.raises(ValidationError) as exc:
            tx_service.update_transaction(db, user.id, expense.id, {"amount": Decimal("25")})
        assert exc.value.field == "amount"

    def test_unchanged_immutable_fields_accepted(self, db, user, expense):
        updated = tx_service.update_transaction(
            db, user.id, expense.id,
            {"amount": Decimal("20.00"), "transaction_type": "EXPENSE", "description": "same"},
        )
        assert updated.description == "same"

    def test_account_change_rejected(self, db, user, expense, make_account):
        other = make_account(user, "Other")
        with pytest.raises(ValidationError):
            tx_service.update_transaction(db, user.id, expense.id, {"source_account_id": other.id})

    def test_date_cannot_be_cleared(self, db, user, expense):
        with pytest.raises(ValidationError):
            tx_service.update_transaction(db, user.id, expense.id, {"transaction_date": None})

    def test_category_cannot_be_removed_from_expense(self, db, user, expense):
        with pytest.raises(ValidationError):
            tx_service.update_transaction(db, user.id, expense.id, {"category_id": None})

    def test_category_change_checks_type(self, db, user, expense, salary, make_category):
        with pytest.raises(ValidationError):
            tx_service.update_transaction(db, user.id, expense.id, {"category_id": salary.id})

        dining = make_category(user, "Dining", CategoryType.EXPENSE)
        updated = tx_service.update_transaction(db, user.id, expense.id, {"category_id": dining.id})
        assert updated.category_id == dining.id

    def test_transfer_category_rules(self, db, user, make_account, groceries):
        a = make_account(user, "A", initial_balance="10")
        b = make_account(user, "B")
        transfer = tx_service.create_transaction(
            db, user.id, TransactionType.TRANSFER, "5",
            source_account_id=a.id, destination_account_id=b.id,
        )
        with pytest.raises(ValidationError):
            tx_service.update_transaction(db, user.id, transfer.id, {"category_id": groceries.id})

        updated = tx_service.update_transaction(db, user.id, transfer.id, {"category_id": None})
        assert updated.category_id is None

    def test_balances_untouched_by_update(self, db, user, expense, balance):
        tx_service.update_transaction(db, user.id, expense.id, {"description": "x"})
        assert balance(expense.source_account_id) == Decimal("80.00")


class TestListTransactions:

    @pytest.fixture
    def history(self, db, user, make_account, groceries, salary):
        wallet = make_account(user, "Wallet", initial_balance="1000")
        bank = make_account(user, "Bank", initial_balance="0")
        for day in range(1, 6):
            tx_service.create_transaction(
                db, user.id, TransactionType.EXPENSE, str(day),
                source_account_id=wallet.id, category_id=groceries.id,
                transaction_date=datetime(2024, 3, day), description=f"shop {day}",
            )
        tx_service.create_transaction(
            db, user.id, TransactionType.INCOME, "900",
            destination_account_id=bank.id, category_id=salary.id,
            transaction_date=datetime(2024, 3, 10), description="March salary",
        )
        return wallet, bank

    def test_pagination_meta(self, db, user, history):
        page = tx_service.list_transactions(db, user.id, page=2, limit=4)
        assert len(page["data"]) == 2
        assert page["meta"] == {
            "total": 6,
            "page": 2,
            "limit": 4,
            "last_page": 2,
            "has_next_page": False,
            "has_previous_page": True,
        }

    def test_default_order_is_newest_first(self, db, user, history):
        data = tx_service.list_transactions(db, user.id)["data"]
        assert data[0].description == "March salary"

    def test_filters(self, db, user, history):
        wallet, bank = history
        assert tx_service.list_transactions(db, user.id, account_id=bank.id)["meta"]["total"] == 1
        assert tx_service.list_transactions(db, user.id, search="salary")["meta"]["total"] == 1
        assert tx_service.list_transactions(
            db, user.id, transaction_type=TransactionType.EXPENSE,
            start_date=datetime(2024, 3, 2), end_date=datetime(2024, 3, 4),
        )["meta"]["total"] == 3

    def test_search_matches_wildcards_literally(self, db, user, history, groceries):
        wallet, _ = history
        tx_service.create_transaction(
            db, user.id, TransactionType.EXPENSE, "7",
            source_account_id=wallet.id, category_id=groceries.id,
            transaction_date=datetime(2024, 3, 11), description="50% off_sale",
        )
        assert tx_service.list_transactions(db, user.id, search="%")["meta"]["total"] == 1
        assert tx_service.list_transactions(db, user.id, search="off_sale")["meta"]["total"] == 1
        assert tx_service.list_transactions(db, user.id, search="shop_")["meta"]["total"] == 0

    def test_sort_by_amount_ascending(self, db, user, history):
        data = tx_service.list_transactions(db, user.id, sort_by="amount", sort_order="asc")["data"]
        assert [t.amount for t in data[:2]] == [Decimal("1.00"), Decimal("2.00")]

    def test_other_users_see_nothing(self, db, history, make_user):
        other = make_user("bob")
        assert tx_service.list_transactions(db, other.id)["meta"]["total"] == 0
