"""Test raw Plaid transaction formatting."""

from datetime import date
from decimal import Decimal

from conftest import PLAID_ITEM_ID, USER_ID, raw_transaction
from splitsync.schemas.transaction import (
    DEFAULT_CATEGORY,
    TransactionStatus,
    TransactionType,
    UNASSIGNED_BUDGET_ID,
)
from splitsync.services.transaction_formatter import (
    FALLBACK_DESCRIPTION,
    format_transaction,
    format_transactions,
)


class TestFormatTransaction:
    def test_expense(self, plaid_item):
        """Test a positive Plaid amount becomes an expense with one default split."""
        transaction = format_transaction(raw_transaction(amount=42.5), plaid_item, "USD")

        assert transaction.transaction_id == "txn-1"
        assert transaction.owner_id == USER_ID
        assert transaction.plaid_item_id == PLAID_ITEM_ID
        assert transaction.type == TransactionType.EXPENSE
        assert transaction.amount == Decimal("42.50")
        assert transaction.transaction_date == date(2025, 11, 15)
        assert transaction.description == "ConEd"
        assert transaction.status == TransactionStatus.APPROVED

        assert len(transaction.splits) == 1
        split = transaction.splits[0]
        assert split.split_id == "txn-1-default"
        assert split.amount == Decimal("42.50")
        assert split.budget_id == UNASSIGNED_BUDGET_ID
        assert split.is_default is True
        assert split.plaid_primary_category == "RENT_AND_UTILITIES"
        assert split.monthly_period_id is None
        assert split.outflow_id is None
        assert split.payment_date == date(2025, 11, 15)

    def test_amount_is_quantized_to_cents(self, plaid_item):
        """Test a sub-cent Plaid amount is rounded on the transaction and its default split."""
        transaction = format_transaction(raw_transaction(amount="12.345"), plaid_item, "USD")

        assert transaction.amount == Decimal("12.35")
        assert transaction.splits[0].amount == Decimal("12.35")

    def test_income(self, plaid_item):
        """Test a negative Plaid amount becomes income with an absolute amount."""
        transaction = format_transaction(raw_transaction(amount=-1500), plaid_item, "USD")

        assert transaction.type == TransactionType.INCOME
        assert transaction.amount == Decimal("1500.00")
        assert transaction.splits[0].amount == Decimal("1500.00")

    def test_missing_category_defaults(self, plaid_item):
        """Test a missing personal_finance_category uses the generic default."""
        transaction = format_transaction(raw_transaction(primary=None), plaid_item, "USD")

        assert transaction.plaid_primary_category == DEFAULT_CATEGORY
        assert transaction.splits[0].plaid_detailed_category == DEFAULT_CATEGORY

    def test_pending(self, plaid_item):
        """Test pending records are stored with pending status."""
        transaction = format_transaction(raw_transaction(pending=True), plaid_item, "USD")

        assert transaction.pending is True
        assert transaction.status == TransactionStatus.PENDING

    def test_description_fallbacks(self, plaid_item):
        """Test description uses merchant, then name, then a fixed label."""
        by_name = format_transaction(raw_transaction(merchant_name=None), plaid_item, "USD")
        assert by_name.description == "CON ED PAYMENT"

        fallback = format_transaction(
            raw_transaction(merchant_name=None, name=None), plaid_item, "USD"
        )
        assert fallback.description == FALLBACK_DESCRIPTION

    def test_currency_fallback(self, plaid_item):
        """Test the connection currency fills in a missing ISO code."""
        raw = raw_transaction(iso_currency_code=None)
        assert format_transaction(raw, plaid_item, "CAD").currency == "CAD"

    def test_malformed_records_return_none(self, plaid_item):
        """Test missing id, amount or a bad date are skipped."""
        assert format_transaction(raw_transaction(transaction_id=None), plaid_item, "USD") is None
        assert format_transaction(raw_transaction(amount=None), plaid_item, "USD") is None
        assert format_transaction(raw_transaction(txn_date="not-a-date"), plaid_item, "USD") is None
        assert format_transaction(raw_transaction(amount="abc"), plaid_item, "USD") is None


class TestFormatTransactions:
    def test_drops_malformed(self, plaid_item):
        """Test a page keeps the good records in order."""
        raws = [
            raw_transaction("txn-1"),
            raw_transaction("txn-2", amount=None),
            raw_transaction("txn-3"),
        ]
        formatted = format_transactions(raws, plaid_item, "USD")

        assert [t.transaction_id for t in formatted] == ["txn-1", "txn-3"]
