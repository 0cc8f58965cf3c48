"""Map raw Plaid transactions onto the stored transaction record."""

from datetime import date
from decimal import InvalidOperation

from pydantic import ValidationError

from splitsync.logging_config import get_logger
from splitsync.schemas.plaid import PlaidItem, RawTransaction
from splitsync.schemas.transaction import (
    DEFAULT_CATEGORY,
    Transaction,
    TransactionSplit,
    TransactionStatus,
    TransactionType,
    UNASSIGNED_BUDGET_ID,
)
from splitsync.utils.money import ZERO, to_cents, to_decimal


logger = get_logger("services.transaction_formatter")

FALLBACK_DESCRIPTION = "Bank Transaction"


class MalformedTransactionError(ValueError):
    """Raw upstream record is missing a field the pipeline needs."""


def default_split_id(transaction_id: str) -> str:
    return f"{transaction_id}-default"


def extract_categories(raw: RawTransaction) -> tuple[str, str]:
    """Primary and detailed personal finance category, generic if absent."""
    category = raw.get("personal_finance_category") or {}
    primary = category.get("primary") or DEFAULT_CATEGORY
    detailed = category.get("detailed") or DEFAULT_CATEGORY
    return primary, detailed


def build_transaction(raw: RawTransaction, item: PlaidItem, currency: str) -> Transaction:
    """
    Build a transaction with one default split from a raw Plaid record.

    Plaid reports outflows as positive amounts, so a positive amount is an
    expense and a negative one is income. The split carries the absolute
    amount; budget, period and outflow fields are left for the matchers.

    Raises:
        MalformedTransactionError: Missing id, amount or date.
        ValidationError: A field could not be coerced.
    """
    transaction_id = raw.get("transaction_id")
    if not transaction_id:
        raise MalformedTransactionError("missing transaction_id")
    if raw.get("amount") is None:
        raise MalformedTransactionError(f"{transaction_id}: missing amount")
    if not raw.get("date"):
        raise MalformedTransactionError(f"{transaction_id}: missing date")

    signed_amount = to_decimal(raw["amount"])
    transaction_type = TransactionType.EXPENSE if signed_amount > ZERO else TransactionType.INCOME
    amount = to_cents(abs(signed_amount))

    primary, detailed = extract_categories(raw)
    pending = bool(raw.get("pending", False))
    transaction_date = raw["date"]

    split = TransactionSplit(
        split_id=default_split_id(transaction_id),
        amount=amount,
        budget_id=UNASSIGNED_BUDGET_ID,
        is_default=True,
        plaid_primary_category=primary,
        plaid_detailed_category=detailed,
        payment_date=transaction_date,
    )

    return Transaction(
        transaction_id=transaction_id,
        owner_id=item.user_id,
        plaid_item_id=item.plaid_item_id,
        account_id=raw.get("account_id") or "",
        transaction_date=transaction_date,
        amount=amount,
        currency=raw.get("iso_currency_code") or currency,
        type=transaction_type,
        description=raw.get("merchant_name") or raw.get("name") or FALLBACK_DESCRIPTION,
        name=raw.get("name"),
        merchant_name=raw.get("merchant_name") or None,
        plaid_primary_category=primary,
        plaid_detailed_category=detailed,
        upstream_primary_category=primary,
        status=TransactionStatus.PENDING if pending else TransactionStatus.APPROVED,
        pending=pending,
        splits=[split],
    )


def format_transaction(
    raw: RawTransaction, item: PlaidItem, currency: str
) -> Transaction | None:
    """Like build_transaction, but logs and returns None on bad input."""
    try:
        return build_transaction(raw, item, currency)
    except (MalformedTransactionError, ValidationError, InvalidOperation, TypeError) as e:
        logger.warning(
            f"[Format] Skipping transaction {raw.get('transaction_id')}: {e}"
        )
        return None


def format_transactions(
    raws: list[RawTransaction], item: PlaidItem, currency: str
) -> list[Transaction]:
    """Format a page of raw transactions, dropping the malformed ones."""
    formatted = []
    for raw in raws:
        transaction = format_transaction(raw, item, currency)
        if transaction is not None:
            formatted.append(transaction)

    if len(formatted) != len(raws):
        logger.info(f"[Format] Formatted {len(formatted)} of {len(raws)} transactions")
    return formatted


def parse_raw_date(raw: RawTransaction) -> date | None:
    """Raw `date` as a date, or None if it can't be read."""
    value = raw.get("date")
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None
