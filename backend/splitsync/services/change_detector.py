"""Decide how a modified upstream transaction should be applied."""

from datetime import datetime, timezone
from typing import Any

from splitsync.logging_config import get_logger
from splitsync.schemas.plaid import RawTransaction
from splitsync.schemas.transaction import Transaction, TransactionType
from splitsync.services.transaction_formatter import FALLBACK_DESCRIPTION, parse_raw_date
from splitsync.utils.money import CENT, ZERO, to_decimal


logger = get_logger("services.change_detector")


def has_material_change(raw: RawTransaction, stored: Transaction) -> bool:
    """
    Whether a modified record needs the full categorize/allocate pipeline.

    Material: amount moves by more than a cent (or changes sign), the date
    changes, the pending flag flips, or the provider's primary category
    changes. The comparison is against the category Plaid last sent, so a
    category the resolver filled in doesn't count as a difference.
    """
    transaction_id = stored.transaction_id

    if raw.get("amount") is not None:
        signed = to_decimal(raw["amount"])
        if abs(abs(signed) - stored.amount) > CENT:
            logger.debug(f"[Changes] {transaction_id}: amount {stored.amount} -> {abs(signed)}")
            return True
        is_expense = signed > ZERO
        if signed != ZERO and is_expense != (stored.type == TransactionType.EXPENSE):
            logger.debug(f"[Changes] {transaction_id}: direction flipped")
            return True

    new_date = parse_raw_date(raw)
    if new_date is not None and new_date != stored.transaction_date:
        logger.debug(f"[Changes] {transaction_id}: date {stored.transaction_date} -> {new_date}")
        return True

    if bool(raw.get("pending", False)) != stored.pending:
        logger.debug(f"[Changes] {transaction_id}: pending {stored.pending} -> {raw.get('pending')}")
        return True

    category = raw.get("personal_finance_category") or {}
    new_primary = category.get("primary")
    # Rows written before the upstream value was kept fall back to the stored category
    old_primary = stored.upstream_primary_category or stored.plaid_primary_category
    if new_primary and new_primary != old_primary:
        logger.debug(f"[Changes] {transaction_id}: category {old_primary} -> {new_primary}")
        return True

    return False


def build_direct_patch(raw: RawTransaction) -> dict[str, Any]:
    """Cosmetic field update for a non-material change. Splits are untouched."""
    merchant_name = raw.get("merchant_name") or None
    name = raw.get("name")
    return {
        "name": name,
        "merchant_name": merchant_name,
        "description": merchant_name or name or FALLBACK_DESCRIPTION,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
