"""Keep transaction splits summing to the transaction amount."""

from decimal import Decimal

from pydantic import BaseModel

from splitsync.logging_config import get_logger
from splitsync.schemas.transaction import (
    TransactionSplit,
    UNASSIGNED_BUDGET_ID,
    UNCATEGORIZED,
)
from splitsync.utils.money import CENT, ZERO, to_cents, to_decimal


logger = get_logger("services.split_reconciler")

TOLERANCE = CENT
SINGLE_SPLIT_OVERWRITE_RATIO = Decimal("0.1")


class SplitValidationResult(BaseModel):
    """Outcome of a reconciliation pass.

    `is_valid` is True when the splits were already consistent. Otherwise
    `redistributed_splits` holds the corrected list, or `error` explains why
    nothing could be done.
    """

    is_valid: bool
    redistributed_splits: list[TransactionSplit] | None = None
    error: str | None = None


def validate_and_redistribute_splits(
    transaction_amount, splits: list[TransactionSplit]
) -> SplitValidationResult:
    """
    Validate splits against the transaction amount and fix them if needed.

    Rules, in order:
    1. Totals within one cent and no sub-cent positive split: valid as-is.
    2. Single split off by more than 10%: overwritten with the total.
    3. Overage: scaled down proportionally, rounding residue handed out a
       cent at a time from the last split backwards.
    4. Underage: sub-cent splits dropped, remainder either added to the
       largest split (when under a cent) or put into an "Unallocated" split.

    Args:
        transaction_amount: Absolute transaction amount.
        splits: Current splits. Not mutated.

    Returns:
        SplitValidationResult.
    """
    if not splits:
        return SplitValidationResult(is_valid=False, error="No splits provided")

    total = to_decimal(transaction_amount)
    splits_total = sum((to_decimal(split.amount) for split in splits), ZERO)
    difference = abs(total - splits_total)

    has_tiny_split = total > ZERO and any(
        ZERO < split.amount < CENT for split in splits
    )

    if difference <= TOLERANCE and not has_tiny_split:
        return SplitValidationResult(is_valid=True)

    logger.info(
        f"[Splits] Redistribution needed: transaction={total}, "
        f"splits total={splits_total}, diff={difference}"
    )

    if len(splits) == 1 and difference > total * SINGLE_SPLIT_OVERWRITE_RATIO:
        redistributed = [splits[0].model_copy(update={"amount": to_cents(total)})]
    elif splits_total > total:
        redistributed = _redistribute_overage(splits, total, splits_total)
    else:
        redistributed = _redistribute_underage(splits, total, splits_total)

    return SplitValidationResult(is_valid=False, redistributed_splits=redistributed)


def _redistribute_overage(
    splits: list[TransactionSplit], total: Decimal, splits_total: Decimal
) -> list[TransactionSplit]:
    """Scale every split by total/sum and fix the rounding residue."""
    ratio = total / splits_total
    amounts = [to_cents(split.amount * ratio) for split in splits]

    residue = to_cents(total - sum(amounts, ZERO))
    if abs(residue) >= CENT:
        step = CENT if residue > ZERO else -CENT
        remaining = abs(residue)
        for index in range(len(amounts) - 1, -1, -1):
            if remaining < CENT:
                break
            amounts[index] = to_cents(amounts[index] + step)
            remaining -= CENT

    # No split may round down to zero
    amounts = [max(CENT, amount) for amount in amounts]

    final_total = sum(amounts, ZERO)
    if abs(final_total - total) > TOLERANCE:
        logger.warning(
            f"[Splits] Rounding error after overage fix: expected {total}, got {final_total}"
        )

    return [
        split.model_copy(update={"amount": amount})
        for split, amount in zip(splits, amounts)
    ]


def _redistribute_underage(
    splits: list[TransactionSplit], total: Decimal, splits_total: Decimal
) -> list[TransactionSplit]:
    """Drop sub-cent splits and account for the missing amount."""
    kept = [split.model_copy() for split in splits if split.amount >= CENT]
    tiny_total = sum((split.amount for split in splits if split.amount < CENT), ZERO)

    remainder = to_cents(total - splits_total + tiny_total)

    if remainder < CENT and kept:
        largest = max(range(len(kept)), key=lambda i: kept[i].amount)
        kept[largest] = kept[largest].model_copy(
            update={"amount": to_cents(kept[largest].amount + remainder)}
        )
        return kept

    first = splits[0]
    unallocated = TransactionSplit(
        split_id=f"{first.split_id}-unallocated",
        amount=remainder,
        budget_id=UNASSIGNED_BUDGET_ID,
        description="Unallocated",
        is_default=False,
        plaid_primary_category=UNCATEGORIZED,
        plaid_detailed_category=UNCATEGORIZED,
        payment_date=first.payment_date,
    )
    return [*kept, unallocated]
