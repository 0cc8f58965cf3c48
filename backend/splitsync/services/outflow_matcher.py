"""Match transaction splits to outstanding bill (outflow period) instances."""

import calendar
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from splitsync.logging_config import get_logger
from splitsync.schemas.outflow import OutflowPeriod, OutflowPeriodUpdate
from splitsync.schemas.transaction import (
    Transaction,
    TransactionSplit,
    TransactionSplitRef,
)
from splitsync.utils.money import ZERO


logger = get_logger("services.outflow_matcher")

MERCHANT_SCORE = 50
AMOUNT_SCORE = 30
DUE_DATE_SCORE = 20
DUE_DATE_PENALTY_PER_DAY = 2
DUE_DATE_WINDOW_DAYS = 7
AMOUNT_TOLERANCE = Decimal("0.1")
MIN_MATCH_SCORE = 50


class OutflowMatchResult(BaseModel):
    """Pending outflow period writes produced by a matching pass."""

    outflow_updates: list[OutflowPeriodUpdate] = Field(default_factory=list)
    matched_count: int = 0


def shift_months(day: date, months: int) -> date:
    """Move `day` by whole months, clamping to the end of shorter months."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def matching_window(today: date, lookback_months: int, lookahead_months: int) -> tuple[date, date]:
    """Due-date range of outflow periods worth loading for a batch."""
    return shift_months(today, -lookback_months), shift_months(today, lookahead_months)


def score_outflow_period(
    split: TransactionSplit,
    merchant_name: str | None,
    transaction_date: date,
    period: OutflowPeriod,
) -> int:
    """
    Score how likely `split` is the payment for `period`.

    merchant substring match either way: +50
    amount within 10% of amount due:     +30
    due date within 7 days:              +20 - 2 per day apart
    """
    score = 0

    merchant = (merchant_name or "").lower()
    period_merchant = (period.merchant_name or "").lower()
    if merchant and period_merchant:
        if period_merchant in merchant or merchant in period_merchant:
            score += MERCHANT_SCORE

    if period.amount_due > ZERO:
        tolerance = period.amount_due * AMOUNT_TOLERANCE
        if abs(split.amount - period.amount_due) <= tolerance:
            score += AMOUNT_SCORE

    if period.expected_due_date is not None:
        days_apart = abs((transaction_date - period.expected_due_date).days)
        if days_apart <= DUE_DATE_WINDOW_DAYS:
            score += DUE_DATE_SCORE - DUE_DATE_PENALTY_PER_DAY * days_apart

    return score


def match_outflows(
    transactions: list[Transaction], outflow_periods: list[OutflowPeriod]
) -> OutflowMatchResult:
    """
    Link splits to the best-scoring unclaimed outflow period.

    A period with references from another transaction is already paid and
    is skipped. A period claimed earlier in this pass is never offered again,
    so no period collects two references from one run. Splits are updated in
    place; the matching period writes are returned for the batch writer.

    Args:
        transactions: Transactions of one owner.
        outflow_periods: That owner's due periods inside the matching window.

    Returns:
        OutflowMatchResult.
    """
    result = OutflowMatchResult()
    if not transactions or not outflow_periods:
        return result

    claimed: set[str] = set()

    for transaction in transactions:
        for split in transaction.splits:
            best_match: OutflowPeriod | None = None
            best_score = 0

            for period in outflow_periods:
                if period.id in claimed:
                    continue
                if not period.is_claimable_by(transaction.transaction_id):
                    continue

                score = score_outflow_period(
                    split, transaction.merchant_name, transaction.transaction_date, period
                )
                if score > best_score and score >= MIN_MATCH_SCORE:
                    best_score = score
                    best_match = period

            if best_match is None:
                continue

            claimed.add(best_match.id)
            split.outflow_id = best_match.outflow_id
            result.outflow_updates.append(
                OutflowPeriodUpdate(
                    period_id=best_match.id,
                    transaction_split_ref=TransactionSplitRef(
                        transaction_id=transaction.transaction_id,
                        split_id=split.split_id,
                        amount=split.amount,
                        payment_date=transaction.transaction_date,
                    ),
                )
            )
            result.matched_count += 1
            logger.debug(
                f"[Outflows] Matched split {split.split_id} to outflow period "
                f"{best_match.id} (score: {best_score})"
            )

    logger.info(
        f"[Outflows] Matched {result.matched_count} splits across "
        f"{len(transactions)} transactions"
    )
    return result
