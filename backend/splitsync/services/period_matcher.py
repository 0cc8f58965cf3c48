"""Assign source period ids to transaction splits."""

from datetime import date

from splitsync.logging_config import get_logger
from splitsync.schemas.period import PeriodType, SourcePeriod
from splitsync.schemas.transaction import Transaction


logger = get_logger("services.period_matcher")


def find_period_ids(day: date, periods: list[SourcePeriod]) -> dict[str, str | None]:
    """First containing period of each type, keyed by split field name."""
    matching = [period for period in periods if period.contains(day)]

    def first_of(period_type: PeriodType) -> str | None:
        return next((p.id for p in matching if p.type == period_type), None)

    return {
        "monthly_period_id": first_of(PeriodType.MONTHLY),
        "weekly_period_id": first_of(PeriodType.WEEKLY),
        # Semi-monthly calendar periods back the bi-weekly split field
        "bi_weekly_period_id": first_of(PeriodType.BI_MONTHLY),
    }


def apply_periods(transactions: list[Transaction], periods: list[SourcePeriod]) -> int:
    """
    Set the three period ids on every split of every transaction.

    Periods are app-wide, so the same table serves every owner. A type with
    no containing period leaves that field null.

    Returns:
        Number of transactions that matched at least one period.
    """
    if not transactions:
        return 0

    if not periods:
        logger.error(
            "[Periods] No source periods found, transactions left without period ids"
        )
        return 0

    matched = 0
    for transaction in transactions:
        period_ids = find_period_ids(transaction.transaction_date, periods)
        for split in transaction.splits:
            split.monthly_period_id = period_ids["monthly_period_id"]
            split.weekly_period_id = period_ids["weekly_period_id"]
            split.bi_weekly_period_id = period_ids["bi_weekly_period_id"]
        if any(period_ids.values()):
            matched += 1

    logger.debug(f"[Periods] Matched {matched} of {len(transactions)} transactions")
    return matched
