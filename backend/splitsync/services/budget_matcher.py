"""Budget assignment and budget-id validation for splits."""

from datetime import date

from splitsync.logging_config import get_logger
from splitsync.schemas.budget import Budget
from splitsync.schemas.transaction import (
    AUTO_BUDGET_ID,
    Transaction,
    TransactionSplit,
    UNASSIGNED_BUDGET_ID,
)


logger = get_logger("services.budget_matcher")

PLACEHOLDER_BUDGET_IDS = {UNASSIGNED_BUDGET_ID, AUTO_BUDGET_ID}


def find_fallback_budget(budgets: list[Budget]) -> Budget | None:
    """The owner's active "Everything Else" budget, if one exists."""
    return next(
        (b for b in budgets if b.is_system_everything_else and b.is_active), None
    )


def match_budget(day: date, budgets: list[Budget]) -> Budget | None:
    """First regular budget covering `day`, else the fallback budget.

    Budgets are checked in the order the store returned them.
    """
    for budget in budgets:
        if budget.is_system_everything_else or not budget.is_active:
            continue
        if budget.covers(day):
            return budget
    return find_fallback_budget(budgets)


def apply_budget(transaction: Transaction, budgets: list[Budget]) -> bool:
    """
    Assign every split of a transaction to the matching budget.

    When nothing matches the splits keep their current budget id, so
    "unassigned" stays a valid end state.

    Returns:
        True if any split's budget id changed.
    """
    budget = match_budget(transaction.transaction_date, budgets)
    if budget is None:
        return False

    changed = False
    for split in transaction.splits:
        if split.budget_id != budget.id:
            changed = True
        split.budget_id = budget.id
        split.budget_name = budget.name
    return changed


def validate_and_fix_budget_ids(
    splits: list[TransactionSplit], budgets: list[Budget]
) -> tuple[list[TransactionSplit], int]:
    """
    Replace budget ids that don't point at one of the owner's active budgets.

    Placeholder ids ("unassigned", "auto", empty) are left alone. Invalid
    ids move to the fallback budget, or to "unassigned" when the owner has
    none. Valid ids get their budget name filled in.

    Args:
        splits: Splits to check. Not mutated.
        budgets: The owner's active budgets.

    Returns:
        (fixed_splits, fixed_count)
    """
    names = {budget.id: budget.name for budget in budgets if budget.is_active}
    fallback = find_fallback_budget(budgets)

    fixed_count = 0
    fixed_splits = []
    for split in splits:
        if not split.budget_id or split.budget_id in PLACEHOLDER_BUDGET_IDS:
            fixed_splits.append(split)
            continue

        if split.budget_id not in names:
            replacement = fallback.id if fallback else UNASSIGNED_BUDGET_ID
            logger.warning(
                f"[Budgets] Invalid budget id {split.budget_id} on split {split.split_id}, "
                f"reassigning to {replacement}"
            )
            fixed_splits.append(
                split.model_copy(
                    update={
                        "budget_id": replacement,
                        "budget_name": fallback.name if fallback else None,
                    }
                )
            )
            fixed_count += 1
            continue

        if not split.budget_name:
            split = split.model_copy(update={"budget_name": names[split.budget_id]})
        fixed_splits.append(split)

    return fixed_splits, fixed_count
