"""Split assignment pipeline: categories, periods, budgets, amounts, outflows."""

from datetime import date

from pydantic import BaseModel, Field

from splitsync.config import Settings, get_settings
from splitsync.database import Database
from splitsync.logging_config import get_logger
from splitsync.schemas.budget import Budget
from splitsync.schemas.outflow import OutflowPeriodUpdate
from splitsync.schemas.period import SourcePeriod
from splitsync.schemas.transaction import Transaction
from splitsync.services.budget_matcher import apply_budget, validate_and_fix_budget_ids
from splitsync.services.category_resolver import apply_categories
from splitsync.services.outflow_matcher import match_outflows, matching_window
from splitsync.services.period_matcher import apply_periods
from splitsync.services.split_reconciler import validate_and_redistribute_splits


logger = get_logger("services.split_assignment")


class SplitChanges(BaseModel):
    """What the pipeline changed on one transaction."""

    transaction_id: str
    budget_ids_fixed: int = 0
    amounts_redistributed: bool = False
    budgets_reassigned: int = 0
    modified: bool = False


class SplitAssignmentResult(BaseModel):
    """Pipeline output for one batch."""

    transactions: list[Transaction] = Field(default_factory=list)
    outflow_updates: list[OutflowPeriodUpdate] = Field(default_factory=list)
    changes: list[SplitChanges] = Field(default_factory=list)
    categories_matched: int = 0
    outflows_matched: int = 0

    @property
    def budget_ids_fixed(self) -> int:
        return sum(change.budget_ids_fixed for change in self.changes)

    @property
    def amounts_redistributed(self) -> int:
        return sum(1 for change in self.changes if change.amounts_redistributed)

    @property
    def budgets_reassigned(self) -> int:
        return sum(change.budgets_reassigned for change in self.changes)

    @property
    def modified_count(self) -> int:
        return sum(1 for change in self.changes if change.modified)


def assign_transaction_splits(
    transaction: Transaction,
    budgets: list[Budget],
    periods: list[SourcePeriod],
) -> SplitChanges:
    """
    Validate budget ids, reconcile amounts and match budgets for one transaction.

    The transaction is updated in place. Running this again on its own output
    changes nothing.
    """
    changes = SplitChanges(transaction_id=transaction.transaction_id)
    original_splits = [split.model_dump() for split in transaction.splits]

    # Step 1: point stale budget ids at the fallback budget
    fixed_splits, changes.budget_ids_fixed = validate_and_fix_budget_ids(
        transaction.splits, budgets
    )
    transaction.splits = fixed_splits

    # Step 2: make the splits add up to the transaction amount
    validation = validate_and_redistribute_splits(transaction.amount, transaction.splits)
    if not validation.is_valid and validation.redistributed_splits is not None:
        transaction.splits = validation.redistributed_splits
        changes.amounts_redistributed = True
        # New splits need period ids like the rest
        apply_periods([transaction], periods)
    elif validation.error:
        logger.warning(
            f"[Assign] {transaction.transaction_id}: {validation.error}"
        )

    # Step 3: date-range budget matching
    before = [split.budget_id for split in transaction.splits]
    apply_budget(transaction, budgets)
    changes.budgets_reassigned = sum(
        1 for old, split in zip(before, transaction.splits) if old != split.budget_id
    )

    changes.modified = [split.model_dump() for split in transaction.splits] != original_splits
    return changes


class SplitAssignmentService:
    """Runs the full matching pipeline over a batch of formatted transactions."""

    def __init__(self, db: Database, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()

    async def assign(
        self, transactions: list[Transaction], today: date | None = None
    ) -> SplitAssignmentResult:
        """
        Run Category -> Period -> (budget ids, amounts, budget) -> Outflow.

        Reference data is read once per batch: categories and source periods
        globally, budgets and due outflow periods per owner.

        Args:
            transactions: Formatted transactions, updated in place.
            today: Anchor for the outflow matching window. Defaults to today.

        Returns:
            SplitAssignmentResult with the outflow period writes to commit
            alongside the transactions.
        """
        result = SplitAssignmentResult(transactions=transactions)
        if not transactions:
            return result

        today = today or date.today()

        categories = await self.db.get_categories()
        result.categories_matched = apply_categories(transactions, categories)

        periods = await self.db.get_source_periods()
        apply_periods(transactions, periods)

        by_owner: dict[str, list[Transaction]] = {}
        for transaction in transactions:
            by_owner.setdefault(transaction.owner_id, []).append(transaction)

        window_start, window_end = matching_window(
            today,
            self.settings.outflow_lookback_months,
            self.settings.outflow_lookahead_months,
        )

        for owner_id, owned in by_owner.items():
            budgets = await self.db.get_active_budgets(owner_id)
            for transaction in owned:
                result.changes.append(
                    assign_transaction_splits(transaction, budgets, periods)
                )

            outflow_periods = await self.db.get_due_outflow_periods(
                owner_id, window_start, window_end
            )
            matched = match_outflows(owned, outflow_periods)
            result.outflow_updates.extend(matched.outflow_updates)
            result.outflows_matched += matched.matched_count

        logger.info(
            f"[Assign] {len(transactions)} transactions: "
            f"{result.categories_matched} re-categorized, "
            f"{result.budget_ids_fixed} budget ids fixed, "
            f"{result.amounts_redistributed} redistributed, "
            f"{result.budgets_reassigned} splits reassigned, "
            f"{result.outflows_matched} outflow matches"
        )
        return result
