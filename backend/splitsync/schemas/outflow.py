"""Bill obligation (outflow period) and recurring stream schemas."""

from datetime import date
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from splitsync.schemas.transaction import TransactionSplitRef


class OutflowPeriodStatus(str, Enum):
    PENDING = "pending"
    DUE = "due"
    PAID = "paid"
    OVERDUE = "overdue"


class OutflowPeriod(BaseModel):
    """One expected occurrence of a recurring bill."""

    id: str
    outflow_id: str
    user_id: str
    amount_due: Decimal = Decimal("0")
    expected_due_date: date | None = None
    is_due_period: bool = True
    merchant_name: str | None = None
    description: str | None = None
    status: OutflowPeriodStatus = OutflowPeriodStatus.PENDING
    transaction_splits: list[TransactionSplitRef] = Field(default_factory=list)

    def is_claimable_by(self, transaction_id: str) -> bool:
        """Unclaimed, or only claimed by the same transaction being re-derived."""
        return all(
            ref.transaction_id == transaction_id for ref in self.transaction_splits
        )


class OutflowPeriodUpdate(BaseModel):
    """Pending write: attach a split to an outflow period and mark it paid."""

    period_id: str
    transaction_split_ref: TransactionSplitRef

    def to_row(self) -> dict:
        return self.model_dump(mode="json")


# ============================================================================
# Recurring Streams
# ============================================================================


class StreamDirection(str, Enum):
    INFLOW = "inflow"
    OUTFLOW = "outflow"


class RecurringStream(BaseModel):
    """A recurring inflow or outflow stream detected by Plaid."""

    stream_id: str
    user_id: str
    plaid_item_id: str
    account_id: str
    direction: StreamDirection
    description: str
    merchant_name: str | None = None
    average_amount: Decimal
    last_amount: Decimal
    currency: str | None = None
    frequency: str
    first_date: date
    last_date: date
    predicted_next_date: date | None = None
    is_active: bool = True
    status: str | None = None
    plaid_primary_category: str | None = None
    plaid_detailed_category: str | None = None
    transaction_ids: list[str] = Field(default_factory=list)
    expense_type: str | None = None  # Outflows only
