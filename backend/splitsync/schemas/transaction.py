"""Transaction and split records."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


UNASSIGNED_BUDGET_ID = "unassigned"
AUTO_BUDGET_ID = "auto"
DEFAULT_CATEGORY = "OTHER_EXPENSE"
UNCATEGORIZED = "Uncategorized"


class TransactionType(str, Enum):
    """Direction of money movement."""

    EXPENSE = "expense"
    INCOME = "income"


class TransactionStatus(str, Enum):
    """Lifecycle status of a stored transaction."""

    PENDING = "pending"
    APPROVED = "approved"
    DELETED = "deleted"


# ============================================================================
# Split Schemas
# ============================================================================


class TransactionSplit(BaseModel):
    """One monetary allocation of a transaction."""

    split_id: str
    amount: Decimal
    budget_id: str = UNASSIGNED_BUDGET_ID
    budget_name: str | None = None
    description: str | None = None
    is_default: bool = False

    # Source period ids, filled in by the period matcher
    monthly_period_id: str | None = None
    weekly_period_id: str | None = None
    bi_weekly_period_id: str | None = None

    # Bill obligation, filled in by the outflow matcher
    outflow_id: str | None = None

    plaid_primary_category: str = DEFAULT_CATEGORY
    plaid_detailed_category: str = DEFAULT_CATEGORY
    internal_primary_category: str | None = None  # User override
    internal_detailed_category: str | None = None  # User override

    is_ignored: bool = False
    is_refund: bool = False
    is_tax_deductible: bool = False
    ignored_reason: str | None = None
    refund_reason: str | None = None

    payment_date: date
    rules: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


class TransactionSplitRef(BaseModel):
    """Reference from an outflow period back to the split that paid it."""

    transaction_id: str
    split_id: str
    amount: Decimal
    payment_date: date


# ============================================================================
# Transaction Schemas
# ============================================================================


class Transaction(BaseModel):
    """Canonical stored transaction."""

    transaction_id: str  # Plaid transaction_id, also the store key
    owner_id: str
    plaid_item_id: str
    account_id: str
    transaction_date: date
    amount: Decimal  # Absolute value; direction lives in `type`
    currency: str = "USD"
    type: TransactionType = TransactionType.EXPENSE
    description: str
    name: str | None = None
    merchant_name: str | None = None

    plaid_primary_category: str = DEFAULT_CATEGORY
    plaid_detailed_category: str = DEFAULT_CATEGORY
    upstream_primary_category: str | None = None  # As Plaid sent it, before resolution
    internal_primary_category: str | None = None
    internal_detailed_category: str | None = None

    status: TransactionStatus = TransactionStatus.APPROVED
    pending: bool = False
    source: str = "plaid"
    is_active: bool = True

    splits: list[TransactionSplit] = Field(default_factory=list)

    deleted_at: datetime | None = None
    removal_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def splits_total(self) -> Decimal:
        return sum((split.amount for split in self.splits), Decimal("0"))

    def to_row(self) -> dict[str, Any]:
        """Serialize for the store (JSON-safe, Decimals become strings)."""
        return self.model_dump(mode="json")
