"""Plaid-related schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


# Raw upstream transactions stay as plain dicts shaped like Plaid's JSON
# (transaction_id, account_id, amount, date, name, merchant_name, pending,
# iso_currency_code, personal_finance_category). The formatter validates them.
RawTransaction = dict[str, Any]


class TransactionsSyncPage(BaseModel):
    """One page of /transactions/sync."""

    added: list[RawTransaction] = Field(default_factory=list)
    modified: list[RawTransaction] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    next_cursor: str
    has_more: bool = False


class RecurringStreamsResponse(BaseModel):
    """Result of /transactions/recurring/get."""

    inflow_streams: list[dict[str, Any]] = Field(default_factory=list)
    outflow_streams: list[dict[str, Any]] = Field(default_factory=list)


class PlaidItemStatus:
    ACTIVE = "active"
    ERROR = "error"
    REAUTH = "reauth"
    REMOVED = "removed"
    PENDING_EXPIRATION = "pending_expiration"
    PERMISSION_REVOKED = "permission_revoked"
    RATE_LIMITED = "rate_limited"
    TEMPORARY_ERROR = "temporary_error"


class PlaidItem(BaseModel):
    """A linked Plaid connection, as the sync pipeline sees it."""

    id: str
    user_id: str
    plaid_item_id: str
    access_token: str  # Already decrypted at the store boundary
    cursor: str | None = None
    status: str = PlaidItemStatus.ACTIVE
    is_active: bool = True
    last_synced_at: datetime | None = None
    currency: str | None = None
    institution_name: str | None = None
    error: dict[str, Any] | None = None

    @property
    def can_sync(self) -> bool:
        return is_syncable(self.is_active, self.status)


# Syncing again needs the user to relink through Plaid Link
INACTIVE_STATUSES = {
    PlaidItemStatus.REAUTH,
    PlaidItemStatus.REMOVED,
    PlaidItemStatus.PERMISSION_REVOKED,
}


def is_syncable(is_active: bool, status: str | None) -> bool:
    return bool(is_active) and status not in INACTIVE_STATUSES
