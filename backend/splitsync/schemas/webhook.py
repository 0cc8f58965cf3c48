"""Plaid webhook schemas."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WebhookType(str, Enum):
    TRANSACTIONS = "TRANSACTIONS"
    ITEM = "ITEM"
    RECURRING_TRANSACTIONS = "RECURRING_TRANSACTIONS"


class WebhookCode(str, Enum):
    # TRANSACTIONS
    SYNC_UPDATES_AVAILABLE = "SYNC_UPDATES_AVAILABLE"
    INITIAL_UPDATE = "INITIAL_UPDATE"
    HISTORICAL_UPDATE = "HISTORICAL_UPDATE"
    DEFAULT_UPDATE = "DEFAULT_UPDATE"
    TRANSACTIONS_REMOVED = "TRANSACTIONS_REMOVED"
    # ITEM
    ERROR = "ERROR"
    PENDING_EXPIRATION = "PENDING_EXPIRATION"
    USER_PERMISSION_REVOKED = "USER_PERMISSION_REVOKED"
    NEW_ACCOUNTS_AVAILABLE = "NEW_ACCOUNTS_AVAILABLE"
    # RECURRING_TRANSACTIONS
    RECURRING_TRANSACTIONS_UPDATE = "RECURRING_TRANSACTIONS_UPDATE"


class WebhookStatus(str, Enum):
    """Outcome of a single webhook delivery."""

    DEDUPED = "deduped"
    RATE_LIMITED = "rate_limited"
    DISPATCHED = "dispatched"
    IGNORED = "ignored"


class ProcessingStatus:
    """Audit record status. Non-dispatched outcomes reuse the WebhookStatus value."""

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class PlaidWebhook(BaseModel):
    """Incoming webhook body. Unknown fields are kept as payload."""

    model_config = ConfigDict(extra="allow")

    webhook_type: str
    webhook_code: str
    item_id: str | None = None
    request_id: str | None = None
    error: dict[str, Any] | None = None
    removed_transactions: list[str] = Field(default_factory=list)

    @property
    def payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class WebhookEvent(BaseModel):
    """Dedup/audit record, keyed by Plaid's request_id."""

    request_id: str
    webhook_type: str
    webhook_code: str
    item_id: str | None = None
    payload: dict[str, Any]
    processing_status: str = ProcessingStatus.PENDING
    processing_result: str | None = None
    processed_at: datetime | None = None
    created_at: datetime


class WebhookResult(BaseModel):
    """What the processor did with a delivery."""

    status: WebhookStatus
    processed: bool = False
    message: str


class WebhookResponse(BaseModel):
    """Body returned to Plaid. Always 200 once dispatch was attempted."""

    success: bool = True
    status: WebhookStatus
    processed: bool
    message: str
