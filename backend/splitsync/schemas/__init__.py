"""Pydantic schemas for the sync pipeline and its API."""

from splitsync.schemas.common import ErrorResponse
from splitsync.schemas.budget import Budget
from splitsync.schemas.category import Category
from splitsync.schemas.outflow import (
    OutflowPeriod,
    OutflowPeriodStatus,
    OutflowPeriodUpdate,
    RecurringStream,
    StreamDirection,
)
from splitsync.schemas.period import PeriodType, SourcePeriod
from splitsync.schemas.plaid import (
    PlaidItem,
    PlaidItemStatus,
    RawTransaction,
    RecurringStreamsResponse,
    TransactionsSyncPage,
)
from splitsync.schemas.sync import (
    RecurringSyncResponse,
    SyncJobResponse,
    SyncStatusResponse,
    SyncTriggerResponse,
)
from splitsync.schemas.transaction import (
    Transaction,
    TransactionSplit,
    TransactionSplitRef,
    TransactionStatus,
    TransactionType,
)
from splitsync.schemas.webhook import (
    PlaidWebhook,
    ProcessingStatus,
    WebhookCode,
    WebhookEvent,
    WebhookResponse,
    WebhookResult,
    WebhookStatus,
    WebhookType,
)

__all__ = [
    # Common
    "ErrorResponse",
    # Reference data
    "Budget",
    "Category",
    "PeriodType",
    "SourcePeriod",
    # Outflows
    "OutflowPeriod",
    "OutflowPeriodStatus",
    "OutflowPeriodUpdate",
    "RecurringStream",
    "StreamDirection",
    # Plaid
    "PlaidItem",
    "PlaidItemStatus",
    "RawTransaction",
    "RecurringStreamsResponse",
    "TransactionsSyncPage",
    # Sync
    "RecurringSyncResponse",
    "SyncJobResponse",
    "SyncStatusResponse",
    "SyncTriggerResponse",
    # Transactions
    "Transaction",
    "TransactionSplit",
    "TransactionSplitRef",
    "TransactionStatus",
    "TransactionType",
    # Webhooks
    "PlaidWebhook",
    "ProcessingStatus",
    "WebhookCode",
    "WebhookEvent",
    "WebhookResponse",
    "WebhookResult",
    "WebhookStatus",
    "WebhookType",
]
