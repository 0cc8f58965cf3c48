"""Sync job schemas."""

from datetime import datetime
from pydantic import BaseModel


class SyncTriggerResponse(BaseModel):
    """Response after triggering a sync."""

    job_ids: list[str]
    message: str


class SyncJobResponse(BaseModel):
    """Single sync job status."""

    id: str
    plaid_item_id: str
    status: str
    started_at: datetime | None
    completed_at: datetime | None
    error_message: str | None
    transactions_added: int
    transactions_modified: int
    transactions_removed: int
    budget_ids_fixed: int = 0
    amounts_redistributed: int = 0
    budgets_reassigned: int = 0
    outflows_matched: int = 0
    created_at: datetime


class SyncStatusResponse(BaseModel):
    """List of sync jobs."""

    jobs: list[SyncJobResponse]


class RecurringSyncResponse(BaseModel):
    """Result of a recurring stream sync."""

    inflows_created: int
    inflows_updated: int
    outflows_created: int
    outflows_updated: int
    errors: list[str] = []
