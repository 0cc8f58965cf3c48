"""Business logic services."""

from splitsync.services import plaid_service
from splitsync.services import sync_service
from splitsync.services.recurring_service import RecurringService
from splitsync.services.split_assignment import SplitAssignmentService
from splitsync.services.sync_service import SyncService
from splitsync.services.webhook_service import WebhookProcessor

__all__ = [
    "plaid_service",
    "sync_service",
    "RecurringService",
    "SplitAssignmentService",
    "SyncService",
    "WebhookProcessor",
]
