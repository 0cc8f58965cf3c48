"""Scheduled cron jobs for background tasks."""

from fastapi_utils.tasks import repeat_every

from splitsync.config import get_settings
from splitsync.database import Database, get_admin_client
from splitsync.logging_config import get_logger
from splitsync.services.plaid_service import PlaidService
from splitsync.services.sync_service import SyncLocks, SyncService


logger = get_logger("cron")

SYNC_INTERVAL_SECONDS = 60 * 60 * 24  # Run every 24 hours


async def run_plaid_sync(locks: SyncLocks | None = None) -> int:
    """Sync every active Plaid item once. Returns the number of completed jobs."""
    settings = get_settings()
    client = await get_admin_client()
    db = Database(client)
    service = SyncService(db, PlaidService.from_settings(settings), settings, locks)

    jobs = await service.sync_all()
    logger.info(f"[CRON] Plaid sync complete: {len(jobs)} item(s) synced")
    return len(jobs)


def create_plaid_sync_task(locks: SyncLocks):
    """
    Build the daily safety-net sync of all active Plaid items.

    Webhooks drive most syncs; this catches anything a missed webhook
    left behind. Shares the app's sync locks so it never overlaps a
    webhook-triggered run of the same item.
    """

    @repeat_every(seconds=SYNC_INTERVAL_SECONDS, logger=logger)
    async def sync_plaid_transactions():
        logger.info("[CRON] Starting Plaid transaction sync...")
        try:
            await run_plaid_sync(locks)
        except Exception as e:
            logger.error(f"[CRON] Fatal error in Plaid sync: {str(e)}")

    return sync_plaid_transactions
