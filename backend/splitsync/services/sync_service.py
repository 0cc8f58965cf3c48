"""Sync service - orchestrates Plaid transaction syncing."""

import asyncio
from collections import defaultdict
from datetime import datetime, timezone

from pydantic import BaseModel

from splitsync.config import Settings, get_settings
from splitsync.database import Database
from splitsync.logging_config import get_logger
from splitsync.schemas.plaid import PlaidItem, RawTransaction
from splitsync.services.batch_writer import BatchWriter
from splitsync.services.change_detector import build_direct_patch, has_material_change
from splitsync.services.plaid_service import (
    ConnectionInactiveError,
    PlaidService,
    PlaidServiceError,
)
from splitsync.services.split_assignment import SplitAssignmentResult, SplitAssignmentService
from splitsync.services.transaction_formatter import format_transactions


logger = get_logger("services.sync")

REMOVAL_REASON = "Transaction removed by institution"


class SyncCounters(BaseModel):
    """Running totals for one sync job."""

    transactions_added: int = 0
    transactions_modified: int = 0
    transactions_removed: int = 0
    budget_ids_fixed: int = 0
    amounts_redistributed: int = 0
    budgets_reassigned: int = 0
    outflows_matched: int = 0

    def add_assignment(self, result: SplitAssignmentResult) -> None:
        self.budget_ids_fixed += result.budget_ids_fixed
        self.amounts_redistributed += result.amounts_redistributed
        self.budgets_reassigned += result.budgets_reassigned
        self.outflows_matched += result.outflows_matched


class SyncLocks:
    """Per-connection locks so one worker never runs two syncs of an item at once."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def for_item(self, item_id: str) -> asyncio.Lock:
        return self._locks[item_id]


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncService:
    """Drives /transactions/sync pages through the split pipeline."""

    def __init__(
        self,
        db: Database,
        plaid: PlaidService,
        settings: Settings | None = None,
        locks: SyncLocks | None = None,
    ):
        self.db = db
        self.plaid = plaid
        self.settings = settings or get_settings()
        self.locks = locks or SyncLocks()
        self.assigner = SplitAssignmentService(db, self.settings)
        self.writer = BatchWriter(db, self.settings.batch_max_operations)

    async def sync_item(self, plaid_item_id: str) -> dict:
        """
        Sync transactions for a single Plaid item.

        1. Creates a sync_job record.
        2. Loads the connection (access token + cursor).
        3. Pages through /transactions/sync: added, then modified, then
           removed records for each page.
        4. Saves the cursor after each page commits.
        5. Marks the sync_job as completed (or failed).

        A failure aborts the current page without moving the cursor, so the
        next run picks up from the last committed page.

        Args:
            plaid_item_id: The internal UUID of the plaid_item row.

        Returns:
            The completed sync_job dict.
        """
        async with self.locks.for_item(plaid_item_id):
            return await self._sync_item(plaid_item_id)

    async def _sync_item(self, plaid_item_id: str) -> dict:
        counters = SyncCounters()
        job = await self.db.create_sync_job({
            "plaid_item_id": plaid_item_id,
            "status": "pending",
            **counters.model_dump(),
        })
        job_id = job["id"]

        try:
            connection = await self.db.get_connection(plaid_item_id)
            if connection is None:
                raise ValueError(f"Plaid item {plaid_item_id} not found")
            if not connection.can_sync:
                raise ConnectionInactiveError(plaid_item_id, connection.status)

            await self.db.update_sync_job(job_id, {
                "status": "in_progress",
                "started_at": _utcnow(),
            })

            currency = connection.currency or self.settings.default_currency
            cursor = connection.cursor
            logger.info(
                f"[Sync] Starting sync for item {plaid_item_id}, cursor: {cursor or 'initial'}"
            )

            has_more = True
            while has_more:
                page = await self.plaid.sync_transactions(connection.access_token, cursor)
                logger.info(
                    f"[Sync] Page: {len(page.added)} added, {len(page.modified)} modified, "
                    f"{len(page.removed)} removed, has_more={page.has_more}"
                )

                if page.added:
                    counters.transactions_added += await self.process_added(
                        connection, page.added, currency, counters
                    )

                if page.modified:
                    counters.transactions_modified += await self.process_modified(
                        connection, page.modified, currency, counters
                    )

                if page.removed:
                    counters.transactions_removed += await self.process_removed(page.removed)

                await self.db.save_cursor(plaid_item_id, page.next_cursor)
                cursor = page.next_cursor
                has_more = page.has_more

                if has_more:
                    await asyncio.sleep(self.settings.sync_page_delay_seconds)

            completed_job = await self.db.update_sync_job(job_id, {
                "status": "completed",
                "completed_at": _utcnow(),
                **counters.model_dump(),
            })
            logger.info(
                f"[Sync] Item {plaid_item_id} done: {counters.transactions_added} added, "
                f"{counters.transactions_modified} modified, "
                f"{counters.transactions_removed} removed"
            )
            return completed_job

        except PlaidServiceError as e:
            if e.is_terminal:
                logger.warning(
                    f"[Sync] Item {plaid_item_id} needs attention: {e.error_code} -> {e.item_status}"
                )
                await self.db.set_plaid_item_status(plaid_item_id, e.item_status, e.to_dict())
            await self._fail_job(job_id, counters, e)
            raise

        except Exception as e:
            await self._fail_job(job_id, counters, e)
            raise

    async def _fail_job(self, job_id: str, counters: SyncCounters, error: Exception) -> None:
        logger.error(f"[Sync] Job {job_id} failed: {error}")
        await self.db.update_sync_job(job_id, {
            "status": "failed",
            "completed_at": _utcnow(),
            "error_message": str(error),
            **counters.model_dump(),
        })

    async def process_added(
        self,
        connection: PlaidItem,
        raws: list[RawTransaction],
        currency: str,
        counters: SyncCounters,
    ) -> int:
        """Format, assign and write new transactions. Returns rows written."""
        transactions = format_transactions(raws, connection, currency)
        if not transactions:
            return 0

        result = await self.assigner.assign(transactions)
        counters.add_assignment(result)
        return await self.writer.write(result.transactions, result.outflow_updates)

    async def process_modified(
        self,
        connection: PlaidItem,
        raws: list[RawTransaction],
        currency: str,
        counters: SyncCounters,
    ) -> int:
        """
        Apply upstream modifications.

        Material changes go back through the whole pipeline, keeping the
        user's category overrides and the original created_at. Cosmetic
        changes are patched in place. Records we never stored are treated as
        additions.

        Returns:
            Number of transactions updated.
        """
        ids = [raw["transaction_id"] for raw in raws if raw.get("transaction_id")]
        stored = await self.db.get_transactions_by_ids(connection.user_id, ids)

        repipeline: list[RawTransaction] = []
        patched = 0
        for raw in raws:
            existing = stored.get(raw.get("transaction_id"))
            if existing is None or has_material_change(raw, existing):
                repipeline.append(raw)
                continue

            await self.db.patch_transaction(existing.transaction_id, build_direct_patch(raw))
            patched += 1

        transactions = format_transactions(repipeline, connection, currency)
        for transaction in transactions:
            existing = stored.get(transaction.transaction_id)
            if existing is None:
                continue
            transaction.internal_primary_category = existing.internal_primary_category
            transaction.internal_detailed_category = existing.internal_detailed_category
            transaction.created_at = existing.created_at

        written = 0
        if transactions:
            result = await self.assigner.assign(transactions)
            counters.add_assignment(result)
            written = await self.writer.write(result.transactions, result.outflow_updates)

        logger.info(
            f"[Sync] Modified: {written} re-derived, {patched} patched directly"
        )
        return written + patched

    async def process_removed(self, transaction_ids: list[str]) -> int:
        """Soft-delete transactions the institution removed."""
        return await self.db.soft_delete_transactions(transaction_ids, REMOVAL_REASON)

    async def sync_all(self) -> list[dict]:
        """
        Sync all active Plaid items.

        Individual item failures are logged and don't stop the rest.

        Returns:
            List of completed sync_job dicts.
        """
        items = await self.db.get_active_plaid_items()
        results = []
        for item in items:
            try:
                results.append(await self.sync_item(item["id"]))
            except Exception as e:
                logger.error(f"[Sync] Item {item['id']} failed: {e}")
        return results
