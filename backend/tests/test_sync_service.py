"""Test the transaction sync loop."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from conftest import (
    ACCESS_TOKEN,
    ITEM_ID,
    MockPlaidService,
    make_outflow_period,
    raw_transaction,
)
from splitsync.schemas.outflow import OutflowPeriodStatus
from splitsync.schemas.plaid import PlaidItemStatus, TransactionsSyncPage
from splitsync.schemas.transaction import TransactionStatus
from splitsync.services.plaid_service import ConnectionInactiveError, PlaidServiceError
from splitsync.services.sync_service import REMOVAL_REASON, SyncLocks, SyncService


def page(added=(), modified=(), removed=(), cursor="cursor-1", has_more=False):
    return TransactionsSyncPage(
        added=list(added),
        modified=list(modified),
        removed=list(removed),
        next_cursor=cursor,
        has_more=has_more,
    )


@pytest.fixture
def service(fake_db, mock_plaid, test_settings) -> SyncService:
    return SyncService(fake_db, mock_plaid, test_settings)


class TestSyncItem:
    @pytest.mark.asyncio
    async def test_initial_sync(self, fake_db, mock_plaid, service):
        """Test a first sync writes assigned transactions and saves the cursor."""
        mock_plaid.pages = [page(added=[raw_transaction("txn-1"), raw_transaction("txn-2")])]

        job = await service.sync_item(ITEM_ID)

        assert job["status"] == "completed"
        assert job["transactions_added"] == 2
        assert mock_plaid.sync_calls == [(ACCESS_TOKEN, None)]
        assert fake_db.plaid_items[ITEM_ID]["cursor"] == "cursor-1"
        assert fake_db.plaid_items[ITEM_ID]["last_synced_at"] is not None

        stored = fake_db.stored("txn-1")
        assert stored.splits[0].budget_id == "budget-nov"
        assert stored.splits[0].monthly_period_id == "2025M11"

    @pytest.mark.asyncio
    async def test_pages_until_has_more_is_false(self, fake_db, mock_plaid, service):
        """Test each page is fetched with the previous page's cursor."""
        mock_plaid.pages = [
            page(added=[raw_transaction("txn-1")], cursor="c1", has_more=True),
            page(added=[raw_transaction("txn-2")], cursor="c2", has_more=True),
            page(added=[raw_transaction("txn-3")], cursor="c3"),
        ]

        job = await service.sync_item(ITEM_ID)

        assert [cursor for _, cursor in mock_plaid.sync_calls] == [None, "c1", "c2"]
        assert fake_db.saved_cursors == ["c1", "c2", "c3"]
        assert job["transactions_added"] == 3

    @pytest.mark.asyncio
    async def test_resumes_from_stored_cursor(self, fake_db, mock_plaid, service):
        """Test a stored cursor is sent on the first request."""
        fake_db.plaid_items[ITEM_ID]["cursor"] = "saved"
        mock_plaid.pages = [page(cursor="next")]

        await service.sync_item(ITEM_ID)

        assert mock_plaid.sync_calls[0] == (ACCESS_TOKEN, "saved")

    @pytest.mark.asyncio
    async def test_malformed_records_are_skipped(self, fake_db, mock_plaid, service):
        """Test a bad upstream record doesn't fail the page."""
        mock_plaid.pages = [page(added=[raw_transaction("txn-1"), raw_transaction("txn-2", amount=None)])]

        job = await service.sync_item(ITEM_ID)

        assert job["transactions_added"] == 1
        assert set(fake_db.transactions) == {"txn-1"}

    @pytest.mark.asyncio
    async def test_outflow_matched_on_add(self, fake_db, mock_plaid, service, monkeypatch):
        """Test a ConEd payment marks the ConEd bill paid in the same commit."""
        fake_db.outflow_periods["op-1"] = make_outflow_period()
        mock_plaid.pages = [page(added=[raw_transaction("txn-1")])]

        original_assign = service.assigner.assign

        async def assign_on_bill_date(transactions, today=None):
            return await original_assign(transactions, today=date(2025, 11, 20))

        monkeypatch.setattr(service.assigner, "assign", assign_on_bill_date)

        job = await service.sync_item(ITEM_ID)

        assert job["outflows_matched"] == 1
        assert fake_db.outflow_periods["op-1"].status == OutflowPeriodStatus.PAID
        assert fake_db.stored("txn-1").splits[0].outflow_id == "outflow-coned"
        assert len(fake_db.commit_calls) == 1

    @pytest.mark.asyncio
    async def test_removed_transactions_are_soft_deleted(self, fake_db, mock_plaid, service):
        """Test removed ids are flagged deleted, never dropped."""
        mock_plaid.pages = [
            page(added=[raw_transaction("txn-1")], cursor="c1", has_more=True),
            page(removed=["txn-1", "txn-unknown"], cursor="c2"),
        ]

        job = await service.sync_item(ITEM_ID)

        row = fake_db.transactions["txn-1"]
        assert row["status"] == TransactionStatus.DELETED.value
        assert row["is_active"] is False
        assert row["removal_reason"] == REMOVAL_REASON
        assert job["transactions_removed"] == 1

    @pytest.mark.asyncio
    async def test_unknown_item(self, fake_db, service):
        """Test an unknown item fails the job with ValueError."""
        with pytest.raises(ValueError):
            await service.sync_item("missing")

        job = next(iter(fake_db.sync_jobs.values()))
        assert job["status"] == "failed"


class TestSyncFailures:
    @pytest.mark.asyncio
    async def test_write_failure_keeps_cursor(self, fake_db, mock_plaid, service):
        """Test a failed commit leaves the cursor on the last committed page."""
        fake_db.plaid_items[ITEM_ID]["cursor"] = "c0"
        fake_db.fail_commit_on_call = 2
        mock_plaid.pages = [
            page(added=[raw_transaction("txn-1")], cursor="c1", has_more=True),
            page(added=[raw_transaction("txn-2")], cursor="c2"),
        ]

        with pytest.raises(RuntimeError):
            await service.sync_item(ITEM_ID)

        assert fake_db.plaid_items[ITEM_ID]["cursor"] == "c1"
        job = next(iter(fake_db.sync_jobs.values()))
        assert job["status"] == "failed"
        assert job["error_message"] == "commit failed"
        assert job["transactions_added"] == 1

    @pytest.mark.asyncio
    async def test_reauth_error_updates_status(self, fake_db, mock_plaid, service):
        """Test ITEM_LOGIN_REQUIRED marks the connection for re-auth."""
        mock_plaid.error = PlaidServiceError(
            "login required", error_code="ITEM_LOGIN_REQUIRED", error_type="ITEM_ERROR"
        )

        with pytest.raises(PlaidServiceError):
            await service.sync_item(ITEM_ID)

        item = fake_db.plaid_items[ITEM_ID]
        assert item["status"] == PlaidItemStatus.REAUTH
        assert item["error"]["error_code"] == "ITEM_LOGIN_REQUIRED"
        assert item["cursor"] is None

    @pytest.mark.asyncio
    async def test_item_not_found_marks_removed(self, fake_db, mock_plaid, service):
        """Test ITEM_NOT_FOUND deactivates the connection."""
        mock_plaid.error = PlaidServiceError("gone", error_code="ITEM_NOT_FOUND")

        with pytest.raises(PlaidServiceError):
            await service.sync_item(ITEM_ID)

        assert fake_db.plaid_items[ITEM_ID]["status"] == PlaidItemStatus.REMOVED
        assert fake_db.plaid_items[ITEM_ID]["is_active"] is False

    @pytest.mark.asyncio
    async def test_transient_error_leaves_status(self, fake_db, mock_plaid, service):
        """Test rate limits don't change the connection status."""
        mock_plaid.error = PlaidServiceError("slow down", error_code="RATE_LIMIT_EXCEEDED")

        with pytest.raises(PlaidServiceError):
            await service.sync_item(ITEM_ID)

        assert fake_db.plaid_items[ITEM_ID]["status"] == PlaidItemStatus.ACTIVE


    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,is_active",
        [
            (PlaidItemStatus.REMOVED, False),
            (PlaidItemStatus.ACTIVE, False),
            (PlaidItemStatus.REAUTH, True),
            (PlaidItemStatus.PERMISSION_REVOKED, True),
        ],
    )
    async def test_inactive_connection_is_not_synced(
        self, fake_db, mock_plaid, service, status, is_active
    ):
        """Test a deactivated or relink-pending connection never reaches Plaid."""
        fake_db.plaid_items[ITEM_ID].update(status=status, is_active=is_active)

        with pytest.raises(ConnectionInactiveError):
            await service.sync_item(ITEM_ID)

        assert mock_plaid.sync_calls == []
        job = next(iter(fake_db.sync_jobs.values()))
        assert job["status"] == "failed"

    @pytest.mark.asyncio
    async def test_pending_expiration_still_syncs(self, fake_db, mock_plaid, service):
        """Test a connection close to expiring keeps syncing."""
        fake_db.plaid_items[ITEM_ID]["status"] = PlaidItemStatus.PENDING_EXPIRATION
        mock_plaid.pages = [page()]

        job = await service.sync_item(ITEM_ID)

        assert job["status"] == "completed"


class TestProcessModified:
    @pytest.mark.asyncio
    async def test_cosmetic_change_is_patched(self, fake_db, mock_plaid, service):
        """Test a merchant rename patches display fields and leaves splits alone."""
        mock_plaid.pages = [
            page(added=[raw_transaction("txn-1")], cursor="c1", has_more=True),
            page(modified=[raw_transaction("txn-1", merchant_name="Con Edison")], cursor="c2"),
        ]

        job = await service.sync_item(ITEM_ID)

        assert job["transactions_modified"] == 1
        assert [tid for tid, _ in fake_db.patches] == ["txn-1"]
        assert len(fake_db.commit_calls) == 1
        stored = fake_db.stored("txn-1")
        assert stored.merchant_name == "Con Edison"
        assert stored.splits[0].budget_id == "budget-nov"

    @pytest.mark.asyncio
    async def test_material_change_is_repipelined(self, fake_db, mock_plaid, service):
        """Test an amount change re-runs the pipeline and keeps user overrides."""
        mock_plaid.pages = [page(added=[raw_transaction("txn-1", amount=100.0)], cursor="c1")]
        await service.sync_item(ITEM_ID)

        fake_db.transactions["txn-1"]["internal_primary_category"] = "HOUSING"
        created_at = fake_db.transactions["txn-1"]["created_at"]

        mock_plaid.pages = [page(modified=[raw_transaction("txn-1", amount=120.0)], cursor="c2")]
        job = await service.sync_item(ITEM_ID)

        assert job["transactions_modified"] == 1
        assert fake_db.patches == []
        stored = fake_db.stored("txn-1")
        assert stored.amount == Decimal("120.00")
        assert stored.splits[0].amount == Decimal("120.00")
        assert stored.internal_primary_category == "HOUSING"
        assert fake_db.transactions["txn-1"]["created_at"] == created_at

    @pytest.mark.asyncio
    async def test_category_moved_to_generic_is_repipelined(self, fake_db, mock_plaid, service):
        """Test Plaid dropping a category to the default rewrites the stored one."""
        mock_plaid.pages = [page(added=[raw_transaction("txn-1")], cursor="c1")]
        await service.sync_item(ITEM_ID)

        mock_plaid.pages = [
            page(modified=[raw_transaction("txn-1", primary="OTHER_EXPENSE")], cursor="c2")
        ]
        await service.sync_item(ITEM_ID)

        assert fake_db.patches == []
        stored = fake_db.stored("txn-1")
        assert stored.plaid_primary_category == "OTHER_EXPENSE"
        assert stored.upstream_primary_category == "OTHER_EXPENSE"

    @pytest.mark.asyncio
    async def test_unknown_modified_record_is_added(self, fake_db, mock_plaid, service):
        """Test a modified record we never stored is written as new."""
        mock_plaid.pages = [page(modified=[raw_transaction("txn-9")])]

        await service.sync_item(ITEM_ID)

        assert "txn-9" in fake_db.transactions


class TestLocks:
    @pytest.mark.asyncio
    async def test_overlapping_syncs_are_serialized(self, fake_db, test_settings):
        """Test two concurrent syncs of one item never interleave."""
        active = 0
        peak = 0

        class SlowPlaid(MockPlaidService):
            async def sync_transactions(self, access_token, cursor=None):
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1
                return page(cursor=f"after-{cursor}")

        locks = SyncLocks()
        first = SyncService(fake_db, SlowPlaid(), test_settings, locks)
        second = SyncService(fake_db, SlowPlaid(), test_settings, locks)

        await asyncio.gather(first.sync_item(ITEM_ID), second.sync_item(ITEM_ID))

        assert peak == 1
        assert fake_db.saved_cursors == ["after-None", "after-after-None"]


class TestSyncAll:
    @pytest.mark.asyncio
    async def test_failures_dont_stop_other_items(self, fake_db, mock_plaid, service, plaid_item_row):
        """Test one failing item doesn't block the rest."""
        fake_db.plaid_items["item-row-2"] = {
            **plaid_item_row, "id": "item-row-2", "plaid_item_id": "plaid-item-2",
        }
        mock_plaid.error = PlaidServiceError("boom", error_code="INTERNAL_SERVER_ERROR")
        mock_plaid.error_on_call = 1
        mock_plaid.pages = [page()]

        results = await service.sync_all()

        assert len(results) == 1
        assert len(fake_db.sync_jobs) == 2
