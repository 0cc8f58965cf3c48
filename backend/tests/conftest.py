"""Pytest configuration and fixtures."""

import os
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Set test environment before importing app
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("SUPABASE_PUBLISHABLE_KEY", "test-publishable-key")
os.environ.setdefault("PLAID_CLIENT_ID", "test-client-id")
os.environ.setdefault("PLAID_SECRET", "test-secret")
os.environ["ENABLE_CRON_JOBS"] = "false"

from splitsync.config import Settings  # noqa: E402
from splitsync.database import transaction_from_row  # noqa: E402
from splitsync.schemas.budget import Budget  # noqa: E402
from splitsync.schemas.category import Category  # noqa: E402
from splitsync.schemas.outflow import OutflowPeriod, OutflowPeriodStatus, StreamDirection  # noqa: E402
from splitsync.schemas.period import PeriodType, SourcePeriod  # noqa: E402
from splitsync.schemas.plaid import (  # noqa: E402
    PlaidItem,
    PlaidItemStatus,
    RecurringStreamsResponse,
    TransactionsSyncPage,
)
from splitsync.schemas.transaction import (  # noqa: E402
    Transaction,
    TransactionSplit,
    TransactionSplitRef,
    TransactionStatus,
)


USER_ID = "user-1"
ITEM_ID = "item-row-1"
PLAID_ITEM_ID = "plaid-item-1"
ACCESS_TOKEN = "access-sandbox-123"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class FakeDatabase:
    """In-memory stand-in for splitsync.database.Database.

    Transactions are stored as the rows the batch writer sends, and read
    back through the real row normalizer. commit_batch applies outflow
    claims the way the commit_sync_batch SQL function does.
    """

    def __init__(self):
        self.plaid_items: dict[str, dict] = {}
        self.transactions: dict[str, dict] = {}
        self.categories: list[Category] = []
        self.source_periods: list[SourcePeriod] = []
        self.budgets: list[Budget] = []
        self.outflow_periods: dict[str, OutflowPeriod] = {}
        self.webhook_events: list[dict] = []
        self.streams: dict[StreamDirection, dict[tuple[str, str], dict]] = {
            StreamDirection.INFLOW: {},
            StreamDirection.OUTFLOW: {},
        }
        self.sync_jobs: dict[str, dict] = {}

        self.commit_calls: list[tuple[list[dict], list[dict]]] = []
        self.patches: list[tuple[str, dict]] = []
        self.saved_cursors: list[str] = []
        self.fail_commit_on_call: int | None = None
        self.reference_loads = {"categories": 0, "periods": 0, "budgets": 0, "outflows": 0}

    # --- Plaid Items ---

    async def get_plaid_item_by_id(self, item_id: str) -> dict | None:
        item = self.plaid_items.get(item_id)
        return dict(item) if item else None

    async def get_plaid_item_by_plaid_id(self, plaid_item_id: str) -> dict | None:
        for item in self.plaid_items.values():
            if item["plaid_item_id"] == plaid_item_id:
                return dict(item)
        return None

    async def get_active_plaid_items(self) -> list[dict]:
        return [
            dict(item) for item in self.plaid_items.values()
            if item["status"] == PlaidItemStatus.ACTIVE and item.get("is_active", True)
        ]

    async def get_user_active_plaid_items(self, user_id: str) -> list[dict]:
        return [
            dict(item) for item in self.plaid_items.values()
            if item["user_id"] == user_id and item["status"] == PlaidItemStatus.ACTIVE
        ]

    async def update_plaid_item(self, item_id: str, data: dict) -> dict | None:
        if item_id not in self.plaid_items:
            return None
        self.plaid_items[item_id].update(data, updated_at=_now())
        return dict(self.plaid_items[item_id])

    async def get_connection(self, item_id: str) -> PlaidItem | None:
        row = self.plaid_items.get(item_id)
        return PlaidItem.model_validate(row) if row else None

    async def save_cursor(self, item_id: str, cursor: str) -> None:
        self.saved_cursors.append(cursor)
        await self.update_plaid_item(item_id, {"cursor": cursor, "last_synced_at": _now()})

    async def set_plaid_item_status(
        self, item_id: str, status: str, error: dict | None = None
    ) -> dict | None:
        data = {"status": status, "error": error}
        if status == PlaidItemStatus.REMOVED:
            data["is_active"] = False
        return await self.update_plaid_item(item_id, data)

    # --- Transactions ---

    async def get_transactions_by_ids(
        self, owner_id: str, transaction_ids: list[str]
    ) -> dict[str, Transaction]:
        found = {}
        for transaction_id in transaction_ids:
            row = self.transactions.get(transaction_id)
            if row and row.get("owner_id") == owner_id:
                found[transaction_id] = transaction_from_row(row)
        return found

    async def patch_transaction(self, transaction_id: str, data: dict) -> dict | None:
        self.patches.append((transaction_id, data))
        if transaction_id not in self.transactions:
            return None
        self.transactions[transaction_id].update(data)
        return dict(self.transactions[transaction_id])

    async def soft_delete_transactions(self, transaction_ids: list[str], reason: str) -> int:
        deleted = 0
        for transaction_id in transaction_ids:
            row = self.transactions.get(transaction_id)
            if row is None or row.get("status") == TransactionStatus.DELETED.value:
                continue
            row.update(
                status=TransactionStatus.DELETED.value,
                is_active=False,
                deleted_at=_now(),
                removal_reason=reason,
            )
            deleted += 1
        return deleted

    async def commit_batch(self, transactions: list[dict], outflow_updates: list[dict]) -> None:
        self.commit_calls.append((transactions, outflow_updates))
        if self.fail_commit_on_call == len(self.commit_calls):
            raise RuntimeError("commit failed")

        for row in transactions:
            existing = self.transactions.get(row["transaction_id"])
            created_at = (existing or {}).get("created_at") or row.get("created_at") or _now()
            self.transactions[row["transaction_id"]] = {
                **row, "created_at": created_at, "updated_at": _now(),
            }

        for update in outflow_updates:
            period = self.outflow_periods[update["period_id"]]
            ref = TransactionSplitRef.model_validate(update["transaction_split_ref"])
            remaining = [
                r for r in period.transaction_splits if r.transaction_id != ref.transaction_id
            ]
            if not remaining:
                period.transaction_splits = [ref]
                period.status = OutflowPeriodStatus.PAID

    # --- Reference data ---

    async def get_categories(self) -> list[Category]:
        self.reference_loads["categories"] += 1
        return list(self.categories)

    async def get_source_periods(self) -> list[SourcePeriod]:
        self.reference_loads["periods"] += 1
        return sorted(self.source_periods, key=lambda p: p.start_date)

    async def get_active_budgets(self, user_id: str) -> list[Budget]:
        self.reference_loads["budgets"] += 1
        return [b for b in self.budgets if b.user_id == user_id and b.is_active]

    async def get_due_outflow_periods(
        self, user_id: str, start: date, end: date
    ) -> list[OutflowPeriod]:
        self.reference_loads["outflows"] += 1
        return [
            period.model_copy(deep=True)
            for period in self.outflow_periods.values()
            if period.user_id == user_id
            and period.is_due_period
            and period.expected_due_date is not None
            and start <= period.expected_due_date <= end
        ]

    # --- Webhooks ---

    async def get_webhook_event(self, request_id: str) -> dict | None:
        return next((e for e in self.webhook_events if e["request_id"] == request_id), None)

    async def create_webhook_event(self, event_data: dict) -> dict | None:
        self.webhook_events.append(event_data)
        return event_data

    async def update_webhook_event(self, request_id: str, data: dict) -> dict | None:
        event = await self.get_webhook_event(request_id)
        if event is None:
            return None
        event.update(data)
        return event

    # --- Recurring Streams ---

    async def get_stream_ids(self, direction: StreamDirection, user_id: str) -> set[str]:
        return {
            stream_id for stream_id, owner in self.streams[direction] if owner == user_id
        }

    async def upsert_stream(self, direction: StreamDirection, stream_data: dict) -> dict | None:
        key = (stream_data["stream_id"], stream_data["user_id"])
        self.streams[direction][key] = stream_data
        return stream_data

    # --- Sync Jobs ---

    async def create_sync_job(self, job_data: dict) -> dict:
        job = {"id": str(uuid4()), "created_at": _now(), **job_data}
        self.sync_jobs[job["id"]] = job
        return dict(job)

    async def get_sync_job_by_id(self, job_id: str) -> dict | None:
        job = self.sync_jobs.get(job_id)
        return dict(job) if job else None

    async def get_sync_jobs_for_user(self, user_id: str, limit: int = 20) -> list[dict]:
        item_ids = {i["id"] for i in self.plaid_items.values() if i["user_id"] == user_id}
        jobs = [j for j in self.sync_jobs.values() if j["plaid_item_id"] in item_ids]
        return sorted(jobs, key=lambda j: j["created_at"], reverse=True)[:limit]

    async def update_sync_job(self, job_id: str, data: dict) -> dict | None:
        if job_id not in self.sync_jobs:
            return None
        self.sync_jobs[job_id].update(data)
        return dict(self.sync_jobs[job_id])

    # --- Helpers ---

    def stored(self, transaction_id: str) -> Transaction:
        return transaction_from_row(self.transactions[transaction_id])


class MockPlaidService:
    """Plays back canned /transactions/sync pages."""

    def __init__(self, pages: list[TransactionsSyncPage] | None = None):
        self.pages = list(pages or [])
        self.recurring = RecurringStreamsResponse()
        self.sync_calls: list[tuple[str, str | None]] = []
        self.recurring_calls: list[str] = []
        self.error: Exception | None = None
        self.error_on_call: int | None = None

    async def sync_transactions(
        self, access_token: str, cursor: str | None = None
    ) -> TransactionsSyncPage:
        self.sync_calls.append((access_token, cursor))
        if self.error is not None and (
            self.error_on_call is None or self.error_on_call == len(self.sync_calls)
        ):
            raise self.error
        return self.pages.pop(0)

    async def get_recurring_transactions(self, access_token: str) -> RecurringStreamsResponse:
        self.recurring_calls.append(access_token)
        if self.error is not None:
            raise self.error
        return self.recurring


# ============================================================================
# Builders
# ============================================================================


def raw_transaction(
    transaction_id: str = "txn-1",
    amount: float | str = 100.0,
    txn_date: str = "2025-11-15",
    name: str = "CON ED PAYMENT",
    merchant_name: str | None = "ConEd",
    pending: bool = False,
    primary: str | None = "RENT_AND_UTILITIES",
    detailed: str | None = "RENT_AND_UTILITIES_GAS_AND_ELECTRICITY",
    **extra,
) -> dict:
    """Raw Plaid transaction dict as PlaidService returns it."""
    category = None
    if primary is not None:
        category = {"primary": primary, "detailed": detailed or primary}
    return {
        "transaction_id": transaction_id,
        "account_id": "acc-1",
        "amount": amount,
        "iso_currency_code": "USD",
        "date": txn_date,
        "name": name,
        "merchant_name": merchant_name,
        "pending": pending,
        "personal_finance_category": category,
        **extra,
    }


def make_split(split_id: str = "s1", amount="100.00", **fields) -> TransactionSplit:
    fields.setdefault("payment_date", date(2025, 11, 15))
    return TransactionSplit(split_id=split_id, amount=Decimal(str(amount)), **fields)


def make_transaction(
    transaction_id: str = "txn-1",
    amount="100.00",
    splits: list[TransactionSplit] | None = None,
    transaction_date: date = date(2025, 11, 15),
    **fields,
) -> Transaction:
    fields.setdefault("owner_id", USER_ID)
    fields.setdefault("plaid_item_id", PLAID_ITEM_ID)
    fields.setdefault("account_id", "acc-1")
    fields.setdefault("description", fields.get("merchant_name") or "Bank Transaction")
    if splits is None:
        splits = [make_split(f"{transaction_id}-default", amount, payment_date=transaction_date)]
    return Transaction(
        transaction_id=transaction_id,
        amount=Decimal(str(amount)),
        transaction_date=transaction_date,
        splits=splits,
        **fields,
    )


def make_outflow_period(
    period_id: str = "op-1",
    outflow_id: str = "outflow-coned",
    amount_due="100.00",
    due: date = date(2025, 11, 14),
    merchant_name: str | None = "ConEd",
    **fields,
) -> OutflowPeriod:
    fields.setdefault("user_id", USER_ID)
    return OutflowPeriod(
        id=period_id,
        outflow_id=outflow_id,
        amount_due=Decimal(str(amount_due)),
        expected_due_date=due,
        merchant_name=merchant_name,
        **fields,
    )


def november_periods() -> list[SourcePeriod]:
    return [
        SourcePeriod(
            id="2025M11", type=PeriodType.MONTHLY,
            start_date=date(2025, 11, 1), end_date=date(2025, 11, 30),
        ),
        SourcePeriod(
            id="2025W46", type=PeriodType.WEEKLY,
            start_date=date(2025, 11, 9), end_date=date(2025, 11, 15),
        ),
        SourcePeriod(
            id="2025BM22", type=PeriodType.BI_MONTHLY,
            start_date=date(2025, 11, 15), end_date=date(2025, 11, 30),
        ),
    ]


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings for pipeline tests - no network, no page delay."""
    return Settings(
        supabase_url="http://localhost:54321",
        supabase_service_role_key="test-service-role-key",
        supabase_publishable_key="test-publishable-key",
        plaid_client_id="test-client-id",
        plaid_secret="test-secret",
        plaid_webhook_secret="whsec-test",
        app_env="testing",
        sync_page_delay_seconds=0,
        enable_cron_jobs=False,
    )


@pytest.fixture
def budgets() -> list[Budget]:
    return [
        Budget(
            id="budget-nov", user_id=USER_ID, name="November",
            start_date=date(2025, 11, 1), end_date=date(2025, 11, 30), is_ongoing=False,
        ),
        Budget(
            id="budget-else", user_id=USER_ID, name="Everything Else",
            start_date=date(2020, 1, 1), is_system_everything_else=True,
        ),
    ]


@pytest.fixture
def categories() -> list[Category]:
    return [
        Category(id="GROCERIES", name="Groceries", merchants=["Trader Joe's"], keywords=["grocery"]),
        Category(id="COFFEE", name="Coffee", merchants=["blue bottle"], keywords=["coffee", "espresso"]),
    ]


@pytest.fixture
def plaid_item_row() -> dict:
    return {
        "id": ITEM_ID,
        "user_id": USER_ID,
        "plaid_item_id": PLAID_ITEM_ID,
        "access_token": ACCESS_TOKEN,
        "cursor": None,
        "status": PlaidItemStatus.ACTIVE,
        "is_active": True,
        "last_synced_at": None,
        "currency": "USD",
    }


@pytest.fixture
def plaid_item(plaid_item_row) -> PlaidItem:
    return PlaidItem.model_validate(plaid_item_row)


@pytest.fixture
def fake_db(plaid_item_row, budgets, categories) -> FakeDatabase:
    db = FakeDatabase()
    db.plaid_items[ITEM_ID] = dict(plaid_item_row)
    db.budgets = list(budgets)
    db.categories = list(categories)
    db.source_periods = november_periods()
    return db


@pytest.fixture
def mock_plaid() -> MockPlaidService:
    return MockPlaidService()
