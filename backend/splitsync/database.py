"""Supabase client setup and database utilities."""

from datetime import date, datetime, timezone
from typing import Any

from postgrest import AsyncPostgrestClient
from supabase import AsyncClient, acreate_client

from splitsync.config import get_settings
from splitsync.logging_config import get_logger
from splitsync.schemas.budget import Budget
from splitsync.schemas.category import Category
from splitsync.schemas.outflow import OutflowPeriod, StreamDirection
from splitsync.schemas.period import SourcePeriod
from splitsync.schemas.plaid import PlaidItem, PlaidItemStatus
from splitsync.schemas.transaction import Transaction, TransactionStatus
from splitsync.utils.encryption import decrypt_access_token
from splitsync.utils.money import to_decimal


logger = get_logger("database")

STREAM_TABLES = {
    StreamDirection.INFLOW: "inflows",
    StreamDirection.OUTFLOW: "outflows",
}


async def get_admin_client() -> AsyncClient:
    """Get Supabase admin client using service_role key (NO CACHE).

    Bypasses RLS - used by webhooks and cron, where there is no user JWT
    and authorization is handled at the application level.
    """
    settings = get_settings()
    return await acreate_client(
        settings.supabase_url,
        settings.supabase_service_role_key,
    )


def get_authenticated_postgrest_client(access_token: str) -> AsyncPostgrestClient:
    """Create a PostgREST client authenticated with the user's JWT.

    Talks to PostgREST directly with the publishable key as apikey and the
    user's JWT as Authorization, so RLS policies see auth.uid().
    """
    settings = get_settings()
    return AsyncPostgrestClient(
        base_url=f"{settings.supabase_url}/rest/v1",
        headers={
            "apikey": settings.supabase_publishable_key,
            "Authorization": f"Bearer {access_token}",
        },
    )


# ============================================================================
# Row normalization
# ============================================================================

# Older rows were written with camelCase keys
_LEGACY_KEYS = {
    "transactionId": "transaction_id",
    "ownerId": "owner_id",
    "userId": "owner_id",
    "plaidItemId": "plaid_item_id",
    "accountId": "account_id",
    "transactionDate": "transaction_date",
    "merchantName": "merchant_name",
    "plaidPrimaryCategory": "plaid_primary_category",
    "plaidDetailedCategory": "plaid_detailed_category",
    "internalPrimaryCategory": "internal_primary_category",
    "internalDetailedCategory": "internal_detailed_category",
    "transactionStatus": "status",
    "isActive": "is_active",
    "deletedAt": "deleted_at",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

_LEGACY_SPLIT_KEYS = {
    "splitId": "split_id",
    "budgetId": "budget_id",
    "budgetName": "budget_name",
    "isDefault": "is_default",
    "monthlyPeriodId": "monthly_period_id",
    "weeklyPeriodId": "weekly_period_id",
    "biWeeklyPeriodId": "bi_weekly_period_id",
    "outflowId": "outflow_id",
    "plaidPrimaryCategory": "plaid_primary_category",
    "plaidDetailedCategory": "plaid_detailed_category",
    "internalPrimaryCategory": "internal_primary_category",
    "internalDetailedCategory": "internal_detailed_category",
    "isIgnored": "is_ignored",
    "isRefund": "is_refund",
    "isTaxDeductible": "is_tax_deductible",
    "ignoredReason": "ignored_reason",
    "refundReason": "refund_reason",
    "paymentDate": "payment_date",
}


def _to_date_str(value: Any) -> Any:
    """Trim timestamps to their date part, leave everything else alone."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, str) and len(value) > 10:
        return value[:10]
    return value


def _rename(row: dict, mapping: dict[str, str]) -> dict:
    renamed = {}
    for key, value in row.items():
        target = mapping.get(key, key)
        # Canonical keys win over legacy aliases
        if target in renamed and key != target:
            continue
        renamed[target] = value
    return renamed


def normalize_transaction_row(row: dict) -> dict:
    """
    Convert a stored transaction row into the canonical field layout.

    Handles rows written by older clients: camelCase keys, the nested
    `metadata.plaidTransactionId` / `metadata.pending` fields, nested
    `categories.primary` / `categories.detailed`, signed amounts and
    timestamp-typed dates. Nothing outside this function needs to know about
    those shapes.
    """
    data = _rename(dict(row), _LEGACY_KEYS)

    metadata = data.pop("metadata", None) or {}
    if not data.get("transaction_id") and metadata.get("plaidTransactionId"):
        data["transaction_id"] = metadata["plaidTransactionId"]
    if "pending" not in data and "pending" in metadata:
        data["pending"] = metadata["pending"]

    categories = data.pop("categories", None) or {}
    if not data.get("plaid_primary_category") and categories.get("primary"):
        data["plaid_primary_category"] = categories["primary"]
    if not data.get("plaid_detailed_category") and categories.get("detailed"):
        data["plaid_detailed_category"] = categories["detailed"]

    if "transaction_date" not in data and "date" in data:
        data["transaction_date"] = data.pop("date")
    data["transaction_date"] = _to_date_str(data.get("transaction_date"))

    if data.get("amount") is not None:
        data["amount"] = abs(to_decimal(data["amount"]))

    if isinstance(data.get("status"), str):
        data["status"] = data["status"].lower()

    splits = []
    for split in data.get("splits") or []:
        split = _rename(dict(split), _LEGACY_SPLIT_KEYS)
        split["payment_date"] = _to_date_str(
            split.get("payment_date") or data["transaction_date"]
        )
        splits.append(split)
    data["splits"] = splits

    return data


def transaction_from_row(row: dict) -> Transaction:
    return Transaction.model_validate(normalize_transaction_row(row))


def source_period_from_row(row: dict) -> SourcePeriod:
    return SourcePeriod.model_validate({
        **row,
        "start_date": _to_date_str(row["start_date"]),
        "end_date": _to_date_str(row["end_date"]),
    })


def outflow_period_from_row(row: dict) -> OutflowPeriod:
    data = dict(row)
    data["expected_due_date"] = _to_date_str(data.get("expected_due_date"))
    data["transaction_splits"] = [
        {**ref, "payment_date": _to_date_str(ref.get("payment_date"))}
        for ref in data.get("transaction_splits") or []
    ]
    return OutflowPeriod.model_validate(data)


def plaid_item_from_row(row: dict) -> PlaidItem:
    """Build the connection record, decrypting the access token."""
    return PlaidItem.model_validate({
        **row,
        "access_token": decrypt_access_token(row["access_token"]),
    })


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """Database helper class for sync pipeline operations."""

    def __init__(self, client: AsyncClient | AsyncPostgrestClient):
        self.client = client

    # --- Plaid Items ---

    async def get_plaid_item_by_id(self, item_id: str) -> dict | None:
        result = await self.client.table("plaid_items").select("*").eq("id", item_id).execute()
        return result.data[0] if result.data else None

    async def get_plaid_item_by_plaid_id(self, plaid_item_id: str) -> dict | None:
        result = await (
            self.client.table("plaid_items")
            .select("*")
            .eq("plaid_item_id", plaid_item_id)
            .execute()
        )
        return result.data[0] if result.data else None

    async def get_active_plaid_items(self) -> list[dict]:
        result = await (
            self.client.table("plaid_items")
            .select("*")
            .eq("status", PlaidItemStatus.ACTIVE)
            .eq("is_active", True)
            .execute()
        )
        return result.data

    async def get_user_active_plaid_items(self, user_id: str) -> list[dict]:
        result = await (
            self.client.table("plaid_items")
            .select("*")
            .eq("user_id", user_id)
            .eq("status", PlaidItemStatus.ACTIVE)
            .execute()
        )
        return result.data

    async def _get_user_plaid_item_ids(self, user_id: str) -> list[str]:
        result = await (
            self.client.table("plaid_items")
            .select("id")
            .eq("user_id", user_id)
            .execute()
        )
        return [item["id"] for item in result.data]

    async def update_plaid_item(self, item_id: str, data: dict) -> dict | None:
        result = await (
            self.client.table("plaid_items")
            .update({**data, "updated_at": _utcnow()})
            .eq("id", item_id)
            .execute()
        )
        return result.data[0] if result.data else None

    async def get_connection(self, item_id: str) -> PlaidItem | None:
        row = await self.get_plaid_item_by_id(item_id)
        return plaid_item_from_row(row) if row else None

    async def save_cursor(self, item_id: str, cursor: str) -> None:
        """Persist sync progress. Only called once a page has committed."""
        await self.update_plaid_item(item_id, {
            "cursor": cursor,
            "last_synced_at": _utcnow(),
        })

    async def set_plaid_item_status(
        self, item_id: str, status: str, error: dict | None = None
    ) -> dict | None:
        data: dict[str, Any] = {"status": status, "error": error}
        if status == PlaidItemStatus.REMOVED:
            data["is_active"] = False
        return await self.update_plaid_item(item_id, data)

    # --- Transactions ---

    async def get_transactions_by_ids(
        self, owner_id: str, transaction_ids: list[str]
    ) -> dict[str, Transaction]:
        """Stored transactions keyed by transaction_id."""
        if not transaction_ids:
            return {}
        result = await (
            self.client.table("transactions")
            .select("*")
            .eq("owner_id", owner_id)
            .in_("transaction_id", transaction_ids)
            .execute()
        )
        transactions = {}
        for row in result.data:
            transaction = transaction_from_row(row)
            transactions[transaction.transaction_id] = transaction
        return transactions

    async def patch_transaction(self, transaction_id: str, data: dict) -> dict | None:
        result = await (
            self.client.table("transactions")
            .update(data)
            .eq("transaction_id", transaction_id)
            .execute()
        )
        return result.data[0] if result.data else None

    async def soft_delete_transactions(
        self, transaction_ids: list[str], reason: str
    ) -> int:
        """Flag transactions deleted. Rows are never physically removed."""
        if not transaction_ids:
            return 0
        now = _utcnow()
        result = await (
            self.client.table("transactions")
            .update({
                "status": TransactionStatus.DELETED.value,
                "is_active": False,
                "deleted_at": now,
                "removal_reason": reason,
                "updated_at": now,
            })
            .in_("transaction_id", transaction_ids)
            .neq("status", TransactionStatus.DELETED.value)
            .execute()
        )
        return len(result.data)

    async def commit_batch(
        self, transactions: list[dict], outflow_updates: list[dict]
    ) -> None:
        """Upsert transactions and apply outflow period claims atomically.

        Runs as one Postgres function call, so a chunk either lands fully
        or not at all.
        """
        await self.client.rpc(
            "commit_sync_batch",
            {"transactions": transactions, "outflow_updates": outflow_updates},
        ).execute()

    # --- Reference data ---

    async def get_categories(self) -> list[Category]:
        result = await self.client.table("categories").select("*").execute()
        return [Category.model_validate(row) for row in result.data]

    async def get_source_periods(self) -> list[SourcePeriod]:
        result = await (
            self.client.table("source_periods")
            .select("*")
            .order("start_date")
            .execute()
        )
        return [source_period_from_row(row) for row in result.data]

    async def get_active_budgets(self, user_id: str) -> list[Budget]:
        result = await (
            self.client.table("budgets")
            .select("*")
            .eq("user_id", user_id)
            .eq("is_active", True)
            .execute()
        )
        return [
            Budget.model_validate({
                **row,
                "start_date": _to_date_str(row.get("start_date")),
                "end_date": _to_date_str(row.get("end_date")),
            })
            for row in result.data
        ]

    async def get_due_outflow_periods(
        self, user_id: str, start: date, end: date
    ) -> list[OutflowPeriod]:
        result = await (
            self.client.table("outflow_periods")
            .select("*")
            .eq("user_id", user_id)
            .eq("is_due_period", True)
            .gte("expected_due_date", start.isoformat())
            .lte("expected_due_date", end.isoformat())
            .execute()
        )
        return [outflow_period_from_row(row) for row in result.data]

    # --- Webhooks ---

    async def get_webhook_event(self, request_id: str) -> dict | None:
        result = await (
            self.client.table("plaid_webhooks")
            .select("request_id")
            .eq("request_id", request_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def create_webhook_event(self, event_data: dict) -> dict | None:
        result = await self.client.table("plaid_webhooks").insert(event_data).execute()
        return result.data[0] if result.data else None

    async def update_webhook_event(self, request_id: str, data: dict) -> dict | None:
        result = await (
            self.client.table("plaid_webhooks")
            .update(data)
            .eq("request_id", request_id)
            .execute()
        )
        return result.data[0] if result.data else None

    # --- Recurring Streams ---

    async def get_stream_ids(self, direction: StreamDirection, user_id: str) -> set[str]:
        result = await (
            self.client.table(STREAM_TABLES[direction])
            .select("stream_id")
            .eq("user_id", user_id)
            .execute()
        )
        return {row["stream_id"] for row in result.data}

    async def upsert_stream(self, direction: StreamDirection, stream_data: dict) -> dict | None:
        result = await (
            self.client.table(STREAM_TABLES[direction])
            .upsert({**stream_data, "updated_at": _utcnow()}, on_conflict="stream_id,user_id")
            .execute()
        )
        return result.data[0] if result.data else None

    # --- Sync Jobs ---

    async def create_sync_job(self, job_data: dict) -> dict:
        result = await self.client.table("sync_jobs").insert(job_data).execute()
        return result.data[0]

    async def get_sync_job_by_id(self, job_id: str) -> dict | None:
        result = await self.client.table("sync_jobs").select("*").eq("id", job_id).execute()
        return result.data[0] if result.data else None

    async def get_sync_jobs_for_user(self, user_id: str, limit: int = 20) -> list[dict]:
        item_ids = await self._get_user_plaid_item_ids(user_id)
        if not item_ids:
            return []
        result = await (
            self.client.table("sync_jobs")
            .select("*")
            .in_("plaid_item_id", item_ids)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data

    async def update_sync_job(self, job_id: str, data: dict) -> dict | None:
        result = await self.client.table("sync_jobs").update(data).eq("id", job_id).execute()
        return result.data[0] if result.data else None
