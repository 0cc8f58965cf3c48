"""Plaid webhook processing: verify, dedupe, record, dispatch."""

import asyncio
import hashlib
import hmac
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Coroutine
from uuid import uuid4

from splitsync.config import Settings, get_settings
from splitsync.database import Database
from splitsync.logging_config import get_logger
from splitsync.schemas.plaid import PlaidItemStatus, is_syncable
from splitsync.schemas.webhook import (
    PlaidWebhook,
    ProcessingStatus,
    WebhookCode,
    WebhookEvent,
    WebhookResult,
    WebhookStatus,
    WebhookType,
)
from splitsync.services.recurring_service import RecurringService
from splitsync.services.sync_service import SyncService


logger = get_logger("services.webhook")

RATE_LIMITED_CODES = {WebhookCode.SYNC_UPDATES_AVAILABLE, WebhookCode.DEFAULT_UPDATE}
UNLIMITED_SYNC_CODES = {WebhookCode.INITIAL_UPDATE, WebhookCode.HISTORICAL_UPDATE}

ITEM_STATUS_BY_CODE = {
    WebhookCode.ERROR: PlaidItemStatus.ERROR,
    WebhookCode.PENDING_EXPIRATION: PlaidItemStatus.PENDING_EXPIRATION,
    WebhookCode.USER_PERMISSION_REVOKED: PlaidItemStatus.PERMISSION_REVOKED,
}


class WebhookSignatureError(Exception):
    """The webhook body doesn't carry a valid signature."""


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None, secret: str | None) -> bool:
    if not signature or not secret:
        return False
    expected = compute_signature(raw_body, secret).encode()
    # Starlette decodes header values as latin-1
    received = signature.strip().lower().encode("latin-1", errors="replace")
    return hmac.compare_digest(expected, received)


def processing_status(result: WebhookResult) -> str:
    """Audit record status for a dispatch outcome."""
    if result.status == WebhookStatus.DISPATCHED:
        return ProcessingStatus.PROCESSED if result.processed else ProcessingStatus.FAILED
    return result.status.value


class WebhookTracker:
    """
    Per-worker webhook state that outlives a single request.

    Holds the request ids currently being processed and the background
    tasks that write webhook records.
    """

    def __init__(self):
        self.in_flight: set[str] = set()
        self.background: set[asyncio.Task] = set()

    def claim(self, request_id: str) -> bool:
        """Mark a request id as in flight. False if it already was."""
        if request_id in self.in_flight:
            return False
        self.in_flight.add(request_id)
        return True

    def release(self, request_id: str) -> None:
        self.in_flight.discard(request_id)

    def spawn(self, coro: Coroutine[Any, Any, Any], label: str) -> asyncio.Task:
        """Run a coroutine in the background, logging any failure."""
        task = asyncio.create_task(coro)
        self.background.add(task)

        def _done(finished: asyncio.Task) -> None:
            self.background.discard(finished)
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                logger.error(f"[Webhook] Background task {label} failed: {error}")

        task.add_done_callback(_done)
        return task

    async def drain(self) -> None:
        """Wait for outstanding background tasks (shutdown, tests)."""
        if self.background:
            await asyncio.gather(*list(self.background), return_exceptions=True)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class WebhookProcessor:
    """Handles one Plaid webhook delivery end to end."""

    def __init__(
        self,
        db: Database,
        sync_service: SyncService,
        recurring_service: RecurringService,
        settings: Settings | None = None,
        tracker: WebhookTracker | None = None,
    ):
        self.db = db
        self.sync_service = sync_service
        self.recurring_service = recurring_service
        self.settings = settings or get_settings()
        self.tracker = tracker or WebhookTracker()

    def verify(self, raw_body: bytes, signature: str | None) -> None:
        """
        Check the Plaid-Verification signature.

        Raises:
            WebhookSignatureError: Verification is on and the signature is
                missing, wrong, or no secret is configured.
        """
        if not self.settings.should_verify_webhooks:
            return
        if not self.settings.plaid_webhook_secret:
            raise WebhookSignatureError("Webhook secret is not configured")
        if not verify_signature(raw_body, signature, self.settings.plaid_webhook_secret):
            raise WebhookSignatureError("Invalid webhook signature")

    async def process(self, raw_body: bytes, signature: str | None) -> WebhookResult:
        """
        Verify, dedupe, record and dispatch a webhook.

        Args:
            raw_body: The request body exactly as received.
            signature: Value of the Plaid-Verification header.

        Returns:
            WebhookResult describing what happened. Downstream failures are
            reported here rather than raised.

        Raises:
            WebhookSignatureError: Signature check failed.
            pydantic.ValidationError: Body is not a webhook.
        """
        self.verify(raw_body, signature)
        webhook = PlaidWebhook.model_validate_json(raw_body)

        request_id = webhook.request_id or f"local-{uuid4()}"
        if not self.tracker.claim(request_id):
            logger.info(f"[Webhook] Duplicate in-flight webhook {request_id} ignored")
            return WebhookResult(
                status=WebhookStatus.DEDUPED, message="Duplicate webhook ignored"
            )

        try:
            if webhook.request_id and await self.db.get_webhook_event(request_id):
                logger.info(f"[Webhook] Duplicate webhook {request_id} ignored")
                return WebhookResult(
                    status=WebhookStatus.DEDUPED, message="Duplicate webhook ignored"
                )

            record_task = self._record(webhook, request_id)
            logger.info(
                f"[Webhook] {webhook.webhook_type}/{webhook.webhook_code} "
                f"for item {webhook.item_id} ({request_id})"
            )
            result = await self.dispatch(webhook)
            self.tracker.spawn(
                self._complete(record_task, request_id, result),
                f"complete {request_id}",
            )
            return result
        finally:
            self.tracker.release(request_id)

    def _record(self, webhook: PlaidWebhook, request_id: str) -> asyncio.Task:
        event = WebhookEvent(
            request_id=request_id,
            webhook_type=webhook.webhook_type,
            webhook_code=webhook.webhook_code,
            item_id=webhook.item_id,
            payload=webhook.payload,
            created_at=datetime.now(timezone.utc),
        )
        return self.tracker.spawn(
            self.db.create_webhook_event(event.model_dump(mode="json")),
            f"record {request_id}",
        )

    async def _complete(
        self, record_task: asyncio.Task, request_id: str, result: WebhookResult
    ) -> None:
        """Stamp the audit record with the outcome once it has been inserted."""
        await record_task
        await self.db.update_webhook_event(request_id, {
            "processing_status": processing_status(result),
            "processing_result": result.message,
            "processed_at": datetime.now(timezone.utc).isoformat(),
        })

    async def dispatch(self, webhook: PlaidWebhook) -> WebhookResult:
        if webhook.webhook_type == WebhookType.TRANSACTIONS:
            return await self._handle_transactions(webhook)
        if webhook.webhook_type == WebhookType.ITEM:
            return await self._handle_item(webhook)
        if webhook.webhook_type == WebhookType.RECURRING_TRANSACTIONS:
            return await self._handle_recurring(webhook)

        logger.info(f"[Webhook] Unhandled webhook type: {webhook.webhook_type}")
        return WebhookResult(
            status=WebhookStatus.IGNORED,
            message=f"Unhandled webhook type: {webhook.webhook_type}",
        )

    async def _get_item(self, webhook: PlaidWebhook) -> dict | None:
        if not webhook.item_id:
            return None
        item = await self.db.get_plaid_item_by_plaid_id(webhook.item_id)
        if item is None:
            logger.warning(f"[Webhook] Item {webhook.item_id} not found")
        return item

    def minutes_until_next_sync(self, item: dict, now: datetime | None = None) -> int:
        """Minutes left in the webhook sync window, 0 when a sync may run."""
        last_synced_at = _parse_timestamp(item.get("last_synced_at"))
        if last_synced_at is None:
            return 0
        now = now or datetime.now(timezone.utc)
        interval = timedelta(hours=self.settings.webhook_sync_min_interval_hours)
        remaining = _as_utc(last_synced_at) + interval - _as_utc(now)
        if remaining <= timedelta(0):
            return 0
        return math.ceil(remaining.total_seconds() / 60)

    async def _handle_transactions(self, webhook: PlaidWebhook) -> WebhookResult:
        code = webhook.webhook_code
        if code not in RATE_LIMITED_CODES | UNLIMITED_SYNC_CODES | {
            WebhookCode.TRANSACTIONS_REMOVED
        }:
            return self._unhandled_code(webhook)

        item = await self._get_item(webhook)
        if item is None:
            return WebhookResult(status=WebhookStatus.IGNORED, message="Item not found")
        if not is_syncable(item.get("is_active", True), item.get("status")):
            return self._inactive(webhook, item)

        if code == WebhookCode.TRANSACTIONS_REMOVED:
            try:
                removed = await self.sync_service.process_removed(
                    webhook.removed_transactions
                )
            except Exception as e:
                return self._failed("Removal", webhook, e)
            return WebhookResult(
                status=WebhookStatus.DISPATCHED,
                processed=True,
                message=f"{removed} transactions removed",
            )

        if code in RATE_LIMITED_CODES:
            minutes = self.minutes_until_next_sync(item)
            if minutes > 0:
                logger.info(
                    f"[Webhook] Item {webhook.item_id} rate limited: "
                    f"{minutes} minutes remaining"
                )
                return WebhookResult(
                    status=WebhookStatus.RATE_LIMITED,
                    message=f"Rate limited: {minutes} minutes remaining",
                )

        try:
            job = await self.sync_service.sync_item(item["id"])
        except Exception as e:
            return self._failed("Sync", webhook, e)

        return WebhookResult(
            status=WebhookStatus.DISPATCHED,
            processed=True,
            message=(
                f"Synced {job.get('transactions_added', 0)} new, "
                f"{job.get('transactions_modified', 0)} modified, "
                f"{job.get('transactions_removed', 0)} removed transactions"
            ),
        )

    async def _handle_item(self, webhook: PlaidWebhook) -> WebhookResult:
        code = webhook.webhook_code
        if code == WebhookCode.NEW_ACCOUNTS_AVAILABLE:
            return WebhookResult(
                status=WebhookStatus.DISPATCHED,
                processed=True,
                message="New accounts acknowledged",
            )

        status = ITEM_STATUS_BY_CODE.get(code)
        if status is None:
            return self._unhandled_code(webhook)

        item = await self._get_item(webhook)
        if item is None:
            return WebhookResult(status=WebhookStatus.IGNORED, message="Item not found")

        try:
            await self.db.set_plaid_item_status(item["id"], status, webhook.error)
        except Exception as e:
            return self._failed("Status update", webhook, e)

        logger.warning(f"[Webhook] Item {webhook.item_id} status -> {status}")
        return WebhookResult(
            status=WebhookStatus.DISPATCHED,
            processed=True,
            message=f"Item status updated to {status}",
        )

    async def _handle_recurring(self, webhook: PlaidWebhook) -> WebhookResult:
        if webhook.webhook_code != WebhookCode.RECURRING_TRANSACTIONS_UPDATE:
            return self._unhandled_code(webhook)

        item = await self._get_item(webhook)
        if item is None:
            return WebhookResult(status=WebhookStatus.IGNORED, message="Item not found")
        if not is_syncable(item.get("is_active", True), item.get("status")):
            return self._inactive(webhook, item)

        try:
            result = await self.recurring_service.sync_recurring(item["id"])
        except Exception as e:
            return self._failed("Recurring sync", webhook, e)

        inflows = result.inflows_created + result.inflows_updated
        outflows = result.outflows_created + result.outflows_updated
        return WebhookResult(
            status=WebhookStatus.DISPATCHED,
            processed=True,
            message=f"Synced {inflows} inflows, {outflows} outflows",
        )

    def _inactive(self, webhook: PlaidWebhook, item: dict) -> WebhookResult:
        logger.info(
            f"[Webhook] Item {webhook.item_id} is not active "
            f"(status: {item.get('status')}), skipping {webhook.webhook_code}"
        )
        return WebhookResult(status=WebhookStatus.IGNORED, message="Item is not active")

    def _unhandled_code(self, webhook: PlaidWebhook) -> WebhookResult:
        logger.info(
            f"[Webhook] Unhandled {webhook.webhook_type} webhook code: {webhook.webhook_code}"
        )
        return WebhookResult(
            status=WebhookStatus.IGNORED,
            message=f"Unhandled webhook code: {webhook.webhook_code}",
        )

    def _failed(self, action: str, webhook: PlaidWebhook, error: Exception) -> WebhookResult:
        logger.error(f"[Webhook] {action} failed for item {webhook.item_id}: {error}")
        return WebhookResult(
            status=WebhookStatus.DISPATCHED,
            processed=False,
            message=f"{action} failed: {error}",
        )
