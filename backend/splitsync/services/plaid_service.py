"""Plaid API service wrapper."""

import asyncio
import json
from typing import Any

import plaid
from plaid.api import plaid_api
from plaid.model.transactions_recurring_get_request import TransactionsRecurringGetRequest
from plaid.model.transactions_sync_request import TransactionsSyncRequest

from splitsync.config import Settings
from splitsync.logging_config import get_logger
from splitsync.schemas.plaid import (
    PlaidItemStatus,
    RawTransaction,
    RecurringStreamsResponse,
    TransactionsSyncPage,
)


logger = get_logger("services.plaid")

MAX_SYNC_PAGE_SIZE = 500

# Item needs the user to go through Link update mode
REAUTH_ERROR_CODES = {
    "ITEM_LOGIN_REQUIRED",
    "ACCESS_NOT_GRANTED",
    "INSTITUTION_ERROR",
    "INSTITUTION_DOWN",
    "INSTITUTION_NOT_RESPONDING",
    "INVALID_CREDENTIALS",
    "INVALID_MFA",
    "INVALID_SEND_METHOD",
    "ITEM_LOCKED",
    "USER_SETUP_REQUIRED",
    "MFA_NOT_SUPPORTED",
    "NO_ACCOUNTS",
    "ITEM_NOT_SUPPORTED",
}

# Item is gone for good
REMOVED_ERROR_CODES = {"ITEM_NOT_FOUND", "ACCESS_NOT_GRANTED"}

RATE_LIMIT_ERROR_CODES = {"RATE_LIMIT_EXCEEDED"}

# Safe to retry on the next run
TEMPORARY_ERROR_CODES = {
    "INTERNAL_SERVER_ERROR",
    "PLANNED_MAINTENANCE",
    "INSTITUTION_DOWN",
    "INSTITUTION_NOT_RESPONDING",
}

RAW_TRANSACTION_FIELDS = (
    "transaction_id",
    "account_id",
    "amount",
    "iso_currency_code",
    "date",
    "name",
    "merchant_name",
    "pending",
    "personal_finance_category",
)


class PlaidServiceError(Exception):
    """A Plaid API call failed."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        error_type: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.error_type = error_type
        self.status_code = status_code

    @property
    def requires_reauth(self) -> bool:
        return self.error_code in REAUTH_ERROR_CODES

    @property
    def item_removed(self) -> bool:
        return self.error_code in REMOVED_ERROR_CODES

    @property
    def is_rate_limited(self) -> bool:
        return self.error_code in RATE_LIMIT_ERROR_CODES

    @property
    def is_temporary(self) -> bool:
        return self.error_code in TEMPORARY_ERROR_CODES or (
            self.status_code is not None and self.status_code >= 500
        )

    @property
    def item_status(self) -> str | None:
        """Connection status this error should leave behind, if any.

        Codes listed in more than one set resolve in the order below, e.g.
        ACCESS_NOT_GRANTED is "removed" and INSTITUTION_DOWN is temporary.
        """
        if self.item_removed:
            return PlaidItemStatus.REMOVED
        if self.is_rate_limited:
            return PlaidItemStatus.RATE_LIMITED
        if self.is_temporary:
            return PlaidItemStatus.TEMPORARY_ERROR
        if self.requires_reauth:
            return PlaidItemStatus.REAUTH
        return None

    @property
    def is_terminal(self) -> bool:
        """The connection can't sync again without user action."""
        return self.item_status in (PlaidItemStatus.REAUTH, PlaidItemStatus.REMOVED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code,
            "error_type": self.error_type,
            "error_message": str(self),
        }

    @classmethod
    def from_api_exception(cls, exc: plaid.ApiException) -> "PlaidServiceError":
        """Pull Plaid's error fields out of the JSON response body."""
        try:
            body = json.loads(exc.body) if exc.body else {}
        except (TypeError, ValueError):
            body = {}
        return cls(
            body.get("error_message") or str(exc.reason),
            error_code=body.get("error_code"),
            error_type=body.get("error_type"),
            status_code=exc.status,
        )


class ConnectionInactiveError(Exception):
    """The connection is deactivated or waiting on the user to relink."""

    def __init__(self, item_id: str, status: str | None):
        super().__init__(f"Plaid item {item_id} is not active (status: {status})")
        self.item_id = item_id
        self.status = status


def build_plaid_client(settings: Settings) -> plaid_api.PlaidApi:
    """Create a Plaid API client."""
    env_map = {
        "sandbox": plaid.Environment.Sandbox,
        "production": plaid.Environment.Production,
    }

    configuration = plaid.Configuration(
        host=env_map.get(settings.plaid_env, plaid.Environment.Sandbox),
        api_key={
            "clientId": settings.plaid_client_id,
            "secret": settings.plaid_secret,
        },
    )

    api_client = plaid.ApiClient(configuration)
    return plaid_api.PlaidApi(api_client)


def _raw_transaction(txn: dict) -> RawTransaction:
    return {field: txn.get(field) for field in RAW_TRANSACTION_FIELDS}


class PlaidService:
    """Async facade over the (synchronous) Plaid client."""

    def __init__(self, client: plaid_api.PlaidApi, page_size: int = MAX_SYNC_PAGE_SIZE):
        self.client = client
        self.page_size = min(page_size, MAX_SYNC_PAGE_SIZE)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PlaidService":
        return cls(build_plaid_client(settings), page_size=settings.sync_page_size)

    async def _call(self, method, request):
        try:
            response = await asyncio.to_thread(method, request)
        except plaid.ApiException as e:
            error = PlaidServiceError.from_api_exception(e)
            logger.error(f"[Plaid] {error.error_code or e.status}: {error}")
            raise error from e
        return response.to_dict()

    async def sync_transactions(
        self, access_token: str, cursor: str | None = None
    ) -> TransactionsSyncPage:
        """
        Fetch one page of /transactions/sync.

        Args:
            access_token: The Plaid access token for the item.
            cursor: Cursor from the previous page, None for a full history.

        Returns:
            TransactionsSyncPage with added, modified and removed records.

        Raises:
            PlaidServiceError: The request failed.
        """
        request_kwargs = {"access_token": access_token, "count": self.page_size}
        if cursor:
            request_kwargs["cursor"] = cursor

        data = await self._call(
            self.client.transactions_sync, TransactionsSyncRequest(**request_kwargs)
        )

        return TransactionsSyncPage(
            added=[_raw_transaction(txn) for txn in data.get("added", [])],
            modified=[_raw_transaction(txn) for txn in data.get("modified", [])],
            removed=[txn["transaction_id"] for txn in data.get("removed", [])],
            next_cursor=data["next_cursor"],
            has_more=data.get("has_more", False),
        )

    async def get_recurring_transactions(self, access_token: str) -> RecurringStreamsResponse:
        """
        Fetch recurring inflow and outflow streams for an item.

        Raises:
            PlaidServiceError: The request failed.
        """
        data = await self._call(
            self.client.transactions_recurring_get,
            TransactionsRecurringGetRequest(access_token=access_token),
        )
        return RecurringStreamsResponse(
            inflow_streams=data.get("inflow_streams", []),
            outflow_streams=data.get("outflow_streams", []),
        )
