"""Recurring inflow/outflow stream sync."""

from typing import Any

from postgrest.exceptions import APIError
from pydantic import ValidationError

from splitsync.database import Database
from splitsync.logging_config import get_logger
from splitsync.schemas.outflow import RecurringStream, StreamDirection
from splitsync.schemas.plaid import PlaidItem
from splitsync.schemas.sync import RecurringSyncResponse
from splitsync.services.plaid_service import ConnectionInactiveError, PlaidService
from splitsync.utils.money import to_cents


logger = get_logger("services.recurring")

# Checked in order against the detailed category
EXPENSE_TYPE_KEYWORDS = (
    ("utility", ("UTILITIES", "ELECTRIC", "GAS", "WATER")),
    ("rent", ("RENT", "MORTGAGE")),
    ("insurance", ("INSURANCE",)),
    ("loan", ("LOAN", "CREDIT_CARD_PAYMENT")),
    ("tax", ("TAX",)),
)
SUBSCRIPTION_FREQUENCIES = {"MONTHLY", "ANNUALLY"}


def determine_expense_type(stream: dict[str, Any]) -> str:
    detailed = ((stream.get("personal_finance_category") or {}).get("detailed") or "").upper()
    for expense_type, keywords in EXPENSE_TYPE_KEYWORDS:
        if any(keyword in detailed for keyword in keywords):
            return expense_type
    if str(stream.get("frequency") or "").upper() in SUBSCRIPTION_FREQUENCIES:
        return "subscription"
    return "other"


def _amount(value: dict | None) -> tuple[Any, str | None]:
    value = value or {}
    return abs(to_cents(value.get("amount") or 0)), value.get("iso_currency_code")


def format_stream(
    stream: dict[str, Any], direction: StreamDirection, item: PlaidItem
) -> RecurringStream:
    """Map a Plaid TransactionStream onto the stored stream record."""
    average_amount, currency = _amount(stream.get("average_amount"))
    last_amount, _ = _amount(stream.get("last_amount"))
    category = stream.get("personal_finance_category") or {}

    return RecurringStream(
        stream_id=stream["stream_id"],
        user_id=item.user_id,
        plaid_item_id=item.plaid_item_id,
        account_id=stream.get("account_id") or "",
        direction=direction,
        description=stream.get("description") or stream.get("merchant_name") or "",
        merchant_name=stream.get("merchant_name"),
        average_amount=average_amount,
        last_amount=last_amount,
        currency=currency,
        frequency=str(stream.get("frequency") or "UNKNOWN"),
        first_date=stream["first_date"],
        last_date=stream["last_date"],
        predicted_next_date=stream.get("predicted_next_date"),
        is_active=stream.get("is_active", True),
        status=stream.get("status"),
        plaid_primary_category=category.get("primary"),
        plaid_detailed_category=category.get("detailed"),
        transaction_ids=stream.get("transaction_ids") or [],
        expense_type=(
            determine_expense_type(stream) if direction == StreamDirection.OUTFLOW else None
        ),
    )


class RecurringService:
    """Pulls /transactions/recurring/get and upserts the streams."""

    def __init__(self, db: Database, plaid: PlaidService):
        self.db = db
        self.plaid = plaid

    async def sync_recurring(self, plaid_item_id: str) -> RecurringSyncResponse:
        """
        Refresh recurring streams for one item.

        Streams are upserted by (stream_id, user_id). A stream that fails to
        format or save is recorded in `errors` and the rest carry on.

        Args:
            plaid_item_id: The internal UUID of the plaid_item row.

        Raises:
            ValueError: Unknown item.
            ConnectionInactiveError: The item needs relinking first.
            PlaidServiceError: The Plaid call failed.
        """
        connection = await self.db.get_connection(plaid_item_id)
        if connection is None:
            raise ValueError(f"Plaid item {plaid_item_id} not found")
        if not connection.can_sync:
            raise ConnectionInactiveError(plaid_item_id, connection.status)

        response = await self.plaid.get_recurring_transactions(connection.access_token)
        result = RecurringSyncResponse(
            inflows_created=0, inflows_updated=0, outflows_created=0, outflows_updated=0
        )

        for direction, streams in (
            (StreamDirection.INFLOW, response.inflow_streams),
            (StreamDirection.OUTFLOW, response.outflow_streams),
        ):
            existing = await self.db.get_stream_ids(direction, connection.user_id)
            for stream in streams:
                stream_id = stream.get("stream_id", "<missing>")
                try:
                    record = format_stream(stream, direction, connection)
                    await self.db.upsert_stream(direction, record.model_dump(mode="json"))
                except (KeyError, ValidationError, APIError) as e:
                    result.errors.append(f"{direction.value} {stream_id}: {e}")
                    continue

                created = record.stream_id not in existing
                if direction == StreamDirection.INFLOW:
                    if created:
                        result.inflows_created += 1
                    else:
                        result.inflows_updated += 1
                elif created:
                    result.outflows_created += 1
                else:
                    result.outflows_updated += 1

        logger.info(
            f"[Recurring] Item {plaid_item_id}: "
            f"inflows {result.inflows_created} new/{result.inflows_updated} updated, "
            f"outflows {result.outflows_created} new/{result.outflows_updated} updated, "
            f"{len(result.errors)} errors"
        )
        return result
