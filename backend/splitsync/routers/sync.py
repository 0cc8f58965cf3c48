"""Sync router - trigger and monitor transaction syncs."""

from fastapi import APIRouter, Depends, HTTPException, status

from splitsync.database import Database
from splitsync.dependencies import (
    get_current_user,
    get_database,
    get_recurring_service,
    get_sync_service,
)
from splitsync.logging_config import get_logger
from splitsync.schemas.sync import (
    RecurringSyncResponse,
    SyncJobResponse,
    SyncStatusResponse,
    SyncTriggerResponse,
)
from splitsync.services.plaid_service import ConnectionInactiveError, PlaidServiceError
from splitsync.services.recurring_service import RecurringService
from splitsync.services.sync_service import SyncService


logger = get_logger("routers.sync")

router = APIRouter(prefix="/sync", tags=["Sync"])


def _job_response(job: dict) -> SyncJobResponse:
    return SyncJobResponse(
        id=job["id"],
        plaid_item_id=job["plaid_item_id"],
        status=job["status"],
        started_at=job.get("started_at"),
        completed_at=job.get("completed_at"),
        error_message=job.get("error_message"),
        transactions_added=job.get("transactions_added", 0),
        transactions_modified=job.get("transactions_modified", 0),
        transactions_removed=job.get("transactions_removed", 0),
        budget_ids_fixed=job.get("budget_ids_fixed", 0),
        amounts_redistributed=job.get("amounts_redistributed", 0),
        budgets_reassigned=job.get("budgets_reassigned", 0),
        outflows_matched=job.get("outflows_matched", 0),
        created_at=job["created_at"],
    )


async def _get_owned_item(db: Database, item_id: str, user: dict) -> dict:
    item = await db.get_plaid_item_by_id(item_id)
    if item is None or item["user_id"] != user["id"]:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Plaid item not found",
        )
    return item


def _plaid_error(e: PlaidServiceError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=e.to_dict(),
    )


@router.post("/trigger", response_model=SyncTriggerResponse)
async def trigger_sync_all(
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
    sync_service: SyncService = Depends(get_sync_service),
):
    """Trigger a sync for all of the current user's active Plaid items."""
    items = await db.get_user_active_plaid_items(user["id"])
    if not items:
        return SyncTriggerResponse(job_ids=[], message="No active Plaid items to sync")

    job_ids = []
    for item in items:
        try:
            job = await sync_service.sync_item(item["id"])
            job_ids.append(job["id"])
        except Exception as e:
            logger.error(f"[Sync] Manual sync of item {item['id']} failed: {e}")

    return SyncTriggerResponse(
        job_ids=job_ids,
        message=f"Synced {len(job_ids)} of {len(items)} items",
    )


@router.post("/trigger/{item_id}", response_model=SyncTriggerResponse)
async def trigger_sync_item(
    item_id: str,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
    sync_service: SyncService = Depends(get_sync_service),
):
    """Trigger a sync for a specific Plaid item."""
    await _get_owned_item(db, item_id, user)

    try:
        job = await sync_service.sync_item(item_id)
    except PlaidServiceError as e:
        raise _plaid_error(e)
    except ConnectionInactiveError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return SyncTriggerResponse(
        job_ids=[job["id"]],
        message="Sync completed",
    )


@router.post("/recurring/{item_id}", response_model=RecurringSyncResponse)
async def trigger_recurring_sync(
    item_id: str,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
    recurring_service: RecurringService = Depends(get_recurring_service),
):
    """Refresh recurring inflow and outflow streams for a Plaid item."""
    await _get_owned_item(db, item_id, user)

    try:
        return await recurring_service.sync_recurring(item_id)
    except PlaidServiceError as e:
        raise _plaid_error(e)
    except ConnectionInactiveError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    """Get all sync jobs for the current user."""
    jobs = await db.get_sync_jobs_for_user(user["id"])
    return SyncStatusResponse(jobs=[_job_response(job) for job in jobs])


@router.get("/status/{job_id}", response_model=SyncJobResponse)
async def get_sync_job(
    job_id: str,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    """Get a specific sync job."""
    job = await db.get_sync_job_by_id(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Sync job not found",
        )

    # Verify ownership via the plaid_item
    item = await db.get_plaid_item_by_id(job["plaid_item_id"])
    if item is None or item["user_id"] != user["id"]:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Sync job not found",
        )

    return _job_response(job)
