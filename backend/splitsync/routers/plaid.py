"""Plaid webhook router."""

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError

from splitsync.dependencies import get_webhook_processor
from splitsync.logging_config import get_logger
from splitsync.schemas.webhook import WebhookResponse
from splitsync.services.webhook_service import WebhookProcessor, WebhookSignatureError


logger = get_logger("routers.plaid")

router = APIRouter(prefix="/plaid", tags=["Plaid"])


@router.post("/webhook", response_model=WebhookResponse)
async def plaid_webhook(
    request: Request,
    plaid_verification: str | None = Header(default=None, alias="Plaid-Verification"),
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """
    Receive a Plaid webhook.

    Responds 200 once the event was deduped, rate limited or dispatched
    (dispatch failures are reported in the body), 401 on a bad signature.
    """
    raw_body = await request.body()

    try:
        result = await processor.process(raw_body, plaid_verification)
    except WebhookSignatureError as e:
        logger.warning(f"[Webhook] Rejected: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid webhook body: {e.error_count()} error(s)",
        )

    return WebhookResponse(
        status=result.status,
        processed=result.processed,
        message=result.message,
    )
