"""Webhook API routes for provider callbacks."""

import logging

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import ValidationError

from src.core.config import get_settings
from src.schemas.fulfillment import ProviderCallbackPayload
from src.services.reconciliation_service import ReconciliationService, verify_callback_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/provider",
    status_code=status.HTTP_200_OK,
    summary="Handle provider order callbacks",
    description="Receives order status updates from the top-up provider. Requires a valid signature or shared secret.",
)
async def provider_webhook(request: Request) -> dict[str, str]:
    """Handle a provider order status callback.

    The order is settled through the same monotonic write path the poller
    uses, so duplicate or late callbacks are harmless. Callbacks for
    unknown orders are acknowledged and logged.

    Args:
        request: FastAPI request object for reading raw body and headers.

    Returns:
        dict: Acknowledgment message.

    Raises:
        HTTPException: 401 if the callback cannot be authenticated, 400 if the body is invalid.
    """
    body = await request.body()
    settings = get_settings()

    if not settings.provider_webhook_secret:
        logger.error("Provider webhook secret not configured; rejecting callback")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Webhook authentication not configured",
        )

    if not verify_callback_signature(body, request.headers, settings.provider_webhook_secret):
        logger.warning("Invalid provider callback signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        )

    try:
        payload = ProviderCallbackPayload.model_validate_json(body)
    except ValidationError as e:
        logger.warning("Malformed provider callback: %s", str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid callback payload",
        ) from e

    logger.info(
        "Provider callback: order %s status %s",
        payload.order_id,
        payload.status,
    )

    service = ReconciliationService()
    await service.handle_callback(payload.model_dump())

    return {"status": "received"}
