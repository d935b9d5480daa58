"""Stripe webhook endpoint."""

import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from ....core.config import Settings
from ....core.dependencies import get_settings, get_stripe_service, get_subscription_service
from ....domain.errors import SignatureInvalid
from ....services.stripe_service import StripeService
from ....services.subscription_service import SubscriptionService

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/stripe", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    stripe_service: StripeService = Depends(get_stripe_service),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    """Handle Stripe webhook events.

    The body is read raw because the signature covers the exact bytes sent.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    try:
        event = stripe_service.parse_event(payload, sig_header, settings.stripe_webhook_secret)
    except SignatureInvalid as exc:
        logger.error("Webhook signature verification failed: %s", exc.message)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Webhook signature verification failed"},
        )

    try:
        subscription_service.apply_event(event)
    except Exception:
        logger.exception("Webhook processing failed for event %s", event.event_id)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook processing failed"},
        )

    return {"received": True}
