"""
Billing API routes backed by Stripe.

Everything under /api/billing is exempt from the gateway entitlement
check: a locked-out account must still be able to see plans and pay.
Checkout and portal still require a session (identity guard only).

SECURITY:
- The webhook MUST pass Stripe signature verification before processing
- The account is never taken from request parameters; checkout uses the
  session's user id
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from equiprofile.api.dependencies.procedures import ProtectedProcedure, get_clock
from equiprofile.config.pricing import get_public_plans
from equiprofile.database.session import get_db_session
from equiprofile.models.user import User
from equiprofile.platform.errors import (
    AppError,
    FeatureDisabledError,
    ServiceUnavailableError,
    ValidationError,
)
from equiprofile.services.billing_service import (
    CHECKOUT_PLANS,
    BillingServiceError,
    StripeBillingClient,
    StripeWebhookProcessor,
    WebhookVerificationError,
    parse_webhook_event,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])


def get_billing_client(request: Request) -> StripeBillingClient:
    """Stripe client for this app; 503 when Stripe is switched off."""
    settings = request.app.state.settings
    if not settings.enable_stripe:
        raise FeatureDisabledError("Stripe billing")
    return StripeBillingClient(settings)


@router.get("/plans")
def list_plans():
    """
    List the public pricing table.

    Does not require a session.
    """
    return {"plans": get_public_plans()}


@router.get("/checkout")
def create_checkout(
    ctx: ProtectedProcedure,
    plan: str = Query(..., description="monthly or yearly"),
    db: Session = Depends(get_db_session),
    client: StripeBillingClient = Depends(get_billing_client),
):
    """Redirect the caller to a Stripe checkout session for plan."""
    if plan not in CHECKOUT_PLANS:
        raise ValidationError("Invalid plan", details={"plan": plan, "allowed": list(CHECKOUT_PLANS)})

    price_id = client.price_id_for(plan)
    if not price_id:
        raise FeatureDisabledError(f"The {plan} plan")

    user = db.get(User, ctx.user_id)
    logger.info("Creating checkout session", extra={"user_id": ctx.user_id, "plan": plan})

    try:
        url = client.create_checkout_session(user, price_id)
    except BillingServiceError as e:
        raise ServiceUnavailableError(e.message, code="BILLING_UNAVAILABLE") from e

    return RedirectResponse(url=url, status_code=status.HTTP_303_SEE_OTHER)


@router.get("/portal")
def open_portal(
    ctx: ProtectedProcedure,
    db: Session = Depends(get_db_session),
    client: StripeBillingClient = Depends(get_billing_client),
):
    """Redirect the caller to the Stripe customer portal."""
    user = db.get(User, ctx.user_id)
    if not user.stripe_customer_id:
        raise ValidationError("No billing account found")

    try:
        url = client.create_portal_session(user.stripe_customer_id)
    except BillingServiceError as e:
        raise ServiceUnavailableError(e.message, code="BILLING_UNAVAILABLE") from e

    return RedirectResponse(url=url, status_code=status.HTTP_303_SEE_OTHER)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db_session),
):
    """
    Handle a Stripe webhook.

    Unhandled event types are acknowledged so Stripe stops retrying them.
    Storage errors return 500 so Stripe retries delivery.
    """
    settings = request.app.state.settings
    if not settings.enable_stripe:
        raise FeatureDisabledError("Stripe billing")

    body = await request.body()
    try:
        event = parse_webhook_event(body, stripe_signature, settings.stripe_webhook_secret)
    except WebhookVerificationError as e:
        logger.warning("Rejected Stripe webhook", extra={"reason": str(e), "path": request.url.path})
        raise ValidationError(str(e))

    processor = StripeWebhookProcessor(db, clock=get_clock(request))
    try:
        applied = processor.process_event(event)
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Failed to apply Stripe event",
            extra={"event_type": event.get("type"), "event_id": event.get("id")},
        )
        raise AppError(
            code="WEBHOOK_PROCESSING_FAILED",
            message="Failed to process webhook",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    return {"received": True, "applied": applied}
