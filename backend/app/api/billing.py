"""Billing API routes"""
import logging
from typing import Optional
import stripe
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import require_auth
from app.db.session import get_db
from app.schemas.billing import BillingStatusResponse, WebhookAck
from app.services.notification_service import get_notifier
from app.services.stripe_service import StripeBillingProvider, get_billing_provider
from app.services.subscription_service import (
    CheckoutSessionForbidden,
    UserGone,
    get_billing_portal_url,
    get_billing_status,
)
from app.services.webhook_service import WebhookDispatcher

router = APIRouter(prefix="/api/billing", tags=["billing"])
logger = logging.getLogger(__name__)


@router.post("/webhook", response_model=WebhookAck, response_model_exclude_none=True)
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    provider: StripeBillingProvider = Depends(get_billing_provider),
    notifier=Depends(get_notifier),
):
    """Handle Stripe webhook events

    Note: the body must reach this route as raw bytes; the signature is
    computed over the exact payload Stripe sent.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    dispatcher = WebhookDispatcher(db, provider, notifier, schedule=background_tasks.add_task)
    try:
        return dispatcher.process(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.error(f"Invalid webhook signature: {e}")
        return JSONResponse(status_code=400, content={"received": False, "error": "Invalid signature"})
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        return JSONResponse(status_code=400, content={"received": False, "error": str(e)})


@router.get("/status", response_model=BillingStatusResponse)
def billing_status(
    session_id: Optional[str] = None,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    provider: StripeBillingProvider = Depends(get_billing_provider),
):
    """Entitlement for the current user, reconciled against a checkout session when given"""
    try:
        return get_billing_status(user_id, db, provider, session_id=session_id)
    except CheckoutSessionForbidden as e:
        raise HTTPException(403, str(e))
    except UserGone:
        raise HTTPException(401, "Session expired. Please log in again.")
    except stripe.StripeError as e:
        logger.error(f"Failed to reconcile checkout session {session_id} for user {user_id}: {e}")
        raise HTTPException(502, "Could not reach billing provider")


@router.get("/portal")
def billing_portal(
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    provider: StripeBillingProvider = Depends(get_billing_provider),
):
    """Get Stripe billing portal URL"""
    return_url = f"{settings.FRONTEND_URL}/account"
    try:
        portal_url = get_billing_portal_url(user_id, db, provider, return_url)
    except UserGone:
        raise HTTPException(401, "Session expired. Please log in again.")
    except stripe.StripeError as e:
        logger.error(f"Failed to create portal session for user {user_id}: {e}")
        raise HTTPException(500, "Failed to create portal session")

    if not portal_url:
        raise HTTPException(400, "No Stripe customer")
    return {"url": portal_url}
