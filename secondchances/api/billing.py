"""
Billing API routes.

Subscriptions (authenticated):
- POST /api/subscriptions/create-checkout: Create checkout session
- GET  /api/subscriptions/plans: Plan catalog
- GET  /api/subscriptions/status: Caller's entitlement

Webhooks (signed by Stripe, no bearer token):
- POST /api/webhooks/stripe: Apply billing events to the entitlement ledger
"""
from typing import Dict, Any, Optional
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from secondchances.core.auth import get_current_user
from secondchances.features.billing.service import (
    available_plans,
    get_billing_status,
    process_webhook_event,
    start_checkout,
)
from secondchances.models.user import AuthenticatedUser


router = APIRouter(prefix="/subscriptions", tags=["billing"])
webhook_router = APIRouter(prefix="/webhooks", tags=["billing"])


class CheckoutRequest(BaseModel):
    """Request to create checkout session. Accepts planId (web client) or plan_id."""
    model_config = ConfigDict(populate_by_name=True)

    plan_id: Optional[str] = Field(default=None, alias="planId")


class CheckoutResponse(BaseModel):
    """Response with checkout session handle."""
    session_id: str = Field(serialization_alias="sessionId")
    url: Optional[str] = None


class BillingStatusResponse(BaseModel):
    """User billing status."""
    billing_enabled: bool
    is_premium: bool
    subscription_id: Optional[str] = None


@router.post("/create-checkout")
async def create_checkout(request: CheckoutRequest, user: AuthenticatedUser = Depends(get_current_user)):
    """
    Create Stripe checkout session for a subscription plan.

    Returns:
        {"sessionId": "cs_...", "url": "https://checkout.stripe.com/..."}

    Errors:
        400: Invalid plan_id
        401: Missing or invalid token
        503: Billing disabled, or checkout creation failed (retryable)
    """
    session = start_checkout(user, request.plan_id)
    return CheckoutResponse(session_id=session.session_id, url=session.url).model_dump(by_alias=True)


@router.get("/plans")
async def get_plans() -> Dict[str, Any]:
    return {"plans": [plan.to_dict() for plan in available_plans()]}


@router.get("/status", response_model=BillingStatusResponse)
async def get_status(user: AuthenticatedUser = Depends(get_current_user)):
    """Caller's premium state; billing_enabled is false when Stripe is not configured."""
    return get_billing_status(user)


@webhook_router.post("/stripe")
async def handle_stripe_webhook(request: Request):
    """
    Handle Stripe webhook events.

    Verifies the signature over the raw body and applies the event to the
    entitlement ledger. Duplicate deliveries are acknowledged without a
    second state change; unknown event types are acknowledged and ignored.

    Returns:
        {"received": true, "event_id": ..., "event_type": ..., "outcome": ...}

    Errors:
        400: Invalid signature or payload (nothing applied)
    """
    # Raw body, not parsed JSON: the signature covers the exact bytes
    body = await request.body()
    receipt = process_webhook_event(dict(request.headers), body)
    return receipt.to_dict()
