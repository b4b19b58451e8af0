"""
Billing service orchestrator.

Coordinates:
- Checkout initiation (plan validation, provider call, correlation metadata)
- Webhook receipt (signature verification, dispatch to the entitlement ledger)
- Billing status for the current user

All Stripe-specific code is in stripe_provider.py; all entitlement writes
are in ledger.py. Nothing here writes to the database directly.
"""
import os
from dataclasses import dataclass
from typing import Dict, Any, List, Optional

from secondchances.core.config import settings
from secondchances.core.logging import log_event
from secondchances.features.billing import ledger
from secondchances.features.billing.plans import Plan, get_plan, list_plans
from secondchances.features.billing.provider import (
    BillingDisabledError,
    BillingProvider,
    CheckoutCreationFailed,
    CheckoutSession,
    InvalidPlan,
    BillingWebhookError,
)
from secondchances.features.billing.stripe_provider import StripeProvider
from secondchances.models.user import AuthenticatedUser


@dataclass(frozen=True)
class WebhookReceipt:
    """Acknowledgement for one webhook delivery."""
    event_id: str
    event_type: str
    outcome: ledger.LedgerOutcome

    def to_dict(self) -> Dict[str, Any]:
        return {
            "received": True,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "outcome": self.outcome.value,
        }


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(os.getenv("STRIPE_SECRET_KEY"))


def get_provider() -> BillingProvider:
    """Get the configured billing provider."""
    return StripeProvider()


def available_plans() -> List[Plan]:
    return list_plans()


def start_checkout(user: AuthenticatedUser, plan_id: Optional[str]) -> CheckoutSession:
    """
    Start a hosted checkout session for a subscription plan.

    Args:
        user: Authenticated caller
        plan_id: Catalog plan id (monthly, quarterly, semi-annual, annual); None is invalid

    Returns:
        CheckoutSession to hand back to the client for redirect

    Raises:
        InvalidPlan: plan_id not in the catalog (no provider call is made)
        BillingDisabledError: STRIPE_SECRET_KEY not configured
        CheckoutCreationFailed: provider error or timeout; safe to retry
    """
    plan = get_plan(plan_id)
    if plan is None:
        raise InvalidPlan(f"Invalid plan: {plan_id}" if plan_id else "Plan id is required")

    if not billing_enabled():
        raise BillingDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY environment variable.")

    client_url = settings.CLIENT_URL.rstrip("/")
    try:
        checkout = get_provider().create_checkout_session(
            plan=plan,
            customer_email=user.email,
            success_url=f"{client_url}/success",
            cancel_url=f"{client_url}/cancel",
            metadata={"user_id": str(user.user_id), "plan_id": plan.plan_id},
        )
    except CheckoutCreationFailed as e:
        log_event(
            "error",
            "billing.checkout.failed",
            user_id=user.user_id,
            error_code=e.code,
            extra={"plan_id": plan.plan_id, "reason": e.message},
        )
        raise

    log_event(
        "info",
        "billing.checkout.created",
        user_id=user.user_id,
        extra={"plan_id": plan.plan_id, "session_id": checkout.session_id},
    )
    return checkout


def process_webhook_event(headers: Dict[str, str], body: bytes) -> WebhookReceipt:
    """
    Verify and apply one billing webhook delivery.

    1. Verify signature over the raw body
    2. Parse event
    3. Dispatch to the entitlement ledger (unknown types are ignored)

    Duplicate deliveries are safe: ledger transitions are idempotent.

    Raises:
        InvalidSignature: signature missing or invalid; nothing is applied
        InvalidPayload: verified body is not an event envelope
    """
    signature = headers.get("stripe-signature") or headers.get("Stripe-Signature")

    try:
        event = get_provider().construct_event(body, signature)
    except BillingWebhookError as e:
        log_event(
            "warning",
            "billing.webhook.rejected",
            error_code=e.code,
            extra={"reason": e.message, "body_bytes": len(body), "signed": bool(signature)},
        )
        raise

    outcome = ledger.apply_event(event)

    log_event(
        "info",
        "billing.webhook.processed",
        event_type=event.event_type,
        extra={"event_id": event.event_id, "outcome": outcome.value},
    )
    return WebhookReceipt(event_id=event.event_id, event_type=event.event_type, outcome=outcome)


def get_billing_status(user: AuthenticatedUser) -> Dict[str, Any]:
    """
    Get the caller's entitlement.

    Returns:
        {
            "billing_enabled": bool,
            "is_premium": bool,
            "subscription_id": str | None
        }
    """
    entitlement = ledger.get_entitlement(user.user_id)
    return {
        "billing_enabled": billing_enabled(),
        "is_premium": bool(entitlement and entitlement.is_premium),
        "subscription_id": entitlement.subscription_id if entitlement else None,
    }

