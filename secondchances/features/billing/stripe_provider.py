"""
Stripe billing provider implementation.

Implements BillingProvider protocol using the Stripe API.
Handles webhook signature verification and event parsing.
"""
import json
import logging
import os
from typing import Dict, Any, Optional
import stripe

from secondchances.core.config import settings
from secondchances.features.billing.plans import Plan
from secondchances.features.billing.provider import (
    BillingDisabledError,
    BillingEvent,
    CheckoutCreationFailed,
    CheckoutSession,
    InvalidPayload,
    InvalidSignature,
)

logger = logging.getLogger("secondchances")


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key (defaults to STRIPE_SECRET_KEY env var)
            webhook_secret: Stripe webhook secret (defaults to STRIPE_WEBHOOK_SECRET env var)
            timeout: Per-request timeout in seconds (defaults to STRIPE_TIMEOUT_SECONDS)
        """
        self.secret_key = secret_key or os.getenv("STRIPE_SECRET_KEY")
        self.webhook_secret = webhook_secret or os.getenv("STRIPE_WEBHOOK_SECRET")
        self.timeout = timeout or settings.STRIPE_TIMEOUT_SECONDS

        if self.secret_key:
            stripe.api_key = self.secret_key
            # Bounded calls, no silent retries: the client retries the whole checkout
            stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)
            stripe.max_network_retries = 0

    def create_checkout_session(
        self,
        plan: Plan,
        customer_email: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> CheckoutSession:
        """Create Stripe subscription checkout session priced from the plan."""
        if not self.secret_key:
            raise BillingDisabledError("STRIPE_SECRET_KEY not configured")

        metadata = metadata or {}
        try:
            session = stripe.checkout.Session.create(
                customer_email=customer_email,
                payment_method_types=["card"],
                line_items=[{
                    "price_data": {
                        "currency": settings.STRIPE_CURRENCY,
                        "product_data": {
                            "name": settings.STRIPE_PRODUCT_NAME,
                            "description": settings.STRIPE_PRODUCT_DESCRIPTION,
                        },
                        "unit_amount": plan.price,
                        "recurring": {
                            "interval": plan.interval,
                            "interval_count": plan.interval_count,
                        },
                    },
                    "quantity": 1,
                }],
                mode="subscription",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                # Mirror onto the subscription so later subscription events carry it too
                subscription_data={"metadata": metadata},
            )
        except stripe.StripeError as e:
            raise CheckoutCreationFailed(f"Stripe checkout session creation failed: {e}")

        return CheckoutSession(session_id=session.id, plan_id=plan.plan_id, url=getattr(session, "url", None))

    def construct_event(self, body: bytes, signature: Optional[str]) -> BillingEvent:
        """Verify Stripe webhook signature over the raw body and parse event."""
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET not configured; rejecting webhook")
            raise InvalidSignature("Webhook secret not configured")
        if not signature:
            raise InvalidSignature("Missing stripe-signature header")

        try:
            payload = body.decode("utf-8")
        except UnicodeDecodeError:
            raise InvalidSignature("Webhook body is not valid UTF-8")

        try:
            stripe.WebhookSignature.verify_header(
                payload,
                signature,
                self.webhook_secret,
                stripe.Webhook.DEFAULT_TOLERANCE,
            )
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature(f"Invalid signature: {e}")

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise InvalidPayload(f"Invalid payload: {e}")

        return self._parse_event(event)

    def _parse_event(self, event: Any) -> BillingEvent:
        """Reduce a Stripe event envelope to a BillingEvent."""
        if not isinstance(event, dict) or not event.get("type"):
            raise InvalidPayload("Invalid payload: not a Stripe event envelope")

        data = event.get("data") or {}
        obj = data.get("object") if isinstance(data, dict) else None

        return BillingEvent(
            event_id=str(event.get("id") or ""),
            event_type=str(event["type"]),
            payload=obj if isinstance(obj, dict) else {},
        )
