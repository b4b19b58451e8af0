"""
Billing provider protocol.

Defines the interface for billing providers (Stripe, etc.) and the typed
errors the billing feature raises. Business logic only sees these types,
never SDK objects.
"""
from typing import Protocol, Dict, Any, Optional
from dataclasses import dataclass, field

from secondchances.core.errors import AppError

from secondchances.features.billing.plans import Plan


@dataclass(frozen=True)
class CheckoutSession:
    """Handle returned to the client for the hosted-checkout redirect."""
    session_id: str
    plan_id: str
    url: Optional[str] = None


@dataclass(frozen=True)
class BillingEvent:
    """A verified provider event, reduced to what the ledger needs."""
    event_id: str
    event_type: str
    payload: Dict[str, Any] = field(default_factory=dict)  # data.object

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.payload.get("metadata") or {}


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Checkout session creation
    - Webhook signature verification and parsing
    """

    def create_checkout_session(
        self,
        plan: Plan,
        customer_email: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> CheckoutSession:
        """
        Create a hosted checkout session for a recurring subscription.

        Args:
            plan: Catalog plan (price, interval, interval_count)
            customer_email: Email to prefill on the checkout page
            success_url: URL to redirect on success
            cancel_url: URL to redirect on cancellation
            metadata: Correlation metadata echoed back in webhook events

        Returns:
            CheckoutSession with the provider session id

        Raises:
            CheckoutCreationFailed: If the provider is unreachable or rejects the request
        """
        ...

    def construct_event(self, body: bytes, signature: Optional[str]) -> BillingEvent:
        """
        Verify webhook signature over the raw body and parse the event.

        Args:
            body: Raw webhook body exactly as received
            signature: Value of the provider signature header

        Returns:
            Parsed BillingEvent

        Raises:
            InvalidSignature: If the signature is missing or does not verify
            InvalidPayload: If a verified body is not an event envelope
        """
        ...


class BillingProviderError(AppError):
    """Base exception for billing provider errors."""
    code = "billing_error"
    status_code = 500


class BillingDisabledError(BillingProviderError):
    """Billing is not configured (STRIPE_SECRET_KEY unset)."""
    code = "billing_disabled"
    status_code = 503


class InvalidPlan(BillingProviderError):
    """Plan id is not in the static catalog. User-correctable."""
    code = "invalid_plan"
    status_code = 400


class CheckoutCreationFailed(BillingProviderError):
    """Provider unreachable, timed out or rejected the request. Safe to retry."""
    code = "checkout_creation_failed"
    status_code = 503
    retryable = True


class BillingWebhookError(BillingProviderError):
    """Exception for webhook processing errors."""
    code = "webhook_error"
    status_code = 400


class InvalidSignature(BillingWebhookError):
    code = "invalid_signature"


class InvalidPayload(BillingWebhookError):
    code = "invalid_payload"
