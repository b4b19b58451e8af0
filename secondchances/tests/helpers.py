"""Shared test helpers: bearer headers and Stripe-signed webhook payloads."""
import hashlib
import hmac
import json
import time

WEBHOOK_SECRET = "whsec_test_secret"


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def sign_stripe_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header value (t=...,v1=HMAC-SHA256 of "t.payload")."""
    ts = int(timestamp if timestamp is not None else time.time())
    signed = f"{ts}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def stripe_event(event_type: str, obj: dict, event_id: str = "evt_test_1") -> str:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    })


def checkout_completed(user_id, subscription_id: str, event_id: str = "evt_checkout_1") -> str:
    return stripe_event(
        "checkout.session.completed",
        {
            "id": "cs_test_123",
            "object": "checkout.session",
            "subscription": subscription_id,
            "metadata": {"user_id": str(user_id), "plan_id": "monthly"},
        },
        event_id=event_id,
    )


def subscription_deleted(subscription_id: str, event_id: str = "evt_deleted_1") -> str:
    return stripe_event(
        "customer.subscription.deleted",
        {"id": subscription_id, "object": "subscription", "status": "canceled"},
        event_id=event_id,
    )
