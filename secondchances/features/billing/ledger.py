"""
Entitlement ledger.

Sole writer of users.is_premium and users.subscription_id. Every transition
is one conditional UPDATE scoped to the user row, so duplicate and concurrent
webhook deliveries cannot race each other into a wrong state:

- checkout.session.completed   free -> premium, stores subscription_id.
  Only applies to a row that is not already premium and whose stored
  subscription_id differs from the event's. A replay is a no-op, a stale
  replay for a cancelled subscription cannot re-grant premium, and a stale
  replay cannot displace the live subscription of a premium user. One
  active subscription per user: a second completion while premium is
  refused and logged.
- customer.subscription.deleted  premium -> free for the row holding that
  subscription_id. The id is kept on the row as history.
- invoice.payment_failed  logged only; there is no grace-period state.

No ordering between distinct events is guaranteed. A deletion that arrives
before its checkout completion matches nothing, and the completion then
grants premium.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from sqlalchemy import select, update, or_
from sqlalchemy.sql import false, true

from secondchances.core.database import get_db_session, users
from secondchances.core.logging import log_event
from secondchances.features.billing.provider import BillingEvent


CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
PAYMENT_FAILED = "invoice.payment_failed"

# users.id is a 32-bit INTEGER column
MAX_USER_ID = 2**31 - 1


class LedgerOutcome(str, Enum):
    APPLIED = "applied"        # state changed
    UNCHANGED = "unchanged"    # already in the target state (duplicate delivery)
    IGNORED = "ignored"        # nothing to act on (unknown type, no matching user, ...)


@dataclass(frozen=True)
class Entitlement:
    user_id: int
    is_premium: bool
    subscription_id: Optional[str]

    @property
    def state(self) -> str:
        return "premium" if self.is_premium else "free"


def _user_id_from(event: BillingEvent) -> Optional[int]:
    metadata = event.metadata
    # userId: sessions created by the previous Node deployment
    raw = metadata.get("user_id", metadata.get("userId"))
    try:
        user_id = int(raw)
    except (TypeError, ValueError):
        return None
    if not 0 < user_id <= MAX_USER_ID:
        return None
    return user_id


def _checkout_subscription_id(event: BillingEvent) -> Optional[str]:
    return event.payload.get("subscription") or event.metadata.get("subscription_id") or None


def _deleted_subscription_id(event: BillingEvent) -> Optional[str]:
    return event.payload.get("id") or event.payload.get("subscription_id") or None


def apply_checkout_completed(event: BillingEvent) -> LedgerOutcome:
    """Grant premium to the user named in the session metadata."""
    user_id = _user_id_from(event)
    subscription_id = _checkout_subscription_id(event)
    if user_id is None or not subscription_id:
        log_event(
            "warning",
            "ledger.checkout_completed.missing_correlation",
            event_type=event.event_type,
            extra={"event_id": event.event_id, "has_subscription": bool(subscription_id)},
        )
        return LedgerOutcome.IGNORED

    with get_db_session() as session:
        result = session.execute(
            update(users)
            .where(users.c.id == user_id)
            .where(users.c.is_premium == false())
            .where(or_(users.c.subscription_id.is_(None), users.c.subscription_id != subscription_id))
            .values(is_premium=True, subscription_id=subscription_id)
        )
        if result.rowcount:
            outcome = LedgerOutcome.APPLIED
        else:
            row = session.execute(
                select(users.c.is_premium, users.c.subscription_id).where(users.c.id == user_id)
            ).first()
            if row is None:
                outcome = LedgerOutcome.IGNORED
            else:
                outcome = LedgerOutcome.UNCHANGED
                if row.is_premium and row.subscription_id != subscription_id:
                    log_event(
                        "warning",
                        "ledger.checkout_completed.conflicting_subscription",
                        user_id=user_id,
                        event_type=event.event_type,
                        extra={
                            "event_id": event.event_id,
                            "subscription_id": subscription_id,
                            "active_subscription_id": row.subscription_id,
                        },
                    )

    log_event(
        "info" if outcome is not LedgerOutcome.IGNORED else "warning",
        f"ledger.checkout_completed.{outcome.value}",
        user_id=user_id,
        event_type=event.event_type,
        extra={"event_id": event.event_id, "subscription_id": subscription_id},
    )
    return outcome


def apply_subscription_deleted(event: BillingEvent) -> LedgerOutcome:
    """Revoke premium from whoever holds the cancelled subscription."""
    subscription_id = _deleted_subscription_id(event)
    if not subscription_id:
        log_event(
            "warning",
            "ledger.subscription_deleted.missing_subscription",
            event_type=event.event_type,
            extra={"event_id": event.event_id},
        )
        return LedgerOutcome.IGNORED

    with get_db_session() as session:
        result = session.execute(
            update(users)
            .where(users.c.subscription_id == subscription_id)
            .where(users.c.is_premium == true())
            .values(is_premium=False)
        )
        if result.rowcount:
            outcome = LedgerOutcome.APPLIED
        else:
            holder = session.execute(
                select(users.c.id).where(users.c.subscription_id == subscription_id)
            ).first()
            outcome = LedgerOutcome.UNCHANGED if holder else LedgerOutcome.IGNORED

    log_event(
        "info",
        f"ledger.subscription_deleted.{outcome.value}",
        event_type=event.event_type,
        extra={"event_id": event.event_id, "subscription_id": subscription_id},
    )
    return outcome


def note_payment_failed(event: BillingEvent) -> LedgerOutcome:
    # Known gap: no grace-period state yet, entitlement is left untouched
    # until the provider sends customer.subscription.deleted.
    log_event(
        "warning",
        "ledger.payment_failed",
        event_type=event.event_type,
        extra={
            "event_id": event.event_id,
            "subscription_id": event.payload.get("subscription"),
            "attempt_count": event.payload.get("attempt_count"),
        },
    )
    return LedgerOutcome.IGNORED


HANDLERS: Dict[str, Callable[[BillingEvent], LedgerOutcome]] = {
    CHECKOUT_COMPLETED: apply_checkout_completed,
    SUBSCRIPTION_DELETED: apply_subscription_deleted,
    PAYMENT_FAILED: note_payment_failed,
}


def apply_event(event: BillingEvent) -> LedgerOutcome:
    """Dispatch a verified event; types outside HANDLERS are ignored."""
    handler = HANDLERS.get(event.event_type)
    if handler is None:
        log_event(
            "debug",
            "ledger.event_ignored",
            event_type=event.event_type,
            extra={"event_id": event.event_id},
        )
        return LedgerOutcome.IGNORED
    return handler(event)


def get_entitlement(user_id: int) -> Optional[Entitlement]:
    """Read-only view of a user's entitlement; None for unknown users."""
    with get_db_session() as session:
        row = session.execute(
            select(users.c.id, users.c.is_premium, users.c.subscription_id).where(users.c.id == user_id)
        ).first()
    if row is None:
        return None
    return Entitlement(user_id=row.id, is_premium=bool(row.is_premium), subscription_id=row.subscription_id)


def is_premium(user_id: int) -> bool:
    """Collaborator query used to gate premium-only features."""
    entitlement = get_entitlement(user_id)
    return bool(entitlement and entitlement.is_premium)
