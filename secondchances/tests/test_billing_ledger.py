"""
Entitlement ledger transitions.

free -> premium on checkout.session.completed, premium -> free on
customer.subscription.deleted; duplicates and stale replays are no-ops.
"""
import pytest
from sqlalchemy import select

from secondchances.core.database import get_db_session, users
from secondchances.features.billing import ledger
from secondchances.features.billing.ledger import LedgerOutcome
from secondchances.features.billing.provider import BillingEvent


def completed(user_id, subscription_id="sub_123", event_id="evt_c1", metadata_key="user_id"):
    return BillingEvent(
        event_id=event_id,
        event_type=ledger.CHECKOUT_COMPLETED,
        payload={
            "id": "cs_test",
            "subscription": subscription_id,
            "metadata": {metadata_key: str(user_id), "plan_id": "monthly"},
        },
    )


def deleted(subscription_id="sub_123", event_id="evt_d1"):
    return BillingEvent(
        event_id=event_id,
        event_type=ledger.SUBSCRIPTION_DELETED,
        payload={"id": subscription_id, "status": "canceled"},
    )


def _row(user_id):
    with get_db_session() as session:
        return session.execute(
            select(users.c.is_premium, users.c.subscription_id).where(users.c.id == user_id)
        ).first()


@pytest.fixture
def user(make_user):
    u, _ = make_user()
    return u


def test_new_user_starts_free(user):
    entitlement = ledger.get_entitlement(user.id)
    assert entitlement.state == "free"
    assert entitlement.subscription_id is None
    assert ledger.is_premium(user.id) is False


def test_checkout_completed_grants_premium(user):
    outcome = ledger.apply_event(completed(user.id))

    assert outcome is LedgerOutcome.APPLIED
    row = _row(user.id)
    assert row.is_premium is True
    assert row.subscription_id == "sub_123"
    assert ledger.is_premium(user.id) is True


def test_checkout_completed_replay_is_noop(user):
    ledger.apply_event(completed(user.id))
    outcome = ledger.apply_event(completed(user.id))

    assert outcome is LedgerOutcome.UNCHANGED
    row = _row(user.id)
    assert row.is_premium is True
    assert row.subscription_id == "sub_123"


def test_legacy_user_id_metadata_key_accepted(user):
    outcome = ledger.apply_event(completed(user.id, metadata_key="userId"))
    assert outcome is LedgerOutcome.APPLIED
    assert ledger.is_premium(user.id)


def test_subscription_deleted_revokes_premium_and_keeps_id(user):
    ledger.apply_event(completed(user.id))
    outcome = ledger.apply_event(deleted())

    assert outcome is LedgerOutcome.APPLIED
    row = _row(user.id)
    assert row.is_premium is False
    assert row.subscription_id == "sub_123"


def test_subscription_deleted_replay_is_noop(user):
    ledger.apply_event(completed(user.id))
    ledger.apply_event(deleted())

    assert ledger.apply_event(deleted()) is LedgerOutcome.UNCHANGED
    assert ledger.is_premium(user.id) is False


def test_subscription_deleted_without_holder_changes_nothing(user):
    ledger.apply_event(completed(user.id, subscription_id="sub_keep"))

    outcome = ledger.apply_event(deleted(subscription_id="sub_unknown"))

    assert outcome is LedgerOutcome.IGNORED
    row = _row(user.id)
    assert row.is_premium is True
    assert row.subscription_id == "sub_keep"


def test_stale_completed_replay_after_cancel_does_not_regrant(user):
    ledger.apply_event(completed(user.id))
    ledger.apply_event(deleted())

    outcome = ledger.apply_event(completed(user.id, event_id="evt_c1_retry"))

    assert outcome is LedgerOutcome.UNCHANGED
    assert ledger.is_premium(user.id) is False


def test_resubscribe_with_new_subscription_grants_again(user):
    ledger.apply_event(completed(user.id))
    ledger.apply_event(deleted())

    outcome = ledger.apply_event(completed(user.id, subscription_id="sub_456", event_id="evt_c2"))

    assert outcome is LedgerOutcome.APPLIED
    row = _row(user.id)
    assert row.is_premium is True
    assert row.subscription_id == "sub_456"


def test_deletion_before_completion_then_completion_grants(user):
    # Out-of-order delivery: the deletion matches nothing yet
    assert ledger.apply_event(deleted()) is LedgerOutcome.IGNORED
    assert ledger.apply_event(completed(user.id)) is LedgerOutcome.APPLIED
    assert ledger.is_premium(user.id) is True


def test_checkout_completed_for_unknown_user_ignored(reset_db):
    assert ledger.apply_event(completed(999999)) is LedgerOutcome.IGNORED


@pytest.mark.parametrize("payload", [
    {"subscription": "sub_123", "metadata": {}},
    {"subscription": "sub_123", "metadata": {"user_id": "not-a-number"}},
    {"metadata": {"user_id": "1"}},
])
def test_checkout_completed_missing_correlation_ignored(reset_db, payload):
    event = BillingEvent(event_id="evt_x", event_type=ledger.CHECKOUT_COMPLETED, payload=payload)
    assert ledger.apply_event(event) is LedgerOutcome.IGNORED


def test_subscription_deleted_missing_id_ignored(reset_db):
    event = BillingEvent(event_id="evt_x", event_type=ledger.SUBSCRIPTION_DELETED, payload={})
    assert ledger.apply_event(event) is LedgerOutcome.IGNORED


def test_payment_failed_leaves_entitlement_untouched(user):
    ledger.apply_event(completed(user.id))
    event = BillingEvent(
        event_id="evt_pf",
        event_type=ledger.PAYMENT_FAILED,
        payload={"subscription": "sub_123", "attempt_count": 2},
    )

    assert ledger.apply_event(event) is LedgerOutcome.IGNORED
    assert ledger.is_premium(user.id) is True


def test_unknown_event_type_ignored(user):
    event = BillingEvent(event_id="evt_u", event_type="customer.created", payload={"id": "cus_1"})

    assert ledger.apply_event(event) is LedgerOutcome.IGNORED
    assert ledger.is_premium(user.id) is False


def test_entitlement_for_unknown_user_is_none(reset_db):
    assert ledger.get_entitlement(424242) is None
    assert ledger.is_premium(424242) is False


def test_subscription_id_from_metadata_and_deletion_by_subscription_id_field(user):
    grant = BillingEvent(
        event_id="evt_meta",
        event_type=ledger.CHECKOUT_COMPLETED,
        payload={"metadata": {"user_id": str(user.id), "subscription_id": "sub_123"}},
    )
    assert ledger.apply_event(grant) is LedgerOutcome.APPLIED
    row = _row(user.id)
    assert (row.is_premium, row.subscription_id) == (True, "sub_123")

    revoke = BillingEvent(
        event_id="evt_meta_del",
        event_type=ledger.SUBSCRIPTION_DELETED,
        payload={"subscription_id": "sub_123"},
    )
    assert ledger.apply_event(revoke) is LedgerOutcome.APPLIED
    assert _row(user.id).is_premium is False


def test_stale_completion_cannot_displace_live_subscription(user):
    first = completed(user.id, subscription_id="sub_A", event_id="evt_A")
    ledger.apply_event(first)
    ledger.apply_event(deleted(subscription_id="sub_A", event_id="evt_del_A"))
    assert ledger.apply_event(completed(user.id, subscription_id="sub_B", event_id="evt_B")) is LedgerOutcome.APPLIED

    # Late duplicate of the first completion
    assert ledger.apply_event(first) is LedgerOutcome.UNCHANGED
    row = _row(user.id)
    assert (row.is_premium, row.subscription_id) == (True, "sub_B")

    assert ledger.apply_event(deleted(subscription_id="sub_B", event_id="evt_del_B")) is LedgerOutcome.APPLIED
    row = _row(user.id)
    assert (row.is_premium, row.subscription_id) == (False, "sub_B")


def test_second_completion_while_premium_is_refused(user):
    ledger.apply_event(completed(user.id, subscription_id="sub_A", event_id="evt_A"))

    outcome = ledger.apply_event(completed(user.id, subscription_id="sub_B", event_id="evt_B"))

    assert outcome is LedgerOutcome.UNCHANGED
    row = _row(user.id)
    assert (row.is_premium, row.subscription_id) == (True, "sub_A")


@pytest.mark.parametrize("raw_user_id", ["99999999999999999999999", str(2**31), "0", "-5"])
def test_checkout_completed_with_out_of_range_user_id_ignored(reset_db, raw_user_id):
    event = BillingEvent(
        event_id="evt_range",
        event_type=ledger.CHECKOUT_COMPLETED,
        payload={"subscription": "sub_123", "metadata": {"user_id": raw_user_id}},
    )
    assert ledger.apply_event(event) is LedgerOutcome.IGNORED
