"""
Tests for Stripe webhook reconciliation
"""

import time
from unittest.mock import patch

import pytest

from botdesk.core.exceptions import InvalidSignature
from botdesk.services.entitlement_service import EntitlementService
from botdesk.services.webhook_reconciler import (InvoicePaymentFailed,
                                                 SubscriptionChanged,
                                                 SubscriptionDeleted,
                                                 UnhandledEvent,
                                                 WebhookReconciler)
from stripe_helpers import (TEST_BASIC_PRICE, TEST_PREMIUM_PRICE,
                            invoice_object, sign_payload, stripe_event,
                            subscription_object)


@pytest.fixture
def reconciler(billing_config):
    return WebhookReconciler(billing_config)


def deliver(reconciler, db_session, payload):
    return reconciler.handle(db_session, payload, sign_payload(payload))


def entitlement_of(db_session, user_id):
    entitlement = EntitlementService().get(db_session, user_id)
    return entitlement.status, entitlement.plan


class TestVerify:

    def test_valid_signature(self, reconciler):
        payload = stripe_event("invoice.paid", {"customer": "cus_1"})
        event = reconciler.verify(payload, sign_payload(payload))
        assert event["type"] == "invoice.paid"

    def test_missing_header(self, reconciler):
        with pytest.raises(InvalidSignature):
            reconciler.verify(b"{}", None)

    def test_wrong_secret(self, reconciler):
        payload = stripe_event("invoice.paid", {"customer": "cus_1"})
        with pytest.raises(InvalidSignature):
            reconciler.verify(payload, sign_payload(payload, secret="whsec_other"))

    def test_tampered_body(self, reconciler):
        payload = stripe_event("invoice.paid", {"customer": "cus_1"})
        header = sign_payload(payload)
        tampered = payload.replace(b"cus_1", b"cus_2")
        with pytest.raises(InvalidSignature):
            reconciler.verify(tampered, header)

    def test_stale_timestamp(self, reconciler):
        payload = stripe_event("invoice.paid", {"customer": "cus_1"})
        header = sign_payload(payload, timestamp=int(time.time()) - 3600)
        with pytest.raises(InvalidSignature):
            reconciler.verify(payload, header)


class TestParse:

    def test_subscription_updated(self, reconciler):
        event = {"type": "customer.subscription.updated",
                 "data": {"object": subscription_object("cus_1", "active", TEST_PREMIUM_PRICE)}}
        assert reconciler.parse(event) == SubscriptionChanged(
            customer_id="cus_1", provider_status="active", price_id=TEST_PREMIUM_PRICE
        )

    def test_expanded_customer_object(self, reconciler):
        obj = subscription_object("cus_1", "active")
        obj["customer"] = {"id": "cus_1", "object": "customer"}
        event = {"type": "customer.subscription.created", "data": {"object": obj}}
        assert reconciler.parse(event).customer_id == "cus_1"

    def test_deleted_and_payment_failed(self, reconciler):
        deleted = {"type": "customer.subscription.deleted", "data": {"object": {"customer": "cus_1"}}}
        failed = {"type": "invoice.payment_failed", "data": {"object": invoice_object("cus_1")}}
        assert reconciler.parse(deleted) == SubscriptionDeleted(customer_id="cus_1")
        assert reconciler.parse(failed) == InvoicePaymentFailed(customer_id="cus_1")

    def test_unknown_type(self, reconciler):
        assert reconciler.parse({"type": "charge.refunded", "data": {"object": {}}}) == UnhandledEvent(
            event_type="charge.refunded"
        )

    @pytest.mark.parametrize("data", [None, "oops", {"object": "oops"}, {"object": ["x"]}])
    def test_non_object_data_is_rejected(self, reconciler, data):
        with pytest.raises(ValueError):
            reconciler.parse({"id": "evt_1", "type": "customer.subscription.updated", "data": data})

    def test_malformed_items_give_no_price(self, reconciler):
        obj = subscription_object("cus_1", "active")
        obj["items"] = {"data": ["si_1"]}
        event = {"type": "customer.subscription.updated", "data": {"object": obj}}
        assert reconciler.parse(event).price_id is None


class TestApply:

    def test_trialing_maps_to_active(self, reconciler, db_session, make_user):
        make_user("uid_1", customer_id="cus_1")

        result = deliver(reconciler, db_session,
                         stripe_event("customer.subscription.created",
                                      subscription_object("cus_1", "trialing", TEST_BASIC_PRICE)))

        assert result.outcome == "applied"
        assert result.user_id == "uid_1"
        assert entitlement_of(db_session, "uid_1") == ("active", "Basic")

    def test_other_status_is_stored_raw(self, reconciler, db_session, make_user):
        make_user("uid_1", customer_id="cus_1")

        deliver(reconciler, db_session,
                stripe_event("customer.subscription.updated",
                             subscription_object("cus_1", "incomplete", TEST_PREMIUM_PRICE)))

        assert entitlement_of(db_session, "uid_1") == ("incomplete", "Premium")

    def test_unknown_price_maps_to_unknown_plan(self, reconciler, db_session, make_user):
        make_user("uid_1", customer_id="cus_1")

        deliver(reconciler, db_session,
                stripe_event("customer.subscription.updated",
                             subscription_object("cus_1", "active", "price_not_configured")))

        assert entitlement_of(db_session, "uid_1") == ("active", "Unknown")

    def test_replayed_update_is_idempotent(self, reconciler, db_session, make_user):
        make_user("uid_1", customer_id="cus_1")
        payload = stripe_event("customer.subscription.updated",
                               subscription_object("cus_1", "active", TEST_PREMIUM_PRICE),
                               event_id="evt_same")

        deliver(reconciler, db_session, payload)
        first = entitlement_of(db_session, "uid_1")
        deliver(reconciler, db_session, payload)

        assert entitlement_of(db_session, "uid_1") == first == ("active", "Premium")

    def test_deleted_resets_to_free(self, reconciler, db_session, make_user):
        make_user("uid_1", status="active", plan="Premium", customer_id="cus_1")

        deliver(reconciler, db_session,
                stripe_event("customer.subscription.deleted", subscription_object("cus_1", "canceled")))

        assert entitlement_of(db_session, "uid_1") == ("inactive", "Free")

    def test_payment_failed_keeps_plan(self, reconciler, db_session, make_user):
        make_user("uid_1", status="active", plan="Basic", customer_id="cus_1")

        deliver(reconciler, db_session, stripe_event("invoice.payment_failed", invoice_object("cus_1")))

        assert entitlement_of(db_session, "uid_1") == ("past_due", "Basic")

    def test_unmapped_customer_is_acknowledged(self, reconciler, db_session, make_user):
        make_user("uid_1", customer_id="cus_1")

        with patch.object(reconciler.analytics, "log_failure") as mock_log_failure:
            result = deliver(reconciler, db_session,
                             stripe_event("customer.subscription.updated",
                                          subscription_object("cus_unknown", "active")))

        assert result.outcome == "unmapped_customer"
        assert mock_log_failure.call_args.kwargs["category"] == "ConsistencyWarning"
        assert entitlement_of(db_session, "uid_1") == ("inactive", "Free")

    def test_unhandled_type_is_ignored(self, reconciler, db_session, make_user):
        make_user("uid_1", customer_id="cus_1")

        result = deliver(reconciler, db_session, stripe_event("charge.refunded", {"customer": "cus_1"}))

        assert result.outcome == "ignored"
        assert entitlement_of(db_session, "uid_1") == ("inactive", "Free")

    def test_missing_customer_is_ignored(self, reconciler, db_session):
        result = deliver(reconciler, db_session,
                         stripe_event("invoice.payment_failed", {"id": "in_1"}))
        assert result.outcome == "ignored"

    def test_non_object_data_is_ignored(self, reconciler, db_session, make_user):
        make_user("uid_1", customer_id="cus_1")
        result = deliver(reconciler, db_session,
                         stripe_event("customer.subscription.updated", "not-an-object"))
        assert result.outcome == "ignored"
        assert entitlement_of(db_session, "uid_1") == ("inactive", "Free")

    def test_invalid_signature_does_not_mutate(self, reconciler, db_session, make_user):
        make_user("uid_1", customer_id="cus_1")
        payload = stripe_event("customer.subscription.updated",
                               subscription_object("cus_1", "active", TEST_PREMIUM_PRICE))

        with pytest.raises(InvalidSignature):
            reconciler.handle(db_session, payload, sign_payload(payload, secret="whsec_wrong"))

        assert entitlement_of(db_session, "uid_1") == ("inactive", "Free")
