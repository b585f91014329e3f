"""
Tests for Stripe webhook verification and processing.

Signatures are computed the way Stripe computes them (HMAC-SHA256 over
"{timestamp}.{payload}") so verification runs for real.
"""

import hashlib
import hmac
import json
import time
from dataclasses import replace
from datetime import timedelta
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from equiprofile.main import create_app
from equiprofile.models import StripeEventRecord, User
from equiprofile.services.billing_service import (
    StripeWebhookProcessor,
    WebhookVerificationError,
    parse_webhook_event,
)

WEBHOOK_SECRET = "whsec_test_secret"


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    timestamp = int(timestamp or time.time())
    signed = f"{timestamp}.".encode("utf-8") + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def event(event_type, obj, event_id="evt_1"):
    return {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}


@pytest.fixture
def stripe_app(settings, session_factory, clock):
    return create_app(
        settings=replace(
            settings,
            enable_stripe=True,
            stripe_secret_key="sk_test_123",
            stripe_webhook_secret=WEBHOOK_SECRET,
        ),
        session_factory=session_factory,
        clock=clock,
    )


@pytest.fixture
def stripe_client(stripe_app):
    return TestClient(stripe_app)


@pytest.fixture
def processor(db_session, clock):
    return StripeWebhookProcessor(db_session, clock=clock)


# =============================================================================
# Signature verification
# =============================================================================

class TestParseWebhookEvent:

    def test_valid_signature(self):
        payload = json.dumps(event("invoice.paid", {"customer": "cus_1"})).encode("utf-8")

        parsed = parse_webhook_event(payload, sign(payload), WEBHOOK_SECRET)

        assert parsed["type"] == "invoice.paid"
        assert parsed["data"]["object"]["customer"] == "cus_1"

    def test_wrong_secret_rejected(self):
        payload = json.dumps(event("invoice.paid", {})).encode("utf-8")

        with pytest.raises(WebhookVerificationError):
            parse_webhook_event(payload, sign(payload, secret="whsec_other"), WEBHOOK_SECRET)

    def test_tampered_payload_rejected(self):
        payload = json.dumps(event("invoice.paid", {"customer": "cus_1"})).encode("utf-8")
        signature = sign(payload)
        tampered = payload.replace(b"cus_1", b"cus_2")

        with pytest.raises(WebhookVerificationError):
            parse_webhook_event(tampered, signature, WEBHOOK_SECRET)

    def test_missing_signature_rejected(self):
        with pytest.raises(WebhookVerificationError):
            parse_webhook_event(b"{}", None, WEBHOOK_SECRET)

    def test_missing_secret_rejected(self):
        with pytest.raises(WebhookVerificationError):
            parse_webhook_event(b"{}", sign(b"{}"), "")


# =============================================================================
# State transitions
# =============================================================================

class TestStripeWebhookProcessor:

    def test_checkout_completed_activates_trial(self, processor, make_user, db_session):
        user = make_user(subscription_status="trial")

        applied = processor.process_event(event(
            "checkout.session.completed",
            {"customer": "cus_1", "subscription": "sub_1", "metadata": {"userId": user.id}},
        ))

        assert applied is True
        db_session.refresh(user)
        assert user.subscription_status == "active"
        assert user.stripe_customer_id == "cus_1"
        assert user.stripe_subscription_id == "sub_1"

    def test_checkout_completed_by_client_reference(self, processor, make_user, db_session):
        user = make_user(subscription_status="expired")

        processor.process_event(event(
            "checkout.session.completed",
            {"customer": "cus_9", "client_reference_id": user.id},
        ))

        db_session.refresh(user)
        assert user.subscription_status == "active"

    def test_cancel_at_period_end_sets_ends_at(self, processor, make_user, db_session, clock):
        user = make_user(subscription_status="active", stripe_customer_id="cus_1")
        period_end = clock.now + timedelta(days=12)

        processor.process_event(event("customer.subscription.updated", {
            "id": "sub_1",
            "customer": "cus_1",
            "status": "active",
            "cancel_at_period_end": True,
            "current_period_end": int(period_end.timestamp()),
            "items": {"data": [{"price": {"recurring": {"interval": "year"}}}]},
        }))

        db_session.refresh(user)
        assert user.subscription_status == "cancelled"
        assert user.subscription_plan == "yearly"
        assert user.subscription_ends_at.replace(tzinfo=None) == period_end.replace(tzinfo=None)

    def test_past_due_becomes_overdue(self, processor, make_user, db_session):
        user = make_user(subscription_status="active", stripe_customer_id="cus_1")

        processor.process_event(event(
            "customer.subscription.updated",
            {"id": "sub_1", "customer": "cus_1", "status": "past_due"},
        ))

        db_session.refresh(user)
        assert user.subscription_status == "overdue"

    def test_reactivation_clears_ends_at(self, processor, make_user, db_session, clock):
        user = make_user(
            subscription_status="cancelled",
            stripe_customer_id="cus_1",
            subscription_ends_at=clock.now + timedelta(days=3),
        )

        processor.process_event(event(
            "customer.subscription.updated",
            {"id": "sub_1", "customer": "cus_1", "status": "active", "cancel_at_period_end": False},
        ))

        db_session.refresh(user)
        assert user.subscription_status == "active"
        assert user.subscription_ends_at is None

    def test_subscription_deleted(self, processor, make_user, db_session, clock):
        user = make_user(subscription_status="active", stripe_customer_id="cus_1")
        ended = clock.now - timedelta(hours=1)

        processor.process_event(event(
            "customer.subscription.deleted",
            {"id": "sub_1", "customer": "cus_1", "ended_at": int(ended.timestamp())},
        ))

        db_session.refresh(user)
        assert user.subscription_status == "cancelled"
        assert user.subscription_ends_at.replace(tzinfo=None) == ended.replace(tzinfo=None)

    def test_payment_failed(self, processor, make_user, db_session):
        user = make_user(subscription_status="active", stripe_customer_id="cus_1")

        processor.process_event(event("invoice.payment_failed", {"customer": "cus_1"}))

        db_session.refresh(user)
        assert user.subscription_status == "overdue"

    def test_payment_succeeded(self, processor, make_user, db_session, clock):
        user = make_user(subscription_status="overdue", stripe_customer_id="cus_1")

        processor.process_event(event("invoice.payment_succeeded", {"customer": "cus_1"}))

        db_session.refresh(user)
        assert user.subscription_status == "active"
        assert user.last_payment_at.replace(tzinfo=None) == clock.now.replace(tzinfo=None)

    def test_payment_does_not_undo_scheduled_cancellation(self, processor, make_user, db_session, clock):
        ends = clock.now + timedelta(days=10)
        user = make_user(
            subscription_status="cancelled",
            stripe_customer_id="cus_1",
            subscription_ends_at=ends,
        )

        processor.process_event(event("invoice.paid", {"customer": "cus_1"}))

        db_session.refresh(user)
        assert user.subscription_status == "cancelled"
        assert user.subscription_ends_at is not None

    def test_unknown_customer_ignored(self, processor):
        assert processor.process_event(event("invoice.payment_failed", {"customer": "cus_x"})) is False

    def test_unhandled_event_ignored(self, processor):
        assert processor.process_event(event("charge.refunded", {"customer": "cus_1"})) is False


# =============================================================================
# Redelivery
# =============================================================================

class TestEventLedger:

    def test_event_recorded_as_processed(self, processor, make_user, db_session, clock):
        make_user(subscription_status="active", stripe_customer_id="cus_1")

        processor.process_event(event("invoice.payment_failed", {"customer": "cus_1"}, "evt_failed"))

        record = db_session.query(StripeEventRecord).filter_by(event_id="evt_failed").one()
        assert record.processed is True
        assert record.event_type == "invoice.payment_failed"
        assert record.processed_at.replace(tzinfo=None) == clock.now.replace(tzinfo=None)

    def test_duplicate_event_id_not_reapplied(self, processor, make_user, db_session):
        user = make_user(subscription_status="active", stripe_customer_id="cus_1")
        failed = event("invoice.payment_failed", {"customer": "cus_1"}, "evt_failed")

        assert processor.process_event(failed) is True
        assert processor.process_event(event("invoice.paid", {"customer": "cus_1"}, "evt_paid")) is True
        assert processor.process_event(failed) is False

        db_session.refresh(user)
        assert user.subscription_status == "active"
        assert db_session.query(StripeEventRecord).count() == 2

    def test_unmatched_event_is_retried_on_redelivery(self, processor, make_user, db_session):
        failed = event("invoice.payment_failed", {"customer": "cus_late"}, "evt_late")

        assert processor.process_event(failed) is False
        record = db_session.query(StripeEventRecord).filter_by(event_id="evt_late").one()
        assert record.processed is False
        assert record.error == "No matching account"

        user = make_user(subscription_status="active", stripe_customer_id="cus_late")
        assert processor.process_event(failed) is True
        db_session.refresh(user)
        assert user.subscription_status == "overdue"

    def test_unhandled_event_not_reprocessed(self, processor, db_session):
        refunded = event("charge.refunded", {"customer": "cus_1"}, "evt_refund")

        processor.process_event(refunded)
        processor.process_event(refunded)

        record = db_session.query(StripeEventRecord).filter_by(event_id="evt_refund").one()
        assert record.processed is True


# =============================================================================
# Webhook route
# =============================================================================

class TestWebhookRoute:

    def test_signed_event_is_applied(self, stripe_client, make_user, db_session):
        user = make_user(subscription_status="active", stripe_customer_id="cus_1")
        payload = json.dumps(event("invoice.payment_failed", {"customer": "cus_1"})).encode("utf-8")

        response = stripe_client.post(
            "/api/billing/webhook",
            content=payload,
            headers={"Stripe-Signature": sign(payload), "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json() == {"received": True, "applied": True}
        db_session.refresh(user)
        assert user.subscription_status == "overdue"

    def test_bad_signature_is_400(self, stripe_client, make_user, db_session):
        user = make_user(subscription_status="active", stripe_customer_id="cus_1")
        payload = json.dumps(event("invoice.payment_failed", {"customer": "cus_1"})).encode("utf-8")

        response = stripe_client.post(
            "/api/billing/webhook",
            content=payload,
            headers={"Stripe-Signature": sign(payload, secret="whsec_wrong")},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        db_session.refresh(user)
        assert user.subscription_status == "active"

    def test_unhandled_event_acknowledged(self, stripe_client):
        payload = json.dumps(event("customer.created", {"id": "cus_1"})).encode("utf-8")

        response = stripe_client.post(
            "/api/billing/webhook", content=payload, headers={"Stripe-Signature": sign(payload)}
        )

        assert response.status_code == 200
        assert response.json()["applied"] is False

    def test_disabled_stripe_is_503(self, client):
        response = client.post("/api/billing/webhook", content=b"{}")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "FEATURE_DISABLED"

    def test_payment_unlocks_account_on_next_request(
        self, stripe_client, make_user, auth_headers, clock
    ):
        user = make_user(
            subscription_status="trial",
            created_at=clock.now - timedelta(days=9),
        )
        headers = auth_headers(user.id)
        assert stripe_client.post(
            "/trpc/user.updateProfile", json={"name": "A"}, headers=headers
        ).status_code == 402

        payload = json.dumps(event(
            "checkout.session.completed",
            {"customer": "cus_1", "subscription": "sub_1", "metadata": {"userId": user.id}},
        )).encode("utf-8")
        stripe_client.post(
            "/api/billing/webhook", content=payload, headers={"Stripe-Signature": sign(payload)}
        )

        assert stripe_client.post(
            "/trpc/user.updateProfile", json={"name": "B"}, headers=headers
        ).status_code == 200

    def test_redelivered_event_is_not_reapplied(self, stripe_client, make_user, db_session):
        user = make_user(subscription_status="active", stripe_customer_id="cus_1")
        failed = json.dumps(event("invoice.payment_failed", {"customer": "cus_1"}, "evt_failed")).encode("utf-8")
        paid = json.dumps(event("invoice.paid", {"customer": "cus_1"}, "evt_paid")).encode("utf-8")

        responses = [
            stripe_client.post(
                "/api/billing/webhook", content=payload, headers={"Stripe-Signature": sign(payload)}
            )
            for payload in (failed, paid, failed)
        ]

        assert [r.json()["applied"] for r in responses] == [True, True, False]
        db_session.refresh(user)
        assert user.subscription_status == "active"

    def test_storage_failure_is_500_envelope(self, stripe_client, make_user):
        make_user(subscription_status="active", stripe_customer_id="cus_1")
        payload = json.dumps(event("invoice.payment_failed", {"customer": "cus_1"})).encode("utf-8")

        with patch.object(
            StripeWebhookProcessor,
            "process_event",
            side_effect=OperationalError("UPDATE users", {}, Exception("database is locked")),
        ):
            response = stripe_client.post(
                "/api/billing/webhook", content=payload, headers={"Stripe-Signature": sign(payload)}
            )

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "WEBHOOK_PROCESSING_FAILED"
