"""
Billing boundary: Stripe checkout/portal sessions and webhook processing.

Stripe is the source of truth for the subscription lifecycle. This module
translates processor events into account state on the users row
(subscription_status, subscription_ends_at, stripe ids). The entitlement
core never calls in here; it only reads the resulting row.

SECURITY:
- Webhooks MUST pass signature verification before processing
- The account is resolved from the Stripe customer id (or the checkout
  metadata we set ourselves), never from arbitrary payload fields
"""

import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import stripe
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from equiprofile.config.settings import Settings
from equiprofile.models.stripe_event import StripeEventRecord
from equiprofile.models.user import SubscriptionPlan, SubscriptionStatus, User
from equiprofile.utils.clock import from_timestamp, utcnow

logger = logging.getLogger(__name__)

CHECKOUT_PLANS = ("monthly", "yearly")

# Stripe subscription.status -> stored subscription_status
STRIPE_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.OVERDUE,
    "unpaid": SubscriptionStatus.OVERDUE,
    "incomplete_expired": SubscriptionStatus.EXPIRED,
    "canceled": SubscriptionStatus.CANCELLED,
}

STRIPE_INTERVAL_MAP: Dict[str, SubscriptionPlan] = {
    "month": SubscriptionPlan.MONTHLY,
    "year": SubscriptionPlan.YEARLY,
}


class BillingServiceError(Exception):
    """Raised when a Stripe session cannot be created."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


class WebhookVerificationError(Exception):
    """Raised when a webhook payload or signature is invalid."""


class StripeBillingClient:
    """Creates Stripe checkout and customer-portal sessions."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def price_id_for(self, plan: str) -> Optional[str]:
        """Configured Stripe price id for a checkout plan."""
        if plan == "monthly":
            return self.settings.stripe_monthly_price_id or None
        if plan == "yearly":
            return self.settings.stripe_yearly_price_id or None
        return None

    def create_checkout_session(self, user: User, price_id: str) -> str:
        """
        Create a subscription checkout session for user.

        Returns:
            Checkout URL to redirect the user to

        Raises:
            BillingServiceError: Stripe rejected the request
        """
        base_url = self.settings.base_url
        params: Dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": f"{base_url}/billing?success=true",
            "cancel_url": f"{base_url}/billing?canceled=true",
            "metadata": {"userId": str(user.id)},
            "client_reference_id": str(user.id),
            "allow_promotion_codes": True,
            "api_key": self.settings.stripe_secret_key,
        }
        if user.stripe_customer_id:
            params["customer"] = user.stripe_customer_id
        elif user.email:
            params["customer_email"] = user.email

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error(
                "Failed to create checkout session",
                extra={"user_id": user.id, "error": str(e)},
            )
            raise BillingServiceError("Failed to create checkout session", cause=e) from e

        return session.url

    def create_portal_session(self, customer_id: str) -> str:
        """
        Create a customer-portal session.

        Returns:
            Portal URL to redirect the user to
        """
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=f"{self.settings.base_url}/billing",
                api_key=self.settings.stripe_secret_key,
            )
        except stripe.StripeError as e:
            logger.error(
                "Failed to create portal session",
                extra={"customer_id": customer_id, "error": str(e)},
            )
            raise BillingServiceError("Failed to create portal session", cause=e) from e

        return session.url


def parse_webhook_event(payload: bytes, signature: Optional[str], secret: str) -> Dict[str, Any]:
    """
    Verify a Stripe webhook and return the event as a plain dict.

    Raises:
        WebhookVerificationError: bad signature, missing header, or bad JSON
    """
    if not signature:
        raise WebhookVerificationError("Missing Stripe-Signature header")
    if not secret:
        raise WebhookVerificationError("Webhook secret not configured")

    try:
        stripe.Webhook.construct_event(payload, signature, secret)
    except stripe.SignatureVerificationError as e:
        raise WebhookVerificationError("Invalid webhook signature") from e
    except ValueError as e:
        raise WebhookVerificationError("Invalid webhook payload") from e

    try:
        return json.loads(payload)
    except json.JSONDecodeError as e:
        raise WebhookVerificationError("Invalid webhook payload") from e


def _period_end(subscription: Dict[str, Any]) -> Optional[datetime]:
    """current_period_end, from the subscription or (newer API) its first item."""
    if subscription.get("current_period_end"):
        return from_timestamp(subscription["current_period_end"])
    items = (subscription.get("items") or {}).get("data") or []
    if items and items[0].get("current_period_end"):
        return from_timestamp(items[0]["current_period_end"])
    if subscription.get("cancel_at"):
        return from_timestamp(subscription["cancel_at"])
    return None


def _plan_interval(subscription: Dict[str, Any]) -> Optional[SubscriptionPlan]:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    price = items[0].get("price") or {}
    interval = (price.get("recurring") or {}).get("interval")
    return STRIPE_INTERVAL_MAP.get(interval)


class StripeWebhookProcessor:
    """
    Applies verified Stripe events to account rows.

    process_event() returns True when the event changed an account, False
    when it was ignored (unhandled type, unknown customer, or an event id
    that was already processed). Every delivery is recorded in
    stripe_events in the same commit as the account change.
    """

    def __init__(self, db_session: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db_session
        self.clock = clock
        self._handlers = {
            "checkout.session.completed": self._handle_checkout_completed,
            "customer.subscription.created": self._handle_subscription_updated,
            "customer.subscription.updated": self._handle_subscription_updated,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.payment_failed": self._handle_payment_failed,
            "invoice.paid": self._handle_payment_succeeded,
            "invoice.payment_succeeded": self._handle_payment_succeeded,
        }

    def process_event(self, event: Dict[str, Any]) -> bool:
        event_id = event.get("id")
        event_type = event.get("type", "")

        try:
            record = self._event_record(event_id, event_type, event)
        except IntegrityError:
            self.db.rollback()
            record = self._event_record(event_id, event_type, event)
        if record is not None and record.processed:
            logger.info(
                "Skipping duplicate Stripe event",
                extra={"event_type": event_type, "event_id": event_id},
            )
            return False

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("Ignoring unhandled Stripe event", extra={"event_type": event_type})
            self._finish(record)
            return False

        obj = (event.get("data") or {}).get("object") or {}
        try:
            user = handler(obj)
        except SQLAlchemyError as e:
            self.db.rollback()
            self._record_failure(event_id, event_type, str(e))
            raise

        if user is None:
            logger.warning(
                "Stripe event did not match an account",
                extra={"event_type": event_type, "event_id": event_id},
            )
            # Stays unprocessed; a redelivery is retried.
            if record is not None:
                record.error = "No matching account"
            self._commit_or_skip(event_id)
            return False

        self._finish(record, commit=False)
        if not self._commit_or_skip(event_id):
            return False
        logger.info(
            "Applied Stripe event",
            extra={
                "event_type": event_type,
                "event_id": event_id,
                "user_id": user.id,
                "subscription_status": user.subscription_status,
            },
        )
        return True

    def _event_record(
        self, event_id: Optional[str], event_type: str, event: Dict[str, Any]
    ) -> Optional[StripeEventRecord]:
        if not event_id:
            return None
        record = self._lookup(event_id)
        if record is None:
            record = StripeEventRecord(
                event_id=event_id,
                event_type=event_type[:100] or None,
                payload=json.dumps(event, default=str),
            )
            self.db.add(record)
            self.db.flush()
        return record

    def _lookup(self, event_id: str) -> Optional[StripeEventRecord]:
        return (
            self.db.query(StripeEventRecord)
            .filter(StripeEventRecord.event_id == event_id)
            .first()
        )

    def _finish(self, record: Optional[StripeEventRecord], commit: bool = True) -> None:
        if record is not None:
            record.processed = True
            record.processed_at = self.clock()
            record.error = None
        if commit:
            self._commit_or_skip(record.event_id if record is not None else None)

    def _commit_or_skip(self, event_id: Optional[str]) -> bool:
        """Commit; a concurrent delivery that recorded the same event id wins."""
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(
                "Stripe event recorded by a concurrent delivery",
                extra={"event_id": event_id},
            )
            return False
        return True

    def _record_failure(self, event_id: Optional[str], event_type: str, error: str) -> None:
        if not event_id:
            return
        try:
            record = self._lookup(event_id)
            if record is None:
                record = StripeEventRecord(event_id=event_id, event_type=event_type[:100] or None)
                self.db.add(record)
            record.error = error
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.warning("Could not record Stripe event failure", extra={"event_id": event_id})

    def _find_by_customer(self, customer_id: Optional[str]) -> Optional[User]:
        if not customer_id:
            return None
        return self.db.query(User).filter(User.stripe_customer_id == customer_id).first()

    def _handle_checkout_completed(self, session: Dict[str, Any]) -> Optional[User]:
        user_id = (session.get("metadata") or {}).get("userId") or session.get("client_reference_id")
        user = self.db.get(User, str(user_id)) if user_id else None
        if user is None:
            user = self._find_by_customer(session.get("customer"))
        if user is None:
            return None

        if session.get("customer"):
            user.stripe_customer_id = session["customer"]
        if session.get("subscription"):
            user.stripe_subscription_id = session["subscription"]
        user.subscription_status = SubscriptionStatus.ACTIVE.value
        user.subscription_ends_at = None
        return user

    def _handle_subscription_updated(self, subscription: Dict[str, Any]) -> Optional[User]:
        user = self._find_by_customer(subscription.get("customer"))
        if user is None:
            return None

        user.stripe_subscription_id = subscription.get("id") or user.stripe_subscription_id
        plan = _plan_interval(subscription)
        if plan is not None:
            user.subscription_plan = plan.value

        stripe_status = subscription.get("status", "")
        if subscription.get("cancel_at_period_end") and stripe_status in ("active", "trialing"):
            # Paid through the period end, then access stops
            user.subscription_status = SubscriptionStatus.CANCELLED.value
            user.subscription_ends_at = _period_end(subscription)
            return user

        status = STRIPE_STATUS_MAP.get(stripe_status)
        if status is None:
            logger.info(
                "Stripe subscription status left unchanged",
                extra={"user_id": user.id, "stripe_status": stripe_status},
            )
            return user

        user.subscription_status = status.value
        if status == SubscriptionStatus.CANCELLED:
            user.subscription_ends_at = (
                from_timestamp(subscription.get("ended_at"))
                or from_timestamp(subscription.get("canceled_at"))
                or self.clock()
            )
        elif status == SubscriptionStatus.ACTIVE:
            user.subscription_ends_at = None
        return user

    def _handle_subscription_deleted(self, subscription: Dict[str, Any]) -> Optional[User]:
        user = self._find_by_customer(subscription.get("customer"))
        if user is None:
            return None

        user.subscription_status = SubscriptionStatus.CANCELLED.value
        user.subscription_ends_at = from_timestamp(subscription.get("ended_at")) or self.clock()
        return user

    def _handle_payment_failed(self, invoice: Dict[str, Any]) -> Optional[User]:
        user = self._find_by_customer(invoice.get("customer"))
        if user is None:
            return None

        user.subscription_status = SubscriptionStatus.OVERDUE.value
        return user

    def _handle_payment_succeeded(self, invoice: Dict[str, Any]) -> Optional[User]:
        user = self._find_by_customer(invoice.get("customer"))
        if user is None:
            return None

        paid_at = from_timestamp((invoice.get("status_transitions") or {}).get("paid_at"))
        user.last_payment_at = paid_at or self.clock()
        # A scheduled cancellation stays scheduled; the subscription events move it
        if user.subscription_status != SubscriptionStatus.CANCELLED.value:
            user.subscription_status = SubscriptionStatus.ACTIVE.value
            user.subscription_ends_at = None
        return user
