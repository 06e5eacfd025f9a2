import json
import logging
from typing import Callable, Dict, Optional, Union

import stripe
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from botdesk.core.config import BillingConfig
from botdesk.core.exceptions import ConsistencyWarning, InvalidSignature
from botdesk.services.analytics_service import AnalyticsService
from botdesk.services.entitlement_service import EntitlementService

logger = logging.getLogger(__name__)

# Provider statuses that grant access
ACTIVE_PROVIDER_STATUSES = {'active', 'trialing'}


class SubscriptionChanged(BaseModel):
    model_config = ConfigDict(frozen=True)

    customer_id: str
    provider_status: str
    price_id: Optional[str] = None


class SubscriptionDeleted(BaseModel):
    model_config = ConfigDict(frozen=True)

    customer_id: str


class InvoicePaymentFailed(BaseModel):
    model_config = ConfigDict(frozen=True)

    customer_id: str


class UnhandledEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: str


ProviderEvent = Union[SubscriptionChanged, SubscriptionDeleted, InvoicePaymentFailed, UnhandledEvent]


class ReconcileResult(BaseModel):
    outcome: str  # applied | ignored | unmapped_customer
    user_id: Optional[str] = None


def _customer_id(obj: dict) -> str:
    """Stripe sends the customer either as an id or as an expanded object"""
    customer = obj.get('customer')
    if isinstance(customer, dict):
        customer = customer.get('id')
    if not customer:
        raise ValueError("Event object has no customer")
    return customer


def _first_price_id(subscription: dict) -> Optional[str]:
    items = subscription.get('items')
    data = items.get('data') if isinstance(items, dict) else None
    if not data or not isinstance(data[0], dict):
        return None
    price = data[0].get('price')
    return price.get('id') if isinstance(price, dict) else None


def _parse_subscription_changed(obj: dict) -> ProviderEvent:
    return SubscriptionChanged(
        customer_id=_customer_id(obj),
        provider_status=obj.get('status') or 'unknown',
        price_id=_first_price_id(obj)
    )


def _parse_subscription_deleted(obj: dict) -> ProviderEvent:
    return SubscriptionDeleted(customer_id=_customer_id(obj))


def _parse_invoice_payment_failed(obj: dict) -> ProviderEvent:
    return InvoicePaymentFailed(customer_id=_customer_id(obj))


EVENT_PARSERS: Dict[str, Callable[[dict], ProviderEvent]] = {
    'customer.subscription.created': _parse_subscription_changed,
    'customer.subscription.updated': _parse_subscription_changed,
    'customer.subscription.deleted': _parse_subscription_deleted,
    'invoice.payment_failed': _parse_invoice_payment_failed,
}


class WebhookReconciler:
    """
    Turns verified Stripe webhook events into entitlement mutations.

    The mutation for an event depends only on its payload, so replays and
    duplicate deliveries converge on the same stored state. Events are not
    reordered; whichever is applied last wins.
    """

    def __init__(self, config: BillingConfig, entitlements: EntitlementService = None):
        self.config = config
        self.entitlements = entitlements or EntitlementService()
        self.analytics = AnalyticsService()
        self.logger = logging.getLogger(__name__)

    def verify(self, payload: bytes, signature: Optional[str]) -> dict:
        """
        Validate the Stripe-Signature header over the raw request body.
        Returns the decoded event; raises InvalidSignature on any failure.
        """
        if not signature:
            raise InvalidSignature("missing Stripe-Signature header")
        if not self.config.webhook_secret:
            raise InvalidSignature("webhook secret not configured")

        try:
            body = payload.decode('utf-8')
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self.config.webhook_secret,
                tolerance=stripe.Webhook.DEFAULT_TOLERANCE
            )
            event = json.loads(body)
        except stripe.SignatureVerificationError as e:
            self.logger.warning(f"verify: Signature rejected - {e}")
            raise InvalidSignature(str(e))
        except (UnicodeDecodeError, ValueError) as e:
            self.logger.warning(f"verify: Undecodable payload - {e}")
            raise InvalidSignature("payload is not valid JSON")

        if not isinstance(event, dict) or not event.get('type'):
            raise InvalidSignature("payload is not a Stripe event")
        return event

    def parse(self, event: dict) -> ProviderEvent:
        """Map a raw Stripe event to one of the provider event variants"""
        event_type = event.get('type', '')
        parser = EVENT_PARSERS.get(event_type)
        if parser is None:
            return UnhandledEvent(event_type=event_type)

        data = event.get('data')
        obj = data.get('object') if isinstance(data, dict) else None
        if not isinstance(obj, dict):
            raise ValueError(f"Event {event.get('id')} has no data object")
        return parser(obj)

    def apply(self, db: Session, event: ProviderEvent) -> ReconcileResult:
        """Apply one parsed event to the entitlement store"""
        if isinstance(event, UnhandledEvent):
            self.logger.info(f"apply: Unhandled event type - {event.event_type}")
            return ReconcileResult(outcome='ignored')

        if isinstance(event, SubscriptionChanged):
            status = 'active' if event.provider_status in ACTIVE_PROVIDER_STATUSES else event.provider_status
            plan = self.config.plan_for_price(event.price_id)
        elif isinstance(event, SubscriptionDeleted):
            status, plan = 'inactive', 'Free'
        else:
            # Payment failure keeps the plan so access resumes once paid
            status, plan = 'past_due', None

        user = self.entitlements.set_by_customer_id(db, event.customer_id, status, plan)
        if user is None:
            message = f"No user found for Stripe customer: {event.customer_id}"
            self.logger.error(f"apply: {message}")
            self.analytics.log_failure(
                action='stripe_webhook',
                error=message,
                parameters={'customer_id': event.customer_id, 'event': type(event).__name__},
                category=ConsistencyWarning.__name__
            )
            return ReconcileResult(outcome='unmapped_customer')

        self.logger.info(f"apply: Updated user {user.id} to {user.subscription_status} - {user.subscription_plan}")
        return ReconcileResult(outcome='applied', user_id=user.id)

    def handle(self, db: Session, payload: bytes, signature: Optional[str]) -> ReconcileResult:
        """Verify, parse and apply a webhook delivery"""
        event = self.verify(payload, signature)
        self.logger.info(f"handle: Entry - event: {event.get('id')}, type: {event.get('type')}")

        try:
            parsed = self.parse(event)
        except ValueError as e:
            # Malformed object for a handled type; nothing to apply
            self.logger.error(f"handle: Could not parse event {event.get('id')} - {e}")
            self.analytics.log_failure(
                action='stripe_webhook',
                error=str(e),
                parameters={'event_id': event.get('id'), 'event_type': event.get('type')}
            )
            return ReconcileResult(outcome='ignored')

        try:
            result = self.apply(db, parsed)
        except Exception as e:
            self.logger.error(f"handle: Failure - {e}")
            self.analytics.log_failure(
                action='stripe_webhook',
                error=str(e),
                parameters={'event_id': event.get('id'), 'event_type': event.get('type')}
            )
            raise

        self.logger.info(f"handle: Success - event: {event.get('id')}, outcome: {result.outcome}")
        return result
