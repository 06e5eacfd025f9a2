import logging
import math

import stripe
from sqlalchemy import func
from sqlalchemy.orm import Session

from botdesk.core.config import BillingConfig
from botdesk.core.exceptions import (AlreadyBoundError, NoCustomerError,
                                     NotFoundError, UpstreamProviderError,
                                     ValidationError)
from botdesk.models.user import User
from botdesk.services.analytics_service import AnalyticsService
from botdesk.services.entitlement_service import EntitlementService
from botdesk.services.quota_service import QuotaService

logger = logging.getLogger(__name__)

# Statuses counted as paying subscribers in admin listings
SUBSCRIBED_STATUSES = ('active', 'trialing')


class BillingService:
    """Stripe checkout and customer portal sessions, plus billing read models"""

    def __init__(self, config: BillingConfig, entitlements: EntitlementService = None):
        self.config = config
        self.entitlements = entitlements or EntitlementService()
        self.analytics = AnalyticsService()
        self.logger = logging.getLogger(__name__)

    def _get_user(self, db: Session, user_id: str) -> User:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError("User", user_id)
        return user

    def _ensure_customer(self, db: Session, user: User) -> str:
        """Return the user's Stripe customer id, creating and binding one on first use"""
        if user.stripe_customer_id:
            return user.stripe_customer_id

        try:
            customer = stripe.Customer.create(
                api_key=self.config.stripe_secret_key,
                email=user.email,
                name=user.name,
                metadata={'userId': user.id}
            )
        except stripe.StripeError as e:
            raise UpstreamProviderError('customer creation', str(e))

        try:
            self.entitlements.bind_customer_id(db, user.id, customer.id)
        except AlreadyBoundError:
            # A concurrent checkout bound first; its customer wins
            bound = self.entitlements.get(db, user.id).stripe_customer_id
            if not bound:
                raise
            self.logger.warning(f"_ensure_customer: Lost bind race, using {bound} - user: {user.id}")
            return bound
        return customer.id

    def start_checkout(self, db: Session, user_id: str, price_id: str) -> str:
        """Create a subscription-mode Checkout Session and return its URL"""
        self.logger.info(f"start_checkout: Entry - user: {user_id}, price: {price_id}")

        try:
            if not price_id or price_id not in self.config.price_plans:
                raise ValidationError("Unknown price id")

            user = self._get_user(db, user_id)
            customer_id = self._ensure_customer(db, user)

            try:
                session = stripe.checkout.Session.create(
                    api_key=self.config.stripe_secret_key,
                    payment_method_types=['card'],
                    mode='subscription',
                    customer=customer_id,
                    line_items=[{'price': price_id, 'quantity': 1}],
                    success_url=f"{self.config.frontend_url}/subscription?session_id={{CHECKOUT_SESSION_ID}}",
                    cancel_url=f"{self.config.frontend_url}/subscription?canceled=1",
                )
            except stripe.StripeError as e:
                raise UpstreamProviderError('checkout session creation', str(e))

            self.analytics.log_success(
                action='start_checkout',
                user_id=user_id,
                parameters={'price_id': price_id, 'plan': self.config.plan_for_price(price_id)}
            )
            self.logger.info(f"start_checkout: Success - user: {user_id}, session: {session.id}")
            return session.url
        except Exception as e:
            self.analytics.log_failure(
                action='start_checkout',
                error=str(e),
                user_id=user_id,
                parameters={'price_id': price_id}
            )
            self.logger.error(f"start_checkout: Failure - {e}")
            raise

    def start_portal_session(self, db: Session, user_id: str) -> str:
        """Create a Stripe customer portal session for a bound user"""
        self.logger.info(f"start_portal_session: Entry - user: {user_id}")

        try:
            user = self._get_user(db, user_id)
            if not user.stripe_customer_id:
                raise NoCustomerError(user_id)

            try:
                portal_session = stripe.billing_portal.Session.create(
                    api_key=self.config.stripe_secret_key,
                    customer=user.stripe_customer_id,
                    return_url=f"{self.config.frontend_url}/dashboard/subscription?refresh=true",
                )
            except stripe.StripeError as e:
                raise UpstreamProviderError('portal session creation', str(e))

            self.logger.info(f"start_portal_session: Success - user: {user_id}")
            return portal_session.url
        except Exception as e:
            self.analytics.log_failure(
                action='start_portal_session',
                error=str(e),
                user_id=user_id
            )
            self.logger.error(f"start_portal_session: Failure - {e}")
            raise

    def get_current_entitlement(self, db: Session, user_id: str) -> dict:
        entitlement = self.entitlements.get(db, user_id)
        return {
            'status': entitlement.status,
            'plan': entitlement.plan,
            'is_active': entitlement.is_active,
            'has_billing_account': entitlement.stripe_customer_id is not None,
            'bot_limit': QuotaService.get_bot_limit(entitlement.plan),
        }

    def get_plans(self) -> list:
        """Configured paid plans with their price ids and bot limits"""
        return [
            {
                'plan': plan,
                'price_id': price_id,
                'bot_limit': QuotaService.get_bot_limit(plan),
            }
            for price_id, plan in sorted(self.config.price_plans.items(), key=lambda item: item[1])
        ]

    def get_subscription_analytics(self, db: Session) -> dict:
        """Admin: subscriber counts by status and plan"""
        self.logger.info("get_subscription_analytics: Entry")

        def count(*criteria) -> int:
            return db.query(func.count(User.id)).filter(*criteria).scalar() or 0

        total_users = count()
        active = count(User.subscription_status == 'active')
        trialing = count(User.subscription_status == 'trialing')
        past_due = count(User.subscription_status == 'past_due')
        basic = count(User.subscription_plan == 'Basic', User.subscription_status == 'active')
        premium = count(User.subscription_plan == 'Premium', User.subscription_status == 'active')
        free = count(User.subscription_plan == 'Free')

        def rate(part: int) -> str:
            return f"{(part / total_users * 100) if total_users else 0:.2f}"

        return {
            'totalUsers': total_users,
            'subscriptions': {
                'active': active,
                'trialing': trialing,
                'pastDue': past_due,
                'total': active + trialing + past_due,
            },
            'plans': {
                'basic': basic,
                'premium': premium,
                'free': free,
            },
            'rates': {
                'active': rate(active),
                'conversion': rate(basic + premium),
            },
        }

    def get_recent_subscriptions(self, db: Session, page: int = 1, limit: int = 50) -> dict:
        """Admin: newest subscribers first, paginated"""
        page = max(page, 1)
        limit = max(limit, 1)

        query = db.query(User).filter(User.subscription_status.in_(SUBSCRIBED_STATUSES))
        total = query.count()
        users = query.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit).all()

        return {
            'subscriptions': [
                {
                    'id': user.id,
                    'name': user.name,
                    'email': user.email,
                    'subscriptionPlan': user.subscription_plan,
                    'subscriptionStatus': user.subscription_status,
                    'createdAt': user.created_at.isoformat() if user.created_at else None,
                }
                for user in users
            ],
            'total': total,
            'page': page,
            'totalPages': math.ceil(total / limit),
        }
