from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional
from botdesk.models.bot import Bot
from botdesk.services.analytics_service import AnalyticsService
from botdesk.services.entitlement_service import EntitlementService
import logging

logger = logging.getLogger(__name__)

# Maximum bots per plan; plans not listed here are unlimited
PLAN_BOT_LIMITS = {
    'Basic': 2,
}

REASON_SUBSCRIPTION_REQUIRED = 'subscription required'
REASON_PLAN_LIMIT = 'plan limit reached'


class QuotaDecision(BaseModel):
    allowed: bool
    reason: Optional[str] = None


class QuotaService:
    def __init__(self, entitlements: EntitlementService = None):
        self.entitlements = entitlements or EntitlementService()
        self.analytics = AnalyticsService()
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def get_bot_limit(plan: str) -> int:
        """Bot limit for a plan, -1 when unlimited"""
        return PLAN_BOT_LIMITS.get(plan, -1)

    def _count_bots(self, db: Session, user_id: str) -> int:
        return db.query(Bot).filter(Bot.user_id == user_id).count()

    def can_create_bot(self, db: Session, user_id: str) -> QuotaDecision:
        """
        Decide whether the user may create one more bot.

        The entitlement is read fresh from the store on every call; an
        inactive subscription is denied before bots are counted.
        """
        self.logger.info(f"can_create_bot: Entry - user: {user_id}")

        try:
            entitlement = self.entitlements.get(db, user_id)
            if entitlement.status != 'active':
                self.logger.info(f"can_create_bot: Denied (status {entitlement.status}) - user: {user_id}")
                return QuotaDecision(allowed=False, reason=REASON_SUBSCRIPTION_REQUIRED)

            limit = self.get_bot_limit(entitlement.plan)
            if limit == -1:
                self.logger.info(f"can_create_bot: Unlimited - user: {user_id}, plan: {entitlement.plan}")
                return QuotaDecision(allowed=True)

            count = self._count_bots(db, user_id)
            if count >= limit:
                self.logger.info(f"can_create_bot: Denied ({count}/{limit}) - user: {user_id}, plan: {entitlement.plan}")
                return QuotaDecision(allowed=False, reason=REASON_PLAN_LIMIT)

            self.logger.info(f"can_create_bot: Success - user: {user_id}, count: {count}/{limit}, plan: {entitlement.plan}")
            return QuotaDecision(allowed=True)
        except Exception as e:
            self.analytics.log_failure(
                action='can_create_bot',
                error=str(e),
                user_id=user_id
            )
            self.logger.error(f"can_create_bot: Failure - {e}")
            raise

    def get_quota_status(self, db: Session, user_id: str) -> dict:
        """Get current bot usage against the plan limit"""
        self.logger.info(f"get_quota_status: Entry - user: {user_id}")

        entitlement = self.entitlements.get(db, user_id)
        limit = self.get_bot_limit(entitlement.plan)
        used = self._count_bots(db, user_id)

        return {
            'plan': entitlement.plan,
            'status': entitlement.status,
            'bots': {
                'used': used,
                'limit': limit,
                'remaining': -1 if limit == -1 else max(limit - used, 0),
            },
            'can_create_bot': self.can_create_bot(db, user_id).allowed,
        }
