from sqlalchemy.orm import Session
from botdesk.models.bot import Bot, BotStatus, DEFAULT_RISK_LIMITS
from botdesk.models.credential import Credential
from botdesk.core.config import settings
from botdesk.core.cache import get_cache
from botdesk.core.exceptions import BotDeskError, NotFoundError, PermissionDeniedError, ValidationError
from botdesk.services.analytics_service import AnalyticsService
from botdesk.services.quota_service import QuotaService, REASON_SUBSCRIPTION_REQUIRED
from datetime import datetime
import uuid
import logging

logger = logging.getLogger(__name__)

MOVING_AVERAGE_PARAMETERS = ('symbol', 'shortPeriod', 'longPeriod', 'quantity')

TOGGLE_ACTIONS = {
    'start': BotStatus.RUNNING.value,
    'stop': BotStatus.STOPPED.value,
}


def validate_strategy(strategy) -> None:
    """Strategy must carry a type and parameters; moving_average needs its full parameter set"""
    if not isinstance(strategy, dict) or not strategy.get('type') or not strategy.get('parameters'):
        raise ValidationError("Invalid strategy structure. Strategy must have type and parameters.")

    if strategy['type'] == 'moving_average':
        parameters = strategy['parameters']
        if not isinstance(parameters, dict) or not all(parameters.get(p) for p in MOVING_AVERAGE_PARAMETERS):
            raise ValidationError(
                "Missing required strategy parameters: " + ", ".join(MOVING_AVERAGE_PARAMETERS)
            )


class BotService:
    def __init__(self, quota: QuotaService = None):
        self.quota = quota or QuotaService()
        self.analytics = AnalyticsService()
        self.logger = logging.getLogger(__name__)

    def _owned_credential(self, db: Session, user_id: str, credential_id: str) -> Credential:
        credential = db.query(Credential).filter(
            Credential.id == credential_id,
            Credential.user_id == user_id
        ).first() if credential_id else None
        if not credential:
            raise ValidationError("Invalid API key reference")
        return credential

    def get_bot(self, db: Session, user_id: str, bot_id: str) -> Bot:
        """Get a bot by ID, ensuring the user owns it"""
        bot = db.query(Bot).filter(
            Bot.id == bot_id,
            Bot.user_id == user_id
        ).first()
        if not bot:
            raise NotFoundError("Bot", bot_id)
        return bot

    def list_bots(self, db: Session, user_id: str) -> list[Bot]:
        """List all bots for a user"""
        self.logger.info(f"list_bots: Entry - user: {user_id}")

        bots = db.query(Bot).filter(Bot.user_id == user_id).order_by(Bot.created_at).all()
        self.logger.info(f"list_bots: Success - user: {user_id}, count: {len(bots)}")
        return bots

    def create_bot(self, db: Session, user_id: str, data: dict) -> Bot:
        """
        Create a bot after strategy, credential and quota checks.

        The quota check and insert run under a per-user Redis lock so two
        concurrent requests cannot both take the last slot. Without Redis the
        check runs unlocked.
        """
        self.logger.info(f"create_bot: Entry - user: {user_id}, name: {data.get('name')}")

        try:
            validate_strategy(data.get('strategy'))
            credential = self._owned_credential(db, user_id, data.get('credential_id'))

            exchange = (data.get('exchange') or credential.exchange).lower()
            if exchange != credential.exchange:
                raise ValidationError("Bot exchange does not match the API key exchange")

            cache = get_cache()
            lock_key = f"bot_create_lock:{user_id}"
            lock_token = None
            if settings.bot_create_lock_enabled:
                lock_token = cache.acquire_lock(lock_key, timeout_seconds=10, block_seconds=5)
                if not lock_token:
                    # Fall back to the unlocked check rather than blocking indefinitely
                    self.logger.warning(f"create_bot: Could not acquire lock - {user_id}")

            try:
                decision = self.quota.can_create_bot(db, user_id)
                if not decision.allowed:
                    if decision.reason == REASON_SUBSCRIPTION_REQUIRED:
                        message = "You must have an active subscription to create a bot."
                    else:
                        message = "Bot limit reached for your plan. Upgrade to create more bots."
                    raise PermissionDeniedError(message)

                risk_limits = dict(DEFAULT_RISK_LIMITS)
                risk_limits.update({k: v for k, v in (data.get('risk_limits') or {}).items() if v is not None})

                paper_trading = data.get('paper_trading')
                bot = Bot(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    credential_id=credential.id,
                    name=data.get('name'),
                    exchange=exchange,
                    strategy=data['strategy'],
                    paper_trading=True if paper_trading is None else paper_trading,
                    paper_balance=data.get('paper_balance') or 10000.0,
                    risk_limits=risk_limits,
                    status=BotStatus.STOPPED.value
                )
                db.add(bot)
                db.commit()
                db.refresh(bot)
            finally:
                if lock_token:
                    cache.release_lock(lock_key, lock_token)

            self.analytics.log_success(
                action='create_bot',
                user_id=user_id,
                parameters={'bot_id': bot.id, 'exchange': exchange, 'strategy': bot.strategy.get('type')}
            )
            self.logger.info(f"create_bot: Success - bot: {bot.id}")
            return bot
        except BotDeskError as e:
            self.logger.info(f"create_bot: Rejected - {e.message}")
            raise
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(
                action='create_bot',
                error=str(e),
                user_id=user_id
            )
            self.logger.error(f"create_bot: Failure - {e}")
            raise

    def update_bot(self, db: Session, user_id: str, bot_id: str, data: dict) -> Bot:
        """Update bot settings; risk limits are merged into the stored ones"""
        self.logger.info(f"update_bot: Entry - bot: {bot_id}, user: {user_id}")

        if data.get('strategy') is not None:
            validate_strategy(data['strategy'])

        bot = self.get_bot(db, user_id, bot_id)

        try:
            if data.get('name'):
                bot.name = data['name']
            if data.get('strategy') is not None:
                bot.strategy = data['strategy']
            if data.get('paper_trading') is not None:
                bot.paper_trading = data['paper_trading']
            if data.get('paper_balance') is not None:
                bot.paper_balance = data['paper_balance']
            if data.get('risk_limits'):
                merged = dict(bot.risk_limits or {})
                merged.update({k: v for k, v in data['risk_limits'].items() if v is not None})
                bot.risk_limits = merged

            bot.updated_at = datetime.utcnow()
            db.commit()
            db.refresh(bot)

            self.logger.info(f"update_bot: Success - bot: {bot_id}")
            return bot
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(
                action='update_bot',
                error=str(e),
                user_id=user_id,
                parameters={'bot_id': bot_id}
            )
            self.logger.error(f"update_bot: Failure - {e}")
            raise

    def update_bot_credential(self, db: Session, user_id: str, bot_id: str, credential_id: str) -> Bot:
        """Point a bot at another credential owned by the same user"""
        self.logger.info(f"update_bot_credential: Entry - bot: {bot_id}, user: {user_id}")

        bot = self.get_bot(db, user_id, bot_id)
        credential = self._owned_credential(db, user_id, credential_id)

        bot.credential_id = credential.id
        bot.exchange = credential.exchange
        bot.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(bot)

        self.logger.info(f"update_bot_credential: Success - bot: {bot_id}, credential: {credential.id}")
        return bot

    def delete_bot(self, db: Session, user_id: str, bot_id: str) -> None:
        self.logger.info(f"delete_bot: Entry - bot: {bot_id}, user: {user_id}")

        bot = self.get_bot(db, user_id, bot_id)
        try:
            db.delete(bot)
            db.commit()
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(
                action='delete_bot',
                error=str(e),
                user_id=user_id,
                parameters={'bot_id': bot_id}
            )
            self.logger.error(f"delete_bot: Failure - {e}")
            raise

        self.analytics.log_success(action='delete_bot', user_id=user_id, parameters={'bot_id': bot_id})
        self.logger.info(f"delete_bot: Success - bot: {bot_id}")

    def toggle_bot(self, db: Session, user_id: str, bot_id: str, action: str) -> Bot:
        """Record the requested run state; execution itself happens elsewhere"""
        self.logger.info(f"toggle_bot: Entry - bot: {bot_id}, action: {action}")

        new_status = TOGGLE_ACTIONS.get(action)
        if new_status is None:
            raise ValidationError("Invalid action")

        bot = self.get_bot(db, user_id, bot_id)
        bot.status = new_status
        bot.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(bot)

        self.analytics.log_success(
            action='toggle_bot',
            user_id=user_id,
            parameters={'bot_id': bot_id, 'status': new_status}
        )
        self.logger.info(f"toggle_bot: Success - bot: {bot_id}, status: {new_status}")
        return bot

    def get_performance(self, db: Session, user_id: str, bot_id: str) -> dict:
        bot = self.get_bot(db, user_id, bot_id)
        return bot.performance()
