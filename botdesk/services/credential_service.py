from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from botdesk.models.bot import Bot
from botdesk.models.credential import Credential
from botdesk.core.security import encrypt_secret, decrypt_secret
from botdesk.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from botdesk.services.analytics_service import AnalyticsService
from datetime import datetime
import math
import uuid
import logging

logger = logging.getLogger(__name__)

SUPPORTED_EXCHANGES = ('binance', 'binance_testnet', 'coinbase', 'kraken')

MIN_CREDENTIAL_LENGTH = 10


class CredentialService:
    """Exchange API credentials, encrypted at rest with Fernet"""

    def __init__(self):
        self.analytics = AnalyticsService()
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def to_dict(credential: Credential) -> dict:
        """Public view: decrypted API key, never the secret"""
        return {
            'id': credential.id,
            'exchange': credential.exchange,
            'api_key': decrypt_secret(credential.api_key_encrypted),
            'created_at': credential.created_at.isoformat() if credential.created_at else None,
        }

    def add_credential(
        self,
        db: Session,
        user_id: str,
        exchange: str,
        api_key: str,
        api_secret: str
    ) -> Credential:
        """Validate and store a new exchange credential"""
        exchange = (exchange or '').strip().lower()
        self.logger.info(f"add_credential: Entry - user: {user_id}, exchange: {exchange}")

        if exchange not in SUPPORTED_EXCHANGES:
            raise ValidationError(
                f"Unsupported exchange: {exchange}. Supported exchanges: {', '.join(SUPPORTED_EXCHANGES)}"
            )
        if not api_key or len(api_key) < MIN_CREDENTIAL_LENGTH:
            raise ValidationError("API key appears to be invalid (too short)")
        if not api_secret or len(api_secret) < MIN_CREDENTIAL_LENGTH:
            raise ValidationError("API secret appears to be invalid (too short)")

        existing = db.query(Credential).filter(
            Credential.user_id == user_id,
            Credential.exchange == exchange
        ).first()
        if existing:
            raise ValidationError(
                f"You already have an API key for {exchange}. Please delete the existing one first or use a different exchange."
            )

        try:
            credential = Credential(
                id=str(uuid.uuid4()),
                user_id=user_id,
                exchange=exchange,
                api_key_encrypted=encrypt_secret(api_key),
                api_secret_encrypted=encrypt_secret(api_secret),
                created_at=datetime.utcnow()
            )
            db.add(credential)
            db.commit()
            db.refresh(credential)
        except IntegrityError:
            db.rollback()
            raise ValidationError(f"You already have an API key for {exchange}.")
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(
                action='add_credential',
                error=str(e),
                user_id=user_id,
                parameters={'exchange': exchange}
            )
            self.logger.error(f"add_credential: Failure - {e}")
            raise

        self.analytics.log_success(action='add_credential', user_id=user_id, parameters={'exchange': exchange})
        self.logger.info(f"add_credential: Success - credential: {credential.id}")
        return credential

    def list_credentials(self, db: Session, user_id: str, page: int = 1, limit: int = 50) -> dict:
        """Newest first, paginated"""
        page = max(page, 1)
        limit = max(limit, 1)

        query = db.query(Credential).filter(Credential.user_id == user_id)
        total = query.count()
        credentials = query.order_by(Credential.created_at.desc()).offset((page - 1) * limit).limit(limit).all()

        return {
            'credentials': [self.to_dict(c) for c in credentials],
            'total': total,
            'page': page,
            'totalPages': math.ceil(total / limit),
        }

    def _get_owned(self, db: Session, user_id: str, credential_id: str) -> Credential:
        credential = db.query(Credential).filter(Credential.id == credential_id).first()
        if not credential:
            raise NotFoundError("API key", credential_id)
        if credential.user_id != user_id:
            raise AuthorizationError()
        return credential

    def _bots_using(self, db: Session, user_id: str, credential_id: str) -> list[Bot]:
        return db.query(Bot).filter(
            Bot.user_id == user_id,
            Bot.credential_id == credential_id
        ).all()

    def get_usage(self, db: Session, user_id: str, credential_id: str) -> dict:
        """Bots referencing a credential and whether it may be deleted"""
        credential = self._get_owned(db, user_id, credential_id)
        bots = self._bots_using(db, user_id, credential_id)
        return {
            'credential': self.to_dict(credential),
            'bots_using_key': [
                {'id': bot.id, 'name': bot.name, 'status': bot.status} for bot in bots
            ],
            'can_delete': len(bots) == 0,
        }

    def delete_credential(self, db: Session, user_id: str, credential_id: str) -> None:
        """Delete a credential no bot references"""
        self.logger.info(f"delete_credential: Entry - credential: {credential_id}, user: {user_id}")

        credential = self._get_owned(db, user_id, credential_id)
        bots = self._bots_using(db, user_id, credential_id)
        if bots:
            names = ', '.join(bot.name for bot in bots)
            raise ValidationError(
                f"Cannot delete API key. It is being used by the following bots: {names}. "
                "Please delete or update these bots first."
            )

        try:
            db.delete(credential)
            db.commit()
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(
                action='delete_credential',
                error=str(e),
                user_id=user_id,
                parameters={'credential_id': credential_id}
            )
            self.logger.error(f"delete_credential: Failure - {e}")
            raise

        self.logger.info(f"delete_credential: Success - credential: {credential_id}")

    @staticmethod
    def get_decrypted_secret(credential: Credential) -> str:
        """Plaintext API secret for the execution engine; never returned over HTTP"""
        return decrypt_secret(credential.api_secret_encrypted)
