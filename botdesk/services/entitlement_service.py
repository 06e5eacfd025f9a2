import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from botdesk.core.exceptions import AlreadyBoundError, NotFoundError
from botdesk.models.user import User

logger = logging.getLogger(__name__)


class Entitlement(BaseModel):
    """Read-only view of a user's subscription state"""
    status: str
    plan: str
    stripe_customer_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == 'active'


class EntitlementService:
    """
    Durable per-user subscription record.

    Every mutation is a single UPDATE on the users row; concurrent writers
    (webhooks, checkout binding) rely on that and the last write wins.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def ensure_user(self, db: Session, user_id: str, email: str = None, name: str = None) -> User:
        """Return the user row, creating it on first authenticated request"""
        user = db.query(User).filter(User.id == user_id).first()
        if user:
            return user

        self.logger.info(f"ensure_user: Creating user - {user_id}")
        user = User(
            id=user_id,
            email=email or None,
            name=name,
            subscription_status='inactive',
            subscription_plan='Free',
            is_active=True
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            # Concurrent first request created the same row
            db.rollback()
            user = db.query(User).filter(User.id == user_id).first()
            if user:
                return user
            if not email:
                raise
            # Email already held by another account
            self.logger.warning(f"ensure_user: Email in use, creating without it - {user_id}")
            user = User(id=user_id, subscription_status='inactive', subscription_plan='Free', name=name, is_active=True)
            db.add(user)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                user = db.query(User).filter(User.id == user_id).first()
                if not user:
                    raise
                return user
            db.refresh(user)
        else:
            db.refresh(user)
        return user

    def get(self, db: Session, user_id: str) -> Entitlement:
        """Get the (status, plan, customer id) projection for a user"""
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError("User", user_id)
        return Entitlement(
            status=user.subscription_status or 'inactive',
            plan=user.subscription_plan or 'Free',
            stripe_customer_id=user.stripe_customer_id
        )

    def set_by_customer_id(
        self,
        db: Session,
        customer_id: str,
        status: str,
        plan: str = None
    ) -> Optional[User]:
        """
        Overwrite the entitlement of the user bound to customer_id.
        plan=None leaves the stored plan untouched.
        Returns the updated user, or None when no user maps to the customer.
        """
        self.logger.info(f"set_by_customer_id: Entry - customer: {customer_id}, status: {status}, plan: {plan}")

        values = {User.subscription_status: status, User.updated_at: datetime.utcnow()}
        if plan is not None:
            values[User.subscription_plan] = plan

        try:
            rows = db.query(User).filter(
                User.stripe_customer_id == customer_id
            ).update(values, synchronize_session=False)
            db.commit()
        except Exception as e:
            db.rollback()
            self.logger.error(f"set_by_customer_id: Failure - {e}")
            raise

        if rows == 0:
            self.logger.info(f"set_by_customer_id: No user - customer: {customer_id}")
            return None

        user = db.query(User).filter(User.stripe_customer_id == customer_id).first()
        db.refresh(user)
        self.logger.info(f"set_by_customer_id: Success - user: {user.id}")
        return user

    def bind_customer_id(self, db: Session, user_id: str, customer_id: str) -> None:
        """
        Bind a Stripe customer id to a user exactly once.
        Rebinding the same id is a no-op; a different id raises AlreadyBoundError.
        """
        self.logger.info(f"bind_customer_id: Entry - user: {user_id}, customer: {customer_id}")

        try:
            rows = db.query(User).filter(
                User.id == user_id,
                User.stripe_customer_id.is_(None)
            ).update(
                {User.stripe_customer_id: customer_id, User.updated_at: datetime.utcnow()},
                synchronize_session=False
            )
            db.commit()
        except IntegrityError:
            # Unique constraint: the customer id already belongs to someone else
            db.rollback()
            self.logger.error(f"bind_customer_id: Customer already bound elsewhere - {customer_id}")
            raise AlreadyBoundError(user_id)
        except Exception as e:
            db.rollback()
            self.logger.error(f"bind_customer_id: Failure - {e}")
            raise

        if rows == 1:
            self.logger.info(f"bind_customer_id: Success - user: {user_id}")
            return

        current = self.get(db, user_id)
        if current.stripe_customer_id == customer_id:
            self.logger.info(f"bind_customer_id: Already bound (no-op) - user: {user_id}")
            return
        raise AlreadyBoundError(user_id, current.stripe_customer_id)
