from sqlalchemy import Column, String, DateTime, Boolean
from sqlalchemy.orm import relationship
from botdesk.core.database import Base
from datetime import datetime


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)  # Firebase UID
    email = Column(String, unique=True, index=True, nullable=True)
    name = Column(String, nullable=True)
    # Entitlement projection, written only by the webhook reconciler
    subscription_status = Column(String, nullable=False, default='inactive', index=True)  # 'active', 'inactive', 'past_due', raw Stripe status
    subscription_plan = Column(String, nullable=False, default='Free', index=True)  # 'Free', 'Basic', 'Premium', 'Unknown'
    stripe_customer_id = Column(String, unique=True, index=True, nullable=True)  # Immutable once bound
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    is_active = Column(Boolean, default=True)

    # Relationships
    credentials = relationship("Credential", back_populates="user", cascade="all, delete-orphan")
    bots = relationship("Bot", back_populates="user", cascade="all, delete-orphan")
