from sqlalchemy import Column, String, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from botdesk.core.database import Base
from datetime import datetime


class Credential(Base):
    __tablename__ = "credentials"
    __table_args__ = (
        UniqueConstraint("user_id", "exchange", name="uq_credentials_user_exchange"),
    )

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    exchange = Column(String, nullable=False)  # 'binance', 'coinbase', ...
    api_key_encrypted = Column(Text, nullable=False)  # Encrypted API key
    api_secret_encrypted = Column(Text, nullable=False)  # Encrypted API secret
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="credentials")
    bots = relationship("Bot", back_populates="credential")
