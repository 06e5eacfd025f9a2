from sqlalchemy import Column, String, DateTime, ForeignKey, Boolean, Float, Integer, JSON
from sqlalchemy.orm import relationship
from botdesk.core.database import Base
from datetime import datetime
import enum


class BotStatus(str, enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    ERROR = "error"


DEFAULT_RISK_LIMITS = {
    'maxDailyLoss': 500,
    'maxPositionSize': 1000,
    'stopLoss': 5,  # percentage
    'takeProfit': 10,  # percentage
}


class Bot(Base):
    __tablename__ = "bots"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    credential_id = Column(String, ForeignKey("credentials.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    exchange = Column(String, nullable=False)
    strategy = Column(JSON, nullable=False)
    paper_trading = Column(Boolean, default=True, nullable=False)
    paper_balance = Column(Float, default=10000.0, nullable=False)
    risk_limits = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_RISK_LIMITS))
    # Declared intent only; the execution engine owns status transitions to 'error'
    status = Column(String, nullable=False, default=BotStatus.STOPPED.value, index=True)

    # Performance snapshot written by the execution engine
    pnl = Column(Float, default=0.0, nullable=False)
    win_rate = Column(Float, default=0.0, nullable=False)
    trade_count = Column(Integer, default=0, nullable=False)
    last_trade_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="bots")
    credential = relationship("Credential", back_populates="bots")

    def performance(self) -> dict:
        return {
            'pnl': self.pnl,
            'win_rate': self.win_rate,
            'trade_count': self.trade_count,
            'last_trade_at': self.last_trade_at.isoformat() if self.last_trade_at else None,
        }
