from sqlalchemy import Column, DateTime, Integer, Numeric, String
from stockservice.core.database import Base
from stockservice.models.base import utcnow


class SignalFeedback(Base):
    """
    Append-only ledger of what the user did with a trading signal.
    """
    __tablename__ = "signal_feedback"

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String(10), nullable=False, index=True)
    signal = Column(String(10), nullable=False)
    action = Column(String(10), nullable=False, index=True)
    confidence = Column(Numeric(5, 4))
    feedback_timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
