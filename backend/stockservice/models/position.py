from sqlalchemy import Column, DateTime, Integer, Numeric, String, Text
from stockservice.core.database import Base
from stockservice.models.base import IdMixin, TimestampMixin
from stockservice.models.types import ExactDecimal


class Position(Base, IdMixin, TimestampMixin):
    """
    Currently open holdings (latest broker snapshot).

    Owned by the positions consumer; the table is replaced wholesale on
    every snapshot.
    """
    __tablename__ = "positions"

    symbol = Column(String(10), nullable=False, unique=True)
    quantity = Column(ExactDecimal, nullable=False)
    entry_price = Column(ExactDecimal, nullable=False)
    entry_date = Column(DateTime(timezone=True), nullable=False)
    current_price = Column(ExactDecimal)
    unrealized_pnl_pct = Column(ExactDecimal)
    days_held = Column(Integer)

    entry_rsi = Column(Numeric(6, 2))
    entry_reason = Column(Text)
    sector = Column(String(100))
    industry = Column(String(100))
    position_size_pct = Column(Numeric(6, 2))
