from sqlalchemy import BigInteger, Column, DateTime, Numeric, String
from stockservice.core.database import Base
from stockservice.models.base import utcnow


class Stock(Base):
    """
    Catalog of tradable equities, keyed by upper-cased symbol.

    Rows are created from watchlist events; the market-data columns are
    filled by writers outside the ingest pipeline.
    """
    __tablename__ = "stocks"

    symbol = Column(String(10), primary_key=True)
    name = Column(String(255), nullable=False, default="")
    exchange = Column(String(50))
    sector = Column(String(100), index=True)
    industry = Column(String(100))

    current_price = Column(Numeric(12, 4))
    previous_close = Column(Numeric(12, 4))
    change_amount = Column(Numeric(12, 4))
    change_percent = Column(Numeric(10, 4))
    day_high = Column(Numeric(12, 4))
    day_low = Column(Numeric(12, 4))
    volume = Column(BigInteger)
    average_volume = Column(BigInteger)
    week_52_high = Column(Numeric(12, 4))
    week_52_low = Column(Numeric(12, 4))
    market_cap = Column(BigInteger)
    shares_outstanding = Column(BigInteger)

    last_updated = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
