# Base
from stockservice.models.base import TimestampMixin, IdMixin

# Catalog
from stockservice.models.stock import Stock

# Holdings
from stockservice.models.position import Position

# Feedback
from stockservice.models.signal_feedback import SignalFeedback

__all__ = [
    "TimestampMixin",
    "IdMixin",
    "Stock",
    "Position",
    "SignalFeedback",
]
