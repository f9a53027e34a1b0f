"""
Value objects exchanged between the consumers and the persistence port.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


def normalize_symbol(symbol: Optional[str]) -> str:
    """Canonical catalog key: trimmed and upper-cased."""
    return (symbol or "").strip().upper()


@dataclass(frozen=True)
class Position:
    """An open holding parsed from a broker snapshot."""
    symbol: str
    quantity: Decimal
    entry_price: Decimal
    entry_date: datetime
    current_price: Decimal = Decimal(0)
    unrealized_pnl_pct: Decimal = Decimal(0)
    days_held: Optional[int] = None
    entry_rsi: Optional[Decimal] = None
    entry_reason: Optional[str] = None
    sector: Optional[str] = None
    industry: Optional[str] = None
    position_size_pct: Optional[Decimal] = None
