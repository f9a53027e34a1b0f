from abc import ABC, abstractmethod
from typing import Sequence

from stockservice.domain import Position


class StoreError(Exception):
    """Base class for persistence failures surfaced to the consumers."""


class StoreUnavailableError(StoreError):
    """The store could not be reached or the operation timed out."""


class ConstraintViolationError(StoreError):
    """The store rejected a write (unique, not-null, length...)."""


class StockRepository(ABC):
    """Catalog operations needed by the watchlist consumer."""

    @abstractmethod
    async def upsert_stock_basic(self, symbol: str, name: str) -> None:
        """
        Insert the stock if absent. If present, replace the name only when
        the stored one is empty or equal to the symbol. Always bumps
        last_updated.
        """
        pass

    @abstractmethod
    async def upsert_stock_with_sector(
        self, symbol: str, name: str, sector: str, industry: str = ""
    ) -> None:
        """Same name rule as upsert_stock_basic; also writes sector/industry."""
        pass

    @abstractmethod
    async def stock_exists(self, symbol: str) -> bool:
        pass


class PositionsRepository(ABC):
    """Holdings operations needed by the positions consumer."""

    @abstractmethod
    async def replace_all_positions(self, positions: Sequence[Position]) -> None:
        """
        Atomically make the positions table equal to `positions`.
        On failure the table is left as it was.
        """
        pass
