from stockservice.repositories.base import (
    ConstraintViolationError,
    PositionsRepository,
    StockRepository,
    StoreError,
    StoreUnavailableError,
)

__all__ = [
    "ConstraintViolationError",
    "PositionsRepository",
    "StockRepository",
    "StoreError",
    "StoreUnavailableError",
]
