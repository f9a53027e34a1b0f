import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Sequence

from sqlalchemy import case, delete, exists, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stockservice.core.database import AsyncSessionLocal
from stockservice.domain import Position
from stockservice.models.base import utcnow
from stockservice.models.position import Position as PositionModel
from stockservice.models.stock import Stock
from stockservice.repositories.base import (
    ConstraintViolationError,
    PositionsRepository,
    StockRepository,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SqlCatalogRepository(StockRepository, PositionsRepository):
    """
    Relational adapter behind both ingest ports.

    Upserts use INSERT ... ON CONFLICT so concurrent writers never race on
    an existence check; the snapshot replace is a single transaction.
    """

    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _translate_errors(self, operation: str):
        try:
            yield
        except (IntegrityError, DataError) as e:
            raise ConstraintViolationError(f"{operation}: {e.orig}") from e
        except (SQLAlchemyError, OSError, TimeoutError, asyncio.TimeoutError) as e:
            raise StoreUnavailableError(f"{operation}: {e}") from e

    def _insert(self, session: AsyncSession):
        dialect = session.bind.dialect.name
        try:
            return _INSERTS[dialect]
        except KeyError:
            raise StoreUnavailableError(f"Upserts are not supported on {dialect}") from None

    def _name_merge(self, stmt):
        # Keep a human-entered name; only replace empty or placeholder names
        return case(
            (
                or_(Stock.name.is_(None), Stock.name == "", Stock.name == Stock.symbol),
                stmt.excluded.name,
            ),
            else_=Stock.name,
        )

    async def upsert_stock_basic(self, symbol: str, name: str) -> None:
        async with self._session_factory() as session:
            async with self._translate_errors(f"upsert stock {symbol}"):
                now = utcnow()
                stmt = self._insert(session)(Stock).values(
                    symbol=symbol, name=name, last_updated=now, created_at=now
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[Stock.symbol],
                    set_={
                        "name": self._name_merge(stmt),
                        "last_updated": now,
                    },
                )
                await session.execute(stmt)
                await session.commit()

    async def upsert_stock_with_sector(
        self, symbol: str, name: str, sector: str, industry: str = ""
    ) -> None:
        async with self._session_factory() as session:
            async with self._translate_errors(f"upsert stock {symbol}"):
                now = utcnow()
                stmt = self._insert(session)(Stock).values(
                    symbol=symbol,
                    name=name,
                    sector=sector,
                    industry=industry or None,
                    last_updated=now,
                    created_at=now,
                )
                set_ = {
                    "name": self._name_merge(stmt),
                    "sector": stmt.excluded.sector,
                    "last_updated": now,
                }
                if industry:
                    set_["industry"] = stmt.excluded.industry
                stmt = stmt.on_conflict_do_update(index_elements=[Stock.symbol], set_=set_)
                await session.execute(stmt)
                await session.commit()

    async def stock_exists(self, symbol: str) -> bool:
        async with self._session_factory() as session:
            async with self._translate_errors(f"check stock {symbol}"):
                result = await session.execute(select(exists().where(Stock.symbol == symbol)))
                return bool(result.scalar())

    async def replace_all_positions(self, positions: Sequence[Position]) -> None:
        async with self._session_factory() as session:
            async with self._translate_errors("replace positions"):
                async with session.begin():
                    await session.execute(delete(PositionModel))
                    now = utcnow()
                    session.add_all([
                        PositionModel(
                            symbol=p.symbol,
                            quantity=p.quantity,
                            entry_price=p.entry_price,
                            entry_date=p.entry_date,
                            current_price=p.current_price,
                            unrealized_pnl_pct=p.unrealized_pnl_pct,
                            days_held=p.days_held,
                            entry_rsi=p.entry_rsi,
                            entry_reason=p.entry_reason,
                            sector=p.sector,
                            industry=p.industry,
                            position_size_pct=p.position_size_pct,
                            created_at=now,
                            updated_at=now,
                        )
                        for p in positions
                    ])
        logger.debug("Replaced positions table with %d rows", len(positions))
