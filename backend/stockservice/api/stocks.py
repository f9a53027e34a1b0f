"""
Stocks API Router.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stockservice.core.database import get_db
from stockservice.domain import normalize_symbol
from stockservice.models.stock import Stock

router = APIRouter()


class StockSchema(BaseModel):
    symbol: str
    name: str
    exchange: Optional[str] = None
    sector: Optional[str] = None
    industry: Optional[str] = None
    current_price: Optional[Decimal] = None
    previous_close: Optional[Decimal] = None
    change_amount: Optional[Decimal] = None
    change_percent: Optional[Decimal] = None
    day_high: Optional[Decimal] = None
    day_low: Optional[Decimal] = None
    volume: Optional[int] = None
    average_volume: Optional[int] = None
    week_52_high: Optional[Decimal] = None
    week_52_low: Optional[Decimal] = None
    market_cap: Optional[int] = None
    shares_outstanding: Optional[int] = None
    last_updated: datetime
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("", response_model=list[StockSchema])
async def list_stocks(
    sector: Optional[str] = Query(default=None, description="Only stocks in this sector"),
    db: AsyncSession = Depends(get_db),
):
    """All catalogued stocks, ordered by symbol."""
    stmt = select(Stock).order_by(Stock.symbol.asc())
    if sector:
        stmt = stmt.where(Stock.sector == sector)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.get("/sectors", response_model=list[str])
async def list_sectors(db: AsyncSession = Depends(get_db)):
    stmt = (
        select(Stock.sector)
        .where(Stock.sector.is_not(None), Stock.sector != "")
        .distinct()
        .order_by(Stock.sector.asc())
    )
    result = await db.execute(stmt)
    return result.scalars().all()


@router.get("/{symbol}", response_model=StockSchema)
async def get_stock(symbol: str, db: AsyncSession = Depends(get_db)):
    stock = await db.get(Stock, normalize_symbol(symbol))
    if stock is None:
        raise HTTPException(status_code=404, detail="Stock not found")
    return stock
