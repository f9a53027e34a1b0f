"""
Positions API Router.

Read-only view of the latest broker snapshot.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stockservice.core.database import get_db
from stockservice.models.position import Position

router = APIRouter()


class PositionSchema(BaseModel):
    symbol: str
    quantity: Decimal
    entry_price: Decimal
    entry_date: datetime
    current_price: Optional[Decimal] = None
    unrealized_pnl_pct: Optional[Decimal] = None
    days_held: Optional[int] = None
    sector: Optional[str] = None
    industry: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


@router.get("", response_model=list[PositionSchema])
async def list_positions(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Position).order_by(Position.symbol.asc()))
    return result.scalars().all()
