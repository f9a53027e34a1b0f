"""
Signal feedback API Router.

Append-only record of whether the user traded or skipped a signal.
"""
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stockservice.core.database import get_db
from stockservice.domain import normalize_symbol
from stockservice.models.base import utcnow
from stockservice.models.signal_feedback import SignalFeedback

router = APIRouter()

# ---------- Pydantic Schemas ----------

class FeedbackCreate(BaseModel):
    symbol: str = Field(min_length=1, max_length=10)
    signal: str = Field(min_length=1, max_length=10)
    action: Literal["traded", "skipped"]
    confidence: Optional[Decimal] = Field(default=None, ge=0, le=1)
    feedback_timestamp: Optional[datetime] = None

    @field_validator("symbol")
    @classmethod
    def upper_symbol(cls, v: str) -> str:
        return normalize_symbol(v)


class FeedbackSchema(BaseModel):
    id: int
    symbol: str
    signal: str
    action: str
    confidence: Optional[Decimal] = None
    feedback_timestamp: datetime
    created_at: datetime

    class Config:
        from_attributes = True


class FeedbackSummary(BaseModel):
    total: int
    traded: int
    skipped: int


# ---------- Endpoints ----------

@router.post("", response_model=FeedbackSchema, status_code=201)
async def create_feedback(body: FeedbackCreate, db: AsyncSession = Depends(get_db)):
    entry = SignalFeedback(
        symbol=body.symbol,
        signal=body.signal,
        action=body.action,
        confidence=body.confidence,
        feedback_timestamp=body.feedback_timestamp or utcnow(),
    )
    db.add(entry)
    await db.commit()
    await db.refresh(entry)
    return entry


@router.get("", response_model=list[FeedbackSchema])
async def list_feedback(
    limit: int = Query(default=50, ge=1, le=1000),
    since: Optional[datetime] = Query(default=None, description="Only feedback at or after this time"),
    symbol: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    """Most recent feedback first."""
    stmt = select(SignalFeedback)
    if since is not None:
        stmt = stmt.where(SignalFeedback.feedback_timestamp >= since)
    if symbol:
        stmt = stmt.where(SignalFeedback.symbol == normalize_symbol(symbol))
    stmt = stmt.order_by(SignalFeedback.feedback_timestamp.desc()).limit(limit)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.get("/summary", response_model=FeedbackSummary)
async def feedback_summary(db: AsyncSession = Depends(get_db)):
    stmt = select(
        func.count(),
        func.count().filter(SignalFeedback.action == "traded"),
        func.count().filter(SignalFeedback.action == "skipped"),
    ).select_from(SignalFeedback)
    total, traded, skipped = (await db.execute(stmt)).one()
    return FeedbackSummary(total=total, traded=traded, skipped=skipped)
