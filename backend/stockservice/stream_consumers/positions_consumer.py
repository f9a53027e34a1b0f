import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from stockservice.stream_consumers.base import BaseStreamConsumer
from stockservice.core.metrics import metrics
from stockservice.core.redis import ConsumerGroups, StreamNames
from stockservice.domain import Position, normalize_symbol
from stockservice.models.base import utcnow
from stockservice.repositories.base import PositionsRepository, StoreError
from stockservice.stream_consumers.decimals import (
    DecimalParseError,
    parse_decimal,
    parse_decimal_or_zero,
)
from stockservice.stream_consumers.events import (
    PositionData,
    PositionsSnapshot,
    decode_positions_event,
)

logger = logging.getLogger(__name__)


class PositionsConsumer(BaseStreamConsumer):
    """
    Listens for 'positions' snapshots.
    Converts broker rows into positions and replaces the whole table in one
    transaction, so readers only ever see a complete snapshot.
    """

    def __init__(self, repo: PositionsRepository, **kwargs):
        kwargs.setdefault("stream_name", StreamNames.POSITIONS)
        kwargs.setdefault("consumer_group", ConsumerGroups.positions())
        # Historical snapshots are superseded by the next one
        kwargs.setdefault("start_id", self.START_LATEST)
        super().__init__(**kwargs)
        self.repo = repo

    async def process_message(self, message_id: str, payload: str) -> None:
        event = decode_positions_event(payload)

        if not isinstance(event, PositionsSnapshot):
            logger.info(f"Ignoring event type: {event.event_type!r}")
            await metrics.event_ignored(self.stream_name, event.event_type)
            return

        logger.info(
            f"Processing positions snapshot {message_id}: {len(event.positions)} positions, "
            f"buying_power={event.buying_power or '-'} cash={event.cash or '-'} "
            f"total_equity={event.total_equity or '-'}"
        )

        positions = await self.convert_snapshot(event, now=utcnow())
        self.ensure_running()

        try:
            await self.repo.replace_all_positions(positions)
        except StoreError as e:
            logger.error(f"Failed to replace positions from {event.event_type}: {e}")
            raise

        skipped = len(event.positions) - len(positions)
        await metrics.snapshot_applied(len(positions), skipped)
        logger.info(f"Successfully updated {len(positions)} positions from snapshot")
        for p in positions:
            logger.info(
                f"  {p.symbol}: {p.quantity} shares @ ${p.entry_price} "
                f"(current: ${p.current_price}, P&L: {p.unrealized_pnl_pct}%)"
            )

    async def convert_snapshot(self, event: PositionsSnapshot, now: datetime) -> List[Position]:
        """
        Convert every usable row. Bad rows are skipped with a warning; a
        repeated symbol keeps its last row.
        """
        by_symbol: Dict[str, Position] = {}
        for data in event.positions:
            position = convert_position(data, now)
            if position is None:
                await metrics.position_skipped(normalize_symbol(data.symbol), "unparseable")
                continue
            if position.symbol in by_symbol:
                logger.warning(
                    f"Duplicate position {position.symbol} in {event.event_type}; "
                    f"keeping the last row"
                )
                del by_symbol[position.symbol]
            by_symbol[position.symbol] = position
        return list(by_symbol.values())


def convert_position(data: PositionData, now: datetime) -> Optional[Position]:
    """
    Build a Position from one broker row, or None if a load-bearing field
    (symbol, quantity, average_buy_price) is unusable.

    The snapshot carries no entry date, so `now` (receive time) stands in.
    """
    symbol = normalize_symbol(data.symbol)
    if not symbol:
        logger.warning("Warning: skipping position without a symbol in POSITIONS_SNAPSHOT")
        return None

    try:
        quantity = parse_decimal(data.quantity)
        entry_price = parse_decimal(data.average_buy_price)
    except DecimalParseError as e:
        logger.warning(f"Warning: failed to convert position {symbol} in POSITIONS_SNAPSHOT: {e}")
        return None
    if quantity < 0 or entry_price < 0:
        logger.warning(
            f"Warning: failed to convert position {symbol} in POSITIONS_SNAPSHOT: "
            f"negative quantity {data.quantity!r} or price {data.average_buy_price!r}"
        )
        return None

    equity = parse_decimal_or_zero(data.equity)
    percent_change = parse_decimal_or_zero(data.percent_change)

    current_price = Decimal(0)
    if quantity != 0:
        try:
            current_price = equity / quantity
        except InvalidOperation:
            logger.warning(f"Warning: could not derive current price for {symbol}")

    return Position(
        symbol=symbol,
        quantity=quantity,
        entry_price=entry_price,
        entry_date=now,
        current_price=current_price,
        unrealized_pnl_pct=percent_change,
    )
