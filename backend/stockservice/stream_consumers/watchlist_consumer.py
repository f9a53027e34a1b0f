import logging
from typing import Optional

from stockservice.stream_consumers.base import BaseStreamConsumer
from stockservice.core.metrics import metrics
from stockservice.core.redis import ConsumerGroups, StreamNames
from stockservice.domain import normalize_symbol
from stockservice.repositories.base import StockRepository, StoreError
from stockservice.stream_consumers.events import (
    MalformedEventError,
    WatchlistStock,
    WatchlistSymbolAdded,
    WatchlistSymbolRemoved,
    WatchlistUpdated,
    decode_watchlist_event,
)

logger = logging.getLogger(__name__)


class WatchlistConsumer(BaseStreamConsumer):
    """
    Listens for 'watchlist' events.
    Materializes every symbol the user has watched into the stock catalog.
    Never deletes: removals are logged only, so history stays queryable.
    """

    def __init__(self, repo: StockRepository, **kwargs):
        kwargs.setdefault("stream_name", StreamNames.WATCHLIST)
        kwargs.setdefault("consumer_group", ConsumerGroups.watchlist())
        # Earliest offset on first join so the catalog can be rebuilt
        kwargs.setdefault("start_id", self.START_EARLIEST)
        super().__init__(**kwargs)
        self.repo = repo

    async def process_message(self, message_id: str, payload: str) -> None:
        event = decode_watchlist_event(payload)
        logger.info(f"Processing watchlist event {event.event_type} ({message_id})")

        if isinstance(event, WatchlistUpdated):
            self.ensure_running()
            await self.handle_watchlist_updated(event)
        elif isinstance(event, WatchlistSymbolAdded):
            self.ensure_running()
            await self.handle_symbol_added(event)
        elif isinstance(event, WatchlistSymbolRemoved):
            # The stock row is kept; its data may still be useful
            logger.info(
                f"Symbol removed from watchlist: {normalize_symbol(event.symbol)} "
                f"(keeping in database)"
            )
        else:
            logger.info(f"Ignoring unknown watchlist event type: {event.event_type!r}")
            await metrics.event_ignored(self.stream_name, event.event_type)

    async def handle_watchlist_updated(self, event: WatchlistUpdated) -> None:
        """
        Upsert every added symbol. A failing symbol is logged and skipped;
        the broker re-sends the full watchlist, so the batch must progress.
        """
        logger.info(
            f"Processing watchlist update: {len(event.added_symbols)} added, "
            f"{len(event.removed_symbols)} removed, {event.total_count} total"
        )
        if event.removed_symbols:
            logger.info(
                f"Removed from watchlist (keeping in database): "
                f"{', '.join(normalize_symbol(s) for s in event.removed_symbols)}"
            )

        for raw_symbol in event.added_symbols:
            symbol = normalize_symbol(raw_symbol)
            if not symbol:
                logger.warning(f"Skipping blank symbol in {event.event_type}")
                continue

            stock = _find_stock(event.stocks, symbol)
            name = (stock.name if stock else "") or symbol
            sector = stock.sector if stock else ""
            industry = stock.industry if stock else ""

            try:
                await self._upsert(symbol, name, sector, industry)
            except StoreError as e:
                logger.error(f"Error upserting stock {symbol} from {event.event_type}: {e}")
                await metrics.stock_upsert_failed(symbol, event.event_type, str(e))
                continue
            logger.info(f"Added/updated stock: {symbol} ({name})")

    async def handle_symbol_added(self, event: WatchlistSymbolAdded) -> None:
        """Upsert a single symbol. Store errors propagate so the message is retried."""
        symbol = normalize_symbol(event.symbol)
        if not symbol:
            raise MalformedEventError(f"{event.event_type} without a symbol")
        name = event.name or symbol

        try:
            await self._upsert(symbol, name, event.sector, event.industry)
        except StoreError as e:
            logger.error(f"Failed to upsert stock {symbol} from {event.event_type}: {e}")
            await metrics.stock_upsert_failed(symbol, event.event_type, str(e))
            raise

        logger.info(f"Added/updated stock from watchlist: {symbol} ({name})")

    async def _upsert(self, symbol: str, name: str, sector: str, industry: str) -> None:
        if sector:
            await self.repo.upsert_stock_with_sector(symbol, name, sector, industry)
        else:
            await self.repo.upsert_stock_basic(symbol, name)


def _find_stock(stocks: list[WatchlistStock], symbol: str) -> Optional[WatchlistStock]:
    for stock in stocks:
        if normalize_symbol(stock.symbol) == symbol:
            return stock
    return None

