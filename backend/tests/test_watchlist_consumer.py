import asyncio
import json
import logging

import pytest

from stockservice.core.metrics import metrics
from stockservice.repositories.base import StoreError
from stockservice.stream_consumers.base import ConsumerStopping
from stockservice.stream_consumers.events import MalformedEventError
from stockservice.stream_consumers.watchlist_consumer import WatchlistConsumer


def make_payload(event_type, data):
    return json.dumps({"event_type": event_type, "source": "test", "timestamp": "", "data": data})


def handle(consumer, event_type, data):
    asyncio.run(consumer.process_message("1-0", make_payload(event_type, data)))


@pytest.fixture
def consumer(catalog):
    return WatchlistConsumer(catalog)


def test_watchlist_update_materializes_added_symbols(consumer, catalog):
    handle(consumer, "WATCHLIST_UPDATED", {
        "added_symbols": ["aapl", "Goog", "MSFT"],
        "stocks": [
            {"symbol": "AAPL", "name": "Apple Inc."},
            {"symbol": "GOOG", "name": "Alphabet Inc."},
        ],
    })

    assert sorted(catalog.stocks) == ["AAPL", "GOOG", "MSFT"]
    assert catalog.stocks["AAPL"]["name"] == "Apple Inc."
    assert catalog.stocks["GOOG"]["name"] == "Alphabet Inc."
    assert catalog.stocks["MSFT"]["name"] == "MSFT"
    assert catalog.stocks["MSFT"]["sector"] is None


def test_watchlist_update_uses_sector_upsert_when_enriched(consumer, catalog):
    handle(consumer, "WATCHLIST_UPDATED", {
        "added_symbols": ["nvda"],
        "stocks": [{"symbol": "nvda", "name": "", "sector": "Technology", "industry": "Semiconductors"}],
    })

    assert catalog.calls == [("sector", "NVDA", "NVDA", "Technology", "Semiconductors")]
    assert catalog.stocks["NVDA"]["industry"] == "Semiconductors"


def test_symbol_added_with_sector(consumer, catalog):
    handle(consumer, "WATCHLIST_SYMBOL_ADDED", {
        "symbol": "ccj", "name": "Cameco Corp", "sector": "Energy", "industry": "Uranium",
    })

    assert catalog.stocks == {
        "CCJ": {"symbol": "CCJ", "name": "Cameco Corp", "sector": "Energy", "industry": "Uranium"},
    }
    assert asyncio.run(catalog.stock_exists("CCJ"))


def test_symbol_added_without_name_defaults_to_symbol(consumer, catalog):
    handle(consumer, "WATCHLIST_SYMBOL_ADDED", {"symbol": "sofi"})

    assert catalog.stocks["SOFI"]["name"] == "SOFI"
    assert catalog.calls == [("basic", "SOFI", "SOFI")]


def test_batch_update_continues_past_store_errors(consumer, catalog, caplog):
    catalog.fail_symbols = {"FAIL"}

    with caplog.at_level(logging.ERROR):
        handle(consumer, "WATCHLIST_UPDATED", {"added_symbols": ["FAIL", "OK"]})

    assert list(catalog.stocks) == ["OK"]
    assert "FAIL" in caplog.text
    assert "WATCHLIST_UPDATED" in caplog.text
    assert metrics.count("ingest", "stock_upsert_failed") == 1


def test_symbol_added_store_error_propagates(consumer, catalog):
    catalog.fail_symbols = {"AAPL"}

    with pytest.raises(StoreError) as exc_info:
        handle(consumer, "WATCHLIST_SYMBOL_ADDED", {"symbol": "aapl", "name": "Apple Inc."})

    assert "AAPL" in str(exc_info.value)
    assert catalog.stocks == {}


def test_symbol_removed_never_touches_the_catalog(consumer, catalog):
    handle(consumer, "WATCHLIST_SYMBOL_ADDED", {"symbol": "TSLA", "name": "Tesla"})
    before = {k: dict(v) for k, v in catalog.stocks.items()}

    handle(consumer, "WATCHLIST_SYMBOL_REMOVED", {"symbol": "tsla"})
    handle(consumer, "WATCHLIST_UPDATED", {"removed_symbols": ["TSLA"]})

    assert catalog.stocks == before


def test_symbols_are_upper_cased(consumer, catalog):
    handle(consumer, "WATCHLIST_SYMBOL_ADDED", {"symbol": " aapl "})
    handle(consumer, "WATCHLIST_UPDATED", {"added_symbols": ["msft"]})

    assert sorted(catalog.stocks) == ["AAPL", "MSFT"]


def test_replaying_an_update_is_idempotent(consumer, catalog):
    data = {
        "added_symbols": ["aapl", "XOM"],
        "stocks": [{"symbol": "AAPL", "name": "Apple Inc.", "sector": "Technology"}],
    }
    handle(consumer, "WATCHLIST_UPDATED", data)
    once = {k: dict(v) for k, v in catalog.stocks.items()}

    handle(consumer, "WATCHLIST_UPDATED", data)

    assert catalog.stocks == once


def test_empty_update_is_a_no_op(consumer, catalog):
    handle(consumer, "WATCHLIST_UPDATED", {"added_symbols": [], "total_count": 0})

    assert catalog.stocks == {}
    assert catalog.calls == []


def test_blank_symbols_are_skipped(consumer, catalog):
    handle(consumer, "WATCHLIST_UPDATED", {"added_symbols": ["", "  ", "amd"]})

    assert list(catalog.stocks) == ["AMD"]


def test_symbol_added_without_symbol_is_malformed(consumer, catalog):
    with pytest.raises(MalformedEventError):
        handle(consumer, "WATCHLIST_SYMBOL_ADDED", {"name": "Nameless"})
    assert catalog.calls == []


def test_malformed_json_never_reaches_the_store(consumer, catalog):
    with pytest.raises(MalformedEventError):
        asyncio.run(consumer.process_message("1-0", '{"event_type": "WATCHLIST_UPDATED", "data": '))
    assert catalog.calls == []


def test_unknown_event_type_is_ignored(consumer, catalog):
    handle(consumer, "WATCHLIST_CLEARED", {"symbol": "AAPL"})

    assert catalog.calls == []
    assert metrics.count("ingest", "event_ignored") == 1


def test_stop_between_decode_and_write_aborts_the_message(consumer, catalog):
    consumer.stop_event.set()

    with pytest.raises(ConsumerStopping):
        handle(consumer, "WATCHLIST_SYMBOL_ADDED", {"symbol": "AAPL"})
    assert catalog.calls == []


def test_consumer_uses_watchlist_group_from_earliest(catalog):
    consumer = WatchlistConsumer(catalog)

    assert consumer.consumer_group == "stock-service-watchlist"
    assert consumer.start_id == "0"
    assert consumer.stream_name == "watchlist"
