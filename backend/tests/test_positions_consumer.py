import asyncio
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from stockservice.core.metrics import metrics
from stockservice.repositories.base import StoreError
from stockservice.stream_consumers.base import ConsumerStopping
from stockservice.stream_consumers.events import MalformedEventError, PositionData
from stockservice.stream_consumers.positions_consumer import PositionsConsumer, convert_position

NOW = datetime(2024, 5, 1, 14, 30, tzinfo=timezone.utc)


def snapshot(*rows, **extra):
    data = {"positions": list(rows), **extra}
    return json.dumps({"event_type": "POSITIONS_SNAPSHOT", "source": "test", "timestamp": "", "data": data})


def row(symbol, quantity, price, equity="", percent_change=""):
    return {
        "symbol": symbol,
        "quantity": quantity,
        "average_buy_price": price,
        "equity": equity,
        "percent_change": percent_change,
    }


def apply(consumer, payload):
    asyncio.run(consumer.process_message("1-0", payload))


def stored(catalog):
    return {(p.symbol, p.quantity, p.entry_price) for p in catalog.positions.values()}


@pytest.fixture
def consumer(catalog):
    return PositionsConsumer(catalog)


def test_each_snapshot_replaces_the_previous_one(consumer, catalog):
    apply(consumer, snapshot(row("AAPL", "10", "150", equity="1600")))
    apply(consumer, snapshot(row("GOOG", "5", "2800", equity="14100")))

    assert list(catalog.positions) == ["GOOG"]
    goog = catalog.positions["GOOG"]
    assert goog.quantity == Decimal("5")
    assert goog.entry_price == Decimal("2800")
    assert goog.current_price == Decimal("2820")


def test_bad_row_is_skipped_and_snapshot_still_commits(consumer, catalog, caplog):
    with caplog.at_level(logging.WARNING):
        apply(consumer, snapshot(
            row("BAD", "ten", "150"),
            row("MSFT", "3", "410.10", equity="1260.00"),
        ))

    assert list(catalog.positions) == ["MSFT"]
    assert "BAD" in caplog.text
    assert metrics.count("ingest", "position_skipped") == 1
    assert metrics.count("ingest", "snapshot_applied") == 1


def test_stored_rows_match_the_parsed_snapshot(consumer, catalog):
    apply(consumer, snapshot(
        row("AAPL", "10.50000000", "150.2500", equity="1600.00", percent_change="1.5"),
        row("TSLA", "0.12345678", "180.0001"),
    ))

    assert stored(catalog) == {
        ("AAPL", Decimal("10.50000000"), Decimal("150.2500")),
        ("TSLA", Decimal("0.12345678"), Decimal("180.0001")),
    }
    assert catalog.positions["AAPL"].unrealized_pnl_pct == Decimal("1.5")
    # Missing equity and percent_change fall back to zero
    assert catalog.positions["TSLA"].current_price == Decimal(0)
    assert catalog.positions["TSLA"].unrealized_pnl_pct == Decimal(0)


def test_failed_replace_leaves_positions_untouched(consumer, catalog):
    apply(consumer, snapshot(row("AAPL", "10", "150", equity="1600")))
    before = dict(catalog.positions)
    catalog.fail_replace = True

    with pytest.raises(StoreError):
        apply(consumer, snapshot(row("GOOG", "5", "2800")))

    assert catalog.positions == before


def test_replaying_a_snapshot_is_idempotent(consumer, catalog):
    payload = snapshot(row("AAPL", "10", "150", equity="1600"), row("AMD", "4", "160.5"))

    apply(consumer, payload)
    once = stored(catalog)
    apply(consumer, payload)

    assert stored(catalog) == once
    assert len(catalog.positions) == 2


def test_zero_quantity_row_is_kept_with_zero_price(consumer, catalog):
    apply(consumer, snapshot(row("PLTR", "0", "22.10", equity="0")))

    assert catalog.positions["PLTR"].current_price == Decimal(0)
    assert catalog.positions["PLTR"].quantity == Decimal(0)


def test_empty_snapshot_clears_positions(consumer, catalog):
    apply(consumer, snapshot(row("AAPL", "10", "150")))
    apply(consumer, snapshot())

    assert catalog.positions == {}


def test_duplicate_symbols_keep_the_last_row(consumer, catalog, caplog):
    with caplog.at_level(logging.WARNING):
        apply(consumer, snapshot(row("aapl", "1", "100"), row("AAPL", "2", "110")))

    assert stored(catalog) == {("AAPL", Decimal("2"), Decimal("110"))}
    assert "Duplicate position AAPL" in caplog.text


def test_malformed_json_never_reaches_the_store(consumer, catalog):
    with pytest.raises(MalformedEventError):
        apply(consumer, "POSITIONS_SNAPSHOT")
    assert catalog.calls == []


def test_other_event_types_are_ignored(consumer, catalog):
    apply(consumer, json.dumps({"event_type": "ORDERS_SNAPSHOT", "data": {"orders": []}}))

    assert catalog.calls == []
    assert metrics.count("ingest", "event_ignored") == 1


def test_stop_between_decode_and_write_aborts_the_snapshot(consumer, catalog):
    apply(consumer, snapshot(row("AAPL", "10", "150")))
    consumer.stop_event.set()

    with pytest.raises(ConsumerStopping):
        apply(consumer, snapshot(row("GOOG", "5", "2800")))

    assert list(catalog.positions) == ["AAPL"]
    assert len(catalog.calls) == 1


def test_consumer_uses_positions_group_from_latest(catalog):
    consumer = PositionsConsumer(catalog)

    assert consumer.consumer_group == "stock-service-positions"
    assert consumer.start_id == "$"
    assert consumer.stream_name == "trading.positions"


class TestConvertPosition:
    def test_derives_current_price_from_equity(self):
        position = convert_position(
            PositionData(symbol="goog", quantity="5", average_buy_price="2800", equity="14100",
                         percent_change="0.71"),
            NOW,
        )

        assert position.symbol == "GOOG"
        assert position.current_price == Decimal("2820")
        assert position.unrealized_pnl_pct == Decimal("0.71")
        assert position.entry_date == NOW

    @pytest.mark.parametrize(
        "quantity,price",
        [("", "100"), ("10", ""), ("NaN", "100"), ("10", "abc"), ("-1", "100"), ("10", "-5")],
    )
    def test_rejects_unusable_quantity_or_price(self, quantity, price):
        assert convert_position(
            PositionData(symbol="AAPL", quantity=quantity, average_buy_price=price), NOW
        ) is None

    def test_rejects_blank_symbol(self):
        assert convert_position(PositionData(symbol=" ", quantity="1", average_buy_price="1"), NOW) is None
