import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError, ResponseError

from stockservice.core.metrics import metrics
from stockservice.stream_consumers import host as host_module
from stockservice.stream_consumers.host import ConsumerHost, StartupError
from tests.fakes import FakeStreams


async def db_ok():
    return None


def make_host(catalog, streams, **kwargs):
    kwargs.setdefault("db_check", db_ok)
    return ConsumerHost(repo=catalog, redis_factory=lambda: streams, **kwargs)


def test_connectivity_check_passes(catalog, streams):
    asyncio.run(make_host(catalog, streams).check_connectivity())


def test_unreachable_store_fails_startup(catalog, streams):
    async def db_down():
        raise OSError("connection refused")

    with pytest.raises(StartupError, match="store"):
        asyncio.run(make_host(catalog, streams, db_check=db_down).check_connectivity())


def test_slow_store_fails_startup_after_timeout(catalog, streams):
    async def db_hangs():
        await asyncio.sleep(10)

    host = make_host(catalog, streams, db_check=db_hangs, startup_timeout=0.05)
    with pytest.raises(StartupError):
        asyncio.run(host.check_connectivity())


def test_unreachable_redis_fails_startup(catalog, streams):
    streams.ping_error = RedisConnectionError("connection refused")

    with pytest.raises(StartupError, match="redis"):
        asyncio.run(make_host(catalog, streams).check_connectivity())
    assert streams.closed


def test_run_consumes_both_streams_until_stopped(catalog, streams):
    async def scenario():
        host = make_host(catalog, streams)
        run = asyncio.create_task(host.run())
        while len(streams.groups) < 2:
            await asyncio.sleep(0.01)

        await streams.publish("watchlist", "WATCHLIST_SYMBOL_ADDED", {"symbol": "aapl"})
        await streams.publish("trading.positions", "POSITIONS_SNAPSHOT", {
            "positions": [{"symbol": "AAPL", "quantity": "10", "average_buy_price": "150"}],
        })
        while not (catalog.stocks and catalog.positions):
            await asyncio.sleep(0.01)

        host.stop_event.set()
        return await asyncio.wait_for(run, 5)

    assert asyncio.run(scenario()) == 0
    assert set(streams.groups) == {
        ("watchlist", "stock-service-watchlist"),
        ("trading.positions", "stock-service-positions"),
    }
    assert "AAPL" in catalog.stocks
    assert "AAPL" in catalog.positions


def test_crashed_consumer_shuts_the_host_down(catalog, streams, monkeypatch):
    async def broken_group_create(*args, **kwargs):
        raise ResponseError("NOPERM this user has no permissions")

    monkeypatch.setattr(streams, "xgroup_create", broken_group_create)

    code = asyncio.run(asyncio.wait_for(make_host(catalog, streams).run(), 5))

    assert code == 1


def test_stop_cancels_consumers_stuck_past_the_grace_period(catalog, streams):
    async def stuck_upsert(symbol, name):
        await asyncio.sleep(60)

    catalog.upsert_stock_basic = stuck_upsert

    async def scenario():
        host = make_host(catalog, streams, shutdown_grace=0.1)
        await streams.publish("watchlist", "WATCHLIST_SYMBOL_ADDED", {"symbol": "aapl"})
        host.start()
        while not streams.groups.get(("watchlist", "stock-service-watchlist"), {}).get("pending"):
            await asyncio.sleep(0.01)

        await asyncio.wait_for(host.stop(), 5)
        return host

    host = asyncio.run(scenario())

    assert all(task.done() for task in host.tasks)
    assert any(task.cancelled() for task in host.tasks)
    assert streams.acked == []


def test_main_exits_non_zero_when_startup_fails(monkeypatch):
    async def unreachable(self):
        raise StartupError("store unreachable: OSError('connection refused')")

    monkeypatch.setattr(ConsumerHost, "check_connectivity", unreachable)

    with pytest.raises(SystemExit) as exc_info:
        host_module.main()

    assert exc_info.value.code == 1


def test_host_owns_one_metrics_client_for_its_lifetime(catalog):
    clients = []

    def factory():
        clients.append(FakeStreams())
        return clients[-1]

    async def scenario():
        host = ConsumerHost(repo=catalog, redis_factory=factory, db_check=db_ok)
        host.start()
        while len(clients[1].groups) + len(clients[2].groups) < 2:
            await asyncio.sleep(0.01)
        assert metrics.redis is clients[0]
        await asyncio.wait_for(host.stop(), 5)

    asyncio.run(scenario())

    assert len(clients) == 3
    assert metrics.redis is None
    assert all(client.closed for client in clients)
