import json

import pytest

from market_stream import StreamFeed, parse_agg_trade, parse_kline


def test_parse_agg_trade_buyer_maker_is_sell():
    msg = {"e": "aggTrade", "E": 1, "T": 2, "p": "65000.10", "q": "0.250", "m": True}
    assert parse_agg_trade(msg) == {
        "price": 65000.10,
        "quantity": 0.25,
        "taker_is_seller": True,
        "ts": 2,
    }
    msg["m"] = False
    assert parse_agg_trade(msg)["taker_is_seller"] is False


@pytest.mark.parametrize("msg", [
    {"e": "trade", "p": "1", "q": "1", "m": False},
    {"e": "aggTrade", "p": "nan", "q": "1", "m": False},
    {"e": "aggTrade", "p": "abc", "q": "1", "m": False},
    {"e": "aggTrade", "p": "1", "m": False},
    "not a dict",
])
def test_parse_agg_trade_rejects_bad_messages(msg):
    assert parse_agg_trade(msg) is None


def test_parse_kline():
    msg = {
        "e": "kline",
        "k": {"t": 60000, "T": 119999, "o": "1.0", "h": "2.0", "l": "0.5", "c": "1.5", "v": "12.5", "x": True},
    }
    assert parse_kline(msg) == {
        "open_time": 60000,
        "close_time": 119999,
        "open": 1.0,
        "high": 2.0,
        "low": 0.5,
        "close": 1.5,
        "volume": 12.5,
        "is_closed": True,
    }


def test_parse_kline_rejects_missing_fields():
    assert parse_kline({"e": "kline", "k": {"t": 1, "T": 2, "o": "1"}}) is None
    assert parse_kline({"e": "kline"}) is None
    assert parse_kline({"e": "aggTrade"}) is None


class _FakeSocket:
    def __init__(self, messages):
        self.messages = list(messages)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for m in self.messages:
            yield m


@pytest.mark.asyncio
async def test_feed_delivers_parsed_messages_and_counts_drops():
    received = []
    raw = [
        json.dumps({"e": "aggTrade", "p": "10", "q": "1", "m": False}),
        "{not json",
        json.dumps({"e": "aggTrade", "p": "inf", "q": "1", "m": False}),
        json.dumps({"e": "aggTrade", "p": "11", "q": "2", "m": True}),
    ]

    async def on_message(event):
        received.append(event)
        if len(received) == 2:
            feed.stop()

    def connect(url, **kwargs):
        assert kwargs["ping_interval"] == 20.0
        return _FakeSocket(raw)

    feed = StreamFeed("aggTrade", "wss://example", parse_agg_trade, on_message, connect=connect)
    await feed.run()

    assert [e["price"] for e in received] == [10.0, 11.0]
    assert feed.received == 4
    assert feed.dropped == 2
    assert feed.is_connected is False


@pytest.mark.asyncio
async def test_feed_gives_up_after_max_attempts():
    gave_up = []
    attempts = []

    def connect(url, **kwargs):
        attempts.append(url)
        raise OSError("refused")

    async def on_give_up(name):
        gave_up.append(name)

    async def on_message(event):
        pass

    feed = StreamFeed(
        "kline_1m", "wss://example", parse_kline, on_message,
        reconnect_delay_s=0, max_reconnect_attempts=2, on_give_up=on_give_up, connect=connect,
    )
    await feed.run()

    assert len(attempts) == 3
    assert gave_up == ["kline_1m"]


def test_backoff_doubles_and_caps():
    async def noop(event):
        pass

    feed = StreamFeed("x", "wss://example", parse_kline, noop, reconnect_delay_s=3.0)
    delays = []
    for n in (1, 2, 3, 10):
        feed.reconnect_attempts = n
        delays.append(feed.backoff_delay())
    assert delays == [3.0, 6.0, 12.0, 60.0]


class _BrokenSocket:
    async def __aenter__(self):
        raise EOFError("handshake cut short")

    async def __aexit__(self, *exc):
        return False


@pytest.mark.asyncio
async def test_feed_reconnects_after_unexpected_error():
    gave_up = []
    attempts = []

    def connect(url, **kwargs):
        attempts.append(url)
        return _BrokenSocket()

    async def on_give_up(name):
        gave_up.append(name)

    async def on_message(event):
        pass

    feed = StreamFeed(
        "aggTrade", "wss://example", parse_agg_trade, on_message,
        reconnect_delay_s=0, max_reconnect_attempts=1, on_give_up=on_give_up, connect=connect,
    )
    await feed.run()

    assert len(attempts) == 2
    assert gave_up == ["aggTrade"]
    assert feed.is_connected is False
