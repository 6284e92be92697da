import pytest

from config import AbsorptionConfig

MINUTE = 60_000

# Coarse (3m) highs; lows sit 1.0 below. Confirms swing highs 102 and 103.
COARSE_HIGHS = [100.0, 102.0, 100.0, 103.0, 101.0, 101.0]


def _kline(minute, high, low, close, open_=None, volume=10.0, closed=True):
    return {
        "open_time": minute * MINUTE,
        "close_time": (minute + 1) * MINUTE - 1,
        "open": close if open_ is None else open_,
        "high": high,
        "low": low,
        "close": close,
        "volume": volume,
        "is_closed": closed,
    }


def _trade(price, qty, seller):
    return {"price": price, "quantity": qty, "taker_is_seller": seller}


def build_short_script():
    """
    Ordered (kind, payload) events that end in one confirmed SHORT signal:
    minutes 0-15 baseline, minute 16 sweeps 102/103 with absorbed buying,
    minute 17 stays under the sweep high.
    """
    events = []
    for minute in range(16):
        high = COARSE_HIGHS[minute // 3]
        close = high - 0.5
        events.append(("trade", _trade(close, 6.0, False)))
        events.append(("trade", _trade(close, 4.0, True)))
        if minute == 0:
            events.append(("kline", _kline(minute, high, high - 1.0, close, closed=False)))
        events.append(("kline", _kline(minute, high, high - 1.0, close)))

    events.append(("trade", _trade(104.0, 30.0, False)))
    events.append(("trade", _trade(101.0, 5.0, True)))
    events.append(("kline", _kline(16, 104.0, 100.5, 101.0, open_=101.0, volume=35.0)))

    events.append(("trade", _trade(103.0, 6.0, False)))
    events.append(("trade", _trade(103.0, 4.0, True)))
    events.append(("kline", _kline(17, 103.5, 102.5, 103.0)))
    return events


@pytest.fixture
def small_cfg():
    return AbsorptionConfig(
        price_cluster_size=0.5,
        base_timeframe="1m",
        coarse_timeframe="3m",
        pivot_lookback=1,
        pivot_pool_max_size=8,
        rolling_window_size=4,
        min_levels_swept=2,
    )


@pytest.fixture
def short_script():
    return build_short_script()
