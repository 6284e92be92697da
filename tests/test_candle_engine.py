import pytest

from candle_engine import Bucket, IntervalAggregator, tf_to_ms, tf_to_timedelta

MINUTE = 60_000
WINDOW = 15 * MINUTE


def _update(minute, high=101.0, low=99.0, close=100.0, volume=1.0, closed=True):
    return {
        "open_time": minute * MINUTE,
        "close_time": (minute + 1) * MINUTE - 1,
        "open": 100.0,
        "high": high,
        "low": low,
        "close": close,
        "volume": volume,
        "is_closed": closed,
    }


def test_tf_helpers():
    assert tf_to_timedelta("15m").total_seconds() == 900
    assert tf_to_timedelta("1h").total_seconds() == 3600
    assert tf_to_timedelta("60").total_seconds() == 3600
    assert tf_to_timedelta("abc") is None
    assert tf_to_ms("1m") == MINUTE
    with pytest.raises(ValueError):
        tf_to_ms("bogus")


def test_open_update_only_tracks_current_candle():
    agg = IntervalAggregator(WINDOW)
    out = agg.ingest_base_update(_update(0, closed=False))
    assert out == {"base": None, "coarse": None}
    assert agg.get_current_candle().is_closed is False
    assert agg.current_coarse is None


def test_closed_update_emits_base_bucket():
    agg = IntervalAggregator(WINDOW)
    out = agg.ingest_base_update(_update(0))
    assert isinstance(out["base"], Bucket)
    assert out["base"].open_time == 0
    assert out["coarse"] is None
    assert agg.current_coarse.count == 1


def test_coarse_rollup_merges_and_rolls_over():
    agg = IntervalAggregator(WINDOW)
    for m in range(15):
        out = agg.ingest_base_update(_update(m, high=100.0 + m, low=90.0 - m, close=95.0 + m, volume=2.0))
        assert out["coarse"] is None

    out = agg.ingest_base_update(_update(15, high=50.0, low=40.0, close=45.0))
    coarse = out["coarse"]
    assert out["base"].open_time == 15 * MINUTE
    assert coarse.window_id == 0
    assert coarse.open_time == 0
    assert coarse.count == 15
    assert coarse.high == 114.0
    assert coarse.low == 76.0
    assert coarse.close == 109.0
    assert coarse.volume == pytest.approx(30.0)

    # New window started from the incoming bucket
    assert agg.current_coarse.window_id == 1
    assert agg.current_coarse.high == 50.0
    assert agg.current_coarse.count == 1
    assert len(agg.coarse_history) == 1


def test_emitted_coarse_bucket_is_a_copy():
    agg = IntervalAggregator(WINDOW)
    agg.ingest_base_update(_update(0))
    coarse = agg.ingest_base_update(_update(15))["coarse"]
    coarse.high = 999.0
    assert agg.coarse_history[-1].high == 101.0


def test_coarse_history_is_bounded():
    agg = IntervalAggregator(WINDOW, history_size=3)
    for w in range(6):
        agg.ingest_base_update(_update(w * 15, high=100.0 + w))
    # Five windows closed, only the last three retained
    assert [c.high for c in agg.get_coarse_history()] == [102.0, 103.0, 104.0]


def test_gap_skips_windows_without_emitting_empty_buckets():
    agg = IntervalAggregator(WINDOW)
    agg.ingest_base_update(_update(0))
    coarse = agg.ingest_base_update(_update(61))["coarse"]
    assert coarse.window_id == 0
    assert agg.current_coarse.window_id == 4


def test_out_of_order_closed_update_is_rejected():
    agg = IntervalAggregator(WINDOW)
    agg.ingest_base_update(_update(5))
    with pytest.raises(ValueError):
        agg.ingest_base_update(_update(4))
    # State untouched by the rejected update
    assert agg.get_current_candle().open_time == 5 * MINUTE
