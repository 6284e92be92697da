from collections import deque
from typing import Any, Deque, Dict, List, Optional

from absorption_event import AbsorptionSignal, SignalStateMachine
from candle_engine import Bucket, IntervalAggregator
from config import AbsorptionConfig
from pivot_tracker import PivotTracker
from rolling_window import RollingWindow
from volume_profile import ProfileSnapshot, VolumeProfileBuilder

RECENT_SIGNALS = 50


class AbsorptionEngine:
    """
    Synchronous core: trades and base-interval updates in, tagged events out.

    Callers must serialize on_trade()/on_base_update() into one ordered
    stream; nothing here locks or blocks.

    Events emitted:
      {"type": "base_close", "candle": Bucket, "profile": ProfileSnapshot | None}
      {"type": "coarse_close", "candle": AggregateBucket}
      {"type": "signal", "signal": AbsorptionSignal}
    """

    def __init__(self, cfg: Optional[AbsorptionConfig] = None):
        self.cfg = (cfg or AbsorptionConfig()).validate()

        self.candles = IntervalAggregator(
            coarse_window_ms=self.cfg.coarse_window_ms,
            history_size=self.cfg.coarse_history_retained,
            debug=self.cfg.debug,
        )
        self.profile = VolumeProfileBuilder(self.cfg.price_cluster_size)
        self.window = RollingWindow(self.cfg.rolling_window_size)
        self.pivots = PivotTracker(
            lookback=self.cfg.pivot_lookback,
            pool_max_size=self.cfg.pivot_pool_max_size,
            debug=self.cfg.debug,
        )
        self.signals = SignalStateMachine(
            self.window,
            self.pivots,
            min_levels_swept=self.cfg.min_levels_swept,
            delta_multiplier=self.cfg.delta_multiplier,
            volume_multiplier=self.cfg.volume_multiplier,
            max_confirmation_buckets=self.cfg.max_confirmation_buckets,
            debug=self.cfg.debug,
        )

        self.last_profile: Optional[ProfileSnapshot] = None
        self.recent_signals: Deque[AbsorptionSignal] = deque(maxlen=RECENT_SIGNALS)
        self.base_closed_count = 0
        self.coarse_closed_count = 0

    def on_trade(self, trade: Dict[str, Any]) -> None:
        self.profile.ingest_trade(
            trade["price"],
            trade["quantity"],
            bool(trade["taker_is_seller"]),
        )

    def on_base_update(self, update: Any) -> List[Dict[str, Any]]:
        closed = self.candles.ingest_base_update(update)
        events: List[Dict[str, Any]] = []

        base = closed["base"]
        if base is not None:
            events.extend(self._on_base_close(base))

        coarse = closed["coarse"]
        if coarse is not None:
            self.coarse_closed_count += 1
            events.append({"type": "coarse_close", "candle": coarse})
            self.pivots.on_coarse_bucket_close(self.candles.coarse_history)

        return events

    def _on_base_close(self, bucket: Bucket) -> List[Dict[str, Any]]:
        self.base_closed_count += 1
        snapshot = self.profile.finalize()
        if snapshot is not None:
            self.window.push(snapshot.total_volume, snapshot.delta)

        if self.cfg.debug:
            if snapshot is not None:
                print(
                    f"[ENGINE] base close C={bucket.close} vol={snapshot.total_volume:.2f} "
                    f"delta={snapshot.delta:.2f} poc={snapshot.poc}"
                )
            else:
                print(f"[ENGINE] base close C={bucket.close} profile=empty")

        events: List[Dict[str, Any]] = [{"type": "base_close", "candle": bucket, "profile": snapshot}]

        if self.signals.has_pending():
            signal = self.signals.evaluate_confirmation(bucket)
            if signal is not None:
                self.recent_signals.append(signal)
                events.append({"type": "signal", "signal": signal})

        if not self.signals.has_pending():
            self.signals.evaluate_candidate(
                bucket,
                snapshot,
                self.pivots.swept_highs(bucket.high),
                self.pivots.swept_lows(bucket.low),
            )

        self.last_profile = snapshot
        self.profile.reset()
        return events

    def status(self) -> Dict[str, Any]:
        current = self.candles.get_current_candle()
        return {
            "base_closed": self.base_closed_count,
            "coarse_closed": self.coarse_closed_count,
            "current_candle": current.to_dict() if current else None,
            "window": {
                "samples": len(self.window),
                "ready": self.window.is_ready,
                "avg_volume": self.window.mean_volume,
                "avg_abs_delta": self.window.mean_abs_imbalance,
                "avg_delta": self.window.mean_imbalance,
            },
            "pivots": self.pivots.status(),
            "signal_state": self.signals.status(),
        }
