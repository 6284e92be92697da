import datetime as dt
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, List, Optional

# All timeframes the aggregator understands for base/coarse buckets
SUPPORTED_TFS = ["1m", "3m", "5m", "15m", "30m", "1h", "4h"]

# Coarse history kept for pivot evaluation
DEFAULT_COARSE_HISTORY = 50


# ---- Timeframe helpers -----------------------------------------------------

def tf_to_timedelta(tf: str) -> Optional[dt.timedelta]:
    """
    Convert a timeframe string like '1m', '15m', '1h', '1d'
    into a datetime.timedelta. If we can't parse it, return None.
    """
    if not tf:
        return None

    s = str(tf).strip().lower()

    # Explicit suffixes
    if s.endswith("m"):  # minutes
        try:
            return dt.timedelta(minutes=int(s[:-1]))
        except ValueError:
            return None

    if s.endswith("h"):  # hours
        try:
            return dt.timedelta(hours=int(s[:-1]))
        except ValueError:
            return None

    if s.endswith("d"):  # days
        try:
            return dt.timedelta(days=int(s[:-1]))
        except ValueError:
            return None

    # Plain digits → treat as minutes (e.g. "5", "15", "60")
    if s.isdigit():
        return dt.timedelta(minutes=int(s))

    return None


def tf_to_ms(tf: str) -> int:
    delta = tf_to_timedelta(tf)
    if delta is None or delta.total_seconds() <= 0:
        raise ValueError(f"Unsupported timeframe: {tf}")
    return int(delta.total_seconds() * 1000)


def ms_to_iso(ms: int) -> str:
    return dt.datetime.fromtimestamp(ms / 1000.0, tz=dt.timezone.utc).isoformat()


# ---- Bucket types ----------------------------------------------------------

@dataclass(frozen=True)
class Bucket:
    """One base-interval OHLCV candle. Timestamps are epoch milliseconds."""

    open_time: int
    close_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    is_closed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["ts"] = ms_to_iso(self.open_time)
        return out


@dataclass
class AggregateBucket:
    """
    Coarse rollup of consecutive closed base buckets.

    window_id = floor(open_time / window_ms). Mutated in place while the
    window is open; a copy is emitted and stored once it rolls over.
    """

    window_id: int
    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    count: int = 1

    @classmethod
    def from_base(cls, bucket: Bucket, window_id: int) -> "AggregateBucket":
        return cls(
            window_id=window_id,
            open_time=bucket.open_time,
            open=bucket.open,
            high=bucket.high,
            low=bucket.low,
            close=bucket.close,
            volume=bucket.volume,
            count=1,
        )

    def merge(self, bucket: Bucket) -> None:
        self.high = max(self.high, bucket.high)
        self.low = min(self.low, bucket.low)
        self.close = bucket.close
        self.volume += bucket.volume
        self.count += 1

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["ts"] = ms_to_iso(self.open_time)
        return out


def bucket_from_update(update: Dict[str, Any]) -> Bucket:
    """
    Normalize a base-interval update dict into a Bucket.

    Expected keys:
      open_time, close_time, open, high, low, close, volume, is_closed
    """
    return Bucket(
        open_time=int(update["open_time"]),
        close_time=int(update["close_time"]),
        open=float(update["open"]),
        high=float(update["high"]),
        low=float(update["low"]),
        close=float(update["close"]),
        volume=float(update.get("volume") or 0.0),
        is_closed=bool(update.get("is_closed", False)),
    )


# ---- Aggregator ------------------------------------------------------------

class IntervalAggregator:
    """
    Builds base-interval candles from a kline update stream and rolls each
    closed base candle into a coarse bucket.

    ingest_base_update() returns what closed on that update:
      {"base": Bucket | None, "coarse": AggregateBucket | None}

    The coarse close for window N is only known when the first base candle
    of window N+1 closes, so both can be reported by the same update.
    """

    def __init__(
        self,
        coarse_window_ms: int,
        history_size: int = DEFAULT_COARSE_HISTORY,
        debug: bool = False,
    ):
        if coarse_window_ms <= 0:
            raise ValueError("coarse_window_ms must be > 0")
        if history_size < 1:
            raise ValueError("history_size must be >= 1")

        self.coarse_window_ms = int(coarse_window_ms)
        self.history_size = int(history_size)
        self.debug = debug

        # In-progress base candle (latest update, possibly not closed)
        self.current_base: Optional[Bucket] = None
        self._last_closed_open_time: Optional[int] = None

        # Coarse rollup currently being built
        self.current_coarse: Optional[AggregateBucket] = None
        # Finalized coarse buckets, oldest first
        self.coarse_history: List[AggregateBucket] = []

    def ingest_base_update(self, update: Any) -> Dict[str, Any]:
        bucket = update if isinstance(update, Bucket) else bucket_from_update(update)

        last = self._last_closed_open_time
        if last is not None and bucket.open_time <= last:
            raise ValueError(
                f"Base update out of order: open_time={bucket.open_time} "
                f"after closed open_time={last}"
            )

        self.current_base = bucket
        out: Dict[str, Any] = {"base": None, "coarse": None}
        if not bucket.is_closed:
            return out

        self._last_closed_open_time = bucket.open_time
        out["base"] = bucket
        if self.debug:
            print(
                f"[CANDLE_ENGINE][BASE] closed ts={ms_to_iso(bucket.open_time)} "
                f"O={bucket.open} H={bucket.high} L={bucket.low} C={bucket.close} V={bucket.volume}"
            )

        out["coarse"] = self._roll_into_coarse(bucket)
        return out

    def _roll_into_coarse(self, bucket: Bucket) -> Optional[AggregateBucket]:
        window_id = bucket.open_time // self.coarse_window_ms

        if self.current_coarse is None:
            self.current_coarse = AggregateBucket.from_base(bucket, window_id)
            return None

        if window_id == self.current_coarse.window_id:
            self.current_coarse.merge(bucket)
            return None

        closed = self._close_coarse(self.current_coarse)
        self.current_coarse = AggregateBucket.from_base(bucket, window_id)
        return closed

    def _close_coarse(self, coarse: AggregateBucket) -> AggregateBucket:
        frozen = replace(coarse)
        self.coarse_history.append(frozen)
        if len(self.coarse_history) > self.history_size:
            del self.coarse_history[: len(self.coarse_history) - self.history_size]

        if self.debug:
            print(
                f"[CANDLE_ENGINE][COARSE] closed ts={ms_to_iso(frozen.open_time)} "
                f"H={frozen.high} L={frozen.low} n={frozen.count} "
                f"history={len(self.coarse_history)}"
            )
        return replace(frozen)

    def get_current_candle(self) -> Optional[Bucket]:
        return self.current_base

    def get_coarse_history(self) -> List[AggregateBucket]:
        return list(self.coarse_history)
