from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Optional, Sequence

from candle_engine import ms_to_iso

# ---------------------------------------------------------------------------
# Pivot Tracker
#
# - Coarse-candle driven: evaluated once per closed coarse bucket
# - A pivot is confirmed only when L buckets exist on BOTH sides (non-repainting)
# - Confirmed pivots go into a bounded per-side pool (oldest evicted)
# - Pools are queried for multi-level sweeps and cleared after a signal consumes them
# ---------------------------------------------------------------------------

SIDES = ("high", "low")


@dataclass(frozen=True)
class Pivot:
    price: float
    ts: int      # open_time of the originating coarse bucket (ms)
    index: int   # position in coarse history at confirmation time

    def to_dict(self) -> Dict[str, Any]:
        return {"price": self.price, "ts": self.ts, "ts_iso": ms_to_iso(self.ts), "index": self.index}


class PivotPool:
    """Time-ordered, size-bounded collection of confirmed pivots for one side."""

    def __init__(self, side: str, max_size: int):
        if side not in SIDES:
            raise ValueError(f"Unknown pool side: {side}")
        if max_size < 1:
            raise ValueError("pivot pool max size must be >= 1")
        self.side = side
        self.max_size = int(max_size)
        self.pivots: List[Pivot] = []

    def add(self, pivot: Pivot) -> Optional[Pivot]:
        """Append a pivot; return the evicted one if the bound was exceeded."""
        self.pivots.append(pivot)
        if len(self.pivots) > self.max_size:
            return self.pivots.pop(0)
        return None

    def remove(self, pivots: Iterable[Pivot]) -> int:
        drop = {p.ts for p in pivots}
        before = len(self.pivots)
        self.pivots = [p for p in self.pivots if p.ts not in drop]
        return before - len(self.pivots)

    def latest(self) -> Optional[Pivot]:
        return self.pivots[-1] if self.pivots else None

    def __len__(self) -> int:
        return len(self.pivots)

    def __iter__(self):
        return iter(list(self.pivots))


@dataclass(frozen=True)
class SweepResult:
    side: str
    pivots: List[Pivot] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.pivots)

    @property
    def min_price(self) -> Optional[float]:
        return min((p.price for p in self.pivots), default=None)

    @property
    def max_price(self) -> Optional[float]:
        return max((p.price for p in self.pivots), default=None)

    @property
    def prices(self) -> List[float]:
        return sorted(p.price for p in self.pivots)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "side": self.side,
            "count": self.count,
            "min_price": self.min_price,
            "max_price": self.max_price,
            "prices": self.prices,
        }


def _is_strict_extreme(values: Sequence[float], idx: int, lookback: int, side: str) -> bool:
    pivot = values[idx]
    for i in range(1, lookback + 1):
        left = values[idx - i]
        right = values[idx + i]
        if side == "high":
            if left >= pivot or right >= pivot:
                return False
        else:
            if left <= pivot or right <= pivot:
                return False
    return True


class PivotTracker:
    """
    Confirms swing highs/lows over the coarse-bucket history and keeps them
    in two bounded pools.

    on_coarse_bucket_close(history) must be called after each new coarse
    bucket is appended. The bucket at len-1-L is the only one that can be
    newly confirmed on that call.
    """

    def __init__(self, lookback: int, pool_max_size: int, debug: bool = False):
        if lookback < 1:
            raise ValueError("pivot lookback must be >= 1")
        self.lookback = int(lookback)
        self.pools: Dict[str, PivotPool] = {
            "high": PivotPool("high", pool_max_size),
            "low": PivotPool("low", pool_max_size),
        }
        self.debug = debug

        # Timestamps already evaluated per side (bounded; one new entry per call)
        self._seen: Dict[str, Deque[int]] = {
            "high": deque(maxlen=max(64, 4 * pool_max_size)),
            "low": deque(maxlen=max(64, 4 * pool_max_size)),
        }

        # ---- Diagnostics ----
        self.confirm_counts: Dict[str, int] = {"high": 0, "low": 0}
        self.evict_counts: Dict[str, int] = {"high": 0, "low": 0}

    @property
    def min_history(self) -> int:
        return 2 * self.lookback + 1

    def on_coarse_bucket_close(self, history: Sequence[Any]) -> List[Pivot]:
        """Return the pivots confirmed by this call (0, 1 or 2)."""
        n = len(history)
        if n < self.min_history:
            return []

        idx = n - 1 - self.lookback
        candidate = history[idx]
        ts = int(candidate.open_time)
        confirmed: List[Pivot] = []

        highs = [float(b.high) for b in history]
        lows = [float(b.low) for b in history]

        for side, values in (("high", highs), ("low", lows)):
            if ts in self._seen[side]:
                continue
            self._seen[side].append(ts)

            if not _is_strict_extreme(values, idx, self.lookback, side):
                continue

            pivot = Pivot(price=values[idx], ts=ts, index=idx)
            evicted = self.pools[side].add(pivot)
            self.confirm_counts[side] += 1
            confirmed.append(pivot)

            print(
                f"[PIVOTS] new swing {side} {pivot.price} ts={ms_to_iso(ts)} "
                f"pool={[p.price for p in self.pools[side]]}"
            )
            if evicted is not None:
                self.evict_counts[side] += 1
                if self.debug:
                    print(f"[PIVOTS][EVICT] {side} {evicted.price} ts={ms_to_iso(evicted.ts)}")

        return confirmed

    # ---- Queries ----------------------------------------------------------

    def swept_highs(self, candle_high: float) -> SweepResult:
        """Every high-pool pivot strictly below candle_high."""
        return SweepResult("high", [p for p in self.pools["high"] if p.price < candle_high])

    def swept_lows(self, candle_low: float) -> SweepResult:
        """Every low-pool pivot strictly above candle_low."""
        return SweepResult("low", [p for p in self.pools["low"] if p.price > candle_low])

    def remove_swept(self, side: str, pivots: Iterable[Pivot]) -> int:
        if side not in self.pools:
            raise ValueError(f"Unknown pool side: {side}")
        removed = self.pools[side].remove(pivots)
        if removed:
            print(f"[PIVOTS] cleared {removed} swept {side} level(s); pool={[p.price for p in self.pools[side]]}")
        return removed

    def latest_high(self) -> Optional[Pivot]:
        return self.pools["high"].latest()

    def latest_low(self) -> Optional[Pivot]:
        return self.pools["low"].latest()

    def status(self) -> Dict[str, Any]:
        high = self.latest_high()
        low = self.latest_low()
        return {
            "swing_high": high.price if high else None,
            "swing_low": low.price if low else None,
            "highs": [p.to_dict() for p in self.pools["high"]],
            "lows": [p.to_dict() for p in self.pools["low"]],
            "stats": {
                "count_high": len(self.pools["high"]),
                "count_low": len(self.pools["low"]),
                "confirmed": dict(self.confirm_counts),
                "evicted": dict(self.evict_counts),
            },
        }
