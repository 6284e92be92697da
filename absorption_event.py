# absorption_event.py
"""
Absorption Signal State Machine

Lifecycle:
  IDLE -> PENDING_UPPER / PENDING_LOWER -> IDLE (confirmed or cancelled)

Candidate (evaluated on a closed base bucket, only while IDLE):
- upper: bucket high swept >= min_levels pool highs, delta spike (buy side),
         volume spike, close below POC
- lower: mirror on pool lows, delta spike (sell side), volume spike, close above POC

Confirmation (next closed base bucket, before any new candidacy):
- the bucket extends the sweep extreme -> cancelled, pools untouched
- otherwise -> confirmed, swept pivots removed from their pool
- max_confirmation_buckets bounds the wait; the first bucket always resolves first

This module is PURE logic: no I/O, no clock. Callers deliver the signal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from candle_engine import Bucket, ms_to_iso
from pivot_tracker import Pivot, PivotTracker, SweepResult
from rolling_window import RollingWindow
from volume_profile import ProfileSnapshot


class SignalState(str, Enum):
    IDLE = "IDLE"
    PENDING_UPPER = "PENDING_UPPER"
    PENDING_LOWER = "PENDING_LOWER"


# Upper sweep -> absorbed buyers -> SHORT; lower sweep -> LONG
DIRECTION_BY_STATE = {
    SignalState.PENDING_UPPER: "SHORT",
    SignalState.PENDING_LOWER: "LONG",
}


def _ratio(value: float, base: float) -> float:
    return value / base if base > 0 else 0.0


@dataclass
class PendingCandidate:
    state: SignalState
    bucket: Bucket
    snapshot: ProfileSnapshot
    swept: List[Pivot]
    sweep_price: float
    confirm_count: int = 0

    @property
    def side(self) -> str:
        return "high" if self.state == SignalState.PENDING_UPPER else "low"


@dataclass(frozen=True)
class AbsorptionSignal:
    direction: str                 # "SHORT" (upper sweep) | "LONG" (lower sweep)
    swept_prices: List[float]
    swept_count: int
    swing_level: float
    sweep_price: float
    delta: float
    total_volume: float
    avg_volume: float
    avg_abs_delta: float
    volume_multiple: float
    delta_multiple: float
    poc: float
    candle_close: float
    candle: Bucket = field(repr=False)
    profile: ProfileSnapshot = field(repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction,
            "swept_prices": list(self.swept_prices),
            "swept_count": self.swept_count,
            "swing_level": self.swing_level,
            "sweep_price": self.sweep_price,
            "delta": self.delta,
            "total_volume": self.total_volume,
            "avg_volume": self.avg_volume,
            "avg_abs_delta": self.avg_abs_delta,
            "volume_multiple": round(self.volume_multiple, 2),
            "delta_multiple": round(self.delta_multiple, 2),
            "poc": self.poc,
            "candle_close": self.candle_close,
            "candle_ts": ms_to_iso(self.candle.open_time),
        }


class SignalStateMachine:
    def __init__(
        self,
        window: RollingWindow,
        pivots: PivotTracker,
        *,
        min_levels_swept: int = 2,
        delta_multiplier: float = 2.0,
        volume_multiplier: float = 1.5,
        max_confirmation_buckets: int = 2,
        debug: bool = False,
    ):
        self.window = window
        self.pivots = pivots
        self.min_levels_swept = int(min_levels_swept)
        self.delta_multiplier = float(delta_multiplier)
        self.volume_multiplier = float(volume_multiplier)
        self.max_confirmation_buckets = int(max_confirmation_buckets)
        self.debug = debug

        self.pending: Optional[PendingCandidate] = None

    @property
    def state(self) -> SignalState:
        return self.pending.state if self.pending else SignalState.IDLE

    def has_pending(self) -> bool:
        return self.pending is not None

    # ------------------------------------------------------------------ #
    # Candidacy
    # ------------------------------------------------------------------ #

    def evaluate_candidate(
        self,
        bucket: Bucket,
        snapshot: Optional[ProfileSnapshot],
        swept_highs: SweepResult,
        swept_lows: SweepResult,
    ) -> Optional[PendingCandidate]:
        """Open a candidate if this bucket qualifies. Returns it, or None."""
        if self.pending is not None or snapshot is None or not self.window.is_ready:
            return None

        avg_vol = self.window.mean_volume
        avg_abs_delta = self.window.mean_abs_imbalance
        delta_thr = avg_abs_delta * self.delta_multiplier
        vol_spike = snapshot.total_volume > avg_vol * self.volume_multiplier

        if self.debug:
            print(
                f"[ABSORPTION][CHECK] ts={ms_to_iso(bucket.open_time)} vol={snapshot.total_volume:.2f} "
                f"delta={snapshot.delta:.2f} poc={snapshot.poc} close={bucket.close} | "
                f"avgVol={avg_vol:.2f} avgAbsDelta={avg_abs_delta:.2f} "
                f"sweptHighs={swept_highs.count} sweptLows={swept_lows.count}"
            )

        if (
            swept_highs.count >= self.min_levels_swept
            and snapshot.delta > delta_thr
            and vol_spike
            and bucket.close < snapshot.poc
        ):
            self.pending = PendingCandidate(
                state=SignalState.PENDING_UPPER,
                bucket=bucket,
                snapshot=snapshot,
                swept=list(swept_highs.pivots),
                sweep_price=bucket.high,
            )
        elif (
            swept_lows.count >= self.min_levels_swept
            and snapshot.delta < -delta_thr
            and vol_spike
            and bucket.close > snapshot.poc
        ):
            self.pending = PendingCandidate(
                state=SignalState.PENDING_LOWER,
                bucket=bucket,
                snapshot=snapshot,
                swept=list(swept_lows.pivots),
                sweep_price=bucket.low,
            )
        else:
            return None

        p = self.pending
        print(
            f"[ABSORPTION] {DIRECTION_BY_STATE[p.state]} candidate at {ms_to_iso(bucket.open_time)}: "
            f"swept {len(p.swept)} level(s) {sorted(x.price for x in p.swept)}, "
            f"sweep={p.sweep_price}, awaiting confirmation"
        )
        return p

    # ------------------------------------------------------------------ #
    # Confirmation
    # ------------------------------------------------------------------ #

    def evaluate_confirmation(self, bucket: Bucket) -> Optional[AbsorptionSignal]:
        p = self.pending
        if p is None:
            return None

        p.confirm_count += 1

        # The first bucket always resolves the candidate, so the
        # max_confirmation_buckets limit is never reached
        if p.state == SignalState.PENDING_UPPER:
            if bucket.high > p.sweep_price:
                self._cancel(f"new high {bucket.high} > sweep {p.sweep_price}")
                return None
            return self._confirm()

        if bucket.low < p.sweep_price:
            self._cancel(f"new low {bucket.low} < sweep {p.sweep_price}")
            return None
        return self._confirm()

    def _confirm(self) -> AbsorptionSignal:
        p = self.pending
        signal = self._build_signal(p)
        self.pivots.remove_swept(p.side, p.swept)
        self.pending = None
        print(
            f"[ABSORPTION] {signal.direction} confirmed: swing={signal.swing_level} "
            f"sweep={signal.sweep_price} poc={signal.poc} "
            f"vol x{signal.volume_multiple:.2f} delta x{signal.delta_multiple:.2f}"
        )
        return signal

    def _cancel(self, reason: str) -> None:
        p = self.pending
        if p is not None:
            print(f"[ABSORPTION] {DIRECTION_BY_STATE[p.state]} candidate cancelled: {reason}")
        self.pending = None

    def _build_signal(self, p: PendingCandidate) -> AbsorptionSignal:
        prices = sorted(x.price for x in p.swept)
        avg_vol = self.window.mean_volume
        avg_abs_delta = self.window.mean_abs_imbalance
        snap = p.snapshot
        return AbsorptionSignal(
            direction=DIRECTION_BY_STATE[p.state],
            swept_prices=prices,
            swept_count=len(prices),
            # Highest swept price for both sides
            swing_level=max(prices),
            sweep_price=p.sweep_price,
            delta=snap.delta,
            total_volume=snap.total_volume,
            avg_volume=avg_vol,
            avg_abs_delta=avg_abs_delta,
            volume_multiple=_ratio(snap.total_volume, avg_vol),
            delta_multiple=_ratio(abs(snap.delta), avg_abs_delta),
            poc=snap.poc,
            candle_close=p.bucket.close,
            candle=p.bucket,
            profile=snap,
        )

    def reset(self) -> None:
        self.pending = None

    def status(self) -> Dict[str, Any]:
        p = self.pending
        return {
            "state": self.state.value,
            "max_confirmation_buckets": self.max_confirmation_buckets,
            "pending": None if p is None else {
                "direction": DIRECTION_BY_STATE[p.state],
                "candle_ts": ms_to_iso(p.bucket.open_time),
                "sweep_price": p.sweep_price,
                "swept_prices": sorted(x.price for x in p.swept),
                "confirm_count": p.confirm_count,
            },
        }
