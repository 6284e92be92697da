from collections import deque
from typing import Deque


class RollingWindow:
    """
    Baseline of the last N closed buckets: total volume, |delta| and signed delta.

    Means are taken over the samples currently held, not over N.
    """

    def __init__(self, size: int):
        if size < 2:
            raise ValueError("rolling window size must be >= 2")
        self.size = int(size)
        self.volumes: Deque[float] = deque(maxlen=self.size)
        self.abs_deltas: Deque[float] = deque(maxlen=self.size)
        self.deltas: Deque[float] = deque(maxlen=self.size)

    def push(self, total_volume: float, delta: float) -> None:
        self.volumes.append(float(total_volume))
        self.abs_deltas.append(abs(float(delta)))
        self.deltas.append(float(delta))

    def __len__(self) -> int:
        return len(self.volumes)

    @property
    def mean_volume(self) -> float:
        if not self.volumes:
            return 0.0
        return sum(self.volumes) / len(self.volumes)

    @property
    def mean_abs_imbalance(self) -> float:
        if not self.abs_deltas:
            return 0.0
        return sum(self.abs_deltas) / len(self.abs_deltas)

    @property
    def mean_imbalance(self) -> float:
        if not self.deltas:
            return 0.0
        return sum(self.deltas) / len(self.deltas)

    @property
    def is_ready(self) -> bool:
        return len(self.volumes) >= self.size // 2

    def reset(self) -> None:
        self.volumes.clear()
        self.abs_deltas.clear()
        self.deltas.clear()
