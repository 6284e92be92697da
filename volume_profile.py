import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


def snap_price(price: float, cluster_size: float) -> float:
    """
    Snap a trade price to the nearest cluster level.

    Halves round up (100.25 with size 0.5 -> 100.5). The level is rounded
    to 8 decimals so repeated float products map to one key.
    """
    steps = math.floor(price / cluster_size + 0.5)
    return round(steps * cluster_size, 8)


@dataclass
class PriceCluster:
    price: float
    buy_volume: float = 0.0
    sell_volume: float = 0.0

    @property
    def total_volume(self) -> float:
        return self.buy_volume + self.sell_volume

    @property
    def delta(self) -> float:
        return self.buy_volume - self.sell_volume

    def to_dict(self) -> Dict[str, Any]:
        return {
            "price": self.price,
            "buy_volume": self.buy_volume,
            "sell_volume": self.sell_volume,
            "total_volume": self.total_volume,
            "delta": self.delta,
        }


@dataclass(frozen=True)
class ProfileSnapshot:
    """Finalized trade-flow profile of one base bucket."""

    clusters: List[PriceCluster]
    poc: float
    poc_volume: float
    total_buy_volume: float
    total_sell_volume: float
    total_volume: float
    delta: float
    top_cluster_volume: float
    bottom_cluster_volume: float
    trade_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clusters": [c.to_dict() for c in self.clusters],
            "poc": self.poc,
            "poc_volume": self.poc_volume,
            "total_buy_volume": self.total_buy_volume,
            "total_sell_volume": self.total_sell_volume,
            "total_volume": self.total_volume,
            "delta": self.delta,
            "top_cluster_volume": self.top_cluster_volume,
            "bottom_cluster_volume": self.bottom_cluster_volume,
            "trade_count": self.trade_count,
        }


class VolumeProfileBuilder:
    """
    Accumulates aggressor trades into price clusters for the bucket in progress.

    Lifecycle per base bucket: ingest_trade()* -> finalize() -> reset().
    """

    def __init__(self, cluster_size: float):
        if not cluster_size or cluster_size <= 0:
            raise ValueError("cluster_size must be > 0")
        self.cluster_size = float(cluster_size)

        # clusters[level] -> PriceCluster
        self.clusters: Dict[float, PriceCluster] = {}
        self.total_buy_volume = 0.0
        self.total_sell_volume = 0.0
        self.trade_count = 0

    def ingest_trade(self, price: float, quantity: float, taker_is_seller: bool) -> None:
        """
        taker_is_seller=True means the buyer was the passive side (market sell);
        otherwise the trade is a market buy.
        """
        price = float(price)
        quantity = float(quantity)
        if not math.isfinite(price) or not math.isfinite(quantity):
            raise ValueError(f"Non-finite trade: price={price} quantity={quantity}")

        level = snap_price(price, self.cluster_size)
        cluster = self.clusters.get(level)
        if cluster is None:
            cluster = PriceCluster(price=level)
            self.clusters[level] = cluster

        if taker_is_seller:
            cluster.sell_volume += quantity
            self.total_sell_volume += quantity
        else:
            cluster.buy_volume += quantity
            self.total_buy_volume += quantity

        self.trade_count += 1

    def finalize(self) -> Optional[ProfileSnapshot]:
        if not self.clusters:
            return None

        ordered = sorted(
            (PriceCluster(c.price, c.buy_volume, c.sell_volume) for c in self.clusters.values()),
            key=lambda c: c.price,
        )

        # Strict '>' keeps the lowest price on ties
        poc = ordered[0]
        for c in ordered[1:]:
            if c.total_volume > poc.total_volume:
                poc = c

        return ProfileSnapshot(
            clusters=ordered,
            poc=poc.price,
            poc_volume=poc.total_volume,
            total_buy_volume=self.total_buy_volume,
            total_sell_volume=self.total_sell_volume,
            total_volume=self.total_buy_volume + self.total_sell_volume,
            delta=self.total_buy_volume - self.total_sell_volume,
            top_cluster_volume=ordered[-1].total_volume,
            bottom_cluster_volume=ordered[0].total_volume,
            trade_count=self.trade_count,
        )

    def reset(self) -> None:
        self.clusters.clear()
        self.total_buy_volume = 0.0
        self.total_sell_volume = 0.0
        self.trade_count = 0
