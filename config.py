import os
from dataclasses import dataclass
from typing import List, Optional

from candle_engine import tf_to_timedelta

# ---- Env helpers -----------------------------------------------------------


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return v.strip() if v and v.strip() else default


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    try:
        return int(v)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {v!r}")


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    try:
        return float(v)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got {v!r}")


def _env_flag(name: str) -> bool:
    return (os.getenv(name) or "0").strip().lower() in ("1", "true", "yes", "y", "on")


# ---- Detector config -------------------------------------------------------


@dataclass
class AbsorptionConfig:
    price_cluster_size: float = 0.5
    base_timeframe: str = "1m"
    coarse_timeframe: str = "15m"
    pivot_lookback: int = 2
    pivot_pool_max_size: int = 8
    rolling_window_size: int = 20
    min_levels_swept: int = 2
    delta_multiplier: float = 2.0
    volume_multiplier: float = 1.5
    max_confirmation_buckets: int = 2
    coarse_history_retained: int = 50
    debug: bool = False

    @property
    def base_interval_ms(self) -> int:
        delta = tf_to_timedelta(self.base_timeframe)
        return int(delta.total_seconds() * 1000) if delta else 0

    @property
    def coarse_window_ms(self) -> int:
        delta = tf_to_timedelta(self.coarse_timeframe)
        return int(delta.total_seconds() * 1000) if delta else 0

    def validate(self) -> "AbsorptionConfig":
        errors: List[str] = []

        if not self.price_cluster_size > 0:
            errors.append("price_cluster_size must be > 0")
        base_ms = self.base_interval_ms
        coarse_ms = self.coarse_window_ms
        if base_ms <= 0:
            errors.append(f"base_timeframe {self.base_timeframe!r} is not a valid timeframe")
        if coarse_ms <= 0:
            errors.append(f"coarse_timeframe {self.coarse_timeframe!r} is not a valid timeframe")
        if base_ms > 0 and coarse_ms > 0 and coarse_ms % base_ms != 0:
            errors.append("coarse_timeframe must be a multiple of base_timeframe")
        if self.pivot_lookback < 1:
            errors.append("pivot_lookback must be >= 1")
        if self.pivot_pool_max_size < 1:
            errors.append("pivot_pool_max_size must be >= 1")
        if self.rolling_window_size < 2:
            errors.append("rolling_window_size must be >= 2")
        if self.min_levels_swept < 1:
            errors.append("min_levels_swept must be >= 1")
        if not self.delta_multiplier > 0:
            errors.append("delta_multiplier must be > 0")
        if not self.volume_multiplier > 0:
            errors.append("volume_multiplier must be > 0")
        if self.max_confirmation_buckets < 1:
            errors.append("max_confirmation_buckets must be >= 1")
        if self.coarse_history_retained < 2 * self.pivot_lookback + 1:
            errors.append("coarse_history_retained must be >= 2 * pivot_lookback + 1")

        if errors:
            raise ValueError("Invalid absorption config:\n" + "\n".join(errors))
        return self


def load_absorption_config() -> AbsorptionConfig:
    d = AbsorptionConfig()
    return AbsorptionConfig(
        price_cluster_size=_env_float("PRICE_CLUSTER_SIZE", d.price_cluster_size),
        base_timeframe=_env_str("BASE_TIMEFRAME", d.base_timeframe),
        coarse_timeframe=_env_str("COARSE_TIMEFRAME", d.coarse_timeframe),
        pivot_lookback=_env_int("SWING_LOOKBACK", d.pivot_lookback),
        pivot_pool_max_size=_env_int("PIVOT_POOL_MAX_SIZE", d.pivot_pool_max_size),
        rolling_window_size=_env_int("ROLLING_WINDOW", d.rolling_window_size),
        min_levels_swept=_env_int("MIN_LEVELS_SWEPT", d.min_levels_swept),
        delta_multiplier=_env_float("DELTA_MULTIPLIER", d.delta_multiplier),
        volume_multiplier=_env_float("VOLUME_MULTIPLIER", d.volume_multiplier),
        max_confirmation_buckets=_env_int("MAX_CONFIRM_BUCKETS", d.max_confirmation_buckets),
        coarse_history_retained=_env_int("COARSE_HISTORY_SIZE", d.coarse_history_retained),
        debug=_env_flag("ABSORPTION_DEBUG"),
    ).validate()


# ---- Service config --------------------------------------------------------

BINANCE_FUTURES_WS = "wss://fstream.binance.com/ws"


@dataclass
class ServiceConfig:
    symbol: str = "btcusdt"
    trade_stream_url: str = ""
    kline_stream_url: str = ""
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    alert_cooldown_s: float = 300.0
    alert_dedupe_size: int = 20
    reconnect_delay_s: float = 3.0
    max_reconnect_attempts: int = 10
    ping_interval_s: float = 20.0

    def require_telegram(self) -> None:
        """Telegram credentials are only needed once the service starts."""
        missing = []
        if not self.telegram_bot_token:
            missing.append("TELEGRAM_BOT_TOKEN")
        if not self.telegram_chat_id:
            missing.append("TELEGRAM_CHAT_ID")
        if missing:
            raise RuntimeError(f"Missing {', '.join(missing)}.")


def load_service_config(base_timeframe: str = "1m") -> ServiceConfig:
    symbol = _env_str("SYMBOL", "btcusdt").lower()
    base_url = _env_str("BINANCE_WS_URL", BINANCE_FUTURES_WS).rstrip("/")
    return ServiceConfig(
        symbol=symbol,
        trade_stream_url=f"{base_url}/{symbol}@aggTrade",
        kline_stream_url=f"{base_url}/{symbol}@kline_{base_timeframe}",
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN") or None,
        telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID") or None,
        alert_cooldown_s=_env_int("ALERT_COOLDOWN_MS", 300_000) / 1000.0,
        reconnect_delay_s=_env_int("WS_RECONNECT_DELAY_MS", 3_000) / 1000.0,
        max_reconnect_attempts=_env_int("WS_MAX_RECONNECT_ATTEMPTS", 10),
    )
