import pytest

from config import AbsorptionConfig, ServiceConfig, load_absorption_config, load_service_config


def test_defaults_are_valid():
    cfg = AbsorptionConfig().validate()
    assert cfg.base_interval_ms == 60_000
    assert cfg.coarse_window_ms == 900_000
    assert cfg.pivot_lookback == 2
    assert cfg.pivot_pool_max_size == 8


def test_validate_lists_every_error():
    cfg = AbsorptionConfig(price_cluster_size=0, rolling_window_size=1, min_levels_swept=0)
    with pytest.raises(ValueError) as exc:
        cfg.validate()
    msg = str(exc.value)
    assert "price_cluster_size" in msg
    assert "rolling_window_size" in msg
    assert "min_levels_swept" in msg


def test_coarse_must_be_multiple_of_base():
    with pytest.raises(ValueError, match="multiple"):
        AbsorptionConfig(base_timeframe="3m", coarse_timeframe="5m").validate()


def test_bad_timeframe():
    with pytest.raises(ValueError, match="coarse_timeframe"):
        AbsorptionConfig(coarse_timeframe="weekly").validate()


def test_load_from_env(monkeypatch):
    monkeypatch.setenv("PRICE_CLUSTER_SIZE", "1.0")
    monkeypatch.setenv("SWING_LOOKBACK", "3")
    monkeypatch.setenv("MIN_LEVELS_SWEPT", "3")
    monkeypatch.setenv("ABSORPTION_DEBUG", "true")
    cfg = load_absorption_config()
    assert cfg.price_cluster_size == 1.0
    assert cfg.pivot_lookback == 3
    assert cfg.min_levels_swept == 3
    assert cfg.debug is True


def test_non_numeric_env_rejected(monkeypatch):
    monkeypatch.setenv("ROLLING_WINDOW", "twenty")
    with pytest.raises(ValueError, match="ROLLING_WINDOW"):
        load_absorption_config()


def test_service_config_from_env(monkeypatch):
    monkeypatch.setenv("SYMBOL", "BTCUSDT")
    monkeypatch.setenv("ALERT_COOLDOWN_MS", "60000")
    monkeypatch.delenv("BINANCE_WS_URL", raising=False)
    svc = load_service_config("1m")
    assert svc.trade_stream_url == "wss://fstream.binance.com/ws/btcusdt@aggTrade"
    assert svc.kline_stream_url == "wss://fstream.binance.com/ws/btcusdt@kline_1m"
    assert svc.alert_cooldown_s == 60.0


def test_require_telegram_names_missing_vars():
    with pytest.raises(RuntimeError, match="TELEGRAM_CHAT_ID"):
        ServiceConfig(telegram_bot_token="x").require_telegram()
