import pytest
from fastapi.testclient import TestClient

import main
from absorption_bot import AbsorptionBot
from absorption_engine import AbsorptionEngine


@pytest.fixture
def client():
    # No lifespan: the bot is installed by each test
    c = TestClient(main.app)
    yield c
    main.app.state.absorption_bot = None


def test_not_ready(client):
    main.app.state.absorption_bot = None
    assert client.get("/health").json()["status"] == "initializing"
    assert client.get("/status").status_code == 503
    assert client.get("/pivots").status_code == 503


def test_endpoints_with_running_bot(client, small_cfg, short_script):
    bot = AbsorptionBot(engine=AbsorptionEngine(small_cfg))
    for kind, payload in short_script:
        if kind == "trade":
            bot.engine.on_trade(payload)
        else:
            bot.engine.on_base_update(payload)
    bot.is_running = True
    main.app.state.absorption_bot = bot

    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert health["coarse_timeframe"] == "3m"

    candles = client.get("/candles", params={"limit": 2}).json()
    assert candles["count"] == 2
    assert candles["forming"]["window_id"] == 5

    signals = client.get("/signals").json()
    assert signals["count"] == 1
    assert signals["signals"][0]["direction"] == "SHORT"

    pivots = client.get("/pivots").json()
    assert pivots["highs"] == []

    assert client.get("/status").json()["running"] is True
