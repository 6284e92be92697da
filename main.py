from typing import Any, Dict, Optional

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Query

from absorption_bot import AbsorptionBot, init_bot_from_env
from candle_engine import SUPPORTED_TFS


@asynccontextmanager
async def lifespan(app: FastAPI):
    bot = init_bot_from_env()
    app.state.absorption_bot = bot
    await bot.start()

    # App is ready
    yield

    await bot.stop()


app = FastAPI(
    title="Absorption Detector",
    version="1.0.0",
    lifespan=lifespan,
)


def get_bot() -> AbsorptionBot:
    bot = getattr(app.state, "absorption_bot", None)
    if bot is None or not bot.is_running:
        raise HTTPException(status_code=503, detail="Absorption bot not ready yet.")
    return bot


@app.get("/health")
async def health() -> Dict[str, Any]:
    bot: Optional[AbsorptionBot] = getattr(app.state, "absorption_bot", None)
    if bot is None or not bot.is_running:
        return {
            "status": "initializing",
            "timeframes": SUPPORTED_TFS,
        }

    cfg = bot.engine.cfg
    return {
        "status": "ok",
        "symbol": bot.service_cfg.symbol.upper(),
        "base_timeframe": cfg.base_timeframe,
        "coarse_timeframe": cfg.coarse_timeframe,
        "feeds": {f.name: f.is_connected for f in bot.feeds},
    }


@app.get("/status")
async def status_api() -> Dict[str, Any]:
    return get_bot().status()


@app.get("/pivots")
async def pivots_api() -> Dict[str, Any]:
    bot = get_bot()
    return bot.engine.pivots.status()


@app.get("/candles")
async def candles_api(
    limit: int = Query(50, ge=1, le=500),
) -> Dict[str, Any]:
    bot = get_bot()
    history = bot.engine.candles.get_coarse_history()
    if len(history) > limit:
        history = history[-limit:]

    current = bot.engine.candles.current_coarse
    return {
        "timeframe": bot.engine.cfg.coarse_timeframe,
        "count": len(history),
        "candles": [c.to_dict() for c in history],
        "forming": current.to_dict() if current else None,
    }


@app.get("/signals")
async def signals_api(
    limit: int = Query(10, ge=1, le=50),
) -> Dict[str, Any]:
    bot = get_bot()
    signals = list(bot.engine.recent_signals)[-limit:]
    return {
        "count": len(signals),
        "signals": [s.to_dict() for s in signals],
    }
