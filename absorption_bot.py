import asyncio
import datetime as dt
from typing import Any, Dict, List, Optional, Tuple

from absorption_engine import AbsorptionEngine
from absorption_event import AbsorptionSignal
from alert_service import AlertService
from config import AbsorptionConfig, ServiceConfig, load_absorption_config, load_service_config
from market_stream import StreamFeed, parse_agg_trade, parse_kline

QUEUE_MAXSIZE = 50_000


class AbsorptionBot:
    """
    Live runner:
      - two StreamFeeds (aggTrade, kline) push into ONE queue
      - a single consumer applies queued events to the engine in arrival order
      - confirmed signals are handed to AlertService

    The engine is never touched outside the consumer task.
    """

    def __init__(
        self,
        engine: Optional[AbsorptionEngine] = None,
        alerts: Optional[AlertService] = None,
        service_cfg: Optional[ServiceConfig] = None,
        absorption_cfg: Optional[AbsorptionConfig] = None,
    ):
        self.engine = engine or AbsorptionEngine(absorption_cfg)
        self.alerts = alerts
        self.service_cfg = service_cfg or ServiceConfig()

        self.queue: "asyncio.Queue[Tuple[str, Dict[str, Any]]]" = asyncio.Queue(maxsize=QUEUE_MAXSIZE)
        self.feeds: List[StreamFeed] = []
        self._tasks: List[asyncio.Task] = []
        self.is_running = False
        self.started_at: Optional[dt.datetime] = None

        # ---- Diagnostics ----
        self.processed: Dict[str, int] = {"trade": 0, "kline": 0}
        self.signals_sent = 0

    # ------------------------------------------------------------------ #
    # Feeds -> queue
    # ------------------------------------------------------------------ #

    async def enqueue_trade(self, trade: Dict[str, Any]) -> None:
        await self.queue.put(("trade", trade))

    async def enqueue_kline(self, update: Dict[str, Any]) -> None:
        await self.queue.put(("kline", update))

    def _build_feeds(self) -> List[StreamFeed]:
        cfg = self.service_cfg
        common = {
            "reconnect_delay_s": cfg.reconnect_delay_s,
            "max_reconnect_attempts": cfg.max_reconnect_attempts,
            "ping_interval_s": cfg.ping_interval_s,
            "on_give_up": self._on_feed_give_up,
        }
        return [
            StreamFeed("aggTrade", cfg.trade_stream_url, parse_agg_trade, self.enqueue_trade, **common),
            StreamFeed(f"kline_{self.engine.cfg.base_timeframe}", cfg.kline_stream_url, parse_kline, self.enqueue_kline, **common),
        ]

    async def _on_feed_give_up(self, name: str) -> None:
        if self.alerts is not None:
            await self.alerts.send_status(
                f"❌ <b>ERROR:</b> {name} websocket cannot reconnect. Check the connection!"
            )

    # ------------------------------------------------------------------ #
    # Queue -> engine
    # ------------------------------------------------------------------ #

    async def process(self, kind: str, payload: Dict[str, Any]) -> List[AbsorptionSignal]:
        """Apply one event to the engine and deliver any confirmed signal."""
        if kind == "trade":
            self.engine.on_trade(payload)
            self.processed["trade"] += 1
            return []

        if kind != "kline":
            print(f"[BOT] unknown event kind {kind!r}; ignored")
            return []

        self.processed["kline"] += 1
        signals: List[AbsorptionSignal] = []
        for ev in self.engine.on_base_update(payload):
            if ev["type"] == "coarse_close":
                st = self.engine.pivots.status()
                print(
                    f"[BOT] {self.engine.cfg.coarse_timeframe} candle closed | "
                    f"swing high: {st['swing_high']} | swing low: {st['swing_low']}"
                )
            elif ev["type"] == "signal":
                signals.append(ev["signal"])

        for signal in signals:
            await self._handle_signal(signal)
        return signals

    async def _handle_signal(self, signal: AbsorptionSignal) -> None:
        print(f"[BOT] {signal.direction} absorption confirmed | swing={signal.swing_level} poc={signal.poc}")
        if self.alerts is None:
            return
        sent = await self.alerts.send_signal(signal)
        if sent:
            self.signals_sent += 1
        else:
            print("[BOT] alert not sent (cooldown, duplicate or delivery failure)")

    async def run_consumer(self) -> None:
        while True:
            kind, payload = await self.queue.get()
            try:
                await self.process(kind, payload)
            except ValueError as e:
                # Bad input from the feed; the engine state is unchanged for this event
                print(f"[BOT] rejected {kind} event: {e}")
            except Exception as e:
                print(f"[BOT] error processing {kind} event: {type(e).__name__}: {e}")
            finally:
                self.queue.task_done()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        if self.is_running:
            return
        print("[BOT] absorption bot starting...")

        self.feeds = self._build_feeds()
        loop = asyncio.get_running_loop()
        self._tasks = [loop.create_task(self.run_consumer())]
        self._tasks.extend(loop.create_task(f.run()) for f in self.feeds)
        self.is_running = True
        self.started_at = dt.datetime.now(dt.timezone.utc)

        if self.alerts is not None:
            cfg = self.engine.cfg
            await self.alerts.send_status(
                "🤖 <b>Absorption Bot started</b>\n"
                f"📊 Symbol: {self.service_cfg.symbol.upper()} Futures\n"
                f"⏱ Timeframes: {cfg.base_timeframe} / {cfg.coarse_timeframe}\n"
                f"🕐 {self.started_at.strftime('%a, %d %b %Y %H:%M:%S UTC')}"
            )
        print("[BOT] running; streams connecting")

    async def stop(self) -> None:
        if not self.is_running:
            return
        print("[BOT] stopping...")
        self.is_running = False
        for f in self.feeds:
            f.stop()
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self.alerts is not None:
            await self.alerts.send_status("🛑 <b>Absorption Bot stopped</b>")
        print("[BOT] stopped")

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "queue_size": self.queue.qsize(),
            "processed": dict(self.processed),
            "signals_sent": self.signals_sent,
            "feeds": [
                {
                    "name": f.name,
                    "connected": f.is_connected,
                    "reconnect_attempts": f.reconnect_attempts,
                    "received": f.received,
                    "dropped": f.dropped,
                }
                for f in self.feeds
            ],
            "alerts": self.alerts.stats() if self.alerts else None,
            "engine": self.engine.status(),
        }


def init_bot_from_env() -> AbsorptionBot:
    """Build the bot from environment variables (see config.py)."""
    absorption_cfg = load_absorption_config()
    service_cfg = load_service_config(absorption_cfg.base_timeframe)
    service_cfg.require_telegram()

    alerts = AlertService(
        service_cfg.telegram_bot_token,
        service_cfg.telegram_chat_id,
        cooldown_s=service_cfg.alert_cooldown_s,
        dedupe_size=service_cfg.alert_dedupe_size,
        symbol=service_cfg.symbol.upper(),
        base_tf=absorption_cfg.base_timeframe,
        coarse_tf=absorption_cfg.coarse_timeframe,
    )
    return AbsorptionBot(
        engine=AbsorptionEngine(absorption_cfg),
        alerts=alerts,
        service_cfg=service_cfg,
    )
