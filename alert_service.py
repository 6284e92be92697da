import datetime as dt
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional

import httpx

from absorption_event import AbsorptionSignal

TELEGRAM_API = "https://api.telegram.org"

SEPARATOR = "━━━━━━━━━━━━━━━━━━━━━━━━"


# ---- Formatting ------------------------------------------------------------

def _fmt_levels(prices) -> str:
    return ", ".join(f"{p:g}" for p in prices)


def format_signal(signal: AbsorptionSignal, symbol: str = "BTCUSDT", base_tf: str = "1m", coarse_tf: str = "15m") -> str:
    """HTML message for one confirmed signal (Telegram parse_mode=HTML)."""
    is_short = signal.direction == "SHORT"
    sign = "+" if signal.delta >= 0 else ""
    candle_time = dt.datetime.fromtimestamp(
        signal.candle.open_time / 1000.0, tz=dt.timezone.utc
    ).strftime("%a, %d %b %Y %H:%M:%S UTC")

    if is_short:
        head = f"⚠️ <b>{symbol.upper()} {base_tf.upper()} – SHORT Absorption Detected</b>"
        sweep_line = (
            f"🔺 <b>Liquidity Sweep:</b> {signal.swept_count} prior {coarse_tf} swing high(s) "
            f"taken (<code>{_fmt_levels(signal.swept_prices)}</code>), swing <code>{signal.swing_level}</code>"
        )
        close_line = f"📉 <b>Close:</b> <code>{signal.candle_close}</code> <i>(below POC ✓)</i>"
        follow = "✅ <b>Follow-up:</b> No continuation higher"
        story = "💡 <i>Interpretation: Aggressive buyers were absorbed by passive sellers.</i>"
        setup = "🔴 <b>Potential SHORT reversal setup.</b>"
    else:
        head = f"✅ <b>{symbol.upper()} {base_tf.upper()} – LONG Absorption Detected</b>"
        sweep_line = (
            f"🔻 <b>Liquidity Sweep:</b> {signal.swept_count} prior {coarse_tf} swing low(s) "
            f"taken (<code>{_fmt_levels(signal.swept_prices)}</code>), swing <code>{signal.swing_level}</code>"
        )
        close_line = f"📈 <b>Close:</b> <code>{signal.candle_close}</code> <i>(above POC ✓)</i>"
        follow = "✅ <b>Follow-up:</b> No continuation lower"
        story = "💡 <i>Interpretation: Aggressive sellers were absorbed by passive buyers.</i>"
        setup = "🟢 <b>Potential LONG reversal setup.</b>"

    lines = [
        head,
        SEPARATOR,
        sweep_line,
        f"🎯 <b>Sweep extreme:</b> <code>{signal.sweep_price}</code>",
        f"⚡ <b>Delta Spike:</b> <code>{sign}{signal.delta:.3f}</code> ({signal.delta_multiple:.2f}x avg)",
        f"📊 <b>Volume Spike:</b> <code>{signal.volume_multiple:.2f}x</code> average ({signal.total_volume:.2f})",
        f"🎯 <b>POC:</b> <code>{signal.poc}</code>",
        close_line,
        follow,
        SEPARATOR,
        story,
        setup,
        SEPARATOR,
        f"🕐 {candle_time}",
    ]
    return "\n".join(lines)


# ---- Service ---------------------------------------------------------------

class AlertService:
    """
    Delivers confirmed signals to a Telegram chat.

    - cooldown between signal alerts
    - dedupe on (direction, swing level, POC) over the last N sent alerts
    - status messages bypass both
    """

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        cooldown_s: float = 300.0,
        dedupe_size: int = 20,
        symbol: str = "BTCUSDT",
        base_tf: str = "1m",
        coarse_tf: str = "15m",
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.cooldown_s = float(cooldown_s)
        self.symbol = symbol
        self.base_tf = base_tf
        self.coarse_tf = coarse_tf
        self._client = client
        self._clock = clock

        self.last_alert_at: Optional[float] = None
        self.recent_keys: Deque[str] = deque(maxlen=max(1, int(dedupe_size)))

        # ---- Diagnostics ----
        self.sent_count = 0
        self.skipped_count = 0
        self.failed_count = 0

    def _endpoint(self) -> str:
        return f"{TELEGRAM_API}/bot{self.bot_token}/sendMessage"

    async def _post(self, text: str) -> None:
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        if self._client is not None:
            r = await self._client.post(self._endpoint(), json=payload, timeout=15.0)
            r.raise_for_status()
            return
        async with httpx.AsyncClient(timeout=15.0) as client:
            r = await client.post(self._endpoint(), json=payload)
            r.raise_for_status()

    @staticmethod
    def alert_key(signal: AbsorptionSignal) -> str:
        return f"{signal.direction}_{signal.swing_level}_{signal.poc}"

    async def send_signal(self, signal: AbsorptionSignal) -> bool:
        now = self._clock()
        if self.last_alert_at is not None and now - self.last_alert_at < self.cooldown_s:
            remaining = self.cooldown_s - (now - self.last_alert_at)
            print(f"[ALERT] cooldown active, {remaining:.0f}s left; skipping {signal.direction}")
            self.skipped_count += 1
            return False

        key = self.alert_key(signal)
        if key in self.recent_keys:
            print(f"[ALERT] duplicate alert skipped: {key}")
            self.skipped_count += 1
            return False

        text = format_signal(signal, self.symbol, self.base_tf, self.coarse_tf)
        try:
            await self._post(text)
        except httpx.HTTPError as e:
            self.failed_count += 1
            print(f"[ALERT] failed to send {signal.direction} alert: {e}")
            return False

        self.last_alert_at = now
        self.recent_keys.append(key)
        self.sent_count += 1
        print(f"[ALERT] {signal.direction} alert sent: swing={signal.swing_level} poc={signal.poc}")
        return True

    async def send_status(self, text: str) -> bool:
        try:
            await self._post(text)
        except httpx.HTTPError as e:
            self.failed_count += 1
            print(f"[ALERT] failed to send status: {e}")
            return False
        print(f"[ALERT] status sent: {text[:50]}")
        return True

    def stats(self) -> Dict[str, Any]:
        return {
            "sent": self.sent_count,
            "skipped": self.skipped_count,
            "failed": self.failed_count,
            "cooldown_s": self.cooldown_s,
        }
