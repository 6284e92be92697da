# market_stream.py
"""
Exchange stream transport (Binance USD-M futures).

- One StreamFeed per websocket stream (aggTrade, kline)
- Reconnect with exponential backoff, give up after max attempts
- Messages normalized to plain dicts before they reach the engine;
  malformed or non-finite payloads are dropped here
"""

import asyncio
import json
import math
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets
from websockets.exceptions import WebSocketException

MAX_BACKOFF_S = 60.0


def _finite(x: Any) -> Optional[float]:
    try:
        v = float(x)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None


def parse_agg_trade(msg: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    {"e": "aggTrade", "p": "...", "q": "...", "m": bool}
      m=True -> buyer is maker -> taker sold
    """
    if not isinstance(msg, dict) or msg.get("e") != "aggTrade":
        return None
    price = _finite(msg.get("p"))
    qty = _finite(msg.get("q"))
    if price is None or qty is None or price <= 0 or qty < 0:
        return None
    return {
        "price": price,
        "quantity": qty,
        "taker_is_seller": bool(msg.get("m")),
        "ts": msg.get("T") or msg.get("E"),
    }


def parse_kline(msg: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    {"e": "kline", "k": {"t", "T", "o", "h", "l", "c", "v", "x"}}
    """
    if not isinstance(msg, dict) or msg.get("e") != "kline":
        return None
    k = msg.get("k") or {}
    try:
        open_time = int(k["t"])
        close_time = int(k["T"])
    except (KeyError, TypeError, ValueError):
        return None

    vals = {name: _finite(k.get(key)) for name, key in (
        ("open", "o"), ("high", "h"), ("low", "l"), ("close", "c"), ("volume", "v"),
    )}
    if any(v is None for v in vals.values()):
        return None

    out: Dict[str, Any] = {"open_time": open_time, "close_time": close_time}
    out.update(vals)
    out["is_closed"] = bool(k.get("x"))
    return out


class StreamFeed:
    """
    Reads one websocket stream and hands each normalized message to `on_message`.

    on_give_up is awaited once reconnect attempts are exhausted.
    """

    def __init__(
        self,
        name: str,
        url: str,
        parser: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]],
        on_message: Callable[[Dict[str, Any]], Awaitable[None]],
        *,
        reconnect_delay_s: float = 3.0,
        max_reconnect_attempts: int = 10,
        ping_interval_s: float = 20.0,
        on_give_up: Optional[Callable[[str], Awaitable[None]]] = None,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.name = name
        self.url = url
        self.parser = parser
        self.on_message = on_message
        self.reconnect_delay_s = reconnect_delay_s
        self.max_reconnect_attempts = max_reconnect_attempts
        self.ping_interval_s = ping_interval_s
        self.on_give_up = on_give_up
        self._connect = connect

        self.is_connected = False
        self.reconnect_attempts = 0
        self._stop = asyncio.Event()

        # ---- Diagnostics ----
        self.received = 0
        self.dropped = 0

    def stop(self) -> None:
        self._stop.set()

    def backoff_delay(self) -> float:
        return min(self.reconnect_delay_s * (2 ** max(0, self.reconnect_attempts - 1)), MAX_BACKOFF_S)

    async def run(self) -> None:
        while not self._stop.is_set():
            try:
                print(f"[STREAM][{self.name}] connecting to {self.url}")
                async with self._connect(self.url, ping_interval=self.ping_interval_s) as ws:
                    self.is_connected = True
                    self.reconnect_attempts = 0
                    print(f"[STREAM][{self.name}] connected")
                    async for raw in ws:
                        if self._stop.is_set():
                            break
                        await self._handle_raw(raw)
            except asyncio.CancelledError:
                raise
            except (OSError, WebSocketException) as e:
                print(f"[STREAM][{self.name}] connection error: {e}")
            except Exception as e:
                print(f"[STREAM][{self.name}] unexpected error: {type(e).__name__}: {e}")
            finally:
                self.is_connected = False

            if self._stop.is_set():
                break

            self.reconnect_attempts += 1
            if self.reconnect_attempts > self.max_reconnect_attempts:
                print(f"[STREAM][{self.name}] giving up after {self.max_reconnect_attempts} reconnect attempts")
                if self.on_give_up is not None:
                    await self.on_give_up(self.name)
                return

            delay = self.backoff_delay()
            print(
                f"[STREAM][{self.name}] reconnect {self.reconnect_attempts}/"
                f"{self.max_reconnect_attempts} in {delay:.1f}s"
            )
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        print(f"[STREAM][{self.name}] stopped")

    async def _handle_raw(self, raw: Any) -> None:
        self.received += 1
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError):
            self.dropped += 1
            print(f"[STREAM][{self.name}] dropped non-JSON message")
            return

        event = self.parser(msg)
        if event is None:
            self.dropped += 1
            return
        await self.on_message(event)
