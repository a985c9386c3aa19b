# tests/conftest.py
import asyncio
import itertools
import json
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from scalp_bot.config import GatewayConfig, ScalpConfig
from scalp_bot.domain.errors import OrderPlacementFailure, VenueQueryFailure
from scalp_bot.domain.strategy_request import Side


# --- VENUE ---
class FakeVenue:
    """
    In-memory биржа: пишет журнал вызовов, держит книгу открытых ордеров.
    fail: имя метода -> исключение, которое он бросает.
    """

    def __init__(self, mark_prices=(Decimal("100"),), instruments: Optional[Dict[str, Any]] = None):
        self.mark_prices = [Decimal(str(p)) for p in mark_prices]
        self._mark_idx = 0
        self.instruments = instruments if instruments is not None else {
            "BTCUSDT": bybit_instrument("BTCUSDT", "0.01", "0.001", "0.001"),
        }
        self.calls: List[tuple] = []
        self.open_orders: List[Dict[str, Any]] = []
        self.fail: Dict[str, Exception] = {}
        self.tp_counts_after_place: List[int] = []
        self._ids = itertools.count(1)

    def _record(self, name: str, **kwargs):
        self.calls.append((name, kwargs))
        exc = self.fail.get(name)
        if exc is not None:
            raise exc

    def names(self) -> List[str]:
        return [c[0] for c in self.calls]

    def calls_of(self, name: str) -> List[Dict[str, Any]]:
        return [kw for n, kw in self.calls if n == name]

    def tp_orders(self) -> List[Dict[str, Any]]:
        return [o for o in self.open_orders if str(o.get("orderLinkId", "")).startswith("tp_")]

    def _add_order(self, symbol: str, order_type: str, link_id: Optional[str], stop_type: str = "") -> str:
        oid = f"oid-{next(self._ids)}"
        self.open_orders.append({
            "orderId": oid,
            "symbol": symbol,
            "orderType": order_type,
            "orderLinkId": link_id or "",
            "stopOrderType": stop_type,
        })
        if link_id and link_id.startswith("tp_"):
            self.tp_counts_after_place.append(len(self.tp_orders()))
        return oid

    async def fetch_instrument_info(self, symbol):
        await asyncio.sleep(0)
        self._record("fetch_instrument_info", symbol=symbol)
        return self.instruments.get(symbol)

    async def fetch_mark_price(self, symbol):
        await asyncio.sleep(0)
        self._record("fetch_mark_price", symbol=symbol)
        price = self.mark_prices[min(self._mark_idx, len(self.mark_prices) - 1)]
        self._mark_idx += 1
        return price

    async def place_market_order(self, symbol, side, qty):
        await asyncio.sleep(0)
        self._record("place_market_order", symbol=symbol, side=side, qty=qty)
        return f"mkt-{next(self._ids)}"

    async def place_limit_order(self, symbol, side, price, qty, reduce_only=False, order_link_id=None):
        await asyncio.sleep(0)
        self._record("place_limit_order", symbol=symbol, side=side, price=price, qty=qty,
                     reduce_only=reduce_only, order_link_id=order_link_id)
        return self._add_order(symbol, "Limit", order_link_id)

    async def place_conditional_order(self, symbol, side, trigger_price, trigger_direction, qty=None, price=None,
                                      reduce_only=False, close_position=False, order_link_id=None):
        await asyncio.sleep(0)
        self._record("place_conditional_order", symbol=symbol, side=side, trigger_price=trigger_price,
                     trigger_direction=trigger_direction, qty=qty, price=price, reduce_only=reduce_only,
                     close_position=close_position, order_link_id=order_link_id)
        return self._add_order(symbol, "Limit" if price is not None else "Market", order_link_id, stop_type="Stop")

    async def get_open_orders(self, symbol):
        await asyncio.sleep(0)
        self._record("get_open_orders", symbol=symbol)
        return [dict(o) for o in self.open_orders if o["symbol"] == symbol]

    async def cancel_order(self, symbol, order_id):
        await asyncio.sleep(0)
        self._record("cancel_order", symbol=symbol, order_id=order_id)
        self.open_orders = [o for o in self.open_orders if o["orderId"] != order_id]


def bybit_instrument(symbol: str, tick: str, step: str, min_qty: str) -> Dict[str, Any]:
    return {
        "symbol": symbol,
        "status": "Trading",
        "priceFilter": {"minPrice": "0.10", "maxPrice": "199999.80", "tickSize": tick},
        "lotSizeFilter": {"maxOrderQty": "100.000", "minOrderQty": min_qty, "qtyStep": step},
    }


# --- GATEWAY ---
class ScriptExhausted(Exception):
    """Сценарий соединений закончился - тестовый способ выйти из run()."""


class FakeConnection:
    def __init__(self, frames):
        self.inbound: asyncio.Queue = asyncio.Queue()
        for f in frames:
            self.inbound.put_nowait(f)
        self.sent: List[Dict[str, Any]] = []
        self.closed = False

    async def send_str(self, data: str):
        self.sent.append(json.loads(data))

    async def receive(self):
        if self.closed and self.inbound.empty():
            return None
        return await self.inbound.get()

    async def close(self):
        if not self.closed:
            self.closed = True
            self.inbound.put_nowait(None)

    def ops(self) -> List[int]:
        return [m["op"] for m in self.sent]


class FakeConnector:
    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.urls: List[str] = []
        self.connections: List[FakeConnection] = []

    async def connect(self, url: str) -> FakeConnection:
        self.urls.append(url)
        if not self.scripts:
            raise ScriptExhausted(url)
        conn = FakeConnection(self.scripts.pop(0))
        self.connections.append(conn)
        return conn


def frame(op: int, d: Any = None, s: Optional[int] = None, t: Optional[str] = None) -> str:
    return json.dumps({"op": op, "d": d, "s": s, "t": t})


def hello(interval_ms: int = 45000) -> str:
    return frame(10, {"heartbeat_interval": interval_ms})


def heartbeat_ack() -> str:
    return frame(11)


def ready(session_id: str = "sess-1", resume_url: str = "wss://resume.example", s: int = 1) -> str:
    return frame(0, {
        "session_id": session_id,
        "resume_gateway_url": resume_url,
        "user": {"username": "watcher", "discriminator": "0"},
    }, s=s, t="READY")


def message_create(channel_id: str, content: str = "", s: int = 2, embeds=None) -> str:
    return frame(0, {"channel_id": channel_id, "content": content, "embeds": embeds or []}, s=s, t="MESSAGE_CREATE")


def invalid_session(resumable: bool) -> str:
    return frame(9, resumable)


@pytest.fixture
def gateway_cfg():
    return GatewayConfig(token="tkn", channels=["111", "222"], reconnect_base_delay=1.0, reconnect_max_delay=8.0)


@pytest.fixture
def scalp_cfg():
    return ScalpConfig(
        channel_id="222",
        side=Side.BUY,
        size_usd=Decimal("100"),
        tp_pct=Decimal("1"),
        sl_pct=Decimal("5"),
        dca_steps=(Decimal("2.5"), Decimal("5"), Decimal("7.5")),
    )


@pytest.fixture
def venue():
    return FakeVenue()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay: float):
        sleeps.append(delay)
    return _sleep
