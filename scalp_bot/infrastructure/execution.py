# scalp_bot/infrastructure/execution.py
import asyncio
import logging
import uuid
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from pybit.unified_trading import HTTP

from scalp_bot.domain.errors import OrderPlacementFailure, VenueQueryFailure
from scalp_bot.domain.quantization import format_decimal, to_decimal

logger = logging.getLogger("EXECUTION")


class BybitExecutionHandler:
    """
    Trading Venue Client поверх pybit (USDT-перпетуалы, category=linear).
    pybit синхронный, поэтому каждый вызов уходит в executor и ограничен таймаутом.
    """

    def __init__(self, api_key: str = None, api_secret: str = None, testnet: bool = True,
                 call_timeout: float = 15.0):
        self.call_timeout = call_timeout
        self.category = "linear"
        self.testnet = testnet
        self.client = HTTP(
            testnet=testnet,
            api_key=api_key or None,
            api_secret=api_secret or None,
            recv_window=60000,
        )
        mode = "TESTNET" if testnet else "LIVE"
        if api_key and api_secret:
            logger.info(f"🔧 Execution: {mode} TRADING MODE")
        else:
            logger.warning(f"⚠️ Execution: {mode} without keys, order calls will be rejected")

    def _fmt(self, val: Decimal) -> str:
        return format_decimal(val)

    async def _call(self, fn: Callable[..., Dict[str, Any]], **kwargs) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        resp = await asyncio.wait_for(
            loop.run_in_executor(None, lambda: fn(**kwargs)),
            timeout=self.call_timeout,
        )
        # retCode != 0 без исключения от SDK
        if isinstance(resp, dict) and resp.get("retCode", 0) != 0:
            raise RuntimeError(f"Bybit API Error {resp.get('retCode')}: {resp.get('retMsg')}")
        return resp

    # --- QUERIES ---
    async def fetch_instrument_info(self, symbol: str) -> Optional[Dict[str, Any]]:
        try:
            resp = await self._call(self.client.get_instruments_info, category=self.category, symbol=symbol)
            items = resp["result"]["list"]
        except Exception as e:
            logger.error(f"❌ Failed to fetch instrument info for {symbol}: {e!r}")
            raise VenueQueryFailure(f"instrument info request failed: {e!r}", symbol=symbol, step="filters") from e

        for item in items:
            if item.get("symbol") == symbol:
                return item
        return None

    async def fetch_mark_price(self, symbol: str) -> Decimal:
        try:
            resp = await self._call(self.client.get_tickers, category=self.category, symbol=symbol)
            item = resp["result"]["list"][0]
            mark_price = to_decimal(item["markPrice"])
            if not mark_price.is_finite() or mark_price <= 0:
                raise ValueError(f"non-positive mark price {item['markPrice']!r}")
            return mark_price
        except Exception as e:
            logger.error(f"❌ Failed to fetch mark price for {symbol}: {e!r}")
            raise VenueQueryFailure(f"mark price request failed: {e!r}", symbol=symbol, step="mark_price") from e

    async def get_open_orders(self, symbol: str) -> List[Dict[str, Any]]:
        orders: List[Dict[str, Any]] = []
        # Обычные и условные ордера Bybit отдает раздельно
        for order_filter in ("Order", "StopOrder"):
            try:
                resp = await self._call(
                    self.client.get_open_orders,
                    category=self.category, symbol=symbol, orderFilter=order_filter,
                )
                orders.extend(resp["result"]["list"])
            except Exception as e:
                logger.error(f"❌ Open orders request failed for {symbol} ({order_filter}): {e!r}")
                raise VenueQueryFailure(f"open orders request failed: {e!r}", symbol=symbol, step="open_orders") from e
        return orders

    # --- ORDERS ---
    async def _place(self, step: str, params: Dict[str, Any]) -> str:
        params.setdefault("orderLinkId", f"sb_{uuid.uuid4().hex[:20]}")
        try:
            result = await self._call(self.client.place_order, category=self.category, **params)
            oid = result["result"]["orderId"]
        except Exception as e:
            logger.error(f"❌ {step} failed: {params} -> {e!r}")
            raise OrderPlacementFailure(
                f"{step} rejected: {e!r}", symbol=params.get("symbol", ""), step=step, params=params
            ) from e
        logger.info(f"✅ {step} accepted on {params['symbol']} | ID: {oid}")
        return oid

    async def place_market_order(self, symbol: str, side: str, qty: Decimal) -> str:
        return await self._place("MARKET", {
            "symbol": symbol,
            "side": side,
            "orderType": "Market",
            "qty": self._fmt(qty),
        })

    async def place_limit_order(self, symbol: str, side: str, price: Decimal, qty: Decimal,
                                reduce_only: bool = False, order_link_id: Optional[str] = None) -> str:
        params = {
            "symbol": symbol,
            "side": side,
            "orderType": "Limit",
            "qty": self._fmt(qty),
            "price": self._fmt(price),
            "timeInForce": "GTC",
            "reduceOnly": reduce_only,
        }
        if order_link_id:
            params["orderLinkId"] = order_link_id
        return await self._place("LIMIT", params)

    async def place_conditional_order(self, symbol: str, side: str, trigger_price: Decimal,
                                      trigger_direction: int, qty: Optional[Decimal] = None,
                                      price: Optional[Decimal] = None, reduce_only: bool = False,
                                      close_position: bool = False,
                                      order_link_id: Optional[str] = None) -> str:
        params: Dict[str, Any] = {
            "symbol": symbol,
            "side": side,
            "orderType": "Limit" if price is not None else "Market",
            "triggerPrice": self._fmt(trigger_price),
            "triggerDirection": trigger_direction,
            "triggerBy": "MarkPrice",
            "reduceOnly": reduce_only or close_position,
        }
        if close_position:
            # qty=0 + closeOnTrigger: закрыть всю позицию, какой бы она ни была на момент срабатывания
            params["qty"] = "0"
            params["closeOnTrigger"] = True
        else:
            params["qty"] = self._fmt(qty)
        if price is not None:
            params["price"] = self._fmt(price)
            params["timeInForce"] = "GTC"
        if order_link_id:
            params["orderLinkId"] = order_link_id
        return await self._place("CONDITIONAL", params)

    async def cancel_order(self, symbol: str, order_id: str) -> None:
        try:
            await self._call(self.client.cancel_order, category=self.category, symbol=symbol, orderId=order_id)
            logger.info(f"🗑️ CANCELLED: {order_id} on {symbol}")
        except Exception as e:
            # 110001 - ордера уже нет (исполнился/отменен), это не ошибка
            str_e = str(e)
            if "110001" in str_e or "Order not exists" in str_e:
                logger.info(f"ℹ️ Cancel skipped (Order gone): {order_id}")
                return
            raise OrderPlacementFailure(
                f"cancel rejected: {e!r}", symbol=symbol, step="cancel", params={"orderId": order_id}
            ) from e
