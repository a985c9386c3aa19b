# scalp_bot/strategies/dca_ladder.py
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from scalp_bot.domain.errors import OrderPlacementFailure, VenueError, VenueQueryFailure
from scalp_bot.domain.interfaces import IExecutionHandler, IFilterResolver
from scalp_bot.domain.quantization import floor_to_multiple
from scalp_bot.domain.strategy_request import PositionAccumulator, Side, StrategyRequest

logger = logging.getLogger("LADDER")

HUNDRED = Decimal("100")

# triggerDirection: 1 - цена поднимается до триггера, 2 - опускается
RISES_TO = 1
FALLS_TO = 2

TP_LINK_PREFIX = "tp_"
SL_LINK_PREFIX = "sl_"
TP_STOP_ORDER_TYPES = ("TakeProfit", "PartialTakeProfit")


def build_entry_ladder(base_entry: Decimal, side: Side, dca_percents: Sequence[Decimal]) -> List[Decimal]:
    """
    [base, base*(1 -/+ p1/100), ...]. Для Buy лестница идет вниз, для Sell вверх.
    """
    entries = [base_entry]
    for pct in dca_percents:
        offset = Decimal(pct) / HUNDRED
        adj = (1 - offset) if side is Side.BUY else (1 + offset)
        entries.append(base_entry * adj)
    return entries


def take_profit_target(entry: Decimal, side: Side, tp_pct: Decimal) -> Decimal:
    offset = tp_pct / HUNDRED
    return entry * (1 + offset) if side is Side.BUY else entry * (1 - offset)


def stop_loss_target(entry: Decimal, side: Side, sl_pct: Decimal) -> Decimal:
    offset = sl_pct / HUNDRED
    return entry * (1 - offset) if side is Side.BUY else entry * (1 + offset)


def is_take_profit_order(order: Dict[str, Any]) -> bool:
    link_id = str(order.get("orderLinkId") or "")
    stop_type = str(order.get("stopOrderType") or "")
    return link_id.startswith(TP_LINK_PREFIX) or stop_type in TP_STOP_ORDER_TYPES


@dataclass
class LadderReport:
    """Итог одного прогона: что ушло на биржу и что упало по дороге."""
    symbol: str
    side: Side
    quantity: Decimal = Decimal("0")
    base_entry: Decimal = Decimal("0")
    entries: List[Decimal] = field(default_factory=list)
    orders: List[str] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)
    average_entry: Decimal = Decimal("0")
    take_profit: Optional[Decimal] = None
    stop_loss: Optional[Decimal] = None

    @property
    def complete(self) -> bool:
        return not self.failures


class DcaLadderEngine:
    """
    Исполняет DCA-лестницу по сигналу:
    MARKET вход -> TP на всю позицию -> лимитки DCA (после каждой TP пересчитывается
    от средней и переставляется) -> SL от исходной цены входа.

    Шаги внутри прогона строго последовательны. Прогоны по одному символу
    сериализуются через asyncio.Lock, иначе два прогона гоняются на cancel->place TP.
    """

    def __init__(self, executor: IExecutionHandler, resolver: IFilterResolver, testnet: bool = True):
        self.exec = executor
        self.resolver = resolver
        self.testnet = testnet
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, symbol: str) -> asyncio.Lock:
        lock = self._locks.get(symbol)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[symbol] = lock
        return lock

    async def execute(self, req: StrategyRequest) -> LadderReport:
        lock = self._lock_for(req.symbol)
        if lock.locked():
            logger.info(f"⏳ {req.symbol}: previous ladder still running, queued")
        async with lock:
            return await self._run(req)

    # --- ОСНОВНОЙ СЦЕНАРИЙ ---
    async def _run(self, req: StrategyRequest) -> LadderReport:
        symbol = req.symbol
        side = req.side
        exit_side = side.opposite
        report = LadderReport(symbol=symbol, side=side)

        logger.info(f"🚀 Strategy start | {symbol} {side.value} ${req.notional_usd}")

        # 1. Рыночные данные. Ошибка здесь прерывает прогон
        mark_price = await self.exec.fetch_mark_price(symbol)
        if mark_price <= 0:
            raise VenueQueryFailure(f"mark price {mark_price} is not positive", symbol=symbol, step="mark_price")
        filters = await self.resolver.resolve(symbol)
        tick = filters.tick_size

        # 2. Объем одинаковый для всех шагов лестницы
        raw_qty = max(req.notional_usd / mark_price, filters.min_quantity)
        qty = floor_to_multiple(raw_qty, filters.step_size)
        report.quantity = qty
        logger.info(
            f"📊 {symbol} mark price: {mark_price} | tick size: {tick} | "
            f"step size: {filters.step_size} | minQty={filters.min_quantity} | qty={qty}"
        )
        if qty <= 0:
            raise OrderPlacementFailure(
                "order quantity rounds to zero", symbol=symbol, step="sizing",
                params={"notional": str(req.notional_usd), "mark": str(mark_price)},
            )

        # 3. Базовый вход. Без ретраев, ошибка прерывает весь прогон
        logger.info(f"➡️  Submit MARKET {side.value}: {{symbol: {symbol}, quantity: {qty}}}")
        oid = await self.exec.place_market_order(symbol, side.value, qty)
        report.orders.append(oid)
        logger.info(f"✅ Base MARKET entry placed ({side.value} {qty} {symbol})")

        base_entry = mark_price
        report.base_entry = base_entry
        position = PositionAccumulator()
        position.add(base_entry, qty)

        # 4. Первичный TP на всю позицию (closePosition)
        tp_direction = RISES_TO if side is Side.BUY else FALLS_TO
        tp_trigger = floor_to_multiple(take_profit_target(mark_price, side, req.take_profit_pct), tick)
        report.take_profit = tp_trigger
        await self._guarded(report, "initial_tp", self.exec.place_conditional_order(
            symbol, exit_side.value, tp_trigger, tp_direction,
            close_position=True, order_link_id=self._link(TP_LINK_PREFIX),
        ), params={"trigger": str(tp_trigger), "side": exit_side.value})
        logger.info(f"🎯 Initial TP set → trigger={tp_trigger}")

        # 5. Лестница цен
        entries = build_entry_ladder(base_entry, side, req.dca_percents)
        report.entries = entries

        # 6. Шаги DCA
        for i, px in enumerate(entries[1:], start=1):
            await self._dca_step(req, report, position, i, px, qty, tick)

        report.average_entry = position.average_entry

        # 7. SL всегда от исходного входа, а не от средней
        sl_direction = FALLS_TO if side is Side.BUY else RISES_TO
        sl_trigger = floor_to_multiple(stop_loss_target(base_entry, side, req.stop_loss_pct), tick)
        report.stop_loss = sl_trigger
        logger.info(f"➡️  Submit SL: {{type: STOP_MARKET, side: {exit_side.value}, trigger: {sl_trigger}, closePosition}}")
        placed = await self._guarded(report, "stop_loss", self.exec.place_conditional_order(
            symbol, exit_side.value, sl_trigger, sl_direction,
            close_position=True, order_link_id=self._link(SL_LINK_PREFIX),
        ), params={"trigger": str(sl_trigger), "side": exit_side.value})
        if placed:
            logger.info(f"🛑 Stop-loss placed @ {sl_trigger}")

        mode = "TESTNET" if self.testnet else "LIVE"
        if report.complete:
            logger.info(f"✅ All {mode} orders placed for {symbol}: MARKET entry + DCA + TP + SL")
        else:
            logger.warning(f"⚠️ {mode} ladder for {symbol} finished with {len(report.failures)} failed step(s): {report.failures}")
        return report

    async def _dca_step(self, req: StrategyRequest, report: LadderReport, position: PositionAccumulator,
                        i: int, px: Decimal, qty: Decimal, tick: Decimal):
        symbol = req.symbol
        side = req.side
        exit_side = side.opposite
        step = f"dca_{i}"

        # a. Лимитка DCA
        price = floor_to_multiple(px, tick)
        logger.info(f"➡️  Submit DCA LIMIT: {{side: {side.value}, symbol: {symbol}, quantity: {qty}, price: {price}, timeInForce: GTC}}")
        placed = await self._guarded(report, step, self.exec.place_limit_order(symbol, side.value, price, qty),
                                     params={"price": str(price), "qty": str(qty)})
        if not placed:
            # Лимитки нет - средняя не меняется, TP переставлять незачем
            return
        logger.info(f"📥 DCA {i} limit placed @ {price}")

        # b-c. Новая средняя и TP от нее
        avg_entry = position.add(price, qty)
        tp_limit = floor_to_multiple(take_profit_target(avg_entry, side, req.take_profit_pct), tick)
        total_qty = position.total_quantity
        report.take_profit = tp_limit

        # d. Держим ровно один активный TP
        await self._cancel_take_profits(symbol, report)

        # e. Если рынок уже за ценой DCA - стоп не сработает, ставим сразу reduce-only лимит
        cur_mark: Optional[Decimal] = None
        try:
            cur_mark = await self.exec.fetch_mark_price(symbol)
        except VenueError as e:
            logger.warning(f"⚠️ {symbol} {step}: mark price re-check failed, planning STOP-LIMIT: {e}")

        would_trigger_now = cur_mark is not None and (
            cur_mark >= price if exit_side is Side.BUY else cur_mark <= price
        )

        if would_trigger_now:
            logger.info(
                f"➡️  Submit immediate TP LIMIT: {{side: {exit_side.value}, quantity: {total_qty}, "
                f"price: {tp_limit}, reduceOnly}} (mark={cur_mark})"
            )
            ok = await self._guarded(report, f"{step}_tp", self.exec.place_limit_order(
                symbol, exit_side.value, tp_limit, total_qty,
                reduce_only=True, order_link_id=self._link(TP_LINK_PREFIX),
            ), params={"price": str(tp_limit), "qty": str(total_qty)})
            if ok:
                logger.info(f"🎯 TP LIMIT active → price={tp_limit} qty={total_qty}")
        else:
            # Триггер на тик дальше цены DCA, чтобы не сработать ровно на филле
            if exit_side is Side.BUY:
                trigger, direction = price + tick, RISES_TO
            else:
                trigger, direction = price - tick, FALLS_TO
            logger.info(
                f"➡️  Submit TP STOP-LIMIT: {{side: {exit_side.value}, stopPrice: {trigger}, price: {tp_limit}, "
                f"quantity: {total_qty}, reduceOnly, workingType: MARK_PRICE}} (mark={cur_mark})"
            )
            ok = await self._guarded(report, f"{step}_tp", self.exec.place_conditional_order(
                symbol, exit_side.value, trigger, direction,
                qty=total_qty, price=tp_limit, reduce_only=True,
                order_link_id=self._link(TP_LINK_PREFIX),
            ), params={"trigger": str(trigger), "price": str(tp_limit), "qty": str(total_qty)})
            if ok:
                logger.info(f"🎯 Planned STOP-LIMIT for DCA {i} → stop={trigger} limit={tp_limit} qty={total_qty}")

    async def _cancel_take_profits(self, symbol: str, report: LadderReport):
        try:
            open_orders = await self.exec.get_open_orders(symbol)
        except VenueError as e:
            logger.warning(f"⚠️ {symbol}: cannot list open orders before TP replace: {e}")
            report.failures.append("list_open_orders")
            return

        for o in open_orders:
            if not is_take_profit_order(o):
                continue
            order_id = str(o.get("orderId"))
            try:
                await self.exec.cancel_order(symbol, order_id)
                logger.info(f"🧹 Canceled existing TP order id={order_id} type={o.get('orderType')}/{o.get('stopOrderType')}")
            except VenueError as e:
                logger.warning(f"⚠️ Failed to cancel TP order id={order_id}: {e}")
                report.failures.append(f"cancel_{order_id}")

    async def _guarded(self, report: LadderReport, step: str, call, params: Dict[str, Any]) -> bool:
        """Ошибка шага после базового входа логируется и не останавливает лестницу."""
        try:
            oid = await call
        except VenueError as e:
            logger.error(f"❌ {report.symbol} step={step} failed with {params}: {e}")
            report.failures.append(step)
            return False
        report.orders.append(oid)
        return True

    @staticmethod
    def _link(prefix: str) -> str:
        return f"{prefix}{uuid.uuid4().hex[:24]}"
