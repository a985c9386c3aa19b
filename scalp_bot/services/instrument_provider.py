# scalp_bot/services/instrument_provider.py
import logging
from typing import Any, Dict, Optional

from scalp_bot.domain.errors import FilterMissing, InstrumentNotFound
from scalp_bot.domain.interfaces import IExecutionHandler
from scalp_bot.domain.quantization import to_decimal
from scalp_bot.domain.strategy_request import InstrumentFilters

logger = logging.getLogger("INSTRUMENTS")


class InstrumentFilterResolver:
    """
    Служба спецификаций инструмента.
    Отвечает за tick/step/minQty. Каждый resolve() ходит на биржу, чтобы фильтры
    были актуальны на момент прогона; последнее значение остается в self.filters.
    """

    def __init__(self, executor: IExecutionHandler):
        self.exec = executor
        self.filters: Dict[str, InstrumentFilters] = {}

    async def resolve(self, symbol: str) -> InstrumentFilters:
        item = await self.exec.fetch_instrument_info(symbol)
        if item is None:
            raise InstrumentNotFound(f"{symbol} is not listed on the venue", symbol=symbol, step="filters")

        filters = self.parse(symbol, item)
        self.filters[symbol] = filters
        logger.info(
            f"📏 Specs for {symbol}: Tick={filters.tick_size}, Lot={filters.step_size}, MinQty={filters.min_quantity}"
        )
        return filters

    @staticmethod
    def parse(symbol: str, item: Dict[str, Any]) -> InstrumentFilters:
        price_filter: Optional[Dict[str, Any]] = item.get("priceFilter")
        lot_filter: Optional[Dict[str, Any]] = item.get("lotSizeFilter")

        if not price_filter or not price_filter.get("tickSize"):
            raise FilterMissing("price filter (tickSize) is absent", symbol=symbol, step="filters")
        if not lot_filter or not lot_filter.get("qtyStep"):
            raise FilterMissing("lot size filter (qtyStep) is absent", symbol=symbol, step="filters")

        try:
            tick_size = to_decimal(price_filter["tickSize"])
            step_size = to_decimal(lot_filter["qtyStep"])
            min_qty = to_decimal(lot_filter.get("minOrderQty") or 0)
        except ArithmeticError as e:
            raise FilterMissing(f"unparsable filter value: {e!r}", symbol=symbol, step="filters") from e

        if not (tick_size.is_finite() and step_size.is_finite()) or tick_size <= 0 or step_size <= 0:
            raise FilterMissing("non-positive tick or step size", symbol=symbol, step="filters")

        return InstrumentFilters(tick_size=tick_size, step_size=step_size, min_quantity=min_qty)
