# scalp_bot/domain/strategy_request.py
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Tuple


class Side(str, Enum):
    BUY = "Buy"
    SELL = "Sell"

    @classmethod
    def parse(cls, raw: str) -> "Side":
        value = str(raw).strip().lower()
        if value == "buy": return cls.BUY
        if value == "sell": return cls.SELL
        raise ValueError(f"Unknown order side: {raw!r}")

    @property
    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY


@dataclass(frozen=True)
class StrategyRequest:
    """
    Value Object: параметры одного прогона DCA-лестницы.
    Создается детектором алертов, потребляется движком ровно один раз.
    """
    symbol: str
    side: Side
    notional_usd: Decimal
    dca_percents: Tuple[Decimal, ...]
    take_profit_pct: Decimal
    stop_loss_pct: Decimal

    # Справочно: что именно нашел детектор (в логику ордеров не входит)
    rsi: Decimal = Decimal("0")
    funding_rate: Decimal = Decimal("0")


@dataclass(frozen=True)
class InstrumentFilters:
    tick_size: Decimal
    step_size: Decimal
    min_quantity: Decimal


@dataclass
class PositionAccumulator:
    """Накопитель позиции в рамках одного прогона (не шарится между символами)."""
    total_quantity: Decimal = Decimal("0")
    total_cost: Decimal = Decimal("0")

    def add(self, price: Decimal, quantity: Decimal) -> Decimal:
        self.total_quantity += quantity
        self.total_cost += price * quantity
        return self.average_entry

    @property
    def average_entry(self) -> Decimal:
        if self.total_quantity == 0:
            return Decimal("0")
        return self.total_cost / self.total_quantity
