# scalp_bot/domain/interfaces.py
from decimal import Decimal
from typing import Protocol, Optional, List, Dict, Any

from scalp_bot.domain.strategy_request import InstrumentFilters


class IExecutionHandler(Protocol):
    """
    Интерфейс биржевого клиента (Trading Venue Client).
    Все цены и объемы - Decimal, в строку они превращаются только на границе с SDK.
    """

    async def fetch_instrument_info(self, symbol: str) -> Optional[Dict[str, Any]]:
        """Сырое описание инструмента или None, если символа нет в листинге."""
        ...

    async def fetch_mark_price(self, symbol: str) -> Decimal:
        ...

    async def place_market_order(self, symbol: str, side: str, qty: Decimal) -> str:
        ...

    async def place_limit_order(
        self, symbol: str, side: str, price: Decimal, qty: Decimal,
        reduce_only: bool = False, order_link_id: Optional[str] = None
    ) -> str:
        ...

    async def place_conditional_order(
        self, symbol: str, side: str, trigger_price: Decimal, trigger_direction: int,
        qty: Optional[Decimal] = None, price: Optional[Decimal] = None,
        reduce_only: bool = False, close_position: bool = False,
        order_link_id: Optional[str] = None
    ) -> str:
        ...

    async def get_open_orders(self, symbol: str) -> List[Dict[str, Any]]:
        ...

    async def cancel_order(self, symbol: str, order_id: str) -> None:
        ...


class IFilterResolver(Protocol):
    async def resolve(self, symbol: str) -> InstrumentFilters:
        ...


class IGatewayConnection(Protocol):
    async def send_str(self, data: str) -> None:
        ...

    async def receive(self) -> Optional[str]:
        """Следующий текстовый фрейм или None, если соединение закрыто."""
        ...

    async def close(self) -> None:
        ...


class IConnector(Protocol):
    async def connect(self, url: str) -> IGatewayConnection:
        ...
