# scalp_bot/domain/errors.py
"""
Domain Layer: Error Taxonomy.
Транспортные ошибки лечатся реконнектом, ProtocolFault фатален,
ошибки биржи классифицируются по тому, прерывают ли они прогон стратегии.
"""
from typing import Any, Dict, Optional


class ScalpBotError(Exception):
    pass


class ConfigError(ScalpBotError):
    pass


class TransportFailure(ScalpBotError):
    """Сокет закрылся или упал. Всегда восстанавливается реконнектом."""


class ProtocolFault(ScalpBotError):
    """Невозобновляемая сессия. Продолжать без валидной сессии небезопасно."""


class VenueError(ScalpBotError):
    def __init__(self, message: str, symbol: str = "", step: str = "", params: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.symbol = symbol
        self.step = step
        self.params = params or {}

    def __str__(self) -> str:
        ctx = []
        if self.symbol: ctx.append(f"symbol={self.symbol}")
        if self.step: ctx.append(f"step={self.step}")
        if self.params: ctx.append(f"params={self.params}")
        base = super().__str__()
        return f"{base} ({', '.join(ctx)})" if ctx else base


class VenueQueryFailure(VenueError):
    """Mark price / фильтры инструмента недоступны. Прогон прерывается."""


class InstrumentNotFound(VenueQueryFailure):
    pass


class FilterMissing(VenueQueryFailure):
    pass


class OrderPlacementFailure(VenueError):
    pass
