# scalp_bot/domain/quantization.py
"""
Округление цен и объемов под шаг инструмента (tickSize / qtyStep).

Все считается в Decimal через масштабирование к целым:
value * 10^d -> floor -> кратное шагу -> обратно / 10^d.
Прямой float-floor на шагах порядка 1e-8 дает дрейф на один шаг вниз.
"""
import math
from decimal import Decimal
from typing import Union

Number = Union[Decimal, int, float, str]

# Допуск к масштабированному значению перед floor (погрешность представления)
FLOOR_EPSILON = Decimal("1e-9")


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Cannot quantize non-finite value: {value}")
        # repr дает кратчайшее представление: 0.1 -> "0.1", 1e-08 -> "1e-08"
        return Decimal(repr(value))
    return Decimal(str(value).strip())


def decimal_places(step: Number) -> int:
    """
    Число знаков после запятой у шага: 0.001 -> 3, 1e-8 -> 8, 1 -> 0.
    Незначащие хвостовые нули ("0.0100") не учитываются.
    """
    d = to_decimal(step)
    if d == 0:
        return 0
    exponent = d.normalize().as_tuple().exponent
    return max(0, -exponent)


def floor_to_multiple(value: Number, step: Number) -> Decimal:
    """Округляет value вниз до ближайшего кратного step."""
    step_d = to_decimal(step)
    if step_d <= 0:
        raise ValueError(f"Step must be positive, got {step}")

    places = decimal_places(step_d)
    factor = Decimal(10) ** places

    value_int = math.floor(to_decimal(value) * factor + FLOOR_EPSILON)
    step_int = int((step_d * factor).to_integral_value())
    result_int = (value_int // step_int) * step_int

    return Decimal(result_int).scaleb(-places)


def format_decimal(value: Number) -> str:
    """Decimal -> строка для API: без экспоненты и хвостовых нулей."""
    d = to_decimal(value).normalize()
    text = format(d, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
