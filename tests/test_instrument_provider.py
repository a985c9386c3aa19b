# tests/test_instrument_provider.py
from decimal import Decimal

import pytest

from conftest import FakeVenue, bybit_instrument
from scalp_bot.domain.errors import FilterMissing, InstrumentNotFound, VenueQueryFailure
from scalp_bot.services.instrument_provider import InstrumentFilterResolver


@pytest.mark.asyncio
async def test_resolves_filters_from_listing():
    venue = FakeVenue(instruments={"ETHUSDT": bybit_instrument("ETHUSDT", "0.010", "0.01", "0.01")})
    resolver = InstrumentFilterResolver(venue)

    filters = await resolver.resolve("ETHUSDT")

    assert filters.tick_size == Decimal("0.01")
    assert filters.step_size == Decimal("0.01")
    assert filters.min_quantity == Decimal("0.01")
    assert resolver.filters["ETHUSDT"] is filters


@pytest.mark.asyncio
async def test_each_resolve_queries_the_venue(venue):
    resolver = InstrumentFilterResolver(venue)
    await resolver.resolve("BTCUSDT")
    await resolver.resolve("BTCUSDT")
    assert venue.names() == ["fetch_instrument_info", "fetch_instrument_info"]


@pytest.mark.asyncio
async def test_unknown_symbol(venue):
    with pytest.raises(InstrumentNotFound) as exc:
        await InstrumentFilterResolver(venue).resolve("NOPEUSDT")
    assert exc.value.symbol == "NOPEUSDT"
    assert isinstance(exc.value, VenueQueryFailure)


@pytest.mark.asyncio
@pytest.mark.parametrize("broken", [
    {"symbol": "XUSDT", "lotSizeFilter": {"qtyStep": "1", "minOrderQty": "1"}},
    {"symbol": "XUSDT", "priceFilter": {"tickSize": "0.0001"}},
    {"symbol": "XUSDT", "priceFilter": {"tickSize": "0"}, "lotSizeFilter": {"qtyStep": "1"}},
    {"symbol": "XUSDT", "priceFilter": {"tickSize": "abc"}, "lotSizeFilter": {"qtyStep": "1"}},
])
async def test_missing_filters(broken):
    venue = FakeVenue(instruments={"XUSDT": broken})
    with pytest.raises(FilterMissing):
        await InstrumentFilterResolver(venue).resolve("XUSDT")


def test_missing_min_qty_defaults_to_zero():
    filters = InstrumentFilterResolver.parse("XUSDT", {
        "priceFilter": {"tickSize": "0.0001"},
        "lotSizeFilter": {"qtyStep": "1"},
    })
    assert filters.min_quantity == Decimal("0")
    assert filters.step_size == Decimal("1")
