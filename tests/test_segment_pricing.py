"""
Segment validation and fare resolution.
Covers:
- Forward sub-segments only (no reverse, no zero-length, served cities only)
- Direct fare beats summed hops; summed hops beat base price
- Base-price fallback is logged
- Full-route price
"""
import logging
from decimal import Decimal
from types import SimpleNamespace

import pytest

from src.exceptions import InvalidSegmentError
from src.routes.fare_service import (
    SegmentPricingService, resolve_fare, resolve_full_route_fare,
    validate_segment, served_city_orders
)
from src.routes.schemas import FareRow
from src.routes.service import RouteCatalogService

CITIES = ["A", "B", "C"]
HOPS = [FareRow(from_city="A", to_city="B", price=10), FareRow(from_city="B", to_city="C", price=15)]


def stops(*names):
    return [SimpleNamespace(city_name=n, sequence_order=i) for i, n in enumerate(names, start=1)]


# ────────────────────────── validation ──────────────────────────────────────

def test_forward_segments_are_valid():
    orders = served_city_orders(stops("A", "B", "C"))
    assert validate_segment(orders, "A", "C") == (1, 3)
    assert validate_segment(orders, "B", "C") == (2, 3)


def test_reverse_segment_rejected():
    orders = served_city_orders(stops("A", "B", "C"))
    with pytest.raises(InvalidSegmentError):
        validate_segment(orders, "C", "A")


def test_zero_length_segment_rejected():
    orders = served_city_orders(stops("A", "B", "C"))
    with pytest.raises(InvalidSegmentError):
        validate_segment(orders, "A", "A")


def test_unserved_city_rejected():
    orders = served_city_orders(stops("A", "C"))
    with pytest.raises(InvalidSegmentError):
        validate_segment(orders, "A", "B")


def test_city_match_ignores_case_and_spacing():
    orders = served_city_orders(stops("Quebec City", "Montreal"))
    assert validate_segment(orders, "  quebec   city ", "MONTREAL") == (1, 2)


def test_multiple_stations_in_one_city_use_lowest_order():
    orders = served_city_orders([
        SimpleNamespace(city_name="A", sequence_order=2),
        SimpleNamespace(city_name="A", sequence_order=1),
        SimpleNamespace(city_name="B", sequence_order=3),
    ])
    assert orders["a"] == 1


# ────────────────────────── fare resolution ─────────────────────────────────

def test_multi_hop_segment_sums_adjacent_fares():
    price = resolve_fare(CITIES, HOPS, Decimal("50"), "A", "C")
    assert price.price == Decimal("25.00")
    assert price.source == "summed"


def test_direct_fare_wins_over_summed_hops():
    fares = HOPS + [FareRow(from_city="A", to_city="C", price=30)]
    price = resolve_fare(CITIES, fares, Decimal("50"), "A", "C")
    assert price.price == Decimal("30.00")
    assert price.source == "direct"


def test_single_hop_uses_direct_fare():
    price = resolve_fare(CITIES, HOPS, Decimal("50"), "B", "C")
    assert price.price == Decimal("15.00")
    assert price.source == "direct"


def test_fares_are_directional():
    price = resolve_fare(CITIES, [FareRow(from_city="C", to_city="A", price=5)], Decimal("50"), "A", "C")
    assert price.source == "base_price"


def test_missing_hop_falls_back_to_base_price(caplog):
    fares = [FareRow(from_city="A", to_city="B", price=10)]
    with caplog.at_level(logging.WARNING, logger="src.routes.fare_service"):
        price = resolve_fare(CITIES, fares, Decimal("50"), "A", "C", route_template_id=7)
    assert price.price == Decimal("50.00")
    assert price.source == "base_price"
    assert "falling back to base price" in caplog.text
    assert "7" in caplog.text


def test_full_route_price_spans_first_to_last_city():
    price = resolve_full_route_fare(CITIES, HOPS, Decimal("50"))
    assert price.price == Decimal("25.00")


def test_full_route_price_with_single_city_is_base_price():
    price = resolve_full_route_fare(["A"], [], Decimal("42"))
    assert price.price == Decimal("42.00")
    assert price.source == "base_price"


# ────────────────────────── database-backed ─────────────────────────────────

def test_quote_trip_segment(db, factory):
    trip = factory.scenario(fares={("A", "B"): 10, ("B", "C"): 15})
    quote = SegmentPricingService(db).quote_trip_segment(trip, "A", "C")
    assert quote.segment_price == Decimal("25.00")
    assert quote.price_source == "summed"
    assert quote.full_route_price == Decimal("25.00")
    assert quote.currency == "CAD"


def test_quote_trip_segment_rejects_reverse(db, factory):
    trip = factory.scenario()
    with pytest.raises(InvalidSegmentError):
        SegmentPricingService(db).quote_trip_segment(trip, "C", "A")


def test_route_catalog_returns_ordered_cities_and_fares(db, factory):
    driver = factory.driver()
    template = factory.route(driver, cities=("X", "Y", "Z"), fares={("X", "Y"): 12})
    catalog = RouteCatalogService(db)

    cities = catalog.get_route_template_cities(template.id)
    assert [c.city_name for c in cities] == ["X", "Y", "Z"]
    assert cities[0].stations[0].station_name == "X Central"

    fares = catalog.get_intercity_fares(template.id)
    assert [(f.from_city, f.to_city, f.price) for f in fares] == [("X", "Y", Decimal("12.00"))]
