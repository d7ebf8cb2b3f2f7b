from __future__ import annotations

import logging

import pytest

from dealcatalog.catalog.geo import (
    DISTANCE_RPC,
    build_restaurant_query,
    resolve_reference_point,
    round_distance,
)
from dealcatalog.catalog.restaurants import RestaurantService


# ── Reference point parsing ──────────────────────────────────────────────


class TestReferencePoint:
    def test_valid_numbers(self):
        assert resolve_reference_point(40.7, -74.0) == (40.7, -74.0)

    def test_valid_strings(self):
        assert resolve_reference_point("40.7", " -74.0 ") == (40.7, -74.0)

    def test_both_absent(self):
        assert resolve_reference_point(None, None) is None

    @pytest.mark.parametrize(
        "lat, lon",
        [
            (40.7, None),
            (None, -74.0),
            ("abc", "-74.0"),
            ("nan", "10"),
            ("inf", "10"),
            (91, 0),
            (0, -180.5),
            ("", "10"),
        ],
    )
    def test_unusable_pairs_are_treated_as_absent(self, lat, lon):
        assert resolve_reference_point(lat, lon) is None

    def test_partial_pair_is_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="dealcatalog.catalog.geo"):
            resolve_reference_point(12.0, None)
        assert "Ignoring reference point" in caplog.text

    def test_range_edges_are_valid(self):
        assert resolve_reference_point(-90, 180) == (-90.0, 180.0)


# ── Query construction ───────────────────────────────────────────────────


def test_query_without_reference_omits_distance(fake_db):
    query = build_restaurant_query()
    assert not query.includes_distance
    assert query.rpc_params() == {}
    request = query.to_request(fake_db)
    assert request.table == "Restaurants"


def test_query_with_reference_uses_distance_function(fake_db):
    query = build_restaurant_query("10", "20")
    assert query.includes_distance
    request = query.to_request(fake_db)
    assert request.name == DISTANCE_RPC
    assert request.params == {"ref_lat": 10.0, "ref_lon": 20.0}


def test_round_distance():
    assert round_distance(1.23456) == 1.23
    assert round_distance(None) is None
    assert round_distance(0) == 0.0


# ── Distance on restaurant reads ─────────────────────────────────────────


def test_distance_at_own_coordinates_is_zero(fake_db, store):
    fake_db.seed("Restaurants", name="Here", address="1 Main", latitude=51.5074, longitude=-0.1278)

    [restaurant] = RestaurantService(store).list_restaurants(51.5074, -0.1278)

    assert restaurant.distance == pytest.approx(0.0, abs=0.005)


def test_distance_is_rounded_to_two_decimals(fake_db, store):
    fake_db.seed("Restaurants", name="Far", address="2 Main", latitude=48.8566, longitude=2.3522)

    [restaurant] = RestaurantService(store).list_restaurants(51.5074, -0.1278)

    assert restaurant.distance == round(restaurant.distance, 2)
    assert 340 < restaurant.distance < 345


def test_restaurant_without_coordinates_has_no_distance(fake_db, store):
    fake_db.seed("Restaurants", name="Nowhere", address="3 Main", latitude=None, longitude=None)

    [restaurant] = RestaurantService(store).list_restaurants(51.5074, -0.1278)

    assert restaurant.distance is None


def test_no_reference_point_means_no_distance(fake_db, store):
    fake_db.seed("Restaurants", name="Here", address="1 Main", latitude=51.5, longitude=-0.1)

    [restaurant] = RestaurantService(store).list_restaurants()

    assert restaurant.distance is None
    assert ("Restaurants", "select") in fake_db.calls
    assert not any(kind == "rpc" for _, kind in fake_db.calls)


def test_partial_reference_point_reads_plain_table(fake_db, store):
    fake_db.seed("Restaurants", name="Here", address="1 Main", latitude=51.5, longitude=-0.1)

    [restaurant] = RestaurantService(store).list_restaurants("51.5", None)

    assert restaurant.distance is None
    assert fake_db.calls == [("Restaurants", "select")]
