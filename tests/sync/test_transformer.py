"""Tests for listing transformation and change-detection hashing."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from car_sync.exceptions import ListingRejectedError
from car_sync.sync.transformer import (
    FALLBACK_YEAR,
    HASH_FIELDS,
    compute_data_hash,
    transform_listing,
    transform_page,
)

SYNCED_AT = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class TestTransformListing:
    """Field mapping and defaulting."""

    def test_maps_primary_lot_fields(self, listing_factory):
        row = transform_listing(listing_factory(1), synced_at=SYNCED_AT)

        assert row.id == "10001"
        assert row.external_id == "10001"
        assert row.make == "Hyundai"
        assert row.model == "Sonata"
        assert row.year == 2019
        assert row.price == 12500.0
        assert row.buy_now_price == 12500.0
        assert row.current_bid == 9000.0
        assert row.mileage == 42000.0
        assert row.lot_number == "LOT-1"
        assert row.condition == "excellent"
        assert row.is_live is True
        assert row.keys_available is True
        assert row.image_url == "https://img.test/1/1.jpg"
        assert row.last_synced_at == SYNCED_AT
        assert len(row.data_hash) == 32

    def test_defaults_for_missing_optional_fields(self):
        raw = {"id": 5, "manufacturer": {"name": "Kia"}, "model": {"name": "Rio"}}

        row = transform_listing(raw, synced_at=SYNCED_AT)

        assert row.id == "5"
        assert row.year == FALLBACK_YEAR
        assert row.price == 0.0
        assert row.mileage == 0.0
        assert row.current_bid == 0.0
        assert row.vin is None
        assert row.color is None
        assert row.condition == "good"
        assert row.is_live is False
        assert row.keys_available is True
        assert row.image_url is None
        assert row.images == []
        assert row.title == "Kia Rio"

    @pytest.mark.parametrize("year", [None, 0, 1900, "unknown"])
    def test_unusable_year_falls_back(self, listing_factory, year):
        row = transform_listing(listing_factory(1, year=year), synced_at=SYNCED_AT)
        assert row.year == FALLBACK_YEAR

    def test_lenient_coercion(self, listing_factory):
        raw = listing_factory(
            2,
            manufacturer="BMW",
            model="X5",
            lots=[
                {
                    "buy_now": "23,400",
                    "bid": -5,
                    "odometer": {"km": "-10"},
                    "images": {"normal": [], "big": ["https://img.test/big.jpg"]},
                    "status": "archived",
                    "keys_available": False,
                },
                {"buy_now": 1},
            ],
        )

        row = transform_listing(raw, synced_at=SYNCED_AT)

        assert row.make == "BMW"
        assert row.model == "X5"
        assert row.price == 23400.0
        assert row.current_bid == 0.0
        assert row.mileage == 0.0
        assert row.image_url == "https://img.test/big.jpg"
        assert row.is_live is False
        assert row.keys_available is False

    @pytest.mark.parametrize("missing", ["id", "manufacturer", "model"])
    def test_missing_required_field_is_rejected(self, listing_factory, missing):
        raw = listing_factory(3)
        raw.pop(missing)

        with pytest.raises(ListingRejectedError) as excinfo:
            transform_listing(raw, synced_at=SYNCED_AT)

        assert "Missing required fields" in excinfo.value.reason


class TestDataHash:
    """Change-detection hash properties."""

    def test_hash_ignores_key_order_and_sync_time(self, listing_factory):
        raw = listing_factory(4)
        reordered = dict(reversed(list(raw.items())))

        first = transform_listing(raw, synced_at=SYNCED_AT)
        second = transform_listing(reordered, synced_at=SYNCED_AT + timedelta(days=3))

        assert first.data_hash == second.data_hash

    def test_hash_ignores_metadata_outside_business_fields(self, listing_factory):
        first = transform_listing(listing_factory(4), synced_at=SYNCED_AT)
        second = transform_listing(
            listing_factory(4, title="Renamed listing", inserted_at="2026-01-01"),
            synced_at=SYNCED_AT,
        )

        assert first.data_hash == second.data_hash

    def test_price_change_changes_hash(self, listing_factory):
        raw = listing_factory(5)
        changed = listing_factory(5)
        changed["lots"][0]["buy_now"] = 12600

        assert (
            transform_listing(raw, synced_at=SYNCED_AT).data_hash
            != transform_listing(changed, synced_at=SYNCED_AT).data_hash
        )

    @pytest.mark.parametrize("field", HASH_FIELDS)
    def test_every_business_field_participates(self, field):
        base = {name: f"value-{name}" for name in HASH_FIELDS}
        changed = dict(base)
        changed[field] = "different"

        assert compute_data_hash(base) != compute_data_hash(changed)

    def test_compute_hash_is_order_independent(self):
        fields = {name: index for index, name in enumerate(HASH_FIELDS)}
        reversed_fields = dict(reversed(list(fields.items())))

        assert compute_data_hash(fields) == compute_data_hash(reversed_fields)
        assert compute_data_hash({**fields, "last_synced_at": "later"}) == compute_data_hash(fields)


class TestTransformPage:
    """Page-level transformation never raises for bad records."""

    def test_drops_listing_missing_make(self, listing_factory):
        incomplete = listing_factory(2)
        incomplete.pop("manufacturer")

        result = transform_page([listing_factory(1), incomplete, listing_factory(3)], synced_at=SYNCED_AT)

        assert [row.id for row in result.rows] == ["10001", "10003"]
        assert len(result.rejected) == 1
        assert "make" in result.rejected[0]

    def test_shares_one_sync_timestamp(self, listing_factory):
        result = transform_page([listing_factory(i) for i in range(3)])

        assert len({row.last_synced_at for row in result.rows}) == 1
