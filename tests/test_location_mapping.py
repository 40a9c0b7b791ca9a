"""Tests for warehouse → location mapping."""

import pytest

from unleashed_sync.services.sync.location_mapping import (
    DEFAULT_ADDRESS,
    DEFAULT_ZIP,
    WAREHOUSE_CODE_METAFIELD,
    LocationMapper,
    build_location_index,
    map_locations,
)
from unleashed_sync.services.sync.models import IDENTICAL_DATA, MappingError
from unleashed_sync.services.sync.normalizers import PROVINCE_CODE_MAPPING


def _make_warehouse(**overrides):
    return {
        "WarehouseCode": "WH1",
        "WarehouseName": "Main",
        "AddressLine1": "1 Dock Rd",
        "City": "Sydney",
        "Region": "New South Wales",
        "Country": "Australia",
        "PostCode": "2000",
        **overrides,
    }


def _location_from(record, location_id="gid://shopify/Location/1", **overrides):
    """A destination location that already mirrors ``record``."""
    return {
        "id": location_id,
        "name": record["name"],
        "isActive": True,
        "address": dict(record["address"]),
        "metafields": {WAREHOUSE_CODE_METAFIELD: record["warehouse_code"]},
        **overrides,
    }


# ---------------------------------------------------------------------------
# Record building
# ---------------------------------------------------------------------------


class TestBuildLocation:
    def test_scenario_new_warehouse_is_created_with_country_code(self):
        result = map_locations([{"WarehouseCode": "WH1", "WarehouseName": "Main", "Country": "Australia"}], [])

        assert len(result.to_create) == 1
        record = result.to_create[0]
        assert record["address"]["countryCode"] == "AU"
        assert record["name"] == "Main"
        assert record["metafields"][0]["value"] == "WH1"

    def test_defaults_for_missing_address_parts(self):
        record = LocationMapper().build_location({"WarehouseCode": "WH9"})

        assert record["name"] == "WH9"
        assert record["address"]["address1"] == DEFAULT_ADDRESS
        assert record["address"]["city"] == DEFAULT_ADDRESS
        assert record["address"]["zip"] == DEFAULT_ZIP
        assert record["address"]["phone"] is None

    def test_null_literals_are_blank(self):
        record = LocationMapper().build_location(_make_warehouse(AddressLine2="null", City="null", Suburb="Mascot"))

        assert record["address"]["address2"] is None
        assert record["address"]["city"] == "Mascot"

    def test_province_passes_through_unless_mapping_injected(self):
        plain = LocationMapper().build_location(_make_warehouse())
        mapped = LocationMapper(province_codes=PROVINCE_CODE_MAPPING).build_location(_make_warehouse())

        assert plain["address"]["provinceCode"] == "New South Wales"
        assert mapped["address"]["provinceCode"] == "NSW"


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


class TestMapLocations:
    def test_identical_location_is_skipped(self):
        record = LocationMapper().build_location(_make_warehouse())
        result = map_locations([_make_warehouse()], [_location_from(record)])

        assert result.to_create == []
        assert result.to_update == []
        assert result.skipped == [{"source_id": "WH1", "reason": IDENTICAL_DATA}]

    def test_changed_address_is_updated_via_metafield(self):
        record = LocationMapper().build_location(_make_warehouse())
        location = _location_from(record, name="Old name")

        result = map_locations([_make_warehouse()], [location])

        assert len(result.to_update) == 1
        update = result.to_update[0]
        assert update["id"] == location["id"]
        assert update["matched_by"] == "metafield"
        assert update["write_metafield"] is False
        assert any(diff.startswith("name:") for diff in update["differences"])

    def test_name_match_writes_join_metafield(self):
        record = LocationMapper().build_location(_make_warehouse())
        location = _location_from(record, name="MAIN", metafields={})

        result = map_locations([_make_warehouse()], [location])

        update = result.to_update[0]
        assert update["matched_by"] == "name"
        assert update["write_metafield"] is True
        assert any(WAREHOUSE_CODE_METAFIELD in diff for diff in update["differences"])

    def test_partition_covers_every_warehouse(self):
        warehouses = [
            _make_warehouse(WarehouseCode="A", WarehouseName="Alpha"),
            _make_warehouse(WarehouseCode="B", WarehouseName="Beta"),
            _make_warehouse(WarehouseCode="", WarehouseName="Broken"),
        ]
        record = LocationMapper().build_location(warehouses[1])

        result = map_locations(warehouses, [_location_from(record)])

        assert result.processed == 3
        assert {"A", "B"} <= result.covered_source_keys()
        assert len(result.errors) == 1
        assert result.errors[0]["source_id"] == "<missing>"

    def test_rerun_against_post_run_state_is_idempotent(self):
        warehouses = [_make_warehouse(WarehouseCode="A"), _make_warehouse(WarehouseCode="B", WarehouseName="Beta")]
        first = map_locations(warehouses, [])
        destination = [
            _location_from(record, location_id=f"gid://shopify/Location/{i}")
            for i, record in enumerate(first.to_create)
        ]

        second = map_locations(warehouses, destination)

        assert second.to_create == []
        assert second.to_update == []
        assert [entry["reason"] for entry in second.skipped] == [IDENTICAL_DATA, IDENTICAL_DATA]

    def test_non_list_input_raises(self):
        with pytest.raises(MappingError):
            map_locations({"WarehouseCode": "A"}, [])


class TestBuildLocationIndex:
    def test_index_by_metafield(self):
        locations = [
            {"id": "gid://shopify/Location/1", "metafields": {WAREHOUSE_CODE_METAFIELD: "A"}},
            {"id": "gid://shopify/Location/2", "metafields": {}},
            {"id": "gid://shopify/Location/3", "metafields": {WAREHOUSE_CODE_METAFIELD: "A"}},
        ]
        assert build_location_index(locations) == {"A": "gid://shopify/Location/1"}
