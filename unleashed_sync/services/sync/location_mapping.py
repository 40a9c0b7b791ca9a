"""Map Unleashed warehouses onto Shopify locations."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from unleashed_sync.services.sync.models import (
    IDENTICAL_DATA,
    ItemOutcome,
    MappingError,
    MappingResult,
    fold_outcomes,
)
from unleashed_sync.services.sync.normalizers import (
    COUNTRY_CODE_MAPPING,
    clean_text,
    map_country_code,
    map_province_code,
)

logger = logging.getLogger(__name__)

METAFIELD_NAMESPACE = "unleashed"
WAREHOUSE_CODE_KEY = "warehouse_code"
WAREHOUSE_CODE_METAFIELD = f"{METAFIELD_NAMESPACE}.{WAREHOUSE_CODE_KEY}"

DEFAULT_ADDRESS = "Not specified"
DEFAULT_ZIP = "00000"

ADDRESS_FIELDS = ("address1", "address2", "city", "provinceCode", "countryCode", "zip", "phone")


def build_location_index(locations: list[dict]) -> dict[str, str]:
    """Warehouse code → Shopify location id, from the join-key metafield."""
    index: dict[str, str] = {}
    for location in locations or []:
        code = (location.get("metafields") or {}).get(WAREHOUSE_CODE_METAFIELD)
        if code and location.get("id") and code not in index:
            index[code] = location["id"]
    return index


class LocationMapper:
    """Partition warehouses into locations to create, update or skip.

    Lookup tables are injected so callers can opt into province mapping;
    by default province names pass through as given.
    """

    def __init__(
        self,
        country_codes: Mapping[str, str] = COUNTRY_CODE_MAPPING,
        province_codes: Mapping[str, str] | None = None,
    ):
        self.country_codes = country_codes
        self.province_codes = province_codes

    def map(self, warehouses: list[dict], locations: list[dict]) -> MappingResult:
        if not isinstance(warehouses, list) or not isinstance(locations, list):
            raise MappingError("warehouses and locations must be lists")

        logger.info(
            "LOCATION_MAPPING_START warehouses=%d locations=%d",
            len(warehouses),
            len(locations),
        )
        result = MappingResult(entity="locations")
        result.details["source_count"] = len(warehouses)
        result.details["destination_count"] = len(locations)

        by_code: dict[str, dict] = {}
        by_name: dict[str, dict] = {}
        for location in locations:
            code = (location.get("metafields") or {}).get(WAREHOUSE_CODE_METAFIELD)
            if code:
                by_code.setdefault(code, location)
            name = clean_text(location.get("name")).lower()
            if name:
                by_name.setdefault(name, location)

        fold_outcomes(
            result,
            warehouses,
            lambda warehouse: self._map_one(warehouse, by_code, by_name),
            key=lambda warehouse: warehouse.get("WarehouseCode") or "<missing>",
        )

        logger.info(
            "LOCATION_MAPPING_COMPLETE create=%d update=%d skipped=%d errors=%d",
            len(result.to_create),
            len(result.to_update),
            len(result.skipped),
            len(result.errors),
        )
        return result

    def build_location(self, warehouse: dict) -> dict:
        code = clean_text(warehouse.get("WarehouseCode"))
        if not code:
            raise ValueError("Warehouse has no WarehouseCode")

        return {
            "source_id": code,
            "warehouse_code": code,
            "name": clean_text(warehouse.get("WarehouseName")) or code,
            "address": {
                "address1": clean_text(warehouse.get("AddressLine1")) or DEFAULT_ADDRESS,
                "address2": clean_text(warehouse.get("AddressLine2")) or None,
                "city": clean_text(warehouse.get("City")) or clean_text(warehouse.get("Suburb")) or DEFAULT_ADDRESS,
                "provinceCode": map_province_code(
                    clean_text(warehouse.get("Region")) or None, self.province_codes
                ),
                "countryCode": map_country_code(
                    clean_text(warehouse.get("Country")) or None, self.country_codes
                ),
                "zip": clean_text(warehouse.get("PostCode")) or DEFAULT_ZIP,
                "phone": clean_text(warehouse.get("PhoneNumber")) or None,
            },
            "metafields": [
                {
                    "namespace": METAFIELD_NAMESPACE,
                    "key": WAREHOUSE_CODE_KEY,
                    "type": "single_line_text_field",
                    "value": code,
                }
            ],
        }

    def _map_one(self, warehouse: dict, by_code: dict[str, dict], by_name: dict[str, dict]) -> ItemOutcome:
        record = self.build_location(warehouse)
        code = record["warehouse_code"]

        match = by_code.get(code)
        matched_by = "metafield"
        if match is None:
            match = by_name.get(record["name"].lower())
            matched_by = "name"

        if match is None:
            logger.debug("LOCATION_NO_MATCH warehouse=%s name=%s", code, record["name"])
            return ItemOutcome.create(code, record)

        differences = compare_location(record, match)
        if not differences:
            return ItemOutcome.skip(code, IDENTICAL_DATA)

        record.update(
            {
                "id": match["id"],
                "matched_by": matched_by,
                "write_metafield": matched_by == "name",
                "differences": differences,
            }
        )
        logger.debug("LOCATION_CHANGED warehouse=%s differences=%s", code, differences)
        return ItemOutcome.update(code, record)


def _same(a, b) -> bool:
    return (a or None) == (b or None)


def compare_location(record: dict, location: dict) -> list[str]:
    differences = []
    if not _same(record["name"], location.get("name")):
        differences.append(f'name: "{location.get("name")}" → "{record["name"]}"')

    current = location.get("address") or {}
    for name in ADDRESS_FIELDS:
        wanted = record["address"].get(name)
        existing = current.get(name)
        if not _same(clean_text(wanted), clean_text(existing)):
            differences.append(f'{name}: "{existing}" → "{wanted}"')

    stored_code = (location.get("metafields") or {}).get(WAREHOUSE_CODE_METAFIELD)
    if stored_code != record["warehouse_code"]:
        differences.append(f'metafield {WAREHOUSE_CODE_METAFIELD}: "{stored_code}" → "{record["warehouse_code"]}"')
    return differences


def map_locations(
    warehouses: list[dict],
    locations: list[dict],
    country_codes: Mapping[str, str] = COUNTRY_CODE_MAPPING,
    province_codes: Mapping[str, str] | None = None,
) -> MappingResult:
    return LocationMapper(country_codes, province_codes).map(warehouses, locations)
