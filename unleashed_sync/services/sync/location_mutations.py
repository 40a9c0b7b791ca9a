"""Create and update Shopify locations from a location mapping result."""

from __future__ import annotations

from unleashed_sync.services.shopify import queries
from unleashed_sync.services.sync.batching import MutationExecutor
from unleashed_sync.services.sync.models import CREATE, UPDATE


def _address_input(address: dict) -> dict:
    return {name: value for name, value in address.items() if value is not None}


class LocationMutationExecutor(MutationExecutor):
    entity = "locations"
    documents = {
        CREATE: queries.LOCATION_ADD_MUTATION,
        UPDATE: queries.LOCATION_EDIT_MUTATION,
    }
    payload_keys = {CREATE: "locationAdd", UPDATE: "locationEdit"}

    def variables(self, operation: str, record: dict) -> dict:
        location_input = {
            "name": record["name"],
            "address": _address_input(record["address"]),
            "fulfillsOnlineOrders": True,
            "metafields": record["metafields"],
        }
        if operation == CREATE:
            return {"input": location_input}
        return {"id": record["id"], "input": location_input}

    def success_entry(self, operation: str, record: dict, payload: dict) -> dict:
        location = payload.get("location") or {}
        return {
            "source_id": record["source_id"],
            "warehouse_code": record["warehouse_code"],
            "id": location.get("id") or record.get("id"),
            "name": location.get("name") or record["name"],
        }
