"""Create and update Shopify customers from a customer mapping result."""

from __future__ import annotations

from unleashed_sync.services.shopify import queries
from unleashed_sync.services.sync.batching import MutationExecutor
from unleashed_sync.services.sync.models import CREATE, UPDATE

CUSTOMER_FIELDS = ("firstName", "lastName", "email", "phone")


class CustomerMutationExecutor(MutationExecutor):
    entity = "customers"
    documents = {
        CREATE: queries.CUSTOMER_CREATE_MUTATION,
        UPDATE: queries.CUSTOMER_UPDATE_MUTATION,
    }
    payload_keys = {CREATE: "customerCreate", UPDATE: "customerUpdate"}

    def variables(self, operation: str, record: dict) -> dict:
        customer_input = {name: record[name] for name in CUSTOMER_FIELDS if record.get(name)}
        customer_input["metafields"] = record["metafields"]
        if operation == UPDATE:
            customer_input["id"] = record["id"]
        return {"input": customer_input}

    def success_entry(self, operation: str, record: dict, payload: dict) -> dict:
        customer = payload.get("customer") or {}
        return {
            "source_id": record["source_id"],
            "id": customer.get("id") or record.get("id"),
            "email": customer.get("email") or record.get("email"),
        }
