"""Create, update and archive Shopify products from a product mapping result.

Products are written with ``productSet``, which replaces the variant list
wholesale: variants left out of the input are removed, so a group that lost
SKUs needs no separate delete call. Images, their variant links and (for
updates) absolute inventory levels are written after the product itself
succeeds; their failures are reported on the product's entry without
failing it.
"""

from __future__ import annotations

import logging

from unleashed_sync.services.shopify import queries
from unleashed_sync.services.shopify.client import ShopifyClient, format_user_errors, user_errors
from unleashed_sync.services.sync.batching import MutationExecutor
from unleashed_sync.services.sync.location_mapping import build_location_index
from unleashed_sync.services.sync.models import ARCHIVE, CREATE, UPDATE, MappingResult
from unleashed_sync.services.sync.normalizers import clean_text
from unleashed_sync.services.sync.product_mapping import (
    STATUS_ARCHIVED,
    collapse_inventory,
    resolve_inventory,
)

logger = logging.getLogger(__name__)

WEIGHT_UNIT = "KILOGRAMS"
INVENTORY_NAME = "available"
INVENTORY_REASON = "correction"


def product_options(variants: list[dict]) -> list[dict]:
    """``productOptions`` input: option names with their values in first-seen order."""
    if not variants:
        return []
    names = variants[0]["option_names"]
    options = []
    for position, name in enumerate(names):
        values = list(dict.fromkeys(v["option_values"][position] for v in variants))
        options.append({"name": name, "values": [{"name": value} for value in values]})
    return options


class ProductMutationExecutor(MutationExecutor):
    entity = "products"
    documents = {
        CREATE: queries.PRODUCT_SET_MUTATION,
        UPDATE: queries.PRODUCT_SET_MUTATION,
        ARCHIVE: queries.PRODUCT_ARCHIVE_MUTATION,
    }
    payload_keys = {CREATE: "productSet", UPDATE: "productSet", ARCHIVE: "productUpdate"}
    batch_delay_setting = "product_batch_delay"

    def __init__(self, client: ShopifyClient, locations: list[dict] | None = None, **kwargs):
        super().__init__(client, **kwargs)
        self.location_index: dict[str, str] | None = None
        self.fallback_location_id: str | None = None
        if locations is not None:
            self.set_locations(locations)

    def set_locations(self, locations: list[dict]) -> None:
        """Resolve inventory against this location set instead of the mapped one."""
        self.location_index = build_location_index(locations)
        self.fallback_location_id = locations[0]["id"] if locations else None

    def records(self, mapping: MappingResult) -> dict[str, list[dict]]:
        for record in mapping.to_create + mapping.to_update:
            self.relocate(record)
        return {
            CREATE: mapping.to_create,
            UPDATE: mapping.to_update,
            ARCHIVE: mapping.to_archive,
        }

    def relocate(self, record: dict) -> None:
        """Re-point variant inventory at the current location set, in place."""
        if self.location_index is None:
            return
        for variant in record.get("variants") or []:
            variant["inventory"] = resolve_inventory(
                variant.get("inventory") or [], self.location_index, self.fallback_location_id
            )

    # -- input building -----------------------------------------------------

    @staticmethod
    def inventory_levels(variant: dict) -> dict[str, int]:
        return collapse_inventory(variant.get("inventory") or [])

    def variant_input(self, variant: dict, operation: str) -> dict:
        data = {
            "sku": variant["sku"],
            "price": variant["price"],
            "inventoryPolicy": "DENY",
            "optionValues": [
                {"optionName": name, "name": value}
                for name, value in zip(variant["option_names"], variant["option_values"])
            ],
            "inventoryItem": {
                "sku": variant["sku"],
                "tracked": bool(variant["tracked"]),
                "measurement": {"weight": {"value": variant["weight"], "unit": WEIGHT_UNIT}},
            },
        }
        if variant["price_tiers"]:
            data["metafields"] = variant["price_tiers"]
        if variant.get("id"):
            data["id"] = variant["id"]
        if operation == CREATE:
            levels = self.inventory_levels(variant)
            if levels:
                data["inventoryQuantities"] = [
                    {"locationId": location_id, "name": INVENTORY_NAME, "quantity": quantity}
                    for location_id, quantity in levels.items()
                ]
        return data

    def variables(self, operation: str, record: dict) -> dict:
        if operation == ARCHIVE:
            return {"input": {"id": record["id"], "status": STATUS_ARCHIVED}}

        product_input = {
            "title": record["title"],
            "handle": record["handle"],
            "descriptionHtml": record["description"],
            "productType": record["productType"],
            "vendor": record["vendor"],
            "status": record["status"],
            "tags": record["tags"],
            "productOptions": product_options(record["variants"]),
            "variants": [self.variant_input(variant, operation) for variant in record["variants"]],
        }
        if operation == UPDATE:
            product_input["id"] = record["id"]
        return {"input": product_input}

    def success_entry(self, operation: str, record: dict, payload: dict) -> dict:
        product = payload.get("product") or {}
        if operation == ARCHIVE:
            return {
                "source_id": self.source_id(record),
                "id": product.get("id") or record["id"],
                "status": product.get("status") or STATUS_ARCHIVED,
                "skus": record.get("skus") or [],
            }
        entry = {
            "source_id": record["source_id"],
            "id": product.get("id") or record.get("id"),
            "handle": product.get("handle") or record["handle"],
            "skus": record["source_skus"],
        }
        if record.get("variants_to_remove"):
            entry["variants_removed"] = list(record["variants_to_remove"])
        return entry

    # -- follow-ups ---------------------------------------------------------

    async def after_success(self, operation: str, record: dict, payload: dict, entry: dict) -> None:
        if operation == ARCHIVE or not entry.get("id"):
            return
        await self.sync_images(record, payload, entry)
        if operation == UPDATE:
            await self.sync_inventory(record, payload, entry)

    async def _media_call(self, document: str, payload_key: str, variables: dict, entry: dict, error_key: str):
        """Run one media mutation; failures land on ``entry["image_errors"]``."""
        try:
            data = await self.client.execute(document, variables)
        except Exception as e:
            logger.warning("PRODUCT_IMAGES_FAILED product=%s operation=%s error=%s", entry["id"], payload_key, e)
            entry.setdefault("image_errors", []).append({"field": None, "message": str(e)})
            return None

        result = data.get(payload_key) or {}
        errors = user_errors(result, key=error_key)
        if errors:
            logger.warning(
                "PRODUCT_IMAGES_REJECTED product=%s operation=%s errors=%s",
                entry["id"],
                payload_key,
                format_user_errors(errors),
            )
            entry.setdefault("image_errors", []).extend(errors)
            return None
        return result

    async def sync_images(self, record: dict, payload: dict, entry: dict) -> None:
        """Add missing product media, then point each variant at its own image."""
        media_ids = dict(record.get("existing_images") or {})
        new_images = [image for image in record.get("images") or [] if image["filename"] not in media_ids]
        if new_images:
            media = [
                {"originalSource": image["url"], "mediaContentType": "IMAGE", "alt": record["title"]}
                for image in new_images
            ]
            result = await self._media_call(
                queries.PRODUCT_CREATE_MEDIA_MUTATION,
                "productCreateMedia",
                {"productId": entry["id"], "media": media},
                entry,
                "mediaUserErrors",
            )
            if result is None:
                return
            entry["images_added"] = len(media)
            # Created media come back in input order.
            for image, node in zip(new_images, result.get("media") or []):
                if (node or {}).get("id"):
                    media_ids[image["filename"]] = node["id"]

        await self.link_variant_images(record, payload, entry, media_ids)

    async def link_variant_images(self, record: dict, payload: dict, entry: dict, media_ids: dict[str, str]) -> None:
        variant_ids = self._variant_ids(record, payload)
        attach, detach = [], []
        for variant in record["variants"]:
            media_id = media_ids.get(variant.get("image") or "")
            variant_id = variant_ids.get(variant["sku"])
            current_id = (variant.get("current_image") or {}).get("id")
            if not media_id or not variant_id or current_id == media_id:
                continue
            # A variant holds one image at a time.
            if current_id:
                detach.append({"variantId": variant_id, "mediaIds": [current_id]})
            attach.append({"variantId": variant_id, "mediaIds": [media_id]})
        if not attach:
            return

        if detach:
            detached = await self._media_call(
                queries.PRODUCT_VARIANT_DETACH_MEDIA_MUTATION,
                "productVariantDetachMedia",
                {"productId": entry["id"], "variantMedia": detach},
                entry,
                "userErrors",
            )
            if detached is None:
                return
        attached = await self._media_call(
            queries.PRODUCT_VARIANT_APPEND_MEDIA_MUTATION,
            "productVariantAppendMedia",
            {"productId": entry["id"], "variantMedia": attach},
            entry,
            "userErrors",
        )
        if attached is not None:
            entry["variant_images_linked"] = len(attach)

    @staticmethod
    def _payload_variants(payload: dict) -> list[dict]:
        edges = ((payload.get("product") or {}).get("variants") or {}).get("edges") or []
        return [edge.get("node") or {} for edge in edges]

    def _variant_ids(self, record: dict, payload: dict) -> dict[str, str]:
        ids = {variant["sku"]: variant["id"] for variant in record["variants"] if variant.get("id")}
        for node in self._payload_variants(payload):
            sku = clean_text(node.get("sku"))
            if sku and node.get("id"):
                ids[sku] = node["id"]
        return ids

    def _inventory_item_ids(self, record: dict, payload: dict) -> dict[str, str]:
        ids = {
            variant["sku"]: variant["inventory_item_id"]
            for variant in record["variants"]
            if variant.get("inventory_item_id")
        }
        for node in self._payload_variants(payload):
            sku = clean_text(node.get("sku"))
            item_id = (node.get("inventoryItem") or {}).get("id")
            if sku and item_id:
                ids[sku] = item_id
        return ids

    async def sync_inventory(self, record: dict, payload: dict, entry: dict) -> None:
        item_ids = self._inventory_item_ids(record, payload)
        quantities = []
        for variant in record["variants"]:
            item_id = item_ids.get(variant["sku"])
            if not item_id or not variant["tracked"]:
                continue
            for location_id, quantity in self.inventory_levels(variant).items():
                quantities.append({"inventoryItemId": item_id, "locationId": location_id, "quantity": quantity})
        if not quantities:
            return

        try:
            data = await self.client.execute(
                queries.INVENTORY_SET_QUANTITIES_MUTATION,
                {
                    "input": {
                        "name": INVENTORY_NAME,
                        "reason": INVENTORY_REASON,
                        "ignoreCompareQuantity": True,
                        "quantities": quantities,
                    }
                },
            )
        except Exception as e:
            logger.warning("PRODUCT_INVENTORY_FAILED product=%s error=%s", entry["id"], e)
            entry["inventory_errors"] = [{"field": None, "message": str(e)}]
            return

        errors = user_errors(data.get("inventorySetQuantities"))
        if errors:
            logger.warning(
                "PRODUCT_INVENTORY_REJECTED product=%s errors=%s", entry["id"], format_user_errors(errors)
            )
            entry["inventory_errors"] = errors
        else:
            entry["inventory_levels_set"] = len(quantities)
