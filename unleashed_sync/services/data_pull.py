"""Fetch the full source and destination datasets for one sync run."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from unleashed_sync.services.shopify import queries
from unleashed_sync.services.shopify.client import ShopifyClient
from unleashed_sync.services.sync.normalizers import location_gid
from unleashed_sync.services.unleashed.client import UnleashedClient

logger = logging.getLogger(__name__)


@dataclass
class SourceDataset:
    warehouses: list[dict] = field(default_factory=list)
    customers: list[dict] = field(default_factory=list)
    contacts: list[dict] = field(default_factory=list)
    products: list[dict] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        return {
            "warehouses": len(self.warehouses),
            "customers": len(self.customers),
            "contacts": len(self.contacts),
            "products": len(self.products),
        }


@dataclass
class DestinationDataset:
    locations: list[dict] = field(default_factory=list)
    customers: list[dict] = field(default_factory=list)
    products: list[dict] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        return {
            "locations": len(self.locations),
            "customers": len(self.customers),
            "products": len(self.products),
        }


# -----------------------------------------------------------------------------
# Node normalization
# -----------------------------------------------------------------------------

def _edges(connection: dict | None) -> list[dict]:
    return [edge["node"] for edge in (connection or {}).get("edges") or []]


def flatten_metafields(connection: dict | None) -> dict[str, str]:
    """Metafield edges → ``{"namespace.key": value}``."""
    return {f"{node['namespace']}.{node['key']}": node.get("value") for node in _edges(connection)}


def normalize_location(node: dict) -> dict:
    return {
        "id": location_gid(node.get("id")),
        "name": node.get("name"),
        "isActive": node.get("isActive", True),
        "address": dict(node.get("address") or {}),
        "metafields": flatten_metafields(node.get("metafields")),
        "image": next(iter(media_images(node.get("media"))), None),
    }


def normalize_customer(node: dict) -> dict:
    return {
        "id": node.get("id"),
        "firstName": node.get("firstName"),
        "lastName": node.get("lastName"),
        "email": node.get("email"),
        "phone": node.get("phone"),
        "metafields": flatten_metafields(node.get("metafields")),
    }


def _variant_inventory(inventory_item: dict) -> dict[str, int]:
    levels = {}
    for level in _edges(inventory_item.get("inventoryLevels")):
        location_id = location_gid((level.get("location") or {}).get("id"))
        available = next(
            (q.get("quantity") for q in level.get("quantities") or [] if q.get("name") == "available"),
            0,
        )
        if location_id:
            levels[location_id] = int(available or 0)
    return levels


def media_images(connection: dict | None) -> list[dict]:
    """MediaImage edges → ``[{"id", "url"}]``; other media types are skipped."""
    images = []
    for node in _edges(connection):
        url = (node.get("image") or {}).get("url")
        if node.get("id") and url:
            images.append({"id": node["id"], "url": url})
    return images


def normalize_variant(node: dict) -> dict:
    inventory_item = node.get("inventoryItem") or {}
    weight = ((inventory_item.get("measurement") or {}).get("weight") or {}).get("value")
    return {
        "id": node.get("id"),
        "sku": node.get("sku"),
        "title": node.get("title"),
        "price": node.get("price"),
        "weight": weight or 0,
        "tracked": bool(inventory_item.get("tracked")),
        "inventoryItemId": inventory_item.get("id"),
        "inventory": _variant_inventory(inventory_item),
        "metafields": flatten_metafields(node.get("metafields")),
        "image": next(iter(media_images(node.get("media"))), None),
    }


def normalize_product(node: dict) -> dict:
    return {
        "id": node.get("id"),
        "handle": node.get("handle"),
        "title": node.get("title"),
        "status": node.get("status"),
        "productType": node.get("productType"),
        "vendor": node.get("vendor"),
        "tags": node.get("tags") or [],
        "images": media_images(node.get("media")),
        "variants": [normalize_variant(variant) for variant in _edges(node.get("variants"))],
    }


# -----------------------------------------------------------------------------
# Pulls
# -----------------------------------------------------------------------------

async def pull_source_data(client: UnleashedClient, include_contacts: bool = True) -> SourceDataset:
    warehouses, customers, products = await asyncio.gather(
        client.get_warehouses(),
        client.get_customers(),
        client.get_products_with_stock(),
    )
    contacts = await client.get_contacts(customers) if include_contacts else []
    dataset = SourceDataset(warehouses=warehouses, customers=customers, contacts=contacts, products=products)
    logger.info("UNLEASHED_PULL_COMPLETE %s", " ".join(f"{k}={v}" for k, v in dataset.counts().items()))
    return dataset


async def pull_destination_data(client: ShopifyClient) -> DestinationDataset:
    locations, customers, products = await asyncio.gather(
        client.paginate(queries.LOCATIONS_QUERY, "locations"),
        client.paginate(queries.CUSTOMERS_QUERY, "customers"),
        client.paginate(queries.PRODUCTS_QUERY, "products"),
    )
    dataset = DestinationDataset(
        locations=[normalize_location(node) for node in locations],
        customers=[normalize_customer(node) for node in customers],
        products=[normalize_product(node) for node in products],
    )
    logger.info("SHOPIFY_PULL_COMPLETE %s", " ".join(f"{k}={v}" for k, v in dataset.counts().items()))
    return dataset


async def pull_all_data(
    unleashed: UnleashedClient,
    shopify: ShopifyClient,
    include_contacts: bool = True,
) -> tuple[SourceDataset, DestinationDataset]:
    return await asyncio.gather(
        pull_source_data(unleashed, include_contacts=include_contacts),
        pull_destination_data(shopify),
    )
