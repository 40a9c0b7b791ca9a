"""Map Unleashed products onto Shopify products and variants.

Pipeline: de-duplicate the source feed by product code, drop products that
are not sellable, group the rest into multi-variant products, build the
desired Shopify record per group and decide create / update / skip / error
against the destination by SKU membership. Destination products whose SKUs
have all left the source feed are queued for archive.

Every group gets a decision log entry so a run can be audited without
re-running it.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable

from unleashed_sync.config import settings
from unleashed_sync.services.sync.location_mapping import build_location_index
from unleashed_sync.services.sync.models import (
    ARCHIVE,
    CREATE,
    ERROR,
    IDENTICAL_DATA,
    SKIP,
    UPDATE,
    ItemOutcome,
    MappingError,
    MappingResult,
)
from unleashed_sync.services.sync.normalizers import (
    clean_text,
    format_price,
    get_default_warehouse_code,
    image_filename,
    resolve_quantity,
    resolve_warehouse_code,
    slugify,
    to_float,
)

logger = logging.getLogger(__name__)

PRODUCT_TITLE_ATTRIBUTE = "Product Title"
OPTION_NAMES_ATTRIBUTE = "Option Names"
OPTION_VALUE_ATTRIBUTES = ("Option 1 Value", "Option 2 Value", "Option 3 Value")
MAX_OPTIONS = 3
PRICE_TIER_COUNT = 10
PRICE_TIER_NAMESPACE = "custom"
WEIGHT_TOLERANCE = 0.01

DEFAULT_OPTION_NAME = "Title"
DEFAULT_OPTION_VALUE = "Default Title"
PADDING_OPTION_VALUE = "Default"

STATUS_ACTIVE = "ACTIVE"
STATUS_ARCHIVED = "ARCHIVED"

NOT_SELLABLE = "not_sellable"


# -----------------------------------------------------------------------------
# Source field access
# -----------------------------------------------------------------------------

def get_attribute(product: dict, name: str) -> str:
    """Read a named attribute from a product's AttributeSet.

    Unleashed returns either ``{"Attributes": [{"Name", "Value"}]}`` or a
    flat mapping; both shapes are accepted.
    """
    attribute_set = product.get("AttributeSet")
    if not isinstance(attribute_set, dict):
        return ""
    attributes = attribute_set.get("Attributes")
    if isinstance(attributes, list):
        for attribute in attributes:
            if isinstance(attribute, dict) and attribute.get("Name") == name:
                return clean_text(attribute.get("Value"))
    return clean_text(attribute_set.get(name) or attribute_set.get(name.replace(" ", "")))


def parse_option_names(value: str | None) -> list[str]:
    if not value:
        return []
    names = [name.strip() for name in re.split(r"[,|]", value)]
    return [name for name in names if name][:MAX_OPTIONS]


def option_values(product: dict) -> list[str]:
    return [get_attribute(product, name) for name in OPTION_VALUE_ATTRIBUTES]


def variant_title(product: dict) -> str:
    values = [value for value in option_values(product) if value]
    if values:
        return " / ".join(values)
    return clean_text(product.get("ProductCode"))


def _nested_name(product: dict, field: str, key: str) -> str:
    value = product.get(field)
    if isinstance(value, dict):
        return clean_text(value.get(key))
    return ""


def collect_images(product: dict) -> list[dict]:
    """Image URLs from Images, ImageUrl and Attachments, unique by filename."""
    urls: list[str] = []
    images = product.get("Images") or []
    if isinstance(images, list):
        ordered = sorted(
            (image for image in images if isinstance(image, dict)),
            key=lambda image: not image.get("IsDefault"),
        )
        urls.extend(clean_text(image.get("Url")) for image in ordered)
    urls.append(clean_text(product.get("ImageUrl")))
    attachments = product.get("Attachments") or []
    if isinstance(attachments, list):
        for attachment in attachments:
            if isinstance(attachment, dict):
                urls.append(clean_text(attachment.get("DownloadUrl") or attachment.get("Url")))
    return _unique_images(urls)


def _unique_images(urls: Iterable[str]) -> list[dict]:
    seen: set[str] = set()
    images = []
    for url in urls:
        filename = image_filename(url)
        if not url or not filename or filename in seen:
            continue
        seen.add(filename)
        images.append({"url": url, "filename": filename})
    return images


def merge_images(members: list[dict]) -> list[dict]:
    """Images of every group member, unique by filename.

    Each image keeps ``variant_skus``: the members whose own images include
    it, in member order.
    """
    merged: dict[str, dict] = {}
    for member in members:
        sku = clean_text(member.get("ProductCode"))
        for image in collect_images(member):
            entry = merged.setdefault(image["filename"], {**image, "variant_skus": []})
            if sku and sku not in entry["variant_skus"]:
                entry["variant_skus"].append(sku)
    return list(merged.values())


# -----------------------------------------------------------------------------
# Step 1-3: de-duplicate, filter, group
# -----------------------------------------------------------------------------

def _stock_totals(entries: Iterable[dict]) -> dict[str | None, float]:
    totals: dict[str | None, float] = {}
    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        code = resolve_warehouse_code(entry)
        totals[code] = totals.get(code, 0.0) + resolve_quantity(entry)
    return totals


def deduplicate_products(products: list[dict]) -> tuple[list[dict], list[dict]]:
    """Merge products sharing a ProductCode.

    Per-warehouse stock is summed, every other field comes from the first
    occurrence. Returns the unique products (feed order) and a merge log.
    """
    unique: dict[str, dict] = {}
    stock: dict[str, dict[str | None, float]] = {}
    merges: list[dict] = []
    for product in products:
        code = clean_text(product.get("ProductCode"))
        if code not in unique:
            unique[code] = product
            continue
        if code not in stock:
            stock[code] = _stock_totals(unique[code].get("StockOnHand"))
        for warehouse, quantity in _stock_totals(product.get("StockOnHand")).items():
            stock[code][warehouse] = stock[code].get(warehouse, 0.0) + quantity
        merges.append({"sku": code, "warehouses": sorted(str(w) for w in stock[code])})
        logger.info("PRODUCT_SKU_MERGED sku=%s", code)

    for code, totals in stock.items():
        merged = dict(unique[code])
        merged["StockOnHand"] = [
            {"WarehouseCode": warehouse, "QuantityAvailable": quantity}
            for warehouse, quantity in totals.items()
        ]
        unique[code] = merged
    return list(unique.values()), merges


def group_key(product: dict) -> str:
    return get_attribute(product, PRODUCT_TITLE_ATTRIBUTE) or clean_text(product.get("ProductCode"))


def group_products(products: Iterable[dict]) -> dict[tuple[bool, str], list[dict]]:
    """Group products by title; untitled products form single-member groups.

    Keys are ``(titled, key)`` so a product code never collides with a
    group title that happens to spell the same text.
    """
    groups: dict[tuple[bool, str], list[dict]] = {}
    for product in products:
        titled = bool(get_attribute(product, PRODUCT_TITLE_ATTRIBUTE))
        groups.setdefault((titled, group_key(product)), []).append(product)
    return groups


# -----------------------------------------------------------------------------
# Inventory resolution
# -----------------------------------------------------------------------------

def resolve_inventory(
    entries: Iterable[dict],
    location_index: dict[str, str],
    fallback_location_id: str | None,
) -> list[dict]:
    """Point each warehouse entry at a Shopify location id.

    Warehouses without a matching location fall back to the first known
    location.
    """
    resolved = []
    for entry in entries:
        location_id = location_index.get(entry.get("warehouse_code") or "") or fallback_location_id
        resolved.append({**entry, "location_id": location_id})
    return resolved


def collapse_inventory(entries: Iterable[dict]) -> dict[str, int]:
    """Sum resolved quantities per location id."""
    totals: dict[str, float] = {}
    for entry in entries:
        location_id = entry.get("location_id")
        if not location_id:
            continue
        totals[location_id] = totals.get(location_id, 0.0) + entry.get("quantity", 0)
    return {location_id: int(quantity) for location_id, quantity in totals.items()}


def _price_tier_amount(value) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, str) and value.strip().startswith("{"):
        try:
            value = json.loads(value).get("amount")
        except (ValueError, AttributeError):
            return None
    amount = to_float(value)
    return format_price(amount) if amount else None


# -----------------------------------------------------------------------------
# Mapper
# -----------------------------------------------------------------------------

class ProductMapper:
    def __init__(
        self,
        shopify_products: list[dict],
        shopify_locations: list[dict],
        warehouses: list[dict] | None = None,
        currency: str | None = None,
        default_product_type: str | None = None,
        default_vendor: str | None = None,
    ):
        self.shopify_products = shopify_products
        self.location_index = build_location_index(shopify_locations)
        self.fallback_location_id = shopify_locations[0]["id"] if shopify_locations else None
        self.default_warehouse_code = get_default_warehouse_code(warehouses)
        self.currency = currency or settings.price_tier_currency
        self.default_product_type = default_product_type or settings.default_product_type
        self.default_vendor = default_vendor or settings.default_vendor

        self.products_by_id: dict[str, dict] = {}
        self.sku_index: dict[str, list[tuple[dict, dict]]] = {}
        self.duplicate_skus: list[dict] = []
        # Filled by map(): every de-duplicated source SKU and the group owning it.
        self.source_skus: set[str] = set()
        self.sku_groups: dict[str, str] = {}
        self._build_sku_index()
        self._used_handles = {
            product.get("handle") for product in shopify_products if product.get("handle")
        }

    def _build_sku_index(self) -> None:
        for product in self.shopify_products:
            self.products_by_id[product["id"]] = product
            for variant in product.get("variants") or []:
                sku = clean_text(variant.get("sku"))
                if sku:
                    self.sku_index.setdefault(sku, []).append((product, variant))

        for sku, entries in self.sku_index.items():
            product_ids = list(dict.fromkeys(product["id"] for product, _ in entries))
            if len(entries) > 1:
                self.duplicate_skus.append({"sku": sku, "product_ids": product_ids})
                logger.warning("SHOPIFY_DUPLICATE_SKU sku=%s products=%s", sku, product_ids)

    # -- building -----------------------------------------------------------

    def _variant_inventory(self, product: dict) -> list[dict]:
        entries: dict[str, float] = {}
        for warehouse, quantity in _stock_totals(product.get("StockOnHand")).items():
            code = warehouse or self.default_warehouse_code or ""
            entries[code] = entries.get(code, 0.0) + quantity
        raw = [{"warehouse_code": code or None, "quantity": quantity} for code, quantity in entries.items()]
        return resolve_inventory(raw, self.location_index, self.fallback_location_id)

    def _price_tiers(self, product: dict) -> list[dict]:
        tiers = []
        for index in range(1, PRICE_TIER_COUNT + 1):
            tier = product.get(f"SellPriceTier{index}")
            value = tier.get("Value") if isinstance(tier, dict) else tier
            amount = _price_tier_amount(value)
            if amount is None:
                continue
            tiers.append(
                {
                    "namespace": PRICE_TIER_NAMESPACE,
                    "key": f"price_tier_{index}",
                    "type": "money",
                    "value": json.dumps({"amount": amount, "currency_code": self.currency}),
                }
            )
        return tiers

    def build_variant(self, product: dict) -> dict:
        sku = clean_text(product.get("ProductCode"))
        sellable = bool(product.get("IsSellable"))
        images = collect_images(product)
        return {
            "sku": sku,
            "title": variant_title(product),
            "price": format_price(product.get("DefaultSellPrice")),
            "weight": to_float(product.get("Weight")),
            "tracked": sellable and not product.get("NeverDiminishing"),
            "option_values": [value for value in option_values(product) if value],
            "price_tiers": self._price_tiers(product),
            "inventory": self._variant_inventory(product),
            "image": images[0]["filename"] if images else None,
        }

    def build_product(self, key: str, members: list[dict]) -> dict:
        main = members[0]
        code = clean_text(main.get("ProductCode"))
        group_title = get_attribute(main, PRODUCT_TITLE_ATTRIBUTE)
        description = clean_text(main.get("ProductDescription"))
        title = group_title or description or code

        option_names: list[str] = []
        for member in members:
            option_names = parse_option_names(get_attribute(member, OPTION_NAMES_ATTRIBUTE))
            if option_names:
                break

        variants = [self.build_variant(member) for member in members]
        self._assign_options(option_names, variants)

        tags = []
        for tag in (
            _nested_name(main, "ProductSubGroup", "GroupName"),
            _nested_name(main, "ProductGroup", "GroupName"),
        ):
            if tag and tag not in tags:
                tags.append(tag)

        images = merge_images(members)

        return {
            "source_id": key,
            "source_skus": [variant["sku"] for variant in variants],
            "handle": slugify(group_title or description or code) or slugify(code),
            "title": title,
            "description": clean_text(main.get("Notes")) or description,
            "productType": _nested_name(main, "ProductGroup", "GroupName") or self.default_product_type,
            "vendor": _nested_name(main, "ProductBrand", "BrandName") or self.default_vendor,
            "status": STATUS_ARCHIVED if main.get("Obsolete") else STATUS_ACTIVE,
            "tags": tags,
            "options": variants[0]["option_names"] if variants else [],
            "variants": variants,
            "images": images,
        }

    @staticmethod
    def _assign_options(option_names: list[str], variants: list[dict]) -> None:
        """Give every variant one value per product option."""
        width = max((len(v["option_values"]) for v in variants), default=0)
        if not option_names and width:
            option_names = [f"Option {i + 1}" for i in range(width)]

        seen: set[tuple[str, ...]] = set()
        for variant in variants:
            if not option_names:
                variant["option_names"] = [DEFAULT_OPTION_NAME]
                variant["option_values"] = [DEFAULT_OPTION_VALUE if len(variants) == 1 else variant["title"]]
                continue
            values = variant["option_values"][: len(option_names)] or [variant["title"] or variant["sku"]]
            values += [PADDING_OPTION_VALUE] * (len(option_names) - len(values))
            # Combinations must be unique within a product.
            if tuple(values) in seen:
                values[-1] = variant["sku"]
            seen.add(tuple(values))
            variant["option_names"] = list(option_names)
            variant["option_values"] = values

    # -- comparison ---------------------------------------------------------

    def compare(self, record: dict, existing: dict) -> list[str]:
        differences = []
        for name in ("title", "status", "productType", "vendor"):
            if clean_text(record.get(name)) != clean_text(existing.get(name)):
                differences.append(f'{name}: "{existing.get(name)}" → "{record.get(name)}"')

        existing_files = {
            image_filename(image.get("url")) for image in existing.get("images") or []
        }
        missing = [image["filename"] for image in record["images"] if image["filename"] not in existing_files]
        if missing:
            differences.append(f"images: missing {missing}")

        variants_by_sku = {
            clean_text(v.get("sku")): v for v in existing.get("variants") or [] if v.get("sku")
        }
        for variant in record["variants"]:
            current = variants_by_sku.get(variant["sku"])
            if current is None:
                differences.append(f"variant {variant['sku']}: missing")
                continue
            differences.extend(self._compare_variant(variant, current))
        return differences

    def _compare_variant(self, variant: dict, current: dict) -> list[str]:
        sku = variant["sku"]
        differences = []
        if variant["price"] != format_price(current.get("price")):
            differences.append(f'variant {sku} price: "{format_price(current.get("price"))}" → "{variant["price"]}"')
        if abs(variant["weight"] - to_float(current.get("weight"))) > WEIGHT_TOLERANCE:
            differences.append(f'variant {sku} weight: "{current.get("weight")}" → "{variant["weight"]}"')
        if bool(variant["tracked"]) != bool(current.get("tracked")):
            differences.append(f'variant {sku} tracked: "{current.get("tracked")}" → "{variant["tracked"]}"')

        # Levels are only written for tracked variants.
        if variant["tracked"]:
            stored_inventory = current.get("inventory") or {}
            for location_id, quantity in collapse_inventory(variant["inventory"]).items():
                existing = int(to_float(stored_inventory.get(location_id)))
                if existing != quantity:
                    differences.append(f'variant {sku} inventory {location_id}: "{existing}" → "{quantity}"')

        if variant.get("image"):
            linked = image_filename((current.get("image") or {}).get("url"))
            if linked != variant["image"]:
                differences.append(f'variant {sku} image: "{linked}" → "{variant["image"]}"')

        stored_metafields = current.get("metafields") or {}
        for tier in variant["price_tiers"]:
            key = f'{tier["namespace"]}.{tier["key"]}'
            wanted = _price_tier_amount(tier["value"])
            existing = _price_tier_amount(stored_metafields.get(key))
            if wanted != existing:
                differences.append(f'variant {sku} {tier["key"]}: "{existing}" → "{wanted}"')
        return differences

    # -- decisions ----------------------------------------------------------

    def related_products(self, skus: Iterable[str]) -> list[dict]:
        related: dict[str, dict] = {}
        for sku in skus:
            for product, _ in self.sku_index.get(sku, []):
                related.setdefault(product["id"], product)
        return list(related.values())

    def _reserve_handle(self, record: dict) -> None:
        handle = record["handle"]
        if handle in self._used_handles:
            handle = f"{handle}-{slugify(record['source_skus'][0])}"
            record["handle"] = handle
        self._used_handles.add(handle)

    def decide(self, key: str, members: list[dict]) -> tuple[ItemOutcome, dict]:
        record = self.build_product(key, members)
        skus = record["source_skus"]
        related = self.related_products(skus)
        log = {
            "group_key": key,
            "source_skus": skus,
            "related_products": [product["id"] for product in related],
        }

        if not related:
            self._reserve_handle(record)
            return ItemOutcome.create(key, record, source_keys=skus), {
                **log,
                "decision": CREATE,
                "reasoning": "no Shopify product holds any of the group's SKUs",
            }

        if len(related) > 1:
            message = f"SKUs {skus} are spread across {len(related)} Shopify products; manual review required"
            return ItemOutcome.error(key, message, field="sku", source_keys=skus), {
                **log,
                "decision": ERROR,
                "reasoning": message,
            }

        existing = related[0]
        existing_skus = {
            clean_text(v.get("sku")) for v in existing.get("variants") or [] if clean_text(v.get("sku"))
        }
        group_skus = set(skus)
        missing = sorted(group_skus - existing_skus)
        extra = sorted(existing_skus - group_skus)

        if missing:
            self._reserve_handle(record)
            return ItemOutcome.create(key, record, source_keys=skus), {
                **log,
                "decision": CREATE,
                "reasoning": f"Shopify product {existing['id']} lacks SKUs {missing}; creating a separate product",
            }

        # productSet drops every variant left out of the input, so only SKUs
        # gone from the feed may be removed.
        retained = [sku for sku in extra if sku in self.source_skus]
        if retained:
            owners = sorted({self.sku_groups[sku] for sku in retained if sku in self.sku_groups})
            message = f"Shopify product {existing['id']} also holds SKUs {retained} still in the source feed"
            if owners:
                message += f" under groups {owners}"
            message += "; manual review required"
            return ItemOutcome.error(key, message, field="sku", source_keys=skus), {
                **log,
                "decision": ERROR,
                "reasoning": message,
            }

        differences = self.compare(record, existing)
        variants_by_sku = {clean_text(v.get("sku")): v for v in existing.get("variants") or []}
        to_remove = [variants_by_sku[sku]["id"] for sku in extra if variants_by_sku[sku].get("id")]
        if to_remove:
            differences.append(f"variants to remove: {extra}")

        if not differences:
            return ItemOutcome.skip(key, IDENTICAL_DATA, source_keys=skus), {
                **log,
                "decision": SKIP,
                "reasoning": "all comparable fields identical",
            }

        record["id"] = existing["id"]
        record["handle"] = existing.get("handle") or record["handle"]
        record["existing_images"] = {
            image_filename(image.get("url")): image.get("id")
            for image in existing.get("images") or []
            if image.get("url")
        }
        for variant in record["variants"]:
            current = variants_by_sku[variant["sku"]]
            variant["id"] = current.get("id")
            variant["inventory_item_id"] = current.get("inventoryItemId")
            variant["current_image"] = current.get("image")
        record["variants_to_remove"] = to_remove
        record["differences"] = differences
        return ItemOutcome.update(key, record, source_keys=skus), {
            **log,
            "decision": UPDATE,
            "reasoning": "; ".join(differences),
        }

    def archive_candidates(self, source_skus: set[str]) -> list[dict]:
        to_archive = []
        for product in self.shopify_products:
            if (product.get("status") or "").upper() == STATUS_ARCHIVED:
                continue
            skus = [clean_text(v.get("sku")) for v in product.get("variants") or [] if clean_text(v.get("sku"))]
            if any(sku in source_skus for sku in skus):
                continue
            to_archive.append(
                {
                    "id": product["id"],
                    "handle": product.get("handle"),
                    "title": product.get("title"),
                    "skus": skus,
                }
            )
        return to_archive

    def map(self, products: list[dict]) -> MappingResult:
        result = MappingResult(entity="products")
        unique, merges = deduplicate_products(products)
        source_skus = {clean_text(p.get("ProductCode")) for p in unique if clean_text(p.get("ProductCode"))}

        sellable = []
        for product in unique:
            code = clean_text(product.get("ProductCode"))
            if not code:
                result.add(ItemOutcome.error("<missing>", "Product has no ProductCode", field="ProductCode"))
            elif not product.get("IsSellable"):
                result.add(ItemOutcome.skip(code, NOT_SELLABLE))
            else:
                sellable.append(product)

        groups = group_products(sellable)
        self.source_skus = source_skus
        self.sku_groups = {
            clean_text(member.get("ProductCode")): key for (_, key), members in groups.items() for member in members
        }
        for (_, key), members in groups.items():
            try:
                outcome, log = self.decide(key, members)
            except Exception as e:
                skus = [clean_text(m.get("ProductCode")) for m in members]
                logger.warning("PRODUCT_GROUP_FAILED group=%s error=%s", key, e)
                outcome = ItemOutcome.error(key, str(e), source_keys=skus)
                log = {
                    "group_key": key,
                    "source_skus": skus,
                    "related_products": [],
                    "decision": ERROR,
                    "reasoning": str(e),
                }
            result.add(outcome)
            result.decision_log.append(log)

        result.to_archive = self.archive_candidates(source_skus)
        for entry in result.to_archive:
            result.decision_log.append(
                {
                    "group_key": entry["handle"] or entry["id"],
                    "source_skus": [],
                    "related_products": [entry["id"]],
                    "decision": ARCHIVE,
                    "reasoning": f"none of {entry['skus']} remain in the source feed",
                }
            )

        result.duplicate_skus = self.duplicate_skus
        result.details.update(
            {
                "source_count": len(products),
                "unique_count": len(unique),
                "merged_skus": merges,
                "group_count": len(groups),
                "destination_count": len(self.shopify_products),
            }
        )
        return result


def map_products(
    products: list[dict],
    shopify_products: list[dict],
    shopify_locations: list[dict] | None = None,
    warehouses: list[dict] | None = None,
    currency: str | None = None,
) -> MappingResult:
    if not isinstance(products, list) or not isinstance(shopify_products, list):
        raise MappingError("products must be lists")

    logger.info(
        "PRODUCT_MAPPING_START products=%d shopify_products=%d",
        len(products),
        len(shopify_products),
    )
    mapper = ProductMapper(shopify_products, shopify_locations or [], warehouses, currency)
    result = mapper.map(products)
    logger.info(
        "PRODUCT_MAPPING_COMPLETE create=%d update=%d archive=%d skipped=%d errors=%d duplicates=%d",
        len(result.to_create),
        len(result.to_update),
        len(result.to_archive),
        len(result.skipped),
        len(result.errors),
        len(result.duplicate_skus),
    )
    return result
