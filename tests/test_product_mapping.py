"""Tests for product grouping, diffing and archive decisions."""

import json
from unittest.mock import patch

import pytest

from unleashed_sync.services.sync.location_mapping import WAREHOUSE_CODE_METAFIELD
from unleashed_sync.services.sync.models import ARCHIVE, CREATE, ERROR, IDENTICAL_DATA, MappingError
from unleashed_sync.services.sync.product_mapping import (
    NOT_SELLABLE,
    ProductMapper,
    collapse_inventory,
    collect_images,
    deduplicate_products,
    get_attribute,
    group_products,
    map_products,
    merge_images,
    parse_option_names,
)

LOCATION_ID = "gid://shopify/Location/1"
LOCATIONS = [{"id": LOCATION_ID, "name": "Main", "metafields": {WAREHOUSE_CODE_METAFIELD: "WH1"}}]
WAREHOUSES = [{"WarehouseCode": "WH1", "IsDefault": True}]


def _make_product(code="A", title=None, option_names=None, option_value=None, **overrides):
    attributes = []
    if title:
        attributes.append({"Name": "Product Title", "Value": title})
    if option_names:
        attributes.append({"Name": "Option Names", "Value": option_names})
    if option_value:
        attributes.append({"Name": "Option 1 Value", "Value": option_value})
    return {
        "ProductCode": code,
        "ProductDescription": f"Product {code}",
        "IsSellable": True,
        "DefaultSellPrice": 10,
        "Weight": 1.0,
        "AttributeSet": {"Attributes": attributes},
        "StockOnHand": [{"WarehouseCode": "WH1", "QuantityAvailable": 5}],
        **overrides,
    }


def _shirt(code, size, **overrides):
    return _make_product(code, title="Shirt", option_names="Size", option_value=size, **overrides)


def _map(products, shopify_products=None):
    return map_products(products, shopify_products or [], LOCATIONS, WAREHOUSES, currency="AUD")


def _shopify_from(record, product_id="gid://shopify/Product/1", **overrides):
    """A destination product that already mirrors a built record."""
    media = {
        image["filename"]: {"id": f"gid://shopify/MediaImage/{i}", "url": image["url"]}
        for i, image in enumerate(record["images"])
    }
    return {
        "id": product_id,
        "handle": record["handle"],
        "title": record["title"],
        "status": record["status"],
        "productType": record["productType"],
        "vendor": record["vendor"],
        "tags": record["tags"],
        "images": list(media.values()),
        "variants": [
            {
                "id": f"gid://shopify/ProductVariant/{variant['sku']}",
                "sku": variant["sku"],
                "title": variant["title"],
                "price": variant["price"],
                "weight": variant["weight"],
                "tracked": variant["tracked"],
                "inventoryItemId": f"gid://shopify/InventoryItem/{variant['sku']}",
                "inventory": collapse_inventory(variant["inventory"]),
                "metafields": {f"{t['namespace']}.{t['key']}": t["value"] for t in variant["price_tiers"]},
                "image": media.get(variant["image"]),
            }
            for variant in record["variants"]
        ],
        **overrides,
    }


# ---------------------------------------------------------------------------
# Attribute access
# ---------------------------------------------------------------------------


class TestAttributes:
    def test_list_shaped_attribute_set(self):
        assert get_attribute(_make_product(title="Shirt"), "Product Title") == "Shirt"

    def test_flat_attribute_set(self):
        product = {"AttributeSet": {"ProductTitle": "Mug"}}
        assert get_attribute(product, "Product Title") == "Mug"

    def test_missing_attribute_set(self):
        assert get_attribute({"AttributeSet": None}, "Product Title") == ""

    def test_parse_option_names_caps_at_three(self):
        assert parse_option_names("Size, Colour | Fit, Extra") == ["Size", "Colour", "Fit"]
        assert parse_option_names(None) == []

    def test_collect_images_unique_by_filename(self):
        product = {
            "Images": [
                {"Url": "https://a.test/x/second.jpg"},
                {"Url": "https://a.test/x/first.jpg", "IsDefault": True},
            ],
            "ImageUrl": "https://b.test/other/first.jpg",
        }
        assert [image["filename"] for image in collect_images(product)] == ["first.jpg", "second.jpg"]

    def test_merge_images_remembers_variant_skus(self):
        members = [
            _shirt("A", "S", ImageUrl="https://a.test/shared.jpg"),
            _shirt("B", "M", Images=[{"Url": "https://a.test/b.jpg"}], ImageUrl="https://a.test/x/shared.jpg"),
        ]

        assert merge_images(members) == [
            {"url": "https://a.test/shared.jpg", "filename": "shared.jpg", "variant_skus": ["A", "B"]},
            {"url": "https://a.test/b.jpg", "filename": "b.jpg", "variant_skus": ["B"]},
        ]


# ---------------------------------------------------------------------------
# De-duplication and grouping
# ---------------------------------------------------------------------------


class TestGrouping:
    def test_duplicate_codes_merge_stock(self):
        products = [
            _make_product("A", StockOnHand=[{"WarehouseCode": "WH1", "QuantityAvailable": 5}]),
            _make_product("A", StockOnHand=[{"WarehouseCode": "WH1", "QtyOnHand": 3}]),
        ]
        unique, merges = deduplicate_products(products)

        assert len(unique) == 1
        assert unique[0]["StockOnHand"] == [{"WarehouseCode": "WH1", "QuantityAvailable": 8.0}]
        assert merges == [{"sku": "A", "warehouses": ["WH1"]}]

    def test_shared_title_groups_together(self):
        groups = group_products([_shirt("A", "S"), _shirt("B", "M")])
        assert list(groups) == [(True, "Shirt")]

    def test_ungrouped_products_never_merge(self):
        products = [
            _make_product("A", ProductDescription="Widget"),
            _make_product("B", ProductDescription="Widget"),
        ]
        groups = group_products(products)
        assert list(groups) == [(False, "A"), (False, "B")]

    def test_code_equal_to_title_does_not_merge(self):
        groups = group_products([_make_product("Shirt"), _shirt("B", "M")])
        assert len(groups) == 2

    def test_identical_descriptions_create_distinct_handles(self):
        result = _map(
            [
                _make_product("A", ProductDescription="Widget"),
                _make_product("B", ProductDescription="Widget"),
            ]
        )
        assert [record["handle"] for record in result.to_create] == ["widget", "widget-b"]


# ---------------------------------------------------------------------------
# Record building
# ---------------------------------------------------------------------------


class TestBuildProduct:
    def test_scenario_shared_title_makes_one_product_with_two_variants(self):
        result = _map([_shirt("A", "S"), _shirt("B", "M")])

        assert len(result.to_create) == 1
        record = result.to_create[0]
        assert record["title"] == "Shirt"
        assert record["options"] == ["Size"]
        assert [v["sku"] for v in record["variants"]] == ["A", "B"]
        assert [v["option_values"] for v in record["variants"]] == [["S"], ["M"]]

    def test_single_variant_without_options_uses_default_title(self):
        record = _map([_make_product("A")]).to_create[0]

        variant = record["variants"][0]
        assert variant["option_names"] == ["Title"]
        assert variant["option_values"] == ["Default Title"]
        assert record["title"] == "Product A"

    def test_members_without_option_values_keep_distinct_combinations(self):
        members = [
            _make_product("A", title="Mug", option_names="Size"),
            _make_product("B", title="Mug", option_names="Size"),
        ]
        record = _map(members).to_create[0]

        assert record["options"] == ["Size"]
        assert [v["option_values"] for v in record["variants"]] == [["A"], ["B"]]

    def test_repeated_partial_values_fall_back_to_sku(self):
        members = [
            _make_product("A", title="Mug", option_names="Size, Colour", option_value="Large"),
            _make_product("B", title="Mug", option_names="Size, Colour", option_value="Large"),
        ]
        record = _map(members).to_create[0]

        assert [v["option_values"] for v in record["variants"]] == [["Large", "Default"], ["Large", "B"]]

    def test_variant_image_is_members_first_image(self):
        members = [
            _shirt("A", "S", ImageUrl="https://a.test/a.jpg"),
            _shirt("B", "M"),
        ]
        record = _map(members).to_create[0]

        assert [v["image"] for v in record["variants"]] == ["a.jpg", None]
        assert record["images"][0]["variant_skus"] == ["A"]

    def test_inventory_resolved_to_location(self):
        record = _map([_make_product("A")]).to_create[0]

        assert record["variants"][0]["inventory"] == [
            {"warehouse_code": "WH1", "quantity": 5.0, "location_id": LOCATION_ID}
        ]

    def test_unknown_warehouse_falls_back_to_first_location(self):
        product = _make_product("A", StockOnHand=[{"WarehouseCode": "ELSEWHERE", "QuantityAvailable": 2}])
        record = _map([product]).to_create[0]

        assert collapse_inventory(record["variants"][0]["inventory"]) == {LOCATION_ID: 2}

    def test_price_tiers_become_money_metafields(self):
        product = _make_product("A", SellPriceTier1={"Value": "12.5"}, SellPriceTier3="0")
        tiers = _map([product]).to_create[0]["variants"][0]["price_tiers"]

        assert tiers == [
            {
                "namespace": "custom",
                "key": "price_tier_1",
                "type": "money",
                "value": json.dumps({"amount": "12.50", "currency_code": "AUD"}),
            }
        ]

    def test_never_diminishing_is_untracked(self):
        record = _map([_make_product("A", NeverDiminishing=True)]).to_create[0]
        assert record["variants"][0]["tracked"] is False

    def test_obsolete_product_is_archived_status(self):
        record = _map([_make_product("A", Obsolete=True)]).to_create[0]
        assert record["status"] == "ARCHIVED"


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


class TestDecisions:
    def test_not_sellable_is_skipped(self):
        result = _map([_make_product("A", IsSellable=False)])
        assert result.skipped == [{"source_id": "A", "reason": NOT_SELLABLE}]

    def test_missing_code_is_an_error(self):
        result = _map([_make_product("")])
        assert result.errors[0]["field"] == "ProductCode"

    def test_unchanged_product_is_skipped(self):
        record = _map([_shirt("A", "S"), _shirt("B", "M")]).to_create[0]

        result = _map([_shirt("A", "S"), _shirt("B", "M")], [_shopify_from(record)])

        assert result.to_update == []
        assert result.to_create == []
        assert result.skipped == [{"source_id": "Shirt", "reason": IDENTICAL_DATA, "source_keys": ["A", "B"]}]

    def test_one_price_change_makes_one_update(self):
        record = _map([_shirt("A", "S"), _shirt("B", "M")]).to_create[0]

        result = _map([_shirt("A", "S", DefaultSellPrice=12), _shirt("B", "M")], [_shopify_from(record)])

        assert len(result.to_update) == 1
        update = result.to_update[0]
        assert update["differences"] == ['variant A price: "10.00" → "12.00"']
        assert update["id"] == "gid://shopify/Product/1"
        assert update["variants"][0]["id"] == "gid://shopify/ProductVariant/A"
        assert update["variants"][0]["inventory_item_id"] == "gid://shopify/InventoryItem/A"

    def test_scenario_dropped_sku_is_removed_from_product(self):
        record = _map([_shirt("A", "S"), _shirt("B", "M")]).to_create[0]

        result = _map([_shirt("A", "S")], [_shopify_from(record)])

        assert len(result.to_update) == 1
        update = result.to_update[0]
        assert update["variants_to_remove"] == ["gid://shopify/ProductVariant/B"]
        assert [v["sku"] for v in update["variants"]] == ["A"]
        assert update["differences"] == ["variants to remove: ['B']"]
        assert result.to_archive == []

    def test_skus_spread_across_products_is_an_error(self):
        record = _map([_shirt("A", "S"), _shirt("B", "M")]).to_create[0]
        full = _shopify_from(record)
        first = {**full, "id": "gid://shopify/Product/1", "variants": full["variants"][:1]}
        second = {**full, "id": "gid://shopify/Product/2", "handle": "shirt-2", "variants": full["variants"][1:]}

        result = _map([_shirt("A", "S"), _shirt("B", "M")], [first, second])

        assert result.to_create == []
        assert result.to_update == []
        error = result.errors[0]
        assert error["field"] == "sku"
        assert error["source_keys"] == ["A", "B"]
        assert "manual review" in error["message"]

    def test_untracked_stock_change_is_not_an_update(self):
        record = _map([_make_product("A", NeverDiminishing=True)]).to_create[0]
        restocked = _make_product(
            "A", NeverDiminishing=True, StockOnHand=[{"WarehouseCode": "WH1", "QuantityAvailable": 50}]
        )

        result = _map([restocked], [_shopify_from(record)])

        assert result.to_update == []
        assert result.skipped == [{"source_id": "A", "reason": IDENTICAL_DATA}]

    def test_tracked_stock_change_is_an_update(self):
        record = _map([_make_product("A")]).to_create[0]
        restocked = _make_product("A", StockOnHand=[{"WarehouseCode": "WH1", "QuantityAvailable": 7}])

        result = _map([restocked], [_shopify_from(record)])

        assert result.to_update[0]["differences"] == [f'variant A inventory {LOCATION_ID}: "5" → "7"']

    def test_regrouped_sku_is_never_removed(self):
        record = _map([_shirt("A", "S"), _shirt("B", "M")]).to_create[0]
        regrouped = _make_product("B", title="Shirt Tall", option_names="Size", option_value="M")

        result = _map([_shirt("A", "S"), regrouped], [_shopify_from(record)])

        assert result.to_update == []
        assert result.to_create == []
        assert [(e["source_id"], e["field"]) for e in result.errors] == [("Shirt", "sku"), ("Shirt Tall", "sku")]
        assert "['B']" in result.errors[0]["message"]
        assert "under groups ['Shirt Tall']" in result.errors[0]["message"]
        assert "manual review" in result.errors[1]["message"]
        assert [e["decision"] for e in result.decision_log] == [ERROR, ERROR]

    def test_unsellable_sku_on_product_blocks_update(self):
        record = _map([_shirt("A", "S"), _shirt("B", "M")]).to_create[0]

        result = _map(
            [_shirt("A", "S", DefaultSellPrice=12), _shirt("B", "M", IsSellable=False)],
            [_shopify_from(record)],
        )

        assert result.to_update == []
        assert result.skipped == [{"source_id": "B", "reason": NOT_SELLABLE}]
        assert "still in the source feed; manual review required" in result.errors[0]["message"]

    def test_variant_without_its_image_is_an_update(self):
        members = [_shirt("A", "S", ImageUrl="https://a.test/a.jpg"), _shirt("B", "M")]
        record = _map(members).to_create[0]
        destination = _shopify_from(record)
        destination["variants"][0]["image"] = None

        result = _map(members, [destination])

        update = result.to_update[0]
        assert update["differences"] == ['variant A image: "" → "a.jpg"']
        assert update["existing_images"] == {"a.jpg": "gid://shopify/MediaImage/0"}
        assert update["variants"][0]["current_image"] is None

    def test_linked_variant_image_is_identical(self):
        members = [_shirt("A", "S", ImageUrl="https://a.test/a.jpg"), _shirt("B", "M")]
        record = _map(members).to_create[0]

        result = _map(members, [_shopify_from(record)])

        assert result.to_update == []
        assert result.skipped[0]["reason"] == IDENTICAL_DATA

    def test_failing_group_becomes_error_while_others_map(self):
        build = ProductMapper.build_product

        def build_or_fail(mapper, key, members):
            if key == "Broken":
                raise ValueError("bad attribute set")
            return build(mapper, key, members)

        with patch.object(ProductMapper, "build_product", autospec=True, side_effect=build_or_fail):
            result = _map([_make_product("Broken"), _shirt("A", "S")])

        assert [record["source_id"] for record in result.to_create] == ["Shirt"]
        assert result.errors == [{"source_id": "Broken", "field": None, "message": "bad attribute set"}]
        assert result.decision_log[0]["decision"] == ERROR

    def test_partial_overlap_creates_separate_product(self):
        record = _map([_shirt("A", "S")]).to_create[0]

        result = _map([_shirt("A", "S"), _shirt("B", "M")], [_shopify_from(record)])

        assert len(result.to_create) == 1
        assert result.to_create[0]["handle"] == "shirt-a"
        assert result.decision_log[0]["decision"] == CREATE
        assert "lacks SKUs ['B']" in result.decision_log[0]["reasoning"]


class TestArchive:
    def test_products_without_source_skus_are_archived(self):
        destination = [
            {"id": "p-gone", "handle": "gone", "status": "ACTIVE", "variants": [{"id": "v1", "sku": "Z"}]},
            {"id": "p-done", "handle": "done", "status": "ARCHIVED", "variants": [{"id": "v2", "sku": "Y"}]},
            {"id": "p-kept", "handle": "kept", "status": "ACTIVE", "variants": [{"id": "v3", "sku": "A"}, {"id": "v4", "sku": "X"}]},
        ]
        result = _map([_make_product("A")], destination)

        assert [entry["id"] for entry in result.to_archive] == ["p-gone"]
        assert result.decision_log[-1]["decision"] == ARCHIVE

    def test_not_sellable_skus_still_protect_from_archive(self):
        destination = [{"id": "p1", "handle": "a", "status": "ACTIVE", "variants": [{"id": "v1", "sku": "A"}]}]
        result = _map([_make_product("A", IsSellable=False)], destination)

        assert result.to_archive == []

    def test_rerun_leaves_archive_set_unchanged(self):
        destination = [{"id": "p-gone", "handle": "gone", "status": "ACTIVE", "variants": [{"id": "v1", "sku": "Z"}]}]
        first = _map([_make_product("A")], destination)
        second = _map([_make_product("A")], destination)

        assert first.to_archive == second.to_archive


class TestMappingResultShape:
    def test_decision_log_entry_per_group(self):
        result = _map([_shirt("A", "S"), _shirt("B", "M"), _make_product("C")])

        assert [(e["group_key"], e["decision"]) for e in result.decision_log] == [("Shirt", CREATE), ("C", CREATE)]
        assert result.decision_log[0]["source_skus"] == ["A", "B"]

    def test_duplicate_destination_skus_reported(self):
        destination = [
            {"id": "p1", "handle": "one", "status": "ACTIVE", "variants": [{"id": "v1", "sku": "Q"}]},
            {"id": "p2", "handle": "two", "status": "ACTIVE", "variants": [{"id": "v2", "sku": "Q"}]},
        ]
        result = _map([], destination)

        assert result.duplicate_skus == [{"sku": "Q", "product_ids": ["p1", "p2"]}]

    def test_rejects_non_list_input(self):
        with pytest.raises(MappingError):
            map_products("A", [])
