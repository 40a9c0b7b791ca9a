"""Tests for credential bundles and stores."""

import json
from unittest.mock import MagicMock

import pytest

from unleashed_sync.services.credentials import (
    CredentialBundle,
    CredentialsError,
    RedisCredentialStore,
    StaticCredentialStore,
    clean_domain,
)


def _make_bundle_data(**overrides):
    data = {
        "unleashed": {"apiId": "api-id", "apiKey": "api-key"},
        "shopify": {"accessToken": "shpat_token", "shopDomain": "https://Shop.myshopify.com/"},
    }
    data.update(overrides)
    return data


class TestCleanDomain:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("shop.test", "shop.test"),
            ("https://Shop.Test/", "shop.test"),
            ("http://shop.test/admin/path", "shop.test"),
            ("  shop.test  ", "shop.test"),
            (None, ""),
        ],
    )
    def test_variants(self, raw, expected):
        assert clean_domain(raw) == expected


class TestCredentialBundle:
    def test_from_dict(self):
        bundle = CredentialBundle.from_dict("shop.test", _make_bundle_data())

        assert bundle.unleashed_api_id == "api-id"
        assert bundle.shop_domain == "shop.myshopify.com"

    def test_incomplete(self):
        with pytest.raises(CredentialsError, match="shopify.accessToken"):
            CredentialBundle.from_dict("shop.test", _make_bundle_data(shopify={"shopDomain": "x.myshopify.com"}))


class TestStaticCredentialStore:
    def test_lookup_uses_clean_domain(self):
        store = StaticCredentialStore({"shop.test": _make_bundle_data()})

        assert store.get("https://shop.test/").domain == "shop.test"

    def test_missing(self):
        with pytest.raises(CredentialsError, match="No authentication data"):
            StaticCredentialStore().get("shop.test")


class TestRedisCredentialStore:
    def test_reads_json_under_prefix(self):
        redis_client = MagicMock()
        redis_client.get.return_value = json.dumps(_make_bundle_data())
        store = RedisCredentialStore(redis_client, prefix="creds:")

        bundle = store.get("https://shop.test")

        redis_client.get.assert_called_once_with("creds:shop.test")
        assert bundle.shopify_access_token == "shpat_token"

    def test_missing_key(self):
        redis_client = MagicMock()
        redis_client.get.return_value = None

        with pytest.raises(CredentialsError, match="No authentication data"):
            RedisCredentialStore(redis_client, prefix="").get("shop.test")

    def test_malformed_json(self):
        redis_client = MagicMock()
        redis_client.get.return_value = "{not json"

        with pytest.raises(CredentialsError, match="Malformed"):
            RedisCredentialStore(redis_client, prefix="").get("shop.test")

    def test_redis_failure(self):
        redis_client = MagicMock()
        redis_client.get.side_effect = ConnectionError("refused")

        with pytest.raises(CredentialsError, match="Failed to get authentication data"):
            RedisCredentialStore(redis_client).get("shop.test")

    def test_blank_domain(self):
        with pytest.raises(CredentialsError, match="Domain is required"):
            RedisCredentialStore(MagicMock()).get("  ")
