"""Tests for the sync Celery tasks."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from unleashed_sync.services.credentials import CredentialsError
from unleashed_sync.services.shopify.client import ShopifyRateLimitError, ShopifyTransientError
from unleashed_sync.services.sync.orchestrator import SyncReport
from unleashed_sync.tasks.sync import process_mutation_message, run_sync


def test_process_mutation_message_retry_config():
    assert ShopifyTransientError in process_mutation_message.autoretry_for
    assert process_mutation_message.max_retries == 5
    assert process_mutation_message.retry_backoff


def test_run_sync_records_report():
    report = SyncReport(sync_id="sync_shop.test_1", domain="shop.test", status="success")
    orchestrator = MagicMock()
    orchestrator.run = AsyncMock(return_value=report)

    with (
        patch("unleashed_sync.tasks.sync.RedisCredentialStore"),
        patch("unleashed_sync.tasks.sync.SyncOrchestrator", return_value=orchestrator),
        patch("unleashed_sync.tasks.sync.record_sync_report") as record,
    ):
        result = run_sync("shop.test", ["locations"], "direct", False)

    orchestrator.run.assert_awaited_once_with("shop.test", entities=["locations"], dry_run=False, strategy="direct")
    record.assert_called_once_with(report)
    assert result["sync_id"] == "sync_shop.test_1"
    assert result["status"] == "success"


def test_run_sync_without_credentials():
    orchestrator = MagicMock()
    orchestrator.run = AsyncMock(side_effect=CredentialsError("No authentication data found for domain: shop.test"))

    with (
        patch("unleashed_sync.tasks.sync.RedisCredentialStore"),
        patch("unleashed_sync.tasks.sync.SyncOrchestrator", return_value=orchestrator),
        patch("unleashed_sync.tasks.sync.record_sync_report") as record,
    ):
        result = run_sync("shop.test")

    assert result == {
        "success": False,
        "domain": "shop.test",
        "error": "No authentication data found for domain: shop.test",
    }
    record.assert_not_called()


def test_process_mutation_message_returns_result():
    outcome = {"success": True, "type": "CREATE_CUSTOMER", "sync_id": "s1", "result": {"id": "gid://shopify/Customer/1"}}

    with (
        patch("unleashed_sync.tasks.sync.RedisCredentialStore"),
        patch("unleashed_sync.tasks.sync.handle_message", new=AsyncMock(return_value=outcome)) as handle,
    ):
        result = process_mutation_message({"type": "CREATE_CUSTOMER", "sync_id": "s1"})

    assert result == outcome
    assert handle.await_args.args[0] == {"type": "CREATE_CUSTOMER", "sync_id": "s1"}


def test_process_mutation_message_rate_limited_is_retried():
    error = ShopifyRateLimitError("Query throttled", retry_after=2)

    with (
        patch("unleashed_sync.tasks.sync.RedisCredentialStore"),
        patch("unleashed_sync.tasks.sync.handle_message", new=AsyncMock(side_effect=error)),
        pytest.raises(ShopifyRateLimitError),
    ):
        process_mutation_message({"type": "CREATE_CUSTOMER"})
