"""Tests for the Shopify bulk mutation runner."""

import json

import pytest

from unleashed_sync.services.shopify.bulk import BulkOperationRunner, build_jsonl, parse_jsonl
from unleashed_sync.services.shopify.client import ShopifyError

TARGET = {
    "url": "https://uploads.test/",
    "resourceUrl": "https://uploads.test/resource",
    "parameters": [
        {"name": "key", "value": "tmp/bulk/vars.jsonl"},
        {"name": "policy", "value": "abc"},
    ],
}


def _staged(target=TARGET, errors=()):
    return {"stagedUploadsCreate": {"stagedTargets": [target] if target else [], "userErrors": list(errors)}}


def _started(operation_id="gid://shopify/BulkOperation/1"):
    return {
        "bulkOperationRunMutation": {
            "bulkOperation": {"id": operation_id, "status": "CREATED"},
            "userErrors": [],
        }
    }


def _current(status, operation_id="gid://shopify/BulkOperation/1", **extra):
    return {"currentBulkOperation": {"id": operation_id, "status": status, **extra}}


def _statuses(*responses):
    remaining = list(responses)

    def current(variables):
        return remaining.pop(0) if len(remaining) > 1 else remaining[0]

    return current


class TestJsonl:
    def test_build_one_object_per_line(self):
        content = build_jsonl([{"input": {"a": 1}}, {"input": {"b": 2}}])

        assert content.decode().splitlines() == ['{"input":{"a":1}}', '{"input":{"b":2}}']

    def test_parse_skips_blank_and_bad_lines(self):
        content = '{"data": {}, "__lineNumber": 0}\n\nnot json\n{"__lineNumber": 1}\n'

        assert parse_jsonl(content) == [{"data": {}, "__lineNumber": 0}, {"__lineNumber": 1}]


class TestBulkOperationRunner:
    @pytest.mark.asyncio
    async def test_run_completes_and_downloads_results(self, shopify_client, graphql_router, no_sleep):
        started = []

        def start(variables):
            started.append(variables)
            return _started()

        shopify_client.execute.side_effect = graphql_router(
            {
                "stagedUploadsCreate": _staged(),
                "bulkOperationRunMutation": start,
                "currentBulkOperation": _statuses(
                    _current("RUNNING"),
                    _current("COMPLETED", url="https://results.test/out.jsonl"),
                ),
            }
        )
        shopify_client.download_text.return_value = json.dumps({"data": {"ok": True}, "__lineNumber": 0})
        runner = BulkOperationRunner(shopify_client, poll_interval=1, timeout=10)

        outcome = await runner.run("mutation m($input: X!) { m(input: $input) { id } }", [{"input": {"a": 1}}])

        assert outcome.success is True
        assert outcome.status == "COMPLETED"
        assert outcome.results == [{"data": {"ok": True}, "__lineNumber": 0}]
        assert started[0]["stagedUploadPath"] == "tmp/bulk/vars.jsonl"
        target, content, filename = shopify_client.upload_staged_file.await_args.args
        assert target is TARGET
        assert content == b'{"input":{"a":1}}'
        shopify_client.download_text.assert_awaited_once_with("https://results.test/out.jsonl")

    @pytest.mark.asyncio
    async def test_failed_operation(self, shopify_client, graphql_router, no_sleep):
        shopify_client.execute.side_effect = graphql_router(
            {
                "stagedUploadsCreate": _staged(),
                "bulkOperationRunMutation": _started(),
                "currentBulkOperation": _current("FAILED", errorCode="INTERNAL_SERVER_ERROR"),
            }
        )
        runner = BulkOperationRunner(shopify_client, poll_interval=1, timeout=10)

        outcome = await runner.run("mutation { x }", [{"input": {}}])

        assert outcome.success is False
        assert outcome.status == "FAILED"
        assert outcome.error == "INTERNAL_SERVER_ERROR"
        shopify_client.download_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_timeout(self, shopify_client, graphql_router, no_sleep):
        shopify_client.execute.side_effect = graphql_router(
            {
                "stagedUploadsCreate": _staged(),
                "bulkOperationRunMutation": _started(),
                "currentBulkOperation": _current("RUNNING"),
            }
        )
        runner = BulkOperationRunner(shopify_client, poll_interval=2, timeout=6)

        outcome = await runner.run("mutation { x }", [{"input": {}}])

        assert outcome.success is False
        assert outcome.error == "Operation timed out"
        assert no_sleep.await_count == 3

    @pytest.mark.asyncio
    async def test_other_operations_are_ignored_while_polling(self, shopify_client, graphql_router, no_sleep):
        shopify_client.execute.side_effect = graphql_router(
            {
                "stagedUploadsCreate": _staged(),
                "bulkOperationRunMutation": _started(),
                "currentBulkOperation": _statuses(
                    _current("COMPLETED", operation_id="gid://shopify/BulkOperation/0"),
                    _current("COMPLETED"),
                ),
            }
        )
        runner = BulkOperationRunner(shopify_client, poll_interval=1, timeout=10)

        outcome = await runner.run("mutation { x }", [{"input": {}}])

        assert outcome.success is True
        assert outcome.results == []

    @pytest.mark.asyncio
    async def test_missing_staged_target(self, shopify_client, graphql_router):
        shopify_client.execute.side_effect = graphql_router({"stagedUploadsCreate": _staged(target=None)})
        runner = BulkOperationRunner(shopify_client)

        with pytest.raises(ShopifyError, match="No staged upload target"):
            await runner.run("mutation { x }", [{"input": {}}])

    @pytest.mark.asyncio
    async def test_empty_variables_short_circuit(self, shopify_client):
        outcome = await BulkOperationRunner(shopify_client).run("mutation { x }", [])

        assert outcome.success is True
        shopify_client.execute.assert_not_awaited()
