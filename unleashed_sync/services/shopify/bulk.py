"""Shopify bulk mutation operations.

Flow: stage a JSONL file of mutation variables, start
``bulkOperationRunMutation``, poll ``currentBulkOperation`` until it finishes
or the wall-clock budget runs out, then download the JSONL result file (one
outcome per input line).
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field

from unleashed_sync.config import settings
from unleashed_sync.services.shopify import queries
from unleashed_sync.services.shopify.client import (
    ShopifyClient,
    ShopifyError,
    format_user_errors,
    user_errors,
)

logger = logging.getLogger(__name__)

BULK_FILENAME = "bulk_operations.jsonl"
TERMINAL_FAILURES = {"FAILED", "CANCELED", "EXPIRED"}


@dataclass
class BulkOperationOutcome:
    success: bool
    operation_id: str | None = None
    status: str | None = None
    url: str | None = None
    results: list[dict] = field(default_factory=list)
    error: str | None = None


def build_jsonl(variables: list[dict]) -> bytes:
    return "\n".join(json.dumps(item, separators=(",", ":")) for item in variables).encode("utf-8")


def parse_jsonl(content: str) -> list[dict]:
    results = []
    for number, line in enumerate(content.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            results.append(json.loads(line))
        except ValueError:
            logger.warning("BULK_RESULT_LINE_UNPARSEABLE line=%d", number)
    return results


class BulkOperationRunner:
    def __init__(
        self,
        client: ShopifyClient,
        poll_interval: float | None = None,
        timeout: float | None = None,
    ):
        self.client = client
        self.poll_interval = settings.bulk_poll_interval if poll_interval is None else poll_interval
        self.timeout = settings.bulk_timeout_seconds if timeout is None else timeout

    async def stage_upload(self, variables: list[dict]) -> str:
        data = await self.client.execute(
            queries.STAGED_UPLOADS_CREATE_MUTATION,
            {
                "input": [
                    {
                        "resource": "BULK_MUTATION_VARIABLES",
                        "filename": BULK_FILENAME,
                        "mimeType": "text/plain",
                        "httpMethod": "POST",
                    }
                ]
            },
        )
        payload = data.get("stagedUploadsCreate") or {}
        errors = user_errors(payload)
        if errors:
            raise ShopifyError(f"Staged upload request failed: {format_user_errors(errors)}")
        targets = payload.get("stagedTargets") or []
        if not targets:
            raise ShopifyError("No staged upload target received")

        target = targets[0]
        await self.client.upload_staged_file(target, build_jsonl(variables), BULK_FILENAME)
        key = next((p["value"] for p in target.get("parameters") or [] if p.get("name") == "key"), None)
        return key or target.get("resourceUrl")

    async def start(self, mutation: str, staged_path: str) -> dict:
        data = await self.client.execute(
            queries.BULK_OPERATION_RUN_MUTATION,
            {"mutation": mutation, "stagedUploadPath": staged_path},
        )
        payload = data.get("bulkOperationRunMutation") or {}
        errors = user_errors(payload)
        if errors:
            raise ShopifyError(f"Bulk operation errors: {format_user_errors(errors)}")
        operation = payload.get("bulkOperation") or {}
        logger.info("BULK_OPERATION_STARTED id=%s", operation.get("id"))
        return operation

    async def wait(self, operation_id: str) -> BulkOperationOutcome:
        """Poll until the operation completes, fails or the timeout elapses."""
        waited = 0.0
        last_status = None
        while waited < self.timeout:
            await asyncio.sleep(self.poll_interval)
            waited += self.poll_interval
            try:
                data = await self.client.execute(queries.CURRENT_BULK_OPERATION_QUERY)
            except ShopifyError as e:
                logger.warning("BULK_OPERATION_POLL_FAILED id=%s error=%s", operation_id, e)
                continue

            operation = data.get("currentBulkOperation")
            if not operation or operation.get("id") != operation_id:
                continue

            status = operation.get("status")
            if status != last_status:
                logger.info(
                    "BULK_OPERATION_STATUS id=%s status=%s objects=%s",
                    operation_id,
                    status,
                    operation.get("objectCount") or 0,
                )
                last_status = status

            if status == "COMPLETED":
                return BulkOperationOutcome(
                    success=True,
                    operation_id=operation_id,
                    status=status,
                    url=operation.get("url"),
                )
            if status in TERMINAL_FAILURES:
                return BulkOperationOutcome(
                    success=False,
                    operation_id=operation_id,
                    status=status,
                    error=operation.get("errorCode") or f"Operation {status.lower()}",
                )

        logger.error("BULK_OPERATION_TIMEOUT id=%s waited=%.0fs", operation_id, waited)
        return BulkOperationOutcome(
            success=False,
            operation_id=operation_id,
            status=last_status,
            error="Operation timed out",
        )

    async def fetch_results(self, url: str | None) -> list[dict]:
        if not url:
            return []
        return parse_jsonl(await self.client.download_text(url))

    async def run(self, mutation: str, variables: list[dict]) -> BulkOperationOutcome:
        """Run one mutation document over every variables object."""
        if not variables:
            return BulkOperationOutcome(success=True)

        staged_path = await self.stage_upload(variables)
        operation = await self.start(mutation, staged_path)
        outcome = await self.wait(operation.get("id"))
        if not outcome.success:
            return outcome

        outcome.results = await self.fetch_results(outcome.url)
        logger.info("BULK_OPERATION_RESULTS id=%s lines=%d", outcome.operation_id, len(outcome.results))
        return outcome
