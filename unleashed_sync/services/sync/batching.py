"""Batched, rate-limited execution of Shopify mutations.

``MutationExecutor`` turns a MappingResult into Shopify mutations. The
direct strategy runs one batch at a time (calls inside a batch are
concurrent) with a fixed delay between batches. The same executor can hand
its records to a bulk operation or to the background queue; every strategy
returns a MutationResult of the same shape.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, TypeVar

from unleashed_sync.config import settings
from unleashed_sync.metrics import record_mutation
from unleashed_sync.services.shopify.bulk import BulkOperationRunner
from unleashed_sync.services.shopify.client import ShopifyClient, format_user_errors, user_errors
from unleashed_sync.services.sync.models import (
    ARCHIVE,
    CREATE,
    UPDATE,
    MappingResult,
    MutationResult,
    OperationResult,
)

if TYPE_CHECKING:
    from unleashed_sync.services.sync.queue import QueueDispatcher

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DIRECT = "direct"
QUEUE = "queue"
BULK = "bulk"
AUTO = "auto"
STRATEGIES = (DIRECT, QUEUE, BULK, AUTO)


class MutationRejected(Exception):
    """Shopify answered with field-level ``userErrors``."""

    def __init__(self, errors: list[dict]):
        super().__init__(format_user_errors(errors))
        self.errors = errors


async def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: int,
    delay: float,
) -> list[R]:
    """Run ``worker`` over ``items`` one batch at a time.

    Calls inside a batch are gathered; ``delay`` seconds separate batches.
    """
    results: list[R] = []
    size = max(1, batch_size)
    for start in range(0, len(items), size):
        if start and delay:
            await asyncio.sleep(delay)
        batch = items[start : start + size]
        results.extend(await asyncio.gather(*(worker(item) for item in batch)))
    return results


def choose_strategy(requested: str | None, total: int, queue_available: bool = False) -> str:
    strategy = (requested or settings.mutation_strategy).lower()
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown mutation strategy: {strategy}")
    if strategy == QUEUE and not queue_available:
        logger.warning("MUTATION_QUEUE_UNAVAILABLE falling back to direct")
        return DIRECT
    if strategy != AUTO:
        return strategy
    if total >= settings.bulk_threshold:
        return BULK
    if queue_available and total > settings.queue_threshold:
        return QUEUE
    return DIRECT


class MutationExecutor:
    """Base class for the per-entity executors.

    Subclasses declare, per operation, the GraphQL document and the payload
    key it answers under, and build the variables for one record.
    """

    entity = ""
    documents: dict[str, str] = {}
    payload_keys: dict[str, str] = {}
    batch_delay_setting = "mutation_batch_delay"

    def __init__(
        self,
        client: ShopifyClient,
        batch_size: int | None = None,
        batch_delay: float | None = None,
        bulk_runner: BulkOperationRunner | None = None,
    ):
        self.client = client
        self.batch_size = batch_size or settings.mutation_batch_size
        self.batch_delay = getattr(settings, self.batch_delay_setting) if batch_delay is None else batch_delay
        self.bulk_runner = bulk_runner

    # -- per-record hooks ---------------------------------------------------

    def variables(self, operation: str, record: dict) -> dict:
        raise NotImplementedError

    @staticmethod
    def source_id(record: dict) -> str | None:
        return record.get("source_id") or record.get("handle") or record.get("id")

    def success_entry(self, operation: str, record: dict, payload: dict) -> dict:
        return {"source_id": self.source_id(record), "id": record.get("id")}

    async def after_success(self, operation: str, record: dict, payload: dict, entry: dict) -> None:
        """Follow-up calls once the main mutation succeeded."""

    def records(self, mapping: MappingResult) -> dict[str, list[dict]]:
        return {CREATE: mapping.to_create, UPDATE: mapping.to_update}

    # -- single record ------------------------------------------------------

    async def apply(self, operation: str, record: dict) -> dict:
        """Run one mutation. Raises MutationRejected on userErrors."""
        data = await self.client.execute(self.documents[operation], self.variables(operation, record))
        payload = data.get(self.payload_keys[operation]) or {}
        errors = user_errors(payload)
        if errors:
            raise MutationRejected(errors)
        entry = self.success_entry(operation, record, payload)
        await self.after_success(operation, record, payload, entry)
        return entry

    def failure_entry(self, record: dict, message: str, errors: list[dict] | None = None) -> dict:
        entry = {
            "source_id": self.source_id(record),
            "id": record.get("id"),
            "message": message,
        }
        if errors:
            entry["field"] = errors[0].get("field")
            entry["errors"] = errors
        return entry

    async def _attempt(self, operation: str, record: dict) -> tuple[bool, dict]:
        try:
            return True, await self.apply(operation, record)
        except MutationRejected as e:
            logger.warning(
                "MUTATION_REJECTED entity=%s operation=%s source_id=%s errors=%s",
                self.entity,
                operation,
                self.source_id(record),
                e,
            )
            return False, self.failure_entry(record, str(e), e.errors)
        except Exception as e:
            logger.warning(
                "MUTATION_FAILED entity=%s operation=%s source_id=%s error=%s",
                self.entity,
                operation,
                self.source_id(record),
                e,
            )
            return False, self.failure_entry(record, str(e))

    # -- strategies ---------------------------------------------------------

    async def execute(
        self,
        mapping: MappingResult,
        strategy: str | None = DIRECT,
        dispatcher: QueueDispatcher | None = None,
    ) -> MutationResult:
        start = time.monotonic()
        grouped = self.records(mapping)
        total = sum(len(records) for records in grouped.values())
        chosen = choose_strategy(strategy, total, queue_available=dispatcher is not None)
        result = MutationResult(entity=self.entity, strategy=chosen)
        logger.info("MUTATION_START entity=%s strategy=%s total=%d", self.entity, chosen, total)

        for operation, records in grouped.items():
            if not records:
                continue
            bucket = result.operation(operation)
            if chosen == QUEUE:
                await dispatcher.dispatch(self.entity, operation, records, bucket)
            elif chosen == BULK:
                await self._execute_bulk(operation, records, bucket)
            else:
                await self._execute_direct(operation, records, bucket)

        result.duration_seconds = time.monotonic() - start
        for operation in (CREATE, UPDATE, ARCHIVE):
            bucket = result.operation(operation)
            status = "queued" if chosen == QUEUE else "success"
            record_mutation(self.entity, operation, status, len(bucket.successful))
            record_mutation(self.entity, operation, "failed", len(bucket.failed))

        logger.info(
            "MUTATION_COMPLETE entity=%s created=%d updated=%d archived=%d failed=%d duration=%.2fs",
            self.entity,
            len(result.created.successful),
            len(result.updated.successful),
            len(result.archived.successful),
            result.total_failed,
            result.duration_seconds,
        )
        return result

    async def _execute_direct(self, operation: str, records: list[dict], bucket: OperationResult) -> None:
        outcomes = await run_in_batches(
            records,
            lambda record: self._attempt(operation, record),
            self.batch_size,
            self.batch_delay,
        )
        for ok, entry in outcomes:
            (bucket.successful if ok else bucket.failed).append(entry)

    async def _execute_bulk(self, operation: str, records: list[dict], bucket: OperationResult) -> None:
        runner = self.bulk_runner or BulkOperationRunner(self.client)
        try:
            outcome = await runner.run(
                self.documents[operation],
                [self.variables(operation, record) for record in records],
            )
        except Exception as e:
            logger.error("BULK_MUTATION_FAILED entity=%s operation=%s error=%s", self.entity, operation, e)
            bucket.failed.extend(self.failure_entry(record, str(e)) for record in records)
            return

        if not outcome.success:
            bucket.failed.extend(self.failure_entry(record, outcome.error or "Bulk operation failed") for record in records)
            return

        by_line: dict[int, dict] = {}
        for index, line in enumerate(outcome.results):
            by_line[int(line.get("__lineNumber", index))] = line

        follow_ups: list[tuple[dict, dict, dict]] = []
        for index, record in enumerate(records):
            line = by_line.get(index)
            if line is None:
                bucket.failed.append(self.failure_entry(record, "No result line returned by bulk operation"))
                continue
            payload = (line.get("data") or {}).get(self.payload_keys[operation]) or {}
            errors = user_errors(payload)
            if errors:
                bucket.failed.append(self.failure_entry(record, format_user_errors(errors), errors))
                continue
            entry = self.success_entry(operation, record, payload)
            bucket.successful.append(entry)
            follow_ups.append((record, payload, entry))

        await run_in_batches(
            follow_ups,
            lambda item: self._follow_up(operation, *item),
            self.batch_size,
            self.batch_delay,
        )

    async def _follow_up(self, operation: str, record: dict, payload: dict, entry: dict) -> None:
        try:
            await self.after_success(operation, record, payload, entry)
        except Exception as e:
            logger.warning(
                "MUTATION_FOLLOW_UP_FAILED entity=%s source_id=%s error=%s", self.entity, entry.get("source_id"), e
            )
            entry.setdefault("warnings", []).append(str(e))
