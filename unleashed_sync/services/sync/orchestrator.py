"""End-to-end sync run: fetch, map, mutate.

Stages form a small dependency graph. Mapping for every requested entity
runs concurrently once both datasets are fetched; mutation stages run as
soon as the stages they depend on have finished. A stage that raised marks
its dependents ``skipped``; stages that do not depend on it still run.

Record-level problems (mapping errors, rejected mutations) never fail a
stage; they mark it ``partial`` and are listed in the report's failures.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from unleashed_sync.config import settings
from unleashed_sync.metrics import observe_job
from unleashed_sync.services.credentials import CredentialBundle, CredentialStore
from unleashed_sync.services.data_pull import (
    DestinationDataset,
    SourceDataset,
    normalize_location,
    pull_all_data,
)
from unleashed_sync.services.shopify import queries
from unleashed_sync.services.shopify.client import ShopifyClient
from unleashed_sync.services.sync.batching import AUTO, QUEUE, MutationExecutor
from unleashed_sync.services.sync.customer_mapping import map_customers
from unleashed_sync.services.sync.customer_mutations import CustomerMutationExecutor
from unleashed_sync.services.sync.location_mapping import map_locations
from unleashed_sync.services.sync.location_mutations import LocationMutationExecutor
from unleashed_sync.services.sync.models import MappingResult, MutationResult
from unleashed_sync.services.sync.product_mapping import map_products
from unleashed_sync.services.sync.product_mutations import ProductMutationExecutor
from unleashed_sync.services.sync.queue import QueueDispatcher
from unleashed_sync.services.unleashed.client import UnleashedClient

logger = logging.getLogger(__name__)

STAGE_DEPENDENCIES: dict[str, tuple[str, ...]] = {
    "locations": (),
    "customers": ("locations",),
    "products": ("locations",),
}
ENTITIES = tuple(STAGE_DEPENDENCIES)

PENDING = "pending"
SUCCESS = "success"
PARTIAL = "partial"
FAILED = "failed"
SKIPPED = "skipped"
DRY_RUN = "dry_run"


def resolve_entities(entities: Iterable[str] | None) -> list[str]:
    if not entities:
        return list(ENTITIES)
    requested = {entity.strip().lower() for entity in entities}
    unknown = requested - set(ENTITIES)
    if unknown:
        raise ValueError(f"Unknown entities: {', '.join(sorted(unknown))}")
    return [entity for entity in ENTITIES if entity in requested]


def make_sync_id(domain: str) -> str:
    return f"sync_{domain}_{int(time.time() * 1000)}"


@dataclass
class StageReport:
    name: str
    status: str = PENDING
    mapping: dict[str, int] | None = None
    mutations: dict[str, Any] | None = None
    strategy: str | None = None
    error: str | None = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "mapping": self.mapping,
            "mutations": self.mutations,
            "strategy": self.strategy,
            "error": self.error,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class SyncReport:
    sync_id: str
    domain: str
    shop_domain: str | None = None
    dry_run: bool = False
    entities: list[str] = field(default_factory=list)
    status: str = PENDING
    error: str | None = None
    started_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    finished_at: str | None = None
    duration_seconds: float = 0.0
    fetch: dict[str, dict[str, int]] = field(default_factory=dict)
    stages: dict[str, StageReport] = field(default_factory=dict)
    mappings: dict[str, MappingResult] = field(default_factory=dict)
    mutations: dict[str, MutationResult] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status in (SUCCESS, DRY_RUN)

    def failures(self) -> list[dict]:
        """Every record-level failure with entity, source id, field and message."""
        items = []
        for entity, mapping in self.mappings.items():
            for error in mapping.errors:
                items.append({"entity": entity, "operation": "map", **error})
        for mutation in self.mutations.values():
            items.extend(mutation.failures())
        return items

    def summary(self) -> dict[str, Any]:
        return {
            "sync_id": self.sync_id,
            "domain": self.domain,
            "status": self.status,
            "dry_run": self.dry_run,
            "entities": self.entities,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_seconds": round(self.duration_seconds, 3),
            "stages": {name: stage.status for name, stage in self.stages.items()},
            "failures": len(self.failures()),
            "error": self.error,
        }

    def to_dict(self, include_details: bool = False) -> dict[str, Any]:
        data = {
            **self.summary(),
            "shop_domain": self.shop_domain,
            "fetch": self.fetch,
            "stages": {name: stage.to_dict() for name, stage in self.stages.items()},
            "failures": self.failures(),
        }
        if include_details:
            data["mappings"] = {entity: mapping.to_dict() for entity, mapping in self.mappings.items()}
            data["mutation_results"] = {entity: result.to_dict() for entity, result in self.mutations.items()}
        return data


def _default_unleashed(bundle: CredentialBundle) -> UnleashedClient:
    return UnleashedClient(bundle.unleashed_api_id, bundle.unleashed_api_key)


def _default_shopify(bundle: CredentialBundle) -> ShopifyClient:
    return ShopifyClient(bundle.shop_domain, bundle.shopify_access_token)


class SyncOrchestrator:
    """Runs one sync for one tenant domain."""

    def __init__(
        self,
        store: CredentialStore,
        unleashed_factory: Callable[[CredentialBundle], UnleashedClient] = _default_unleashed,
        shopify_factory: Callable[[CredentialBundle], ShopifyClient] = _default_shopify,
        queue_enabled: bool = True,
        publish: Callable[[dict], str | None] | None = None,
        province_codes: Mapping[str, str] | None = None,
        batch_size: int | None = None,
        batch_delay: float | None = None,
    ):
        self.store = store
        self.unleashed_factory = unleashed_factory
        self.shopify_factory = shopify_factory
        self.queue_enabled = queue_enabled
        self.publish = publish
        self.province_codes = province_codes
        self.batch_size = batch_size
        self.batch_delay = batch_delay

    async def run(
        self,
        domain: str,
        entities: Iterable[str] | None = None,
        dry_run: bool = False,
        strategy: str | None = None,
    ) -> SyncReport:
        """Fetch, map and (unless ``dry_run``) mutate.

        Raises CredentialsError when the domain has no usable credentials;
        every later failure is reported instead of raised.
        """
        selected = resolve_entities(entities)
        bundle = self.store.get(domain)
        start = time.monotonic()
        report = SyncReport(
            sync_id=make_sync_id(bundle.domain),
            domain=bundle.domain,
            shop_domain=bundle.shop_domain,
            dry_run=dry_run,
            entities=selected,
            stages={name: StageReport(name) for name in selected},
        )
        logger.info(
            "SYNC_RUN_START sync_id=%s domain=%s entities=%s dry_run=%s strategy=%s",
            report.sync_id,
            report.domain,
            ",".join(selected),
            dry_run,
            strategy or settings.mutation_strategy,
        )

        unleashed = self.unleashed_factory(bundle)
        shopify = self.shopify_factory(bundle)
        try:
            await self._run(report, unleashed, shopify, strategy)
        finally:
            await unleashed.close()
            await shopify.close()
            report.duration_seconds = time.monotonic() - start
            report.finished_at = datetime.now(UTC).isoformat()
            observe_job("sync_run", report.status, report.duration_seconds)

        logger.info(
            "SYNC_RUN_COMPLETE sync_id=%s status=%s failures=%d duration=%.2fs",
            report.sync_id,
            report.status,
            len(report.failures()),
            report.duration_seconds,
        )
        return report

    async def _run(
        self,
        report: SyncReport,
        unleashed: UnleashedClient,
        shopify: ShopifyClient,
        strategy: str | None,
    ) -> None:
        try:
            source, destination = await pull_all_data(
                unleashed,
                shopify,
                include_contacts="customers" in report.entities,
            )
        except Exception as e:
            logger.exception("SYNC_FETCH_FAILED sync_id=%s error=%s", report.sync_id, e)
            report.error = f"Data fetch failed: {e}"
            report.status = FAILED
            for stage in report.stages.values():
                stage.status = SKIPPED
            return
        report.fetch = {"source": source.counts(), "destination": destination.counts()}

        await self._map(report, source, destination)
        if report.dry_run:
            for stage in report.stages.values():
                if stage.status == PENDING:
                    stage.status = DRY_RUN
            report.status = DRY_RUN if all(s.status == DRY_RUN for s in report.stages.values()) else PARTIAL
            return

        await self._mutate(report, shopify, destination, strategy)
        report.status = overall_status(report.stages.values())

    # -- mapping ------------------------------------------------------------

    def _mapper(self, entity: str, source: SourceDataset, destination: DestinationDataset) -> Callable[[], MappingResult]:
        if entity == "locations":
            return lambda: map_locations(
                source.warehouses, destination.locations, province_codes=self.province_codes
            )
        if entity == "customers":
            return lambda: map_customers(source.customers, destination.customers, source.contacts)
        return lambda: map_products(
            source.products, destination.products, destination.locations, source.warehouses
        )

    async def _map(self, report: SyncReport, source: SourceDataset, destination: DestinationDataset) -> None:
        entities = list(report.stages)
        results = await asyncio.gather(
            *(asyncio.to_thread(self._mapper(entity, source, destination)) for entity in entities),
            return_exceptions=True,
        )
        for entity, result in zip(entities, results):
            stage = report.stages[entity]
            if isinstance(result, BaseException):
                logger.error("SYNC_MAPPING_FAILED sync_id=%s entity=%s error=%s", report.sync_id, entity, result)
                stage.status = FAILED
                stage.error = f"Mapping failed: {result}"
                continue
            report.mappings[entity] = result
            stage.mapping = result.summary()

    # -- mutation -----------------------------------------------------------

    def _executor(self, entity: str, shopify: ShopifyClient) -> MutationExecutor:
        kwargs = {"batch_size": self.batch_size, "batch_delay": self.batch_delay}
        if entity == "locations":
            return LocationMutationExecutor(shopify, **kwargs)
        if entity == "customers":
            return CustomerMutationExecutor(shopify, **kwargs)
        return ProductMutationExecutor(shopify, **kwargs)

    def _dispatcher(self, report: SyncReport, strategy: str | None) -> QueueDispatcher | None:
        requested = (strategy or settings.mutation_strategy).lower()
        if not self.queue_enabled or requested not in (QUEUE, AUTO):
            return None
        return QueueDispatcher(report.sync_id, report.domain, report.shop_domain, publish=self.publish)

    async def _refresh_locations(
        self,
        report: SyncReport,
        shopify: ShopifyClient,
        destination: DestinationDataset,
    ) -> list[dict]:
        result = report.mutations.get("locations")
        if result is None or result.strategy == QUEUE:
            return destination.locations
        if not (result.created.successful or result.updated.successful):
            return destination.locations
        try:
            nodes = await shopify.paginate(queries.LOCATIONS_QUERY, "locations")
        except Exception as e:
            logger.warning("SYNC_LOCATION_REFRESH_FAILED sync_id=%s error=%s", report.sync_id, e)
            return destination.locations
        return [normalize_location(node) for node in nodes]

    async def _run_stage(
        self,
        report: SyncReport,
        entity: str,
        shopify: ShopifyClient,
        destination: DestinationDataset,
        strategy: str | None,
    ) -> None:
        stage = report.stages[entity]
        start = time.monotonic()
        logger.info("SYNC_STAGE_START sync_id=%s stage=%s", report.sync_id, entity)
        try:
            executor = self._executor(entity, shopify)
            if isinstance(executor, ProductMutationExecutor) and "locations" in report.stages:
                executor.set_locations(await self._refresh_locations(report, shopify, destination))
            result = await executor.execute(
                report.mappings[entity],
                strategy=strategy,
                dispatcher=self._dispatcher(report, strategy),
            )
        except Exception as e:
            logger.exception("SYNC_STAGE_FAILED sync_id=%s stage=%s error=%s", report.sync_id, entity, e)
            stage.status = FAILED
            stage.error = str(e)
            return
        finally:
            stage.duration_seconds = time.monotonic() - start

        report.mutations[entity] = result
        stage.mutations = result.summary()
        stage.strategy = result.strategy
        stage.status = PARTIAL if result.has_errors or report.mappings[entity].has_errors else SUCCESS
        logger.info("SYNC_STAGE_COMPLETE sync_id=%s stage=%s status=%s", report.sync_id, entity, stage.status)

    async def _mutate(
        self,
        report: SyncReport,
        shopify: ShopifyClient,
        destination: DestinationDataset,
        strategy: str | None,
    ) -> None:
        pending = [name for name, stage in report.stages.items() if stage.status == PENDING]
        while pending:
            ready = []
            for name in pending:
                dependencies = [d for d in STAGE_DEPENDENCIES[name] if d in report.stages]
                if any(report.stages[d].status == PENDING for d in dependencies):
                    continue
                failed = [d for d in dependencies if report.stages[d].status in (FAILED, SKIPPED)]
                if failed:
                    report.stages[name].status = SKIPPED
                    report.stages[name].error = f"Dependency failed: {', '.join(failed)}"
                    logger.warning("SYNC_STAGE_SKIPPED sync_id=%s stage=%s dependencies=%s", report.sync_id, name, failed)
                else:
                    ready.append(name)
            await asyncio.gather(
                *(self._run_stage(report, name, shopify, destination, strategy) for name in ready)
            )
            pending = [name for name in pending if report.stages[name].status == PENDING]


def overall_status(stages: Iterable[StageReport]) -> str:
    statuses = [stage.status for stage in stages]
    if not statuses or all(status == SUCCESS for status in statuses):
        return SUCCESS
    if all(status in (FAILED, SKIPPED) for status in statuses):
        return FAILED
    return PARTIAL
