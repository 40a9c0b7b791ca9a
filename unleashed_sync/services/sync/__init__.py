"""Unleashed → Shopify mapping, mutation and orchestration."""

from unleashed_sync.services.sync.customer_mapping import map_customers
from unleashed_sync.services.sync.location_mapping import map_locations
from unleashed_sync.services.sync.models import MappingError, MappingResult, MutationResult
from unleashed_sync.services.sync.orchestrator import SyncOrchestrator, SyncReport
from unleashed_sync.services.sync.product_mapping import map_products
from unleashed_sync.services.sync.stats import get_daily_stats, get_last_sync, get_sync_history, record_sync_report

__all__ = [
    "MappingError",
    "MappingResult",
    "MutationResult",
    "SyncOrchestrator",
    "SyncReport",
    "get_daily_stats",
    "get_last_sync",
    "get_sync_history",
    "map_customers",
    "map_locations",
    "map_products",
    "record_sync_report",
]
