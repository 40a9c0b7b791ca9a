import asyncio
import time

from unleashed_sync.celery_app import celery_app
from unleashed_sync.logging import get_logger
from unleashed_sync.metrics import observe_job
from unleashed_sync.services.credentials import CredentialsError, RedisCredentialStore
from unleashed_sync.services.shopify.client import ShopifyRateLimitError, ShopifyTransientError
from unleashed_sync.services.sync.orchestrator import SyncOrchestrator
from unleashed_sync.services.sync.queue import handle_message
from unleashed_sync.services.sync.stats import record_sync_report


@celery_app.task(
    name="unleashed_sync.tasks.sync.run_sync",
    time_limit=3600,
    soft_time_limit=3300,
)
def run_sync(domain: str, entities: list[str] | None = None, strategy: str | None = None, dry_run: bool = False):
    """Run a full orchestrated sync for one domain and record it in history."""
    start = time.monotonic()
    status = "success"
    logger = get_logger(__name__)
    logger.info("SYNC_TASK_START domain=%s entities=%s strategy=%s", domain, entities, strategy)
    try:
        orchestrator = SyncOrchestrator(RedisCredentialStore())
        report = asyncio.run(orchestrator.run(domain, entities=entities, dry_run=dry_run, strategy=strategy))
        record_sync_report(report)
        status = report.status
        logger.info("SYNC_TASK_COMPLETE domain=%s sync_id=%s status=%s", domain, report.sync_id, report.status)
        return report.to_dict()
    except CredentialsError as e:
        status = "error"
        logger.error("SYNC_TASK_NO_CREDENTIALS domain=%s error=%s", domain, e)
        return {"success": False, "domain": domain, "error": str(e)}
    except Exception:
        status = "error"
        logger.exception("SYNC_TASK_FAILED domain=%s", domain)
        raise
    finally:
        duration = time.monotonic() - start
        observe_job("sync_task", status, duration)


@celery_app.task(
    name="unleashed_sync.tasks.sync.process_mutation_message",
    bind=True,
    time_limit=120,
    soft_time_limit=100,
    max_retries=5,
    autoretry_for=(ShopifyTransientError,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_jitter=True,
)
def process_mutation_message(self, message: dict):
    """Apply one queued Shopify mutation.

    Invalid messages and rejected mutations are acknowledged with an
    unsuccessful result; transport errors are retried with backoff.
    """
    start = time.monotonic()
    status = "success"
    logger = get_logger(__name__)
    fields = message if isinstance(message, dict) else {}
    kind = fields.get("type")
    logger.info("MUTATION_MESSAGE_START type=%s sync_id=%s", kind, fields.get("sync_id"))
    try:
        result = asyncio.run(handle_message(message, RedisCredentialStore()))
        if not result.get("success"):
            status = "error"
        logger.info("MUTATION_MESSAGE_COMPLETE type=%s success=%s", kind, result.get("success"))
        return result
    except ShopifyRateLimitError as e:
        status = "retry"
        retry_after = e.retry_after or 60
        logger.warning("MUTATION_MESSAGE_RATE_LIMITED type=%s retry_after=%s", kind, retry_after)
        raise self.retry(exc=e, countdown=retry_after)
    except ShopifyTransientError as e:
        status = "retry"
        logger.warning("MUTATION_MESSAGE_RETRY type=%s error=%s", kind, e)
        raise
    except Exception:
        status = "error"
        logger.exception("MUTATION_MESSAGE_FAILED type=%s", kind)
        raise
    finally:
        duration = time.monotonic() - start
        observe_job("mutation_message", status, duration)
