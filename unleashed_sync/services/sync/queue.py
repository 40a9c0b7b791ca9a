"""Queue strategy: one background message per mutation.

Messages are plain JSON so any celery worker can consume them::

    {"type": "CREATE_PRODUCT", "sync_id": "...", "original_domain": "...",
     "shop_domain": "...", "payload": {...record...}, "timestamp": "..."}
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from unleashed_sync.services.credentials import CredentialStore, CredentialsError
from unleashed_sync.services.shopify.client import ShopifyClient
from unleashed_sync.services.sync.batching import MutationExecutor, MutationRejected
from unleashed_sync.services.sync.customer_mutations import CustomerMutationExecutor
from unleashed_sync.services.sync.location_mutations import LocationMutationExecutor
from unleashed_sync.services.sync.models import ARCHIVE, CREATE, UPDATE, OperationResult
from unleashed_sync.services.sync.product_mutations import ProductMutationExecutor

logger = logging.getLogger(__name__)

EXECUTORS: dict[str, type[MutationExecutor]] = {
    "locations": LocationMutationExecutor,
    "customers": CustomerMutationExecutor,
    "products": ProductMutationExecutor,
}

_ENTITY_NAMES = {"locations": "LOCATION", "customers": "CUSTOMER", "products": "PRODUCT"}

MESSAGE_TYPES: dict[str, tuple[str, str]] = {
    f"{operation.upper()}_{name}": (entity, operation)
    for entity, name in _ENTITY_NAMES.items()
    for operation in (CREATE, UPDATE, ARCHIVE)
    if operation != ARCHIVE or entity == "products"
}


class InvalidMessage(ValueError):
    """A queued message cannot be processed and should not be retried."""


def message_type(entity: str, operation: str) -> str:
    name = f"{operation.upper()}_{_ENTITY_NAMES.get(entity, '')}"
    if name not in MESSAGE_TYPES:
        raise ValueError(f"No message type for {operation} {entity}")
    return name


def build_message(
    entity: str,
    operation: str,
    record: dict,
    sync_id: str,
    original_domain: str,
    shop_domain: str,
) -> dict[str, Any]:
    return {
        "type": message_type(entity, operation),
        "sync_id": sync_id,
        "original_domain": original_domain,
        "shop_domain": shop_domain,
        "payload": record,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def parse_message(message: dict) -> tuple[str, str, dict]:
    if not isinstance(message, dict):
        raise InvalidMessage("Message must be an object")
    kind = message.get("type")
    if kind not in MESSAGE_TYPES:
        raise InvalidMessage(f"Unknown message type: {kind}")
    payload = message.get("payload")
    if not isinstance(payload, dict):
        raise InvalidMessage("Message payload must be an object")
    if not message.get("original_domain"):
        raise InvalidMessage("Message has no original_domain")
    entity, operation = MESSAGE_TYPES[kind]
    return entity, operation, payload


def _default_publish(message: dict) -> str:
    from unleashed_sync.tasks.sync import process_mutation_message

    return process_mutation_message.delay(message).id


class QueueDispatcher:
    """Publishes mutations instead of running them.

    Published records count as successful with ``status: "queued"``; a
    record whose publish call raised is counted as failed.
    """

    def __init__(
        self,
        sync_id: str,
        original_domain: str,
        shop_domain: str,
        publish: Callable[[dict], str | None] | None = None,
    ):
        self.sync_id = sync_id
        self.original_domain = original_domain
        self.shop_domain = shop_domain
        self.publish = publish or _default_publish

    async def dispatch(self, entity: str, operation: str, records: list[dict], bucket: OperationResult) -> None:
        for record in records:
            source_id = MutationExecutor.source_id(record)
            message = build_message(
                entity, operation, record, self.sync_id, self.original_domain, self.shop_domain
            )
            try:
                task_id = self.publish(message)
            except Exception as e:
                logger.error("MUTATION_PUBLISH_FAILED type=%s source_id=%s error=%s", message["type"], source_id, e)
                bucket.failed.append({"source_id": source_id, "id": record.get("id"), "message": str(e)})
                continue
            bucket.successful.append(
                {"source_id": source_id, "id": record.get("id"), "status": "queued", "task_id": task_id}
            )
        logger.info(
            "MUTATIONS_QUEUED entity=%s operation=%s queued=%d failed=%d",
            entity,
            operation,
            len(bucket.successful),
            len(bucket.failed),
        )


async def handle_message(
    message: dict,
    store: CredentialStore,
    transport=None,
) -> dict[str, Any]:
    """Apply one queued mutation.

    Validation problems (bad message, missing credentials, ``userErrors``)
    return an unsuccessful result; transport errors propagate so the
    consumer can retry the message.
    """
    try:
        entity, operation, record = parse_message(message)
        bundle = store.get(message["original_domain"])
    except (InvalidMessage, CredentialsError) as e:
        kind = message.get("type") if isinstance(message, dict) else None
        logger.error("MUTATION_MESSAGE_INVALID type=%s error=%s", kind, e)
        return {"success": False, "type": kind, "error": str(e)}

    async with ShopifyClient(bundle.shop_domain, bundle.shopify_access_token, transport=transport) as client:
        executor = EXECUTORS[entity](client)
        try:
            entry = await executor.apply(operation, record)
        except MutationRejected as e:
            logger.warning("MUTATION_MESSAGE_REJECTED type=%s errors=%s", message["type"], e)
            return {
                "success": False,
                "type": message["type"],
                "sync_id": message.get("sync_id"),
                "error": str(e),
                "errors": e.errors,
            }
    return {"success": True, "type": message["type"], "sync_id": message.get("sync_id"), "result": entry}
