"""Result types shared by the mappers, mutation executors and orchestrator."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass
from dataclasses import field as dataclass_field
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

CREATE = "create"
UPDATE = "update"
SKIP = "skip"
ERROR = "error"
ARCHIVE = "archive"

IDENTICAL_DATA = "identical_data"


class MappingError(Exception):
    """A mapping pipeline could not run at all (malformed input)."""


@dataclass
class ItemOutcome:
    """Decision for one source item (or one product group)."""

    kind: str
    source_id: str
    record: dict | None = None
    reason: str | None = None
    message: str | None = None
    field: str | None = None
    source_keys: list[str] = dataclass_field(default_factory=list)

    def __post_init__(self):
        if not self.source_keys:
            self.source_keys = [self.source_id]

    @classmethod
    def create(cls, source_id: str, record: dict, **kwargs) -> ItemOutcome:
        return cls(CREATE, source_id, record=record, **kwargs)

    @classmethod
    def update(cls, source_id: str, record: dict, **kwargs) -> ItemOutcome:
        return cls(UPDATE, source_id, record=record, **kwargs)

    @classmethod
    def skip(cls, source_id: str, reason: str, **kwargs) -> ItemOutcome:
        return cls(SKIP, source_id, reason=reason, **kwargs)

    @classmethod
    def error(cls, source_id: str, message: str, field: str | None = None, **kwargs) -> ItemOutcome:
        return cls(ERROR, source_id, message=message, field=field, **kwargs)


@dataclass
class MappingResult:
    """Partition of one entity type's source set against the destination."""

    entity: str
    to_create: list[dict] = dataclass_field(default_factory=list)
    to_update: list[dict] = dataclass_field(default_factory=list)
    to_archive: list[dict] = dataclass_field(default_factory=list)
    skipped: list[dict] = dataclass_field(default_factory=list)
    errors: list[dict] = dataclass_field(default_factory=list)
    processed: int = 0
    decision_log: list[dict] = dataclass_field(default_factory=list)
    duplicate_skus: list[dict] = dataclass_field(default_factory=list)
    details: dict[str, Any] = dataclass_field(default_factory=dict)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def add(self, outcome: ItemOutcome) -> None:
        self.processed += 1
        if outcome.kind == CREATE:
            self.to_create.append(outcome.record or {})
        elif outcome.kind == UPDATE:
            self.to_update.append(outcome.record or {})
        elif outcome.kind == SKIP:
            entry = {"source_id": outcome.source_id, "reason": outcome.reason}
            if outcome.source_keys != [outcome.source_id]:
                entry["source_keys"] = list(outcome.source_keys)
            self.skipped.append(entry)
        else:
            entry = {
                "source_id": outcome.source_id,
                "field": outcome.field,
                "message": outcome.message,
            }
            if outcome.source_keys != [outcome.source_id]:
                entry["source_keys"] = list(outcome.source_keys)
            self.errors.append(entry)

    def covered_source_keys(self) -> set[str]:
        """Every source identity accounted for by create/update/skip/error."""
        keys: set[str] = set()
        for bucket in (self.to_create, self.to_update, self.skipped, self.errors):
            for entry in bucket:
                keys.update(entry.get("source_keys") or [entry.get("source_id")])
        keys.discard(None)
        return keys

    def summary(self) -> dict[str, int]:
        return {
            "to_create": len(self.to_create),
            "to_update": len(self.to_update),
            "to_archive": len(self.to_archive),
            "skipped": len(self.skipped),
            "errors": len(self.errors),
            "processed": self.processed,
        }

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def fold_outcomes(
    result: MappingResult,
    items: Iterable[T],
    handler: Callable[[T], ItemOutcome],
    key: Callable[[T], str],
) -> MappingResult:
    """Run ``handler`` over every item, turning exceptions into error outcomes."""
    for item in items:
        try:
            outcome = handler(item)
        except Exception as e:
            source_id = _safe_key(key, item)
            logger.warning("MAPPING_ITEM_FAILED entity=%s source_id=%s error=%s", result.entity, source_id, e)
            outcome = ItemOutcome.error(source_id, str(e))
        result.add(outcome)
    return result


def _safe_key(key: Callable[[Any], str], item: Any) -> str:
    try:
        return str(key(item))
    except Exception:
        return "<unknown>"


# -----------------------------------------------------------------------------
# Mutation results
# -----------------------------------------------------------------------------

@dataclass
class OperationResult:
    successful: list[dict] = dataclass_field(default_factory=list)
    failed: list[dict] = dataclass_field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return len(self.successful) + len(self.failed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "total_processed": self.total_processed,
        }


@dataclass
class MutationResult:
    """Outcome of executing one entity type's mapping result."""

    entity: str
    strategy: str = "direct"
    created: OperationResult = dataclass_field(default_factory=OperationResult)
    updated: OperationResult = dataclass_field(default_factory=OperationResult)
    archived: OperationResult = dataclass_field(default_factory=OperationResult)
    duration_seconds: float = 0.0

    def operation(self, name: str) -> OperationResult:
        return {CREATE: self.created, UPDATE: self.updated, ARCHIVE: self.archived}[name]

    @property
    def total_failed(self) -> int:
        return len(self.created.failed) + len(self.updated.failed) + len(self.archived.failed)

    @property
    def total_processed(self) -> int:
        return self.created.total_processed + self.updated.total_processed + self.archived.total_processed

    @property
    def has_errors(self) -> bool:
        return self.total_failed > 0

    def failures(self) -> list[dict]:
        items = []
        for name, op in ((CREATE, self.created), (UPDATE, self.updated), (ARCHIVE, self.archived)):
            for failure in op.failed:
                items.append({"entity": self.entity, "operation": name, **failure})
        return items

    def summary(self) -> dict[str, Any]:
        return {
            "created": len(self.created.successful),
            "updated": len(self.updated.successful),
            "archived": len(self.archived.successful),
            "failed": self.total_failed,
            "total": self.total_processed,
            "duration_seconds": round(self.duration_seconds, 3),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "strategy": self.strategy,
            "created": self.created.to_dict(),
            "updated": self.updated.to_dict(),
            "archived": self.archived.to_dict(),
            "summary": self.summary(),
        }
