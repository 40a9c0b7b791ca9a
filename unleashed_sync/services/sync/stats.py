"""Sync run history and daily counters.

Uses Redis; when Redis is unreachable recording is skipped and reads return
empty results.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, cast

from unleashed_sync.config import settings
from unleashed_sync.services.sync.orchestrator import SyncReport

if TYPE_CHECKING:
    from redis import Redis

logger = logging.getLogger(__name__)

# Redis key patterns
_STATS_KEY_PREFIX = "unleashed_sync:stats:"
_LAST_SYNC_KEY = "unleashed_sync:last_sync"
_HISTORY_KEY = "unleashed_sync:history"
_HISTORY_MAX_SIZE = 20
_STATS_TTL_SECONDS = 7 * 24 * 60 * 60

_COUNTER_FIELDS = ("created", "updated", "archived", "failed")

_redis_client: Redis | None = None


def _get_redis() -> Redis | None:
    """Get Redis client, return None if not available."""
    global _redis_client
    if _redis_client is None:
        try:
            import redis

            client = redis.from_url(settings.redis_url, decode_responses=True)
            client.ping()
        except Exception as e:
            logger.debug("SYNC_STATS_REDIS_UNAVAILABLE error=%s", e)
            return None
        _redis_client = client
    return _redis_client


def _day_key(date: datetime | None = None) -> str:
    day = (date or datetime.now(UTC)).strftime("%Y-%m-%d")
    return f"{_STATS_KEY_PREFIX}{day}"


def _empty_daily_stats() -> dict[str, int]:
    return {**{name: 0 for name in _COUNTER_FIELDS}, "sync_count": 0, "failed_runs": 0}


def record_sync_report(report: SyncReport) -> None:
    """Store a run summary in the capped history list and bump today's counters."""
    redis = _get_redis()
    if not redis:
        logger.debug("Redis not available, skipping sync history recording")
        return

    try:
        daily_key = _day_key()
        pipe = redis.pipeline()
        for result in report.mutations.values():
            for name, value in result.summary().items():
                if name in _COUNTER_FIELDS:
                    pipe.hincrby(daily_key, name, value)
        pipe.hincrby(daily_key, "sync_count", 1)
        if not report.success:
            pipe.hincrby(daily_key, "failed_runs", 1)
        pipe.expire(daily_key, _STATS_TTL_SECONDS)

        entry = {
            **report.summary(),
            "mutations": {entity: result.summary() for entity, result in report.mutations.items()},
            "error_details": report.failures()[:5],
        }
        payload = json.dumps(entry, default=str)
        pipe.set(_LAST_SYNC_KEY, payload)
        pipe.lpush(_HISTORY_KEY, payload)
        pipe.ltrim(_HISTORY_KEY, 0, _HISTORY_MAX_SIZE - 1)
        pipe.execute()
        logger.debug("SYNC_HISTORY_RECORDED sync_id=%s status=%s", report.sync_id, report.status)

    except Exception as e:
        logger.warning("SYNC_HISTORY_RECORD_FAILED sync_id=%s error=%s", report.sync_id, e)


def get_daily_stats(date: datetime | None = None) -> dict[str, int]:
    redis = _get_redis()
    if not redis:
        return _empty_daily_stats()

    try:
        stats = cast(dict[str, str], redis.hgetall(_day_key(date)))
    except Exception as e:
        logger.warning("SYNC_STATS_READ_FAILED error=%s", e)
        return _empty_daily_stats()
    return {name: int(stats.get(name, 0)) for name in _empty_daily_stats()}


def get_last_sync() -> dict | None:
    redis = _get_redis()
    if not redis:
        return None

    try:
        data = cast(str | None, redis.get(_LAST_SYNC_KEY))
        return json.loads(data) if data else None
    except Exception as e:
        logger.warning("SYNC_LAST_READ_FAILED error=%s", e)
        return None


def get_sync_history(limit: int = 10, domain: str | None = None) -> list[dict]:
    """Recent run summaries, most recent first."""
    redis = _get_redis()
    if not redis:
        return []

    try:
        entries = cast(list[str], redis.lrange(_HISTORY_KEY, 0, _HISTORY_MAX_SIZE - 1))
    except Exception as e:
        logger.warning("SYNC_HISTORY_READ_FAILED error=%s", e)
        return []

    history = []
    for raw in entries:
        try:
            entry = json.loads(raw)
        except ValueError:
            continue
        if domain and entry.get("domain") != domain:
            continue
        history.append(entry)
    return history[:limit]
