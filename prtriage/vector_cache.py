"""Persistent embedding cache keyed by item number."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

from prtriage.cache_utils import atomic_write_json, read_json
from prtriage.constants import CACHE_SCHEMA_VERSION, CACHE_STALE_MINUTES
from prtriage.models import CachedVectorEntry, VectorCache

logger = logging.getLogger(__name__)


class _EntrySchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    number: int
    title: str = ""
    body: str = ""
    embedding: list[float]
    cachedAt: str = ""


class _CacheSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: int
    lastRebuilt: str = ""
    prCount: int = 0
    entries: list[_EntrySchema]


def empty_cache() -> VectorCache:
    return VectorCache(
        version=CACHE_SCHEMA_VERSION, last_rebuilt="", pr_count=0, entries=[]
    )


def load_cache(path: Path) -> VectorCache:
    """
    Load the vector cache from disk.

    Never raises: a missing, unreadable or malformed file yields an empty cache.
    """
    if not path.exists():
        logger.info("No vector cache at %s, starting fresh", path)
        return empty_cache()
    try:
        raw = read_json(path)
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning("Vector cache %s unreadable (%s), starting fresh", path, e)
        return empty_cache()
    try:
        parsed = _CacheSchema.model_validate(raw)
    except ValidationError as e:
        logger.warning(
            "Vector cache %s has invalid structure (%d errors), starting fresh",
            path,
            e.error_count(),
        )
        return empty_cache()

    entries = [
        CachedVectorEntry(
            number=e.number,
            title=e.title,
            body=e.body,
            embedding=e.embedding,
            cached_at=e.cachedAt,
        )
        for e in parsed.entries
    ]
    # Later entries win when a hand-edited file repeats a number.
    deduped: dict[int, CachedVectorEntry] = {}
    for entry in entries:
        deduped[entry.number] = entry
    return VectorCache(
        version=parsed.version,
        last_rebuilt=parsed.lastRebuilt,
        pr_count=parsed.prCount,
        entries=list(deduped.values()),
    )


def save_cache(path: Path, cache: VectorCache) -> None:
    """Persist the cache atomically. Failures are logged, never raised."""
    try:
        atomic_write_json(path, cache.to_dict())
    except (OSError, TypeError, ValueError) as e:
        logger.error("Failed to save vector cache to %s: %s", path, e)


def upsert_entry(
    entries: list[CachedVectorEntry], entry: CachedVectorEntry
) -> list[CachedVectorEntry]:
    """Replace the entry with the same number, or append it."""
    for idx, existing in enumerate(entries):
        if existing.number == entry.number:
            entries[idx] = entry
            return entries
    entries.append(entry)
    return entries


def _parse_timestamp(value: str) -> datetime | None:
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def is_cache_stale(cache: VectorCache, now: datetime | None = None) -> bool:
    """True when the cache was never rebuilt or is older than the stale window."""
    if not cache.last_rebuilt:
        return True
    rebuilt = _parse_timestamp(cache.last_rebuilt)
    if rebuilt is None:
        return True
    if now is None:
        now = datetime.now(timezone.utc)
    return now - rebuilt > timedelta(minutes=CACHE_STALE_MINUTES)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
