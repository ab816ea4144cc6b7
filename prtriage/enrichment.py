"""Per-item detail fetching with a resumable on-disk cache."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, ValidationError

from prtriage.cache_utils import atomic_write_json, read_json
from prtriage.constants import CACHE_SCHEMA_VERSION, ENRICHMENT_CHECKPOINT_EVERY
from prtriage.models import EnrichedIssueDict, EnrichedPRDict, EnrichmentCache
from prtriage.vector_cache import utc_now_iso

if TYPE_CHECKING:
    from prtriage.github import GitHubClient

logger = logging.getLogger(__name__)

type FetchDetail = Callable[[int], Awaitable[dict[str, Any]]]


class _EnrichmentSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: int
    lastUpdated: str = ""
    entries: dict[int, dict[str, Any]]


def load_enrichment_cache(path: Path) -> EnrichmentCache:
    """Load the enrichment cache; any failure yields an empty cache."""
    if not path.exists():
        logger.info("No enrichment cache at %s, starting fresh", path)
        return EnrichmentCache(version=CACHE_SCHEMA_VERSION)
    try:
        parsed = _EnrichmentSchema.model_validate(read_json(path))
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning("Enrichment cache %s unreadable (%s), starting fresh", path, e)
        return EnrichmentCache(version=CACHE_SCHEMA_VERSION)
    except ValidationError:
        logger.warning("Enrichment cache %s has invalid format, starting fresh", path)
        return EnrichmentCache(version=CACHE_SCHEMA_VERSION)

    logger.info(
        "Loaded %d enrichment entries (last updated: %s)",
        len(parsed.entries),
        parsed.lastUpdated or "never",
    )
    return EnrichmentCache(
        version=parsed.version,
        last_updated=parsed.lastUpdated,
        entries=dict(parsed.entries),
    )


def save_enrichment_cache(path: Path, cache: EnrichmentCache) -> None:
    try:
        atomic_write_json(path, cache.to_dict())
    except (OSError, TypeError, ValueError) as e:
        logger.error("Failed to save enrichment cache to %s: %s", path, e)
        return
    logger.debug("Saved %d enrichment entries to %s", len(cache.entries), path)


def _format_eta(seconds: float) -> str:
    secs = max(0, int(seconds + 0.999))
    minutes = secs // 60
    if minutes > 0:
        return f"~{minutes}m {secs % 60}s remaining"
    return f"~{secs}s remaining"


async def _no_wait() -> None:
    return None


async def enrich_items(
    numbers: Iterable[int],
    cache: EnrichmentCache,
    cache_path: Path,
    fetch_detail: FetchDetail,
    wait: Callable[[], Awaitable[None]] = _no_wait,
    label: str = "items",
    clock: Callable[[], float] = time.monotonic,
) -> EnrichmentCache:
    """
    Fetch detail data for every number missing from the cache.

    Items are fetched one at a time after awaiting ``wait`` (the source's
    rate-limit gate). A failed fetch is logged and skipped, leaving that item
    on the partial tier. The cache is checkpointed every 50 successes and
    once more at the end when anything new was fetched.
    """
    numbers = list(numbers)
    uncached = [n for n in numbers if n not in cache.entries]
    logger.info(
        "%d %s total, %d cached, %d to fetch",
        len(numbers),
        label,
        len(numbers) - len(uncached),
        len(uncached),
    )

    enriched = 0
    start = clock()
    for number in uncached:
        try:
            await wait()
            detail = await fetch_detail(number)
        except Exception as e:
            logger.warning("Failed to enrich %s #%d: %s", label, number, e)
            continue

        cache.entries[number] = {**detail, "cachedAt": utc_now_iso()}
        enriched += 1

        if enriched % ENRICHMENT_CHECKPOINT_EVERY == 0:
            elapsed = max(clock() - start, 1e-9)
            rate = enriched / elapsed
            eta = (len(uncached) - enriched) / rate
            logger.info(
                "Progress: %d/%d %s enriched (%s)",
                enriched,
                len(uncached),
                label,
                _format_eta(eta),
            )
            cache.last_updated = utc_now_iso()
            save_enrichment_cache(cache_path, cache)

    if enriched > 0:
        cache.last_updated = utc_now_iso()
        save_enrichment_cache(cache_path, cache)

    logger.info("Enrichment done: %d new %s enriched", enriched, label)
    return cache


async def enrich_prs(
    github: GitHubClient,
    owner: str,
    repo: str,
    numbers: Iterable[int],
    cache: EnrichmentCache,
    cache_path: Path,
) -> EnrichmentCache:
    async def fetch(number: int) -> dict[str, Any]:
        pr = await github.fetch_pr(owner, repo, number)
        detail: EnrichedPRDict = {
            "additions": pr.additions,
            "deletions": pr.deletions,
            "changedFiles": pr.changed_files,
            "fileList": list(pr.file_list),
            "cachedAt": "",
        }
        return dict(detail)

    return await enrich_items(
        numbers, cache, cache_path, fetch, wait=github.wait_if_rate_limited, label="PRs"
    )


async def enrich_issues(
    github: GitHubClient,
    owner: str,
    repo: str,
    numbers: Iterable[int],
    cache: EnrichmentCache,
    cache_path: Path,
) -> EnrichmentCache:
    async def fetch(number: int) -> dict[str, Any]:
        issue = await github.fetch_issue(owner, repo, number)
        detail: EnrichedIssueDict = {
            "commentCount": issue.comment_count,
            "reactionCount": issue.reaction_count,
            # Linked PRs need the timeline API, one extra call per issue.
            "linkedPRs": 0,
            "milestone": issue.milestone,
            "assignees": list(issue.assignees),
            "cachedAt": "",
        }
        return dict(detail)

    return await enrich_items(
        numbers,
        cache,
        cache_path,
        fetch,
        wait=github.wait_if_rate_limited,
        label="issues",
    )
