"""Whole-repository triage: embed, cluster, enrich, score, align, decide."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from prtriage.alignment import (
    AlignmentBatchError,
    BatchJobPoller,
    PollerFactory,
    load_vision_doc,
    run_alignment_batch,
)
from prtriage.clustering import cluster_duplicates, cluster_index
from prtriage.constants import CACHE_BODY_SNIPPET_LENGTH
from prtriage.decisions import derive_batch_action
from prtriage.embeddings import EmbeddingClient, EmbeddingError, sanitize
from prtriage.enrichment import enrich_issues, enrich_prs, load_enrichment_cache
from prtriage.github import GitHubClient
from prtriage.llm_client import JudgmentClient, JudgmentError
from prtriage.models import (
    AlignmentVerdict,
    BatchResult,
    BatchStats,
    CachedVectorEntry,
    DuplicateCluster,
    EnrichmentCache,
    ItemKind,
    PullRequest,
    QualityResult,
    TriageEntry,
    TriageItem,
)
from prtriage.quality import score_issue, score_issue_partial, score_pr, score_pr_partial
from prtriage.vector_cache import load_cache, save_cache, upsert_entry, utc_now_iso

logger = logging.getLogger(__name__)

NO_VISION_VERDICT = AlignmentVerdict("strays", "No VISION.md")
PENDING_VERDICT = AlignmentVerdict("pending", "Vision not run")

type VisionDocLoader = Callable[
    [GitHubClient, str, str], Awaitable[tuple[str | None, str | None]]
]


@dataclass(frozen=True)
class BatchOptions:
    cache_path: Path
    enrichment_cache_path: Path
    similarity_threshold: float
    skip_alignment: bool = False


def embedding_text(item: TriageItem) -> str:
    return sanitize(f"{item.title} {item.body[:CACHE_BODY_SNIPPET_LENGTH]}")


async def fill_vector_cache(
    items: Sequence[TriageItem], cache_path: Path, embedder: EmbeddingClient
) -> list[CachedVectorEntry]:
    """
    Embed items missing from the cache and persist it. Returns all cache entries.

    The cache counts as rebuilt whenever it covers every listed item, so a run
    with nothing new still refreshes ``last_rebuilt``.
    """
    cache = load_cache(cache_path)
    cached = {e.number for e in cache.entries}
    missing = [item for item in items if item.number not in cached]
    if not missing:
        cache.last_rebuilt = utc_now_iso()
        cache.pr_count = len(cache.entries)
        save_cache(cache_path, cache)
        return cache.entries

    logger.info("%d items need embedding", len(missing))
    try:
        vectors = await embedder.batch_embed([embedding_text(i) for i in missing])
    except EmbeddingError as e:
        logger.error("Embedding failed, continuing without new embeddings: %s", e)
        return cache.entries

    now = utc_now_iso()
    for idx, item in enumerate(missing):
        vector = vectors.get(idx)
        if vector is None:
            continue
        upsert_entry(
            cache.entries,
            CachedVectorEntry(
                number=item.number,
                title=item.title,
                body=item.body[:CACHE_BODY_SNIPPET_LENGTH],
                embedding=vector,
                cached_at=now,
            ),
        )
    cache.last_rebuilt = now
    cache.pr_count = len(cache.entries)
    save_cache(cache_path, cache)
    return cache.entries


def score_items(
    items: Sequence[TriageItem], enrichment: EnrichmentCache
) -> tuple[list[TriageItem], dict[int, QualityResult]]:
    """
    Score every item, full tier where detail data is cached.

    Returns the items with enrichment applied alongside their scores.
    """
    enriched_items: list[TriageItem] = []
    scores: dict[int, QualityResult] = {}
    for item in items:
        detail = enrichment.entries.get(item.number)
        if isinstance(item, PullRequest):
            if detail is not None:
                full = item.with_enrichment(detail)  # type: ignore[arg-type]
                enriched_items.append(full)
                scores[item.number] = score_pr(full)
            else:
                enriched_items.append(item)
                scores[item.number] = score_pr_partial(item)
        else:
            if detail is not None:
                full_issue = item.with_enrichment(detail)  # type: ignore[arg-type]
                enriched_items.append(full_issue)
                scores[item.number] = score_issue(full_issue)
            else:
                enriched_items.append(item)
                scores[item.number] = score_issue_partial(item)
    return enriched_items, scores


def compute_stats(
    entries: Sequence[TriageEntry], clusters: Sequence[DuplicateCluster]
) -> BatchStats:
    total = len(entries)
    alignment_counts = Counter(e.alignment for e in entries)
    avg_quality = (
        round(sum(e.quality_score for e in entries) / total, 1) if total else 0.0
    )
    return BatchStats(
        total_items=total,
        duplicate_clusters=len(clusters),
        duplicate_items=sum(len(c.members) for c in clusters),
        avg_quality=avg_quality,
        fits=alignment_counts["fits"],
        strays=alignment_counts["strays"],
        rejects=alignment_counts["rejects"],
        pending=alignment_counts["pending"],
        errors=alignment_counts["error"],
        actions=dict(Counter(e.recommended_action for e in entries)),
    )


async def _align(
    kind: ItemKind,
    owner: str,
    repo: str,
    items: Sequence[TriageItem],
    github: GitHubClient,
    judge: JudgmentClient | None,
    vision_doc_loader: VisionDocLoader,
    poller_factory: PollerFactory,
) -> tuple[dict[int, AlignmentVerdict], str | None]:
    vision_doc, source = await vision_doc_loader(github, owner, repo)
    if vision_doc is None:
        return {item.number: NO_VISION_VERDICT for item in items}, None
    if judge is None:
        logger.warning("No judgment client configured, skipping alignment")
        return {}, None

    try:
        outcome = await run_alignment_batch(
            judge,
            items,  # type: ignore[arg-type]
            vision_doc,
            source or "VISION.md",
            kind,
            poller_factory=poller_factory,
        )
    except (AlignmentBatchError, JudgmentError) as e:
        logger.error("Vision alignment failed, degrading gracefully: %s", e)
        failed = AlignmentVerdict("error", f"Vision batch failed: {e}")
        return {item.number: failed for item in items}, None
    return outcome.verdicts, outcome.batch_id


async def batch_triage(
    kind: ItemKind,
    owner: str,
    repo: str,
    options: BatchOptions,
    github: GitHubClient,
    embedder: EmbeddingClient,
    judge: JudgmentClient | None = None,
    vision_doc_loader: VisionDocLoader = load_vision_doc,
    poller_factory: PollerFactory = BatchJobPoller,
) -> BatchResult:
    """
    Triage every open PR (``kind="pr"``) or issue (``kind="issue"``).

    Partial failures degrade rather than abort: embedding failures leave
    items unclustered, enrichment failures leave items on the partial
    quality tier, and alignment failures mark items ``error``.
    """
    noun = "PRs" if kind == "pr" else "issues"
    logger.info("Fetching all open %s for %s/%s", noun, owner, repo)
    items: list[TriageItem]
    if kind == "pr":
        items = list(await github.list_open_prs(owner, repo))
    else:
        items = list(await github.list_open_issues(owner, repo))
    logger.info("Found %d open %s", len(items), noun)

    entries_cache = await fill_vector_cache(items, options.cache_path, embedder)

    open_numbers = {item.number for item in items}
    open_entries = [e for e in entries_cache if e.number in open_numbers]
    logger.info("Clustering duplicates (threshold: %s)", options.similarity_threshold)
    clusters = cluster_duplicates(open_entries, options.similarity_threshold)
    canonical_of = cluster_index(clusters)

    enrichment = load_enrichment_cache(options.enrichment_cache_path)
    numbers = [item.number for item in items]
    if kind == "pr":
        enrichment = await enrich_prs(
            github, owner, repo, numbers, enrichment, options.enrichment_cache_path
        )
    else:
        enrichment = await enrich_issues(
            github, owner, repo, numbers, enrichment, options.enrichment_cache_path
        )

    items, scores = score_items(items, enrichment)

    verdicts: dict[int, AlignmentVerdict] = {}
    batch_id: str | None = None
    if options.skip_alignment:
        logger.info("Skipping vision alignment")
    else:
        verdicts, batch_id = await _align(
            kind, owner, repo, items, github, judge, vision_doc_loader, poller_factory
        )

    entries: list[TriageEntry] = []
    for item in items:
        quality = scores[item.number]
        verdict = verdicts.get(item.number, PENDING_VERDICT)
        canonical = canonical_of.get(item.number)
        entries.append(
            TriageEntry(
                number=item.number,
                title=item.title,
                user=item.user,
                labels=tuple(item.labels),
                quality_score=quality.score,
                quality_tier=quality.tier,
                quality_breakdown=dict(quality.breakdown),
                alignment=verdict.alignment,
                alignment_reason=verdict.reason,
                duplicate_cluster=canonical,
                recommended_action=derive_batch_action(
                    canonical is not None, quality.score, verdict.alignment, kind
                ),
            )
        )

    stats = compute_stats(entries, clusters)
    logger.info("Triage complete: %d %s processed", len(entries), noun)
    return BatchResult(
        repo=f"{owner}/{repo}",
        kind=kind,
        total_items=len(items),
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        clusters=clusters,
        entries=entries,
        stats=stats,
        alignment_batch_id=batch_id,
    )
