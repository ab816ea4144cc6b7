"""Triage a single PR or issue against the cached corpus."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from prtriage.alignment import check_alignment, load_vision_doc
from prtriage.batch import VisionDocLoader, embedding_text, fill_vector_cache
from prtriage.constants import CACHE_BODY_SNIPPET_LENGTH, RELATED_SIMILARITY_MARGIN
from prtriage.decisions import derive_action
from prtriage.embeddings import EmbeddingClient, EmbeddingError
from prtriage.github import GitHubClient
from prtriage.llm_client import JudgmentClient, JudgmentError
from prtriage.models import (
    AlignmentVerdict,
    CachedVectorEntry,
    ItemKind,
    SingleTriageResult,
    TriageItem,
)
from prtriage.quality import score_issue, score_pr
from prtriage.report import render_draft_comment
from prtriage.similarity import find_similar
from prtriage.vector_cache import (
    is_cache_stale,
    load_cache,
    save_cache,
    upsert_entry,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SingleOptions:
    cache_path: Path
    similarity_threshold: float
    skip_alignment: bool = False


async def _target_embedding(
    item: TriageItem, cache_path: Path, embedder: EmbeddingClient
) -> list[float]:
    cache = load_cache(cache_path)
    for entry in cache.entries:
        if entry.number == item.number and entry.embedding:
            return entry.embedding

    vectors = await embedder.batch_embed([embedding_text(item)])
    vector = vectors.get(0)
    if vector is None:
        logger.warning("#%d has too little text to embed", item.number)
        return []
    upsert_entry(
        cache.entries,
        CachedVectorEntry(
            number=item.number,
            title=item.title,
            body=item.body[:CACHE_BODY_SNIPPET_LENGTH],
            embedding=vector,
            cached_at=utc_now_iso(),
        ),
    )
    cache.pr_count = len(cache.entries)
    save_cache(cache_path, cache)
    return vector


async def _alignment(
    item: TriageItem,
    owner: str,
    repo: str,
    github: GitHubClient,
    judge: JudgmentClient | None,
    skip: bool,
    vision_doc_loader: VisionDocLoader,
) -> AlignmentVerdict:
    if skip or judge is None:
        return AlignmentVerdict("strays", "Vision check skipped")
    vision_doc, source = await vision_doc_loader(github, owner, repo)
    try:
        return await check_alignment(judge, item, vision_doc, source)
    except JudgmentError as e:
        logger.error("Vision check failed for #%d: %s", item.number, e)
        return AlignmentVerdict("strays", f"Vision check failed: {e}")


async def triage_item(
    kind: ItemKind,
    number: int,
    owner: str,
    repo: str,
    options: SingleOptions,
    github: GitHubClient,
    embedder: EmbeddingClient,
    judge: JudgmentClient | None = None,
    vision_doc_loader: VisionDocLoader = load_vision_doc,
    now: datetime | None = None,
) -> SingleTriageResult:
    """
    Triage one PR or issue.

    A stale vector cache is topped up from the open-item listing first, so
    similarity is measured against a current corpus. Matches at or above the
    threshold make the item a duplicate; matches within a small margin below
    it are listed as related.
    """
    item: TriageItem
    if kind == "pr":
        item = await github.fetch_pr(owner, repo, number)
    else:
        item = await github.fetch_issue(owner, repo, number)

    if is_cache_stale(load_cache(options.cache_path), now=now):
        logger.info("Vector cache is stale, refreshing from open %ss", kind)
        open_items: list[TriageItem] = list(
            await github.list_open_prs(owner, repo)
            if kind == "pr"
            else await github.list_open_issues(owner, repo)
        )
        await fill_vector_cache(open_items, options.cache_path, embedder)

    try:
        target = await _target_embedding(item, options.cache_path, embedder)
    except EmbeddingError as e:
        logger.error("Could not embed #%d, skipping duplicate check: %s", number, e)
        target = []

    entries = load_cache(options.cache_path).entries
    threshold = options.similarity_threshold
    similar = (
        find_similar(
            target, number, entries, max(0.0, threshold - RELATED_SIMILARITY_MARGIN)
        )
        if target
        else []
    )
    is_duplicate = any(s.score >= threshold for s in similar)

    quality = score_pr(item) if kind == "pr" else score_issue(item)  # type: ignore[arg-type]
    verdict = await _alignment(
        item, owner, repo, github, judge, options.skip_alignment, vision_doc_loader
    )
    # Single-item verdicts are always fits, strays or rejects.
    alignment = verdict.alignment if verdict.alignment in ("fits", "rejects") else "strays"

    result = SingleTriageResult(
        number=number,
        kind=kind,
        is_duplicate=is_duplicate,
        duplicate_of=similar,
        quality_score=quality.score,
        quality_breakdown=dict(quality.breakdown),
        alignment=alignment,
        alignment_reason=verdict.reason,
        recommended_action=derive_action(is_duplicate, quality.score, alignment, kind),
    )
    result.draft_comment = render_draft_comment(result)
    return result
