"""Typed data models for PR and issue triage."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Literal, Optional, TypedDict

from prtriage.constants import CACHE_SCHEMA_VERSION

ItemKind = Literal["pr", "issue"]
Verdict = Literal["fits", "strays", "rejects"]
Alignment = Literal["fits", "strays", "rejects", "pending", "error"]
QualityTier = Literal["full", "partial"]
Action = Literal[
    "merge_candidate",
    "review_duplicates",
    "needs_revision",
    "close",
    "prioritize",
    "needs_info",
    "wontfix",
    "flag",
]


class CachedEntryDict(TypedDict):
    """Serialized CachedVectorEntry as stored in the vector cache file."""

    number: int
    title: str
    body: str
    embedding: list[float]
    cachedAt: str


class VectorCacheDict(TypedDict):
    version: int
    lastRebuilt: str
    prCount: int
    entries: list[CachedEntryDict]


class EnrichedPRDict(TypedDict):
    additions: int
    deletions: int
    changedFiles: int
    fileList: list[str]
    cachedAt: str


class EnrichedIssueDict(TypedDict):
    commentCount: int
    reactionCount: int
    linkedPRs: int
    milestone: Optional[str]
    assignees: list[str]
    cachedAt: str


@dataclass
class PullRequest:
    """A pull request. Listing calls leave the diff stats at zero."""

    number: int
    title: str
    body: str
    user: str
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    file_list: list[str] = field(default_factory=list)
    created_at: str = ""

    @property
    def labels(self) -> list[str]:
        return []

    def with_enrichment(self, data: EnrichedPRDict) -> PullRequest:
        """Return a copy carrying the detail fields from an enrichment entry."""
        return PullRequest(
            number=self.number,
            title=self.title,
            body=self.body,
            user=self.user,
            additions=int(data.get("additions", 0)),
            deletions=int(data.get("deletions", 0)),
            changed_files=int(data.get("changedFiles", 0)),
            file_list=list(data.get("fileList", [])),
            created_at=self.created_at,
        )


@dataclass
class Issue:
    """An issue (never a pull request)."""

    number: int
    title: str
    body: str
    user: str
    labels: list[str] = field(default_factory=list)
    milestone: Optional[str] = None
    assignees: list[str] = field(default_factory=list)
    comment_count: int = 0
    reaction_count: int = 0
    created_at: str = ""

    def with_enrichment(self, data: EnrichedIssueDict) -> Issue:
        return Issue(
            number=self.number,
            title=self.title,
            body=self.body,
            user=self.user,
            labels=list(self.labels),
            milestone=data.get("milestone"),
            assignees=list(data.get("assignees", [])),
            comment_count=int(data.get("commentCount", 0)),
            reaction_count=int(data.get("reactionCount", 0)),
            created_at=self.created_at,
        )


TriageItem = PullRequest | Issue


@dataclass
class CachedVectorEntry:
    """One embedded item. Replaced wholesale on re-embedding."""

    number: int
    title: str
    body: str
    embedding: list[float]
    cached_at: str

    def to_dict(self) -> CachedEntryDict:
        return {
            "number": self.number,
            "title": self.title,
            "body": self.body,
            "embedding": self.embedding,
            "cachedAt": self.cached_at,
        }


@dataclass
class VectorCache:
    version: int = CACHE_SCHEMA_VERSION
    last_rebuilt: str = ""
    pr_count: int = 0
    entries: list[CachedVectorEntry] = field(default_factory=list)

    def to_dict(self) -> VectorCacheDict:
        return {
            "version": self.version,
            "lastRebuilt": self.last_rebuilt,
            "prCount": self.pr_count,
            "entries": [e.to_dict() for e in self.entries],
        }


@dataclass
class EnrichmentCache:
    """Per-item detail data keyed by item number. Entries are append-only."""

    version: int = CACHE_SCHEMA_VERSION
    last_updated: str = ""
    entries: dict[int, dict] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "lastUpdated": self.last_updated,
            "entries": {str(k): v for k, v in self.entries.items()},
        }


@dataclass
class DuplicateCluster:
    canonical: int
    members: list[int]
    avg_similarity: float

    def to_dict(self) -> dict:
        return {
            "canonical": self.canonical,
            "members": list(self.members),
            "avgSimilarity": self.avg_similarity,
        }


@dataclass
class SimilarItem:
    number: int
    score: float
    title: str


@dataclass
class QualityResult:
    score: float
    breakdown: dict[str, float]
    tier: QualityTier = "full"


@dataclass(frozen=True)
class AlignmentVerdict:
    alignment: Alignment
    reason: str


@dataclass(frozen=True)
class TriageEntry:
    """One row in the batch triage report."""

    number: int
    title: str
    user: str
    quality_score: float
    quality_tier: QualityTier
    alignment: Alignment
    alignment_reason: str
    duplicate_cluster: Optional[int]
    recommended_action: Action
    quality_breakdown: dict[str, float] = field(default_factory=dict)
    labels: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "title": self.title,
            "user": self.user,
            "labels": list(self.labels),
            "qualityScore": self.quality_score,
            "qualityTier": self.quality_tier,
            "qualityBreakdown": dict(self.quality_breakdown),
            "visionAlignment": self.alignment,
            "visionReason": self.alignment_reason,
            "duplicateCluster": self.duplicate_cluster,
            "recommendedAction": self.recommended_action,
        }


@dataclass
class BatchStats:
    total_items: int
    duplicate_clusters: int
    duplicate_items: int
    avg_quality: float
    fits: int = 0
    strays: int = 0
    rejects: int = 0
    pending: int = 0
    errors: int = 0
    actions: dict[str, int] = field(default_factory=dict)


@dataclass
class BatchResult:
    repo: str
    kind: ItemKind
    total_items: int
    timestamp: str
    clusters: list[DuplicateCluster]
    entries: list[TriageEntry]
    stats: BatchStats
    alignment_batch_id: Optional[str] = None

    def to_dict(self) -> dict:
        """Serialize for the raw JSON dump written next to the report."""
        return {
            "repo": self.repo,
            "kind": self.kind,
            "totalItems": self.total_items,
            "timestamp": self.timestamp,
            "clusters": [c.to_dict() for c in self.clusters],
            "entries": [e.to_dict() for e in self.entries],
            "stats": asdict(self.stats),
            "visionBatchId": self.alignment_batch_id,
        }


@dataclass
class SingleTriageResult:
    """Result of triaging one PR or issue."""

    number: int
    kind: ItemKind
    is_duplicate: bool
    duplicate_of: list[SimilarItem]
    quality_score: float
    quality_breakdown: dict[str, float]
    alignment: Verdict
    alignment_reason: str
    recommended_action: Action
    draft_comment: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["duplicate_of"] = [asdict(s) for s in self.duplicate_of]
        return data
