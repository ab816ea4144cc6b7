"""Duplicate detection by thresholded union-find over embedding similarity."""

from __future__ import annotations

import logging
from collections.abc import Hashable, Sequence

from prtriage.constants import SIMILARITY_DECIMALS
from prtriage.models import CachedVectorEntry, DuplicateCluster
from prtriage.similarity import similarity_matrix

logger = logging.getLogger(__name__)


class DisjointSet:
    """Union-find with path compression and union by rank."""

    def __init__(self) -> None:
        self._parent: dict[Hashable, Hashable] = {}
        self._rank: dict[Hashable, int] = {}

    def add(self, item: Hashable) -> None:
        if item not in self._parent:
            self._parent[item] = item
            self._rank[item] = 0

    def find(self, item: Hashable) -> Hashable:
        self.add(item)
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            nxt = self._parent[item]
            self._parent[item] = root
            item = nxt
        return root

    def union(self, a: Hashable, b: Hashable) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return
        if self._rank[ra] < self._rank[rb]:
            ra, rb = rb, ra
        self._parent[rb] = ra
        if self._rank[ra] == self._rank[rb]:
            self._rank[ra] += 1

    def groups(self) -> dict[Hashable, list[Hashable]]:
        out: dict[Hashable, list[Hashable]] = {}
        for item in self._parent:
            out.setdefault(self.find(item), []).append(item)
        return out


def cluster_duplicates(
    entries: Sequence[CachedVectorEntry], threshold: float
) -> list[DuplicateCluster]:
    """
    Group near-duplicate items.

    Any pair with similarity >= threshold is merged, and merging is
    transitive. Entries with empty embeddings never join a cluster. The
    average similarity covers every pair in the group, including pairs that
    only became connected through a third item.
    """
    valid = [e for e in entries if e.embedding]
    if len(valid) < 2:
        return []

    sims = similarity_matrix([e.embedding for e in valid])
    ds = DisjointSet()
    for idx in range(len(valid)):
        ds.add(idx)
    for i in range(len(valid)):
        for j in range(i + 1, len(valid)):
            if sims[i, j] >= threshold:
                ds.union(i, j)

    clusters: list[DuplicateCluster] = []
    for indices in ds.groups().values():
        if len(indices) < 2:
            continue
        pair_sims = [
            float(sims[a, b])
            for pos, a in enumerate(indices)
            for b in indices[pos + 1 :]
        ]
        members = sorted(valid[i].number for i in indices)
        avg = sum(pair_sims) / len(pair_sims)
        clusters.append(
            DuplicateCluster(
                canonical=members[0],
                members=members,
                avg_similarity=round(avg, SIMILARITY_DECIMALS),
            )
        )

    clusters.sort(key=lambda c: c.canonical)
    logger.info(
        "Found %d duplicate clusters among %d embedded items",
        len(clusters),
        len(valid),
    )
    return clusters


def cluster_index(clusters: Sequence[DuplicateCluster]) -> dict[int, int]:
    """Map each clustered item number to its cluster's canonical number."""
    index: dict[int, int] = {}
    for cluster in clusters:
        for member in cluster.members:
            index[member] = cluster.canonical
    return index
