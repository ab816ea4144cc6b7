import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from prtriage.clustering import cluster_duplicates
from prtriage.constants import GITHUB_BODY_LIMIT
from prtriage.decisions import derive_batch_action
from prtriage.models import (
    BatchResult,
    BatchStats,
    CachedVectorEntry,
    Issue,
    PullRequest,
    TriageEntry,
)
from prtriage.quality import score_issue, score_issue_partial, score_pr, score_pr_partial
from prtriage.report import BATCH_FOOTER, render_batch_report
from prtriage.similarity import cosine_similarity

finite = st.integers(min_value=-1000, max_value=1000).map(float)
vectors = st.lists(finite, min_size=1, max_size=8)


@given(vectors, vectors)
def test_cosine_is_commutative_and_bounded(a, b):
    s = cosine_similarity(a, b)
    assert s == pytest.approx(cosine_similarity(b, a))
    assert -1.0 - 1e-9 <= s <= 1.0 + 1e-9


@given(vectors.filter(any))
def test_cosine_self_and_opposite(v):
    assert cosine_similarity(v, v) == pytest.approx(1.0)
    assert cosine_similarity(v, [-x for x in v]) == pytest.approx(-1.0)


@given(
    st.dictionaries(
        st.integers(min_value=1, max_value=500),
        st.lists(st.sampled_from([0.0, 1.0]), min_size=3, max_size=3),
        max_size=12,
    ),
    st.floats(min_value=0.5, max_value=1.0),
)
def test_clusters_are_disjoint_and_canonical_is_min(raw, threshold):
    entries = [
        CachedVectorEntry(number, "", "", vector if any(vector) else [], "")
        for number, vector in raw.items()
    ]
    clusters = cluster_duplicates(entries, threshold)
    seen: set[int] = set()
    for cluster in clusters:
        assert len(cluster.members) >= 2
        assert cluster.members == sorted(cluster.members)
        assert cluster.canonical == min(cluster.members)
        assert seen.isdisjoint(cluster.members)
        seen.update(cluster.members)
    empty = {e.number for e in entries if not e.embedding}
    assert seen.isdisjoint(empty)
    assert [c.canonical for c in clusters] == sorted(c.canonical for c in clusters)


@given(
    title=st.text(max_size=80),
    body=st.text(max_size=600),
    additions=st.integers(min_value=0, max_value=10_000),
    deletions=st.integers(min_value=0, max_value=10_000),
    changed_files=st.integers(min_value=0, max_value=100),
    labels=st.lists(st.text(min_size=1, max_size=10), max_size=4),
)
def test_quality_scores_stay_in_range(title, body, additions, deletions, changed_files, labels):
    pr = PullRequest(1, title, body, "u", additions, deletions, changed_files)
    issue = Issue(1, title, body, "u", labels=labels)
    for result in (score_pr(pr), score_issue(issue)):
        assert 0.0 <= result.score <= 10.0
        assert all(0.0 <= v <= 2.5 for v in result.breakdown.values())
    for result in (score_pr_partial(pr), score_issue_partial(issue)):
        assert 0.0 <= result.score <= 5.0


@given(
    st.booleans(),
    st.floats(min_value=0.0, max_value=10.0),
    st.sampled_from(["fits", "strays", "rejects", "pending", "error"]),
    st.sampled_from(["pr", "issue"]),
)
def test_decision_table_invariants(dup, quality, alignment, kind):
    action = derive_batch_action(dup, quality, alignment, kind)
    if dup:
        assert action in ("close", "wontfix", "review_duplicates")
    elif alignment == "rejects":
        assert action == ("close" if kind == "pr" else "wontfix")
    elif alignment in ("pending", "error"):
        assert action == "flag"
    else:
        assert action != "flag"


@settings(deadline=None, max_examples=20, suppress_health_check=[HealthCheck.too_slow])
@given(
    count=st.integers(min_value=0, max_value=1500),
    title_len=st.integers(min_value=1, max_value=300),
)
def test_report_never_exceeds_body_limit(count, title_len):
    entries = [
        TriageEntry(n, "t" * title_len, "u", 6.0, "full", "strays", "", None, "merge_candidate")
        for n in range(1, count + 1)
    ]
    result = BatchResult(
        repo="acme/widgets",
        kind="pr",
        total_items=count,
        timestamp="2026-10-19T00:00:00Z",
        clusters=[],
        entries=entries,
        stats=BatchStats(count, 0, 0, 6.0, strays=count),
    )
    _, body = render_batch_report(result)
    assert len(body) <= GITHUB_BODY_LIMIT
    assert body.endswith(BATCH_FOOTER)
