import re

import pytest

from prtriage.constants import GITHUB_BODY_LIMIT
from prtriage.models import (
    BatchResult,
    BatchStats,
    DuplicateCluster,
    SimilarItem,
    SingleTriageResult,
    TriageEntry,
)
from prtriage.report import (
    BATCH_FOOTER,
    format_labels,
    render_batch_report,
    render_draft_comment,
    truncate,
)


def _entry(number, quality=6.0, alignment="fits", action="merge_candidate", **kwargs):
    defaults = dict(
        number=number,
        title=f"Item {number}",
        user="u",
        quality_score=quality,
        quality_tier="full",
        alignment=alignment,
        alignment_reason="reason",
        duplicate_cluster=None,
        recommended_action=action,
        quality_breakdown={"hasDescription": 2.5, "followsFormat": 2.5},
    )
    defaults.update(kwargs)
    return TriageEntry(**defaults)


def _result(entries, clusters=(), kind="pr"):
    return BatchResult(
        repo="acme/widgets",
        kind=kind,
        total_items=len(entries),
        timestamp="2026-10-19T08:00:00Z",
        clusters=list(clusters),
        entries=list(entries),
        stats=BatchStats(
            total_items=len(entries),
            duplicate_clusters=len(clusters),
            duplicate_items=sum(len(c.members) for c in clusters),
            avg_quality=6.5,
            fits=len(entries),
        ),
    )


def test_helpers():
    assert truncate("abcdef", 3) == "abc…"
    assert truncate("abc", 3) == "abc"
    assert format_labels([]) == "-"
    assert format_labels(["a", "b", "c", "d"]) == "`a` `b` `c`"


def test_small_report_sections_and_title():
    entries = [
        _entry(1, quality=9.0, duplicate_cluster=1, action="review_duplicates"),
        _entry(2, quality=2.0, duplicate_cluster=1, action="close",
               quality_breakdown={"hasDescription": 0.0, "followsFormat": 0.0}),
        _entry(3, quality=6.0, alignment="rejects", alignment_reason="Out of scope", action="close"),
    ]
    clusters = [DuplicateCluster(canonical=1, members=[1, 2], avg_similarity=0.914)]
    title, body = render_batch_report(_result(entries, clusters))

    assert title == "prtriage Batch Report - acme/widgets - 2026-10-19"
    assert "**PRs analyzed:** 3" in body
    assert "**Cluster 1** (avg similarity: 91%) - Canonical: #1" in body
    assert "- #2: Item 2" in body
    assert "### Top Merge Candidates (quality >= 8, vision fits)" in body
    assert "### Needs Revision (quality < 4)" in body
    assert "no description, no conventional title" in body
    assert "### Vision Rejects" in body
    assert "Out of scope" in body
    assert "<summary>All 3 PRs</summary>" in body
    assert "| #1 | 9 | fits | Dupe of #1 | review_duplicates | Item 1 |" in body
    assert body.endswith(BATCH_FOOTER)


def test_empty_sections_are_omitted():
    _, body = render_batch_report(_result([_entry(1, quality=6.0, alignment="strays")]))
    assert "### Summary" in body
    assert "Duplicate Clusters" not in body
    assert "Top Merge Candidates" not in body
    assert "Needs Revision" not in body
    assert "Vision Rejects" not in body


def test_top_section_without_vision_run():
    entries = [_entry(1, quality=8.5, alignment="pending", action="flag")]
    _, body = render_batch_report(_result(entries))
    assert "(quality >= 8, vision not run)" in body


def test_sections_capped_at_fifty_rows():
    entries = [_entry(n, quality=1.0, action="needs_revision") for n in range(1, 61)]
    _, body = render_batch_report(_result(entries))
    assert "### Needs Revision (quality < 4) (worst 50 of 60)" in body


def test_issue_report_wording_and_labels():
    entries = [_entry(5, quality=7.5, labels=("bug", "ui"), action="prioritize")]
    title, body = render_batch_report(_result(entries, kind="issue"))
    assert title.startswith("prtriage Issue Batch Report - acme/widgets")
    assert "**Issues analyzed:** 1" in body
    assert "### High Priority Issues (quality >= 7, vision fits)" in body
    assert "| Issue | Quality | Labels | Vision | Dupes | Action | Title |" in body
    assert "| #5 | 7.5 | `bug` `ui` | fits | - | prioritize | Item 5 |" in body


def test_large_report_is_truncated_within_limit():
    long_title = "A very long pull request title that keeps going " * 4
    entries = [_entry(n, title=f"{long_title}{n}") for n in range(1, 2001)]
    _, body = render_batch_report(_result(entries))

    assert len(body) <= GITHUB_BODY_LIMIT
    assert body.endswith(BATCH_FOOTER)

    notice = re.search(r"truncated \((\d+)/(\d+) PRs shown\)", body)
    assert notice is not None
    included, total = int(notice.group(1)), int(notice.group(2))
    assert total == 2000
    assert 0 < included <= total

    # Disclosure label reports the truncated count, matching the rendered rows
    assert f"<summary>{included} of 2000 PRs (truncated)</summary>" in body
    assert len(re.findall(r"^\| #\d+ \| 6 \|", body, flags=re.MULTILINE)) == included


def test_full_sections_with_long_titles_stay_within_limit():
    # 256 chars is the longest title GitHub accepts
    title = "x" * 256
    entries = (
        [_entry(n, quality=9.0, title=title) for n in range(1, 51)]
        + [_entry(n, quality=1.0, alignment="strays", title=title) for n in range(51, 101)]
        + [
            _entry(n, quality=6.0, alignment="rejects", alignment_reason="r" * 500, title=title)
            for n in range(101, 151)
        ]
    )
    clusters = [DuplicateCluster(canonical=n, members=[n, n + 50], avg_similarity=0.9) for n in range(1, 51)]
    _, body = render_batch_report(_result(entries, clusters))

    assert len(body) <= GITHUB_BODY_LIMIT
    assert body.endswith(BATCH_FOOTER)
    assert f"- #1: {'x' * 100}…" in body
    assert "### Vision Rejects" in body
    assert "Section omitted" not in body


def test_oversized_section_is_replaced_by_notice():
    clusters = [
        DuplicateCluster(
            canonical=n * 1000,
            members=list(range(n * 1000, n * 1000 + 300)),
            avg_similarity=0.9,
        )
        for n in range(1, 51)
    ]
    entries = [_entry(1, quality=9.0), _entry(2, quality=1.0, alignment="strays")]
    _, body = render_batch_report(_result(entries, clusters))

    assert len(body) <= GITHUB_BODY_LIMIT
    assert body.endswith(BATCH_FOOTER)
    assert "### Duplicate Clusters\n\n*Section omitted: size limit reached." in body
    assert "**Cluster 1**" not in body
    # Later sections that fit are still rendered
    assert "### Top Merge Candidates" in body
    assert "### Needs Revision" in body
    assert "<summary>All 2 PRs</summary>" in body


def _single(**overrides):
    data = dict(
        number=42,
        kind="pr",
        is_duplicate=False,
        duplicate_of=[],
        quality_score=8.0,
        quality_breakdown={"diffSize": 2.5, "hasDescription": 1.5, "singleTopic": 2.5, "followsFormat": 1.5},
        alignment="fits",
        alignment_reason="Matches the roadmap",
        recommended_action="merge_candidate",
    )
    data.update(overrides)
    return SingleTriageResult(**data)


def test_draft_comment_no_similar():
    comment = render_draft_comment(_single())
    assert comment.startswith("## prtriage Triage Report")
    assert "No similar PRs found." in comment
    assert "### Quality Score: 8/10" in comment
    assert "| Description | 1.5/2.5 |" in comment
    assert "### Vision Alignment: fits" in comment
    assert "Matches the roadmap" in comment
    assert "### Recommendation: **Merge Candidate**" in comment


@pytest.mark.parametrize("kind, noun", [("pr", "PRs"), ("issue", "issues")])
def test_draft_comment_similar_but_not_duplicate(kind, noun):
    comment = render_draft_comment(
        _single(kind=kind, duplicate_of=[SimilarItem(number=7, score=0.75, title="Other")])
    )
    assert f"Similar {noun} found:" in comment
    assert "| #7 | 75.0% | Other |" in comment
    assert "Potential duplicate" not in comment


def test_draft_comment_duplicate():
    comment = render_draft_comment(
        _single(
            is_duplicate=True,
            duplicate_of=[SimilarItem(number=7, score=0.95, title="Other")],
            recommended_action="review_duplicates",
        )
    )
    assert "> **Potential duplicate detected**: #7 (95.0% similar)" in comment
    assert "### Recommendation: **Review Duplicates**" in comment
