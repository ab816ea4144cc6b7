"""Heuristic quality scoring for pull requests and issues.

Each item gets four sub-scores in [0, 2.5] summing to a 0-10 total. Items
whose detail data could not be fetched are scored on the "partial" tier,
which uses only the fields present in list responses and is capped.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from prtriage.constants import (
    DESCRIPTION_BREAKPOINTS,
    DIFF_SIZE_BREAKPOINTS,
    LABEL_BREAKPOINTS,
    PARTIAL_QUALITY_CAP,
    PATTERN_MATCH_BREAKPOINTS,
    QUALITY_MAX,
    SINGLE_TOPIC_BREAKPOINTS,
    SINGLE_TOPIC_FLOOR,
    SUB_SCORE_MAX,
)
from prtriage.models import Issue, PullRequest, QualityResult

CONVENTIONAL_TITLE_RE = re.compile(
    r"^(feat|fix|docs|style|refactor|perf|test|build|ci|chore|revert)(\(.+\))?!?:\s.+"
)

REPRO_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"steps\s+to\s+reproduce",
        r"expected\s+behavio(?:u)?r",
        r"actual\s+behavio(?:u)?r",
        r"stack\s*trace",
        r"error\s+message",
        r"error\s+log",
        r"```[\s\S]{20,}```",
        r"version\s*[:\s]\s*\d",
        r"environment",
        r"platform",
        r"\bos\b",
    )
)

TEMPLATE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE | re.MULTILINE)
    for p in (
        r"^##\s+description",
        r"^##\s+steps",
        r"^##\s+expected",
        r"^##\s+actual",
        r"^##\s+environment",
        r"^##\s+additional\s+context",
        r"^##\s+acceptance\s+criteria",
        r"^##\s+use\s+case",
        r"^##\s+motivation",
        r"^##\s+proposal",
        r"^-\s+\[[ x]\]",
    )
)


def _upper_tier(value: int, breakpoints: Sequence[tuple[int, float]]) -> float:
    """First score whose bound is >= value, else 0."""
    for bound, score in breakpoints:
        if value <= bound:
            return score
    return 0.0


def _lower_tier(value: int, breakpoints: Sequence[tuple[int, float]]) -> float:
    """First score whose bound is strictly below value, else 0."""
    for bound, score in breakpoints:
        if value > bound:
            return score
    return 0.0


def _at_least_tier(value: int, breakpoints: Sequence[tuple[int, float]]) -> float:
    for bound, score in breakpoints:
        if value >= bound:
            return score
    return 0.0


def score_diff_size(additions: int, deletions: int) -> float:
    return _upper_tier(additions + deletions, DIFF_SIZE_BREAKPOINTS)


def score_description(body: str | None) -> float:
    return _lower_tier(len((body or "").strip()), DESCRIPTION_BREAKPOINTS)


def score_single_topic(changed_files: int) -> float:
    score = _upper_tier(changed_files, SINGLE_TOPIC_BREAKPOINTS)
    return score if score else SINGLE_TOPIC_FLOOR


def score_format(title: str) -> float:
    return SUB_SCORE_MAX if CONVENTIONAL_TITLE_RE.match(title or "") else 0.0


def _count_matches(text: str, patterns: Sequence[re.Pattern[str]]) -> int:
    return sum(1 for p in patterns if p.search(text))


def score_repro_steps(body: str | None) -> float:
    return _at_least_tier(
        _count_matches(body or "", REPRO_PATTERNS), PATTERN_MATCH_BREAKPOINTS
    )


def score_labels(labels: Sequence[str]) -> float:
    return _at_least_tier(len(labels), LABEL_BREAKPOINTS)


def score_template(body: str | None) -> float:
    return _at_least_tier(
        _count_matches(body or "", TEMPLATE_PATTERNS), PATTERN_MATCH_BREAKPOINTS
    )


def _total(breakdown: dict[str, float]) -> float:
    return min(round(sum(breakdown.values()), 1), QUALITY_MAX)


def score_pr(pr: PullRequest) -> QualityResult:
    """Full-tier score for a PR with detail data."""
    breakdown = {
        "diffSize": score_diff_size(pr.additions, pr.deletions),
        "hasDescription": score_description(pr.body),
        "singleTopic": score_single_topic(pr.changed_files),
        "followsFormat": score_format(pr.title),
    }
    return QualityResult(score=_total(breakdown), breakdown=breakdown, tier="full")


def score_pr_partial(pr: PullRequest) -> QualityResult:
    """Partial-tier score: description and title format only."""
    breakdown = {
        "hasDescription": score_description(pr.body),
        "followsFormat": score_format(pr.title),
    }
    score = min(_total(breakdown), PARTIAL_QUALITY_CAP)
    return QualityResult(score=score, breakdown=breakdown, tier="partial")


def score_issue(issue: Issue) -> QualityResult:
    breakdown = {
        "hasDescription": score_description(issue.body),
        "hasReproSteps": score_repro_steps(issue.body),
        "hasLabels": score_labels(issue.labels),
        "followsTemplate": score_template(issue.body),
    }
    return QualityResult(score=_total(breakdown), breakdown=breakdown, tier="full")


def score_issue_partial(issue: Issue) -> QualityResult:
    """Partial-tier issue score. Body-derived sub-scores not computed are 0."""
    breakdown = {
        "hasDescription": score_description(issue.body),
        "hasReproSteps": 0.0,
        "hasLabels": score_labels(issue.labels),
        "followsTemplate": 0.0,
    }
    score = min(_total(breakdown), PARTIAL_QUALITY_CAP)
    return QualityResult(score=score, breakdown=breakdown, tier="partial")
