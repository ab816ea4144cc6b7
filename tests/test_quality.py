import pytest

from prtriage.quality import (
    score_description,
    score_diff_size,
    score_format,
    score_issue,
    score_issue_partial,
    score_labels,
    score_pr,
    score_pr_partial,
    score_repro_steps,
    score_single_topic,
    score_template,
)


@pytest.mark.parametrize(
    "length, expected",
    [(0, 0.0), (50, 0.0), (51, 0.5), (150, 0.5), (151, 1.5), (300, 1.5), (301, 2.5)],
)
def test_description_boundaries(length, expected):
    assert score_description("x" * length) == expected


def test_description_whitespace_only():
    assert score_description("   \n\t  " * 100) == 0.0
    assert score_description(None) == 0.0


@pytest.mark.parametrize(
    "additions, deletions, expected",
    [(0, 0, 2.5), (250, 250, 2.5), (501, 0, 2.0), (1000, 1000, 2.0), (4000, 1000, 1.0), (5001, 0, 0.0)],
)
def test_diff_size(additions, deletions, expected):
    assert score_diff_size(additions, deletions) == expected


@pytest.mark.parametrize(
    "files, expected", [(1, 2.5), (3, 2.5), (4, 2.0), (8, 2.0), (15, 1.0), (16, 0.5), (300, 0.5)]
)
def test_single_topic_has_floor(files, expected):
    assert score_single_topic(files) == expected


@pytest.mark.parametrize(
    "title, expected",
    [
        ("feat: add login", 2.5),
        ("fix(parser): handle empty input", 2.5),
        ("refactor!: drop py2", 2.5),
        ("chore(deps)!: bump httpx", 2.5),
        ("Add login", 0.0),
        ("feat:missing space", 0.0),
        ("feature: not a type", 0.0),
        ("  fix: leading space", 0.0),
        ("", 0.0),
    ],
)
def test_conventional_title(title, expected):
    assert score_format(title) == expected


def test_repro_steps_counts_distinct_patterns():
    assert score_repro_steps("it broke") == 0.0
    assert score_repro_steps("Steps to reproduce: click") == 0.5
    assert score_repro_steps("Steps to reproduce\nExpected behaviour: works") == 1.5
    body = (
        "Steps to reproduce\n"
        "Expected behavior: works\n"
        "Actual behavior: crash\n"
        "```\nTraceback (most recent call last)\n```"
    )
    assert score_repro_steps(body) == 2.5


def test_labels_and_template():
    assert score_labels([]) == 0.0
    assert score_labels(["bug"]) == 1.5
    assert score_labels(["bug", "p1", "ui"]) == 2.5

    assert score_template("nothing here") == 0.0
    assert score_template("## Description\nfoo") == 0.5
    assert score_template("## Description\n## Steps\n- [ ] one\n- [x] two") == 2.5


def test_full_pr_score(make_pr):
    pr = make_pr(
        title="feat: add caching",
        body="y" * 400,
        additions=100,
        deletions=20,
        changed_files=2,
    )
    result = score_pr(pr)
    assert result.tier == "full"
    assert result.score == 10.0
    assert result.breakdown == {
        "diffSize": 2.5,
        "hasDescription": 2.5,
        "singleTopic": 2.5,
        "followsFormat": 2.5,
    }


def test_partial_pr_score_is_capped(make_pr):
    result = score_pr_partial(make_pr(title="fix: x", body="z" * 400))
    assert result.tier == "partial"
    assert set(result.breakdown) == {"hasDescription", "followsFormat"}
    assert result.score == 5.0


def test_issue_scores(make_issue):
    body = (
        "## Description\nThe app crashes on start.\n"
        "## Steps\nSteps to reproduce: open the app\n"
        "## Expected\nExpected behavior: it opens\n"
        "Actual behavior: crash with error message shown\n"
    ) + "." * 200
    issue = make_issue(body=body, labels=["bug", "crash"])
    full = score_issue(issue)
    assert full.breakdown["hasLabels"] == 2.5
    assert full.breakdown["followsTemplate"] == 2.5
    assert full.breakdown["hasReproSteps"] == 2.5
    assert full.score == 10.0

    partial = score_issue_partial(issue)
    assert partial.tier == "partial"
    assert partial.breakdown["hasReproSteps"] == 0.0
    assert partial.breakdown["followsTemplate"] == 0.0
    assert partial.score == 5.0
