import pytest

from prtriage.decisions import derive_action, derive_batch_action


@pytest.mark.parametrize(
    "dup, quality, alignment, expected",
    [
        (True, 4.9, "fits", "close"),
        (True, 4.9, "rejects", "close"),
        (True, 5.0, "fits", "review_duplicates"),
        (True, 9.0, "error", "review_duplicates"),
        (False, 9.0, "rejects", "close"),
        (False, 9.0, "error", "flag"),
        (False, 2.0, "pending", "flag"),
        (False, 8.0, "fits", "merge_candidate"),
        (False, 3.0, "fits", "needs_revision"),
        (False, 3.9, "strays", "needs_revision"),
        (False, 4.0, "strays", "merge_candidate"),
        (False, 8.0, "strays", "merge_candidate"),
    ],
)
def test_pr_batch_decision_table(dup, quality, alignment, expected):
    assert derive_batch_action(dup, quality, alignment, "pr") == expected


@pytest.mark.parametrize(
    "dup, quality, alignment, expected",
    [
        (True, 4.9, "fits", "wontfix"),
        (True, 5.0, "strays", "review_duplicates"),
        (False, 6.0, "rejects", "wontfix"),
        (False, 8.0, "fits", "prioritize"),
        (False, 3.0, "fits", "needs_info"),
        (False, 8.0, "strays", "prioritize"),
        (False, 6.0, "pending", "flag"),
    ],
)
def test_issue_batch_decision_table(dup, quality, alignment, expected):
    assert derive_batch_action(dup, quality, alignment, "issue") == expected


def test_single_item_table_has_no_flag_rule():
    assert derive_action(False, 9.0, "strays", "pr") == "merge_candidate"
    assert derive_action(False, 2.0, "strays", "issue") == "needs_info"
    assert derive_action(True, 4.9, "fits", "issue") == "wontfix"
    assert derive_action(False, 8.0, "fits", "issue") == "prioritize"
