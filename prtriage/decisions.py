"""Map duplicate status, quality and alignment to a recommended action."""

from __future__ import annotations

from prtriage.constants import (
    DUPLICATE_CLOSE_BELOW,
    HIGH_QUALITY_MIN,
    LOW_QUALITY_BELOW,
)
from prtriage.models import Action, Alignment, ItemKind

# Terminal actions differ between PRs and issues; the rule order does not.
_REJECT: dict[ItemKind, Action] = {"pr": "close", "issue": "wontfix"}
_ACCEPT: dict[ItemKind, Action] = {"pr": "merge_candidate", "issue": "prioritize"}
_REVISE: dict[ItemKind, Action] = {"pr": "needs_revision", "issue": "needs_info"}


def derive_batch_action(
    is_duplicate: bool,
    quality: float,
    alignment: Alignment,
    kind: ItemKind = "pr",
) -> Action:
    """
    Pick the action for one batch item. First matching rule wins:

    1. duplicate and quality < 5     -> reject
    2. duplicate                     -> review_duplicates
    3. rejects                       -> reject
    4. error or pending alignment    -> flag
    5. quality >= 8 and fits         -> accept
    6. quality < 4                   -> revise
    7. otherwise                     -> accept
    """
    if is_duplicate and quality < DUPLICATE_CLOSE_BELOW:
        return _REJECT[kind]
    if is_duplicate:
        return "review_duplicates"
    if alignment == "rejects":
        return _REJECT[kind]
    if alignment in ("error", "pending"):
        return "flag"
    if quality >= HIGH_QUALITY_MIN and alignment == "fits":
        return _ACCEPT[kind]
    if quality < LOW_QUALITY_BELOW:
        return _REVISE[kind]
    return _ACCEPT[kind]


def derive_action(
    is_duplicate: bool,
    quality: float,
    alignment: Alignment,
    kind: ItemKind = "pr",
) -> Action:
    """Single-item variant: same table minus the flag rule."""
    if is_duplicate and quality < DUPLICATE_CLOSE_BELOW:
        return _REJECT[kind]
    if is_duplicate:
        return "review_duplicates"
    if alignment == "rejects":
        return _REJECT[kind]
    if quality >= HIGH_QUALITY_MIN and alignment == "fits":
        return _ACCEPT[kind]
    if quality < LOW_QUALITY_BELOW:
        return _REVISE[kind]
    return _ACCEPT[kind]
