"""Markdown rendering for batch reports and single-item triage comments."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from prtriage.constants import (
    FULL_TABLE_RESERVE_CHARS,
    GITHUB_BODY_LIMIT,
    HIGH_QUALITY_MIN,
    ISSUE_HIGH_PRIORITY_MIN,
    LOW_QUALITY_BELOW,
    REASON_MAX_CHARS,
    REPORT_LABEL_LIMIT,
    REPORT_SLACK_CHARS,
    SECTION_ROW_LIMIT,
    SECTION_TITLE_MAX_CHARS,
)
from prtriage.models import BatchResult, ItemKind, SingleTriageResult, TriageEntry

FOOTER_LINK = "*Generated by [prtriage](https://github.com/prtriage/prtriage)"
BATCH_FOOTER = f"---\n{FOOTER_LINK}, batch mode*"
SINGLE_FOOTER = f"---\n{FOOTER_LINK}*"
SECTION_OMITTED_NOTICE = (
    "*Section omitted: size limit reached. "
    "Full data available in batch JSON output.*"
)

logger = logging.getLogger(__name__)

ACTION_LABELS: dict[str, str] = {
    "merge_candidate": "Merge Candidate",
    "review_duplicates": "Review Duplicates",
    "needs_revision": "Needs Revision",
    "close": "Close",
    "prioritize": "Prioritize",
    "needs_info": "Needs Info",
    "wontfix": "Won't Fix",
    "flag": "Flag for Review",
}

BREAKDOWN_LABELS: dict[str, str] = {
    "diffSize": "Diff size",
    "hasDescription": "Description",
    "singleTopic": "Single topic",
    "followsFormat": "Conventional title",
    "hasReproSteps": "Reproduction details",
    "hasLabels": "Labels",
    "followsTemplate": "Template sections",
}


@dataclass(frozen=True)
class _Wording:
    noun: str
    plural: str
    heading: str
    column: str
    top_title: str
    top_min: float
    low_title: str
    show_labels: bool


_WORDING: dict[ItemKind, _Wording] = {
    "pr": _Wording(
        noun="PR",
        plural="PRs",
        heading="PRs",
        column="PR",
        top_title="Top Merge Candidates",
        top_min=HIGH_QUALITY_MIN,
        low_title="Needs Revision",
        show_labels=False,
    ),
    "issue": _Wording(
        noun="Issue",
        plural="issues",
        heading="Issues",
        column="Issue",
        top_title="High Priority Issues",
        top_min=ISSUE_HIGH_PRIORITY_MIN,
        low_title="Needs More Info",
        show_labels=True,
    ),
}


def format_number(value: float) -> str:
    """Render 8.0 as "8" and 2.5 as "2.5"."""
    return f"{value:g}"


def truncate(text: str, limit: int) -> str:
    return text[:limit] + "…" if len(text) > limit else text


def _short(title: str) -> str:
    return truncate(title, SECTION_TITLE_MAX_CHARS)


def format_labels(labels: Sequence[str]) -> str:
    if not labels:
        return "-"
    return " ".join(f"`{label}`" for label in labels[:REPORT_LABEL_LIMIT])


def quality_issues(entry: TriageEntry) -> str:
    """Name the weak sub-scores behind a low quality score."""
    b = entry.quality_breakdown
    if not b:
        return "-"
    issues: list[str] = []
    if b.get("hasDescription", 0.0) < 1:
        issues.append("no description")
    if "followsFormat" in b and b["followsFormat"] == 0:
        issues.append("no conventional title")
    if "diffSize" in b and b["diffSize"] < 1:
        issues.append("too large")
    if "singleTopic" in b and b["singleTopic"] < 1:
        issues.append("too many files")
    if "hasReproSteps" in b and b["hasReproSteps"] < 1:
        issues.append("no repro steps")
    if "hasLabels" in b and b["hasLabels"] < 1:
        issues.append("no labels")
    if "followsTemplate" in b and b["followsTemplate"] < 1:
        issues.append("no template")
    return ", ".join(issues) if issues else "-"


def _capped(rows: list, word: str) -> tuple[list, str]:
    if len(rows) > SECTION_ROW_LIMIT:
        return rows[:SECTION_ROW_LIMIT], f" ({word} {SECTION_ROW_LIMIT} of {len(rows)})"
    return rows, ""


def _table(header: Sequence[str], rows: Sequence[Sequence[str]]) -> list[str]:
    lines = [
        "| " + " | ".join(header) + " |",
        "|" + "---|" * len(header),
    ]
    lines.extend("| " + " | ".join(row) + " |" for row in rows)
    lines.append("")
    return lines


def _summary_section(result: BatchResult, w: _Wording) -> list[str]:
    s = result.stats
    return [
        "### Summary\n",
        *_table(
            ("Metric", "Count"),
            [
                (f"Total {w.plural}", str(s.total_items)),
                (
                    "Duplicate clusters",
                    f"{s.duplicate_clusters} ({s.duplicate_items} {w.plural})",
                ),
                ("Avg quality score", f"{format_number(s.avg_quality)}/10"),
                ("Vision: fits", str(s.fits)),
                ("Vision: strays", str(s.strays)),
                ("Vision: rejects", str(s.rejects)),
            ],
        ),
    ]


def _cluster_section(result: BatchResult, w: _Wording) -> list[str]:
    if not result.clusters:
        return []
    shown, suffix = _capped(result.clusters, "showing")
    titles = {e.number: e.title for e in result.entries}
    lines = [f"### Duplicate Clusters{suffix}\n"]
    for i, cluster in enumerate(shown, start=1):
        lines.append(
            f"**Cluster {i}** (avg similarity: {round(cluster.avg_similarity * 100)}%)"
            f" - Canonical: #{cluster.canonical}"
        )
        for member in cluster.members:
            title = titles.get(member, f"{w.noun} #{member}")
            lines.append(f"- #{member}: {_short(title)}")
        lines.append("")
    return lines


def _top_section(result: BatchResult, w: _Wording) -> list[str]:
    entries = result.entries
    vision_ran = any(e.alignment != "pending" for e in entries)
    if vision_ran:
        top = [e for e in entries if e.quality_score >= w.top_min and e.alignment == "fits"]
        criteria = f"quality >= {format_number(w.top_min)}, vision fits"
    else:
        top = [e for e in entries if e.quality_score >= w.top_min]
        criteria = f"quality >= {format_number(w.top_min)}, vision not run"
    if not top:
        return []
    top.sort(key=lambda e: e.quality_score, reverse=True)
    shown, suffix = _capped(top, "top")
    if w.show_labels:
        header: tuple[str, ...] = (w.column, "Quality", "Labels", "Vision", "Title")
        rows = [
            (
                f"#{e.number}",
                f"{format_number(e.quality_score)}/10",
                format_labels(e.labels),
                e.alignment,
                _short(e.title),
            )
            for e in shown
        ]
    else:
        header = (w.column, "Quality", "Vision", "Title")
        rows = [
            (
                f"#{e.number}",
                f"{format_number(e.quality_score)}/10",
                e.alignment,
                _short(e.title),
            )
            for e in shown
        ]
    return [f"### {w.top_title} ({criteria}){suffix}\n", *_table(header, rows)]


def _low_quality_section(result: BatchResult, w: _Wording) -> list[str]:
    low = sorted(
        (e for e in result.entries if e.quality_score < LOW_QUALITY_BELOW),
        key=lambda e: e.quality_score,
    )
    if not low:
        return []
    shown, suffix = _capped(low, "worst")
    rows = [
        (
            f"#{e.number}",
            f"{format_number(e.quality_score)}/10",
            quality_issues(e),
            _short(e.title),
        )
        for e in shown
    ]
    return [
        f"### {w.low_title} (quality < {format_number(LOW_QUALITY_BELOW)}){suffix}\n",
        *_table((w.column, "Quality", "Issues", "Title"), rows),
    ]


def _rejects_section(result: BatchResult, w: _Wording) -> list[str]:
    rejects = [e for e in result.entries if e.alignment == "rejects"]
    if not rejects:
        return []
    shown, suffix = _capped(rejects, "first")
    rows = [
        (f"#{e.number}", truncate(e.alignment_reason, REASON_MAX_CHARS), _short(e.title))
        for e in shown
    ]
    return [
        f"### Vision Rejects{suffix}\n",
        *_table((w.column, "Reason", "Title"), rows),
    ]


def _full_table_row(entry: TriageEntry, w: _Wording) -> str:
    dupe = (
        f"Dupe of #{entry.duplicate_cluster}"
        if entry.duplicate_cluster is not None
        else "-"
    )
    cells = [f"#{entry.number}", format_number(entry.quality_score)]
    if w.show_labels:
        cells.append(format_labels(entry.labels))
    cells.extend([entry.alignment, dupe, entry.recommended_action, entry.title])
    return "| " + " | ".join(cells) + " |"


def _full_table(
    result: BatchResult, w: _Wording, preamble_length: int
) -> list[str]:
    """
    The full table, trimmed to fit the body limit.

    Rows are added in input order until the budget left after the preamble,
    table chrome, footer and a fixed slack is used up. The disclosure label
    reports the number of rows actually shown.
    """
    total = len(result.entries)
    rows = [_full_table_row(e, w) for e in result.entries]
    head = ["### Full Triage Table\n", "<details>"]
    columns = [w.column, "Quality"]
    if w.show_labels:
        columns.append("Labels")
    columns.extend(["Vision", "Dupes", "Action", "Title"])
    column_header = [
        "| " + " | ".join(columns) + " |",
        "|" + "---|" * len(columns),
    ]
    tail = ["\n</details>\n"]

    placeholder = f"<summary>All {total} {w.plural}</summary>\n"
    header_length = len("\n".join([*head, placeholder, *column_header])) + len(
        "\n".join(tail)
    )
    budget = (
        GITHUB_BODY_LIMIT
        - preamble_length
        - len(BATCH_FOOTER)
        - header_length
        - REPORT_SLACK_CHARS
    )

    included = total
    truncated = False
    if budget > 0 and len("\n".join(rows)) <= budget:
        row_lines = rows
    elif budget > 0:
        row_lines = []
        used = 0
        for row in rows:
            if used + len(row) + 1 > budget:
                break
            row_lines.append(row)
            used += len(row) + 1
        included = len(row_lines)
        truncated = True
        row_lines.append("")
        row_lines.append(
            f"*... truncated ({included}/{total} {w.plural} shown). "
            "Full data available in batch JSON output.*"
        )
    else:
        row_lines = [
            "*Table omitted: summary sections exceeded size limit. "
            "Full data available in batch JSON output.*"
        ]
        included = 0
        truncated = True

    label = (
        f"{included} of {total} {w.plural} (truncated)"
        if truncated
        else f"All {total} {w.plural}"
    )
    return [*head, f"<summary>{label}</summary>\n", *column_header, *row_lines, *tail]


def render_batch_report(result: BatchResult) -> tuple[str, str]:
    """Render (title, body) for the batch report issue."""
    w = _WORDING[result.kind]
    date = result.timestamp.split("T")[0]
    kind_word = "Issue Batch" if result.kind == "issue" else "Batch"
    title = f"prtriage {kind_word} Report - {result.repo} - {date}"

    lines: list[str] = [
        f"## prtriage {kind_word} Triage Report\n",
        f"**Repository:** {result.repo}",
        f"**{w.heading} analyzed:** {result.total_items}",
        f"**Run date:** {result.timestamp}\n",
    ]
    sections: list[Callable[[BatchResult, _Wording], list[str]]] = [
        _summary_section,
        _cluster_section,
        _top_section,
        _low_quality_section,
        _rejects_section,
    ]
    # Sections may use whatever the full table's minimal form leaves over.
    section_budget = (
        GITHUB_BODY_LIMIT
        - len(BATCH_FOOTER)
        - REPORT_SLACK_CHARS
        - FULL_TABLE_RESERVE_CHARS
    )
    for section in sections:
        block = section(result, w)
        if not block:
            continue
        if len("\n".join([*lines, *block])) <= section_budget:
            lines.extend(block)
        else:
            logger.warning(
                "Report section %r dropped to stay within %d chars",
                block[0].strip(),
                GITHUB_BODY_LIMIT,
            )
            lines.extend([block[0], SECTION_OMITTED_NOTICE, ""])

    lines.extend(_full_table(result, w, len("\n".join(lines))))
    lines.append(BATCH_FOOTER)
    return title, "\n".join(lines)


def _percent(score: float) -> str:
    return f"{score * 100:.1f}%"


def render_draft_comment(result: SingleTriageResult) -> str:
    """Render the triage comment for one PR or issue."""
    noun = "PR" if result.kind == "pr" else "Issue"
    plural = "PRs" if result.kind == "pr" else "issues"
    lines: list[str] = ["## prtriage Triage Report\n", "### Duplicate Check\n"]

    if result.is_duplicate and result.duplicate_of:
        top = result.duplicate_of[0]
        lines.append(
            f"> **Potential duplicate detected**: #{top.number} ({_percent(top.score)} similar)\n"
        )
    if result.duplicate_of:
        if not result.is_duplicate:
            lines.append(f"Similar {plural} found:\n")
        lines.extend(
            _table(
                (noun, "Similarity", "Title"),
                [(f"#{s.number}", _percent(s.score), s.title) for s in result.duplicate_of],
            )
        )
    else:
        lines.append(f"No similar {plural} found.\n")

    lines.append(f"### Quality Score: {format_number(result.quality_score)}/10\n")
    lines.extend(
        _table(
            ("Criterion", "Score"),
            [
                (BREAKDOWN_LABELS.get(key, key), f"{format_number(value)}/2.5")
                for key, value in result.quality_breakdown.items()
            ],
        )
    )

    lines.append(f"### Vision Alignment: {result.alignment}\n")
    lines.append(f"{result.alignment_reason}\n")

    label = ACTION_LABELS.get(result.recommended_action, result.recommended_action)
    lines.append(f"### Recommendation: **{label}**\n")
    lines.append(SINGLE_FOOTER)
    return "\n".join(lines)
