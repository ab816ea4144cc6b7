"""Scope checks against the project's vision document.

Items are judged one at a time for single-item triage, or submitted together
as one asynchronous message batch that is polled until it ends.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import re
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

import httpx
from pydantic import BaseModel, ValidationError

from prtriage.constants import (
    ALIGNMENT_MAX_CONSECUTIVE_FAILURES,
    ALIGNMENT_POLL_INTERVAL,
    ALIGNMENT_POLL_TIMEOUT,
    ITEM_BODY_PROMPT_CHARS,
    PROMPT_FILE_LIMIT,
    PROMPT_LABEL_LIMIT,
    VISION_DOC_CANDIDATES,
    VISION_DOC_PROMPT_CHARS,
)
from prtriage.llm_client import JudgmentClient, JudgmentError
from prtriage.models import AlignmentVerdict, ItemKind, Issue, PullRequest, TriageItem

if TYPE_CHECKING:
    from prtriage.github import GitHubClient

logger = logging.getLogger(__name__)

NO_VISION_REASON = "No VISION.md or README.md found in repository"

# Greedy on purpose: spans from the first "{" to the last "}".
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_SURROGATE_RE = re.compile(r"[\ud800-\udfff]")
_PROMPT_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


class AlignmentBatchError(RuntimeError):
    """Raised when a judgment batch job fails or never finishes."""


class AlignmentJudgment(BaseModel):
    alignment: Literal["fits", "strays", "rejects"]
    reason: str


@dataclass(frozen=True)
class JudgmentParse:
    """Tagged result of parsing a model reply: either a judgment or a failure reason."""

    ok: bool
    judgment: AlignmentJudgment | None = None
    error: str = ""

    def as_verdict(self, failure_alignment: Literal["strays", "error"]) -> AlignmentVerdict:
        if self.ok and self.judgment is not None:
            return AlignmentVerdict(self.judgment.alignment, self.judgment.reason)
        return AlignmentVerdict(failure_alignment, self.error)


def parse_judgment(text: str) -> JudgmentParse:
    match = _JSON_OBJECT_RE.search(text or "")
    if not match:
        return JudgmentParse(ok=False, error="Unparseable model response")
    try:
        raw = json.loads(match.group(0))
    except json.JSONDecodeError:
        return JudgmentParse(ok=False, error="Malformed JSON in model response")
    try:
        return JudgmentParse(ok=True, judgment=AlignmentJudgment.model_validate(raw))
    except ValidationError:
        return JudgmentParse(ok=False, error="Invalid model response")


def sanitize_text(text: str) -> str:
    """Drop control characters (keeping tab/newline/CR) and replace lone surrogates."""
    return _PROMPT_CONTROL_RE.sub("", _SURROGATE_RE.sub("\ufffd", text))


_VERDICT_GUIDE = (
    'Use "fits" if clearly within scope, "strays" if tangential, '
    '"rejects" if outside scope.\n\n'
    "Reply with ONLY valid JSON matching this schema:\n"
    '{"alignment": "fits" | "strays" | "rejects", "reason": "one sentence explanation"}'
)


def build_prompt(item: TriageItem, vision_doc: str, source: str) -> str:
    doc = vision_doc[:VISION_DOC_PROMPT_CHARS]
    title = sanitize_text(item.title)
    body = sanitize_text(item.body[:ITEM_BODY_PROMPT_CHARS])
    if isinstance(item, PullRequest):
        files = ", ".join(item.file_list[:PROMPT_FILE_LIMIT])
        return (
            f"You are reviewing a pull request against a project's {source}.\n\n"
            f"{source} (first {VISION_DOC_PROMPT_CHARS} chars):\n{doc}\n\n"
            f"PR Title: {title}\n"
            f"PR Description: {body}\n"
            f"Files changed: {files}\n\n"
            "Does this PR fit the project vision?\n\n"
            f"{_VERDICT_GUIDE}"
        )
    labels = ", ".join(item.labels[:PROMPT_LABEL_LIMIT])
    return (
        f"You are reviewing a GitHub issue against a project's {source}.\n\n"
        f"{source} (first {VISION_DOC_PROMPT_CHARS} chars):\n{doc}\n\n"
        f"Issue Title: {title}\n"
        f"Issue Description: {body}\n"
        f"Labels: {labels}\n\n"
        "Does this issue align with the project vision? Is this a bug, feature "
        "request, or task within the project's stated scope?\n\n"
        f"{_VERDICT_GUIDE}"
    )


async def load_vision_doc(
    github: GitHubClient, owner: str, repo: str
) -> tuple[str | None, str | None]:
    """Return (content, filename) for VISION.md, else README.md, else (None, None)."""
    for candidate in VISION_DOC_CANDIDATES:
        content = await github.fetch_file(owner, repo, candidate)
        if content is not None:
            logger.info("Loaded %s (%d chars)", candidate, len(content))
            return content, candidate
    logger.info(NO_VISION_REASON)
    return None, None


async def check_alignment(
    judge: JudgmentClient,
    item: TriageItem,
    vision_doc: str | None,
    source: str | None = None,
) -> AlignmentVerdict:
    """
    Judge one item synchronously.

    Every degenerate reply maps to ``strays`` with a reason naming what went
    wrong. Transport failures raise JudgmentError.
    """
    if vision_doc is None:
        return AlignmentVerdict("strays", NO_VISION_REASON)

    reply = await judge.create_message(
        build_prompt(item, vision_doc, source or VISION_DOC_CANDIDATES[0])
    )
    if reply.stop_reason == "refusal":
        return AlignmentVerdict("strays", "Model declined evaluation")
    if reply.stop_reason == "max_tokens":
        return AlignmentVerdict("strays", "Response truncated")
    if not reply.text.strip():
        return AlignmentVerdict("strays", "Empty model response")
    return parse_judgment(reply.text).as_verdict("strays")


class PollState(enum.Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class BatchJobPoller:
    """
    Poll a batch job until it ends.

    SUBMITTED -> POLLING -> SUCCEEDED | FAILED | TIMED_OUT. A failed retrieve
    does not end polling until five happen back to back. The clock and sleep
    are injectable so tests run instantly.
    """

    retrieve: Callable[[str], Awaitable[dict[str, Any]]]
    batch_id: str
    interval: float = ALIGNMENT_POLL_INTERVAL
    timeout: float = ALIGNMENT_POLL_TIMEOUT
    max_consecutive_failures: int = ALIGNMENT_MAX_CONSECUTIVE_FAILURES
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    state: PollState = PollState.SUBMITTED
    consecutive_failures: int = 0
    polls: int = 0
    last_status: dict[str, Any] = field(default_factory=dict)

    async def run(self) -> dict[str, Any]:
        started = self.clock()
        self.state = PollState.POLLING
        while True:
            if self.clock() - started >= self.timeout:
                self.state = PollState.TIMED_OUT
                raise AlignmentBatchError(
                    f"Batch {self.batch_id} did not finish within {self.timeout / 60:.0f} minutes"
                )
            self.polls += 1
            try:
                status = await self.retrieve(self.batch_id)
            except (JudgmentError, httpx.HTTPError) as e:
                self.consecutive_failures += 1
                logger.warning(
                    "Batch poll failed (%d/%d): %s",
                    self.consecutive_failures,
                    self.max_consecutive_failures,
                    e,
                )
                if self.consecutive_failures >= self.max_consecutive_failures:
                    self.state = PollState.FAILED
                    raise AlignmentBatchError(
                        f"Batch polling failed after {self.max_consecutive_failures} "
                        f"consecutive errors: {e}"
                    ) from e
                await self.sleep(self.interval)
                continue

            self.consecutive_failures = 0
            self.last_status = status
            counts = status.get("request_counts") or {}
            logger.info(
                "Batch %s: %s succeeded, %s processing",
                self.batch_id,
                counts.get("succeeded", 0),
                counts.get("processing", 0),
            )
            if status.get("processing_status") == "ended":
                self.state = PollState.SUCCEEDED
                return status
            await self.sleep(self.interval)


type PollerFactory = Callable[[Callable[[str], Awaitable[dict[str, Any]]], str], BatchJobPoller]


@dataclass
class AlignmentBatchOutcome:
    batch_id: str
    verdicts: dict[int, AlignmentVerdict]


def _custom_id(kind: ItemKind, number: int) -> str:
    return f"{kind}-{number}"


def _number_from_custom_id(custom_id: str) -> int | None:
    _, _, tail = custom_id.rpartition("-")
    return int(tail) if tail.isdigit() else None


async def run_alignment_batch(
    judge: JudgmentClient,
    items: Sequence[PullRequest] | Sequence[Issue],
    vision_doc: str,
    source: str,
    kind: ItemKind,
    poller_factory: PollerFactory = BatchJobPoller,
) -> AlignmentBatchOutcome:
    """
    Judge many items through one batch job.

    Results are keyed by item number. A request that did not succeed maps to
    ``error`` with the result type; an unusable reply maps to ``error`` too.
    Raises AlignmentBatchError when polling fails or times out.
    """
    requests = [
        {
            "custom_id": _custom_id(kind, item.number),
            "params": judge.message_params(build_prompt(item, vision_doc, source)),
        }
        for item in items
    ]
    batch = await judge.create_batch(requests)
    if not batch.get("id"):
        raise AlignmentBatchError("Batch submission returned no batch id")
    batch_id = str(batch["id"])

    poller = poller_factory(judge.retrieve_batch, batch_id)
    await poller.run()

    verdicts: dict[int, AlignmentVerdict] = {}
    async for line in judge.batch_results(batch_id):
        number = _number_from_custom_id(line.custom_id)
        if number is None:
            logger.warning("Ignoring batch result with unknown id %r", line.custom_id)
            continue
        if line.result_type != "succeeded" or line.reply is None:
            verdicts[number] = AlignmentVerdict("error", f"Batch request {line.result_type}")
            continue
        parsed = parse_judgment(line.reply.text)
        verdicts[number] = (
            parsed.as_verdict("error")
            if parsed.ok
            else AlignmentVerdict("error", "Unparseable model response")
        )
    logger.info("Got %d alignment results from batch %s", len(verdicts), batch_id)
    return AlignmentBatchOutcome(batch_id=batch_id, verdicts=verdicts)
