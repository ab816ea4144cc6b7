import argparse
import asyncio
import json
import sys
from pathlib import Path

import httpx
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from prtriage.batch import BatchOptions, batch_triage
from prtriage.config import ConfigError, Settings, load_settings
from prtriage.constants import (
    BATCH_REPORT_LABEL,
    BATCH_REPORT_LABEL_COLOR,
    ISSUE_BATCH_REPORT_LABEL,
)
from prtriage.embeddings import EmbeddingClient
from prtriage.github import GitHubClient, GitHubError
from prtriage.llm_client import JudgmentClient
from prtriage.logging_config import configure_logging, get_logger
from prtriage.models import BatchResult
from prtriage.report import render_batch_report
from prtriage.single import SingleOptions, triage_item

console = Console()
logger = get_logger("prtriage.cli")


def batch_json_path(result: BatchResult, settings: Settings) -> Path:
    prefix = "prtriage-issue-batch" if result.kind == "issue" else "prtriage-batch"
    date = result.timestamp.split("T")[0]
    return Path(f"{prefix}-{settings.safe_slug}-{date}.json")


def write_batch_json(result: BatchResult, settings: Settings) -> Path | None:
    """Dump the raw batch result next to the report. Returns None on failure."""
    path = batch_json_path(result, settings)
    try:
        path.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Failed to write batch JSON to {path}: {e}[/]")
        return None
    logger.info("batch_json_written", path=str(path), entries=len(result.entries))
    console.print(f"[green]Full batch data written to {path}[/]")
    return path


def _judge(settings: Settings) -> JudgmentClient | None:
    if settings.skip_vision:
        return None
    return JudgmentClient(settings.anthropic_api_key or "")


async def run_triage(args: argparse.Namespace, settings: Settings) -> int:
    kind = "issue" if args.issue else "pr"
    if args.number <= 0:
        console.print(f"[red]Invalid {kind} number: {args.number}[/]")
        return 1
    cache_path = settings.issue_cache_path if kind == "issue" else settings.cache_path
    console.print(
        f"[bold]Triaging {kind} #{args.number} on {settings.slug}[/] "
        f"[dim](cache: {cache_path}, threshold: {settings.similarity_threshold}, "
        f"post comment: {settings.post_comment})[/]"
    )

    judge = _judge(settings)
    async with (
        GitHubClient(settings.github_token) as github,
        EmbeddingClient(settings.openai_api_key or "") as embedder,
    ):
        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                TimeElapsedColumn(),
                transient=True,
                console=console,
            ) as progress:
                progress.add_task(f"[cyan]Triaging #{args.number}...", total=None)
                result = await triage_item(
                    kind,
                    args.number,
                    settings.owner,
                    settings.repo,
                    SingleOptions(
                        cache_path=cache_path,
                        similarity_threshold=settings.similarity_threshold,
                        skip_alignment=settings.skip_vision,
                    ),
                    github,
                    embedder,
                    judge,
                )
        finally:
            if judge is not None:
                await judge.close()

        console.print_json(json.dumps(result.to_dict()))
        if settings.post_comment:
            await github.post_comment(
                settings.owner, settings.repo, args.number, result.draft_comment
            )
            console.print("[green]Comment posted successfully.[/]")
        else:
            console.print(
                "\n[yellow][DRY RUN][/] Comment not posted. Set POST_COMMENT=true to post.\n"
            )
            console.print(result.draft_comment, markup=False)
    return 0


async def run_batch(args: argparse.Namespace, settings: Settings) -> int:
    kind = "issue" if args.issues else "pr"
    options = BatchOptions(
        cache_path=settings.issue_cache_path if kind == "issue" else settings.cache_path,
        enrichment_cache_path=(
            settings.issue_enrichment_cache_path
            if kind == "issue"
            else settings.enrichment_cache_path
        ),
        similarity_threshold=settings.similarity_threshold,
        skip_alignment=settings.skip_vision,
    )
    console.print(
        f"[bold]Batch triage ({kind}s) for {settings.slug}[/] "
        f"[dim](skip vision: {settings.skip_vision}, post issue: {settings.post_comment})[/]"
    )

    judge = _judge(settings)
    async with (
        GitHubClient(settings.github_token) as github,
        EmbeddingClient(settings.openai_api_key or "") as embedder,
    ):
        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                TimeElapsedColumn(),
                transient=True,
                console=console,
            ) as progress:
                progress.add_task(f"[cyan]Triaging open {kind}s...", total=None)
                result = await batch_triage(
                    kind, settings.owner, settings.repo, options, github, embedder, judge
                )
        finally:
            if judge is not None:
                await judge.close()

        json_path = write_batch_json(result, settings)
        title, body = render_batch_report(result)

        if settings.post_comment:
            label = ISSUE_BATCH_REPORT_LABEL if kind == "issue" else BATCH_REPORT_LABEL
            try:
                await github.create_label_if_missing(
                    settings.owner, settings.repo, label, BATCH_REPORT_LABEL_COLOR
                )
                number = await github.create_issue(
                    settings.owner, settings.repo, title, body, [label]
                )
                console.print(f"[green]Batch report posted as issue #{number}[/]")
                return 0
            except (GitHubError, httpx.HTTPError) as e:
                logger.error("batch_report_post_failed", error=str(e))
                console.print(f"[red]Failed to post issue: {e}[/]")
                if json_path is not None:
                    console.print(f"Report data saved to {json_path}, you can post manually.")

        console.print(f"\n[bold]{title}[/]\n")
        console.print(body, markup=False)
    return 0


async def main(args: argparse.Namespace) -> int:
    try:
        settings = load_settings()
        settings.require("github_token", "openai_api_key")
        if not settings.skip_vision:
            settings.require("anthropic_api_key")
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/]")
        return 1

    if args.command == "triage":
        return await run_triage(args, settings)
    return await run_batch(args, settings)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Triage GitHub PRs and issues: duplicates, quality, scope"
    )
    parser.add_argument(
        "--log-level", default="INFO", help="Logging level (default: INFO)"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    triage = sub.add_parser("triage", help="Triage a single PR or issue")
    triage.add_argument("number", type=int, help="PR or issue number")
    triage.add_argument(
        "--issue", action="store_true", help="Treat NUMBER as an issue, not a PR"
    )

    batch = sub.add_parser("batch", help="Triage every open PR (or issue)")
    batch.add_argument(
        "--issues", action="store_true", help="Triage open issues instead of PRs"
    )
    return parser


def run() -> None:
    args = build_parser().parse_args()
    configure_logging(args.log_level)
    sys.exit(asyncio.run(main(args)))


if __name__ == "__main__":
    run()
