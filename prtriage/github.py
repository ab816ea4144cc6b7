"""GitHub REST client: paginated listings, item details and report posting."""

from __future__ import annotations

import asyncio
import base64
import logging
import math
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, TypedDict, cast
from urllib.parse import quote

import httpx

from prtriage.constants import (
    GITHUB_API_BASE,
    GITHUB_HTTP_TIMEOUT,
    GITHUB_PER_PAGE,
    GITHUB_RATE_LIMIT_LOW_WATER,
    GITHUB_RATE_LIMIT_MAX_WAIT,
    GITHUB_RATE_LIMIT_RESET_PAD,
    GITHUB_SECONDARY_RATE_LIMIT_DEFAULT,
    GITHUB_USER_AGENT,
    HTTP_CONNECT_TIMEOUT,
    PR_FILE_LIST_LIMIT,
)
from prtriage.models import Issue, PullRequest

logger = logging.getLogger(__name__)


class GitHubError(RuntimeError):
    """Raised for GitHub API responses that are not recoverable by waiting."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class _UserDict(TypedDict, total=False):
    login: str


class _PullDict(TypedDict, total=False):
    number: int
    title: str
    body: str | None
    user: _UserDict | None
    additions: int
    deletions: int
    changed_files: int
    created_at: str


def _login(user: object) -> str:
    if isinstance(user, dict):
        login = user.get("login")
        if isinstance(login, str):
            return login
    return "unknown"


def _label_names(raw: object) -> list[str]:
    names: list[str] = []
    if not isinstance(raw, list):
        return names
    for label in raw:
        if isinstance(label, str):
            names.append(label)
        elif isinstance(label, dict) and isinstance(label.get("name"), str):
            names.append(label["name"])
    return names


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text.strip()
    if isinstance(data, dict) and isinstance(data.get("message"), str):
        return data["message"]
    return resp.text.strip()


class GitHubClient:
    """
    Minimal GitHub REST client for triage.

    Tracks the primary rate-limit headers on every response so long
    enrichment loops can pause before running dry, and retries once after
    sleeping when GitHub reports a primary or secondary rate limit.
    """

    BASE_URL: str = GITHUB_API_BASE

    def __init__(
        self,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": GITHUB_USER_AGENT,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.client: httpx.AsyncClient = client or httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers=headers,
            follow_redirects=True,
            timeout=httpx.Timeout(GITHUB_HTTP_TIMEOUT, connect=HTTP_CONNECT_TIMEOUT),
        )
        self._sleep = sleep
        self._clock = clock
        self.rate_limit_remaining: float = math.inf
        self.rate_limit_reset: float = 0.0

    def _track_rate_limit(self, resp: httpx.Response) -> None:
        remaining = resp.headers.get("x-ratelimit-remaining")
        reset = resp.headers.get("x-ratelimit-reset")
        try:
            if remaining is not None and int(remaining) >= 0:
                self.rate_limit_remaining = int(remaining)
            if reset is not None and int(reset) > 0:
                self.rate_limit_reset = float(reset)
        except ValueError:
            logger.debug("Ignoring malformed rate-limit headers: %s/%s", remaining, reset)

    def _seconds_until_reset(self, reset: float) -> float:
        return reset - self._clock() + GITHUB_RATE_LIMIT_RESET_PAD

    async def wait_if_rate_limited(self) -> None:
        """Sleep until the primary limit resets when few requests remain."""
        if self.rate_limit_remaining > GITHUB_RATE_LIMIT_LOW_WATER:
            return
        wait = self._seconds_until_reset(self.rate_limit_reset)
        if 0 < wait < GITHUB_RATE_LIMIT_MAX_WAIT:
            logger.info(
                "Only %s GitHub requests remaining, waiting %ds for reset",
                self.rate_limit_remaining,
                math.ceil(wait),
            )
            await self._sleep(wait)
            self.rate_limit_remaining = math.inf

    def _rate_limit_delay(self, resp: httpx.Response) -> float | None:
        """Seconds to wait before retrying a rate-limited response, or None."""
        if resp.status_code == 403:
            message = _error_message(resp).lower()
            if "secondary rate limit" in message:
                try:
                    delay = float(resp.headers.get("retry-after", ""))
                except ValueError:
                    delay = GITHUB_SECONDARY_RATE_LIMIT_DEFAULT
                logger.warning("Secondary rate limit hit, waiting %ss", delay)
                return delay
        if resp.status_code in (403, 429):
            try:
                remaining = int(resp.headers.get("x-ratelimit-remaining", "-1"))
                reset = float(resp.headers.get("x-ratelimit-reset", "0"))
            except ValueError:
                return None
            if remaining == 0 and reset > 0:
                wait = self._seconds_until_reset(reset)
                if 0 < wait < GITHUB_RATE_LIMIT_MAX_WAIT:
                    logger.warning(
                        "Primary rate limit exhausted, waiting %ds for reset",
                        math.ceil(wait),
                    )
                    return wait
        return None

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        resp = await self.client.request(method, url, **kwargs)
        self._track_rate_limit(resp)
        delay = self._rate_limit_delay(resp)
        if delay is not None:
            await self._sleep(delay)
            resp = await self.client.request(method, url, **kwargs)
            self._track_rate_limit(resp)
        if resp.status_code >= 400:
            raise GitHubError(
                f"GitHub {method} {url} failed ({resp.status_code}): {_error_message(resp)}",
                status_code=resp.status_code,
            )
        return resp

    async def _paginate(
        self, path: str, params: dict[str, Any] | None = None
    ) -> AsyncIterator[list[dict[str, Any]]]:
        url: str | None = path
        query: dict[str, Any] | None = {"per_page": GITHUB_PER_PAGE, **(params or {})}
        while url:
            resp = await self._request("GET", url, params=query)
            page = resp.json()
            yield cast(list[dict[str, Any]], page if isinstance(page, list) else [])
            url = resp.links.get("next", {}).get("url")
            # The next link already carries the query string.
            query = None

    async def list_open_prs(self, owner: str, repo: str) -> list[PullRequest]:
        prs: list[PullRequest] = []
        async for page in self._paginate(
            f"/repos/{owner}/{repo}/pulls", {"state": "open"}
        ):
            for raw in page:
                prs.append(
                    PullRequest(
                        number=int(raw["number"]),
                        title=raw.get("title") or "",
                        body=raw.get("body") or "",
                        user=_login(raw.get("user")),
                        created_at=raw.get("created_at") or "",
                    )
                )
            logger.info("Fetched %d open PRs so far", len(prs))
        return prs

    async def list_open_issues(self, owner: str, repo: str) -> list[Issue]:
        """Open issues only; the issues endpoint also returns PRs, which are dropped."""
        issues: list[Issue] = []
        async for page in self._paginate(
            f"/repos/{owner}/{repo}/issues", {"state": "open"}
        ):
            for raw in page:
                if "pull_request" in raw:
                    continue
                issues.append(self._issue_from_json(raw))
            logger.info("Fetched %d open issues so far", len(issues))
        return issues

    @staticmethod
    def _issue_from_json(raw: dict[str, Any]) -> Issue:
        milestone = raw.get("milestone")
        reactions = raw.get("reactions")
        return Issue(
            number=int(raw["number"]),
            title=raw.get("title") or "",
            body=raw.get("body") or "",
            user=_login(raw.get("user")),
            labels=_label_names(raw.get("labels")),
            milestone=milestone.get("title") if isinstance(milestone, dict) else None,
            assignees=[_login(a) for a in raw.get("assignees") or []],
            comment_count=int(raw.get("comments") or 0),
            reaction_count=(
                int(reactions.get("total_count") or 0)
                if isinstance(reactions, dict)
                else 0
            ),
            created_at=raw.get("created_at") or "",
        )

    async def fetch_pr(self, owner: str, repo: str, number: int) -> PullRequest:
        resp = await self._request("GET", f"/repos/{owner}/{repo}/pulls/{number}")
        raw = cast(_PullDict, resp.json())
        files_resp = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/pulls/{number}/files",
            params={"per_page": PR_FILE_LIST_LIMIT},
        )
        files = files_resp.json()
        return PullRequest(
            number=int(raw["number"]),
            title=raw.get("title") or "",
            body=raw.get("body") or "",
            user=_login(raw.get("user")),
            additions=int(raw.get("additions") or 0),
            deletions=int(raw.get("deletions") or 0),
            changed_files=int(raw.get("changed_files") or 0),
            file_list=[f["filename"] for f in files if isinstance(f, dict)],
            created_at=raw.get("created_at") or "",
        )

    async def fetch_issue(self, owner: str, repo: str, number: int) -> Issue:
        resp = await self._request("GET", f"/repos/{owner}/{repo}/issues/{number}")
        raw = resp.json()
        if "pull_request" in raw:
            raise GitHubError(f"#{number} is a pull request, not an issue")
        return self._issue_from_json(raw)

    async def fetch_file(self, owner: str, repo: str, path: str) -> str | None:
        """Decoded file contents from the default branch, or None if absent."""
        try:
            resp = await self._request(
                "GET", f"/repos/{owner}/{repo}/contents/{quote(path)}"
            )
        except GitHubError as e:
            if e.status_code == 404:
                return None
            raise
        data = resp.json()
        if not isinstance(data, dict) or not isinstance(data.get("content"), str):
            return None
        return base64.b64decode(data["content"]).decode("utf-8", errors="replace")

    async def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        labels: list[str] | None = None,
    ) -> int:
        payload: dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = labels
        resp = await self._request("POST", f"/repos/{owner}/{repo}/issues", json=payload)
        number = int(resp.json()["number"])
        logger.info("Issue #%d created", number)
        return number

    async def post_comment(self, owner: str, repo: str, number: int, body: str) -> None:
        await self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{number}/comments",
            json={"body": body},
        )
        logger.info("Comment posted on #%d", number)

    async def create_label_if_missing(
        self, owner: str, repo: str, name: str, color: str, description: str = ""
    ) -> None:
        try:
            await self._request("GET", f"/repos/{owner}/{repo}/labels/{quote(name)}")
            return
        except GitHubError as e:
            if e.status_code != 404:
                raise
        await self._request(
            "POST",
            f"/repos/{owner}/{repo}/labels",
            json={"name": name, "color": color, "description": description},
        )
        logger.info("Created label %s", name)

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
