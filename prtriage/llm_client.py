"""Anthropic Messages API client used for alignment judgments."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

import httpx
from aiolimiter import AsyncLimiter
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from prtriage.constants import (
    HTTP_CONNECT_TIMEOUT,
    HTTP_POOL_TIMEOUT,
    HTTP_READ_TIMEOUT,
    HTTP_WRITE_TIMEOUT,
    JUDGMENT_API_BASE,
    JUDGMENT_API_VERSION,
    JUDGMENT_MAX_RETRIES,
    JUDGMENT_MAX_TOKENS,
    JUDGMENT_MIN_REQUEST_INTERVAL,
    JUDGMENT_MODEL,
)
from prtriage.http_retry import (
    RetryableHTTPError,
    classify_response,
    error_message,
    retry_wait,
)

logger = logging.getLogger(__name__)


class JudgmentError(RuntimeError):
    """Raised when the judgment service rejects a request."""


class JudgmentRetryableError(JudgmentError):
    """Raised when transient judgment failures outlast the retry budget."""


@dataclass(frozen=True)
class MessageReply:
    text: str
    stop_reason: str | None


@dataclass(frozen=True)
class BatchResultLine:
    custom_id: str
    result_type: str
    reply: MessageReply | None


class _BatchStatusSchema(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    processing_status: str = ""
    request_counts: dict[str, int] = Field(default_factory=dict)
    results_url: str | None = None


def _json_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError as e:
        raise JudgmentError(
            f"Judgment API returned a non-JSON body (HTTP {resp.status_code})"
        ) from e


def _batch_status(resp: httpx.Response) -> dict[str, Any]:
    """Validate a batch object; anything without a string ``id`` is rejected."""
    raw = _json_body(resp)
    try:
        return _BatchStatusSchema.model_validate(raw).model_dump()
    except ValidationError as e:
        raise JudgmentError(
            f"Judgment API returned a malformed batch object ({e.error_count()} errors)"
        ) from e


def _reply_from_message(message: dict[str, Any]) -> MessageReply:
    blocks = message.get("content") or []
    text = "".join(
        b.get("text", "")
        for b in blocks
        if isinstance(b, dict) and b.get("type") == "text"
    )
    return MessageReply(text=text, stop_reason=message.get("stop_reason"))


class JudgmentClient:
    """
    Thin async wrapper over the Messages and Message Batches endpoints.

    Every call passes through a shared rate limiter and is retried on 408,
    429 and 5xx responses; 429 honours the server's retry-after cooldown.
    """

    def __init__(
        self,
        api_key: str,
        model: str = JUDGMENT_MODEL,
        max_tokens: int = JUDGMENT_MAX_TOKENS,
        client: httpx.AsyncClient | None = None,
        max_retries: int = JUDGMENT_MAX_RETRIES,
        min_request_interval: float = JUDGMENT_MIN_REQUEST_INTERVAL,
        wait: Callable[[RetryCallState], float] = retry_wait,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.max_retries = max_retries
        self._wait = wait
        self._limiter = AsyncLimiter(1, min_request_interval)
        self.client: httpx.AsyncClient = client or httpx.AsyncClient(
            base_url=JUDGMENT_API_BASE,
            headers={
                "x-api-key": api_key,
                "anthropic-version": JUDGMENT_API_VERSION,
                "content-type": "application/json",
            },
            timeout=httpx.Timeout(
                connect=HTTP_CONNECT_TIMEOUT,
                read=HTTP_READ_TIMEOUT,
                write=HTTP_WRITE_TIMEOUT,
                pool=HTTP_POOL_TIMEOUT,
            ),
        )

    def message_params(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                retry=retry_if_exception_type(RetryableHTTPError),
                wait=self._wait,
                reraise=True,
            ):
                with attempt:
                    try:
                        async with self._limiter:
                            resp = await self.client.request(method, url, **kwargs)
                    except httpx.HTTPError as e:
                        raise RetryableHTTPError(str(e)) from e

                    if resp.status_code < 400:
                        return resp
                    retryable = classify_response(resp, "Judgment")
                    if retryable is not None:
                        raise retryable
                    raise JudgmentError(
                        f"Judgment API error {resp.status_code}: {error_message(resp)}"
                    )
        except RetryableHTTPError as e:
            logger.error(
                "Judgment API call failed after %d attempts: %s", self.max_retries, e
            )
            raise JudgmentRetryableError(str(e)) from e
        raise JudgmentError("Judgment API call made no attempts")

    async def create_message(self, prompt: str) -> MessageReply:
        resp = await self._send("POST", "/messages", json=self.message_params(prompt))
        message = _json_body(resp)
        if not isinstance(message, dict):
            raise JudgmentError("Judgment API returned a malformed message")
        return _reply_from_message(message)

    async def create_batch(self, requests: list[dict[str, Any]]) -> dict[str, Any]:
        """Submit ``[{"custom_id": ..., "params": ...}, ...]`` as one batch job."""
        resp = await self._send("POST", "/messages/batches", json={"requests": requests})
        batch = _batch_status(resp)
        logger.info("Submitted judgment batch %s (%d requests)", batch["id"], len(requests))
        return batch

    async def retrieve_batch(self, batch_id: str) -> dict[str, Any]:
        resp = await self._send("GET", f"/messages/batches/{batch_id}")
        return _batch_status(resp)

    async def batch_results(self, batch_id: str) -> AsyncIterator[BatchResultLine]:
        """Stream results of an ended batch, one JSONL line per request."""
        batch = await self.retrieve_batch(batch_id)
        url = batch.get("results_url") or f"/messages/batches/{batch_id}/results"
        resp = await self._send("GET", url)
        for line in resp.text.splitlines():
            if not line.strip():
                continue
            try:
                row = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed batch result line")
                continue
            result = row.get("result") or {}
            result_type = str(result.get("type", "unknown"))
            reply = None
            if result_type == "succeeded" and isinstance(result.get("message"), dict):
                reply = _reply_from_message(result["message"])
            yield BatchResultLine(
                custom_id=str(row.get("custom_id", "")),
                result_type=result_type,
                reply=reply,
            )

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> JudgmentClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
