"""Text embeddings via an OpenAI-compatible embeddings endpoint."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence

import httpx
import numpy as np
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from prtriage.constants import (
    EMBEDDING_API_BASE,
    EMBEDDING_BATCH_SIZE,
    EMBEDDING_HTTP_TIMEOUT,
    EMBEDDING_MAX_RETRIES,
    EMBEDDING_MIN_TEXT_LENGTH,
    EMBEDDING_MODEL,
    HTTP_CONNECT_TIMEOUT,
)
from prtriage.http_retry import (
    RetryableHTTPError,
    classify_response,
    error_message,
    retry_wait,
)

logger = logging.getLogger(__name__)

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f-\x9f]")


class EmbeddingError(RuntimeError):
    """Raised when the embedding service fails for a whole request."""


def sanitize(text: str) -> str:
    """Replace C0/C1 control characters with spaces."""
    return _CONTROL_CHARS_RE.sub(" ", text)


class EmbeddingClient:
    def __init__(
        self,
        api_key: str,
        model: str = EMBEDDING_MODEL,
        client: httpx.AsyncClient | None = None,
        max_retries: int = EMBEDDING_MAX_RETRIES,
        wait: Callable[[RetryCallState], float] = retry_wait,
    ) -> None:
        self.model = model
        self.max_retries = max_retries
        self._wait = wait
        self.client: httpx.AsyncClient = client or httpx.AsyncClient(
            base_url=EMBEDDING_API_BASE,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=httpx.Timeout(EMBEDDING_HTTP_TIMEOUT, connect=HTTP_CONNECT_TIMEOUT),
        )

    async def _embed_request(self, inputs: list[str]) -> list[dict]:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                retry=retry_if_exception_type(RetryableHTTPError),
                wait=self._wait,
                reraise=True,
            ):
                with attempt:
                    try:
                        resp = await self.client.post(
                            "/embeddings", json={"model": self.model, "input": inputs}
                        )
                    except httpx.HTTPError as e:
                        raise RetryableHTTPError(str(e)) from e
                    if resp.status_code == 200:
                        return resp.json().get("data", [])
                    retryable = classify_response(resp, "Embedding")
                    if retryable is not None:
                        raise retryable
                    raise EmbeddingError(
                        f"Embedding API error {resp.status_code}: {error_message(resp)}"
                    )
        except RetryableHTTPError as e:
            raise EmbeddingError(
                f"Embedding API failed after {self.max_retries} attempts: {e}"
            ) from e
        raise EmbeddingError("Embedding API call made no attempts")

    async def batch_embed(self, texts: Sequence[str]) -> dict[int, list[float]]:
        """
        Embed texts, keyed by their index in ``texts``.

        Inputs shorter than the minimum after sanitizing are skipped, as are
        all-zero output vectors. Raises EmbeddingError if a request fails.
        """
        results: dict[int, list[float]] = {}
        valid = [
            (idx, cleaned)
            for idx, cleaned in ((i, sanitize(t).strip()) for i, t in enumerate(texts))
            if len(cleaned) >= EMBEDDING_MIN_TEXT_LENGTH
        ]
        if not valid:
            return results

        for start in range(0, len(valid), EMBEDDING_BATCH_SIZE):
            chunk = valid[start : start + EMBEDDING_BATCH_SIZE]
            logger.info(
                "Embedding batch %d (%d texts)",
                start // EMBEDDING_BATCH_SIZE + 1,
                len(chunk),
            )
            data = await self._embed_request([text for _, text in chunk])
            for item in data:
                pos = int(item.get("index", -1))
                if not 0 <= pos < len(chunk):
                    continue
                original_index = chunk[pos][0]
                vector = item.get("embedding") or []
                if not np.any(np.asarray(vector, dtype=np.float64)):
                    logger.warning(
                        "All-zero embedding for index %d, skipping", original_index
                    )
                    continue
                results[original_index] = [float(v) for v in vector]

        logger.info("Embedded %d/%d texts", len(results), len(texts))
        return results

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> EmbeddingClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
