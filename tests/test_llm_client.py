import json

import pytest
import respx
from httpx import Response

from prtriage.http_retry import RetryableHTTPError, classify_response, parse_retry_after
from prtriage.llm_client import JudgmentClient, JudgmentError, JudgmentRetryableError

API = "https://api.anthropic.com/v1"


def _no_wait(retry_state):
    return 0.0


def _client(**kwargs):
    return JudgmentClient("sk-test", min_request_interval=0.001, wait=_no_wait, **kwargs)


def _message(text, stop_reason="end_turn"):
    return {"content": [{"type": "text", "text": text}], "stop_reason": stop_reason}


@pytest.mark.asyncio
@respx.mock
async def test_create_message_sends_prompt_and_parses_reply():
    route = respx.post(f"{API}/messages").mock(
        return_value=Response(200, json=_message('{"alignment": "fits"}'))
    )

    async with _client(model="test-model", max_tokens=50) as judge:
        reply = await judge.create_message("Is this in scope?")

    assert reply.text == '{"alignment": "fits"}'
    assert reply.stop_reason == "end_turn"
    request = route.calls[0].request
    assert request.headers["x-api-key"] == "sk-test"
    assert request.headers["anthropic-version"] == "2023-06-01"
    body = json.loads(request.content)
    assert body["model"] == "test-model"
    assert body["max_tokens"] == 50
    assert body["messages"] == [{"role": "user", "content": "Is this in scope?"}]


@pytest.mark.asyncio
@respx.mock
async def test_transient_errors_are_retried():
    route = respx.post(f"{API}/messages").mock(
        side_effect=[
            Response(529, json={"error": {"message": "overloaded"}}),
            Response(429, headers={"retry-after": "0"}, json={}),
            Response(200, json=_message("ok")),
        ]
    )
    async with _client() as judge:
        reply = await judge.create_message("p")
    assert reply.text == "ok"
    assert route.call_count == 3


@pytest.mark.asyncio
@respx.mock
async def test_permanent_error_is_not_retried():
    route = respx.post(f"{API}/messages").mock(
        return_value=Response(400, json={"error": {"message": "bad request"}})
    )
    async with _client() as judge:
        with pytest.raises(JudgmentError, match="bad request"):
            await judge.create_message("p")
    assert route.call_count == 1


@pytest.mark.asyncio
@respx.mock
async def test_retry_budget_exhausted():
    route = respx.post(f"{API}/messages").mock(return_value=Response(503))
    async with _client(max_retries=3) as judge:
        with pytest.raises(JudgmentRetryableError):
            await judge.create_message("p")
    assert route.call_count == 3


@pytest.mark.asyncio
@respx.mock
async def test_batch_lifecycle():
    create = respx.post(f"{API}/messages/batches").mock(
        return_value=Response(200, json={"id": "msgbatch_1", "processing_status": "in_progress"})
    )
    respx.get(f"{API}/messages/batches/msgbatch_1").mock(
        return_value=Response(
            200,
            json={
                "id": "msgbatch_1",
                "processing_status": "ended",
                "results_url": f"{API}/messages/batches/msgbatch_1/results",
            },
        )
    )
    lines = [
        {"custom_id": "pr-1", "result": {"type": "succeeded", "message": _message("hi")}},
        {"custom_id": "pr-2", "result": {"type": "expired"}},
    ]
    body = "\n".join(json.dumps(line) for line in lines) + "\nnot json\n"
    respx.get(f"{API}/messages/batches/msgbatch_1/results").mock(
        return_value=Response(200, text=body)
    )

    async with _client() as judge:
        batch = await judge.create_batch(
            [{"custom_id": "pr-1", "params": judge.message_params("p")}]
        )
        status = await judge.retrieve_batch(batch["id"])
        results = [line async for line in judge.batch_results(batch["id"])]

    assert json.loads(create.calls[0].request.content)["requests"][0]["custom_id"] == "pr-1"
    assert status["processing_status"] == "ended"
    assert [r.custom_id for r in results] == ["pr-1", "pr-2"]
    assert results[0].reply.text == "hi"
    assert results[1].result_type == "expired"
    assert results[1].reply is None


@pytest.mark.asyncio
@respx.mock
async def test_non_json_batch_response_raises_judgment_error():
    respx.post(f"{API}/messages/batches").mock(
        return_value=Response(200, text="<html>Bad gateway</html>")
    )
    async with _client() as judge:
        with pytest.raises(JudgmentError, match="non-JSON"):
            await judge.create_batch([])


@pytest.mark.asyncio
@respx.mock
async def test_batch_object_without_id_raises_judgment_error():
    respx.get(f"{API}/messages/batches/msgbatch_1").mock(
        return_value=Response(200, json={"processing_status": "ended"})
    )
    async with _client() as judge:
        with pytest.raises(JudgmentError, match="malformed batch object"):
            await judge.retrieve_batch("msgbatch_1")


@pytest.mark.asyncio
@respx.mock
async def test_non_object_message_raises_judgment_error():
    respx.post(f"{API}/messages").mock(return_value=Response(200, json=["not", "a", "message"]))
    async with _client() as judge:
        with pytest.raises(JudgmentError, match="malformed message"):
            await judge.create_message("p")


def test_parse_retry_after():
    assert parse_retry_after("12") == 12.0
    assert parse_retry_after("-3") == 0.0
    assert parse_retry_after("") is None
    assert parse_retry_after("soon") is None
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0


def test_classify_response():
    limited = classify_response(Response(429, headers={"retry-after": "4"}), "Svc")
    assert isinstance(limited, RetryableHTTPError)
    assert limited.is_rate_limit
    assert limited.cooldown == 4.0

    server = classify_response(Response(502), "Svc")
    assert server is not None and not server.is_rate_limit

    assert classify_response(Response(401), "Svc") is None
