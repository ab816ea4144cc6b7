import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from prtriage.enrichment import (
    enrich_issues,
    enrich_items,
    enrich_prs,
    load_enrichment_cache,
    save_enrichment_cache,
)
from prtriage.models import EnrichmentCache, Issue, PullRequest


def test_load_missing_or_corrupt_cache(tmp_path):
    path = tmp_path / "enrich.json"
    assert load_enrichment_cache(path).entries == {}

    path.write_text("[]")
    assert load_enrichment_cache(path).entries == {}

    path.write_text("{{{")
    assert load_enrichment_cache(path).entries == {}


def test_save_and_load_round_trip_int_keys(tmp_path):
    path = tmp_path / "enrich.json"
    cache = EnrichmentCache(
        last_updated="2026-01-01T00:00:00Z",
        entries={12: {"additions": 3, "deletions": 1}},
    )
    save_enrichment_cache(path, cache)

    on_disk = json.loads(path.read_text())
    assert list(on_disk["entries"]) == ["12"]

    loaded = load_enrichment_cache(path)
    assert loaded.entries == {12: {"additions": 3, "deletions": 1}}
    assert loaded.last_updated == "2026-01-01T00:00:00Z"


@pytest.mark.asyncio
async def test_enrich_items_skips_cached_and_failures(tmp_path):
    path = tmp_path / "enrich.json"
    cache = EnrichmentCache(entries={1: {"additions": 1}})

    async def fetch(number):
        if number == 3:
            raise RuntimeError("boom")
        return {"additions": number * 10}

    result = await enrich_items([1, 2, 3, 4], cache, path, fetch)

    assert result is cache
    assert set(cache.entries) == {1, 2, 4}
    assert cache.entries[1] == {"additions": 1}
    assert cache.entries[2]["additions"] == 20
    assert cache.entries[4]["cachedAt"].endswith("Z")
    assert load_enrichment_cache(path).entries.keys() == {1, 2, 4}


@pytest.mark.asyncio
async def test_enrich_items_checkpoints_every_fifty(tmp_path):
    path = tmp_path / "enrich.json"
    cache = EnrichmentCache()
    wait = AsyncMock()

    async def fetch(number):
        return {"n": number}

    with patch("prtriage.enrichment.save_enrichment_cache") as mock_save:
        await enrich_items(range(120), cache, path, fetch, wait=wait)

    # Checkpoints after 50 and 100, plus the final save
    assert mock_save.call_count == 3
    assert wait.await_count == 120


@pytest.mark.asyncio
async def test_enrich_items_nothing_new_does_not_save(tmp_path):
    path = tmp_path / "enrich.json"
    cache = EnrichmentCache(entries={5: {}})
    fetch = AsyncMock()

    with patch("prtriage.enrichment.save_enrichment_cache") as mock_save:
        await enrich_items([5], cache, path, fetch)

    fetch.assert_not_awaited()
    mock_save.assert_not_called()


@pytest.mark.asyncio
async def test_enrich_prs_stores_detail_fields(tmp_path):
    github = MagicMock()
    github.wait_if_rate_limited = AsyncMock()
    github.fetch_pr = AsyncMock(
        return_value=PullRequest(
            number=8,
            title="t",
            body="b",
            user="u",
            additions=40,
            deletions=2,
            changed_files=3,
            file_list=["a.py", "b.py", "c.py"],
        )
    )

    cache = await enrich_prs(github, "o", "r", [8], EnrichmentCache(), tmp_path / "e.json")

    github.fetch_pr.assert_awaited_once_with("o", "r", 8)
    github.wait_if_rate_limited.assert_awaited_once()
    entry = cache.entries[8]
    assert entry["additions"] == 40
    assert entry["changedFiles"] == 3
    assert entry["fileList"] == ["a.py", "b.py", "c.py"]


@pytest.mark.asyncio
async def test_enrich_issues_stores_detail_fields(tmp_path):
    github = MagicMock()
    github.wait_if_rate_limited = AsyncMock()
    github.fetch_issue = AsyncMock(
        return_value=Issue(
            number=3,
            title="t",
            body="b",
            user="u",
            milestone="v2",
            assignees=["carol"],
            comment_count=4,
            reaction_count=9,
        )
    )

    cache = await enrich_issues(
        github, "o", "r", [3], EnrichmentCache(), tmp_path / "e.json"
    )

    entry = cache.entries[3]
    assert entry["commentCount"] == 4
    assert entry["reactionCount"] == 9
    assert entry["milestone"] == "v2"
    assert entry["assignees"] == ["carol"]
    assert entry["linkedPRs"] == 0
