import pytest

from prtriage import config
from prtriage.models import CachedVectorEntry, Issue, PullRequest


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """
    Point the JSON config file at an empty temp dir so a developer's
    ~/.config/prtriage never leaks into settings resolved during tests.
    """
    config_dir = tmp_path / ".config" / "prtriage"
    monkeypatch.setattr(config, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(config, "CONFIG_FILE", config_dir / "config.json")
    yield config_dir


@pytest.fixture
def make_pr():
    def _make(number=1, title="feat: add thing", body="", **kwargs):
        return PullRequest(number=number, title=title, body=body, user="alice", **kwargs)

    return _make


@pytest.fixture
def make_issue():
    def _make(number=1, title="Crash on start", body="", **kwargs):
        return Issue(number=number, title=title, body=body, user="bob", **kwargs)

    return _make


@pytest.fixture
def make_entry():
    def _make(number, embedding, title=None):
        return CachedVectorEntry(
            number=number,
            title=title if title is not None else f"Item {number}",
            body="",
            embedding=list(embedding),
            cached_at="2026-01-01T00:00:00Z",
        )

    return _make
