from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from prtriage.constants import (
    DEFAULT_CACHE_PREFIX,
    DEFAULT_ENRICHMENT_CACHE_PREFIX,
    DEFAULT_ISSUE_CACHE_PREFIX,
    DEFAULT_ISSUE_ENRICHMENT_CACHE_PREFIX,
    DEFAULT_SIMILARITY_THRESHOLD,
)

CONFIG_DIR = Path.home() / ".config" / "prtriage"
CONFIG_FILE = CONFIG_DIR / "config.json"

_TRUE_VALUES = {"1", "true", "yes", "on"}


class ConfigError(RuntimeError):
    """Raised when required configuration is missing or invalid."""


def load_config() -> dict:
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r") as f:
            data = json.load(f)
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def get_repo() -> Optional[str]:
    return load_config().get("repo")


@dataclass(frozen=True)
class Settings:
    """Runtime settings resolved from the environment and the config file."""

    owner: str
    repo: str
    cache_path: Path
    enrichment_cache_path: Path
    issue_cache_path: Path
    issue_enrichment_cache_path: Path
    similarity_threshold: float
    post_comment: bool
    skip_vision: bool
    github_token: Optional[str]
    openai_api_key: Optional[str]
    anthropic_api_key: Optional[str]

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def safe_slug(self) -> str:
        return f"{self.owner}-{self.repo}"

    def require(self, *names: str) -> None:
        """Raise ConfigError if any of the named credentials are unset."""
        missing = [n for n in names if not getattr(self, n)]
        if missing:
            env_names = ", ".join(n.upper() for n in missing)
            raise ConfigError(f"{env_names} environment variable is required")


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in _TRUE_VALUES


def _parse_threshold(raw: Optional[str]) -> float:
    if raw is None or raw.strip() == "":
        return DEFAULT_SIMILARITY_THRESHOLD
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"SIMILARITY_THRESHOLD must be a number, got {raw!r}") from e
    if not 0.0 <= value <= 1.0:
        raise ConfigError(f"SIMILARITY_THRESHOLD must be within [0, 1], got {value}")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Resolve settings from environment variables.

    Values missing from the environment fall back to the JSON config file,
    then to built-in defaults. Raises ConfigError when the target repository
    is missing or malformed.
    """
    if env is None:
        env = os.environ
    file_config = load_config()

    def get(name: str) -> Optional[str]:
        value = env.get(name)
        if value is None:
            fallback = file_config.get(name.lower())
            value = str(fallback) if fallback is not None else None
        return value

    slug = get("PRTRIAGE_REPO") or get_repo()
    if not slug or slug.count("/") != 1 or not all(slug.split("/")):
        raise ConfigError("PRTRIAGE_REPO environment variable is required (format: owner/repo)")
    owner, repo = slug.split("/")
    safe = f"{owner}-{repo}"

    return Settings(
        owner=owner,
        repo=repo,
        cache_path=Path(get("CACHE_PATH") or f"{DEFAULT_CACHE_PREFIX}-{safe}.json"),
        enrichment_cache_path=Path(
            get("ENRICHMENT_CACHE_PATH") or f"{DEFAULT_ENRICHMENT_CACHE_PREFIX}-{safe}.json"
        ),
        issue_cache_path=Path(
            get("ISSUE_CACHE_PATH") or f"{DEFAULT_ISSUE_CACHE_PREFIX}-{safe}.json"
        ),
        issue_enrichment_cache_path=Path(
            get("ISSUE_ENRICHMENT_CACHE_PATH")
            or f"{DEFAULT_ISSUE_ENRICHMENT_CACHE_PREFIX}-{safe}.json"
        ),
        similarity_threshold=_parse_threshold(get("SIMILARITY_THRESHOLD")),
        post_comment=_flag(get("POST_COMMENT")),
        skip_vision=_flag(get("SKIP_VISION")),
        github_token=get("GITHUB_TOKEN"),
        openai_api_key=get("OPENAI_API_KEY"),
        anthropic_api_key=get("ANTHROPIC_API_KEY"),
    )
