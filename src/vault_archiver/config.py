from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

import environ

env = environ.Env()

DEFAULT_ALLOWED_HOSTS = ("publish.obsidian.md",)
DEFAULT_USER_AGENT = "VaultArchiver/1.0 (+https://github.com/vault-archiver)"
DEFAULT_AGENT_TOKEN = "vaultarchiver"


@dataclass(frozen=True)
class Settings:
    """Runtime configuration collected from ``VAULT_ARCHIVER_*`` variables."""

    redis_url: str | None = None
    allowed_hosts: tuple[str, ...] = DEFAULT_ALLOWED_HOSTS
    user_agent: str = DEFAULT_USER_AGENT
    agent_token: str = DEFAULT_AGENT_TOKEN
    max_pages: int = 500
    page_timeout_s: float = 10.0
    policy_timeout_s: float = 5.0
    rate_limit_quota: int = 5
    rate_limit_window_s: int = 3600
    artifact_ttl_s: int = 600
    log_level: str = "INFO"


def _env_hosts() -> tuple[str, ...]:
    hosts = env.list("VAULT_ARCHIVER_ALLOWED_HOSTS", default=list(DEFAULT_ALLOWED_HOSTS))
    return tuple(h.strip().lower() for h in hosts if h.strip())


def load_settings() -> Settings:
    """Read settings from the environment without caching."""

    settings = Settings(
        redis_url=env("VAULT_ARCHIVER_REDIS_URL", default=None) or None,
        allowed_hosts=_env_hosts(),
        user_agent=env("VAULT_ARCHIVER_USER_AGENT", default=DEFAULT_USER_AGENT),
        agent_token=env("VAULT_ARCHIVER_AGENT_TOKEN", default=DEFAULT_AGENT_TOKEN),
        max_pages=env.int("VAULT_ARCHIVER_MAX_PAGES", default=500),
        page_timeout_s=env.float("VAULT_ARCHIVER_PAGE_TIMEOUT", default=10.0),
        policy_timeout_s=env.float("VAULT_ARCHIVER_POLICY_TIMEOUT", default=5.0),
        rate_limit_quota=env.int("VAULT_ARCHIVER_RATE_LIMIT_QUOTA", default=5),
        rate_limit_window_s=env.int("VAULT_ARCHIVER_RATE_LIMIT_WINDOW", default=3600),
        artifact_ttl_s=env.int("VAULT_ARCHIVER_ARTIFACT_TTL", default=600),
        log_level=env("VAULT_ARCHIVER_LOG_LEVEL", default="INFO"),
    )
    if settings.max_pages < 1:
        raise ValueError("VAULT_ARCHIVER_MAX_PAGES must be positive")
    if settings.rate_limit_quota < 1 or settings.rate_limit_window_s < 1:
        raise ValueError("Rate limit quota and window must be positive")
    if settings.artifact_ttl_s < 1:
        raise ValueError("VAULT_ARCHIVER_ARTIFACT_TTL must be positive")
    return settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once and cache them for subsequent calls."""

    return load_settings()
