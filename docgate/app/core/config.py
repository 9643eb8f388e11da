import json
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


# Probe order for well-known documentation locations on the default branch
DEFAULT_STATIC_DOC_PATHS = [
    "docs/docs/llms.txt",
    "llms.txt",
    "docs/llms.txt",
]


def _parse_path_list(raw: Any) -> list[str]:
    """Accept a JSON array or a comma/whitespace separated string.

    Order is kept (it is the probe priority) and duplicates are dropped.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        text = raw.strip()
        parsed = None
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError:
                text = text.strip("[]")
        raw = parsed if isinstance(parsed, list) else text.replace(",", " ").split()

    paths: list[str] = []
    for item in raw:
        path = str(item).strip().strip("\"'")
        if path and path not in paths:
            paths.append(path)
    return paths


class Settings(BaseSettings):
    """docgate configuration, read from the environment and ``.env``.

    Field names map to upper-case variables: ``gitlab_token`` is read from
    ``GITLAB_TOKEN``.
    """

    # GitLab instance; point the base URL at a self-hosted API for on-prem use
    gitlab_api_base_url: str = "https://gitlab.com/api/v4"
    gitlab_token: str = ""
    gitlab_user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/135.0.0.0 Safari/537.36"
    )

    # Outbound HTTP (seconds unless noted)
    httpx_timeout: float = 30.0  # Per-request client when no shared client is set
    httpx_connect_timeout: float = 10.0
    httpx_read_timeout: float = 30.0
    httpx_write_timeout: float = 10.0
    httpx_pool_timeout: float = 5.0
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100  # count
    httpx_max_keepalive_connections: int = 20  # count

    # GitLab pacing and retries (seconds unless noted)
    gitlab_max_retries: int = 3  # retries after the first attempt
    gitlab_request_delay: float = 1.0  # spacing while quota looks healthy
    gitlab_throttle_threshold: int = 5  # remaining quota below which we wait for reset
    gitlab_max_throttle_wait: float = 60.0
    gitlab_default_429_wait: float = 60.0  # 429 without a known reset time
    gitlab_network_retry_delay: float = 2.0

    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Caching
    cache_enabled: bool = True
    cache_prefix: str = "docgate:v1"
    content_cache_ttl: int = 30 * 60  # resolved documents
    path_cache_ttl: int = 24 * 60 * 60  # discovered file locations
    response_cache_enabled: bool = True  # per-status caching of upstream responses
    redis_enabled: bool = False  # Redis instead of the in-process cache
    redis_url: str = "redis://localhost:6379/0"

    # What counts as documentation
    doc_filename: str = "llms.txt"
    readme_prefix: str = "README"
    fallback_branch: str = "main"  # used when no branch can be confirmed
    static_doc_paths: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_STATIC_DOC_PATHS)
    )

    # Public bucket with pre-generated documentation; empty disables it
    blob_store_base_url: str = ""

    # Redis list receiving post-processing jobs
    queue_enabled: bool = False
    queue_name: str = "docgate:documentation-processing"

    @property
    def gitlab_web_base_url(self) -> str:
        """GitLab instance base URL (the API base without /api/v4)."""
        return self.gitlab_api_base_url.replace("/api/v4", "").rstrip("/")

    @field_validator("static_doc_paths", mode="before")
    @classmethod
    def decode_static_doc_paths(cls, v: Any) -> list[str]:
        return _parse_path_list(v)

    @field_validator("gitlab_api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator(
        "httpx_timeout",
        "httpx_connect_timeout",
        "httpx_read_timeout",
        "httpx_write_timeout",
        "httpx_pool_timeout",
    )
    @classmethod
    def timeouts_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("HTTP timeouts must be greater than zero")
        return v

    @field_validator("content_cache_ttl", "path_cache_ttl")
    @classmethod
    def ttls_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Cache TTLs must be at least one second")
        return v

    @field_validator("gitlab_max_retries", "gitlab_throttle_threshold")
    @classmethod
    def must_not_be_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Value must not be negative")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
