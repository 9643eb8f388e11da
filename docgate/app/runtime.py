"""Process wiring for docgate.

Builds the shared HTTP client, caches, work queue, blob store and resolver
from settings, and tears them down in order on exit.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

from docgate.app.core.background import BackgroundTaskRunner
from docgate.app.core.cache import CacheBackend, get_cache
from docgate.app.core.config import Settings, settings as default_settings
from docgate.app.core.http_client import init_http_client
from docgate.app.core.logging import get_logger, setup_logging
from docgate.app.gitlab.client import GitLabClient
from docgate.app.gitlab.rate_limit import RateLimitTracker
from docgate.app.gitlab.retry import RetryPolicy
from docgate.app.services.blob_store import BlobStore, HttpBlobStore, PregeneratedDocs
from docgate.app.services.doc_cache import ContentCache, PathCache
from docgate.app.services.enqueuer import DocumentationEnqueuer
from docgate.app.services.queue import RedisWorkQueue, WorkQueue
from docgate.app.services.resolver import DocumentResolver

logger = get_logger(__name__)

# Seconds to wait for pending cache writes and queue dispatches on shutdown
SHUTDOWN_DRAIN_TIMEOUT = 10.0


@dataclass
class Runtime:
    """Everything a caller needs to resolve documentation."""

    resolver: DocumentResolver
    client: GitLabClient
    tracker: RateLimitTracker
    runner: BackgroundTaskRunner
    cache: CacheBackend


@asynccontextmanager
async def init_runtime(
    config: Optional[Settings] = None,
    cache: Optional[CacheBackend] = None,
    queue: Optional[WorkQueue] = None,
    blob_store: Optional[BlobStore] = None,
) -> AsyncGenerator[Runtime, None]:
    """Initialize shared resources and yield a ready Runtime.

        async with init_runtime() as runtime:
            doc = await runtime.resolver.resolve("gitlab-org", "gitlab")

    Explicit ``cache``, ``queue`` and ``blob_store`` arguments take
    precedence over the ones configured in settings. Backends passed in
    stay open on exit; the caller owns them.
    """
    config = config or default_settings
    setup_logging(config)

    async with init_http_client(config) as http_client:
        owns_cache = cache is None
        if owns_cache:
            cache = get_cache(
                backend="redis" if config.redis_enabled else "memory",
                redis_url=config.redis_url,
                key_prefix=f"{config.cache_prefix}:",
                force_new=True,
            )
        owns_queue = queue is None
        runner = BackgroundTaskRunner()
        tracker = RateLimitTracker(throttle_threshold=config.gitlab_throttle_threshold)

        client = GitLabClient(
            http_client,
            api_base_url=config.gitlab_api_base_url,
            token=config.gitlab_token,
            tracker=tracker,
            retry_policy=RetryPolicy(
                max_retries=config.gitlab_max_retries,
                request_delay=config.gitlab_request_delay,
                max_throttle_wait=config.gitlab_max_throttle_wait,
                default_429_wait=config.gitlab_default_429_wait,
                network_retry_delay=config.gitlab_network_retry_delay,
            ),
            response_cache=cache if config.cache_enabled and config.response_cache_enabled else None,
            user_agent=config.gitlab_user_agent,
            cache_prefix=config.cache_prefix,
        )

        if queue is None and config.queue_enabled:
            queue = RedisWorkQueue(config.redis_url, config.queue_name)
        if blob_store is None and config.blob_store_base_url:
            blob_store = HttpBlobStore(config.blob_store_base_url, http_client)

        resolver = DocumentResolver(
            client,
            ContentCache(
                cache,
                ttl=config.content_cache_ttl,
                prefix=config.cache_prefix,
                enabled=config.cache_enabled,
            ),
            PathCache(
                cache,
                ttl=config.path_cache_ttl,
                prefix=config.cache_prefix,
                enabled=config.cache_enabled,
            ),
            PregeneratedDocs(blob_store, default_filename=config.doc_filename),
            DocumentationEnqueuer(queue, runner, web_base_url=config.gitlab_web_base_url),
            runner,
            doc_filename=config.doc_filename,
            static_paths=config.static_doc_paths,
            readme_prefix=config.readme_prefix,
            fallback_branch=config.fallback_branch,
        )

        logger.info(
            "docgate runtime ready",
            extra={
                "gitlab_api": config.gitlab_api_base_url,
                "authenticated": bool(config.gitlab_token),
                "queue": getattr(queue, "name", None),
                "blob_store": bool(blob_store),
            },
        )

        try:
            yield Runtime(
                resolver=resolver,
                client=client,
                tracker=tracker,
                runner=runner,
                cache=cache,
            )
        finally:
            await runner.drain(timeout=SHUTDOWN_DRAIN_TIMEOUT)
            if owns_queue and isinstance(queue, RedisWorkQueue):
                await queue.close()
            if owns_cache and hasattr(cache, "close"):
                await cache.close()
            logger.info("docgate runtime shutdown complete")
