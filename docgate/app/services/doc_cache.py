"""Caches for resolved documentation and discovered file paths.

Two typed views over a CacheBackend:

- ContentCache: (namespace, project) -> ResolvedDocument, short TTL. A hit
  skips the whole resolution cascade.
- PathCache: (namespace, project, filename) -> CachedPath, long TTL. A hit
  skips the search API call for that file.

Reads never raise: backend errors and undecodable payloads are logged and
treated as a miss. Writes raise so the background runner can log them.
"""

import json
from typing import Optional

from docgate.app.core.cache import CacheBackend, get_cache
from docgate.app.core.config import settings
from docgate.app.core.logging import get_log_context, get_logger
from docgate.app.models import CachedPath, ResolvedDocument

logger = get_logger(__name__)


class _JsonCache:
    """Shared JSON (de)serialization over a cache backend."""

    def __init__(
        self,
        cache: Optional[CacheBackend],
        ttl: int,
        prefix: Optional[str] = None,
        enabled: bool = True,
    ) -> None:
        self._cache = cache
        self._ttl = ttl
        self._prefix = prefix or settings.cache_prefix
        self.enabled = enabled

    def _get_cache(self) -> CacheBackend:
        if self._cache is None:
            self._cache = get_cache()
        return self._cache

    async def _get_json(self, key: str) -> Optional[dict]:
        if not self.enabled:
            return None
        try:
            data = await self._get_cache().get(key)
        except Exception as e:
            logger.warning(f"Cache get failed for {key}: {e}")
            return None
        if data is None:
            return None
        try:
            decoded = json.loads(data.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning(f"Invalid cache payload for {key}, treating as miss")
            return None
        return decoded if isinstance(decoded, dict) else None

    async def _put_json(self, key: str, value: dict, ttl: int) -> None:
        if not self.enabled:
            return
        payload = json.dumps(value, ensure_ascii=False).encode("utf-8")
        await self._get_cache().set(key, payload, ttl)


class ContentCache(_JsonCache):
    """Whole resolution results keyed by (namespace, project)."""

    def __init__(
        self,
        cache: Optional[CacheBackend] = None,
        ttl: Optional[int] = None,
        prefix: Optional[str] = None,
        enabled: bool = True,
    ) -> None:
        super().__init__(cache, ttl or settings.content_cache_ttl, prefix, enabled)

    def make_key(self, namespace: str, project: str) -> str:
        return f"{self._prefix}:docs:{namespace}/{project}"

    async def get(self, namespace: str, project: str) -> Optional[ResolvedDocument]:
        key = self.make_key(namespace, project)
        data = await self._get_json(key)
        if data is None:
            return None
        try:
            return ResolvedDocument.from_dict(data)
        except KeyError:
            logger.warning(f"Incomplete cached document for {key}, treating as miss")
            return None

    async def put(
        self,
        namespace: str,
        project: str,
        document: ResolvedDocument,
        ttl: Optional[int] = None,
    ) -> None:
        """Store a resolved document.

        The "no documentation found" sentinel is never cached, so a later
        resolution can still discover documentation added upstream.
        """
        if not document.found:
            logger.debug(f"Not caching empty result for {namespace}/{project}")
            return
        await self._put_json(
            self.make_key(namespace, project), document.to_dict(), ttl or self._ttl
        )
        logger.debug(
            "Cached documentation result",
            extra=get_log_context(namespace=namespace, project=project),
        )


class PathCache(_JsonCache):
    """Discovered file locations keyed by (namespace, project, filename)."""

    def __init__(
        self,
        cache: Optional[CacheBackend] = None,
        ttl: Optional[int] = None,
        prefix: Optional[str] = None,
        enabled: bool = True,
    ) -> None:
        super().__init__(cache, ttl or settings.path_cache_ttl, prefix, enabled)

    def make_key(self, namespace: str, project: str, filename: str) -> str:
        return f"{self._prefix}:path:{namespace}/{project}:{filename}"

    async def get(
        self, namespace: str, project: str, filename: str
    ) -> Optional[CachedPath]:
        data = await self._get_json(self.make_key(namespace, project, filename))
        if data is None:
            return None
        try:
            return CachedPath.from_dict(data)
        except KeyError:
            return None

    async def put(
        self,
        namespace: str,
        project: str,
        filename: str,
        cached_path: CachedPath,
        ttl: Optional[int] = None,
    ) -> None:
        await self._put_json(
            self.make_key(namespace, project, filename),
            cached_path.to_dict(),
            ttl or self._ttl,
        )
