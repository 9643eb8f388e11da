"""GitLab API client with rate limiting support.

Every outbound call goes through :meth:`GitLabClient.request`, which paces
calls against the quota reported by GitLab, retries throttled (429) and
failed requests (any httpx.RequestError) a bounded number of times, and optionally
serves repeat GET/HEAD calls from a response cache. Works with gitlab.com
and self-hosted instances.
"""

import asyncio
import base64
import hashlib
import json
import re
import time
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote, unquote

import httpx

from docgate.app.core.cache import CacheBackend
from docgate.app.core.config import settings
from docgate.app.core.logging import get_log_context, get_logger
from docgate.app.gitlab.rate_limit import RateLimitTracker
from docgate.app.gitlab.retry import RetryPolicy
from docgate.app.models import CodeSearchHit, CodeSearchPage, DocumentLocation

logger = get_logger(__name__)

MAX_SEARCH_PER_PAGE = 100
DEFAULT_SEARCH_PER_PAGE = 20

_RAW_URL_RE = re.compile(r"([^/]+)/([^/]+)/-/raw/")
_API_URL_RE = re.compile(r"/api/v4/projects/([^/?]+)")


def encode_project_path(namespace: str, project: str) -> str:
    """URL-encode ``namespace/project`` as a GitLab project id (slashes included)."""
    return quote(f"{namespace}/{project}", safe="")


def extract_repo_context(url: str) -> str:
    """Derive ``namespace/project`` from a GitLab URL for log context.

    Handles raw-content URLs and API project URLs; anything else is
    reported as ``unknown/unknown``.
    """
    if "/-/raw/" in url:
        match = _RAW_URL_RE.search(url)
        if match:
            return f"{match.group(1)}/{match.group(2)}"

    match = _API_URL_RE.search(url)
    if match:
        return unquote(match.group(1))

    return "unknown/unknown"


class ResponseCachePolicy:
    """TTL per response status for the optional upstream response cache.

    Successful responses are kept for an hour, 404s for a minute; server
    errors and everything else are never cached.
    """

    SUCCESS_TTL = 3600
    NOT_FOUND_TTL = 60
    CACHEABLE_METHODS = frozenset({"GET", "HEAD"})

    def ttl_for_status(self, status_code: int) -> int:
        if 200 <= status_code < 300:
            return self.SUCCESS_TTL
        if status_code == 404:
            return self.NOT_FOUND_TTL
        return 0


class GitLabClient:
    """Rate-governed client for the GitLab REST API and raw file endpoint.

    If http_client is provided it is used for every request (connection
    reuse); otherwise a client is created and closed per request.

    Example:
        async with init_http_client() as http:
            client = GitLabClient(http, tracker=RateLimitTracker())
            branch = await client.get_default_branch("gitlab-org", "gitlab")
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        api_base_url: Optional[str] = None,
        token: Optional[str] = None,
        tracker: Optional[RateLimitTracker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        response_cache: Optional[CacheBackend] = None,
        user_agent: Optional[str] = None,
        cache_prefix: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the client.

        Args:
            http_client: Optional shared HTTP client for connection pooling
            api_base_url: API root, e.g. https://gitlab.example.com/api/v4
            token: Private token sent as PRIVATE-TOKEN when auth is requested
            tracker: Quota tracker; share one per GitLab instance
            retry_policy: Pacing and retry configuration
            response_cache: Cache backend for GET/HEAD responses, or None to disable
            user_agent: User-Agent header value
            cache_prefix: Namespace for response cache keys
            sleep: Awaitable used for every wait (injected in tests)
            clock: Wall clock in epoch seconds (injected in tests)
        """
        self._http_client = http_client
        self.api_base_url = (api_base_url or settings.gitlab_api_base_url).rstrip("/")
        self.web_base_url = self.api_base_url.replace("/api/v4", "").rstrip("/")
        self.token = settings.gitlab_token if token is None else token
        self.tracker = tracker or RateLimitTracker(
            throttle_threshold=settings.gitlab_throttle_threshold, clock=clock
        )
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.response_cache = response_cache
        self.response_cache_policy = ResponseCachePolicy()
        self.user_agent = user_agent or settings.gitlab_user_agent
        self.cache_prefix = cache_prefix or settings.cache_prefix
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _client_context(self):
        """Yield the shared client, or a per-request client that is closed afterwards."""
        if self._http_client is not None:
            yield self._http_client
            return
        client = httpx.AsyncClient(timeout=settings.httpx_timeout)
        try:
            yield client
        finally:
            await client.aclose()

    def _build_headers(
        self, extra: Optional[Dict[str, str]], use_auth: bool
    ) -> Dict[str, str]:
        headers = dict(extra or {})
        headers["Accept"] = "application/json"
        headers["User-Agent"] = self.user_agent
        # GitLab uses PRIVATE-TOKEN instead of Authorization
        if use_auth and self.token:
            headers["PRIVATE-TOKEN"] = self.token
        return headers

    async def _respect_rate_limits(self) -> None:
        now = self._clock()
        delay = self.retry_policy.pre_request_delay(self.tracker, now)
        if self.tracker.should_throttle(now):
            logger.info(
                f"Rate limit low ({self.tracker.state.remaining} remaining). "
                f"Waiting {delay:.1f}s until reset"
            )
        if delay > 0:
            await self._sleep(delay)

    async def request(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        use_auth: bool = True,
        **kwargs: Any,
    ) -> Optional[httpx.Response]:
        """Make a GitLab request with rate limit handling.

        Args:
            url: Absolute URL to fetch
            method: HTTP method
            headers: Extra request headers
            use_auth: Send the private token if one is configured
            **kwargs: Passed through to httpx (params, json, ...)

        Returns:
            The response, including non-2xx responses and a 429 once retries
            are exhausted; None only when every attempt raised an httpx.RequestError.
        """
        method = method.upper()
        repo_context = extract_repo_context(url)
        request_headers = self._build_headers(headers, use_auth)

        cache_key = self._response_cache_key(method, url, use_auth, kwargs)
        cached = await self._read_cached_response(cache_key, method, url)
        if cached is not None:
            return cached

        attempt = 0
        while True:
            await self._respect_rate_limits()

            try:
                async with self._client_context() as client:
                    response = await client.request(
                        method, url, headers=request_headers, **kwargs
                    )
            except self.retry_policy.retryable_exceptions as e:
                logger.error(
                    f"GitLab API request to {url} failed: {type(e).__name__}: {e}",
                    extra=get_log_context(repo_context=repo_context, url=url, attempt=attempt),
                )
                if not self.retry_policy.can_retry(attempt):
                    return None
                attempt += 1
                logger.info(
                    f"Network error. Retrying {attempt}/{self.retry_policy.max_retries}..."
                )
                await self._sleep(self.retry_policy.network_retry_delay)
                continue

            self.tracker.observe(response.headers)

            if response.status_code == 429:
                logger.warning(
                    f"GitLab API rate limit exceeded: {response.text[:100]}",
                    extra=get_log_context(
                        repo_context=repo_context,
                        url=url,
                        status_code=429,
                        attempt=attempt,
                    ),
                )
                if not self.retry_policy.can_retry(attempt):
                    return response
                wait = self.retry_policy.throttled_retry_delay(self.tracker, self._clock())
                attempt += 1
                logger.info(
                    f"Rate limited. Waiting {wait:.1f}s before retry "
                    f"{attempt}/{self.retry_policy.max_retries}"
                )
                await self._sleep(wait)
                continue

            await self._store_cached_response(cache_key, response)
            return response

    # ------------------------------------------------------------------
    # Response cache
    # ------------------------------------------------------------------

    def _response_cache_key(
        self, method: str, url: str, use_auth: bool, kwargs: Dict[str, Any]
    ) -> Optional[str]:
        if self.response_cache is None:
            return None
        if method not in ResponseCachePolicy.CACHEABLE_METHODS:
            return None
        if any(k in kwargs for k in ("content", "data", "json", "files")):
            return None
        params = kwargs.get("params")
        fingerprint = f"{method} {url} {sorted(params.items()) if isinstance(params, dict) else params}"
        digest = hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()
        scope = "auth" if use_auth and self.token else "anon"
        return f"{self.cache_prefix}:http:{scope}:{digest}"

    async def _read_cached_response(
        self, cache_key: Optional[str], method: str, url: str
    ) -> Optional[httpx.Response]:
        if cache_key is None:
            return None
        try:
            raw = await self.response_cache.get(cache_key)
        except Exception as e:
            logger.warning(f"Response cache get failed: {e}")
            return None
        if raw is None:
            return None
        try:
            data = json.loads(raw.decode("utf-8"))
            response = httpx.Response(
                status_code=data["status_code"],
                headers=data.get("headers", {}),
                content=base64.b64decode(data["body"]),
                request=httpx.Request(method, url),
            )
        except (ValueError, KeyError, UnicodeDecodeError) as e:
            logger.warning(f"Discarding unreadable cached response for {url}: {e}")
            return None
        logger.debug(f"Response cache hit for {method} {url}")
        return response

    async def _store_cached_response(
        self, cache_key: Optional[str], response: httpx.Response
    ) -> None:
        if cache_key is None:
            return
        ttl = self.response_cache_policy.ttl_for_status(response.status_code)
        if ttl <= 0:
            return
        payload = {
            "status_code": response.status_code,
            "headers": {
                k: v
                for k, v in response.headers.items()
                if k.lower() in ("content-type", "x-total", "x-total-pages", "x-next-page")
            },
            "body": base64.b64encode(response.content).decode("ascii"),
        }
        try:
            await self.response_cache.set(
                cache_key, json.dumps(payload).encode("utf-8"), ttl
            )
        except Exception as e:
            logger.warning(f"Response cache set failed: {e}")

    # ------------------------------------------------------------------
    # URL builders
    # ------------------------------------------------------------------

    def project_api_url(self, namespace: str, project: str) -> str:
        return f"{self.api_base_url}/projects/{encode_project_path(namespace, project)}"

    def repo_url(self, namespace: str, project: str) -> str:
        return f"{self.web_base_url}/{namespace}/{project}"

    def raw_url(self, location: DocumentLocation) -> str:
        return location.raw_url(self.web_base_url)

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def get_default_branch(self, namespace: str, project: str) -> Optional[str]:
        """Return the project's default branch from the metadata endpoint, if available."""
        response = await self.request(self.project_api_url(namespace, project))
        if response is None or not response.is_success:
            logger.warning(
                f"Project metadata unavailable for {namespace}/{project}: "
                f"{response.status_code if response is not None else 'no response'}"
            )
            return None
        try:
            data = response.json()
        except ValueError as e:
            logger.warning(f"Invalid project metadata for {namespace}/{project}: {e}")
            return None
        branch = data.get("default_branch") if isinstance(data, dict) else None
        return branch or None

    async def branch_exists(
        self, namespace: str, project: str, branch: str, probe_path: str = "README.md"
    ) -> bool:
        """Check a branch by issuing HEAD for a well-known file on it."""
        location = DocumentLocation(namespace, project, branch, probe_path)
        response = await self.request(self.raw_url(location), method="HEAD")
        return response is not None and response.is_success

    async def fetch_raw_file(
        self, location: DocumentLocation, use_auth: bool = False
    ) -> Optional[str]:
        """Fetch raw file content, or None when the file is missing or unreachable."""
        response = await self.request(self.raw_url(location), use_auth=use_auth)
        if response is None or not response.is_success:
            return None
        return response.text

    async def search_code(
        self,
        query: str,
        namespace: str,
        project: str,
        page: int = 1,
        per_page: int = DEFAULT_SEARCH_PER_PAGE,
    ) -> Optional[CodeSearchPage]:
        """Search blobs in a project (``scope=blobs``).

        Args:
            query: Search query, GitLab search syntax
            namespace: Repository namespace (can be nested like group/subgroup)
            project: Project name
            page: Page number (1-indexed)
            per_page: Results per page, clamped to 1..100

        Returns:
            A CodeSearchPage, or None if the request failed.
        """
        page = max(1, page)
        per_page = min(max(1, per_page), MAX_SEARCH_PER_PAGE)
        url = f"{self.project_api_url(namespace, project)}/search"
        params = {
            "scope": "blobs",
            "search": query,
            "page": page,
            "per_page": per_page,
        }

        response = await self.request(url, params=params)
        if response is None or not response.is_success:
            status = response.status_code if response is not None else "no response"
            logger.warning(f"GitLab API code search failed: {status}")
            return None

        try:
            results = response.json()
        except ValueError as e:
            logger.warning(f"GitLab API code search returned invalid JSON: {e}")
            return None
        if not isinstance(results, list):
            logger.warning("GitLab API code search returned an unexpected payload")
            return None

        items = [
            self._to_search_hit(item, namespace, project)
            for item in results
            if isinstance(item, dict) and (item.get("path") or item.get("filename"))
        ]
        # GitLab only reports a total when counting is cheap
        try:
            total = int(response.headers.get("x-total", ""))
        except ValueError:
            total = (page - 1) * per_page + len(items)

        return CodeSearchPage(
            query=query, items=items, total_count=total, page=page, per_page=per_page
        )

    def _to_search_hit(self, item: Dict[str, Any], namespace: str, project: str) -> CodeSearchHit:
        path = item.get("path") or item.get("filename")
        ref = item.get("ref")
        return CodeSearchHit(
            path=path,
            html_url=f"{self.repo_url(namespace, project)}/-/blob/{ref or 'main'}/{path}",
            ref=ref,
            startline=item.get("startline"),
            data=item.get("data"),
        )

    async def search_file_by_name(
        self, filename: str, namespace: str, project: str
    ) -> List[str]:
        """Paths of files whose basename is exactly ``filename``."""
        page = await self.search_code(
            filename, namespace, project, per_page=MAX_SEARCH_PER_PAGE
        )
        if page is None:
            return []
        return [
            hit.path for hit in page.items if hit.path.rsplit("/", 1)[-1] == filename
        ]

    async def search_root_files_by_prefix(
        self, prefix: str, namespace: str, project: str
    ) -> List[str]:
        """Root-level files whose name starts with ``prefix`` (case-insensitive)."""
        page = await self.search_code(
            prefix, namespace, project, per_page=MAX_SEARCH_PER_PAGE
        )
        if page is None:
            return []
        wanted = prefix.lower()
        matches: List[str] = []
        for hit in page.items:
            path = hit.path.lstrip("/")
            if "/" in path or not path.lower().startswith(wanted):
                continue
            if path not in matches:
                matches.append(path)
        return matches
