"""Tests for the documentation resolution cascade."""

import asyncio
import json
from typing import Dict, List, Optional, Tuple

import httpx
import pytest
import respx

from docgate.app.core.background import BackgroundTaskRunner
from docgate.app.core.cache import InMemoryCache
from docgate.app.exceptions import BlobStoreError
from docgate.app.gitlab.client import GitLabClient
from docgate.app.gitlab.rate_limit import RateLimitTracker
from docgate.app.gitlab.retry import RetryPolicy
from docgate.app.models import (
    NO_DOCUMENTATION_FOUND,
    CachedPath,
    DocumentLocation,
    ResolvedDocument,
)
from docgate.app.services.blob_store import InMemoryBlobStore, PregeneratedDocs
from docgate.app.services.doc_cache import ContentCache, PathCache
from docgate.app.services.enqueuer import DocumentationEnqueuer
from docgate.app.services.queue import InMemoryWorkQueue, WorkQueue
from docgate.app.services.resolver import DocumentResolver

WEB = "https://gitlab.example.com"
STATIC_PATHS = ["llms.txt", "docs/llms.txt", ".gitlab/llms.txt"]


class StubGitLabClient:
    """In-process stand-in for GitLabClient that counts calls."""

    def __init__(
        self,
        files: Optional[Dict[Tuple[str, str], str]] = None,
        default_branch: Optional[str] = "main",
        branches: Tuple[str, ...] = (),
        doc_search: Optional[List[str]] = None,
        readme_search: Optional[List[str]] = None,
        delays: Optional[Dict[str, float]] = None,
    ):
        self.web_base_url = WEB
        self.files = dict(files or {})
        self.default_branch = default_branch
        self.branches = branches
        self.doc_search = doc_search or []
        self.readme_search = readme_search or []
        self.delays = delays or {}
        self.fetched: List[Tuple[str, str]] = []
        self.searches: List[str] = []
        self.branch_probes: List[str] = []

    async def get_default_branch(self, namespace, project):
        return self.default_branch

    async def branch_exists(self, namespace, project, branch, probe_path="README.md"):
        self.branch_probes.append(branch)
        return branch in self.branches

    async def fetch_raw_file(self, location: DocumentLocation, use_auth=False):
        self.fetched.append((location.branch, location.path))
        delay = self.delays.get(location.path)
        if delay:
            await asyncio.sleep(delay)
        return self.files.get((location.branch, location.path))

    def raw_url(self, location: DocumentLocation) -> str:
        return location.raw_url(self.web_base_url)

    async def search_file_by_name(self, filename, namespace, project):
        self.searches.append(filename)
        return list(self.doc_search)

    async def search_root_files_by_prefix(self, prefix, namespace, project):
        self.searches.append(prefix)
        return list(self.readme_search)


class FailingQueue(WorkQueue):
    name = "failing"

    async def send(self, message: str) -> None:
        raise RuntimeError("queue unavailable")


def make_resolver(client, cache=None, queue=None, blob_store=None):
    cache = cache or InMemoryCache()
    runner = BackgroundTaskRunner()
    queue = queue if queue is not None else InMemoryWorkQueue()
    resolver = DocumentResolver(
        client,
        ContentCache(cache, ttl=1800, prefix="test"),
        PathCache(cache, ttl=86400, prefix="test"),
        PregeneratedDocs(blob_store),
        DocumentationEnqueuer(queue, runner, web_base_url=WEB),
        runner,
        doc_filename="llms.txt",
        static_paths=STATIC_PATHS,
        readme_prefix="README",
        fallback_branch="main",
    )
    return resolver, runner, queue, cache


def drain_messages(queue: InMemoryWorkQueue) -> List[dict]:
    messages = []
    while not queue.messages.empty():
        messages.append(json.loads(queue.messages.get_nowait()))
    return messages


class TestStaticPaths:
    @pytest.mark.asyncio
    async def test_root_file_found(self):
        client = StubGitLabClient(files={("main", "llms.txt"): "# Root docs"})
        resolver, runner, queue, _ = make_resolver(client)

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document == ResolvedDocument(
            file_used="llms.txt",
            content="# Root docs",
            source_path=f"{WEB}/acme/tools/-/raw/main/llms.txt",
        )
        assert client.searches == []

    @pytest.mark.asyncio
    async def test_all_static_paths_fetched_concurrently(self):
        client = StubGitLabClient(
            files={("main", ".gitlab/llms.txt"): "hidden docs"},
            delays={"llms.txt": 0.01, "docs/llms.txt": 0.01},
        )
        resolver, runner, _, _ = make_resolver(client)

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert {path for _, path in client.fetched} == set(STATIC_PATHS)
        assert document.source_path.endswith("/-/raw/main/.gitlab/llms.txt")

    @pytest.mark.asyncio
    async def test_list_order_wins_over_completion_order(self):
        client = StubGitLabClient(
            files={
                ("main", "llms.txt"): "root",
                ("main", "docs/llms.txt"): "docs",
            },
            delays={"llms.txt": 0.05},
        )
        resolver, runner, _, _ = make_resolver(client)

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document.content == "root"
        assert document.source_path == f"{WEB}/acme/tools/-/raw/main/llms.txt"

    @pytest.mark.asyncio
    async def test_earlier_entry_beats_faster_later_entry(self):
        client = StubGitLabClient(
            files={
                ("main", "docs/llms.txt"): "docs",
                ("main", ".gitlab/llms.txt"): "gitlab",
            },
            delays={"docs/llms.txt": 0.05},
        )
        resolver, runner, _, _ = make_resolver(client)

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document.content == "docs"

    @pytest.mark.asyncio
    async def test_empty_content_is_not_a_match(self):
        client = StubGitLabClient(
            files={("main", "llms.txt"): "", ("main", "docs/llms.txt"): "docs"}
        )
        resolver, runner, _, _ = make_resolver(client)

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document.content == "docs"


class TestSearchFallback:
    @pytest.mark.asyncio
    async def test_search_finds_nested_file_and_caches_path(self):
        client = StubGitLabClient(
            files={("main", "site/content/llms.txt"): "nested"},
            doc_search=["site/content/llms.txt"],
        )
        resolver, runner, _, cache = make_resolver(client)

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document.file_used == "llms.txt"
        assert document.content == "nested"
        assert document.source_path == f"{WEB}/acme/tools/-/raw/main/site/content/llms.txt"
        assert client.searches == ["llms.txt"]

        cached = await PathCache(cache, prefix="test").get("acme", "tools", "llms.txt")
        assert cached == CachedPath(path="site/content/llms.txt", branch="main")

    @pytest.mark.asyncio
    async def test_cached_path_skips_search(self):
        client = StubGitLabClient(files={("main", "site/llms.txt"): "nested"})
        resolver, runner, _, cache = make_resolver(client)
        await PathCache(cache, prefix="test").put(
            "acme", "tools", "llms.txt", CachedPath(path="site/llms.txt", branch="main")
        )

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document.content == "nested"
        assert client.searches == []

    @pytest.mark.asyncio
    async def test_stale_cached_path_searches_again(self):
        client = StubGitLabClient(
            files={("main", "new/llms.txt"): "moved"},
            doc_search=["new/llms.txt"],
        )
        resolver, runner, _, cache = make_resolver(client)
        path_cache = PathCache(cache, prefix="test")
        await path_cache.put(
            "acme", "tools", "llms.txt", CachedPath(path="old/llms.txt", branch="main")
        )

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document.content == "moved"
        assert client.searches == ["llms.txt"]
        assert await path_cache.get("acme", "tools", "llms.txt") == CachedPath(
            path="new/llms.txt", branch="main"
        )

    @pytest.mark.asyncio
    async def test_search_hit_without_content_falls_through(self):
        client = StubGitLabClient(
            doc_search=["gone/llms.txt"],
            readme_search=["README.md"],
            files={("main", "README.md"): "# Readme"},
        )
        resolver, runner, _, _ = make_resolver(client)

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document.file_used == "README.md"


class TestPregenerated:
    @pytest.mark.asyncio
    async def test_pregenerated_docs_used_before_readme(self):
        client = StubGitLabClient(
            readme_search=["README.md"], files={("main", "README.md"): "# Readme"}
        )
        store = InMemoryBlobStore({"acme/tools/llms.txt": "generated docs"})
        resolver, runner, _, _ = make_resolver(client, blob_store=store)

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document.file_used == "llms.txt (generated)"
        assert document.content == "generated docs"
        assert document.source_path is None
        assert "README" not in client.searches

    @pytest.mark.asyncio
    async def test_store_error_advances_cascade(self):
        class BrokenStore(InMemoryBlobStore):
            async def get(self, key):
                raise BlobStoreError(key, "boom")

        client = StubGitLabClient(
            readme_search=["README.md"], files={("main", "README.md"): "# Readme"}
        )
        resolver, runner, _, _ = make_resolver(client, blob_store=BrokenStore())

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document.file_used == "README.md"


class TestReadme:
    @pytest.mark.asyncio
    async def test_readme_reports_actual_filename(self):
        client = StubGitLabClient(
            readme_search=["Readme.rst"], files={("main", "Readme.rst"): "Tools\n====="}
        )
        resolver, runner, _, _ = make_resolver(client)

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document.file_used == "Readme.rst"
        assert document.source_path == f"{WEB}/acme/tools/-/raw/main/Readme.rst"


class TestExhaustion:
    @pytest.mark.asyncio
    async def test_sentinel_when_nothing_found(self):
        client = StubGitLabClient()
        resolver, runner, queue, cache = make_resolver(client)

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document.content == NO_DOCUMENTATION_FOUND
        assert document.file_used == "unknown"
        assert document.source_path is None
        assert not document.found
        assert await ContentCache(cache, prefix="test").get("acme", "tools") is None

        [message] = drain_messages(queue)
        assert message["content_length"] is None
        assert message["file_used"] == "unknown"
        assert message["file_url"] is None

    @pytest.mark.asyncio
    async def test_sentinel_is_retried_next_time(self):
        client = StubGitLabClient()
        resolver, runner, _, _ = make_resolver(client)

        await resolver.resolve("acme", "tools")
        await runner.drain()
        fetched = len(client.fetched)
        await resolver.resolve("acme", "tools")
        await runner.drain()

        assert len(client.fetched) == 2 * fetched


class TestContentCache:
    @pytest.mark.asyncio
    async def test_second_resolution_served_from_cache(self):
        client = StubGitLabClient(files={("main", "llms.txt"): "# Root docs"})
        resolver, runner, queue, _ = make_resolver(client)

        first = await resolver.resolve("acme", "tools")
        await runner.drain()
        fetched = len(client.fetched)
        second = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert second == first
        assert len(client.fetched) == fetched
        # cache hits do not enqueue processing jobs
        assert len(drain_messages(queue)) == 1

    @pytest.mark.asyncio
    async def test_success_enqueues_processing_job(self):
        client = StubGitLabClient(files={("main", "llms.txt"): "# Root docs"})
        resolver, runner, queue, _ = make_resolver(client)

        await resolver.resolve("acme", "tools")
        await runner.drain()

        [message] = drain_messages(queue)
        assert message == {
            "namespace": "acme",
            "project": "tools",
            "repo_url": f"{WEB}/acme/tools",
            "file_url": f"{WEB}/acme/tools/-/raw/main/llms.txt",
            "content_length": len("# Root docs"),
            "file_used": "llms.txt",
            "docs_branch": "main",
        }


class TestBranchResolution:
    @pytest.mark.asyncio
    async def test_metadata_branch_used(self):
        client = StubGitLabClient(
            default_branch="develop", files={("develop", "llms.txt"): "dev docs"}
        )
        resolver, runner, _, _ = make_resolver(client)

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document.content == "dev docs"
        assert client.branch_probes == []

    @pytest.mark.asyncio
    async def test_falls_back_to_master(self):
        client = StubGitLabClient(default_branch=None, branches=("master",))
        resolver, _, _, _ = make_resolver(client)

        assert await resolver.resolve_branch("acme", "tools") == "master"
        assert client.branch_probes == ["main", "master"]

    @pytest.mark.asyncio
    async def test_prefers_main(self):
        client = StubGitLabClient(default_branch=None, branches=("main", "master"))
        resolver, _, _, _ = make_resolver(client)

        assert await resolver.resolve_branch("acme", "tools") == "main"
        assert client.branch_probes == ["main"]

    @pytest.mark.asyncio
    async def test_defaults_to_fallback_branch(self, caplog):
        client = StubGitLabClient(default_branch=None)
        resolver, _, _, _ = make_resolver(client)

        assert await resolver.resolve_branch("acme", "tools") == "main"
        assert "assuming 'main'" in caplog.text

    @pytest.mark.asyncio
    async def test_branch_lookup_error_uses_fallback_branch(self, caplog):
        class UndecodableMetadata(StubGitLabClient):
            async def get_default_branch(self, namespace, project):
                raise httpx.DecodingError("incorrect header check")

        client = UndecodableMetadata(files={("main", "llms.txt"): "# Root docs"})
        resolver, runner, _, _ = make_resolver(client)

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document.content == "# Root docs"
        assert client.branch_probes == []
        assert "Branch lookup failed for acme/tools" in caplog.text

    @pytest.mark.asyncio
    async def test_undecodable_metadata_response_still_resolves(self):
        """A malformed gzip body from GitLab is retried, then treated as a miss."""
        sleeps = []

        async def no_sleep(seconds):
            sleeps.append(seconds)

        api = f"{WEB}/api/v4"
        project_url = f"{api}/projects/acme%2Ftools"
        cache = InMemoryCache()
        client = GitLabClient(
            api_base_url=api,
            token="",
            tracker=RateLimitTracker(),
            retry_policy=RetryPolicy(request_delay=0),
            sleep=no_sleep,
        )
        resolver, runner, _, _ = make_resolver(client, cache=cache)

        with respx.mock:
            metadata = respx.get(project_url).mock(
                side_effect=lambda request: httpx.Response(
                    200,
                    headers={"Content-Encoding": "gzip"},
                    stream=httpx.ByteStream(b"not-gzip"),
                )
            )
            respx.head(url__startswith=f"{WEB}/acme/tools/-/raw/").mock(
                return_value=httpx.Response(404)
            )
            respx.get(url__startswith=f"{WEB}/acme/tools/-/raw/").mock(
                return_value=httpx.Response(404)
            )
            respx.get(url__startswith=f"{project_url}/search").mock(
                return_value=httpx.Response(200, json=[])
            )

            document = await resolver.resolve("acme", "tools")
            await runner.drain()

        assert document.content == NO_DOCUMENTATION_FOUND
        assert document.file_used == "unknown"
        assert metadata.call_count == 4
        assert sleeps == [2.0, 2.0, 2.0]


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_raising_strategy_advances_cascade(self):
        class ExplodingSearch(StubGitLabClient):
            async def search_file_by_name(self, filename, namespace, project):
                raise RuntimeError("search exploded")

        client = ExplodingSearch(
            readme_search=["README.md"], files={("main", "README.md"): "# Readme"}
        )
        resolver, runner, _, _ = make_resolver(client)

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document.file_used == "README.md"

    @pytest.mark.asyncio
    async def test_failing_static_fetch_does_not_hide_others(self):
        class FlakyClient(StubGitLabClient):
            async def fetch_raw_file(self, location, use_auth=False):
                if location.path == "llms.txt":
                    raise RuntimeError("connection reset")
                return await super().fetch_raw_file(location, use_auth)

        client = FlakyClient(files={("main", "docs/llms.txt"): "docs"})
        resolver, runner, _, _ = make_resolver(client)

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document.content == "docs"

    @pytest.mark.asyncio
    async def test_failing_queue_does_not_affect_result(self):
        client = StubGitLabClient(files={("main", "llms.txt"): "# Root docs"})
        resolver, runner, _, _ = make_resolver(client, queue=FailingQueue())

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document.content == "# Root docs"
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_missing_queue_does_not_affect_result(self):
        client = StubGitLabClient(files={("main", "llms.txt"): "# Root docs"})
        cache = InMemoryCache()
        runner = BackgroundTaskRunner()
        resolver = DocumentResolver(
            client,
            ContentCache(cache, prefix="test"),
            PathCache(cache, prefix="test"),
            PregeneratedDocs(None),
            DocumentationEnqueuer(None, runner, web_base_url=WEB),
            runner,
            static_paths=STATIC_PATHS,
        )

        document = await resolver.resolve("acme", "tools")
        await runner.drain()

        assert document.found

    @pytest.mark.asyncio
    async def test_result_returned_before_background_work(self):
        client = StubGitLabClient(files={("main", "llms.txt"): "# Root docs"})
        resolver, runner, _, _ = make_resolver(client)

        await resolver.resolve("acme", "tools")

        # content-cache write and queue dispatch still pending
        assert runner.pending == 2
        await runner.drain()
        assert runner.pending == 0
