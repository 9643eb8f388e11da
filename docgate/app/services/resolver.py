"""Documentation resolution cascade.

Resolves the canonical documentation of a GitLab project by trying, in
order:

1. the content cache
2. well-known static paths on the default branch (fetched concurrently,
   chosen in list order)
3. the search API for the documentation file (backed by the path cache)
4. the pre-generated documentation store
5. the search API for a root-level README

The first strategy that yields non-empty content wins. When none does, the
caller receives the "No documentation found." sentinel. Cache writes and the
post-processing job run as detached tasks so the result is returned without
waiting for them.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from docgate.app.core.background import BackgroundTaskRunner
from docgate.app.core.config import settings
from docgate.app.core.logging import get_log_context, get_logger
from docgate.app.gitlab.client import GitLabClient
from docgate.app.models import CachedPath, DocumentLocation, ResolvedDocument
from docgate.app.services.blob_store import PregeneratedDocs
from docgate.app.services.doc_cache import ContentCache, PathCache
from docgate.app.services.enqueuer import DocumentationEnqueuer

logger = get_logger(__name__)

BRANCH_CANDIDATES = ("main", "master")


@dataclass(frozen=True)
class _Match:
    """Content produced by one strategy."""

    content: str
    file_used: str
    source_path: Optional[str] = None


Strategy = Callable[[str, str, str], Awaitable[Optional[_Match]]]


class DocumentResolver:
    """Runs the documentation cascade for one GitLab instance."""

    def __init__(
        self,
        client: GitLabClient,
        content_cache: ContentCache,
        path_cache: PathCache,
        pregenerated: PregeneratedDocs,
        enqueuer: DocumentationEnqueuer,
        runner: BackgroundTaskRunner,
        *,
        doc_filename: Optional[str] = None,
        static_paths: Optional[Sequence[str]] = None,
        readme_prefix: Optional[str] = None,
        fallback_branch: Optional[str] = None,
    ) -> None:
        self.client = client
        self.content_cache = content_cache
        self.path_cache = path_cache
        self.pregenerated = pregenerated
        self.enqueuer = enqueuer
        self.runner = runner
        self.doc_filename = doc_filename or settings.doc_filename
        self.static_paths: List[str] = list(
            settings.static_doc_paths if static_paths is None else static_paths
        )
        self.readme_prefix = readme_prefix or settings.readme_prefix
        self.fallback_branch = fallback_branch or settings.fallback_branch

    def strategies(self) -> List[Tuple[str, Strategy]]:
        """The cascade after branch resolution, in priority order."""
        return [
            ("static paths", self.probe_static_paths),
            ("search", self.search_doc_file),
            ("pre-generated", self.fetch_pregenerated),
            ("readme", self.search_readme),
        ]

    async def resolve(self, namespace: str, project: str) -> ResolvedDocument:
        """Resolve documentation for ``namespace/project``.

        Never raises for upstream failures; an unresolvable project yields
        ResolvedDocument.not_found().
        """
        context = get_log_context(namespace=namespace, project=project)

        cached = await self.content_cache.get(namespace, project)
        if cached is not None:
            logger.info(
                f"Returning cached documentation for {namespace}/{project}", extra=context
            )
            return cached

        branch = await self.resolve_branch(namespace, project)

        match: Optional[_Match] = None
        for name, strategy in self.strategies():
            try:
                match = await strategy(namespace, project, branch)
            except Exception:
                logger.exception(
                    f"Documentation strategy '{name}' failed for {namespace}/{project}",
                    extra=context,
                )
                match = None
            if match is not None:
                logger.info(
                    f"Documentation for {namespace}/{project} found via {name}: {match.file_used}",
                    extra=context,
                )
                break

        if match is None:
            logger.error(
                f"Failed to find documentation for {namespace}/{project}", extra=context
            )
            document = ResolvedDocument.not_found()
        else:
            document = ResolvedDocument(
                file_used=match.file_used,
                content=match.content,
                source_path=match.source_path,
            )

        self.enqueuer.notify(
            namespace,
            project,
            match.content if match else None,
            document.file_used,
            document.source_path,
            branch,
        )
        if document.found:
            self.runner.spawn(
                self.content_cache.put(namespace, project, document),
                name=f"content-cache-write:{namespace}/{project}",
            )
        return document

    async def resolve_branch(self, namespace: str, project: str) -> str:
        """Default branch from project metadata, else the first of main/master that exists.

        Falls back to ``fallback_branch`` when nothing can be confirmed; a
        wrong guess only makes the raw fetches below miss.
        """
        try:
            return await self._lookup_branch(namespace, project)
        except Exception:
            logger.exception(
                f"Branch lookup failed for {namespace}/{project}; "
                f"assuming '{self.fallback_branch}'",
                extra=get_log_context(namespace=namespace, project=project),
            )
            return self.fallback_branch

    async def _lookup_branch(self, namespace: str, project: str) -> str:
        branch = await self.client.get_default_branch(namespace, project)
        if branch:
            logger.debug(f"Default branch for {namespace}/{project}: {branch}")
            return branch

        logger.warning(
            f"No default branch found for {namespace}/{project}, falling back to main/master check"
        )
        for candidate in BRANCH_CANDIDATES:
            if await self.client.branch_exists(namespace, project, candidate):
                return candidate

        logger.warning(
            f"Could not determine default branch for {namespace}/{project}; "
            f"assuming '{self.fallback_branch}'"
        )
        return self.fallback_branch

    async def probe_static_paths(
        self, namespace: str, project: str, branch: str
    ) -> Optional[_Match]:
        """Fetch every well-known location at once, then take the first in list order."""
        locations = [
            DocumentLocation(namespace, project, branch, path) for path in self.static_paths
        ]
        if not locations:
            return None

        results = await asyncio.gather(
            *(self.client.fetch_raw_file(location) for location in locations),
            return_exceptions=True,
        )

        for location, content in zip(locations, results):
            if isinstance(content, BaseException):
                logger.warning(f"Fetching {location.path} failed: {content!r}")
                continue
            if content:
                return _Match(
                    content=content,
                    file_used=self.doc_filename,
                    source_path=self.client.raw_url(location),
                )
        return None

    async def search_doc_file(
        self, namespace: str, project: str, branch: str
    ) -> Optional[_Match]:
        found = await self._search_and_fetch(
            namespace,
            project,
            branch,
            self.doc_filename,
            lambda: self.client.search_file_by_name(self.doc_filename, namespace, project),
        )
        if found is None:
            return None
        location, content = found
        return _Match(
            content=content,
            file_used=self.doc_filename,
            source_path=self.client.raw_url(location),
        )

    async def fetch_pregenerated(
        self, namespace: str, project: str, branch: str
    ) -> Optional[_Match]:
        content = await self.pregenerated.fetch(namespace, project, self.doc_filename)
        if not content:
            return None
        return _Match(content=content, file_used=f"{self.doc_filename} (generated)")

    async def search_readme(
        self, namespace: str, project: str, branch: str
    ) -> Optional[_Match]:
        found = await self._search_and_fetch(
            namespace,
            project,
            branch,
            f"{self.readme_prefix}*",
            lambda: self.client.search_root_files_by_prefix(
                self.readme_prefix, namespace, project
            ),
        )
        if found is None:
            return None
        location, content = found
        # Report the actual file (README.md, README.rst, ...)
        return _Match(
            content=content,
            file_used=location.filename,
            source_path=self.client.raw_url(location),
        )

    async def _search_and_fetch(
        self,
        namespace: str,
        project: str,
        branch: str,
        cache_name: str,
        search: Callable[[], Awaitable[List[str]]],
    ) -> Optional[Tuple[DocumentLocation, str]]:
        """Fetch a file whose path comes from the path cache or, failing that, a search.

        A path discovered by search is written back to the path cache in the
        background once its content has been fetched.
        """
        cached = await self.path_cache.get(namespace, project, cache_name)
        if cached is not None:
            location = DocumentLocation(namespace, project, cached.branch, cached.path)
            content = await self.client.fetch_raw_file(location)
            if content:
                return location, content
            logger.info(
                f"Cached path {cached.path} for {namespace}/{project} is stale, searching again"
            )

        paths = await search()
        if not paths:
            return None

        location = DocumentLocation(namespace, project, branch, paths[0])
        content = await self.client.fetch_raw_file(location)
        if not content:
            return None

        self.runner.spawn(
            self.path_cache.put(
                namespace, project, cache_name, CachedPath(path=location.path, branch=branch)
            ),
            name=f"path-cache-write:{namespace}/{project}:{cache_name}",
        )
        return location, content
