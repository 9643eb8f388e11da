"""Paginated code search over a single project."""

from typing import Optional

from docgate.app.core.logging import get_log_context, get_logger
from docgate.app.gitlab.client import GitLabClient
from docgate.app.models import CodeSearchPage

logger = get_logger(__name__)

RESULTS_PER_PAGE = 30


async def search_repository_code(
    client: GitLabClient,
    namespace: str,
    project: str,
    query: str,
    page: int = 1,
) -> Optional[CodeSearchPage]:
    """Search code in ``namespace/project``, 30 results per page.

    Returns:
        The requested page (possibly empty), or None when the search request
        failed upstream.
    """
    current_page = max(1, page)
    logger.info(
        f'Searching code in {namespace}/{project} for "{query}" '
        f"(page {current_page}, {RESULTS_PER_PAGE} per page)",
        extra=get_log_context(namespace=namespace, project=project),
    )
    return await client.search_code(
        query, namespace, project, page=current_page, per_page=RESULTS_PER_PAGE
    )
