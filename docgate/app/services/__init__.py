"""Services package for docgate.

This package provides:
- The documentation resolution cascade
- Content and path caches
- Pre-generated documentation access
- Work queue dispatch of post-processing jobs
- Paginated code search
"""

from docgate.app.services.blob_store import (
    BlobStore,
    HttpBlobStore,
    InMemoryBlobStore,
    PregeneratedDocs,
)
from docgate.app.services.code_search import RESULTS_PER_PAGE, search_repository_code
from docgate.app.services.doc_cache import ContentCache, PathCache
from docgate.app.services.enqueuer import DocumentationEnqueuer
from docgate.app.services.queue import InMemoryWorkQueue, RedisWorkQueue, WorkQueue
from docgate.app.services.resolver import DocumentResolver

__all__ = [
    "BlobStore",
    "HttpBlobStore",
    "InMemoryBlobStore",
    "PregeneratedDocs",
    "RESULTS_PER_PAGE",
    "search_repository_code",
    "ContentCache",
    "PathCache",
    "DocumentationEnqueuer",
    "InMemoryWorkQueue",
    "RedisWorkQueue",
    "WorkQueue",
    "DocumentResolver",
]
