"""Pre-generated documentation store.

Documentation generated offline is published to a bucket under
``{namespace}/{project}/{filename}``. The resolver reads it as a fallback
when the repository itself has no documentation file.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

import httpx

from docgate.app.core.logging import get_log_context, get_logger
from docgate.app.exceptions import BlobStoreError

logger = get_logger(__name__)


class BlobStore(ABC):
    """Read-only key/value blob access."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the blob as text, or None when the key does not exist.

        Raises:
            BlobStoreError: If the store could not be queried.
        """

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check whether a key exists.

        Raises:
            BlobStoreError: If the store could not be queried.
        """


class InMemoryBlobStore(BlobStore):
    """Dictionary-backed store for local runs and tests."""

    def __init__(self, blobs: Optional[Dict[str, str]] = None) -> None:
        self._blobs: Dict[str, str] = dict(blobs or {})

    def put(self, key: str, content: str) -> None:
        self._blobs[key] = content

    async def get(self, key: str) -> Optional[str]:
        return self._blobs.get(key)

    async def exists(self, key: str) -> bool:
        return key in self._blobs


class HttpBlobStore(BlobStore):
    """Bucket exposed over public HTTP (GET for content, HEAD for existence)."""

    def __init__(self, base_url: str, http_client: httpx.AsyncClient) -> None:
        self.base_url = base_url.rstrip("/")
        self._http_client = http_client

    def _url(self, key: str) -> str:
        return f"{self.base_url}/{key.lstrip('/')}"

    async def get(self, key: str) -> Optional[str]:
        try:
            response = await self._http_client.get(self._url(key))
        except httpx.HTTPError as e:
            raise BlobStoreError(key, str(e)) from e
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise BlobStoreError(key, f"Unexpected status {response.status_code}")
        return response.text

    async def exists(self, key: str) -> bool:
        try:
            response = await self._http_client.head(self._url(key))
        except httpx.HTTPError as e:
            raise BlobStoreError(key, str(e)) from e
        if response.status_code == 404:
            return False
        if not response.is_success:
            raise BlobStoreError(key, f"Unexpected status {response.status_code}")
        return True


class PregeneratedDocs:
    """Resolver-facing view of the blob store. Never raises."""

    def __init__(self, store: Optional[BlobStore], default_filename: str = "llms.txt") -> None:
        self.store = store
        self.default_filename = default_filename

    @staticmethod
    def make_key(namespace: str, project: str, filename: str) -> str:
        return f"{namespace}/{project}/{filename}"

    async def fetch(
        self, namespace: str, project: str, filename: Optional[str] = None
    ) -> Optional[str]:
        """Content of a pre-generated file, or None if absent or unreadable."""
        if self.store is None or not namespace or not project:
            return None
        key = self.make_key(namespace, project, filename or self.default_filename)
        try:
            content = await self.store.get(key)
        except BlobStoreError as e:
            logger.error(
                f"Failed to fetch pre-generated docs: {e}",
                extra=get_log_context(namespace=namespace, project=project),
            )
            return None
        if content is None:
            logger.info(f"No pre-generated docs at {key}")
        return content or None

    async def has_docs(
        self, namespace: str, project: str, filename: Optional[str] = None
    ) -> bool:
        """Whether pre-generated documentation exists for the project."""
        if self.store is None:
            return False
        key = self.make_key(namespace, project, filename or self.default_filename)
        try:
            return await self.store.exists(key)
        except BlobStoreError as e:
            logger.error(f"Failed to check pre-generated docs: {e}")
            return False
