"""Value types shared by the GitLab client and the resolution services."""

import json
from dataclasses import asdict, dataclass, field
from typing import Any, List, Optional

NO_DOCUMENTATION_FOUND = "No documentation found."
UNKNOWN_SOURCE = "unknown"


@dataclass(frozen=True)
class DocumentLocation:
    """A file at a branch of a GitLab project.

    ``namespace`` may itself contain slashes for nested groups
    (``group/subgroup``).
    """

    namespace: str
    project: str
    branch: str
    path: str

    def raw_url(self, web_base_url: str) -> str:
        """Build the raw-content URL on the given GitLab instance."""
        return (
            f"{web_base_url.rstrip('/')}/{self.namespace}/{self.project}"
            f"/-/raw/{self.branch}/{self.path}"
        )

    @property
    def filename(self) -> str:
        return self.path.rsplit("/", 1)[-1] or self.path


@dataclass(frozen=True)
class ResolvedDocument:
    """Outcome of one documentation resolution.

    Attributes:
        file_used: Label of the strategy or file that produced the content
        source_path: Raw URL of the file, when the content came from the repository
        content: The documentation text, or the NO_DOCUMENTATION_FOUND sentinel
    """

    file_used: str
    content: str
    source_path: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.content != NO_DOCUMENTATION_FOUND

    @classmethod
    def not_found(cls, file_used: str = UNKNOWN_SOURCE) -> "ResolvedDocument":
        return cls(file_used=file_used, content=NO_DOCUMENTATION_FOUND)

    def to_dict(self) -> dict:
        return {
            "file_used": self.file_used,
            "source_path": self.source_path,
            "content": self.content,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ResolvedDocument":
        return cls(
            file_used=data["file_used"],
            content=data["content"],
            source_path=data.get("source_path"),
        )


@dataclass(frozen=True)
class CachedPath:
    """Where a logical file was found in a project, as kept in the path cache."""

    path: str
    branch: str

    def to_dict(self) -> dict:
        return {"path": self.path, "branch": self.branch}

    @classmethod
    def from_dict(cls, data: dict) -> "CachedPath":
        return cls(path=data["path"], branch=data["branch"])


@dataclass
class DocumentationMessage:
    """Post-processing job sent to the work queue after a resolution."""

    namespace: str
    project: str
    repo_url: str
    file_url: Optional[str]
    content_length: Optional[int]
    file_used: str
    docs_branch: Optional[str]

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)


@dataclass
class CodeSearchHit:
    """One blob returned by the GitLab search API."""

    path: str
    html_url: Optional[str] = None
    ref: Optional[str] = None
    startline: Optional[int] = None
    data: Optional[str] = None


@dataclass
class CodeSearchPage:
    """A page of code search results."""

    query: str
    items: List[CodeSearchHit] = field(default_factory=list)
    total_count: int = 0
    page: int = 1
    per_page: int = 20

    @property
    def total_pages(self) -> int:
        if self.total_count == 0:
            return 0
        return -(-self.total_count // self.per_page)

    @property
    def has_more_pages(self) -> bool:
        return self.page * self.per_page < self.total_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "items": [asdict(item) for item in self.items],
            "pagination": {
                "total_count": self.total_count,
                "current_page": self.page,
                "per_page": self.per_page,
                "has_more_pages": self.has_more_pages,
            },
        }
