"""GitLab API access: quota tracking, retry policy and the governed client."""

from docgate.app.gitlab.client import (
    GitLabClient,
    ResponseCachePolicy,
    encode_project_path,
    extract_repo_context,
)
from docgate.app.gitlab.rate_limit import RateLimitState, RateLimitTracker
from docgate.app.gitlab.retry import MAX_RETRIES, RetryPolicy

__all__ = [
    "GitLabClient",
    "ResponseCachePolicy",
    "encode_project_path",
    "extract_repo_context",
    "RateLimitState",
    "RateLimitTracker",
    "MAX_RETRIES",
    "RetryPolicy",
]
