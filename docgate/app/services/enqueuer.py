"""Background dispatch of documentation post-processing jobs.

After every resolution that reached the upstream cascade, a job describing
the outcome is sent to the work queue. Dispatch runs as a detached task;
its failures are logged and never reach the resolver.
"""

from typing import Optional

from docgate.app.core.background import BackgroundTaskRunner
from docgate.app.core.logging import get_log_context, get_logger
from docgate.app.models import DocumentationMessage
from docgate.app.services.queue import WorkQueue

logger = get_logger(__name__)


class DocumentationEnqueuer:
    """Sends DocumentationMessage jobs to a work queue, best effort.

    Example:
        enqueuer = DocumentationEnqueuer(queue, runner, web_base_url="https://gitlab.com")
        enqueuer.notify("gitlab-org", "gitlab", content, "llms.txt", url, "main")
    """

    def __init__(
        self,
        queue: Optional[WorkQueue],
        runner: BackgroundTaskRunner,
        web_base_url: str = "https://gitlab.com",
    ) -> None:
        self.queue = queue
        self.runner = runner
        self.web_base_url = web_base_url.rstrip("/")

    def build_message(
        self,
        namespace: str,
        project: str,
        content: Optional[str],
        file_used: str,
        source_path: Optional[str],
        branch: Optional[str],
    ) -> DocumentationMessage:
        return DocumentationMessage(
            namespace=namespace,
            project=project,
            repo_url=f"{self.web_base_url}/{namespace}/{project}",
            file_url=source_path,
            content_length=len(content) if content is not None else None,
            file_used=file_used,
            docs_branch=branch,
        )

    def notify(
        self,
        namespace: str,
        project: str,
        content: Optional[str],
        file_used: str,
        source_path: Optional[str],
        branch: Optional[str],
    ) -> None:
        """Schedule dispatch of a processing job and return immediately."""
        message = self.build_message(
            namespace, project, content, file_used, source_path, branch
        )
        self.runner.spawn(
            self.dispatch(message), name=f"enqueue-docs:{namespace}/{project}"
        )

    async def dispatch(self, message: DocumentationMessage) -> bool:
        """Send one message. Returns False (after logging) instead of raising."""
        context = get_log_context(namespace=message.namespace, project=message.project)
        if self.queue is None:
            logger.error("Work queue not available; dropping documentation job", extra=context)
            return False
        try:
            logger.info(
                f"Enqueuing documentation processing for {message.namespace}/{message.project}",
                extra=context,
            )
            await self.queue.send(message.to_json())
        except Exception as e:
            logger.error(
                f"Failed to enqueue documentation request for "
                f"{message.namespace}/{message.project}: {e}",
                extra=context,
            )
            return False
        logger.info(
            f"Queued documentation processing for {message.namespace}/{message.project}",
            extra=context,
        )
        return True
