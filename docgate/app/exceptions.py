"""Custom exceptions for docgate.

Adapters raise these; the services that call them catch and log them so
best-effort collaborators never fail a documentation lookup.
"""


class DocgateException(Exception):
    """Base class for docgate exceptions."""

    def __init__(self, message: str = "docgate error"):
        self.message = message
        super().__init__(message)


class BlobStoreError(DocgateException):
    """Raised when the pre-generated documentation store cannot be read."""

    def __init__(self, key: str, detail: str = "Blob store request failed"):
        self.key = key
        super().__init__(f"{detail}: {key}")


class QueueDispatchError(DocgateException):
    """Raised when a message cannot be handed to the work queue."""

    def __init__(self, queue_name: str, detail: str = "Queue dispatch failed"):
        self.queue_name = queue_name
        super().__init__(f"{detail} ({queue_name})")
