"""docgate: rate-governed resolution of GitLab project documentation."""

__version__ = "0.1.0"
