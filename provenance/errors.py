from typing import Optional


class ProvenanceError(Exception):
    """Base class for errors raised by the provenance service."""


class SourceUnavailableError(ProvenanceError):
    """An upstream fetch exhausted its retries or failed with a non-retryable status."""

    def __init__(self, url: str, status_code: Optional[int] = None, message: Optional[str] = None):
        self.url = url
        self.status_code = status_code
        detail = message or (f"HTTP {status_code}" if status_code is not None else "request failed")
        super().__init__(f"Sleeper GET {url} failed: {detail}")


class InvalidAssetIdentityError(ProvenanceError, ValueError):
    """An asset identity string does not describe a player or a draft pick."""
