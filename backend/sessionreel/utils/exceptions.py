"""Pipeline exceptions and HTTP error helpers."""
from fastapi import HTTPException, status
from typing import Optional


class ReplayRenderError(Exception):
    """Base exception for every terminal failure of a render job."""
    pass


class SourceUnavailableError(ReplayRenderError):
    """Raised when the recording has no durable snapshot sources yet.

    The recording is usually too fresh. Callers should retry later, not
    immediately.
    """
    pass


class SnapshotFetchError(ReplayRenderError):
    """Raised when the snapshot API keeps answering with a non-2xx status."""

    def __init__(self, status_code: int, body: str, url: Optional[str] = None):
        self.status_code = status_code
        self.body = body[:500]
        self.url = url
        super().__init__(f"Snapshot request failed with {status_code}: {self.body}")


class EmptyTimelineError(ReplayRenderError):
    """Raised when no events survived decoding."""

    def __init__(self, message: str = "No rrweb events were parsed from the snapshots."):
        super().__init__(message)


class RenderError(ReplayRenderError):
    """Raised when the browser could not produce a video."""
    pass


class RenderTimeoutError(RenderError):
    """Raised when playback never signalled completion within the hard timeout."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Replay did not finish within {timeout_seconds:.0f}s")


class ArtifactValidationError(ReplayRenderError):
    """Raised when a rendered file is too small to be a real video."""

    def __init__(self, size_bytes: int):
        self.size_bytes = size_bytes
        super().__init__(f"Video file is empty or corrupted (size: {size_bytes} bytes)")


class UploadError(ReplayRenderError):
    """Raised when the storage backend rejects or loses an upload."""
    pass


def validation_error(message: str) -> HTTPException:
    """
    Create a standardized 400 validation error.

    Args:
        message: Validation error message

    Returns:
        HTTPException with 400 status
    """
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def service_unavailable_error(message: str) -> HTTPException:
    """
    Create a standardized 503 error for when the job queue is unreachable.

    Args:
        message: Error message

    Returns:
        HTTPException with 503 status
    """
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=message)


def conflict_error(message: str) -> HTTPException:
    """
    Create a standardized 409 error for a job that is already in flight.

    Args:
        message: Error message

    Returns:
        HTTPException with 409 status
    """
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=message)
