"""
Relay error taxonomy.

Every failure a single stream job can hit is expressed as a RelayError
subclass. They are raised and caught inside the relay manager and the
stream worker and converted into a persisted status plus error text;
none of them is allowed to take the worker process down.
"""

from typing import Optional


class RelayError(Exception):
    """Base class for relay failures tied to one stream job."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.job_id = job_id

    def __str__(self) -> str:
        return self.message


class InvalidConfiguration(RelayError):
    """No resolvable output platform (or no source) for a job."""


class ResourceMissing(RelayError):
    """Source media file is not present in the upload directory."""

    def __init__(self, path: str, job_id: Optional[str] = None):
        super().__init__(f"Video file not found: {path}", job_id=job_id)
        self.path = path


class SpawnFailure(RelayError):
    """The relay process could not be created."""


class AbnormalExit(RelayError):
    """The relay process ran but exited with a non-zero code."""

    def __init__(self, exit_code: Optional[int], job_id: Optional[str] = None):
        super().__init__(f"Relay process exited with code {exit_code}", job_id=job_id)
        self.exit_code = exit_code

