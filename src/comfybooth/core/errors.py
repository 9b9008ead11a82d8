"""Error taxonomy shared by the core services and the HTTP layer.

Every error carries a human-readable message that is safe to show to the end
user.  The API layer maps each class to a status code in one place
(:func:`comfybooth.api.main.create_app`), so services only ever raise these
and never build HTTP responses themselves.
"""

from __future__ import annotations


class ComfyBoothError(Exception):
    """Base class for all ComfyBooth domain errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ComfyBoothError):
    """Required input is missing or malformed."""


class UpstreamError(ComfyBoothError):
    """A call to an external HTTP service failed.

    Attributes:
        status_text: The upstream's own status text (reason phrase or
            transport error message), surfaced untranslated.
        status_code: Upstream HTTP status, or ``None`` for transport errors.
    """

    def __init__(self, status_text: str, status_code: int | None = None) -> None:
        super().__init__(status_text)
        self.status_text = status_text
        self.status_code = status_code


class SubmissionError(UpstreamError):
    """Uploading the input image or queueing the job failed."""


class GenerationTimeout(ComfyBoothError):
    """Polling was exhausted before the service reported an output."""


class ArtifactIOError(ComfyBoothError):
    """A local image artifact could not be read, decoded or written."""
