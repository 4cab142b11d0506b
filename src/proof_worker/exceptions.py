"""
Error taxonomy for proof generation.

Not-found and upstream errors are fatal for the job that raised them; the
job queue's retry policy decides whether the job runs again. Soft fallback
conditions (missing mockup binding, failed selected-mockup fetch, failed
automatic render) never surface as exceptions outside file assembly.
"""

from __future__ import annotations

from typing import Optional


class ProofWorkerError(Exception):
    """Base class for all errors raised by the proof worker."""


class NotFoundError(ProofWorkerError):
    def __init__(self, entity: str, identifier: str) -> None:
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class MalformedRecordError(ProofWorkerError):
    """A persisted row could not be validated into its record type."""


class ArtworkConversionError(ProofWorkerError):
    """Fetching or rasterizing vector artwork failed."""


class UpstreamServiceError(ProofWorkerError):
    """
    An external collaborator returned an error.

    Attributes:
        service: Short name of the collaborator (storage, dynamic-mockups, pdf)
        status_code: Upstream status code when one is available
        body: Upstream response body (truncated) for diagnosis
    """

    service = "upstream"

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        detail = message
        if status_code is not None:
            detail = f"{message} ({status_code})"
        if body:
            detail = f"{detail}: {body}"
        super().__init__(detail)


class StorageError(UpstreamServiceError):
    service = "storage"


class MockupRenderError(UpstreamServiceError):
    service = "dynamic-mockups"


class PdfRenderError(UpstreamServiceError):
    service = "pdf"
