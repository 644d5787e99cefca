"""
Error taxonomy shared by every socialmod manager.

Each error class carries a ``retryable`` flag. Queue workers use it to decide
between re-delivering a message (the next attempt then runs as
``ProcessType.BACKEND_RETRY``) and dropping it for manual re-drive.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all errors raised by the pipeline."""

    retryable: bool = False


class NotFoundError(PipelineError):
    """The requested entity (request, blob, metadata, registration) is absent."""


class ConflictError(PipelineError):
    """A write lost a compare-and-swap or targeted an entity that already exists.

    Callers treat some conflicts as success; a duplicate derived-blob write
    or a submit racing another submitter are the common cases.
    """


class BlobAlreadyExistsError(ConflictError):
    """A blob with the same handle is already stored."""


class ProviderUnavailableError(PipelineError):
    """An external provider call (review, push hub) failed or timed out."""

    retryable = True


class InvalidInputError(PipelineError, ValueError):
    """Malformed handle, unsupported type, or unusable URI/payload."""


class PermanentContentError(PipelineError):
    """The content itself cannot be processed, e.g. an undecodable image."""
