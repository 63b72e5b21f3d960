"""
FetchBrain runtime exceptions.

Errors raised here never leave ``KnowledgeClient``: callers receive degraded
results instead. Errors raised by wrapped request handlers are not wrapped.
"""

from __future__ import annotations


class FetchBrainError(RuntimeError):
    """Base class for FetchBrain errors."""


class KnowledgeServiceError(FetchBrainError):
    """
    The knowledge service could not answer.

    Covers network errors, non-2xx responses and payloads that fail validation.

    Parameters
    ----------
    message : str
        Error description.
    status_code : int | None, optional
        HTTP status code when the service answered with an error status.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class KnowledgeServiceTimeout(KnowledgeServiceError):
    """The bounded request timeout elapsed before the service answered."""
