"""Error taxonomy for the ROE core.

Degraded inputs never raise; they resolve to documented defaults. Missing
evidence is reported as ``None`` or an empty list. Only caller bugs
(:class:`InvalidArgumentError`) and unrecovered collaborator failures
(:class:`CollaboratorError`) surface as exceptions.
"""

from __future__ import annotations


class RoeError(Exception):
    """Base class for all ROE errors."""


class InvalidArgumentError(RoeError, ValueError):
    """Raised for malformed required arguments."""


class EmptyCandidateSetError(InvalidArgumentError):
    """Raised when selection is asked to choose from nothing."""


class DimensionMismatchError(InvalidArgumentError):
    """Raised when two vectors that must align have different lengths."""

    def __init__(self, left: int, right: int) -> None:
        super().__init__(f"vector dimensions differ: {left} != {right}")
        self.left = left
        self.right = right


class CollaboratorError(RoeError):
    """An external collaborator (embedding model, store) failed."""


class EmbeddingError(CollaboratorError):
    pass


class StoreError(CollaboratorError):
    pass


__all__ = [
    "RoeError",
    "InvalidArgumentError",
    "EmptyCandidateSetError",
    "DimensionMismatchError",
    "CollaboratorError",
    "EmbeddingError",
    "StoreError",
]
