"""
PixelUpia SR - Error Taxonomy
==============================
Exceptions raised by the tiling engine and the enhancement pipeline.

The core never recovers from these; they propagate to the caller, which owns
user-facing messaging.
"""


class EnhancementError(RuntimeError):
    """Base error for all enhancement failures."""


class InvalidInputError(EnhancementError, ValueError):
    """Raised before any tile is processed when the job parameters are invalid."""


class InferenceError(EnhancementError):
    """Raised when the inference capability faults or returns a malformed tensor."""


class ResourceExhaustedError(EnhancementError, MemoryError):
    """Raised when the output image or a tile buffer cannot be allocated."""


class JobCancelledError(EnhancementError):
    """Raised when a cancellation request is observed between tiles or stages."""
