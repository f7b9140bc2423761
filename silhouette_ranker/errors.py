"""
Error taxonomy for ranking requests.

"No comparable shape" is not an error and never raises; it scores 0.
Everything here is an infrastructure failure that aborts the whole request.
Each exception takes a single message so it can cross a process boundary.
"""


class RankingError(Exception):
    """Base class for failures that abort a ranking request."""


class InvalidImageError(RankingError, ValueError):
    """A pixel or mask buffer cannot be interpreted as an image."""


class DimensionMismatchError(RankingError, ValueError):
    """Two buffers that must share width/height do not."""


class WorkerExecutionError(RankingError):
    """A worker task failed with an unexpected exception."""
