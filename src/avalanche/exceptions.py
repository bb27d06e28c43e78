"""
Error taxonomy for avalanche flow visualization.

Per-frame errors (FetchError, DecodeError) are recovered by the batch loader;
whole-simulation errors (NoFramesError, NoExtentError) propagate to the caller
of ``initialize``.
"""

from typing import Optional


class AvalancheVizError(Exception):
    """Base class for all avalanche visualization errors."""

    pass


class FrameLoadError(AvalancheVizError):
    """A single raster frame could not be loaded."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class FetchError(FrameLoadError):
    """Raised when the frame transport reports a non-success status."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, url=url)
        self.status_code = status_code


class DecodeError(FrameLoadError):
    """Raised when raster bytes cannot be parsed."""

    pass


class NoFramesError(AvalancheVizError):
    """Raised when a full load attempt produced zero usable frames."""

    pass


class NoExtentError(AvalancheVizError):
    """Raised when the geographic extent of a simulation cannot be derived."""

    pass


class ElevationQueryError(AvalancheVizError):
    """Raised by elevation collaborators; callers degrade to a flat grid."""

    pass


class InvalidConfigError(AvalancheVizError):
    """Raised for unknown simulation ids or malformed configuration documents."""

    pass


class DisposedError(AvalancheVizError):
    """Raised when an operation is attempted on a disposed playback engine."""

    pass
