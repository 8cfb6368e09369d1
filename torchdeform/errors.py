"""
Exceptions raised by torchdeform.
"""


class GeometryMismatchError(ValueError):
    """Two grids that must share dimensions, spacing, origin and direction do not."""


class InvalidGridShapeError(ValueError):
    """A grid or geometry was constructed with invalid dimensions, spacing or data."""


class VolumeIOError(OSError):
    """Reading or writing a volume failed."""
