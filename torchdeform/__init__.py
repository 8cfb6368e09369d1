"""
TorchDeform: composition of 3D displacement fields and image warping using PyTorch

Composes two dense displacement fields into one field describing their
sequential effect, and warps intensity and label volumes through a
displacement field.

Key Features:
- Trilinear and nearest-neighbor sampling with an explicit zero boundary
- Displacement field composition (``warp(A by B) + B``)
- Image warping that keeps label values intact
- SimpleITK integration for reading and writing volumes

Quick Example:
    >>> import torchdeform
    >>>
    >>> geometry = torchdeform.Geometry((4, 4, 4))
    >>> a = torchdeform.VectorGrid.constant(geometry, (1.0, 0.0, 0.0))
    >>> b = torchdeform.VectorGrid.constant(geometry, (0.0, 1.0, 0.0))
    >>> composed = torchdeform.compose_fields(a, b)
    >>>
    >>> labels = torchdeform.io.load_scalar_grid("labels.nii.gz")
    >>> warped = torchdeform.warp_volume(composed, labels, mode="nearest")
"""

import logging

__version__ = "0.1.0"

# Import submodules to make them available as torchdeform.submodule
from . import compose, errors, geometry, grid, io, pipeline, processing, sampling, warp

# Only expose the most essential classes/functions at the top level
from .compose import FieldComposer, compose_fields
from .errors import GeometryMismatchError, InvalidGridShapeError, VolumeIOError
from .geometry import Geometry
from .grid import ScalarGrid, VectorGrid
from .pipeline import run_pipeline
from .sampling import sample_grid
from .warp import VolumeWarper, warp_volume

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Data model
    "Geometry",
    "ScalarGrid",
    "VectorGrid",
    # Operations
    "FieldComposer",
    "VolumeWarper",
    "compose_fields",
    "run_pipeline",
    "sample_grid",
    "warp_volume",
    # Errors
    "GeometryMismatchError",
    "InvalidGridShapeError",
    "VolumeIOError",
    # Submodules
    "compose",
    "errors",
    "geometry",
    "grid",
    "io",
    "pipeline",
    "processing",
    "sampling",
    "warp",
]
