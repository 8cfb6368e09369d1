"""
Reading and writing grids with SimpleITK, and conversion between SimpleITK
images and grids.
"""

import logging
from pathlib import Path

import numpy as np
import SimpleITK as sitk
import torch

from .errors import InvalidGridShapeError, VolumeIOError
from .geometry import DIMENSION, Geometry
from .grid import BaseGrid, ScalarGrid, VectorGrid

logger = logging.getLogger(__name__)

# Unsigned types PyTorch has limited support for, widened to signed types
_WIDENED_DTYPES = {
    np.dtype(np.uint16): np.int32,
    np.dtype(np.uint32): np.int64,
    np.dtype(np.uint64): np.int64,
}


def geometry_from_sitk(image: sitk.Image) -> Geometry:
    """Geometry (size, spacing, origin, direction) of a SimpleITK image."""
    if image.GetDimension() != DIMENSION:
        raise InvalidGridShapeError(
            f"Expected a {DIMENSION}D image, got {image.GetDimension()}D"
        )
    return Geometry(
        image.GetSize(), image.GetSpacing(), image.GetOrigin(), image.GetDirection()
    )


def sitk_to_vector_grid(
    image: sitk.Image, dtype: torch.dtype = torch.float32
) -> VectorGrid:
    """
    Convert a SimpleITK displacement field image to a VectorGrid.

    Args:
        image: 3D vector image with 3 components per pixel
        dtype: Floating point type of the grid data

    Returns:
        VectorGrid with data [Z, Y, X, 3]
    """
    geometry = geometry_from_sitk(image)
    if image.GetNumberOfComponentsPerPixel() != DIMENSION:
        raise InvalidGridShapeError(
            f"Displacement field must have {DIMENSION} components per pixel, "
            f"got {image.GetNumberOfComponentsPerPixel()}"
        )
    array = sitk.GetArrayFromImage(image)
    return VectorGrid(torch.from_numpy(array).to(dtype), geometry)


def sitk_to_scalar_grid(image: sitk.Image) -> ScalarGrid:
    """
    Convert a SimpleITK scalar image to a ScalarGrid, keeping its pixel type.

    Note:
        uint16 and uint32/uint64 pixels are widened to int32 and int64.
    """
    geometry = geometry_from_sitk(image)
    if image.GetNumberOfComponentsPerPixel() != 1:
        raise InvalidGridShapeError(
            f"Expected a scalar image, got {image.GetNumberOfComponentsPerPixel()} "
            "components per pixel"
        )
    array = sitk.GetArrayFromImage(image)
    if array.dtype in _WIDENED_DTYPES:
        array = array.astype(_WIDENED_DTYPES[array.dtype])
    return ScalarGrid(torch.from_numpy(array), geometry)


def grid_to_sitk(grid: BaseGrid) -> sitk.Image:
    """
    Convert a grid to a SimpleITK image with the grid's geometry.

    Vector grids become vector images with 3 components per pixel.
    """
    array = grid.numpy()
    image = sitk.GetImageFromArray(array, isVector=isinstance(grid, VectorGrid))

    geometry = grid.geometry
    image.SetSpacing(geometry.spacing)
    image.SetOrigin(geometry.origin)
    image.SetDirection(geometry.direction)

    return image


def load_vector_grid(
    filepath: str | Path, dtype: torch.dtype = torch.float32
) -> VectorGrid:
    """
    Load a displacement field from file.

    Args:
        filepath: Path to a 3D vector image
        dtype: Floating point type of the grid data

    Returns:
        VectorGrid

    Raises:
        VolumeIOError: if the file cannot be read
        InvalidGridShapeError: if the image is not a 3D 3-component field
    """
    image = _read_image(filepath)
    grid = sitk_to_vector_grid(image, dtype)
    logger.debug("Loaded displacement field %s from %s", grid.geometry.dimensions, filepath)
    return grid


def load_scalar_grid(filepath: str | Path) -> ScalarGrid:
    """
    Load an intensity or label image from file.

    Raises:
        VolumeIOError: if the file cannot be read
        InvalidGridShapeError: if the image is not a 3D scalar image
    """
    image = _read_image(filepath)
    grid = sitk_to_scalar_grid(image)
    logger.debug("Loaded image %s (%s) from %s", grid.geometry.dimensions, grid.dtype, filepath)
    return grid


def save_grid(
    grid: BaseGrid, filepath: str | Path, use_compression: bool = False
) -> None:
    """
    Save a grid to file using SimpleITK.

    Args:
        grid: Vector or scalar grid
        filepath: Output file path; the format follows the extension
        use_compression: Whether to ask the writer to compress the data

    Raises:
        VolumeIOError: if the file cannot be written
    """
    try:
        image = grid_to_sitk(grid)
        sitk.WriteImage(image, str(filepath), use_compression)
    except Exception as e:
        raise VolumeIOError(f"Failed to save image to {filepath}: {str(e)}") from e
    logger.debug("Saved %s to %s", type(grid).__name__, filepath)


def _read_image(filepath: str | Path) -> sitk.Image:
    try:
        return sitk.ReadImage(str(filepath))
    except Exception as e:
        raise VolumeIOError(f"Failed to load image from {filepath}: {str(e)}") from e
