"""
Test configuration and fixtures for torchdeform tests.
"""

import math

import numpy as np
import pytest
import SimpleITK as sitk
import torch

from torchdeform.geometry import Geometry
from torchdeform.grid import ScalarGrid, VectorGrid


@pytest.fixture
def device():
    """PyTorch device for testing."""
    return torch.device("cpu")


@pytest.fixture
def random_seed():
    """Set random seed for reproducible tests."""
    seed = 42
    torch.manual_seed(seed)
    np.random.seed(seed)
    return seed


@pytest.fixture
def identity_geometry():
    """4x4x4 grid with unit spacing, zero origin and identity direction."""
    return Geometry((4, 4, 4))


@pytest.fixture
def oblique_geometry():
    """Anisotropic, shifted grid rotated 30 degrees around z."""
    theta = math.radians(30)
    c, s = math.cos(theta), math.sin(theta)
    direction = (c, -s, 0.0, s, c, 0.0, 0.0, 0.0, 1.0)
    return Geometry(
        (6, 5, 4), spacing=(0.5, 1.0, 2.0), origin=(-3.0, 2.0, 10.0), direction=direction
    )


@pytest.fixture
def create_vector_grid(random_seed):
    """Create random displacement fields."""

    def _create_field(geometry, scale=1.0, dtype=torch.float32):
        data = torch.randn(*geometry.array_shape, 3, dtype=dtype) * scale
        return VectorGrid(data, geometry)

    return _create_field


@pytest.fixture
def create_label_grid(random_seed):
    """Create label images with a fixed set of label codes."""

    def _create_labels(geometry, labels=(0, 3, 7, 200), dtype=torch.uint8):
        codes = torch.tensor(labels, dtype=dtype)
        choice = torch.randint(len(labels), geometry.array_shape)
        return ScalarGrid(codes[choice], geometry)

    return _create_labels


@pytest.fixture
def create_intensity_grid(random_seed):
    """Create smooth intensity images in the 0-255 range."""

    def _create_image(geometry, dtype=torch.float32):
        nz, ny, nx = geometry.array_shape
        z, y, x = torch.meshgrid(
            torch.linspace(-1, 1, nz),
            torch.linspace(-1, 1, ny),
            torch.linspace(-1, 1, nx),
            indexing="ij",
        )
        image = 255.0 * torch.exp(-2 * (x**2 + y**2 + z**2))
        return ScalarGrid(image.to(dtype), geometry)

    return _create_image


@pytest.fixture
def create_sitk_field():
    """Create SimpleITK displacement field images."""

    def _create_sitk_field(array: np.ndarray, spacing=None, origin=None, direction=None):
        image = sitk.GetImageFromArray(array, isVector=True)

        if spacing is not None:
            image.SetSpacing(spacing)
        if origin is not None:
            image.SetOrigin(origin)
        if direction is not None:
            image.SetDirection(direction)

        return image

    return _create_sitk_field


@pytest.fixture
def tolerance():
    """Default tolerance for numerical comparisons."""
    return {"rtol": 1e-5, "atol": 1e-5}
