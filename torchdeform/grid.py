"""
Dense 3D grids of displacement vectors or scalar samples.

Voxel data is stored as a PyTorch tensor in NumPy/SimpleITK array order,
i.e. indexed ``[z, y, x]`` (plus a trailing component axis for vector grids).
Vector components are physical displacements in (x, y, z) order.
"""

from typing import TypeVar

import numpy as np
import torch

from .errors import InvalidGridShapeError
from .geometry import DIMENSION, Geometry

GridT = TypeVar("GridT", bound="BaseGrid")


class BaseGrid:
    """
    Voxel data paired with its physical geometry.

    A grid owns its tensor and is treated as read-only once constructed;
    use ``with_data`` to derive a new grid on the same geometry.
    """

    def __init__(self, data: torch.Tensor | np.ndarray, geometry: Geometry):
        if isinstance(data, np.ndarray):
            data = torch.from_numpy(np.ascontiguousarray(data))
        if not isinstance(data, torch.Tensor):
            raise TypeError(
                f"data must be a torch.Tensor or numpy.ndarray, got {type(data).__name__}"
            )
        if not isinstance(geometry, Geometry):
            raise TypeError(
                f"geometry must be a Geometry, got {type(geometry).__name__}"
            )

        self._validate(data, geometry)
        # Copied so that later changes to the caller's array do not reach the grid
        self._data = data.detach().clone()
        self._geometry = geometry

    def _validate(self, data: torch.Tensor, geometry: Geometry) -> None:
        spatial = tuple(data.shape[:DIMENSION])
        if data.dim() < DIMENSION or spatial != geometry.array_shape:
            raise InvalidGridShapeError(
                f"Data shape {tuple(data.shape)} does not match geometry "
                f"dimensions {geometry.dimensions} (expected spatial shape "
                f"{geometry.array_shape} in z, y, x order)"
            )

    @property
    def data(self) -> torch.Tensor:
        return self._data

    @property
    def geometry(self) -> Geometry:
        return self._geometry

    @property
    def dtype(self) -> torch.dtype:
        return self._data.dtype

    @property
    def device(self) -> torch.device:
        return self._data.device

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self._data.shape)

    def with_data(self: GridT, data: torch.Tensor | np.ndarray) -> GridT:
        """New grid of the same type and geometry holding ``data``."""
        return type(self)(data, self._geometry)

    def to(self: GridT, device: torch.device | str) -> GridT:
        if self._data.device == torch.device(device):
            return self
        return self.with_data(self._data.to(device))

    def numpy(self) -> np.ndarray:
        return self._data.cpu().numpy()

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(shape={self.shape}, dtype={self.dtype}, "
            f"geometry={self._geometry!r})"
        )


class VectorGrid(BaseGrid):
    """
    Displacement field: one physical (x, y, z) vector per voxel.

    ``data`` has shape [Z, Y, X, 3] and a floating point dtype.
    """

    def _validate(self, data: torch.Tensor, geometry: Geometry) -> None:
        if data.dim() != DIMENSION + 1 or data.shape[-1] != DIMENSION:
            raise InvalidGridShapeError(
                f"Vector grid data must have shape [Z, Y, X, {DIMENSION}], "
                f"got {tuple(data.shape)}"
            )
        if not data.is_floating_point():
            raise InvalidGridShapeError(
                f"Vector grid data must be floating point, got {data.dtype}"
            )
        super()._validate(data, geometry)

    @classmethod
    def zeros(
        cls,
        geometry: Geometry,
        dtype: torch.dtype = torch.float32,
        device: torch.device | None = None,
    ) -> "VectorGrid":
        """Identity (all-zero) displacement field."""
        return cls(
            torch.zeros(*geometry.array_shape, DIMENSION, dtype=dtype, device=device),
            geometry,
        )

    @classmethod
    def constant(
        cls,
        geometry: Geometry,
        displacement: tuple[float, float, float],
        dtype: torch.dtype = torch.float32,
        device: torch.device | None = None,
    ) -> "VectorGrid":
        """Field with the same displacement at every voxel."""
        vector = torch.tensor(displacement, dtype=dtype, device=device)
        data = vector.expand(*geometry.array_shape, DIMENSION).clone()
        return cls(data, geometry)


class ScalarGrid(BaseGrid):
    """
    Intensity or label image: one scalar per voxel.

    ``data`` has shape [Z, Y, X] and any real or integer dtype.
    """

    def _validate(self, data: torch.Tensor, geometry: Geometry) -> None:
        if data.dim() != DIMENSION:
            raise InvalidGridShapeError(
                f"Scalar grid data must have shape [Z, Y, X], got {tuple(data.shape)}"
            )
        if data.is_complex() or data.dtype == torch.bool:
            raise InvalidGridShapeError(
                f"Scalar grid data must be real valued, got {data.dtype}"
            )
        super()._validate(data, geometry)

    @classmethod
    def zeros(
        cls,
        geometry: Geometry,
        dtype: torch.dtype = torch.uint8,
        device: torch.device | None = None,
    ) -> "ScalarGrid":
        return cls(torch.zeros(*geometry.array_shape, dtype=dtype, device=device), geometry)
