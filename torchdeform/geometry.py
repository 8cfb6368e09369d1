"""
Physical geometry of a 3D voxel grid.

A geometry maps continuous voxel indices (x, y, z) to physical coordinates
using the SimpleITK convention::

    physical = origin + direction @ (index * spacing)

where ``direction`` is a row-major 3x3 matrix whose columns are the physical
directions of the index axes.
"""

import math
from collections.abc import Sequence

import numpy as np
import torch

from .errors import GeometryMismatchError, InvalidGridShapeError

DIMENSION = 3

# Same order of magnitude as ITK's default coordinate tolerance
DEFAULT_TOLERANCE = 1e-6

# Direction matrices read from single precision headers are only
# orthonormal to about this accuracy
ORTHONORMAL_TOLERANCE = 1e-4


class Geometry:
    """
    Voxel counts, spacing, origin and orientation of a 3D grid.

    All vector-valued members are in (x, y, z) order. Instances are immutable
    and compare equal when all four members agree exactly.
    """

    __slots__ = ("_dimensions", "_spacing", "_origin", "_direction")

    def __init__(
        self,
        dimensions: Sequence[int],
        spacing: Sequence[float] = (1.0, 1.0, 1.0),
        origin: Sequence[float] = (0.0, 0.0, 0.0),
        direction: Sequence[float] | Sequence[Sequence[float]] | None = None,
    ):
        """
        Args:
            dimensions: Number of voxels along x, y and z
            spacing: Physical voxel size along x, y and z
            origin: Physical coordinate of voxel (0, 0, 0)
            direction: 3x3 orientation matrix, nested or flattened row-major
                (as returned by ``sitk.Image.GetDirection``). Must be
                orthonormal. Identity if None.

        Raises:
            InvalidGridShapeError: if any member is malformed
        """
        if len(dimensions) != DIMENSION:
            raise InvalidGridShapeError(
                f"Expected {DIMENSION} dimensions, got {len(dimensions)}"
            )
        if any(not math.isfinite(d) or int(d) != d or d < 1 for d in dimensions):
            raise InvalidGridShapeError(
                f"Dimensions must be positive integers, got {tuple(dimensions)}"
            )

        if len(spacing) != DIMENSION:
            raise InvalidGridShapeError(
                f"Expected {DIMENSION} spacing values, got {len(spacing)}"
            )
        if any(not math.isfinite(s) or s <= 0 for s in spacing):
            raise InvalidGridShapeError(
                f"Spacing must be strictly positive, got {tuple(spacing)}"
            )

        if len(origin) != DIMENSION or any(not math.isfinite(o) for o in origin):
            raise InvalidGridShapeError(f"Invalid origin: {tuple(origin)}")

        if direction is None:
            matrix = np.eye(DIMENSION)
        else:
            matrix = np.asarray(direction, dtype=np.float64)
            if matrix.size != DIMENSION * DIMENSION:
                raise InvalidGridShapeError(
                    f"Direction must have {DIMENSION * DIMENSION} entries, "
                    f"got {matrix.size}"
                )
            matrix = matrix.reshape(DIMENSION, DIMENSION)
        if not np.all(np.isfinite(matrix)) or abs(np.linalg.det(matrix)) < 1e-12:
            raise InvalidGridShapeError(
                f"Direction matrix must be invertible, got {matrix.tolist()}"
            )
        gram = matrix @ matrix.T
        if not np.allclose(gram, np.eye(DIMENSION), atol=ORTHONORMAL_TOLERANCE):
            raise InvalidGridShapeError(
                f"Direction matrix must be orthonormal, got {matrix.tolist()}"
            )

        self._dimensions = tuple(int(d) for d in dimensions)
        self._spacing = tuple(float(s) for s in spacing)
        self._origin = tuple(float(o) for o in origin)
        self._direction = tuple(float(v) for v in matrix.flatten())

    @classmethod
    def identity(cls, dimensions: Sequence[int]) -> "Geometry":
        """Geometry with unit spacing, zero origin and identity direction."""
        return cls(dimensions)

    @property
    def dimensions(self) -> tuple[int, int, int]:
        return self._dimensions  # type: ignore[return-value]

    @property
    def spacing(self) -> tuple[float, float, float]:
        return self._spacing  # type: ignore[return-value]

    @property
    def origin(self) -> tuple[float, float, float]:
        return self._origin  # type: ignore[return-value]

    @property
    def direction(self) -> tuple[float, ...]:
        """Row-major flattened direction matrix (SimpleITK layout)."""
        return self._direction

    @property
    def direction_matrix(self) -> np.ndarray:
        return np.array(self._direction).reshape(DIMENSION, DIMENSION)

    @property
    def array_shape(self) -> tuple[int, int, int]:
        """Shape of the voxel array in (z, y, x) order."""
        return self._dimensions[::-1]  # type: ignore[return-value]

    @property
    def voxel_count(self) -> int:
        return math.prod(self._dimensions)

    def _matrices(
        self, device: torch.device | None, dtype: torch.dtype
    ) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        direction = torch.tensor(self._direction, dtype=dtype, device=device).view(
            DIMENSION, DIMENSION
        )
        spacing = torch.tensor(self._spacing, dtype=dtype, device=device)
        origin = torch.tensor(self._origin, dtype=dtype, device=device)
        return direction, spacing, origin

    def index_to_physical(self, index: torch.Tensor) -> torch.Tensor:
        """
        Map continuous indices to physical coordinates.

        Args:
            index: Tensor [..., 3] of (x, y, z) indices

        Returns:
            Tensor [..., 3] of physical (x, y, z) coordinates
        """
        dtype = index.dtype if index.is_floating_point() else torch.float64
        direction, spacing, origin = self._matrices(index.device, dtype)
        return (index.to(dtype) * spacing) @ direction.T + origin

    def physical_to_index(self, points: torch.Tensor) -> torch.Tensor:
        """
        Map physical coordinates to continuous indices.

        Computes ``direction^-1 @ (points - origin) / spacing``.

        Args:
            points: Tensor [..., 3] of physical (x, y, z) coordinates

        Returns:
            Tensor [..., 3] of continuous (x, y, z) indices
        """
        dtype = points.dtype if points.is_floating_point() else torch.float64
        inverse = torch.tensor(
            np.linalg.inv(self.direction_matrix), dtype=dtype, device=points.device
        )
        _, spacing, origin = self._matrices(points.device, dtype)
        return ((points.to(dtype) - origin) @ inverse.T) / spacing

    def physical_grid(
        self,
        z_range: tuple[int, int] | None = None,
        device: torch.device | None = None,
        dtype: torch.dtype = torch.float64,
    ) -> torch.Tensor:
        """
        Physical coordinates of every voxel center.

        Args:
            z_range: Optional (start, stop) slab of z indices
            device: PyTorch device
            dtype: Floating point type of the result

        Returns:
            Tensor [Z, Y, X, 3] with (x, y, z) physical coordinates
        """
        nx, ny, nz = self._dimensions
        z_start, z_stop = z_range if z_range is not None else (0, nz)

        z_coords = torch.arange(z_start, z_stop, dtype=dtype, device=device)
        y_coords = torch.arange(ny, dtype=dtype, device=device)
        x_coords = torch.arange(nx, dtype=dtype, device=device)
        grid_z, grid_y, grid_x = torch.meshgrid(
            z_coords, y_coords, x_coords, indexing="ij"
        )
        index = torch.stack([grid_x, grid_y, grid_z], dim=-1)
        return self.index_to_physical(index)

    def differences(
        self, other: "Geometry", tolerance: float = DEFAULT_TOLERANCE
    ) -> list[str]:
        """Names of the members that differ between two geometries."""
        diffs = []
        if self._dimensions != other._dimensions:
            diffs.append(f"dimensions {self._dimensions} != {other._dimensions}")
        for name in ("spacing", "origin", "direction"):
            mine = getattr(self, f"_{name}")
            theirs = getattr(other, f"_{name}")
            if not np.allclose(mine, theirs, rtol=0.0, atol=tolerance):
                diffs.append(f"{name} {mine} != {theirs}")
        return diffs

    def matches(self, other: "Geometry", tolerance: float = DEFAULT_TOLERANCE) -> bool:
        return not self.differences(other, tolerance)

    def check_matches(
        self,
        other: "Geometry",
        what: str = "grids",
        tolerance: float = DEFAULT_TOLERANCE,
    ) -> None:
        """
        Raise if two geometries are not the same.

        Raises:
            GeometryMismatchError: listing every differing member
        """
        diffs = self.differences(other, tolerance)
        if diffs:
            raise GeometryMismatchError(
                f"Geometry of {what} does not match: " + "; ".join(diffs)
            )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Geometry):
            return NotImplemented
        return (
            self._dimensions == other._dimensions
            and self._spacing == other._spacing
            and self._origin == other._origin
            and self._direction == other._direction
        )

    def __hash__(self) -> int:
        return hash((self._dimensions, self._spacing, self._origin, self._direction))

    def __repr__(self) -> str:
        return (
            f"Geometry(dimensions={self._dimensions}, spacing={self._spacing}, "
            f"origin={self._origin}, direction={self._direction})"
        )
