"""
Evaluation of grids at continuous physical coordinates.

Two interpolation modes are supported:

- ``"trilinear"``: weighted sum of the 8 lattice corners surrounding the
  continuous index, weights being the product of per-axis linear fractions.
  Vector components are interpolated independently with the same weights.
- ``"nearest"``: value of the closest voxel, returned unchanged. Halves are
  rounded up, so index 1.5 selects voxel 2.

Out-of-bounds policy: a corner (trilinear) or rounded index (nearest) outside
``[0, dimension - 1]`` on any axis contributes ``boundary_value`` instead of
a voxel value. A point whose corners are all outside the grid evaluates to
exactly ``boundary_value``, however far outside it lies. The default boundary
value is 0, i.e. a zero displacement for vector grids and background for
images. For integer images the boundary value is rounded and clipped to the
range of the pixel type.
"""

import itertools

import torch

from .geometry import DIMENSION, Geometry
from .grid import BaseGrid

INTERPOLATION_MODES = ("trilinear", "nearest")


def check_mode(mode: str) -> str:
    if mode not in INTERPOLATION_MODES:
        raise ValueError(
            f"Unsupported interpolation mode: {mode!r}. "
            f"Use one of {INTERPOLATION_MODES}."
        )
    return mode


def _flat_offsets(index: torch.Tensor, dimensions: tuple[int, ...]) -> torch.Tensor:
    """Linear offsets of (x, y, z) integer indices into a [Z, Y, X] array."""
    nx, ny, _ = dimensions
    return (index[:, 2] * ny + index[:, 1]) * nx + index[:, 0]


def _inside(index: torch.Tensor, sizes: torch.Tensor) -> torch.Tensor:
    return ((index >= 0) & (index < sizes)).all(dim=-1)


def _sample_nearest(
    values: torch.Tensor,
    index: torch.Tensor,
    dimensions: tuple[int, ...],
    sizes: torch.Tensor,
    boundary_value: float,
) -> torch.Tensor:
    nearest = torch.floor(index + 0.5).long()
    inside = _inside(nearest, sizes)
    nearest = torch.where(inside.unsqueeze(-1), nearest, torch.zeros_like(nearest))

    sampled = values[_flat_offsets(nearest, dimensions)]
    return torch.where(inside.unsqueeze(-1), sampled, _fill_value(boundary_value, values))


def _fill_value(boundary_value: float, values: torch.Tensor) -> torch.Tensor:
    """Boundary value in the dtype of ``values``, rounded and clipped for integer types."""
    fill = torch.tensor(boundary_value, dtype=torch.float64)
    if not values.is_floating_point():
        info = torch.iinfo(values.dtype)
        fill = torch.round(fill).clamp(info.min, info.max)
    return fill.to(dtype=values.dtype, device=values.device)


def _sample_trilinear(
    values: torch.Tensor,
    index: torch.Tensor,
    dimensions: tuple[int, ...],
    sizes: torch.Tensor,
    boundary_value: float,
) -> torch.Tensor:
    compute_dtype = torch.float64 if values.dtype == torch.float64 else torch.float32

    base = torch.floor(index)
    frac = (index - base).to(compute_dtype)
    base = base.long()

    num_points = index.shape[0]
    result = torch.zeros(
        num_points, values.shape[1], dtype=compute_dtype, device=values.device
    )
    fill = torch.tensor(boundary_value, dtype=compute_dtype, device=values.device)
    any_inside = torch.zeros(num_points, dtype=torch.bool, device=values.device)

    for corner in itertools.product((0, 1), repeat=DIMENSION):
        step = torch.tensor(corner, dtype=torch.long, device=values.device)
        corner_index = base + step

        # Product over axes of f (upper corner) or 1 - f (lower corner)
        upper = step.bool()
        weight = torch.where(upper, frac, 1.0 - frac).prod(dim=-1)

        inside = _inside(corner_index, sizes)
        any_inside |= inside
        corner_index = torch.where(
            inside.unsqueeze(-1), corner_index, torch.zeros_like(corner_index)
        )
        corner_values = values[_flat_offsets(corner_index, dimensions)].to(compute_dtype)
        corner_values = torch.where(inside.unsqueeze(-1), corner_values, fill)

        result += weight.unsqueeze(-1) * corner_values

    return torch.where(any_inside.unsqueeze(-1), result, fill)


def sample_tensor(
    data: torch.Tensor,
    geometry: Geometry,
    points: torch.Tensor,
    mode: str = "trilinear",
    boundary_value: float = 0.0,
) -> torch.Tensor:
    """
    Evaluate voxel data at physical points.

    Args:
        data: Voxel data [Z, Y, X] (scalar) or [Z, Y, X, C] (vector)
        geometry: Geometry of ``data``
        points: Physical (x, y, z) coordinates [..., 3]
        mode: "trilinear" or "nearest"
        boundary_value: Value contributed by voxels outside the grid

    Returns:
        Sampled values [...] for scalar data or [..., C] for vector data.
        Trilinear results are floating point (float64 only for float64 data);
        nearest results keep the dtype of ``data``.
    """
    check_mode(mode)
    if points.shape[-1] != DIMENSION:
        raise ValueError(
            f"Points last dimension should be {DIMENSION}, got {points.shape[-1]}"
        )

    is_vector = data.dim() == DIMENSION + 1
    batch_shape = points.shape[:-1]

    values = data.reshape(geometry.voxel_count, -1)
    index = geometry.physical_to_index(points.to(data.device)).reshape(-1, DIMENSION)
    sizes = torch.tensor(geometry.dimensions, dtype=torch.long, device=data.device)

    if mode == "nearest":
        sampled = _sample_nearest(
            values, index, geometry.dimensions, sizes, boundary_value
        )
    else:
        sampled = _sample_trilinear(
            values, index, geometry.dimensions, sizes, boundary_value
        )

    if is_vector:
        return sampled.reshape(*batch_shape, values.shape[-1])
    return sampled.reshape(batch_shape)


def sample_grid(
    grid: BaseGrid,
    points: torch.Tensor,
    mode: str = "trilinear",
    boundary_value: float = 0.0,
) -> torch.Tensor:
    """
    Evaluate a grid at physical points.

    See ``sample_tensor`` for the interpolation and boundary semantics.
    """
    return sample_tensor(grid.data, grid.geometry, points, mode, boundary_value)
