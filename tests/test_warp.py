"""
Tests for warping scalar volumes through displacement fields.
"""

import pytest
import torch

from torchdeform.geometry import Geometry
from torchdeform.grid import ScalarGrid, VectorGrid
from torchdeform.warp import VolumeWarper, cast_samples, warp_volume


class TestVolumeWarper:
    """Test the VolumeWarper class."""

    def test_initialization(self):
        warper = VolumeWarper()

        assert warper.mode == "trilinear"
        assert warper.boundary_value == 0.0
        assert warper.device == torch.device("cpu")

    def test_invalid_mode(self):
        with pytest.raises(ValueError, match="Unsupported interpolation mode"):
            VolumeWarper(mode="bilinear")

    def test_requires_grids(self, identity_geometry):
        field = VectorGrid.zeros(identity_geometry)
        image = ScalarGrid.zeros(identity_geometry)

        with pytest.raises(TypeError):
            VolumeWarper().warp(image, image)
        with pytest.raises(TypeError):
            VolumeWarper().warp(field, field)


class TestWarping:
    """Test warping semantics."""

    @pytest.mark.parametrize("mode", ["trilinear", "nearest"])
    def test_zero_field_is_identity(self, identity_geometry, create_intensity_grid, mode):
        image = create_intensity_grid(identity_geometry)
        field = VectorGrid.zeros(identity_geometry)

        warped = warp_volume(field, image, mode=mode)

        assert torch.allclose(warped.data, image.data, atol=1e-4)

    def test_output_geometry_mirrors_field(self, oblique_geometry, create_intensity_grid):
        """Test that the output lives on the field's geometry, not the image's."""
        image_geometry = Geometry((10, 10, 10), spacing=(1.5, 1.5, 1.5), origin=(-8.0, -8.0, 0.0))
        image = create_intensity_grid(image_geometry)
        field = VectorGrid.zeros(oblique_geometry)

        warped = warp_volume(field, image)

        assert warped.geometry is oblique_geometry
        assert warped.shape == oblique_geometry.array_shape

    @pytest.mark.parametrize("mode", ["trilinear", "nearest"])
    def test_image_on_finer_grid(self, mode):
        """Test warping an image whose grid differs from the field's."""
        field_geometry = Geometry((4, 4, 4), spacing=(2.0, 2.0, 2.0))
        image_geometry = Geometry((8, 8, 8))
        x = torch.arange(8, dtype=torch.float32)
        image = ScalarGrid(x.expand(8, 8, 8).clone(), image_geometry)
        field = VectorGrid.zeros(field_geometry)

        warped = warp_volume(field, image, mode=mode)

        assert warped.geometry is field_geometry
        # field voxel x index i sits at physical x = 2 * i
        expected = torch.tensor([0.0, 2.0, 4.0, 6.0]).expand(4, 4, 4)
        assert torch.allclose(warped.data, expected)

    def test_translation_shifts_content(self):
        geometry = Geometry((5, 1, 1))
        image = ScalarGrid(torch.tensor([[[0.0, 10.0, 20.0, 30.0, 40.0]]]), geometry)
        field = VectorGrid.constant(geometry, (1.0, 0.0, 0.0))

        warped = warp_volume(field, image)

        assert warped.data.flatten().tolist() == [10.0, 20.0, 30.0, 40.0, 0.0]

    def test_half_voxel_shift_interpolates(self):
        geometry = Geometry((3, 1, 1))
        image = ScalarGrid(torch.tensor([[[0.0, 10.0, 20.0]]]), geometry)
        field = VectorGrid.constant(geometry, (0.5, 0.0, 0.0))

        warped = warp_volume(field, image)

        assert warped.data.flatten().tolist() == pytest.approx([5.0, 15.0, 10.0])

    def test_labels_preserved_with_nearest(self, oblique_geometry, create_label_grid, create_vector_grid):
        """Test that nearest warping only produces input labels or background."""
        labels = create_label_grid(oblique_geometry, labels=(2, 4, 8))
        field = create_vector_grid(oblique_geometry, scale=0.7)

        warped = warp_volume(field, labels, mode="nearest")

        assert warped.dtype == labels.dtype
        assert set(warped.data.unique().tolist()) <= {0, 2, 4, 8}

    def test_trilinear_invents_values_on_labels(self, oblique_geometry, create_label_grid, create_vector_grid):
        """Test that trilinear warping blends label codes (why labels use nearest)."""
        labels = create_label_grid(oblique_geometry, labels=(10, 200))
        field = create_vector_grid(oblique_geometry, scale=0.7)

        warped = warp_volume(field, labels, mode="trilinear")

        assert not set(warped.data.unique().tolist()) <= {0, 10, 200}

    def test_intensity_bounded(self, oblique_geometry, create_intensity_grid, create_vector_grid):
        image = create_intensity_grid(oblique_geometry)
        field = create_vector_grid(oblique_geometry, scale=3.0)

        warped = warp_volume(field, image)

        assert warped.data.min() >= 0.0
        assert warped.data.max() <= image.data.max() + 1e-4

    def test_boundary_value(self, identity_geometry, create_intensity_grid):
        image = create_intensity_grid(identity_geometry)
        field = VectorGrid.constant(identity_geometry, (100.0, 100.0, 100.0))

        warped = VolumeWarper(boundary_value=-1.0).warp(field, image)

        assert torch.all(warped.data == -1.0)


class TestOutputPixelType:
    """Test that warped images keep the source pixel type."""

    def test_uint8_trilinear_rounds(self):
        geometry = Geometry((2, 1, 1))
        image = ScalarGrid(torch.tensor([[[10, 13]]], dtype=torch.uint8), geometry)
        field = VectorGrid.constant(geometry, (0.5, 0.0, 0.0))

        warped = warp_volume(field, image)

        assert warped.dtype == torch.uint8
        # 11.5 rounds to even, 6.5 (half blended with background) as well
        assert warped.data.flatten().tolist() == [12, 6]

    @pytest.mark.parametrize("mode", ["trilinear", "nearest"])
    @pytest.mark.parametrize("boundary_value, expected", [(-1.0, 0), (300.0, 255), (7.4, 7)])
    def test_boundary_value_fits_pixel_type(self, mode, boundary_value, expected):
        """Test that both modes clip the boundary value to the label type."""
        geometry = Geometry((3, 1, 1))
        labels = ScalarGrid(torch.tensor([[[1, 2, 3]]], dtype=torch.uint8), geometry)
        field = VectorGrid.constant(geometry, (50.0, 0.0, 0.0))

        warped = VolumeWarper(mode, boundary_value=boundary_value).warp(field, labels)

        assert warped.dtype == torch.uint8
        assert warped.data.flatten().tolist() == [expected] * 3

    def test_cast_samples_clamps(self):
        values = torch.tensor([-3.2, 0.4, 254.6, 300.0])

        cast = cast_samples(values, torch.uint8)

        assert cast.tolist() == [0, 0, 255, 255]

    def test_cast_samples_float(self):
        values = torch.tensor([1.25], dtype=torch.float32)

        assert cast_samples(values, torch.float64).dtype == torch.float64
        assert cast_samples(values, torch.float32) is values


class TestSlabProcessing:
    """Test that slab partitioning does not change the result."""

    @pytest.mark.parametrize("mode", ["trilinear", "nearest"])
    def test_chunked_matches_whole(
        self, oblique_geometry, create_label_grid, create_vector_grid, mode
    ):
        labels = create_label_grid(oblique_geometry)
        field = create_vector_grid(oblique_geometry)

        whole = VolumeWarper(mode).warp(field, labels)
        chunked = VolumeWarper(mode, chunk_size=1, num_workers=2)(field, labels)

        assert torch.equal(whole.data, chunked.data)
