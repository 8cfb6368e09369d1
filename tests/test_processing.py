"""
Tests for slab partitioning utilities.
"""

import threading

import pytest
import torch

from torchdeform.processing import check_chunking, iter_slabs, resolve_device, run_slabs


class TestIterSlabs:
    """Test the iter_slabs function."""

    def test_whole_volume(self):
        assert list(iter_slabs(7)) == [(0, 7)]

    def test_even_split(self):
        assert list(iter_slabs(6, 2)) == [(0, 2), (2, 4), (4, 6)]

    def test_remainder(self):
        assert list(iter_slabs(7, 3)) == [(0, 3), (3, 6), (6, 7)]

    def test_chunk_larger_than_volume(self):
        assert list(iter_slabs(2, 10)) == [(0, 2)]

    def test_slabs_cover_volume_once(self):
        covered = [z for start, stop in iter_slabs(13, 4) for z in range(start, stop)]

        assert covered == list(range(13))


class TestRunSlabs:
    """Test the run_slabs function."""

    @pytest.mark.parametrize("num_workers", [1, 4])
    def test_every_slab_runs(self, num_workers):
        output = torch.zeros(10)
        slabs = list(iter_slabs(10, 3))

        def fill(start, stop):
            output[start:stop] = torch.arange(start, stop, dtype=torch.float32)

        run_slabs(fill, slabs, num_workers)

        assert torch.equal(output, torch.arange(10, dtype=torch.float32))

    def test_uses_threads(self):
        seen = set()
        barrier = threading.Barrier(2, timeout=5)

        def record(start, stop):
            seen.add(threading.get_ident())
            barrier.wait()

        run_slabs(record, [(0, 1), (1, 2)], num_workers=2)

        assert len(seen) == 2

    @pytest.mark.parametrize("num_workers", [1, 3])
    def test_failure_is_reraised(self, num_workers):
        def fail_on_second(start, stop):
            if start == 1:
                raise RuntimeError("slab failed")

        with pytest.raises(RuntimeError, match="slab failed"):
            run_slabs(fail_on_second, [(0, 1), (1, 2), (2, 3)], num_workers)


class TestOptions:
    """Test option validation and device resolution."""

    @pytest.mark.parametrize(
        "chunk_size, num_workers, error",
        [
            (0, 1, ValueError),
            (-2, 1, ValueError),
            (1.5, 1, TypeError),
            (True, 1, TypeError),
            (None, 0, ValueError),
            (None, 2.0, TypeError),
        ],
    )
    def test_invalid(self, chunk_size, num_workers, error):
        with pytest.raises(error):
            check_chunking(chunk_size, num_workers)

    def test_valid(self):
        check_chunking(None, 1)
        check_chunking(16, 8)

    def test_resolve_device(self):
        assert resolve_device(None) == torch.device("cpu")
        assert resolve_device("cpu") == torch.device("cpu")
