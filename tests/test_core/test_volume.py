"""Tests for VoxelVolume allocation, validation, persistence and storage precision."""

from pathlib import Path

import numpy as np
import pytest

from voxfusion.core.contracts import VoxelGridParams
from voxfusion.core.errors import ConfigError, DecodeError
from voxfusion.core.precision import storage_dtype, to_storage, to_working
from voxfusion.core.volume import VoxelVolume


@pytest.fixture
def grid() -> VoxelGridParams:
    return VoxelGridParams(vox_origin=[0.0, 0.0, 0.0], vox_unit=0.1, vox_margin=0.3, vox_size=[4, 3, 2])


class TestAllocate:
    def test_zero_initialized(self, grid):
        vol = VoxelVolume.allocate(grid)
        for buf in (vol.tsdf, vol.weight, vol.height):
            assert buf.shape == (24,)
            np.testing.assert_array_equal(buf, 0.0)
        assert vol.precision == "float32"

    def test_without_height(self, grid):
        assert VoxelVolume.allocate(grid, with_height=False).height is None

    def test_float16(self, grid):
        vol = VoxelVolume.allocate(grid, precision="float16")
        assert vol.tsdf.dtype == np.float16
        assert vol.weight.dtype == np.float16

    def test_unknown_precision(self, grid):
        with pytest.raises(ConfigError):
            VoxelVolume.allocate(grid, precision="int8")

    def test_as_grid_shape(self, grid):
        vol = VoxelVolume.allocate(grid)
        vol.tsdf[4 * 3 + 2 * 4 + 1] = 0.5  # z=1, y=2, x=1
        assert vol.as_grid("tsdf").shape == (2, 3, 4)
        assert vol.as_grid("tsdf")[1, 2, 1] == 0.5

    def test_reset(self, grid):
        vol = VoxelVolume.allocate(grid)
        vol.tsdf[:] = -1.0
        vol.weight[:] = 3.0
        vol.reset()
        np.testing.assert_array_equal(vol.tsdf, 0.0)
        np.testing.assert_array_equal(vol.weight, 0.0)


class TestValidate:
    def test_length_mismatch(self, grid):
        with pytest.raises(ConfigError, match="weight"):
            VoxelVolume(grid=grid, tsdf=np.zeros(24, np.float32), weight=np.zeros(23, np.float32))

    def test_not_flat(self, grid):
        with pytest.raises(ConfigError):
            VoxelVolume(grid=grid, tsdf=np.zeros((2, 3, 4), np.float32), weight=np.zeros(24, np.float32))

    def test_mixed_dtypes(self, grid):
        with pytest.raises(ConfigError):
            VoxelVolume(grid=grid, tsdf=np.zeros(24, np.float32), weight=np.zeros(24, np.float16))

    def test_grid_rejects_bad_dims(self):
        with pytest.raises(ValueError):
            VoxelGridParams(vox_origin=[0, 0, 0], vox_unit=0.1, vox_margin=0.1, vox_size=[4, 0, 2])
        with pytest.raises(ValueError):
            VoxelGridParams(vox_origin=[0, 0, 0], vox_unit=0.0, vox_margin=0.1, vox_size=[4, 1, 2])


class TestPersistence:
    def test_save_load(self, grid, tmp_path: Path):
        vol = VoxelVolume.allocate(grid, precision="float16")
        vol.tsdf[3] = -1.0
        vol.weight[3] = 2.0
        path = vol.save(tmp_path / "vol" / "scene.npz")

        loaded = VoxelVolume.load(path)
        assert loaded.grid == grid
        assert loaded.precision == "float16"
        np.testing.assert_array_equal(loaded.tsdf, vol.tsdf)
        np.testing.assert_array_equal(loaded.height, vol.height)

    def test_load_missing_arrays(self, tmp_path: Path):
        path = tmp_path / "partial.npz"
        np.savez(path, tsdf=np.zeros(3))
        with pytest.raises(DecodeError, match="missing"):
            VoxelVolume.load(path)

    def test_load_garbage(self, tmp_path: Path):
        path = tmp_path / "garbage.npz"
        path.write_bytes(b"nope")
        with pytest.raises(DecodeError):
            VoxelVolume.load(path)


class TestPrecision:
    def test_conversions(self):
        values = to_working(np.array([0.1, 0.2], dtype=np.float16))
        assert values.dtype == np.float32
        stored = to_storage(np.array([0.25], dtype=np.float32), storage_dtype("float16"))
        assert stored.dtype == np.float16
        assert stored[0] == 0.25
