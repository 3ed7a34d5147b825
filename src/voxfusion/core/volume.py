"""Persistent voxel volume: tsdf, weight and optional height buffers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from voxfusion.utils.parallel import bulk_fill
from .contracts import VoxelGridParams
from .errors import ConfigError, DecodeError
from .precision import precision_of, storage_dtype

logger = logging.getLogger(__name__)

TSDF_SENTINEL = -1.0


@dataclass
class VoxelVolume:
    """Flat voxel buffers sharing one (z, y, x) index convention.

    All buffers have exactly ``grid.num_voxels`` entries. The volume is
    mutated in place by the integrator; callers must not integrate two frames
    into the same volume concurrently.
    """

    grid: VoxelGridParams
    tsdf: np.ndarray
    weight: np.ndarray
    height: np.ndarray | None = None

    def __post_init__(self) -> None:
        self.validate()

    @classmethod
    def allocate(
        cls,
        grid: VoxelGridParams,
        with_height: bool = True,
        precision: str = "float32",
    ) -> VoxelVolume:
        """Allocate a zero-initialized volume for ``grid``."""
        dtype = storage_dtype(precision)
        n = grid.num_voxels
        tsdf = bulk_fill(np.empty(n, dtype=dtype), 0.0)
        weight = bulk_fill(np.empty(n, dtype=dtype), 0.0)
        height = bulk_fill(np.empty(n, dtype=dtype), 0.0) if with_height else None
        logger.debug(f"Allocated volume {grid.vox_size} ({n} voxels, {precision})")
        return cls(grid=grid, tsdf=tsdf, weight=weight, height=height)

    @property
    def precision(self) -> str:
        return precision_of(self.tsdf)

    def validate(self) -> None:
        """Raise ConfigError unless every buffer is flat and sized to the grid."""
        n = self.grid.num_voxels
        buffers = {"tsdf": self.tsdf, "weight": self.weight}
        if self.height is not None:
            buffers["height"] = self.height
        for name, buf in buffers.items():
            if buf.ndim != 1 or buf.shape[0] != n:
                raise ConfigError(
                    f"{name} buffer has shape {buf.shape}, expected ({n},) for grid {self.grid.vox_size}"
                )
            if buf.dtype != self.tsdf.dtype:
                raise ConfigError(f"{name} buffer dtype {buf.dtype} differs from tsdf dtype {self.tsdf.dtype}")

    def reset(self) -> None:
        bulk_fill(self.tsdf, 0.0)
        bulk_fill(self.weight, 0.0)
        if self.height is not None:
            bulk_fill(self.height, 0.0)

    def as_grid(self, name: str = "tsdf") -> np.ndarray:
        """View one buffer as a (nz, ny, nx) array."""
        buf = getattr(self, name)
        if buf is None:
            raise ConfigError(f"Volume has no '{name}' buffer")
        return buf.reshape(self.grid.shape_zyx)

    def save(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        arrays = {
            "tsdf": self.tsdf,
            "weight": self.weight,
            "vox_origin": np.asarray(self.grid.vox_origin, dtype=np.float64),
            "vox_unit": np.float64(self.grid.vox_unit),
            "vox_margin": np.float64(self.grid.vox_margin),
            "vox_size": np.asarray(self.grid.vox_size, dtype=np.int64),
        }
        if self.height is not None:
            arrays["height"] = self.height
        np.savez_compressed(path, **arrays)
        return path

    @classmethod
    def load(cls, path: Path) -> VoxelVolume:
        try:
            data = np.load(path)
        except (OSError, ValueError) as exc:
            raise DecodeError(f"Cannot load volume from {path}: {exc}") from exc

        with data:
            missing = {"tsdf", "weight", "vox_origin", "vox_unit", "vox_margin", "vox_size"} - set(data.files)
            if missing:
                raise DecodeError(f"Volume file {path} is missing arrays: {sorted(missing)}")
            grid = VoxelGridParams(
                vox_origin=data["vox_origin"].tolist(),
                vox_unit=float(data["vox_unit"]),
                vox_margin=float(data["vox_margin"]),
                vox_size=[int(v) for v in data["vox_size"]],
            )
            height = data["height"] if "height" in data.files else None
            return cls(grid=grid, tsdf=data["tsdf"], weight=data["weight"], height=height)
