"""Near-surface voxel extraction for quick inspection of a fused volume."""

from __future__ import annotations

import numpy as np

from voxfusion.core.volume import VoxelVolume
from voxfusion.utils.geometry import grid_to_world, unravel_voxel_index


def extract_surface_points(volume: VoxelVolume, band: float = 0.2) -> tuple[np.ndarray, np.ndarray]:
    """World-space centres and tsdf values of observed voxels with |tsdf| < band."""
    tsdf = volume.tsdf.astype(np.float32)
    mask = (volume.weight > 0) & (np.abs(tsdf) < band)
    idx = np.flatnonzero(mask)
    z, y, x = unravel_voxel_index(idx, volume.grid.vox_size)
    points = grid_to_world(z, y, x, np.asarray(volume.grid.vox_origin), volume.grid.vox_unit)
    return points, tsdf[idx]
