"""Projective TSDF integration of one depth frame into a voxel volume.

Every voxel is handled independently: map it to world space, bring it into
the camera frame, project it, compare against the measured depth and fold
the truncated distance into a running mean. Voxels are processed in
disjoint contiguous chunks, so no two workers ever touch the same entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from voxfusion.core.contracts import CameraIntrinsics, CameraPose
from voxfusion.core.errors import ConfigError
from voxfusion.core.precision import WORKING_DTYPE, to_storage, to_working
from voxfusion.core.volume import TSDF_SENTINEL, VoxelVolume
from voxfusion.utils.geometry import (
    grid_to_world,
    is_rigid_pose,
    project_points,
    round_half_away,
    unpack_cam_info,
    unpack_vox_info,
    unravel_voxel_index,
    world_to_camera,
)
from voxfusion.utils.parallel import DEFAULT_CHUNK_SIZE, parallel_for

logger = logging.getLogger(__name__)

MAX_DEPTH = 10.0  # meters; farther readings are ignored
HEIGHT_OFFSET = 0.2
HEIGHT_RANGE = 2.5


@dataclass
class IntegrationStats:
    """Per-call voxel outcome counts."""

    updated: int = 0
    sentinel: int = 0
    skipped: int = 0

    def __add__(self, other: IntegrationStats) -> IntegrationStats:
        return IntegrationStats(
            updated=self.updated + other.updated,
            sentinel=self.sentinel + other.sentinel,
            skipped=self.skipped + other.skipped,
        )

    @property
    def total(self) -> int:
        return self.updated + self.sentinel + self.skipped


def _validate_frame(
    depth: np.ndarray,
    intrinsics: CameraIntrinsics,
    pose: CameraPose,
    volume: VoxelVolume,
    compute_height: bool,
) -> tuple[np.ndarray, np.ndarray]:
    """Check every input before the volume is touched. Returns (flat depth, c2w)."""
    volume.validate()
    if compute_height and volume.height is None:
        raise ConfigError("Height output requested but the volume has no height buffer")

    depth = np.asarray(depth)
    expected = (intrinsics.height, intrinsics.width)
    if depth.shape != expected:
        if depth.ndim == 1 and depth.size == intrinsics.width * intrinsics.height:
            depth = depth.reshape(expected)
        else:
            raise ConfigError(f"Depth frame shape {depth.shape} does not match intrinsics {expected}")

    c2w = pose.as_matrix()
    if not np.all(np.isfinite(c2w)):
        raise ConfigError("Camera pose contains non-finite entries")
    if not is_rigid_pose(c2w):
        logger.warning("Camera pose rotation block is not orthonormal; inverse uses its transpose")

    return to_working(depth).reshape(-1), c2w.astype(WORKING_DTYPE)


def integrate_frame(
    depth: np.ndarray,
    intrinsics: CameraIntrinsics,
    pose: CameraPose,
    volume: VoxelVolume,
    compute_height: bool | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    num_workers: int | None = None,
) -> IntegrationStats:
    """Fuse one metric depth frame into ``volume`` in place.

    Per voxel:
      * behind the camera or outside the frame: untouched
      * measured depth outside [0, 10] m or NaN: tsdf and weight untouched
      * measured depth rounds to 0 (no return): tsdf = -1, weight kept
      * ray distance <= -margin (occluded): tsdf = -1, weight kept
      * otherwise: running mean of min(1, distance / margin), weight + 1

    When ``compute_height`` is set (default: whenever the volume has a height
    buffer), the normalized world height is written for every voxel in front
    of the camera that projects inside the frame. Voxels behind the camera or
    outside the frame keep all three buffers untouched.
    """
    if compute_height is None:
        compute_height = volume.height is not None
    depth_flat, c2w = _validate_frame(depth, intrinsics, pose, volume, compute_height)

    grid = volume.grid
    origin = np.asarray(grid.vox_origin, dtype=WORKING_DTYPE)
    vox_unit = WORKING_DTYPE(grid.vox_unit)
    margin = WORKING_DTYPE(grid.vox_margin)
    width, height = intrinsics.width, intrinsics.height
    fx, fy = WORKING_DTYPE(intrinsics.fx), WORKING_DTYPE(intrinsics.fy)
    cx, cy = WORKING_DTYPE(intrinsics.cx), WORKING_DTYPE(intrinsics.cy)

    tsdf_buf, weight_buf = volume.tsdf, volume.weight
    height_buf = volume.height if compute_height else None
    dtype = tsdf_buf.dtype

    def _integrate_chunk(start: int, stop: int) -> IntegrationStats:
        idx = np.arange(start, stop)
        z, y, x = unravel_voxel_index(idx, grid.vox_size)
        world = grid_to_world(z, y, x, origin, vox_unit)

        cam = world_to_camera(world, c2w)
        keep = np.flatnonzero(cam[:, 2] > 0)
        cam = cam[keep]

        px, py = project_points(cam, fx, fy, cx, cy)
        in_view = (px >= 0) & (px < width) & (py >= 0) & (py < height)
        keep, cam, px, py = keep[in_view], cam[in_view], px[in_view], py[in_view]

        if height_buf is not None:
            h = np.clip((world[keep, 2] + WORKING_DTYPE(HEIGHT_OFFSET)) / WORKING_DTYPE(HEIGHT_RANGE), 0.0, 1.0)
            height_buf[start + keep] = to_storage(h, dtype)

        measured = depth_flat[py * width + px]
        in_range = (measured >= 0) & (measured <= MAX_DEPTH)
        keep, cam, measured = keep[in_range], cam[in_range], measured[in_range]

        no_return = round_half_away(measured) == 0
        ratio_x = cam[:, 0] / cam[:, 2]
        ratio_y = cam[:, 1] / cam[:, 2]
        distance = (measured - cam[:, 2]) * np.sqrt(1 + ratio_x ** 2 + ratio_y ** 2)
        fuse = ~no_return & (distance > -margin)

        vox = start + keep
        sentinel_idx = vox[~fuse]
        tsdf_buf[sentinel_idx] = to_storage(np.full(sentinel_idx.size, TSDF_SENTINEL, dtype=WORKING_DTYPE), dtype)

        fuse_idx = vox[fuse]
        sdf = np.minimum(WORKING_DTYPE(1.0), distance[fuse] / margin)
        weight_old = to_working(weight_buf[fuse_idx])
        weight_new = weight_old + 1
        tsdf_old = to_working(tsdf_buf[fuse_idx])
        weight_buf[fuse_idx] = to_storage(weight_new, dtype)
        tsdf_buf[fuse_idx] = to_storage((tsdf_old * weight_old + sdf) / weight_new, dtype)

        return IntegrationStats(
            updated=int(fuse_idx.size),
            sentinel=int(sentinel_idx.size),
            skipped=(stop - start) - int(vox.size),
        )

    chunk_stats = parallel_for(grid.num_voxels, _integrate_chunk, chunk_size=chunk_size, num_workers=num_workers)
    stats = sum(chunk_stats, IntegrationStats())
    logger.debug(
        f"Integrated frame: updated={stats.updated} sentinel={stats.sentinel} skipped={stats.skipped}"
    )
    return stats


def integrate_packed(
    depth: np.ndarray,
    cam_info: np.ndarray,
    vox_info: np.ndarray,
    tsdf: np.ndarray,
    weight: np.ndarray,
    height: np.ndarray | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    num_workers: int | None = None,
) -> IntegrationStats:
    """Integrate using the packed ``cam_info`` (27) / ``vox_info`` (8) arrays.

    ``tsdf``, ``weight`` and ``height`` are flat buffers updated in place.
    """
    intrinsics, pose = unpack_cam_info(cam_info)
    grid = unpack_vox_info(vox_info)
    volume = VoxelVolume(grid=grid, tsdf=tsdf, weight=weight, height=height)
    return integrate_frame(
        depth,
        intrinsics,
        pose,
        volume,
        compute_height=height is not None,
        chunk_size=chunk_size,
        num_workers=num_workers,
    )
