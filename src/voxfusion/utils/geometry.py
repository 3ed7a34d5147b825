"""Geometry utilities: grid/world/camera transforms, projection, packed camera/grid arrays."""

from __future__ import annotations

import logging

import numpy as np

from voxfusion.core.contracts import CameraIntrinsics, CameraPose, VoxelGridParams
from voxfusion.core.errors import ConfigError

logger = logging.getLogger(__name__)

CAM_INFO_LEN = 2 + 9 + 16
VOX_INFO_LEN = 2 + 3 + 3


def round_half_away(values: np.ndarray) -> np.ndarray:
    """Round to nearest integer, ties away from zero (C ``roundf``).

    ``np.round`` rounds ties to even, which moves voxels onto different
    pixels at exact half-pixel projections.
    """
    values = np.asarray(values)
    return np.sign(values) * np.floor(np.abs(values) + 0.5)


def unravel_voxel_index(idx: np.ndarray, vox_size: list[int] | tuple[int, int, int]) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Flat voxel index -> (z, y, x) grid coordinates."""
    nx, ny, _ = vox_size
    z, rem = np.divmod(idx, nx * ny)
    y, x = np.divmod(rem, nx)
    return z, y, x


def grid_to_world(
    z: np.ndarray, y: np.ndarray, x: np.ndarray,
    vox_origin: np.ndarray, vox_unit: float,
) -> np.ndarray:
    """Grid coordinates -> (N, 3) world points.

    Storage axes are permuted relative to world XYZ: world = origin + unit * (z, x, y).
    Downstream consumers depend on this exact mapping.
    """
    grid = np.stack([z, x, y], axis=-1).astype(np.float32)
    return np.asarray(vox_origin, dtype=np.float32) + np.float32(vox_unit) * grid


def world_to_camera(points: np.ndarray, c2w: np.ndarray) -> np.ndarray:
    """Transform (N, 3) world points into the camera frame of a camera-to-world pose.

    Applies the rigid inverse: subtract translation, then rotate by R^T.
    """
    c2w = np.asarray(c2w, dtype=np.float32)
    rel = points - c2w[:3, 3]
    return rel @ c2w[:3, :3]


def project_points(points_cam: np.ndarray, fx: float, fy: float, cx: float, cy: float) -> tuple[np.ndarray, np.ndarray]:
    """Pinhole projection of camera-frame points with positive depth to integer pixels."""
    z = points_cam[:, 2]
    px = round_half_away(fx * (points_cam[:, 0] / z) + cx).astype(np.int64)
    py = round_half_away(fy * (points_cam[:, 1] / z) + cy).astype(np.int64)
    return px, py


def is_rigid_pose(c2w: np.ndarray, atol: float = 1e-4) -> bool:
    """True if the upper-left 3x3 block is orthonormal with det +1."""
    R = np.asarray(c2w, dtype=np.float64)[:3, :3]
    return bool(np.allclose(R @ R.T, np.eye(3), atol=atol) and np.isclose(np.linalg.det(R), 1.0, atol=atol))


# ── Packed arrays at the host-framework boundary ─────────────────────

def pack_cam_info(intrinsics: CameraIntrinsics, pose: CameraPose) -> np.ndarray:
    """[width, height, K (3x3 row-major), pose (4x4 row-major)] -> 27 floats."""
    return np.concatenate([
        [intrinsics.width, intrinsics.height],
        intrinsics.as_matrix().reshape(9),
        pose.as_matrix().reshape(16),
    ]).astype(np.float32)


def unpack_cam_info(cam_info: np.ndarray) -> tuple[CameraIntrinsics, CameraPose]:
    cam_info = np.asarray(cam_info, dtype=np.float64).reshape(-1)
    if cam_info.shape[0] != CAM_INFO_LEN:
        raise ConfigError(f"cam_info must have {CAM_INFO_LEN} entries, got {cam_info.shape[0]}")
    K = cam_info[2:11].reshape(3, 3)
    try:
        intrinsics = CameraIntrinsics(
            width=int(cam_info[0]),
            height=int(cam_info[1]),
            fx=float(K[0, 0]),
            fy=float(K[1, 1]),
            cx=float(K[0, 2]),
            cy=float(K[1, 2]),
            skew=float(K[0, 1]),
        )
    except ValueError as exc:
        raise ConfigError(f"Invalid intrinsics in cam_info: {exc}") from exc
    pose = CameraPose(matrix_4x4=cam_info[11:27].tolist())
    return intrinsics, pose


def pack_vox_info(grid: VoxelGridParams) -> np.ndarray:
    """[vox_unit, vox_margin, nx, ny, nz, origin_x, origin_y, origin_z] -> 8 floats."""
    return np.array(
        [grid.vox_unit, grid.vox_margin, *grid.vox_size, *grid.vox_origin],
        dtype=np.float32,
    )


def unpack_vox_info(vox_info: np.ndarray) -> VoxelGridParams:
    vox_info = np.asarray(vox_info, dtype=np.float64).reshape(-1)
    if vox_info.shape[0] != VOX_INFO_LEN:
        raise ConfigError(f"vox_info must have {VOX_INFO_LEN} entries, got {vox_info.shape[0]}")
    try:
        return VoxelGridParams(
            vox_unit=float(vox_info[0]),
            vox_margin=float(vox_info[1]),
            vox_size=[int(v) for v in vox_info[2:5]],
            vox_origin=vox_info[5:8].tolist(),
        )
    except ValueError as exc:
        raise ConfigError(f"Invalid vox_info {vox_info.tolist()}: {exc}") from exc
