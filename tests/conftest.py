"""Shared pytest fixtures for voxfusion tests."""

from pathlib import Path

import numpy as np
import pytest
import yaml

from voxfusion.core.contracts import CameraIntrinsics, CameraPose, VoxelGridParams

SMALL_WIDTH, SMALL_HEIGHT = 16, 12
SMALL_VOX_SIZE = [6, 5, 4]


@pytest.fixture
def data_root(tmp_path: Path) -> Path:
    """Create a temporary data root with standard directory structure."""
    for subdir in ["raw/depth", "raw/labels", "interim", "processed"]:
        (tmp_path / subdir).mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture
def small_intrinsics() -> CameraIntrinsics:
    return CameraIntrinsics(fx=10.0, fy=10.0, cx=8.0, cy=6.0, width=SMALL_WIDTH, height=SMALL_HEIGHT)


@pytest.fixture
def small_grid() -> VoxelGridParams:
    """6x5x4 grid sitting 1.0-1.4 m in front of an identity camera."""
    return VoxelGridParams(
        vox_origin=[-0.2, -0.2, 1.0],
        vox_unit=0.1,
        vox_margin=5.0,
        vox_size=list(SMALL_VOX_SIZE),
    )


@pytest.fixture
def identity_pose() -> CameraPose:
    return CameraPose.from_matrix(np.eye(4), image_name="frame_0000")


@pytest.fixture
def make_pose():
    """Factory for translation-only camera-to-world poses."""

    def _make(tx: float = 0.0, ty: float = 0.0, tz: float = 0.0) -> CameraPose:
        c2w = np.eye(4)
        c2w[:3, 3] = [tx, ty, tz]
        return CameraPose.from_matrix(c2w)

    return _make


@pytest.fixture
def sample_raw_scene(data_root: Path) -> dict:
    """Encoded depth PNGs and matching RLE label streams under data_root/raw."""
    from voxfusion.utils.io import encode_label_stream, write_depth_image

    rng = np.random.default_rng(0)
    nx, ny, nz = SMALL_VOX_SIZE
    origin = np.array([-0.2, -0.2, 1.0])
    names = []
    for i in range(3):
        name = f"frame_{i:04d}"
        depth = rng.uniform(1.2, 2.5, (SMALL_HEIGHT, SMALL_WIDTH))
        write_depth_image(data_root / "raw" / "depth" / f"{name}.png", depth)

        c2w = np.eye(4)
        c2w[0, 3] = 0.02 * i
        raw = np.zeros(nx * ny * nz, dtype=np.uint32)
        raw[: nx * ny] = 2
        raw[nx * ny : nx * ny + 7] = 3
        (data_root / "raw" / "labels" / f"{name}.bin").write_bytes(encode_label_stream(origin, c2w, raw))
        names.append(name)
    return {"names": names, "vox_origin": origin.tolist()}


@pytest.fixture
def pipeline_config(tmp_path: Path, data_root: Path) -> Path:
    """pipeline.yaml + step configs wired for the small test scene."""
    steps_dir = tmp_path / "configs" / "steps"
    steps_dir.mkdir(parents=True, exist_ok=True)

    step_configs = {
        "s01_decode_depth.yaml": {"frame_width": SMALL_WIDTH, "frame_height": SMALL_HEIGHT},
        "s02_decode_labels.yaml": {"vox_size": SMALL_VOX_SIZE, "class_map": [0, 1, 2, 3]},
        "s03_tsdf_integrate.yaml": {
            "vox_unit": 0.1,
            "vox_margin": 0.3,
            "vox_size": SMALL_VOX_SIZE,
            "intrinsics": {"fx": 10.0, "fy": 10.0, "cx": 8.0, "cy": 6.0,
                           "width": SMALL_WIDTH, "height": SMALL_HEIGHT},
            "fuse_mode": "scene",
            "chunk_size": 17,
            "export_surface_ply": True,
            "surface_band": 1.0,
        },
    }
    for fname, cfg in step_configs.items():
        with open(steps_dir / fname, "w") as f:
            yaml.dump(cfg, f)

    pipeline = {
        "project_name": "test_scene",
        "data_root": str(data_root),
        "steps": [
            {"name": "decode_depth", "module": "voxfusion.steps.s01_decode_depth",
             "config_file": str(steps_dir / "s01_decode_depth.yaml")},
            {"name": "decode_labels", "module": "voxfusion.steps.s02_decode_labels",
             "config_file": str(steps_dir / "s02_decode_labels.yaml")},
            {"name": "tsdf_integrate", "module": "voxfusion.steps.s03_tsdf_integrate",
             "config_file": str(steps_dir / "s03_tsdf_integrate.yaml"),
             "depends_on": ["decode_depth", "decode_labels"]},
        ],
    }
    config_file = tmp_path / "configs" / "pipeline.yaml"
    with open(config_file, "w") as f:
        yaml.dump(pipeline, f)
    return config_file
