"""Step 03: Fuse metric depth frames into TSDF voxel volumes."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import ClassVar

import numpy as np

from voxfusion.core.contracts import CameraIntrinsics, CameraPose
from voxfusion.core.errors import ConfigError, DecodeError
from voxfusion.core.step_base import BaseStep
from voxfusion.core.volume import VoxelVolume
from voxfusion.utils.io import write_ply_points
from ._integrate import IntegrationStats, integrate_frame
from ._surface import extract_surface_points
from .config import TsdfIntegrateConfig
from .contracts import TsdfIntegrateInput, TsdfIntegrateOutput

logger = logging.getLogger(__name__)


def load_manifest(poses_file: Path) -> dict:
    """Load poses.json and check every view carries a depth file and a 4x4 pose."""
    with open(poses_file, encoding="utf-8") as f:
        manifest = json.load(f)
    views = manifest.get("views")
    if not isinstance(views, list):
        raise ConfigError(f"{poses_file}: 'views' list missing")
    for i, view in enumerate(views):
        if "depth_file" not in view or len(view.get("matrix_4x4", [])) != 16:
            raise ConfigError(f"{poses_file}: view {i} needs 'depth_file' and a 16-entry 'matrix_4x4'")
    return manifest


class TsdfIntegrateStep(BaseStep[TsdfIntegrateInput, TsdfIntegrateOutput, TsdfIntegrateConfig]):
    name: ClassVar[str] = "tsdf_integrate"
    interim_dir: ClassVar[str] = "s03_tsdf"
    input_type: ClassVar = TsdfIntegrateInput
    output_type: ClassVar = TsdfIntegrateOutput
    config_type: ClassVar = TsdfIntegrateConfig

    def validate_inputs(self, inputs: TsdfIntegrateInput) -> bool:
        if not inputs.depth_dir.exists():
            logger.error(f"Depth directory not found: {inputs.depth_dir}")
            return False
        if not inputs.poses_file.exists():
            logger.error(f"Poses manifest not found: {inputs.poses_file}")
            return False
        return True

    def _load_depth(self, depth_path: Path, intrinsics: CameraIntrinsics) -> np.ndarray | None:
        if not depth_path.exists():
            logger.warning(f"Depth file missing: {depth_path}")
            return None
        depth = np.load(str(depth_path))
        if depth.shape != (intrinsics.height, intrinsics.width):
            raise DecodeError(
                f"{depth_path.name}: shape {depth.shape} does not match "
                f"{intrinsics.width}x{intrinsics.height} intrinsics"
            )
        return depth

    def _new_volume(self, vox_origin: list[float] | None) -> VoxelVolume:
        return VoxelVolume.allocate(
            self.config.grid_params(vox_origin),
            with_height=self.config.compute_height,
            precision=self.config.storage_precision,
        )

    def _integrate(self, depth: np.ndarray, intrinsics: CameraIntrinsics, pose: CameraPose, volume: VoxelVolume) -> IntegrationStats:
        return integrate_frame(
            depth,
            intrinsics,
            pose,
            volume,
            compute_height=self.config.compute_height,
            chunk_size=self.config.chunk_size,
            num_workers=self.config.num_workers,
        )

    def run(self, inputs: TsdfIntegrateInput) -> TsdfIntegrateOutput:
        output_dir = self.output_dir()
        manifest = load_manifest(inputs.poses_file)
        views = manifest["views"]

        intrinsics = (
            CameraIntrinsics(**manifest["intrinsics"])
            if manifest.get("intrinsics")
            else self.config.intrinsics
        )
        logger.info(
            f"Fusing {len(views)} views ({self.config.fuse_mode} mode) into "
            f"{self.config.vox_size} grid, unit={self.config.vox_unit} margin={self.config.vox_margin}"
        )

        volume_files: list[str] = []
        totals = IntegrationStats()
        integrated = 0
        scene_volume: VoxelVolume | None = None

        for i, view in enumerate(views):
            depth = self._load_depth(inputs.depth_dir / view["depth_file"], intrinsics)
            if depth is None:
                continue
            pose = CameraPose(image_name=view.get("name", ""), matrix_4x4=view["matrix_4x4"])

            if self.config.fuse_mode == "scene":
                if scene_volume is None:
                    scene_volume = self._new_volume(view.get("vox_origin"))
                volume = scene_volume
            else:
                volume = self._new_volume(view.get("vox_origin"))

            stats = self._integrate(depth, intrinsics, pose, volume)
            totals = totals + stats
            integrated += 1
            logger.info(f"View {i} ({view['depth_file']}): updated {stats.updated} voxels, {stats.sentinel} sentinel")

            if self.config.fuse_mode == "per_frame":
                fname = f"{Path(view['depth_file']).stem}_tsdf.npz"
                volume.save(output_dir / fname)
                volume_files.append(fname)

        logger.info(f"Integrated {integrated}/{len(views)} depth maps")

        surface_path = None
        num_surface = 0
        if scene_volume is not None:
            scene_volume.save(output_dir / "scene_tsdf.npz")
            volume_files.append("scene_tsdf.npz")
            if self.config.export_surface_ply:
                points, values = extract_surface_points(scene_volume, self.config.surface_band)
                surface_path = write_ply_points(output_dir / "surface_points.ply", points, values)
                num_surface = len(points)
                logger.info(f"Exported {num_surface} surface points")

        metadata = {
            "vox_unit": self.config.vox_unit,
            "vox_margin": self.config.vox_margin,
            "vox_size": self.config.vox_size,
            "fuse_mode": self.config.fuse_mode,
            "storage_precision": self.config.storage_precision,
            "intrinsics": intrinsics.model_dump(),
            "num_views": len(views),
            "num_integrated_views": integrated,
            "voxels_updated": totals.updated,
            "voxels_sentinel": totals.sentinel,
            "volume_files": volume_files,
        }
        metadata_path = output_dir / "metadata.json"
        with open(metadata_path, "w") as f:
            json.dump(metadata, f, indent=2)

        return TsdfIntegrateOutput(
            volume_dir=output_dir,
            volume_files=volume_files,
            num_integrated_views=integrated,
            num_updated_voxels=totals.updated,
            metadata_path=metadata_path,
            surface_points_path=surface_path,
            num_surface_points=num_surface,
        )
