"""Configuration for Step 03: TSDF integration."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from voxfusion.core.contracts import CameraIntrinsics, VoxelGridParams
from voxfusion.core.errors import ConfigError
from voxfusion.core.precision import StoragePrecision


def _suncg_camera() -> CameraIntrinsics:
    return CameraIntrinsics(fx=518.8579, fy=518.8579, cx=320.0, cy=240.0, width=640, height=480)


class TsdfIntegrateConfig(BaseModel):
    vox_unit: float = Field(0.02, gt=0, description="Voxel edge length in meters")
    vox_margin: float = Field(0.24, gt=0, description="Truncation margin in meters")
    vox_size: list[int] = Field([240, 144, 240], min_length=3, max_length=3, description="Grid dims (nx, ny, nz)")
    vox_origin: list[float] | None = Field(
        None,
        description="World origin of voxel (0,0,0); None = take it from the poses manifest",
    )
    intrinsics: CameraIntrinsics = Field(
        default_factory=_suncg_camera, description="Used when the manifest carries no intrinsics"
    )
    compute_height: bool = Field(True, description="Also write the normalized height volume")
    storage_precision: StoragePrecision = Field("float32", description="Voxel buffer dtype: float32|float16")
    fuse_mode: Literal["scene", "per_frame"] = Field(
        "scene", description="scene: one persistent volume for all views; per_frame: fresh volume per view"
    )
    num_workers: int | None = Field(None, description="Worker threads (None = min(8, cpu_count))")
    chunk_size: int = Field(65536, gt=0, description="Voxels per parallel chunk")
    export_surface_ply: bool = Field(False, description="Write near-surface voxel centres as PLY")
    surface_band: float = Field(0.2, gt=0, le=1.0, description="|tsdf| threshold for surface export")

    @field_validator("vox_origin")
    @classmethod
    def _origin_is_xyz(cls, v: list[float] | None) -> list[float] | None:
        if v is not None and len(v) != 3:
            raise ValueError(f"vox_origin must have 3 entries, got {len(v)}")
        return v

    def grid_params(self, vox_origin: list[float] | None = None) -> VoxelGridParams:
        """Grid for a volume; an explicit config origin wins over ``vox_origin``."""
        origin = self.vox_origin if self.vox_origin is not None else vox_origin
        if origin is None:
            raise ConfigError("No voxel origin: set vox_origin in config or provide it in the poses manifest")
        return VoxelGridParams(
            vox_origin=list(origin),
            vox_unit=self.vox_unit,
            vox_margin=self.vox_margin,
            vox_size=list(self.vox_size),
        )
