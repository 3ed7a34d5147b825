"""I/O contracts for Step 03: TSDF integration."""

from pathlib import Path

from pydantic import BaseModel, Field


class TsdfIntegrateInput(BaseModel):
    depth_dir: Path = Field(..., description="Directory of metric depth maps (.npy)")
    poses_file: Path = Field(..., description="poses.json manifest (intrinsics, per-view pose/origin)")


class TsdfIntegrateOutput(BaseModel):
    volume_dir: Path = Field(..., description="Directory containing TSDF volumes (.npz)")
    volume_files: list[str] = Field(default_factory=list, description="Saved volume filenames")
    num_integrated_views: int = Field(..., description="Number of depth frames fused")
    num_updated_voxels: int = Field(0, description="Voxel updates summed over all frames")
    metadata_path: Path = Field(..., description="Path to metadata.json")
    surface_points_path: Path | None = Field(None, description="Near-surface voxel centres (.ply)")
    num_surface_points: int = Field(0, description="Number of exported surface points")
