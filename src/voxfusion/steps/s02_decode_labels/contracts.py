"""I/O contracts for Step 02: Ground-truth label decoding."""

from pathlib import Path
from pydantic import BaseModel, Field


class DecodeLabelsInput(BaseModel):
    label_dir: Path | None = Field(None, description="RLE label streams (None = <data_root>/raw/labels)")


class DecodeLabelsOutput(BaseModel):
    labels_dir: Path = Field(..., description="Directory of decoded label volumes (.npz)")
    poses_file: Path = Field(..., description="poses.json manifest (per-view pose and voxel origin)")
    num_volumes: int = Field(..., description="Number of label volumes decoded")
    label_files: list[str] = Field(default_factory=list, description="Decoded label filenames")
    occupied_fraction: float = Field(0.0, description="Mean fraction of occupied voxels")
