"""I/O contracts for Step 01: Encoded depth image decoding."""

from pathlib import Path
from pydantic import BaseModel, Field


class DecodeDepthInput(BaseModel):
    image_dir: Path | None = Field(None, description="Encoded depth PNGs (None = <data_root>/raw/depth)")


class DecodeDepthOutput(BaseModel):
    depth_dir: Path = Field(..., description="Directory of metric depth maps (.npy)")
    num_frames: int = Field(..., description="Number of frames decoded")
    frame_list: list[str] = Field(default_factory=list, description="Decoded depth filenames")
    num_skipped: int = Field(0, description="Images that failed to decode")
