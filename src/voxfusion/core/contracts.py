"""Common Pydantic models shared across pipeline steps.

Camera and voxel-grid geometry live here so that decoders, the integrator
and the steps agree on one representation.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import numpy as np
from pydantic import BaseModel, Field, field_validator


class StepMeta(BaseModel):
    """Metadata attached to every step output for reproducibility."""

    step_name: str
    elapsed_seconds: float = 0.0
    params: dict[str, Any] = Field(default_factory=dict)


class CameraIntrinsics(BaseModel):
    """Camera intrinsic parameters (pinhole model)."""

    fx: float
    fy: float
    cx: float
    cy: float
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    skew: float = 0.0

    def as_matrix(self) -> np.ndarray:
        """3x3 intrinsic matrix K."""
        return np.array([
            [self.fx, self.skew, self.cx],
            [0.0, self.fy, self.cy],
            [0.0, 0.0, 1.0],
        ])


class CameraPose(BaseModel):
    """Camera extrinsic: 4x4 camera-to-world matrix stored as flat list (row-major)."""

    image_name: str = ""
    matrix_4x4: list[float] = Field(..., min_length=16, max_length=16)

    @classmethod
    def from_matrix(cls, matrix: np.ndarray, image_name: str = "") -> CameraPose:
        return cls(image_name=image_name, matrix_4x4=np.asarray(matrix, dtype=float).reshape(16).tolist())

    def as_matrix(self) -> np.ndarray:
        return np.asarray(self.matrix_4x4, dtype=np.float64).reshape(4, 4)


class VoxelGridParams(BaseModel):
    """Geometry of a regular voxel grid.

    ``vox_size`` is (nx, ny, nz). Buffers are flattened with z outermost and
    x innermost, so voxel (z, y, x) lives at ``(z * ny + y) * nx + x``.
    """

    vox_origin: list[float] = Field(..., min_length=3, max_length=3)
    vox_unit: float = Field(..., gt=0, description="Voxel edge length (meters)")
    vox_margin: float = Field(..., gt=0, description="Truncation margin (meters)")
    vox_size: list[int] = Field(..., min_length=3, max_length=3)

    @field_validator("vox_size")
    @classmethod
    def _positive_dims(cls, v: list[int]) -> list[int]:
        if any(d <= 0 for d in v):
            raise ValueError(f"vox_size must be positive, got {v}")
        return v

    @property
    def num_voxels(self) -> int:
        nx, ny, nz = self.vox_size
        return nx * ny * nz

    @property
    def shape_zyx(self) -> tuple[int, int, int]:
        nx, ny, nz = self.vox_size
        return nz, ny, nx


class PipelineConfig(BaseModel):
    """Top-level pipeline configuration loaded from pipeline.yaml."""

    project_name: str = "voxfusion_project"
    data_root: Path = Path("./data")
    steps: list[StepEntry] = Field(default_factory=list)


class StepEntry(BaseModel):
    """One entry in the pipeline step list."""

    name: str
    module: str
    config_file: str
    depends_on: list[str] = Field(default_factory=list)
    enabled: bool = True


# Fix forward reference
PipelineConfig.model_rebuild()
