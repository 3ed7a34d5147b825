"""Configuration for Step 02: Ground-truth label stream decoding."""

from pydantic import BaseModel, Field, field_validator

# SUNCG object category (0..36) -> 12 scene-completion classes:
# 0 empty, 1 ceiling, 2 floor, 3 wall, 4 window, 5 chair, 6 bed,
# 7 sofa, 8 table, 9 tvs, 10 furniture, 11 objects
SUNCG_CLASS_MAP = [
    0, 1, 2, 3, 4, 11, 5, 6, 7, 8, 8, 10, 10, 10, 11, 11, 9, 8, 11,
    11, 11, 11, 11, 11, 11, 11, 11, 10, 10, 11, 8, 10, 11, 9, 11, 11, 11,
]


class DecodeLabelsConfig(BaseModel):
    vox_size: list[int] = Field([240, 144, 240], min_length=3, max_length=3, description="Grid dims (nx, ny, nz)")
    class_map: list[int] = Field(
        default_factory=lambda: list(SUNCG_CLASS_MAP),
        min_length=1,
        description="Raw label id -> semantic class id",
    )
    pattern: str = Field("*.bin", description="Glob for ground-truth label streams")
    depth_suffix: str = Field(".npy", description="Depth filename = label stem + suffix")
    skip_invalid: bool = Field(False, description="Log and skip malformed streams instead of failing")

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
