"""Configuration for Step 01: Encoded depth decoding."""

from pydantic import BaseModel, Field


class DecodeDepthConfig(BaseModel):
    frame_width: int = Field(640, gt=0, description="Depth frame width in pixels")
    frame_height: int = Field(480, gt=0, description="Depth frame height in pixels")
    pattern: str = Field("*.png", description="Glob for encoded depth images")
    skip_invalid: bool = Field(True, description="Log and skip undecodable images instead of failing")
