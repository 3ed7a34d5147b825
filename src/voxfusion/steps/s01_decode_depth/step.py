"""Step 01: Decode bit-rotated 16-bit depth PNGs into metric depth maps."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import ClassVar

import numpy as np

from voxfusion.core.errors import DecodeError
from voxfusion.core.step_base import BaseStep
from voxfusion.utils.io import read_depth_image
from .config import DecodeDepthConfig
from .contracts import DecodeDepthInput, DecodeDepthOutput

logger = logging.getLogger(__name__)


class DecodeDepthStep(BaseStep[DecodeDepthInput, DecodeDepthOutput, DecodeDepthConfig]):
    name: ClassVar[str] = "decode_depth"
    interim_dir: ClassVar[str] = "s01_depth"
    input_type: ClassVar = DecodeDepthInput
    output_type: ClassVar = DecodeDepthOutput
    config_type: ClassVar = DecodeDepthConfig

    def _image_dir(self, inputs: DecodeDepthInput) -> Path:
        return inputs.image_dir or self.data_root / "raw" / "depth"

    def validate_inputs(self, inputs: DecodeDepthInput) -> bool:
        image_dir = self._image_dir(inputs)
        if not image_dir.is_dir():
            logger.error(f"Depth image directory not found: {image_dir}")
            return False
        return True

    def run(self, inputs: DecodeDepthInput) -> DecodeDepthOutput:
        output_dir = self.output_dir()
        images = sorted(self._image_dir(inputs).glob(self.config.pattern))
        logger.info(f"Decoding {len(images)} depth images ({self.config.frame_width}x{self.config.frame_height})")

        decoded: list[str] = []
        skipped = 0
        for image_path in images:
            try:
                depth = read_depth_image(image_path, self.config.frame_width, self.config.frame_height)
            except DecodeError as exc:
                if not self.config.skip_invalid:
                    raise
                logger.warning(f"Skipping {image_path.name}: {exc}")
                skipped += 1
                continue

            fname = f"{image_path.stem}.npy"
            np.save(str(output_dir / fname), depth)
            decoded.append(fname)

            valid = depth[depth > 0]
            if valid.size:
                logger.debug(f"{image_path.name}: depth range {valid.min():.3f}-{valid.max():.3f} m")

        logger.info(f"Decoded {len(decoded)} depth maps, skipped {skipped}")
        return DecodeDepthOutput(
            depth_dir=output_dir,
            num_frames=len(decoded),
            frame_list=decoded,
            num_skipped=skipped,
        )
