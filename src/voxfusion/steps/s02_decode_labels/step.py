"""Step 02: Decode run-length ground-truth streams into occupancy/semantic volumes."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import ClassVar

import numpy as np

from voxfusion.core.errors import DecodeError
from voxfusion.core.step_base import BaseStep
from voxfusion.utils.io import read_label_stream
from .config import DecodeLabelsConfig
from .contracts import DecodeLabelsInput, DecodeLabelsOutput

logger = logging.getLogger(__name__)


class DecodeLabelsStep(BaseStep[DecodeLabelsInput, DecodeLabelsOutput, DecodeLabelsConfig]):
    name: ClassVar[str] = "decode_labels"
    interim_dir: ClassVar[str] = "s02_labels"
    input_type: ClassVar = DecodeLabelsInput
    output_type: ClassVar = DecodeLabelsOutput
    config_type: ClassVar = DecodeLabelsConfig

    def _label_dir(self, inputs: DecodeLabelsInput) -> Path:
        return inputs.label_dir or self.data_root / "raw" / "labels"

    def validate_inputs(self, inputs: DecodeLabelsInput) -> bool:
        label_dir = self._label_dir(inputs)
        if not label_dir.is_dir():
            logger.error(f"Label directory not found: {label_dir}")
            return False
        return True

    def run(self, inputs: DecodeLabelsInput) -> DecodeLabelsOutput:
        output_dir = self.output_dir()
        streams = sorted(self._label_dir(inputs).glob(self.config.pattern))
        nx, ny, nz = self.config.vox_size
        logger.info(f"Decoding {len(streams)} label streams into {nx}x{ny}x{nz} volumes")

        views = []
        label_files: list[str] = []
        occupied = []
        for stream_path in streams:
            try:
                labels = read_label_stream(stream_path, self.config.class_map, self.config.num_voxels)
            except DecodeError as exc:
                if not self.config.skip_invalid:
                    raise
                logger.warning(f"Skipping {exc}")
                continue

            fname = f"{stream_path.stem}_labels.npz"
            np.savez_compressed(
                output_dir / fname,
                vox_origin=labels.vox_origin,
                cam_pose=labels.cam_pose,
                occupancy=labels.occupancy,
                segmentation=labels.segmentation,
            )
            label_files.append(fname)
            occupied.append(float(labels.occupancy.mean()))

            views.append({
                "index": len(views),
                "name": stream_path.stem,
                "depth_file": f"{stream_path.stem}{self.config.depth_suffix}",
                "label_file": fname,
                "vox_origin": labels.vox_origin.tolist(),
                "matrix_4x4": labels.cam_pose.reshape(16).tolist(),
            })

        poses_file = output_dir / "poses.json"
        with open(poses_file, "w") as f:
            json.dump({"intrinsics": None, "views": views}, f, indent=2)

        occupied_fraction = float(np.mean(occupied)) if occupied else 0.0
        logger.info(f"Decoded {len(label_files)} label volumes, mean occupancy {occupied_fraction:.3f}")
        return DecodeLabelsOutput(
            labels_dir=output_dir,
            poses_file=poses_file,
            num_volumes=len(label_files),
            label_files=label_files,
            occupied_fraction=occupied_fraction,
        )
