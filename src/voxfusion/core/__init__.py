"""voxfusion core: pipeline runner, base step, shared contracts.

Import ``VoxelVolume`` from ``voxfusion.core.volume``.
"""

from .step_base import BaseStep
from .contracts import (
    PipelineConfig,
    StepEntry,
    StepMeta,
    CameraIntrinsics,
    CameraPose,
    VoxelGridParams,
)
from .errors import VoxFusionError, DecodeError, ConfigError, ExecutionError
from .pipeline_runner import run_pipeline, load_pipeline_config
from .logging import setup_logging

__all__ = [
    "BaseStep",
    "PipelineConfig",
    "StepEntry",
    "StepMeta",
    "CameraIntrinsics",
    "CameraPose",
    "VoxelGridParams",
    "VoxFusionError",
    "DecodeError",
    "ConfigError",
    "ExecutionError",
    "run_pipeline",
    "load_pipeline_config",
    "setup_logging",
]
