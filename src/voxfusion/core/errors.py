"""Error hierarchy shared by decoders, the integrator and pipeline steps."""

from __future__ import annotations


class VoxFusionError(Exception):
    """Base class for all voxfusion errors."""


class DecodeError(VoxFusionError, ValueError):
    """Malformed or truncated depth image / ground-truth label stream."""


class ConfigError(VoxFusionError, ValueError):
    """Inconsistent dimensions or parameters (e.g. grid vs. buffer length)."""


class ExecutionError(VoxFusionError, RuntimeError):
    """A parallel pass failed while running. The target volume is unusable afterwards."""
